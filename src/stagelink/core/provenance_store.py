"""SQLite-backed provenance graph.

Records files, their metadata and indirections, pipeline instances and their
stage members, input units with their cross-instance links, and the stage
records that tie units to produced files. The producing pipeline system
writes here; the materialization engine only reads.
"""

import re
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from stagelink.contracts import require
from stagelink.core.models import (
    File,
    InputUnit,
    PipelineInstance,
    Source,
    SourceKind,
    StageMember,
    StageRecord,
    UnitLink,
    UpstreamFeed,
    metadata_matches,
)

logger = logging.getLogger(__name__)


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS files (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL UNIQUE,
        size INTEGER NOT NULL DEFAULT 0,
        on_disk INTEGER NOT NULL DEFAULT 0,
        md5 TEXT,
        moved_to INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS file_metadata (
        file_id INTEGER NOT NULL,
        key TEXT NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY (file_id, key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_upstreams (
        source_id INTEGER NOT NULL,
        seq INTEGER NOT NULL,
        upstream_instance_id INTEGER NOT NULL,
        stage_position INTEGER NOT NULL,
        PRIMARY KEY (source_id, upstream_instance_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pipeline_instances (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        source_id INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stage_members (
        instance_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        stage_name TEXT NOT NULL,
        PRIMARY KEY (instance_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS input_units (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_id INTEGER NOT NULL,
        withdrawn INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS input_unit_paths (
        unit_id INTEGER NOT NULL,
        seq INTEGER NOT NULL,
        path TEXT NOT NULL,
        PRIMARY KEY (unit_id, seq)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS unit_links (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        parent_unit_id INTEGER NOT NULL,
        child_unit_id INTEGER NOT NULL,
        upstream_instance_id INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stage_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        instance_id INTEGER NOT NULL,
        unit_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        complete INTEGER NOT NULL DEFAULT 0,
        command_summary TEXT,
        UNIQUE (instance_id, unit_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stage_outputs (
        record_id INTEGER NOT NULL,
        kind TEXT NOT NULL,
        seq INTEGER NOT NULL,
        file_id INTEGER NOT NULL,
        PRIMARY KEY (record_id, kind, seq)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_units_source ON input_units(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_links_child ON unit_links(child_unit_id)",
    "CREATE INDEX IF NOT EXISTS idx_outputs_file ON stage_outputs(file_id)",
    "CREATE INDEX IF NOT EXISTS idx_files_moved ON files(moved_to)",
]


class ProvenanceStore:
    """Queryable provenance graph persisted in SQLite.

    **Write side** (producing pipeline system, tests)::

        store = ProvenanceStore(db_path)
        src = store.add_source("paths")
        inst = store.add_instance("mapping", src, ["bwa_index", "bwa_map"])
        unit = store.add_input_unit(src, ["/data/s1.fastq"])
        bam = store.add_file("/out/s1.bam", metadata={"sample": "S1"})
        store.add_stage_record(inst, unit, 2, {"bam": [bam]})

    **Read side** (materialization engine): ``get_instance``,
    ``list_input_units``, ``get_stage_record``, ``get_file``,
    ``get_file_by_path``, ``get_unit_links``, ``records_producing`` and
    friends. Every read returns fresh record objects.

    **Thread Safety:**

    All methods are serialized by an internal lock around a single
    connection.
    """

    def __init__(self, db_path: Union[Path, str]):
        """Open (and create if needed) the store.

        Parameters
        ----------
        db_path : Path or str
            SQLite database file, or ``":memory:"``.
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = None
        self._lock = threading.Lock()

        self._init_database()
        logger.info(f"Provenance store opened: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self):
        conn = self._get_connection()
        with self._lock:
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.commit()

    # =========================================================================
    # Write API
    # =========================================================================

    def add_file(self, path, size: int = 0, exists: bool = False,
                 md5: Optional[str] = None,
                 metadata: Optional[Mapping[str, str]] = None) -> int:
        """Register a file by absolute path; returns its id.

        Registering an already-known path returns the existing id and merges
        any given metadata into it.
        """
        path = str(path)
        conn = self._get_connection()
        with self._lock:
            row = conn.execute("SELECT id FROM files WHERE path = ?", (path,)).fetchone()
            if row:
                file_id = row["id"]
            else:
                cursor = conn.execute(
                    "INSERT INTO files (path, size, on_disk, md5) VALUES (?, ?, ?, ?)",
                    (path, int(size), 1 if exists else 0, md5),
                )
                file_id = cursor.lastrowid
            if metadata:
                self._put_metadata(conn, file_id, metadata)
            conn.commit()
        logger.debug(f"Registered file {file_id}: {path}")
        return file_id

    def add_file_metadata(self, file_id: int, metadata: Mapping[str, str]):
        conn = self._get_connection()
        with self._lock:
            self._put_metadata(conn, file_id, metadata)
            conn.commit()

    @staticmethod
    def _put_metadata(conn, file_id, metadata):
        conn.executemany(
            "INSERT OR REPLACE INTO file_metadata (file_id, key, value) VALUES (?, ?, ?)",
            [(file_id, str(k), str(v)) for k, v in metadata.items()],
        )

    def mark_moved(self, file_id: int, new_file_id: int):
        """Record that ``file_id`` was replaced by ``new_file_id``."""
        require(file_id != new_file_id, f"file {file_id} cannot be moved onto itself")
        conn = self._get_connection()
        with self._lock:
            conn.execute("UPDATE files SET moved_to = ? WHERE id = ?", (new_file_id, file_id))
            conn.commit()
        logger.debug(f"File {file_id} moved to {new_file_id}")

    def update_file_stats(self, file: File):
        """Persist a File's refreshed disk stats and checksum."""
        conn = self._get_connection()
        with self._lock:
            conn.execute(
                "UPDATE files SET size = ?, on_disk = ?, md5 = ? WHERE id = ?",
                (file.size, 1 if file.exists else 0, file.md5, file.id),
            )
            conn.commit()

    def add_source(self, kind: Union[str, SourceKind],
                   upstream: Sequence[Tuple[int, int]] = ()) -> int:
        """Register a source of input units.

        Parameters
        ----------
        kind : str or SourceKind
            ``"paths"`` or ``"pipeline_outputs"``.
        upstream : sequence of (instance_id, stage_position)
            Contributing upstream instances, in declaration order, with the
            stage position each one feeds from. Only valid for derived sources.
        """
        kind = SourceKind(kind)
        require(not upstream or kind == SourceKind.PIPELINE_OUTPUTS,
                "only pipeline_outputs sources can declare upstream instances")
        conn = self._get_connection()
        with self._lock:
            source_id = conn.execute("INSERT INTO sources (kind) VALUES (?)",
                                     (kind.value,)).lastrowid
            conn.executemany(
                """INSERT INTO source_upstreams
                   (source_id, seq, upstream_instance_id, stage_position)
                   VALUES (?, ?, ?, ?)""",
                [(source_id, seq, inst, pos) for seq, (inst, pos) in enumerate(upstream)],
            )
            conn.commit()
        return source_id

    def add_instance(self, name: str, source_id: int, stage_names: Sequence[str]) -> int:
        """Register a pipeline instance; stage members get positions 1..N."""
        conn = self._get_connection()
        with self._lock:
            instance_id = conn.execute(
                "INSERT INTO pipeline_instances (name, source_id) VALUES (?, ?)",
                (name, source_id),
            ).lastrowid
            conn.executemany(
                "INSERT INTO stage_members (instance_id, position, stage_name) VALUES (?, ?, ?)",
                [(instance_id, pos, stage) for pos, stage in enumerate(stage_names, start=1)],
            )
            conn.commit()
        logger.debug(f"Registered instance {instance_id} ({name}) with {len(stage_names)} stage(s)")
        return instance_id

    def add_input_unit(self, source_id: int, paths: Sequence = (),
                       withdrawn: bool = False) -> int:
        conn = self._get_connection()
        with self._lock:
            unit_id = conn.execute(
                "INSERT INTO input_units (source_id, withdrawn) VALUES (?, ?)",
                (source_id, 1 if withdrawn else 0),
            ).lastrowid
            conn.executemany(
                "INSERT INTO input_unit_paths (unit_id, seq, path) VALUES (?, ?, ?)",
                [(unit_id, seq, str(p)) for seq, p in enumerate(paths)],
            )
            conn.commit()
        return unit_id

    def set_withdrawn(self, unit_id: int, withdrawn: bool = True):
        conn = self._get_connection()
        with self._lock:
            conn.execute("UPDATE input_units SET withdrawn = ? WHERE id = ?",
                         (1 if withdrawn else 0, unit_id))
            conn.commit()

    def link_units(self, parent_unit_id: int, child_unit_id: int,
                   upstream_instance_id: int) -> int:
        """Record that ``child_unit_id`` was derived from ``parent_unit_id``
        as processed by ``upstream_instance_id``."""
        require(parent_unit_id != child_unit_id,
                f"unit {child_unit_id} cannot be its own parent")
        conn = self._get_connection()
        with self._lock:
            link_id = conn.execute(
                """INSERT INTO unit_links (parent_unit_id, child_unit_id, upstream_instance_id)
                   VALUES (?, ?, ?)""",
                (parent_unit_id, child_unit_id, upstream_instance_id),
            ).lastrowid
            conn.commit()
        return link_id

    def add_stage_record(self, instance_id: int, unit_id: int, position: int,
                         outputs: Optional[Mapping[str, Sequence[int]]] = None,
                         complete: bool = True,
                         command_summary: Optional[str] = None) -> int:
        """Record that stage ``position`` ran for (instance, unit).

        Parameters
        ----------
        outputs : mapping of kind -> list of file ids
            Produced files grouped by kind, in production order.

        Raises
        ------
        ContractViolation
            If a record already exists for the (instance, unit, position)
            triple, or the position is not a stage member of the instance.
        """
        conn = self._get_connection()
        with self._lock:
            member = conn.execute(
                "SELECT 1 FROM stage_members WHERE instance_id = ? AND position = ?",
                (instance_id, position),
            ).fetchone()
            require(member is not None,
                    f"instance {instance_id} has no stage at position {position}")
            existing = conn.execute(
                """SELECT id FROM stage_records
                   WHERE instance_id = ? AND unit_id = ? AND position = ?""",
                (instance_id, unit_id, position),
            ).fetchone()
            require(existing is None,
                    f"stage record already exists for instance {instance_id}, "
                    f"unit {unit_id}, position {position}")

            record_id = conn.execute(
                """INSERT INTO stage_records
                   (instance_id, unit_id, position, complete, command_summary)
                   VALUES (?, ?, ?, ?, ?)""",
                (instance_id, unit_id, position, 1 if complete else 0, command_summary),
            ).lastrowid
            rows = []
            for kind, file_ids in (outputs or {}).items():
                rows.extend((record_id, kind, seq, fid) for seq, fid in enumerate(file_ids))
            conn.executemany(
                "INSERT INTO stage_outputs (record_id, kind, seq, file_id) VALUES (?, ?, ?, ?)",
                rows,
            )
            conn.commit()
        return record_id

    # =========================================================================
    # Query API
    # =========================================================================

    def get_file(self, file_id: int) -> Optional[File]:
        conn = self._get_connection()
        with self._lock:
            return self._load_file(conn, "id = ?", (file_id,))

    def get_file_by_path(self, path) -> Optional[File]:
        conn = self._get_connection()
        with self._lock:
            return self._load_file(conn, "path = ?", (str(path),))

    def get_files_moved_to(self, file_id: int) -> List[File]:
        """Files whose indirection points at ``file_id``."""
        conn = self._get_connection()
        with self._lock:
            ids = [r["id"] for r in conn.execute(
                "SELECT id FROM files WHERE moved_to = ? ORDER BY id", (file_id,))]
            return [self._load_file(conn, "id = ?", (i,)) for i in ids]

    def find_files_by_metadata(self, filters: Mapping[str, str]) -> List[File]:
        """Files whose metadata matches every ``key -> regex`` filter."""
        require(bool(filters), "metadata search needs at least one key")
        compiled = {k: re.compile(v) for k, v in filters.items()}
        keys = list(compiled)
        placeholders = ",".join("?" * len(keys))
        conn = self._get_connection()
        with self._lock:
            ids = [r["file_id"] for r in conn.execute(
                f"""SELECT file_id FROM file_metadata WHERE key IN ({placeholders})
                    GROUP BY file_id HAVING COUNT(DISTINCT key) = ?
                    ORDER BY file_id""",
                (*keys, len(keys)),
            )]
            files = [self._load_file(conn, "id = ?", (i,)) for i in ids]
        return [f for f in files if metadata_matches(f.metadata, compiled)]

    def _load_file(self, conn, where: str, params) -> Optional[File]:
        row = conn.execute(f"SELECT * FROM files WHERE {where}", params).fetchone()
        if row is None:
            return None
        metadata = {
            r["key"]: r["value"]
            for r in conn.execute("SELECT key, value FROM file_metadata WHERE file_id = ?",
                                  (row["id"],))
        }
        return File(
            id=row["id"],
            path=row["path"],
            size=row["size"],
            exists=bool(row["on_disk"]),
            md5=row["md5"],
            moved_to=row["moved_to"],
            metadata=metadata,
        )

    def get_source(self, source_id: int) -> Optional[Source]:
        conn = self._get_connection()
        with self._lock:
            return self._load_source(conn, source_id)

    @staticmethod
    def _load_source(conn, source_id) -> Optional[Source]:
        row = conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        if row is None:
            return None
        feeds = tuple(
            UpstreamFeed(r["upstream_instance_id"], r["stage_position"])
            for r in conn.execute(
                "SELECT * FROM source_upstreams WHERE source_id = ? ORDER BY seq",
                (source_id,))
        )
        return Source(id=row["id"], kind=SourceKind(row["kind"]), upstream=feeds)

    def get_instance(self, ref: Union[int, str]) -> Optional[PipelineInstance]:
        """Look up a pipeline instance by id or by name."""
        conn = self._get_connection()
        with self._lock:
            if isinstance(ref, int):
                row = conn.execute("SELECT * FROM pipeline_instances WHERE id = ?",
                                   (ref,)).fetchone()
            else:
                row = conn.execute("SELECT * FROM pipeline_instances WHERE name = ?",
                                   (ref,)).fetchone()
            if row is None:
                return None
            members = tuple(
                StageMember(row["id"], r["position"], r["stage_name"])
                for r in conn.execute(
                    "SELECT * FROM stage_members WHERE instance_id = ? ORDER BY position",
                    (row["id"],))
            )
        return PipelineInstance(id=row["id"], name=row["name"],
                                source_id=row["source_id"], members=members)

    def get_stage_members(self, instance_id: int) -> List[StageMember]:
        instance = self.get_instance(instance_id)
        return list(instance.members) if instance else []

    def get_unit(self, unit_id: int) -> Optional[InputUnit]:
        conn = self._get_connection()
        with self._lock:
            row = conn.execute("SELECT * FROM input_units WHERE id = ?", (unit_id,)).fetchone()
            if row is None:
                return None
            return self._unit_from_row(conn, row)

    @staticmethod
    def _unit_from_row(conn, row) -> InputUnit:
        paths = tuple(
            r["path"] for r in conn.execute(
                "SELECT path FROM input_unit_paths WHERE unit_id = ? ORDER BY seq",
                (row["id"],))
        )
        return InputUnit(id=row["id"], source_id=row["source_id"], paths=paths,
                         withdrawn=bool(row["withdrawn"]))

    def list_input_units(self, instance: PipelineInstance,
                         include_withdrawn: bool = False,
                         page_size: int = 500) -> Iterator[InputUnit]:
        """Yield the input units of an instance's source, ordered by id.

        Pages through the table ``page_size`` rows at a time; the lock is
        released between pages, so concurrent writers are tolerated.
        """
        require(page_size >= 1, "page_size must be >= 1")
        query = "SELECT * FROM input_units WHERE source_id = ? AND id > ?"
        if not include_withdrawn:
            query += " AND withdrawn = 0"
        query += " ORDER BY id LIMIT ?"

        conn = self._get_connection()
        last_id = 0
        while True:
            with self._lock:
                rows = conn.execute(query, (instance.source_id, last_id, page_size)).fetchall()
                page = [self._unit_from_row(conn, row) for row in rows]
            if not page:
                return
            yield from page
            if len(page) < page_size:
                return
            last_id = page[-1].id

    def get_unit_links(self, child_unit_id: int) -> List[UnitLink]:
        """Upstream links of a unit, in declaration order."""
        conn = self._get_connection()
        with self._lock:
            return [
                UnitLink(r["id"], r["parent_unit_id"], r["child_unit_id"],
                         r["upstream_instance_id"])
                for r in conn.execute(
                    "SELECT * FROM unit_links WHERE child_unit_id = ? ORDER BY id",
                    (child_unit_id,))
            ]

    def get_stage_record(self, instance_id: int, unit_id: int, position: int,
                         include_incomplete: bool = False) -> Optional[StageRecord]:
        """The stage record for (instance, unit, position).

        Only complete records are returned unless ``include_incomplete``.
        """
        query = "SELECT * FROM stage_records WHERE instance_id = ? AND unit_id = ? AND position = ?"
        if not include_incomplete:
            query += " AND complete = 1"
        conn = self._get_connection()
        with self._lock:
            row = conn.execute(query, (instance_id, unit_id, position)).fetchone()
            if row is None:
                return None
            return self._record_from_row(conn, row)

    def records_producing(self, file_id: int) -> List[StageRecord]:
        """Stage records listing ``file_id`` among their outputs."""
        conn = self._get_connection()
        with self._lock:
            rows = conn.execute(
                """SELECT r.* FROM stage_records r
                   WHERE r.id IN (SELECT record_id FROM stage_outputs WHERE file_id = ?)
                   ORDER BY r.id""",
                (file_id,),
            ).fetchall()
            return [self._record_from_row(conn, row) for row in rows]

    def _record_from_row(self, conn, row) -> StageRecord:
        outputs: Dict[str, List[File]] = {}
        for r in conn.execute(
                "SELECT kind, file_id FROM stage_outputs WHERE record_id = ? ORDER BY kind, seq",
                (row["id"],)):
            file = self._load_file(conn, "id = ?", (r["file_id"],))
            require(file is not None,
                    f"stage record {row['id']} references missing file {r['file_id']}")
            outputs.setdefault(r["kind"], []).append(file)
        return StageRecord(
            id=row["id"],
            instance_id=row["instance_id"],
            unit_id=row["unit_id"],
            position=row["position"],
            complete=bool(row["complete"]),
            outputs=outputs,
            command_summary=row["command_summary"],
        )

    def close(self):
        """Close the database connection. Safe to call multiple times."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
