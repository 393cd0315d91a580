"""Lineage report: where a file came from and which commands produced it."""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from stagelink.contracts import ConfigValidationError, LineageError
from stagelink.core.checksums import ensure_md5
from stagelink.core.models import File, PipelineInstance
from stagelink.pipeline.identity import FileIdentityResolver
from stagelink.pipeline.lineage import LineageResolver
from stagelink.pipeline.selector import OutputSelector, compile_metadata_filter

__all__ = ['LineageReporter', 'REPORT_FIELDS', 'REPORT_FORMATS']

logger = logging.getLogger(__name__)

REPORT_FIELDS = ("path", "size", "md5", "lineage", "commands")
REPORT_FORMATS = ("tsv", "report")

_NOT_AVAILABLE = "-"


class LineageReporter:
    """Builds lineage rows for files found by id, path, metadata, or stage.

    Example::

        reporter = LineageReporter(store)
        files = reporter.files_from_refs(["/data/out/s1.bam", "42"])
        print(reporter.render(reporter.rows(files), fmt="report"))
    """

    def __init__(self, graph, fields: Sequence[str] = REPORT_FIELDS):
        unknown = [f for f in fields if f not in REPORT_FIELDS]
        if unknown:
            raise ConfigValidationError(
                f"unknown report field(s) {unknown}; choose from {', '.join(REPORT_FIELDS)}"
            )
        self.graph = graph
        self.fields = list(fields)
        self.identity = FileIdentityResolver(graph)
        self.lineage = LineageResolver(graph)

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def files_from_refs(self, refs: Iterable[Union[int, str]]) -> List[File]:
        """Files named by id (all digits) or by path. Unknown refs are logged."""
        files = []
        for ref in refs:
            ref = str(ref).strip()
            file = self.graph.get_file(int(ref)) if ref.isdigit() else self.graph.get_file_by_path(ref)
            if file is None:
                logger.warning(f"No file record for {ref!r}")
                continue
            files.append(file)
        return files

    def files_from_metadata(self, filters: Mapping[str, str]) -> List[File]:
        if not filters:
            raise ConfigValidationError("metadata search needs at least one key=regex pair")
        compile_metadata_filter(filters)
        return self.graph.find_files_by_metadata(filters)

    def files_from_stage(self, instance_ref, stage: str,
                         include_withdrawn: bool = False) -> List[File]:
        """Outputs of one stage of an instance, deduplicated.

        Files no longer on disk are kept; their rows show no size.
        """
        instance = self.graph.get_instance(instance_ref)
        if instance is None:
            raise ConfigValidationError(f"pipeline instance {instance_ref!r} not found")
        selector = OutputSelector(self.graph, self.identity, include_missing=True)
        return [out.file for out in selector.select(instance, include_withdrawn, [stage])]

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def rows(self, files: Iterable[File]) -> List[Dict[str, str]]:
        """One row per file; lineage problems are reported in the row."""
        return [self.row(file) for file in files]

    def row(self, file: File) -> Dict[str, str]:
        row = {"path": file.path}
        try:
            physical = self.identity.resolve(file, True)
        except LineageError as e:
            logger.warning(f"{file.path}: {e}")
            row["lineage"] = f"ERROR: {e}"
            return self._fill(row, _NOT_AVAILABLE)

        row["path"] = physical.path
        if physical.size == 0 or not physical.exists:
            physical.update_stats_from_disk()
        row["size"] = str(physical.size) if physical.exists else _NOT_AVAILABLE

        if "md5" in self.fields:
            if physical.md5:
                row["md5"] = physical.md5
            elif physical.exists:
                try:
                    row["md5"] = ensure_md5(physical)
                except OSError as e:
                    logger.warning(f"Could not checksum {physical.path}: {e}")
                    row["md5"] = _NOT_AVAILABLE
            else:
                row["md5"] = _NOT_AVAILABLE

        if "lineage" in self.fields or "commands" in self.fields:
            row.update(self._lineage_fields(file, physical))
        return self._fill(row, _NOT_AVAILABLE)

    def _lineage_fields(self, file: File, physical: File) -> Dict[str, str]:
        records = self.graph.records_producing(file.id)
        if not records and physical.id != file.id:
            records = self.graph.records_producing(physical.id)
        if not records:
            return {"lineage": "ERROR: no stage record produced this file",
                    "commands": _NOT_AVAILABLE}

        # the earliest producer defines where the file came from
        try:
            chain = self.lineage.chain(records[0])
        except LineageError as e:
            logger.warning(f"{file.path}: {e}")
            return {"lineage": f"ERROR: {e}", "commands": _NOT_AVAILABLE}

        entries = []
        instances: Dict[int, PipelineInstance] = {}
        for record in chain:
            if record.instance_id not in instances:
                instances[record.instance_id] = self.graph.get_instance(record.instance_id)
            instance = instances[record.instance_id]
            member = instance.member(record.position)
            stage_name = member.stage_name if member else "?"
            entries.append(f"{instance.name}:{record.position}:{stage_name}")

        commands = [r.command_summary for r in chain if r.command_summary]
        return {
            "lineage": " > ".join(entries),
            "commands": " ; ".join(commands) if commands else _NOT_AVAILABLE,
        }

    def _fill(self, row: Dict[str, str], value: str) -> Dict[str, str]:
        return {field: row.get(field, value) for field in self.fields}

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def render(self, rows: List[Dict[str, str]], fmt: str = "tsv") -> str:
        """Render rows as TSV (header + one line per file) or as text blocks."""
        if fmt == "tsv":
            frame = pd.DataFrame(rows, columns=self.fields)
            return frame.to_csv(sep="\t", index=False)
        if fmt == "report":
            blocks = []
            for row in rows:
                width = max(len(f) for f in self.fields)
                blocks.append("\n".join(f"{f.ljust(width)} : {row[f]}" for f in self.fields))
            return "\n\n".join(blocks) + ("\n" if blocks else "")
        raise ConfigValidationError(f"unknown report format {fmt!r}; use 'tsv' or 'report'")

    def report(self, files: Iterable[File], fmt: str = "tsv",
               out: Optional[object] = None) -> str:
        if fmt not in REPORT_FORMATS:
            raise ConfigValidationError(f"unknown report format {fmt!r}; use 'tsv' or 'report'")
        text = self.render(self.rows(files), fmt)
        if out is not None:
            out.write(text)
        return text
