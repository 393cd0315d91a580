"""Lineage report entry point.

Prints, for each requested file, its physical path, size, checksum, the
chain of stages that produced it, and the commands those stages ran.
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import Dict, Optional, Sequence, TextIO

from stagelink.cli.common import parse_key_values
from stagelink.contracts import ConfigValidationError
from stagelink.core.provenance_store import ProvenanceStore
from stagelink.pipeline.report import LineageReporter, REPORT_FIELDS, REPORT_FORMATS

logger = logging.getLogger(__name__)


def run_lineage_report(
    database: str,
    files: Optional[Sequence[str]] = None,
    metadata: Optional[Dict[str, str]] = None,
    instance: Optional[str] = None,
    stage: Optional[str] = None,
    fields: Sequence[str] = REPORT_FIELDS,
    fmt: str = "tsv",
    out: Optional[TextIO] = None,
) -> str:
    """Build a lineage report for one kind of file selection.

    Exactly one of ``files``, ``metadata`` or ``instance``/``stage`` must
    be given.

    Returns
    -------
    str
        The rendered report (also written to ``out`` when given).

    Raises
    ------
    ConfigValidationError
        Missing database, no or several selections, unknown instance,
        field or format.
    """
    if not database or (database != ":memory:" and not Path(database).exists()):
        raise ConfigValidationError(f"provenance database not found: {database}")

    chosen = [name for name, given in (("files", files), ("metadata", metadata),
                                       ("instance", instance or stage)) if given]
    if len(chosen) != 1:
        raise ConfigValidationError(
            "give exactly one of --file, --metadata, or --instance with --stage"
        )
    if (instance is None) != (stage is None):
        raise ConfigValidationError("--instance and --stage must be given together")
    if fmt not in REPORT_FORMATS:
        raise ConfigValidationError(f"unknown report format {fmt!r}; use 'tsv' or 'report'")

    with ProvenanceStore(database) as store:
        reporter = LineageReporter(store, fields)
        if files:
            selected = reporter.files_from_refs(files)
        elif metadata:
            selected = reporter.files_from_metadata(metadata)
        else:
            ref = int(instance) if str(instance).isdigit() else instance
            selected = reporter.files_from_stage(ref, stage)
        logger.info(f"Reporting lineage of {len(selected)} file(s)")
        return reporter.report(selected, fmt, out)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="stagelink-lineage",
        description="Report how files in a provenance database were produced",
    )
    parser.add_argument("--database", required=True, help="Provenance database (SQLite file)")
    parser.add_argument("--file", dest="files", action="append", metavar="ID|PATH",
                        help="File id or path (repeatable)")
    parser.add_argument("--metadata", action="append", metavar="KEY=REGEX",
                        help="Select files by metadata (repeatable, all must match)")
    parser.add_argument("--instance", help="Pipeline instance name or id")
    parser.add_argument("--stage", help="Stage name or position, optionally 'stage|kind'")
    parser.add_argument("--fields", default=",".join(REPORT_FIELDS),
                        help=f"Comma-separated fields (default: {','.join(REPORT_FIELDS)})")
    parser.add_argument("--format", dest="fmt", choices=REPORT_FORMATS, default="tsv")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        fields = [f.strip() for f in args.fields.split(",") if f.strip()]
        run_lineage_report(
            args.database,
            files=args.files,
            metadata=parse_key_values(args.metadata),
            instance=args.instance,
            stage=args.stage,
            fields=fields,
            fmt=args.fmt,
            out=sys.stdout,
        )
    except ConfigValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
