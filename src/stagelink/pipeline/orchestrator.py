"""Materialization run orchestration.

Selects the outputs of one pipeline instance, computes their destinations
unit by unit, and materializes them as symlinks. Per-unit and per-file
problems are collected and reported; only configuration errors stop a run,
and they are raised before anything touches the filesystem.
"""

import itertools
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from stagelink.contracts import (
    BrokenChain,
    ConfigValidationError,
    ErrorReport,
    FailurePolicy,
    FileAccessError,
    SkippedConflict,
    UnitSkipped,
)
from stagelink.core.checksums import ensure_md5
from stagelink.core.models import PipelineInstance
from stagelink.core.provenance_store import ProvenanceStore
from stagelink.pipeline.identity import FileIdentityResolver
from stagelink.pipeline.lineage import LineageResolver
from stagelink.pipeline.materializer import Materializer, Outcome
from stagelink.pipeline.paths import PathComposer
from stagelink.pipeline.selector import OutputSelector, compile_metadata_filter, parse_stage_filter
from stagelink.schemas import InternalConfig
from stagelink.setup_directories import get_log_path, setup_output_directories

__all__ = ['MaterializationOrchestrator', 'RunSummary']

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Counts and errors of one run."""
    instance: str
    selected: int = 0
    units: int = 0
    units_skipped: int = 0
    outcomes: Counter = field(default_factory=Counter)
    errors: ErrorReport = field(default_factory=ErrorReport)
    printed: List[str] = field(default_factory=list)

    @property
    def created(self) -> int:
        return self.outcomes[Outcome.CREATED]

    def exit_code(self, strict: bool = False) -> int:
        return 1 if strict and self.errors else 0


class MaterializationOrchestrator:
    """Runs one materialization pass over a pipeline instance.

    **Flow:**

    1. Resolve the instance; validate the stage and metadata filters.
    2. Stream selected outputs (deduplicated) unit by unit.
    3. Per unit: compute the directory once and every basename; a unit
       that cannot be placed is reported and skipped.
    4. Per file: materialize the link; conflicts are reported. The first
       file composed onto a destination in a run keeps it; later files
       with the same destination are reported and left unlinked.

    In ``print_only`` mode steps 3-4 are replaced by printing one row per
    selected file (path, plus md5 with ``include_checksum``).

    Example usage::

        config = resolve_config(ParamConfig(), user_cfg, cli_cfg)
        orch = MaterializationOrchestrator(config)
        summary = orch.start()
        sys.exit(summary.exit_code(config.flags.strict_exit))
    """

    def __init__(self, config: InternalConfig, store: Optional[ProvenanceStore] = None,
                 echo: Optional[Callable[[str], None]] = print):
        """
        Parameters
        ----------
        config : InternalConfig
            Fully validated runtime configuration.
        store : ProvenanceStore, optional
            Open provenance store. If omitted, ``config.store.database`` is
            opened and closed by the run.
        echo : callable, optional
            Receives print-only and dry-run rows. Defaults to ``print``.
        """
        self.config = config
        self._owns_store = store is None
        if store is None:
            if not config.store.database:
                raise ConfigValidationError("no provenance database given (store.database)")
            if config.store.database != ":memory:" and not Path(config.store.database).exists():
                raise ConfigValidationError(f"provenance database not found: {config.store.database}")
            store = ProvenanceStore(config.store.database)
        self.store = store
        self.echo = echo

    def _setup_logging(self, instance_name=None):
        """Configure root logging: console always, file unless nothing is written."""
        log_level = getattr(logging, self.config.logging.level, logging.INFO)

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        root = logging.getLogger()
        root.setLevel(log_level)
        for handler in root.handlers[:]:
            root.removeHandler(handler)

        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)
        root.addHandler(ch)

        flags = self.config.flags
        if (self.config.logging.log_to_file and self.config.output_root
                and not flags.dry_run and not flags.print_only):
            output_dirs = setup_output_directories(self.config.output_root)
            log_path = get_log_path(output_dirs, instance_name)
            fh = logging.FileHandler(log_path)
            fh.setLevel(log_level)
            fh.setFormatter(formatter)
            root.addHandler(fh)
            logger.info("Logging: level=%s, file=%s", self.config.logging.level, log_path)

    def start(self) -> RunSummary:
        """Validate, configure logging, run, and close the store if we opened it."""
        try:
            instance = self.validate()
            self._setup_logging(instance.name)
            return self.run()
        finally:
            self.stop()

    def stop(self):
        if self._owns_store and self.store is not None:
            self.store.close()
            self.store = None

    def validate(self) -> PipelineInstance:
        """Resolve the instance and check the filters against it.

        Raises
        ------
        ConfigValidationError
            Unknown instance, a stage filter entry matching no stage, or a
            metadata filter that does not compile.
        """
        selection = self.config.selection
        instance = self.store.get_instance(selection.instance)
        if instance is None:
            raise ConfigValidationError(f"pipeline instance {selection.instance!r} not found")
        parse_stage_filter(instance, selection.stages)
        compile_metadata_filter(selection.metadata_filter)
        return instance

    def run(self) -> RunSummary:
        """One pass over the instance's input units.

        Raises
        ------
        ConfigValidationError
            Unknown instance, or a stage filter entry matching no stage.
        StageLinkError
            The first collected error, when ``fail_fast`` is set.
        """
        config = self.config
        flags = config.flags
        selection = config.selection
        instance = self.validate()

        policy = FailurePolicy.FAIL_FAST if flags.fail_fast else FailurePolicy.CONTINUE
        summary = RunSummary(instance=instance.name, errors=ErrorReport(policy))

        identity = FileIdentityResolver(self.store)
        selector = OutputSelector(self.store, identity, summary.errors, config.store.page_size)
        outputs = selector.select(
            instance,
            include_withdrawn=selection.include_withdrawn,
            stage_filter=selection.stages,
            metadata_filter=selection.metadata_filter,
            include_incomplete=selection.include_incomplete,
        )

        logger.info("=" * 60)
        logger.info("Materializing %s (instance %d)%s", instance.name, instance.id,
                    " [dry-run]" if flags.dry_run else "")
        logger.info("=" * 60)

        if flags.print_only:
            self._print_outputs(outputs, identity, summary)
        else:
            self._materialize_outputs(outputs, identity, summary)

        summary.selected = selector.stats.emitted
        self._log_summary(summary)
        return summary

    def _print_outputs(self, outputs, identity, summary):
        for output in outputs:
            try:
                physical = identity.resolve(output.file, True)
                row = physical.path
                if self.config.flags.include_checksum:
                    row = f"{row}\t{ensure_md5(physical)}"
            except BrokenChain as e:
                summary.errors.add(e, output.unit.id, output.file.path)
                continue
            except OSError as e:
                summary.errors.add(FileAccessError(f"could not read {output.file.path}: {e}"),
                                   output.unit.id, output.file.path)
                continue
            summary.printed.append(row)
            if self.echo is not None:
                self.echo(row)

    def _materialize_outputs(self, outputs, identity, summary):
        config = self.config
        composer = PathComposer(
            config.output_root,
            config.directory,
            config.basename,
            directory_rewrites=config.directory_rewrites,
            basename_rewrites=config.basename_rewrites,
            lineage=LineageResolver(self.store),
        )
        materializer = Materializer(
            identity=identity,
            dry_run=config.flags.dry_run,
            force_overwrite=config.flags.force_overwrite,
            report=summary.errors,
            echo=self.echo,
        )

        # destination -> (physical file id, path) of the first file placed there
        claimed: Dict[Path, Tuple[int, str]] = {}

        for _, group in itertools.groupby(outputs, key=lambda o: o.unit.id):
            unit_outputs = list(group)
            unit = unit_outputs[0].unit
            summary.units += 1

            try:
                placements = composer.compose_unit(unit, unit_outputs)
            except UnitSkipped as e:
                summary.units_skipped += 1
                summary.errors.add(e, unit.id)
                continue

            for placement in placements:
                file = placement.output.file
                destination = placement.destination
                try:
                    physical = identity.resolve(file, True)
                    owner = claimed.setdefault(destination, (physical.id, file.path))
                    if owner[0] != physical.id:
                        summary.errors.add(SkippedConflict(
                            f"{destination} is already the destination of {owner[1]} in this run; "
                            f"not linking {file.path}", destination,
                        ), unit.id, file.path)
                        summary.outcomes[Outcome.SKIPPED_CONFLICT] += 1
                        continue
                    outcome = materializer.materialize(file, destination, unit.id)
                except BrokenChain as e:
                    summary.errors.add(e, unit.id, file.path)
                    continue
                except OSError as e:
                    summary.errors.add(FileAccessError(f"could not link {destination}: {e}"),
                                       unit.id, file.path)
                    continue
                summary.outcomes[outcome] += 1

    def _log_summary(self, summary: RunSummary):
        logger.info("=" * 60)
        logger.info("Selected %d file(s) across %d unit(s); %d unit(s) skipped",
                    summary.selected, summary.units, summary.units_skipped)
        for outcome in Outcome:
            if summary.outcomes[outcome]:
                logger.info("  %-18s %d", outcome.value, summary.outcomes[outcome])
        if summary.errors:
            logger.warning("%d problem(s) reported:", len(summary.errors))
            for message in summary.errors.messages():
                logger.warning("  %s", message)
        logger.info("=" * 60)
