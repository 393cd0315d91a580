"""Selection of the output files of a pipeline instance.

Walks the instance's input units once, picks stage records and output kinds
through a stage filter, keeps files whose metadata matches a filter, and
emits each physical file at most once per selection pass.
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, NamedTuple, Optional, Sequence, Set

from stagelink.contracts import BrokenChain, ConfigValidationError, ErrorReport
from stagelink.core.models import File, InputUnit, PipelineInstance, StageMember, metadata_matches
from stagelink.pipeline.identity import FileIdentityResolver

__all__ = ['OutputSelector', 'SelectedOutput', 'SelectionStats',
           'parse_stage_filter', 'compile_metadata_filter']

logger = logging.getLogger(__name__)


class SelectedOutput(NamedTuple):
    unit: InputUnit
    member: StageMember
    kind: str
    file: File


@dataclass
class SelectionStats:
    units: int = 0
    considered: int = 0
    matched: int = 0
    duplicates: int = 0
    missing: int = 0
    emitted: int = 0


def parse_stage_filter(instance: PipelineInstance,
                       entries: Sequence[str]) -> Dict[int, Optional[Set[str]]]:
    """Turn stage filter entries into allowed kinds per stage position.

    Each entry names a stage by name or 1-based position, optionally
    restricted to one output kind with ``"stage|kind"``. ``None`` as the
    kind set means every kind of that stage is allowed. No entries at all
    allows everything.

    Raises
    ------
    ConfigValidationError
        If an entry matches no stage member of ``instance``.

    Examples
    --------
    >>> parse_stage_filter(inst, ["bwa_map|bam", "3"])
    {2: {'bam'}, 3: None}
    """
    if not entries:
        return {sm.position: None for sm in instance.members}

    allowed: Dict[int, Optional[Set[str]]] = {}
    for entry in entries:
        stage, _, kind = str(entry).partition("|")
        stage, kind = stage.strip(), kind.strip()
        if stage.isdigit():
            members = [sm for sm in instance.members if sm.position == int(stage)]
        else:
            members = [sm for sm in instance.members if sm.stage_name == stage]
        if not members:
            raise ConfigValidationError(
                f"stage filter '{entry}' matches no stage of instance {instance.name}"
            )
        for sm in members:
            if not kind:
                allowed[sm.position] = None
            elif sm.position not in allowed:
                allowed[sm.position] = {kind}
            elif allowed[sm.position] is not None:
                allowed[sm.position].add(kind)
    return allowed


def compile_metadata_filter(metadata_filter: Optional[Mapping[str, str]]) -> Dict[str, re.Pattern]:
    """Compile ``key -> pattern`` filters, failing fast on a bad pattern."""
    compiled = {}
    for key, pattern in (metadata_filter or {}).items():
        try:
            compiled[key] = re.compile(pattern)
        except re.error as e:
            raise ConfigValidationError(
                f"metadata filter for '{key}' is not a valid regex: {pattern!r} ({e})"
            ) from e
    return compiled


class OutputSelector:
    """Enumerates the selected output files of a pipeline instance.

    **Deduplication:**

    Retry-tolerant stages can leave several input units referencing the
    same physical output. Files are keyed by their fully resolved identity
    and each identity is emitted once per ``select()`` call; the seen-set
    is local to that call.

    **Existence:**

    A file whose cached size is 0 has its disk stats refreshed before it is
    judged missing; missing files are skipped unless ``include_missing`` is
    set (the lineage report lists them with no size).

    Example::

        selector = OutputSelector(store)
        for out in selector.select(instance, stage_filter=["bwa_map|bam"]):
            print(out.unit.id, out.member.stage_name, out.kind, out.file.path)
    """

    def __init__(self, graph, identity: Optional[FileIdentityResolver] = None,
                 report: Optional[ErrorReport] = None, page_size: int = 500,
                 include_missing: bool = False):
        self.graph = graph
        self.identity = identity or FileIdentityResolver(graph)
        self.report = report if report is not None else ErrorReport()
        self.page_size = page_size
        self.include_missing = include_missing
        self.stats = SelectionStats()

    def select(self, instance: PipelineInstance,
               include_withdrawn: bool = False,
               stage_filter: Sequence[str] = (),
               metadata_filter: Optional[Mapping[str, str]] = None,
               include_incomplete: bool = False) -> Iterator[SelectedOutput]:
        """Yield ``SelectedOutput`` tuples in unit, stage, kind, file order.

        Parameters
        ----------
        instance : PipelineInstance
            Instance whose outputs are selected.
        include_withdrawn : bool
            Also walk units marked withdrawn.
        stage_filter : sequence of str
            Stage/kind selection, see ``parse_stage_filter``.
        metadata_filter : mapping of str -> str
            Every key must be present in a file's metadata with a value
            containing a match for the pattern.
        include_incomplete : bool
            Also use stage records not marked complete.

        Raises
        ------
        ConfigValidationError
            Before anything is yielded, if the stage or metadata filter is
            invalid for this instance.
        """
        allowed = parse_stage_filter(instance, stage_filter)
        compiled = compile_metadata_filter(metadata_filter)
        return self._select(instance, include_withdrawn, allowed, compiled, include_incomplete)

    def _select(self, instance, include_withdrawn, allowed, compiled, include_incomplete):
        self.stats = SelectionStats()
        seen: Set[int] = set()
        members = sorted((sm for sm in instance.members if sm.position in allowed),
                         key=lambda sm: sm.position)

        for unit in self.graph.list_input_units(instance, include_withdrawn, self.page_size):
            self.stats.units += 1
            considered = matched = 0

            for member in members:
                record = self.graph.get_stage_record(instance.id, unit.id, member.position,
                                                     include_incomplete=include_incomplete)
                if record is None:
                    continue
                kinds = allowed[member.position]

                for kind, files in record.outputs.items():
                    if kinds is not None and kind not in kinds:
                        continue
                    for file in files:
                        considered += 1
                        if not metadata_matches(file.metadata, compiled):
                            continue
                        matched += 1
                        if self._accept(unit, file, seen):
                            self.stats.emitted += 1
                            yield SelectedOutput(unit, member, kind, file)

            self.stats.considered += considered
            self.stats.matched += matched
            if compiled and considered and not matched:
                logger.info(f"Unit {unit.id}: metadata filter matched 0/{considered} file(s)")
            else:
                logger.debug(f"Unit {unit.id}: {matched}/{considered} file(s) matched")

        logger.info(
            f"Selected {self.stats.emitted} file(s) from {self.stats.units} unit(s) of "
            f"{instance.name} ({self.stats.duplicates} duplicate, {self.stats.missing} missing)"
        )

    def _accept(self, unit: InputUnit, file: File, seen: Set[int]) -> bool:
        try:
            physical = self.identity.resolve(file, follow_symlink_indirection=True)
        except BrokenChain as e:
            self.report.add(e, unit.id, file.path)
            return False

        if physical.id in seen:
            self.stats.duplicates += 1
            logger.debug(f"Unit {unit.id}: {file.path} already selected, skipping")
            return False

        if physical.size == 0 or not physical.exists:
            physical.update_stats_from_disk()
        if not physical.exists:
            self.stats.missing += 1
            if not self.include_missing:
                logger.debug(f"Unit {unit.id}: {physical.path} not on disk, skipping")
                return False

        seen.add(physical.id)
        return True
