"""Reconstruction of the causal chain of stage records behind an output.

A stage record's lineage is every stage of its own instance up to and
including it, preceded by the full lineage of whatever upstream instance
produced its input unit, recursively across instance boundaries.
"""

import logging
from typing import List, Optional, Set, Tuple

from stagelink.contracts import IncompleteLineage
from stagelink.core.models import InputUnit, PipelineInstance, StageRecord

__all__ = ['LineageResolver']

logger = logging.getLogger(__name__)


class LineageResolver:
    """Walks the provenance graph from a stage record back to its origins.

    Cross-instance linkage is explicit: an input unit of a derived source
    has ``UnitLink`` edges to parent units, and the source records which
    stage position of each upstream instance it consumes. Traversal is a
    plain recursion; the graph is acyclic by construction, and a revisit
    is reported as ``IncompleteLineage`` rather than looped on.

    Example::

        resolver = LineageResolver(store)
        record = store.get_stage_record(instance.id, unit.id, 2)
        for r in resolver.chain(record):
            print(r.instance_id, r.position)
    """

    def __init__(self, graph):
        self.graph = graph

    def chain(self, record: StageRecord) -> List[StageRecord]:
        """Ordered stage records that causally contributed to ``record``.

        Earliest first; ``record`` itself is last. Deterministic: upstream
        links are followed in declaration order and stages in ascending
        position.

        Raises
        ------
        IncompleteLineage
            If any expected stage record (own or upstream) is missing or
            incomplete, or if the instance/unit graph loops.
        """
        return self._chain(record.instance_id, record.unit_id, record.position, set())

    def _chain(self, instance_id: int, unit_id: int, target: int,
               visiting: Set[Tuple[int, int]]) -> List[StageRecord]:
        key = (instance_id, unit_id)
        if key in visiting:
            raise IncompleteLineage(
                f"lineage of unit {unit_id} loops back to instance {instance_id}"
            )
        visiting = visiting | {key}

        instance = self._instance(instance_id)
        result: List[StageRecord] = []

        source = self.graph.get_source(instance.source_id)
        if source is not None and source.is_derived:
            for link in self.graph.get_unit_links(unit_id):
                feed = source.feed_for(link.upstream_instance_id)
                if feed is None:
                    # parent processed by an instance that doesn't feed this one
                    continue
                result.extend(self._chain(link.upstream_instance_id, link.parent_unit_id,
                                          feed.stage_position, visiting))

        members = instance.members_up_to(target)
        if not members or members[-1].position != target:
            raise IncompleteLineage(
                f"instance {instance.name} has no stage at position {target}"
            )
        for member in members:
            record = self.graph.get_stage_record(instance.id, unit_id, member.position)
            if record is None:
                raise IncompleteLineage(
                    f"no complete stage record for instance {instance.name}, "
                    f"unit {unit_id}, stage {member.describe()}"
                )
            result.append(record)

        return result

    def _instance(self, instance_id: int) -> PipelineInstance:
        instance = self.graph.get_instance(instance_id)
        if instance is None:
            raise IncompleteLineage(f"pipeline instance {instance_id} does not exist")
        return instance

    def source_paths(self, unit: InputUnit) -> List[str]:
        """Original input paths of a unit.

        A unit with its own paths returns them. A derived unit without any
        falls back to its parents' source paths, in link order.
        """
        return self._source_paths(unit, set())

    def _source_paths(self, unit: InputUnit, visiting: Set[int]) -> List[str]:
        if unit.paths:
            return list(unit.paths)
        if unit.id in visiting:
            return []
        visiting = visiting | {unit.id}

        paths: List[str] = []
        for link in self.graph.get_unit_links(unit.id):
            parent: Optional[InputUnit] = self.graph.get_unit(link.parent_unit_id)
            if parent is None:
                logger.warning(f"Unit {unit.id} links to missing parent unit {link.parent_unit_id}")
                continue
            for path in self._source_paths(parent, visiting):
                if path not in paths:
                    paths.append(path)
        return paths
