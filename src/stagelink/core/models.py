"""Records of the provenance graph.

These are plain read-side records built by the provenance store. Only
``File`` is mutable: its disk stats and checksum are refreshed lazily.
"""

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple


class SourceKind(str, Enum):
    """Where a pipeline instance gets its input units from."""
    PATHS = "paths"
    PIPELINE_OUTPUTS = "pipeline_outputs"


@dataclass
class File:
    """A file known to the provenance graph.

    ``size`` of 0 means "unknown or empty"; call ``update_stats_from_disk``
    before treating such a file as missing. ``moved_to`` is the id of the
    File this one was replaced by, if any.
    """
    id: int
    path: str
    size: int = 0
    exists: bool = False
    md5: Optional[str] = None
    moved_to: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def basename(self) -> str:
        return os.path.basename(self.path)

    def update_stats_from_disk(self) -> None:
        """Refresh ``exists`` and ``size`` from the filesystem."""
        try:
            st = Path(self.path).stat()
        except OSError:
            self.exists = False
            self.size = 0
            return
        self.exists = True
        self.size = st.st_size


@dataclass(frozen=True)
class StageMember:
    """A stage bound to its 1-based position within a pipeline instance."""
    instance_id: int
    position: int
    stage_name: str

    def describe(self) -> str:
        return f"{self.position}:{self.stage_name}"


@dataclass(frozen=True)
class UpstreamFeed:
    """A contributing upstream instance and the stage position it feeds from."""
    instance_id: int
    stage_position: int


@dataclass(frozen=True)
class Source:
    id: int
    kind: SourceKind
    upstream: Tuple[UpstreamFeed, ...] = ()

    @property
    def is_derived(self) -> bool:
        return self.kind == SourceKind.PIPELINE_OUTPUTS

    def feed_for(self, instance_id: int) -> Optional[UpstreamFeed]:
        for feed in self.upstream:
            if feed.instance_id == instance_id:
                return feed
        return None


@dataclass(frozen=True)
class PipelineInstance:
    """A configured run of an ordered sequence of stages over one source."""
    id: int
    name: str
    source_id: int
    members: Tuple[StageMember, ...] = ()

    def member(self, position: int) -> Optional[StageMember]:
        for sm in self.members:
            if sm.position == position:
                return sm
        return None

    def members_up_to(self, position: int) -> List[StageMember]:
        return sorted((sm for sm in self.members if sm.position <= position),
                      key=lambda sm: sm.position)


@dataclass(frozen=True)
class InputUnit:
    """One unit of work: an ordered list of original input paths."""
    id: int
    source_id: int
    paths: Tuple[str, ...] = ()
    withdrawn: bool = False


@dataclass(frozen=True)
class UnitLink:
    """Parent/child relation between input units of different instances."""
    id: int
    parent_unit_id: int
    child_unit_id: int
    upstream_instance_id: int


@dataclass(frozen=True)
class StageRecord:
    """One stage having run for one (instance, unit) pair."""
    id: int
    instance_id: int
    unit_id: int
    position: int
    complete: bool
    outputs: Dict[str, List[File]] = field(default_factory=dict, hash=False, compare=False)
    command_summary: Optional[str] = None

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.instance_id, self.unit_id, self.position)


def metadata_matches(metadata: Dict[str, str], filters: Dict[str, re.Pattern]) -> bool:
    """True if, for every filter key, the metadata value contains a match.

    Files missing a filtered key never match. An empty filter matches all.
    """
    for key, pattern in filters.items():
        value = metadata.get(key)
        if value is None or not pattern.search(value):
            return False
    return True
