"""Core records and persistence for the provenance graph."""

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
)
from stagelink.core.provenance_store import ProvenanceStore

__all__ = [
    'File',
    'InputUnit',
    'PipelineInstance',
    'Source',
    'SourceKind',
    'StageMember',
    'StageRecord',
    'UnitLink',
    'UpstreamFeed',
    'ProvenanceStore',
]
