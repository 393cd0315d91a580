"""Error taxonomy and contract enforcement.

Key principle:
- Pydantic validates config correctness (ConfigValidationError)
- Contracts validate provenance-graph correctness (ContractViolation)
- Per-unit and per-file problems are collected, never fatal on their own
"""

from stagelink.contracts.failure import (
    FailurePolicy,
    StageLinkError,
    ConfigValidationError,
    ContractViolation,
    UnitSkipped,
    NoCommonAncestor,
    AmbiguousInput,
    MissingMetadataKeys,
    UnsafeDestination,
    LineageError,
    BrokenChain,
    IncompleteLineage,
    SkippedConflict,
    FileAccessError,
)
from stagelink.contracts.base import require
from stagelink.contracts.collector import ErrorReport, ReportedError

__all__ = [
    "FailurePolicy",
    "StageLinkError",
    "ConfigValidationError",
    "ContractViolation",
    "UnitSkipped",
    "NoCommonAncestor",
    "AmbiguousInput",
    "MissingMetadataKeys",
    "UnsafeDestination",
    "LineageError",
    "BrokenChain",
    "IncompleteLineage",
    "SkippedConflict",
    "FileAccessError",
    "require",
    "ErrorReport",
    "ReportedError",
]
