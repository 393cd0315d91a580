"""Centralized error taxonomy for output materialization.

Configuration errors are fatal and raised before any side effect. Everything
else is scoped to one unit, one file or one lineage lookup: it is collected,
reported, and the pass continues.
"""

from enum import Enum


class FailurePolicy(str, Enum):
    """How a run reacts to a collected per-unit or per-file error.

    CONTINUE (default): report the error, skip the unit/file, keep going
    FAIL_FAST: re-raise the first collected error and stop the run
    """
    CONTINUE = "continue"
    FAIL_FAST = "fail_fast"


class StageLinkError(RuntimeError):
    """Base class for every error raised by ``stagelink``."""
    pass


class ConfigValidationError(StageLinkError, ValueError):
    """Invalid or conflicting configuration. Always fatal, raised up front."""
    pass


class ContractViolation(StageLinkError):
    """Raised when a provenance-graph invariant is violated.

    This indicates a bug in whatever populated the graph (or in this
    package), not bad user input.
    """
    pass


# -----------------------------------------------------------------------------
# Per-unit errors: the unit is skipped, the run continues
# -----------------------------------------------------------------------------

class UnitSkipped(StageLinkError):
    """A destination could not be computed for an input unit."""

    def __init__(self, message: str, unit_id=None):
        super().__init__(message)
        self.unit_id = unit_id


class NoCommonAncestor(UnitSkipped):
    """The unit's source paths share no directory below the filesystem root."""
    pass


class AmbiguousInput(UnitSkipped):
    """Basename-from-input needs exactly one source path."""
    pass


class MissingMetadataKeys(UnitSkipped):
    """No selected file carries every requested metadata key."""
    pass


class UnsafeDestination(UnitSkipped):
    """The composed destination is empty or escapes the output root."""
    pass


# -----------------------------------------------------------------------------
# Lineage lookups: fatal to the lookup, not to the batch
# -----------------------------------------------------------------------------

class LineageError(StageLinkError):
    """A provenance query could not be answered completely."""
    pass


class BrokenChain(LineageError):
    """A file indirection points at a missing record, or loops."""
    pass


class IncompleteLineage(LineageError):
    """A stage record expected in a lineage chain does not exist."""
    pass


# -----------------------------------------------------------------------------
# Per-file
# -----------------------------------------------------------------------------

class SkippedConflict(StageLinkError):
    """The destination is occupied by something we must not replace."""

    def __init__(self, message: str, destination=None):
        super().__init__(message)
        self.destination = destination


class FileAccessError(StageLinkError):
    """Reading a selected file or writing its link failed on the filesystem."""
    pass
