"""Collection of per-unit and per-file errors during one run."""

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

from stagelink.contracts.failure import FailurePolicy, StageLinkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportedError:
    error: StageLinkError
    unit_id: Optional[int] = None
    path: Optional[str] = None

    def describe(self) -> str:
        where = []
        if self.unit_id is not None:
            where.append(f"unit {self.unit_id}")
        if self.path:
            where.append(self.path)
        prefix = f"[{', '.join(where)}] " if where else ""
        return f"{prefix}{type(self.error).__name__}: {self.error}"


class ErrorReport:
    """Errors collected over one run, reported as they arrive.

    Under ``FailurePolicy.FAIL_FAST`` the first added error is re-raised
    after being recorded.
    """

    def __init__(self, policy: FailurePolicy = FailurePolicy.CONTINUE):
        self.policy = FailurePolicy(policy)
        self._errors: List[ReportedError] = []

    def add(self, error: StageLinkError, unit_id: Optional[int] = None,
            path: Optional[str] = None) -> None:
        entry = ReportedError(error, unit_id, path)
        self._errors.append(entry)
        logger.warning("Skipped %s", entry.describe())
        if self.policy == FailurePolicy.FAIL_FAST:
            raise error

    def __len__(self) -> int:
        return len(self._errors)

    def __iter__(self) -> Iterator[ReportedError]:
        return iter(self._errors)

    def __bool__(self) -> bool:
        return bool(self._errors)

    def of_type(self, error_type) -> List[ReportedError]:
        return [e for e in self._errors if isinstance(e.error, error_type)]

    def messages(self) -> List[str]:
        return [e.describe() for e in self._errors]
