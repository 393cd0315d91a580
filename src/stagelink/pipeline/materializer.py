"""Idempotent symlink creation with a strict no-clobber policy."""

import os
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from stagelink.contracts import ErrorReport, SkippedConflict
from stagelink.core.models import File
from stagelink.pipeline.identity import FileIdentityResolver

__all__ = ['Materializer', 'Outcome']

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    CREATED = "created"
    ALREADY_CORRECT = "already_correct"
    SKIPPED_CONFLICT = "skipped_conflict"
    DRY_RUN_REPORTED = "dry_run_reported"


class Materializer:
    """Places symlinks to physical files at computed destinations.

    **Policy:**

    1. The link target is the source File resolved to the end of its
       indirection chain, so links never point at other links.
    2. Missing destination: create the link (or only report it in dry-run).
    3. Destination is a symlink to the intended target, or to the
       unresolved File's path: nothing to do.
    4. Destination is a symlink elsewhere: replaced only with
       ``force_overwrite``, otherwise a ``SkippedConflict`` is reported.
    5. Destination is anything else (regular file, directory): always a
       ``SkippedConflict``. Real data is never overwritten.

    A second run over the same state therefore makes no changes.

    The check-then-act sequence is not atomic; a concurrent process creating
    the same link shows up as a ``SkippedConflict`` or ``AlreadyCorrect``.
    """

    def __init__(self, graph=None, identity: Optional[FileIdentityResolver] = None,
                 dry_run: bool = False, force_overwrite: bool = False,
                 report: Optional[ErrorReport] = None, echo=None):
        """
        Parameters
        ----------
        graph : ProvenanceStore, optional
            Used to build a FileIdentityResolver if none is given.
        dry_run : bool
            Report what would be created; change nothing.
        force_overwrite : bool
            Replace symlinks pointing elsewhere. Never applies to real files.
        report : ErrorReport, optional
            Where conflicts are recorded.
        echo : callable, optional
            Called with ``"source\\tdestination"`` lines in dry-run mode.
        """
        if identity is None:
            identity = FileIdentityResolver(graph)
        self.identity = identity
        self.dry_run = dry_run
        self.force_overwrite = force_overwrite
        self.report = report if report is not None else ErrorReport()
        self.echo = echo

    def materialize(self, source: File, destination, unit_id=None) -> Outcome:
        """Make ``destination`` a symlink to ``source``'s physical file.

        Raises
        ------
        BrokenChain
            If ``source`` cannot be resolved to a physical file.
        """
        destination = Path(destination)
        physical = self.identity.resolve(source, follow_symlink_indirection=True)
        target = physical.path

        if not os.path.lexists(destination):
            if self.dry_run:
                return self._dry_run_report(target, destination)
            self._link(target, destination)
            return Outcome.CREATED

        if destination.is_symlink():
            current = os.readlink(destination)
            if self._same_target(current, destination, (target, source.path)):
                logger.debug(f"Already linked: {destination} -> {current}")
                return Outcome.ALREADY_CORRECT
            if self.force_overwrite:
                if self.dry_run:
                    return self._dry_run_report(target, destination)
                destination.unlink()
                self._link(target, destination)
                logger.info(f"Replaced link {destination} (was -> {current})")
                return Outcome.CREATED
            return self._conflict(
                f"{destination} already links to {current}, not {target}; "
                f"use force_overwrite to replace it",
                destination, unit_id,
            )

        kind = "directory" if destination.is_dir() else "file"
        return self._conflict(
            f"{destination} exists as a real {kind}; refusing to replace it with a link to {target}",
            destination, unit_id,
        )

    @staticmethod
    def _same_target(current: str, destination: Path, acceptable) -> bool:
        if not os.path.isabs(current):
            current = os.path.join(os.path.dirname(str(destination)), current)
        current = os.path.normpath(current)
        return any(current == os.path.normpath(str(p)) for p in acceptable)

    def _link(self, target: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(target, destination)
        logger.debug(f"Linked {destination} -> {target}")

    def _dry_run_report(self, target: str, destination: Path) -> Outcome:
        logger.info(f"[dry-run] {destination} -> {target}")
        if self.echo is not None:
            self.echo(f"{target}\t{destination}")
        return Outcome.DRY_RUN_REPORTED

    def _conflict(self, message: str, destination: Path, unit_id) -> Outcome:
        self.report.add(SkippedConflict(message, destination), unit_id, str(destination))
        return Outcome.SKIPPED_CONFLICT
