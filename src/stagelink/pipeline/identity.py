"""Resolution of file records through recorded move/replace indirections."""

import logging

from stagelink.contracts import BrokenChain
from stagelink.core.models import File

__all__ = ['FileIdentityResolver']

logger = logging.getLogger(__name__)


class FileIdentityResolver:
    """Maps a File to the canonical File it now lives as.

    When a file is moved, its old record keeps pointing at the new one
    (``File.moved_to``). Resolution walks those links either one hop or to
    the end of the chain. A hop to a missing record, or a loop, raises
    ``BrokenChain``; the chain is never silently truncated.
    """

    def __init__(self, graph):
        """
        Parameters
        ----------
        graph : ProvenanceStore
            Anything providing ``get_file(file_id)``.
        """
        self.graph = graph

    def resolve(self, file: File, follow_symlink_indirection: bool = True) -> File:
        """Resolve ``file`` through its indirection chain.

        Parameters
        ----------
        file : File
            Starting record.
        follow_symlink_indirection : bool
            If False, stop after the first hop (or return ``file`` if it has
            no indirection). If True, follow to the terminal record.

        Returns
        -------
        File
            The replacement record. Resolving a terminal File returns it.

        Raises
        ------
        BrokenChain
            If a hop references a file id with no record, or the chain loops.
        """
        seen = {file.id}
        current = file
        while current.moved_to is not None:
            target = self.graph.get_file(current.moved_to)
            if target is None:
                raise BrokenChain(
                    f"file {current.id} ({current.path}) was moved to missing "
                    f"file record {current.moved_to}"
                )
            if target.id in seen:
                raise BrokenChain(
                    f"indirection cycle starting at file {file.id} ({file.path})"
                )
            seen.add(target.id)
            current = target
            if not follow_symlink_indirection:
                break

        if current is not file:
            logger.debug(f"Resolved file {file.id} -> {current.id} ({current.path})")
        return current

    def physical_path(self, file: File) -> str:
        """Path of the terminal record in ``file``'s chain."""
        return self.resolve(file, True).path
