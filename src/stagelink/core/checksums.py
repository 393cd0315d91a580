"""MD5 helpers for file verification and hashed directory layouts."""

import hashlib
import logging
from pathlib import Path
from typing import List

from stagelink.core.models import File

logger = logging.getLogger(__name__)

_BLOCK_SIZE = 1024 * 1024


def file_md5(path) -> str:
    """Hex MD5 digest of a file's content, read in 1 MiB blocks."""
    digest = hashlib.md5()
    with open(Path(path), "rb") as fh:
        for block in iter(lambda: fh.read(_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def ensure_md5(file: File) -> str:
    """Return the file's checksum, computing and caching it if unknown."""
    if file.md5 is None:
        file.md5 = file_md5(file.path)
        logger.debug(f"Computed md5 for {file.path}: {file.md5}")
    return file.md5


def verify_md5(file: File, md5: str) -> bool:
    """Check a file's content against an expected digest.

    On a match the digest is recorded on the File; on a mismatch nothing
    changes.
    """
    actual = file_md5(file.path)
    if actual == md5:
        file.md5 = md5
        return True
    logger.warning(f"md5 mismatch for {file.path}: expected {md5}, got {actual}")
    return False


def hashed_dirs(text: str, levels: int = 4) -> List[str]:
    """First ``levels`` hex characters of md5(text), one per directory level.

    >>> hashed_dirs("abc", 2)
    ['9', '0']
    """
    if levels < 1:
        raise ValueError("levels must be >= 1")
    return list(hashlib.md5(text.encode()).hexdigest()[:levels])
