"""Destination paths for selected output files.

A destination is ``output_root / <directory segments> / <basename>``. The
directory comes from one directory mode (mirror the unit's input layout, or
group by metadata) and the basename from one basename mode (keep the
output's name, derive it from the single input, or fill a metadata
template). Both can be post-processed by ordered regex rewrites.

Everything here is pure: nothing touches the filesystem.
"""

import os
import re
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence

from stagelink.contracts import (
    AmbiguousInput,
    MissingMetadataKeys,
    NoCommonAncestor,
    UnsafeDestination,
)
from stagelink.core.checksums import hashed_dirs
from stagelink.core.models import File, InputUnit
from stagelink.pipeline.selector import SelectedOutput
from stagelink.schemas.modes import (
    AsInput,
    AsOutput,
    FromMetadata,
    GroupByMetadata,
    MirrorInput,
    RewriteRule,
)

__all__ = [
    'PathComposer',
    'Placement',
    'apply_rewrites',
    'common_ancestor',
    'detect_suffix',
    'sanitize_segment',
]

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w#]")
_BACKREF = re.compile(r"\$([1-9])")
_PLACEHOLDER = re.compile(r"%([^%]+)%")

_GZ_SUFFIX = re.compile(r"\.((?:[^./]+\.)?gz)$")
_BAI_SUFFIX = re.compile(r"\.(bam\.bai)$")
_LAST_SUFFIX = re.compile(r"\.([^./]+)$")


# =============================================================================
# Pure helpers
# =============================================================================

def common_ancestor(paths: Sequence[str]) -> PurePosixPath:
    """Deepest directory shared by every path's parent directory.

    Relative paths give a relative ancestor.

    Examples
    --------
    >>> common_ancestor(["/a/b/c/x", "/a/b/d/y"])
    PurePosixPath('/a/b')
    >>> common_ancestor(["/a/b/c/x"])
    PurePosixPath('/a/b/c')
    >>> common_ancestor(["data/s1/x.fq", "data/s2/y.fq"])
    PurePosixPath('data')

    Raises
    ------
    NoCommonAncestor
        If there are no paths, absolute and relative paths are mixed, or the
        parents share nothing below the root.
    """
    if not paths:
        raise NoCommonAncestor("no source paths to take a common ancestor of")

    pure = [PurePosixPath(os.path.normpath(str(p))) for p in paths]
    if len({p.is_absolute() for p in pure}) > 1:
        raise NoCommonAncestor(
            f"source paths mix absolute and relative paths: {', '.join(map(str, paths))}"
        )
    root = pure[0].parts[:1] if pure[0].is_absolute() else ()
    split = [p.parent.parts[len(root):] for p in pure]
    shortest = min(len(parts) for parts in split)

    common: List[str] = []
    for depth in range(shortest):
        segment = split[0][depth]
        if all(parts[depth] == segment for parts in split):
            common.append(segment)
        else:
            break

    if not common:
        raise NoCommonAncestor(
            f"source paths share no common directory: {', '.join(map(str, paths))}"
        )
    return PurePosixPath(*root, *common)


def sanitize_segment(value: str) -> str:
    """Replace every character that is not a word character or ``#`` with ``_``."""
    return _UNSAFE_CHARS.sub("_", str(value))


def apply_rewrites(text: str, rules: Sequence[RewriteRule]) -> str:
    """Apply ordered regex rewrites to ``text``.

    Each rule replaces the first match of ``search`` with ``replacement``
    taken literally, then substitutes ``$1``..``$9`` in the result with the
    capture groups of that match. Rules that don't match leave the text
    unchanged.

    Examples
    --------
    >>> apply_rewrites("sample_raw", [RewriteRule(search=r"(\\w+)_raw", replacement="$1_clean")])
    'sample_clean'
    """
    for rule in rules:
        pattern = re.compile(rule.search)
        match = pattern.search(text)
        if match is None:
            continue
        groups = match.groups()
        text = pattern.sub(lambda _m: rule.replacement, text, count=1)
        text = _BACKREF.sub(lambda m: _group(groups, int(m.group(1))), text)
    return text


def _group(groups, index: int) -> str:
    if index <= len(groups) and groups[index - 1] is not None:
        return groups[index - 1]
    return ""


def detect_suffix(basename: str) -> str:
    """Suffix of a basename, without the leading dot.

    ``foo.vcf.gz`` -> ``vcf.gz``; ``foo.bam.bai`` -> ``bam.bai``;
    ``foo.txt`` -> ``txt``; no dot at all -> ``""``.
    """
    for pattern in (_GZ_SUFFIX, _BAI_SUFFIX, _LAST_SUFFIX):
        match = pattern.search(basename)
        if match:
            return match.group(1)
    return ""


def first_with_keys(files: Sequence[File], keys: Sequence[str]) -> Optional[File]:
    """First file (in order) whose metadata has every key."""
    for file in files:
        if all(k in file.metadata for k in keys):
            return file
    return None


def _with_suffix(stem: str, suffix: str) -> str:
    return f"{stem}.{suffix}" if suffix else stem


@dataclass(frozen=True)
class Placement:
    """Where one selected output goes."""
    output: SelectedOutput
    destination: Path


# =============================================================================
# Composer
# =============================================================================

class PathComposer:
    """Computes destinations for the selected outputs of one input unit.

    Modes are tagged variants from ``stagelink.schemas.modes``; each variant
    has exactly one handler below. A unit whose directory cannot be
    computed raises a ``UnitSkipped`` subclass; the caller reports it and
    moves on to the next unit.

    Example::

        composer = PathComposer("/links", GroupByMetadata(keys=["sample"]), AsOutput())
        for placement in composer.compose_unit(unit, outputs):
            print(placement.output.file.path, "->", placement.destination)
    """

    def __init__(self, output_root, directory, basename,
                 directory_rewrites: Sequence[RewriteRule] = (),
                 basename_rewrites: Sequence[RewriteRule] = (),
                 lineage=None):
        """
        Parameters
        ----------
        output_root : str or Path
            Root all destinations are confined to.
        directory : MirrorInput or GroupByMetadata
        basename : AsOutput, AsInput or FromMetadata
        directory_rewrites, basename_rewrites : sequence of RewriteRule
        lineage : LineageResolver, optional
            Used to find original input paths of derived units. Without it
            only a unit's own paths are used.
        """
        self.output_root = Path(os.path.normpath(os.path.abspath(str(output_root))))
        self.directory = directory
        self.basename = basename
        self.directory_rewrites = tuple(directory_rewrites)
        self.basename_rewrites = tuple(basename_rewrites)
        self.lineage = lineage

        self._directory_handlers: Dict[type, Callable] = {
            MirrorInput: self._directory_mirror_input,
            GroupByMetadata: self._directory_group_by_metadata,
        }
        self._basename_handlers: Dict[type, Callable] = {
            AsOutput: self._basename_as_output,
            AsInput: self._basename_as_input,
            FromMetadata: self._basename_from_metadata,
        }

    def compose_unit(self, unit: InputUnit,
                     outputs: Sequence[SelectedOutput]) -> List[Placement]:
        """Destinations for every output of ``unit``, in the given order.

        Raises
        ------
        NoCommonAncestor, AmbiguousInput, MissingMetadataKeys, UnsafeDestination
            The whole unit is skipped.
        """
        files = [o.file for o in outputs]
        try:
            directory = self.compose_directory(unit, files)
            placements = []
            for output in outputs:
                name = self.compose_basename(unit, output.file, files)
                placements.append(Placement(output, self._confine(directory / name)))
        except (NoCommonAncestor, AmbiguousInput, MissingMetadataKeys, UnsafeDestination) as e:
            e.unit_id = unit.id
            raise
        return placements

    def compose_directory(self, unit: InputUnit, files: Sequence[File]) -> Path:
        segments = self._directory_handlers[type(self.directory)](unit, files)
        rewritten: List[str] = []
        for segment in segments:
            # a rewrite may introduce separators: they nest
            rewritten.extend(p for p in apply_rewrites(segment, self.directory_rewrites).split("/") if p)
        for segment in rewritten:
            if segment in (".", ".."):
                raise UnsafeDestination(
                    f"unit {unit.id}: directory segment {segment!r} would leave {self.output_root}",
                    unit.id,
                )
        return self.output_root.joinpath(*rewritten)

    def compose_basename(self, unit: InputUnit, file: File, files: Sequence[File]) -> str:
        name = self._basename_handlers[type(self.basename)](unit, file, files)
        name = apply_rewrites(name, self.basename_rewrites).replace("/", "_")
        if name in ("", ".", ".."):
            raise UnsafeDestination(
                f"unit {unit.id}: empty or invalid basename {name!r} for {file.path}", unit.id
            )
        return name

    def _confine(self, destination: Path) -> Path:
        normalized = Path(os.path.normpath(str(destination)))
        if normalized == self.output_root or self.output_root not in normalized.parents:
            raise UnsafeDestination(f"destination {destination} is outside {self.output_root}")
        return normalized

    def _source_paths(self, unit: InputUnit) -> List[str]:
        if self.lineage is not None:
            return self.lineage.source_paths(unit)
        return list(unit.paths)

    # -------------------------------------------------------------------------
    # Directory handlers
    # -------------------------------------------------------------------------

    def _directory_mirror_input(self, unit: InputUnit, files: Sequence[File]) -> List[str]:
        paths = self._source_paths(unit)
        try:
            ancestor = common_ancestor(paths)
        except NoCommonAncestor as e:
            raise NoCommonAncestor(f"unit {unit.id}: {e}", unit.id) from e
        if ancestor.is_absolute():
            return list(ancestor.parts[1:])
        return list(ancestor.parts)

    def _directory_group_by_metadata(self, unit: InputUnit, files: Sequence[File]) -> List[str]:
        keys = self.directory.keys
        chosen = first_with_keys(files, keys)
        if chosen is None:
            raise MissingMetadataKeys(
                f"unit {unit.id}: no selected file has all metadata keys {keys}", unit.id
            )
        segments = [sanitize_segment(chosen.metadata[k]) for k in keys]
        if self.directory.hash_levels:
            segments = hashed_dirs("/".join(segments), self.directory.hash_levels) + segments
        return segments

    # -------------------------------------------------------------------------
    # Basename handlers
    # -------------------------------------------------------------------------

    def _basename_as_output(self, unit: InputUnit, file: File, files: Sequence[File]) -> str:
        return file.basename

    def _basename_as_input(self, unit: InputUnit, file: File, files: Sequence[File]) -> str:
        paths = self._source_paths(unit)
        if len(paths) != 1:
            raise AmbiguousInput(
                f"unit {unit.id}: basename from input needs exactly one source path, "
                f"found {len(paths)}",
                unit.id,
            )
        stem = os.path.splitext(os.path.basename(paths[0]))[0]
        if self.basename.token:
            stem = f"{stem}.{self.basename.token}"
        return _with_suffix(stem, detect_suffix(file.basename))

    def _basename_from_metadata(self, unit: InputUnit, file: File, files: Sequence[File]) -> str:
        keys = self.basename.keys
        candidates = [file] + [f for f in files if f is not file]
        chosen = first_with_keys(candidates, keys)
        if chosen is None:
            raise MissingMetadataKeys(
                f"unit {unit.id}: no selected file has all template keys {keys}", unit.id
            )
        stem = _PLACEHOLDER.sub(lambda m: sanitize_segment(chosen.metadata[m.group(1)]),
                                self.basename.template)
        return _with_suffix(stem, detect_suffix(file.basename))
