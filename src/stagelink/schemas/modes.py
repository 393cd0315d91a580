"""Directory and basename modes, and regex rewrite rules.

Each mode is one variant of a tagged union discriminated by ``mode``; the
path composer dispatches one handler per variant. ``ModeChoice`` is the
flag-style surface shared by the user file and the command line, where
choosing two modes of the same kind is rejected.
"""

import re
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import ConfigDict, Field, field_validator, model_validator
from stagelink.schemas.base import StageLinkBaseModel


REWRITE_SEPARATOR = "=>"


class RewriteRule(StageLinkBaseModel):
    """A ``search`` regex and its ``replacement`` text.

    The replacement may contain ``$1``..``$9``, filled in from the search
    pattern's capture groups.
    """
    search: str
    replacement: str = ""

    model_config = StageLinkBaseModel.model_config.copy()
    model_config.update({"frozen": True, "str_strip_whitespace": False})

    @model_validator(mode="before")
    @classmethod
    def parse_shorthand(cls, v: Any):
        """Accept ``"search=>replacement"`` strings and 2-item pairs."""
        if isinstance(v, str):
            if REWRITE_SEPARATOR not in v:
                raise ValueError(
                    f"rewrite rule {v!r} must look like 'search{REWRITE_SEPARATOR}replacement'"
                )
            search, replacement = v.split(REWRITE_SEPARATOR, 1)
            return {"search": search, "replacement": replacement}
        if isinstance(v, (list, tuple)):
            if len(v) != 2:
                raise ValueError(f"rewrite rule {v!r} must be a (search, replacement) pair")
            return {"search": v[0], "replacement": v[1]}
        return v

    @field_validator("search")
    @classmethod
    def check_pattern(cls, v: str) -> str:
        if not v:
            raise ValueError("rewrite search pattern must not be empty")
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"rewrite search pattern {v!r} is not a valid regex: {e}") from e
        return v


# =============================================================================
# Directory modes
# =============================================================================

class MirrorInput(StageLinkBaseModel):
    """Destination directory mirrors the deepest common ancestor of the
    unit's source paths."""
    mode: Literal["mirror_input"] = "mirror_input"


class GroupByMetadata(StageLinkBaseModel):
    """One directory level per metadata key, valued from the first selected
    file carrying all keys. ``hash_levels`` > 0 prepends that many hashed
    single-character levels to spread large trees."""
    mode: Literal["group_by_metadata"] = "group_by_metadata"
    keys: list[str] = Field(min_length=1)
    hash_levels: int = Field(0, ge=0, le=32)

    @field_validator("keys")
    @classmethod
    def check_keys(cls, v: list[str]) -> list[str]:
        if any(not k for k in v):
            raise ValueError("metadata keys must not be empty")
        return v


DirectoryMode = Annotated[Union[MirrorInput, GroupByMetadata], Field(discriminator="mode")]


# =============================================================================
# Basename modes
# =============================================================================

_PLACEHOLDER = re.compile(r"%([^%]+)%")


class AsOutput(StageLinkBaseModel):
    """Keep the producer-assigned basename."""
    mode: Literal["as_output"] = "as_output"


class AsInput(StageLinkBaseModel):
    """Basename of the unit's single source path, extension swapped for
    ``token`` plus the output's own suffix."""
    mode: Literal["as_input"] = "as_input"
    token: str = ""


class FromMetadata(StageLinkBaseModel):
    """``%key%`` placeholders filled from metadata, then the output's suffix."""
    mode: Literal["from_metadata"] = "from_metadata"
    template: str

    @field_validator("template")
    @classmethod
    def check_template(cls, v: str) -> str:
        if v.count("%") % 2:
            raise ValueError(f"template {v!r} has an unbalanced '%'")
        if not _PLACEHOLDER.search(v):
            raise ValueError(f"template {v!r} has no %key% placeholder")
        return v

    @property
    def keys(self) -> list[str]:
        keys = []
        for key in _PLACEHOLDER.findall(self.template):
            if key not in keys:
                keys.append(key)
        return keys


BasenameMode = Annotated[Union[AsOutput, AsInput, FromMetadata], Field(discriminator="mode")]


# =============================================================================
# Flag-style mode choice (user file and command line)
# =============================================================================

class ModeChoice(StageLinkBaseModel):
    """Flag-style mode selection; at most one mode of each kind per layer."""

    mirror_input: Optional[bool] = None
    group_by: Optional[list[str]] = None
    hash_levels: Optional[int] = None
    as_output: Optional[bool] = None
    as_input: Optional[str] = None
    from_metadata: Optional[str] = None

    @model_validator(mode="after")
    def check_exclusive_modes(self):
        directory = [n for n in ("mirror_input", "group_by") if getattr(self, n)]
        if len(directory) > 1:
            raise ValueError(f"directory modes are mutually exclusive, got {directory}")
        basename = [n for n in ("as_output", "as_input", "from_metadata")
                    if getattr(self, n) not in (None, False)]
        if len(basename) > 1:
            raise ValueError(f"basename modes are mutually exclusive, got {basename}")
        return self

    def mode_overrides(self) -> dict:
        """Chosen modes as InternalConfig ``directory``/``basename`` dicts."""
        overrides = {}
        if self.mirror_input:
            overrides["directory"] = {"mode": "mirror_input"}
        elif self.group_by:
            directory = {"mode": "group_by_metadata", "keys": list(self.group_by)}
            if self.hash_levels:
                directory["hash_levels"] = self.hash_levels
            overrides["directory"] = directory

        if self.as_output:
            overrides["basename"] = {"mode": "as_output"}
        elif self.as_input is not None:
            overrides["basename"] = {"mode": "as_input", "token": self.as_input}
        elif self.from_metadata is not None:
            overrides["basename"] = {"mode": "from_metadata", "template": self.from_metadata}
        return overrides
