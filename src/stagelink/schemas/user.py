"""UserConfig: Forgiving, minimal user-facing configuration.

Loaded from a Python file defining a ``CONFIG`` dict. Upper-case keys are
accepted as aliases (OUTPUT_ROOT -> output_root, GROUP_BY -> group_by);
users only specify what they want to override from the expert defaults.
"""

from typing import Any, Optional, Union
from pydantic import Field, field_validator
from stagelink.schemas.modes import ModeChoice, RewriteRule


class UserConfig(ModeChoice):
    """User-facing configuration schema.

    Usage
    -----
        user_cfg = UserConfig(
            instance="exome_mapping",
            output_root="/lustre/project/links",
            group_by=["sample", "lane"],
            as_output=True,
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Store and target
    database: Optional[str] = Field(None, alias="DATABASE")
    output_root: Optional[str] = Field(None, alias="OUTPUT_ROOT")
    instance: Optional[Union[int, str]] = Field(None, alias="INSTANCE")
    page_size: Optional[int] = Field(None, alias="PAGE_SIZE")

    # Selection
    stages: Optional[list[str]] = Field(None, alias="STAGES")
    metadata_filter: Optional[dict[str, str]] = Field(None, alias="METADATA_FILTER")
    include_withdrawn: Optional[bool] = Field(None, alias="INCLUDE_WITHDRAWN")
    include_incomplete: Optional[bool] = Field(None, alias="INCLUDE_INCOMPLETE")

    # Modes (flags, at most one of each kind)
    mirror_input: Optional[bool] = Field(None, alias="MIRROR_INPUT")
    group_by: Optional[list[str]] = Field(None, alias="GROUP_BY")
    hash_levels: Optional[int] = Field(None, alias="HASH_LEVELS")
    as_output: Optional[bool] = Field(None, alias="AS_OUTPUT")
    as_input: Optional[str] = Field(None, alias="AS_INPUT")
    from_metadata: Optional[str] = Field(None, alias="FROM_METADATA")

    # Rewrites
    directory_rewrites: Optional[list[RewriteRule]] = Field(None, alias="DIR_REWRITES")
    basename_rewrites: Optional[list[RewriteRule]] = Field(None, alias="NAME_REWRITES")

    # Behaviour
    dry_run: Optional[bool] = Field(None, alias="DRY_RUN")
    include_checksum: Optional[bool] = Field(None, alias="INCLUDE_CHECKSUM")
    force_overwrite: Optional[bool] = Field(None, alias="FORCE_OVERWRITE")
    fail_fast: Optional[bool] = Field(None, alias="FAIL_FAST")
    strict_exit: Optional[bool] = Field(None, alias="STRICT_EXIT")
    log_level: Optional[str] = Field(None, alias="LOG_LEVEL")

    model_config = ModeChoice.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("stages", "group_by", mode="before")
    @classmethod
    def accept_single_string(cls, v: Any):
        """A lone string means a one-item list."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure."""
        overrides = self.mode_overrides()

        if self.output_root is not None:
            overrides["output_root"] = str(self.output_root)

        store = {}
        if self.database is not None:
            store["database"] = str(self.database)
        if self.page_size is not None:
            store["page_size"] = self.page_size
        if store:
            overrides["store"] = store

        selection = {}
        for name in ("instance", "stages", "metadata_filter",
                     "include_withdrawn", "include_incomplete"):
            value = getattr(self, name)
            if value is not None:
                selection[name] = value
        if selection:
            overrides["selection"] = selection

        if self.directory_rewrites is not None:
            overrides["directory_rewrites"] = [r.model_dump() for r in self.directory_rewrites]
        if self.basename_rewrites is not None:
            overrides["basename_rewrites"] = [r.model_dump() for r in self.basename_rewrites]

        flags = {}
        for name in ("dry_run", "include_checksum", "force_overwrite",
                     "fail_fast", "strict_exit"):
            value = getattr(self, name)
            if value is not None:
                flags[name] = value
        if flags:
            overrides["flags"] = flags

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
