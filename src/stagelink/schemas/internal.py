"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully
validated and immutable; every cross-field rule is checked here.
"""

import re
from typing import Literal, Optional, Union
from pydantic import Field, field_validator, model_validator
from stagelink.schemas.base import StageLinkBaseModel
from stagelink.schemas.modes import BasenameMode, DirectoryMode, RewriteRule


class _FrozenModel(StageLinkBaseModel):
    model_config = StageLinkBaseModel.model_config.copy()
    model_config.update({"frozen": True})


class InternalSelectionConfig(_FrozenModel):
    """Runtime selection configuration."""
    instance: Union[int, str]
    stages: list[str]
    metadata_filter: dict[str, str]
    include_withdrawn: bool
    include_incomplete: bool

    @field_validator("instance", mode="before")
    @classmethod
    def numeric_instance_is_an_id(cls, v):
        """A numeric string is an instance id, anything else a name."""
        if isinstance(v, str) and v.strip().isdigit():
            return int(v)
        return v

    @field_validator("metadata_filter")
    @classmethod
    def check_patterns(cls, v: dict[str, str]) -> dict[str, str]:
        for key, pattern in v.items():
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"metadata filter for {key!r} is not a valid regex: {e}") from e
        return v


class InternalStoreConfig(_FrozenModel):
    """Runtime store configuration."""
    database: Optional[str]
    page_size: int = Field(ge=1)


class InternalRunFlagsConfig(_FrozenModel):
    """Runtime behaviour switches."""
    dry_run: bool
    print_only: bool
    include_checksum: bool
    force_overwrite: bool
    fail_fast: bool
    strict_exit: bool


class InternalLoggingConfig(_FrozenModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    log_to_file: bool


class InternalConfig(_FrozenModel):
    """Authoritative runtime configuration.

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.force = config.flags.force_overwrite  # NOT .get()

    Rules
    -----
    - exactly one directory mode and one basename mode, unless print_only
    - output_root is required unless print_only
    """

    output_root: Optional[str]
    store: InternalStoreConfig
    selection: InternalSelectionConfig
    directory: Optional[DirectoryMode] = None
    basename: Optional[BasenameMode] = None
    directory_rewrites: list[RewriteRule]
    basename_rewrites: list[RewriteRule]
    flags: InternalRunFlagsConfig
    logging: InternalLoggingConfig

    @model_validator(mode="after")
    def check_run_is_complete(self):
        if self.flags.print_only:
            return self
        if self.directory is None:
            raise ValueError("choose a directory mode: mirror_input or group_by")
        if self.basename is None:
            raise ValueError("choose a basename mode: as_output, as_input or from_metadata")
        if not self.output_root:
            raise ValueError("output_root is required unless print_only is set")
        return self
