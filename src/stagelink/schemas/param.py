"""ParamConfig: Expert defaults for materialization runs.

Every tunable parameter has its default here. Runtime code never reads
ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional, Union
from pydantic import Field
from stagelink.schemas.base import StageLinkBaseModel
from stagelink.schemas.modes import RewriteRule


class SelectionConfig(StageLinkBaseModel):
    """Which outputs of which pipeline instance to select."""
    instance: Optional[Union[int, str]] = None
    stages: list[str] = Field(default_factory=list)
    metadata_filter: dict[str, str] = Field(default_factory=dict)
    include_withdrawn: bool = False
    include_incomplete: bool = False


class StoreConfig(StageLinkBaseModel):
    """Provenance store access."""
    database: Optional[str] = None
    page_size: int = Field(500, ge=1, description="Input units fetched per query")


class RunFlagsConfig(StageLinkBaseModel):
    """Behaviour switches of a materialization run."""
    dry_run: bool = False
    print_only: bool = False
    include_checksum: bool = False
    force_overwrite: bool = False
    fail_fast: bool = False
    strict_exit: bool = False


class LoggingConfig(StageLinkBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_to_file: bool = True


class ParamConfig(StageLinkBaseModel):
    """Complete expert configuration with all defaults.

    Directory and basename modes have no default: a run must choose one of
    each (unless it only prints).

    Usage
    -----
    Base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    output_root: Optional[str] = None
    store: StoreConfig = Field(default_factory=StoreConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    directory_rewrites: list[RewriteRule] = Field(default_factory=list)
    basename_rewrites: list[RewriteRule] = Field(default_factory=list)
    flags: RunFlagsConfig = Field(default_factory=RunFlagsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
