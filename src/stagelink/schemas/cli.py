"""CLIConfig: Command-line overrides.

Highest priority in config resolution. Built from argparse results by
``stagelink.cli.run_materialize``.
"""

from typing import Literal, Optional, Union
from stagelink.schemas.modes import ModeChoice, RewriteRule


class CLIConfig(ModeChoice):
    """Command-line configuration overrides.

    Usage
    -----
        cli_cfg = CLIConfig(
            instance="exome_mapping",
            group_by=["sample"],
            as_output=True,
            dry_run=True,
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    database: Optional[str] = None
    output_root: Optional[str] = None
    instance: Optional[Union[int, str]] = None

    stages: Optional[list[str]] = None
    metadata_filter: Optional[dict[str, str]] = None
    include_withdrawn: Optional[bool] = None
    include_incomplete: Optional[bool] = None

    directory_rewrites: Optional[list[RewriteRule]] = None
    basename_rewrites: Optional[list[RewriteRule]] = None

    dry_run: Optional[bool] = None
    print_only: Optional[bool] = None
    include_checksum: Optional[bool] = None
    force_overwrite: Optional[bool] = None
    fail_fast: Optional[bool] = None
    strict_exit: Optional[bool] = None
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = self.mode_overrides()

        if self.output_root is not None:
            overrides["output_root"] = str(self.output_root)

        if self.database is not None:
            overrides["store"] = {"database": str(self.database)}

        selection = {}
        if self.instance is not None:
            selection["instance"] = self.instance
        if self.stages:
            selection["stages"] = list(self.stages)
        if self.metadata_filter:
            selection["metadata_filter"] = dict(self.metadata_filter)
        for name in ("include_withdrawn", "include_incomplete"):
            value = getattr(self, name)
            if value is not None:
                selection[name] = value
        if selection:
            overrides["selection"] = selection

        if self.directory_rewrites:
            overrides["directory_rewrites"] = [r.model_dump() for r in self.directory_rewrites]
        if self.basename_rewrites:
            overrides["basename_rewrites"] = [r.model_dump() for r in self.basename_rewrites]

        flags = {}
        for name in ("dry_run", "print_only", "include_checksum", "force_overwrite",
                     "fail_fast", "strict_exit"):
            value = getattr(self, name)
            if value is not None:
                flags[name] = value
        if flags:
            overrides["flags"] = flags

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
