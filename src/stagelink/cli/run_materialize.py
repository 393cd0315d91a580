"""Core materialization run logic.

This module contains the actual run function, separated from argument parsing.
Scripts are thin wrappers; this is the real implementation.
"""

import sys
import json
import logging
import argparse
from typing import Any, Callable, Dict, Optional

from stagelink.cli.common import load_user_config_dict, parse_key_values
from stagelink.contracts import ConfigValidationError, StageLinkError
from stagelink.pipeline.orchestrator import MaterializationOrchestrator
from stagelink.schemas import resolve_config, ParamConfig, UserConfig, CLIConfig

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_CONFIG = 2


def run_materialization(
    user_config_path: Optional[str] = None,
    cli_args: Optional[Dict[str, Any]] = None,
    verbose: bool = False,
    echo: Optional[Callable[[str], None]] = print,
) -> int:
    """Resolve configuration and run one materialization pass.

    This is the core execution function. It:
    1. Loads and resolves configuration (Param < User < CLI)
    2. Opens the provenance store and validates the selection
    3. Runs the orchestrator (select, compose, link)
    4. Returns the exit status

    Parameters
    ----------
    user_config_path : str, optional
        Path to user config file (Python file with CONFIG dict).
    cli_args : dict, optional
        CLI overrides, keyed like ``CLIConfig`` fields. ``None`` values are
        ignored.
    verbose : bool, optional
        If True, enable DEBUG logging and print the resolved config.
    echo : callable, optional
        Receives print-only and dry-run rows.

    Returns
    -------
    int
        0 on success, 1 when errors were collected and ``strict_exit`` is
        set. Configuration errors are raised, not returned.

    Raises
    ------
    ConfigValidationError
        If configuration is invalid. Nothing has been written.
    StageLinkError
        The first per-unit or per-file error when ``fail_fast`` is set.

    Examples
    --------
    ::

        run_materialization(
            "config/links.py",
            cli_args={"instance": "exome_mapping", "dry_run": True},
        )
    """
    param_cfg = ParamConfig()  # Expert defaults

    user_cfg_dict = load_user_config_dict(user_config_path) if user_config_path else {}
    try:
        user_cfg = UserConfig.model_validate(user_cfg_dict)
    except ValueError as e:
        raise ConfigValidationError(f"{user_config_path}: {e}") from e

    cli_args = dict(cli_args or {})
    if verbose and cli_args.get("log_level") is None:
        cli_args["log_level"] = "DEBUG"

    # Filter None values
    cli_dict = {k: v for k, v in cli_args.items() if v is not None}
    try:
        cli_cfg = CLIConfig.model_validate(cli_dict) if cli_dict else CLIConfig()
    except ValueError as e:
        raise ConfigValidationError(str(e)) from e

    # Resolve to internal config (Param < User < CLI)
    config = resolve_config(param_cfg, user_cfg, cli_cfg)

    if verbose:
        print("\nFull Internal Configuration:", file=sys.stderr)
        print(json.dumps(config.model_dump(mode="json"), indent=2), file=sys.stderr)

    orchestrator = MaterializationOrchestrator(config, echo=echo)
    summary = orchestrator.start()
    return summary.exit_code(config.flags.strict_exit)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stagelink-materialize",
        description="Materialize the outputs of a pipeline instance as a tree of symlinks",
    )
    parser.add_argument("config", nargs="?", help="Path to user config file (CONFIG dict)")
    parser.add_argument("--database", help="Provenance database (SQLite file)")
    parser.add_argument("--instance", help="Pipeline instance name or id")
    parser.add_argument("--output-root", help="Root directory of the link tree")

    select = parser.add_argument_group("selection")
    select.add_argument("--stage", dest="stages", action="append",
                        help="Stage name or position, optionally 'stage|kind' (repeatable)")
    select.add_argument("--filter", dest="filters", action="append", metavar="KEY=REGEX",
                        help="Keep files whose metadata KEY matches REGEX (repeatable)")
    select.add_argument("--include-withdrawn", action="store_true", default=None,
                        help="Also select outputs of withdrawn input units")
    select.add_argument("--include-incomplete", action="store_true", default=None,
                        help="Also use stage records not marked complete")

    directory = parser.add_argument_group("directory mode").add_mutually_exclusive_group()
    directory.add_argument("--mirror-input", action="store_true", default=None,
                           help="Mirror the common directory of each unit's input paths")
    directory.add_argument("--group-by", nargs="+", metavar="KEY",
                           help="One directory level per metadata KEY")
    parser.add_argument("--hash-levels", type=int,
                        help="Prefix --group-by directories with N hashed levels")

    basename = parser.add_argument_group("basename mode").add_mutually_exclusive_group()
    basename.add_argument("--as-output", action="store_true", default=None,
                          help="Keep each output file's own basename")
    basename.add_argument("--as-input", nargs="?", const="", metavar="TOKEN",
                          help="Name after the unit's single input, with optional TOKEN")
    basename.add_argument("--from-metadata", metavar="TEMPLATE",
                          help="Fill %%key%% placeholders from file metadata")

    rewrite = parser.add_argument_group("rewrites")
    rewrite.add_argument("--dir-rewrite", dest="directory_rewrites", action="append",
                         metavar="SEARCH=>REPLACE", help="Regex rewrite of directory segments")
    rewrite.add_argument("--name-rewrite", dest="basename_rewrites", action="append",
                         metavar="SEARCH=>REPLACE", help="Regex rewrite of basenames")

    behaviour = parser.add_argument_group("behaviour")
    behaviour.add_argument("--dry-run", action="store_true", default=None,
                           help="Report links that would be created; change nothing")
    behaviour.add_argument("--print-only", action="store_true", default=None,
                           help="Print selected file paths; compute no destinations")
    behaviour.add_argument("--include-checksum", action="store_true", default=None,
                           help="Add md5 to --print-only output")
    behaviour.add_argument("--force-overwrite", action="store_true", default=None,
                           help="Replace symlinks that point elsewhere")
    behaviour.add_argument("--fail-fast", action="store_true", default=None,
                           help="Abort on the first skipped unit or file")
    behaviour.add_argument("--strict-exit", action="store_true", default=None,
                           help="Exit 1 when any unit or file was skipped")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    instance = args.instance
    if instance is not None and instance.isdigit():
        instance = int(instance)

    try:
        cli_args = {
            "database": args.database,
            "instance": instance,
            "output_root": args.output_root,
            "stages": args.stages,
            "metadata_filter": parse_key_values(args.filters),
            "include_withdrawn": args.include_withdrawn,
            "include_incomplete": args.include_incomplete,
            "mirror_input": args.mirror_input,
            "group_by": args.group_by,
            "hash_levels": args.hash_levels,
            "as_output": args.as_output,
            "as_input": args.as_input,
            "from_metadata": args.from_metadata,
            "directory_rewrites": args.directory_rewrites,
            "basename_rewrites": args.basename_rewrites,
            "dry_run": args.dry_run,
            "print_only": args.print_only,
            "include_checksum": args.include_checksum,
            "force_overwrite": args.force_overwrite,
            "fail_fast": args.fail_fast,
            "strict_exit": args.strict_exit,
        }
        return run_materialization(args.config, cli_args, verbose=args.verbose)
    except (ConfigValidationError, FileNotFoundError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except StageLinkError as e:
        print(f"Aborted: {e}", file=sys.stderr)
        return EXIT_ERRORS
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_ERRORS


if __name__ == "__main__":
    sys.exit(main())
