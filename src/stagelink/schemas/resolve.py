"""Configuration resolution and merging logic.

This module provides the single entrypoint for configuration resolution:
resolve_config(). It merges ParamConfig, UserConfig, and CLIConfig in the
correct precedence order and returns a validated InternalConfig.

Precedence (highest to lowest):
1. CLIConfig (command-line overrides)
2. UserConfig (user file)
3. ParamConfig (expert defaults)
"""

from typing import Optional, Union

from pydantic import ValidationError

from stagelink.contracts import ConfigValidationError
from stagelink.schemas.param import ParamConfig
from stagelink.schemas.user import UserConfig
from stagelink.schemas.cli import CLIConfig
from stagelink.schemas.internal import InternalConfig

# Mode variants are replaced wholesale; merging two variants field-by-field
# would mix their parameters.
REPLACE_KEYS = frozenset({"directory", "basename"})


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Deep merge multiple dictionaries.

    Later dictionaries override earlier ones. Nested dictionaries are
    merged recursively, except under ``REPLACE_KEYS``; other values are
    replaced.

    Examples
    --------
    >>> base = {"a": 1, "b": {"c": 2, "d": 3}}
    >>> override = {"b": {"d": 4, "e": 5}, "f": 6}
    >>> deep_merge(base, override)
    {'a': 1, 'b': {'c': 2, 'd': 4, 'e': 5}, 'f': 6}
    """
    result = base.copy()

    for override in overrides:
        for key, value in override.items():
            if (key in result and key not in REPLACE_KEYS
                    and isinstance(result[key], dict) and isinstance(value, dict)):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value

    return result


def _validation_message(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Resolve final runtime configuration from param, user, and CLI configs.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Expert configuration with complete defaults. Required.
    user_cfg : dict or UserConfig, optional
        User configuration with overrides.
    cli_cfg : dict or CLIConfig, optional
        Command-line overrides.

    Returns
    -------
    InternalConfig
        Fully validated, immutable runtime configuration

    Raises
    ------
    ConfigValidationError
        If any layer fails validation, modes conflict or are missing, or
        no pipeline instance was named. Nothing has touched the filesystem
        at this point.

    Examples
    --------
    >>> config = resolve_config(
    ...     ParamConfig(),
    ...     UserConfig(instance="mapping", output_root="/links"),
    ...     CLIConfig(mirror_input=True, as_output=True),
    ... )
    >>> config.directory.mode
    'mirror_input'
    """
    try:
        param = param_cfg if isinstance(param_cfg, ParamConfig) else ParamConfig.model_validate(param_cfg)

        if user_cfg is None or (isinstance(user_cfg, dict) and not user_cfg):
            user = UserConfig()
        elif not isinstance(user_cfg, UserConfig):
            user = UserConfig.model_validate(user_cfg)
        else:
            user = user_cfg

        if cli_cfg is None or (isinstance(cli_cfg, dict) and not cli_cfg):
            cli = CLIConfig()
        elif not isinstance(cli_cfg, CLIConfig):
            cli = CLIConfig.model_validate(cli_cfg)
        else:
            cli = cli_cfg
    except ValidationError as e:
        raise ConfigValidationError(_validation_message(e)) from e

    merged = deep_merge(param.model_dump(), user.to_internal_overrides(),
                        cli.to_internal_overrides())

    if merged["selection"].get("instance") in (None, ""):
        raise ConfigValidationError("no pipeline instance given (selection.instance)")

    try:
        return InternalConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigValidationError(_validation_message(e)) from e
