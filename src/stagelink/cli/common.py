"""Helpers shared by the command-line entry points."""

import importlib.util
from pathlib import Path
from typing import Dict, Optional, Sequence

from stagelink.contracts import ConfigValidationError


def load_user_config_dict(config_path: str) -> dict:
    """Load user config dict from Python file.

    Returns the raw dict before Pydantic validation.

    Parameters
    ----------
    config_path : str
        Path to user config Python file containing a CONFIG dict.

    Returns
    -------
    dict
        Raw user configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ConfigValidationError
        If no CONFIG dict found in file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    spec = importlib.util.spec_from_file_location("config_module", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    # Find CONFIG dict
    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ConfigValidationError(f"No CONFIG dict found in {path}")


def parse_key_values(pairs: Optional[Sequence[str]]) -> Optional[Dict[str, str]]:
    """``["sample=^NA1", "lane=1"]`` -> ``{"sample": "^NA1", "lane": "1"}``."""
    if not pairs:
        return None
    parsed = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigValidationError(f"expected key=regex, got {pair!r}")
        parsed[key.strip()] = value
    return parsed
