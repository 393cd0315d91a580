"""Pydantic configuration schemas for materialization runs.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
CLIConfig : class
    Command-line overrides
"""

from stagelink.schemas.resolve import resolve_config
from stagelink.schemas.internal import InternalConfig
from stagelink.schemas.param import ParamConfig
from stagelink.schemas.user import UserConfig
from stagelink.schemas.cli import CLIConfig
from stagelink.schemas.modes import (
    AsInput,
    AsOutput,
    FromMetadata,
    GroupByMetadata,
    MirrorInput,
    RewriteRule,
)

__all__ = [
    'resolve_config',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
    'CLIConfig',
    'AsInput',
    'AsOutput',
    'FromMetadata',
    'GroupByMetadata',
    'MirrorInput',
    'RewriteRule',
]
