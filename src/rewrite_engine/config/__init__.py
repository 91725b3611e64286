"""Layered ``rewrite.toml`` configuration: defaults, file, ``REWRITE_*`` env, CLI overrides."""

from rewrite_engine.config.loader import ConfigLoadError, dump_effective_config, load_config
from rewrite_engine.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    RewriteConfig,
    default_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "RewriteConfig",
    "default_config",
    "dump_effective_config",
    "load_config",
    "validate_config",
]
