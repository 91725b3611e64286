"""UI package exports for the CLI and its plain-text renderer."""

from rewrite_engine.ui.cli import CLIError, build_parser, run_cli
from rewrite_engine.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
