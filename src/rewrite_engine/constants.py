"""Stable constants shared across the rewrite engine."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Process lifecycle budgets.
PROCESS_TIMEOUT_SECONDS: Final[float] = 120.0
PROCESS_DISPOSAL_TIMEOUT_SECONDS: Final[float] = 2.0

# Captured output ceilings (bytes).
MAX_STDOUT_BYTES: Final[int] = 1024 * 1024
MAX_STDERR_BYTES: Final[int] = 64 * 1024

# Longest stderr excerpt surfaced in error messages (characters).
STDERR_EXCERPT_CHARS: Final[int] = 2000

# Generation parameter ranges.
TEMPERATURE_MIN: Final[float] = 0.0
TEMPERATURE_MAX: Final[float] = 1.5
DEFAULT_TEMPERATURE: Final[float] = 0.7
MAX_TOKENS_MIN: Final[int] = 128
MAX_TOKENS_MAX: Final[int] = 4096
DEFAULT_MAX_TOKENS: Final[int] = 1024

DEFAULT_OLLAMA_MODEL: Final[str] = "gemma3:4b"
DEFAULT_ACTIVE_PRESET: Final[str] = "Improve"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_ACTIVE_PRESET",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_OLLAMA_MODEL",
    "DEFAULT_TEMPERATURE",
    "MAX_STDERR_BYTES",
    "MAX_STDOUT_BYTES",
    "MAX_TOKENS_MAX",
    "MAX_TOKENS_MIN",
    "PROCESS_DISPOSAL_TIMEOUT_SECONDS",
    "PROCESS_TIMEOUT_SECONDS",
    "STDERR_EXCERPT_CHARS",
    "TEMPERATURE_MAX",
    "TEMPERATURE_MIN",
]
