"""
rewrite-engine — configuration schema and validation.

File: src/rewrite_engine/config/schema.py

Purpose
- Built-in defaults for ``rewrite.toml`` and strict validation of any layer
  merged on top of them.

Functional requirements
- Report every problem at once, each with a dotted field path.
- Unknown and missing fields are errors; sections are closed.
- Out-of-range generation values are clamped, never rejected.
- Backend/delivery combinations the tool cannot accept are rejected here so the
  CLI fails before anything is spawned.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from rewrite_engine.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_ACTIVE_PRESET,
    DEFAULT_MAX_TOKENS,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_TEMPERATURE,
)
from rewrite_engine.engine.models import clamp_max_tokens, clamp_temperature

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

BACKEND_VALUES: Final[tuple[str, ...]] = ("ollama", "llama_cpp")
DELIVERY_VALUES: Final[tuple[str, ...]] = ("auto", "stdin", "file", "argument")
LOG_LEVEL_VALUES: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Resolved against the config file's directory by the loader.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("tool", "model_path"),
    ("prompts", "library"),
    ("observability", "log_dir"),
)

# Resolved only when the value names a path rather than a bare command.
EXECUTABLE_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("tool", "executable"),)


class MetaConfig(TypedDict):
    schema_version: int


class ToolConfig(TypedDict):
    backend: Literal["ollama", "llama_cpp"]
    executable: str
    model: str
    model_path: str
    delivery: Literal["auto", "stdin", "file", "argument"]


class GenerationConfig(TypedDict):
    temperature: float
    max_tokens: int


class PromptsConfig(TypedDict):
    active_preset: str
    library: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_text: bool


class RewriteConfig(TypedDict):
    meta: MetaConfig
    tool: ToolConfig
    generation: GenerationConfig
    prompts: PromptsConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[RewriteConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "tool": {
        "backend": "ollama",
        "executable": "",
        "model": DEFAULT_OLLAMA_MODEL,
        "model_path": "",
        "delivery": "auto",
    },
    "generation": {
        "temperature": DEFAULT_TEMPERATURE,
        "max_tokens": DEFAULT_MAX_TOKENS,
    },
    "prompts": {
        "active_preset": DEFAULT_ACTIVE_PRESET,
        "library": "",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "redact_text": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """``config`` holds the normalized payload, or ``None`` when ``issues`` is non-empty."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <unknown>"))


class _Invalid(ValueError):
    """A single field failed to parse; the message becomes the issue text."""


FieldParser = Callable[[object], Any]


def _type_name(value: object) -> str:
    return type(value).__name__


def _text(*, required: bool = False, fallback: str | None = None) -> FieldParser:
    def parse(value: object) -> str:
        if not isinstance(value, str):
            raise _Invalid(f"expected string, got {_type_name(value)}")
        stripped = value.strip()
        if "\x00" in stripped:
            raise _Invalid("must not contain NUL bytes")
        if not stripped:
            if required:
                raise _Invalid("must not be empty")
            if fallback is not None:
                return fallback
        return stripped

    return parse


def _choice(values: tuple[str, ...], *, fold_case: bool = False) -> FieldParser:
    def parse(value: object) -> str:
        choice = _text(required=True)(value)
        if fold_case:
            choice = choice.upper()
        if choice not in values:
            expected = ", ".join(sorted(values))
            raise _Invalid(f"invalid value {choice!r}; expected one of: {expected}")
        return choice

    return parse


def _boolean(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Invalid(f"expected boolean, got {_type_name(value)}")
    return value


def _integer(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Invalid(f"expected integer, got {_type_name(value)}")
    return value


def _number(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Invalid(f"expected number, got {_type_name(value)}")
    if not math.isfinite(value):
        raise _Invalid("must be finite")
    return float(value)


def _schema_version(value: object) -> int:
    version = _integer(value)
    if version != ConfigSchemaVersion:
        raise _Invalid(migration_guidance(version))
    return version


_SECTIONS: Final[dict[str, dict[str, FieldParser]]] = {
    "meta": {"schema_version": _schema_version},
    "tool": {
        "backend": _choice(BACKEND_VALUES),
        "delivery": _choice(DELIVERY_VALUES),
        "executable": _text(),
        "model": _text(fallback=DEFAULT_OLLAMA_MODEL),
        "model_path": _text(),
    },
    "generation": {
        "temperature": lambda value: clamp_temperature(_number(value)),
        "max_tokens": lambda value: clamp_max_tokens(_integer(value)),
    },
    "prompts": {
        "active_preset": _text(fallback=DEFAULT_ACTIVE_PRESET),
        "library": _text(),
    },
    "observability": {
        "log_level": _choice(LOG_LEVEL_VALUES, fold_case=True),
        "log_dir": _text(required=True),
        "log_to_stdout": _boolean,
        "redact_text": _boolean,
    },
}

# Deliveries each backend cannot accept.
_UNSUPPORTED_DELIVERY: Final[dict[str, tuple[str, str]]] = {
    "ollama": ("file", "ollama backend supports stdin or argument delivery"),
    "llama_cpp": ("stdin", "llama_cpp backend supports file or argument delivery"),
}


def default_config() -> RewriteConfig:
    """Fresh deep copy of the built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade rewrite.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the rewrite-engine runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; neither input is mutated."""
    merged = {key: _copied(value) for key, value in base.items()}
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _copied(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    if not isinstance(config, Mapping):
        issue = ConfigValidationIssue("<root>", f"expected object, got {_type_name(config)}")
        return ConfigValidationResult(config=None, issues=(issue,))

    issues: list[ConfigValidationIssue] = []
    _check_keys(config, _SECTIONS, "", issues)

    normalized: dict[str, Any] = {}
    for name in sorted(_SECTIONS):
        if name not in config:
            continue
        section = config[name]
        if not isinstance(section, Mapping):
            issues.append(ConfigValidationIssue(name, f"expected object, got {_type_name(section)}"))
            continue
        normalized[name] = _validate_section(name, section, issues)

    tool = normalized.get("tool", {})
    unsupported = _UNSUPPORTED_DELIVERY.get(tool.get("backend", ""))
    if unsupported is not None and tool.get("delivery") == unsupported[0]:
        issues.append(ConfigValidationIssue("tool.delivery", unsupported[1]))

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return the normalized config or raise ``ConfigValidationError``."""
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_section(
    name: str, section: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    fields = _SECTIONS[name]
    _check_keys(section, fields, name, issues)
    out: dict[str, Any] = {}
    for key in sorted(fields):
        if key not in section:
            continue
        try:
            out[key] = fields[key](section[key])
        except _Invalid as exc:
            issues.append(ConfigValidationIssue(f"{name}.{key}", str(exc)))
    return out


def _check_keys(
    payload: Mapping[str, object],
    expected: Mapping[str, object],
    prefix: str,
    issues: list[ConfigValidationIssue],
) -> None:
    def path(key: object) -> str:
        return f"{prefix}.{key}" if prefix else str(key)

    for key in sorted(payload, key=str):
        if key not in expected:
            issues.append(ConfigValidationIssue(path(key), "unknown field"))
    for key in sorted(expected):
        if key not in payload:
            issues.append(ConfigValidationIssue(path(key), "missing required field"))


def _copied(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _copied(item) for key, item in value.items()}
    return copy.deepcopy(value)


__all__ = [
    "BACKEND_VALUES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DELIVERY_VALUES",
    "EXECUTABLE_FIELDS",
    "LOG_LEVEL_VALUES",
    "PATH_FIELDS",
    "RewriteConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
