"""
rewrite-engine — runtime config loader.

File: src/rewrite_engine/config/loader.py

Purpose
- Build the effective config from four layers, lowest first: built-in
  defaults, ``rewrite.toml``, ``REWRITE_*`` environment variables, and
  ``--set`` overrides from the CLI.

Functional requirements
- Every layer is validated against the schema; generation values are clamped.
- Environment variables are derived from the default config tree
  (``generation.max_tokens`` -> ``REWRITE_GENERATION_MAX_TOKENS``) and coerced
  to the type of the default value.
- Relative paths are resolved against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from rewrite_engine.config.schema import (
    EXECUTABLE_FIELDS,
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "rewrite.toml"
ENV_PREFIX: Final[str] = "REWRITE_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Config file unreadable, or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    ``config_path`` defaults to ``./rewrite.toml``, which may be absent. An
    explicitly named file must exist. ``cli_overrides`` keys are dotted paths
    such as ``"tool.executable"``.
    """
    explicit = config_path is not None
    path = Path(config_path).expanduser() if explicit else Path.cwd() / DEFAULT_CONFIG_FILE
    path = path.resolve()

    effective = assert_valid_config(merge_config(default_config(), _read_toml(path, explicit)))
    env_layer = _env_layer(effective, os.environ if environ is None else environ)
    cli_layer = _cli_layer(cli_overrides or {})
    effective = assert_valid_config(merge_config(merge_config(effective, env_layer), cli_layer))
    return normalize_paths(effective, base_dir=path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make path-valued fields absolute relative to ``base_dir``.

    Empty strings mean "unset" and stay empty. ``tool.executable`` is only
    treated as a path when it contains a separator or ``~``; a bare name such as
    ``ollama`` is looked up on ``PATH`` later.
    """
    result = merge_config({}, config)
    for field_path in PATH_FIELDS:
        _rewrite_path(result, field_path, base_dir)
    for field_path in EXECUTABLE_FIELDS:
        raw = _lookup(result, field_path)
        if isinstance(raw, str) and ("/" in raw or "\\" in raw or raw.startswith("~")):
            _rewrite_path(result, field_path, base_dir)
    return result


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Stable single-line JSON rendering, printed by ``doctor --verbose``."""
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def env_var_name(path: ConfigPath) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from None
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for path, current in _leaves(config):
        name = env_var_name(path)
        raw = environ.get(name)
        if raw is None:
            continue
        coerce = _COERCERS.get(type(current))
        if coerce is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(path)} {exc}") from None
        _assign(layer, path, value)
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, value in overrides.items():
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _assign(layer, path, value)
    return layer


def _leaves(
    tree: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key in sorted(tree):
        value = tree[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _to_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _to_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


# Keyed on the exact type of the default value; bool is not treated as int.
_COERCERS: Final[dict[type, Callable[[str], object]]] = {
    str: str,
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
}


def _assign(tree: dict[str, Any], path: ConfigPath, value: object) -> None:
    node = tree
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[path[-1]] = value


def _lookup(tree: Mapping[str, object], path: ConfigPath) -> object | None:
    node: object = tree
    for part in path:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _rewrite_path(tree: dict[str, Any], path: ConfigPath, base_dir: Path) -> None:
    raw = _lookup(tree, path)
    if not isinstance(raw, str) or not raw.strip():
        return
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    _assign(tree, path, Path(os.path.normpath(candidate)).as_posix())


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_var_name",
    "load_config",
    "normalize_paths",
]
