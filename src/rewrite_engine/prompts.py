"""
rewrite-engine — rewrite prompt presets.

File: src/rewrite_engine/prompts.py

Purpose
- Named instruction prompts ("presets") handed to the engine with each request.

Functional requirements
- Five built-in presets are always available and never empty.
- Custom presets load from a YAML library (``presets: [{name, system_prompt}]``).
- A missing, empty, or all-invalid library falls back to the built-ins.
- Custom presets may not shadow a built-in name.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final, cast

import structlog
import yaml

from rewrite_engine.constants import DEFAULT_ACTIVE_PRESET

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RewritePreset:
    name: str
    system_prompt: str
    built_in: bool = False


BUILTIN_PRESETS: Final[tuple[RewritePreset, ...]] = (
    RewritePreset(
        name="Improve",
        system_prompt=(
            "Improve the clarity and flow of the following text while keeping its meaning "
            "and tone. Return only the rewritten text."
        ),
        built_in=True,
    ),
    RewritePreset(
        name="Formalize",
        system_prompt=(
            "Rewrite the following text in a formal, professional register. "
            "Return only the rewritten text."
        ),
        built_in=True,
    ),
    RewritePreset(
        name="Simplify",
        system_prompt=(
            "Rewrite the following text using plain, simple language and short sentences. "
            "Return only the rewritten text."
        ),
        built_in=True,
    ),
    RewritePreset(
        name="Summarize",
        system_prompt=(
            "Summarize the following text in a few concise sentences. "
            "Return only the summary."
        ),
        built_in=True,
    ),
    RewritePreset(
        name="Fix Grammar",
        system_prompt=(
            "Correct spelling, grammar and punctuation in the following text without changing "
            "its wording otherwise. Return only the corrected text."
        ),
        built_in=True,
    ),
)


class PresetLibraryError(ValueError):
    """Raised when a preset library file cannot be read or parsed."""


class PresetLibrary:
    """Ordered, name-addressable collection of presets (built-ins first)."""

    def __init__(self, custom: Sequence[RewritePreset] = ()) -> None:
        self._presets: dict[str, RewritePreset] = {preset.name: preset for preset in BUILTIN_PRESETS}
        for preset in custom:
            if preset.name in self._presets:
                logger.warning("preset_name_conflict", preset=preset.name)
                continue
            self._presets[preset.name] = RewritePreset(
                name=preset.name, system_prompt=preset.system_prompt, built_in=False
            )

    @classmethod
    def load(cls, path: str | Path | None) -> PresetLibrary:
        """Load custom presets from ``path``; blank or missing path yields the built-ins."""
        if path is None or not str(path).strip():
            return cls()
        library_path = Path(path)
        if not library_path.exists():
            logger.info("preset_library_missing", path=library_path.as_posix())
            return cls()

        try:
            with library_path.open("r", encoding="utf-8") as handle:
                loaded = cast("object", yaml.safe_load(handle))
        except yaml.YAMLError as exc:
            raise PresetLibraryError(f"{library_path}: invalid YAML ({exc})") from exc
        except OSError as exc:
            raise PresetLibraryError(f"unable to read preset library {library_path}: {exc}") from exc

        return cls(parse_presets(loaded, location=library_path.name))

    def get(self, name: str) -> RewritePreset:
        try:
            return self._presets[name.strip()]
        except KeyError:
            known = ", ".join(self._presets)
            raise KeyError(f"unknown preset {name!r}; known presets: {known}") from None

    def prompt_for(self, name: str | None) -> str:
        """System prompt for ``name``, or for the default preset when unset."""
        return self.get(name or DEFAULT_ACTIVE_PRESET).system_prompt

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._presets)

    def __iter__(self) -> Iterator[RewritePreset]:
        return iter(self._presets.values())

    def __len__(self) -> int:
        return len(self._presets)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._presets


def parse_presets(payload: object, *, location: str = "<presets>") -> list[RewritePreset]:
    """Parse ``{presets: [...]}`` (or a bare list); invalid entries are skipped with a warning."""
    if payload is None:
        return []
    records: object = payload
    if isinstance(payload, Mapping):
        records = payload.get("presets")
    if records is None:
        return []
    if not isinstance(records, list):
        raise PresetLibraryError(
            f"{location}: expected a list of presets, got {type(records).__name__}"
        )

    presets: list[RewritePreset] = []
    for index, item in enumerate(records):
        entry = f"{location}[{index}]"
        if not isinstance(item, Mapping):
            logger.warning("preset_entry_invalid", entry=entry, reason="not a mapping")
            continue
        name = item.get("name")
        system_prompt = item.get("system_prompt")
        if not isinstance(name, str) or not name.strip():
            logger.warning("preset_entry_invalid", entry=entry, reason="missing name")
            continue
        if not isinstance(system_prompt, str) or not system_prompt.strip():
            logger.warning("preset_entry_invalid", entry=entry, reason="empty system_prompt")
            continue
        presets.append(RewritePreset(name=name.strip(), system_prompt=system_prompt.strip()))
    return presets


__all__ = [
    "BUILTIN_PRESETS",
    "PresetLibrary",
    "PresetLibraryError",
    "RewritePreset",
    "parse_presets",
]
