"""Executable detection for the external rewrite tools (ollama, llama.cpp).

File: src/rewrite_engine/engine/tool_detection.py

Purpose
- Resolve the tool binary from configuration, PATH, or well-known install
  locations.
- Return structured metadata (path, version) for diagnostics.

Security
- Detection is offline (no network calls); only runs --version locally.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from rewrite_engine.engine.errors import ConfigurationError
from rewrite_engine.engine.models import ToolBackend

# Canonical binary names for each tool backend
TOOL_BINARY_NAMES: Final[dict[ToolBackend, str]] = {
    ToolBackend.OLLAMA: "ollama",
    ToolBackend.LLAMA_CPP: "llama-cli",
}

_POSIX_INSTALL_DIRS: Final[tuple[str, ...]] = (
    "/usr/local/bin",
    "/usr/bin",
    "/opt/homebrew/bin",
)


@dataclass(frozen=True, slots=True)
class ToolBackendInfo:
    """Metadata about a detected tool backend."""

    backend: ToolBackend
    binary_path: str
    version: str | None


def candidate_paths(backend: ToolBackend) -> list[Path]:
    """Well-known install locations checked after PATH lookup, in order."""
    binary = TOOL_BINARY_NAMES[backend]
    candidates: list[Path] = []
    if os.name == "nt":
        exe = f"{binary}.exe"
        if backend is ToolBackend.OLLAMA:
            local_app_data = os.environ.get("LOCALAPPDATA")
            if local_app_data:
                candidates.append(Path(local_app_data) / "Programs" / "Ollama" / exe)
            candidates.append(Path(r"C:\Program Files\Ollama") / exe)
        return candidates
    candidates.extend(Path(directory) / binary for directory in _POSIX_INSTALL_DIRS)
    return candidates


def resolve_tool_executable(backend: ToolBackend, configured: str | None = None) -> str:
    """Return an absolute path to the tool binary or raise ``ConfigurationError``."""
    if configured is not None and configured.strip():
        explicit = configured.strip()
        candidate = Path(explicit).expanduser()
        if candidate.is_file():
            return str(candidate.resolve())
        found = shutil.which(explicit)
        if found is not None:
            return found
        raise ConfigurationError(f"configured tool executable not found: {explicit}")

    binary = TOOL_BINARY_NAMES[backend]
    found = shutil.which(binary)
    if found is not None:
        return found

    for candidate in candidate_paths(backend):
        if candidate.is_file():
            return str(candidate)

    raise ConfigurationError(
        f"{binary} not found on PATH or in standard install locations. "
        f"Install it or set tool.executable in the config."
    )


def detect_tool_backend(
    backend: ToolBackend, configured: str | None = None
) -> ToolBackendInfo | None:
    """Detect a single tool backend.

    Returns ToolBackendInfo if the binary resolves, or None.
    The version field may be None if --version fails or times out.
    """
    try:
        path = resolve_tool_executable(backend, configured)
    except ConfigurationError:
        return None

    version = _get_version(path)
    return ToolBackendInfo(backend=backend, binary_path=path, version=version)


def _get_version(binary_path: str) -> str | None:
    """Run binary --version and extract the version string.

    Returns None on any failure (timeout, non-zero exit, parse error).
    """
    try:
        result = subprocess.run(
            [binary_path, "--version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip().splitlines()[0]
        return None
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return None


__all__ = [
    "TOOL_BINARY_NAMES",
    "ToolBackendInfo",
    "candidate_paths",
    "detect_tool_backend",
    "resolve_tool_executable",
]
