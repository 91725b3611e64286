"""
rewrite-engine — filesystem utilities

File: src/rewrite_engine/utils/fs.py

Purpose
- Materialize and remove the temporary input artifacts used to hand prompts
  to external tools.

Functional requirements
- Artifacts are created with owner-only permissions in the system temp dir
  (or an explicit directory) and are fully written before the path is returned.
- A partially written artifact is removed before the error propagates.

Non-functional requirements
- Standard library only and cross-platform behavior where feasible.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "remove_artifact",
    "write_input_artifact",
]


def write_input_artifact(
    text: str,
    *,
    prefix: str = "rewrite-",
    suffix: str = ".txt",
    directory: PathLike | None = None,
    encoding: str = "utf-8",
) -> Path:
    """
    Write ``text`` to a fresh temporary file and return its path.

    The write strategy is:
    1. create the file with ``mkstemp`` (mode 0600),
    2. write + flush + fsync file data,
    3. on any failure, unlink the file before re-raising.
    """

    fd, temp_name = tempfile.mkstemp(
        prefix=prefix,
        suffix=suffix,
        dir=None if directory is None else str(directory),
    )
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as file_handle:
            file_handle.write(text)
            file_handle.flush()
            os.fsync(file_handle.fileno())
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise

    return temp_path


def remove_artifact(path: PathLike) -> bool:
    """Delete ``path`` if it exists. Returns ``True`` when a file was removed."""

    target = Path(path)
    if target.is_dir() and not target.is_symlink():
        raise IsADirectoryError(f"refusing to remove directory artifact: {target!s}")
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    return True
