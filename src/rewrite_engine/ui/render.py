"""Plain-text rendering for the rewrite-engine CLI.

File: src/rewrite_engine/ui/render.py

Purpose
- Human-readable output for ``presets``, ``doctor`` and ``rewrite --verbose``.

Functional requirements
- Rewritten text itself is printed by the command, never through the renderer,
  so stdout stays pipe-friendly.
"""

from __future__ import annotations

import sys
from itertools import zip_longest
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence


class CLIRenderer:
    """Deterministic line-oriented output to ``stream`` (stdout by default)."""

    def __init__(self, *, verbose: bool = False, stream: TextIO | None = None) -> None:
        self.verbose = verbose
        self._stream = stream

    def heading(self, text: str) -> None:
        self._emit(text)

    def kv(self, key: str, value: object) -> None:
        self._emit(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._emit(line)

    def check(self, passed: bool, label: str) -> None:
        """One diagnostic line, ``OK`` or ``FAIL``."""
        self._emit(f"  {'OK' if passed else 'FAIL'}  {label}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Left-aligned columns separated by two spaces; nothing for an empty table."""
        if not rows:
            return
        grid = [list(headers), *[[str(cell) for cell in row] for row in rows]]
        widths = [
            max(len(cell) for cell in column)
            for column in zip_longest(*grid, fillvalue="")
        ][: len(headers)]

        if title:
            self._emit(f"\n{title}")
        self._emit("  " + _join_cells(list(headers), widths))
        self._emit("  " + "  ".join("-" * width for width in widths))
        for row in grid[1:]:
            self._emit("  " + _join_cells(row, widths))

    def _emit(self, line: str) -> None:
        print(line, file=self._stream or sys.stdout)


def _join_cells(cells: Sequence[str], widths: Sequence[int]) -> str:
    padded = [
        cell.ljust(width) for cell, width in zip_longest(cells[: len(widths)], widths, fillvalue="")
    ]
    return "  ".join(padded).rstrip()


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
