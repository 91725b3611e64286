"""Shared fixtures: throwaway executables standing in for ollama / llama-cli."""

from __future__ import annotations

import asyncio
import sys
import textwrap
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

import psutil
import pytest

ToolFactory = Callable[..., Path]


@pytest.fixture
def make_tool(tmp_path: Path) -> ToolFactory:
    """Write an executable Python script and return its path."""

    def _make(body: str, *, name: str = "fake-tool") -> Path:
        path = tmp_path / name
        source = f"#!{sys.executable}\n" + textwrap.dedent(body).lstrip("\n")
        path.write_text(source, encoding="utf-8")
        path.chmod(0o755)
        return path

    return _make


@pytest.fixture
def echo_tool(make_tool: ToolFactory) -> Path:
    """Upper-cases the text section of the prompt it reads on stdin."""
    return make_tool(
        """
        import sys
        data = sys.stdin.read()
        _, _, text = data.partition("Text to rewrite:\\n")
        sys.stdout.write(text.upper() + "\\n")
        """,
        name="echo-tool",
    )


def wait_until_gone(pid: int, timeout: float = 3.0) -> bool:
    """True once ``pid`` no longer exists (zombies count as gone)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.05)
    return False


async def read_pid(path: Path, timeout: float = 5.0) -> int:
    """Poll ``path`` until a tool script has written its pid into it."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            raw = path.read_text(encoding="utf-8").strip()
            if raw:
                return int(raw)
        await asyncio.sleep(0.02)
    raise AssertionError(f"pid file never written: {path}")


@pytest.fixture
def wait_gone() -> Callable[..., bool]:
    return wait_until_gone


@pytest.fixture
def pid_from_file() -> Callable[..., Awaitable[int]]:
    return read_pid
