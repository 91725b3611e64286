"""
rewrite-engine — process runner

File: src/rewrite_engine/engine/runner.py

Purpose
- Spawn the tool with redirected streams and drain stdout/stderr into bounded
  buffers while it runs.

Functional requirements
- Both readers and the stdin feeder start immediately after spawn and run
  concurrently with each other and with the exit wait; a child that fills an
  undrained pipe would otherwise block forever.
- Output past a buffer's capacity is dropped without stalling the reader.
- The child gets its own process group / session so the whole tree can be
  signalled.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Final

import structlog

from rewrite_engine.constants import MAX_STDERR_BYTES, MAX_STDOUT_BYTES
from rewrite_engine.engine.models import InvocationSpec

_READ_CHUNK_BYTES: Final[int] = 8192
# A "line" longer than this is flushed in pieces.
_MAX_LINE_BYTES: Final[int] = 64 * 1024

logger = structlog.get_logger(__name__)


class BoundedBuffer:
    """Byte buffer that keeps at most ``capacity`` bytes and drops the rest."""

    __slots__ = ("_capacity", "_chunks", "_dropped", "_size")

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._chunks: list[bytes] = []
        self._size = 0
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return self._size

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def truncated(self) -> bool:
        return self._dropped > 0

    def append(self, data: bytes) -> int:
        """Store as much of ``data`` as fits; return the number of bytes kept."""
        room = self._capacity - self._size
        if room <= 0:
            self._dropped += len(data)
            return 0
        kept = data if len(data) <= room else data[:room]
        if kept:
            self._chunks.append(kept)
            self._size += len(kept)
        self._dropped += len(data) - len(kept)
        return len(kept)

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)

    def text(self, encoding: str = "utf-8") -> str:
        return self.getvalue().decode(encoding, errors="replace")


@dataclass(slots=True)
class RunningProcess:
    """A launched tool process and the tasks servicing its streams."""

    process: asyncio.subprocess.Process
    spec: InvocationSpec
    stdout: BoundedBuffer
    stderr: BoundedBuffer
    readers: tuple[asyncio.Task[None], ...] = ()
    feeder: asyncio.Task[None] | None = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def tasks(self) -> tuple[asyncio.Task[None], ...]:
        if self.feeder is None:
            return self.readers
        return (*self.readers, self.feeder)


async def iter_stream_lines(
    reader: asyncio.StreamReader,
    *,
    chunk_size: int = _READ_CHUNK_BYTES,
    max_line_bytes: int = _MAX_LINE_BYTES,
) -> AsyncIterator[bytes]:
    """Lazily yield newline-terminated lines (overlong lines in pieces) until EOF."""
    pending = bytearray()
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            break
        pending.extend(chunk)
        while True:
            newline = pending.find(b"\n")
            if newline < 0:
                break
            yield bytes(pending[: newline + 1])
            del pending[: newline + 1]
        if len(pending) >= max_line_bytes:
            yield bytes(pending)
            pending.clear()
    if pending:
        yield bytes(pending)


async def drain_stream(reader: asyncio.StreamReader, buffer: BoundedBuffer) -> None:
    """Consume ``reader`` to EOF, keeping what fits in ``buffer``."""
    async for line in iter_stream_lines(reader):
        buffer.append(line)


class ProcessRunner:
    """Launch tool processes and start draining their output."""

    def __init__(
        self,
        *,
        stdout_capacity: int = MAX_STDOUT_BYTES,
        stderr_capacity: int = MAX_STDERR_BYTES,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._stdout_capacity = stdout_capacity
        self._stderr_capacity = stderr_capacity
        self._cwd = cwd
        self._env = env

    async def launch(self, spec: InvocationSpec) -> RunningProcess:
        has_stdin = spec.stdin_payload is not None
        process = await asyncio.create_subprocess_exec(
            spec.executable,
            *spec.arguments,
            stdin=asyncio.subprocess.PIPE if has_stdin else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._cwd,
            env=self._env,
            **_process_group_kwargs(),
        )

        stdout = BoundedBuffer(self._stdout_capacity)
        stderr = BoundedBuffer(self._stderr_capacity)
        assert process.stdout is not None  # noqa: S101
        assert process.stderr is not None  # noqa: S101
        readers = (
            asyncio.create_task(drain_stream(process.stdout, stdout), name=f"stdout-{process.pid}"),
            asyncio.create_task(drain_stream(process.stderr, stderr), name=f"stderr-{process.pid}"),
        )
        feeder = None
        if has_stdin:
            feeder = asyncio.create_task(
                _feed_stdin(process, spec.stdin_payload or b""), name=f"stdin-{process.pid}"
            )

        logger.debug(
            "process_launched",
            pid=process.pid,
            delivery=spec.delivery.value,
            stdin_bytes=len(spec.stdin_payload or b""),
        )
        return RunningProcess(
            process=process,
            spec=spec,
            stdout=stdout,
            stderr=stderr,
            readers=readers,
            feeder=feeder,
        )


async def _feed_stdin(process: asyncio.subprocess.Process, payload: bytes) -> None:
    stdin = process.stdin
    if stdin is None:
        return
    try:
        stdin.write(payload)
        await stdin.drain()
        stdin.close()
        await stdin.wait_closed()
    except (BrokenPipeError, ConnectionResetError) as exc:
        # The tool exited (or closed stdin) before reading everything.
        logger.debug("stdin_closed_early", pid=process.pid, error=str(exc))


def _process_group_kwargs() -> dict[str, object]:
    if os.name == "nt":
        return {
            "creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW,
        }
    return {"start_new_session": True}


__all__ = [
    "BoundedBuffer",
    "ProcessRunner",
    "RunningProcess",
    "drain_stream",
    "iter_stream_lines",
]
