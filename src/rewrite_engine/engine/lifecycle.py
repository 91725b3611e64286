"""
rewrite-engine — process lifecycle

File: src/rewrite_engine/engine/lifecycle.py

Purpose
- Race process exit against the wall-clock budget and a cancellation token.
- Kill the whole process tree on timeout, cancellation and disposal.
- Reap the process and its stream tasks within a bounded disposal window.

Functional requirements
- If the token is set when the race resolves, the outcome is CANCELLED even
  when the process exited in the same instant.
- Kill failures (already exited, access denied) are logged and never change
  the outcome.
- Disposal never waits longer than the disposal budget; past it the wait is
  abandoned with a warning.
"""

from __future__ import annotations

import asyncio
import enum
import os
import signal
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import psutil
import structlog

from rewrite_engine.constants import PROCESS_DISPOSAL_TIMEOUT_SECONDS
from rewrite_engine.utils.concurrency import OperationCancelledError, run_with_timeout

if TYPE_CHECKING:
    from rewrite_engine.engine.runner import RunningProcess
    from rewrite_engine.utils.concurrency import CancellationToken

logger = structlog.get_logger(__name__)

KillTree = Callable[..., list[str]]


class CompletionKind(enum.Enum):
    EXITED = "exited"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class CompletionOutcome:
    """How the exit race resolved."""

    kind: CompletionKind
    exit_code: int | None = None

    @property
    def exited(self) -> bool:
        return self.kind is CompletionKind.EXITED


def kill_process_tree(pid: int, *, leader_alive: bool = True) -> list[str]:
    """Forcefully kill ``pid`` and every descendant; return failure messages.

    On POSIX the leader was started in its own session, so its process group
    id equals ``pid`` and ``killpg`` also reaches orphaned grandchildren. When
    the leader has already been reaped (``leader_alive=False``) its pid may
    have been reused, so only the process group is signalled.
    """
    failures: list[str] = []
    targets: list[psutil.Process] = []

    if leader_alive:
        try:
            leader = psutil.Process(pid)
            targets.extend(leader.children(recursive=True))
            targets.append(leader)
        except psutil.NoSuchProcess:
            pass
        except psutil.Error as exc:
            failures.append(f"inspect pid={pid}: {exc}")

    if os.name != "nt":
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as exc:
            failures.append(f"killpg pgid={pid}: {exc}")

    for proc in targets:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.Error as exc:
            failures.append(f"kill pid={proc.pid}: {exc}")
    return failures


class LifecycleController:
    """Await, kill and reap launched tool processes."""

    def __init__(
        self,
        *,
        disposal_timeout_seconds: float = PROCESS_DISPOSAL_TIMEOUT_SECONDS,
        kill_tree: KillTree = kill_process_tree,
    ) -> None:
        if disposal_timeout_seconds <= 0:
            raise ValueError("disposal_timeout_seconds must be > 0")
        self._disposal_timeout = disposal_timeout_seconds
        self._kill_tree = kill_tree

    @property
    def disposal_timeout_seconds(self) -> float:
        return self._disposal_timeout

    async def await_completion(
        self,
        running: RunningProcess,
        *,
        timeout_seconds: float,
        cancel_token: CancellationToken | None = None,
    ) -> CompletionOutcome:
        try:
            exit_code = await run_with_timeout(
                running.process.wait(), timeout_seconds, cancel_token
            )
        except TimeoutError:
            logger.warning("process_timed_out", pid=running.pid, timeout_seconds=timeout_seconds)
            self.kill(running, reason="timeout")
            return CompletionOutcome(CompletionKind.TIMED_OUT, running.returncode)
        except OperationCancelledError:
            logger.info("process_cancelled", pid=running.pid)
            self.kill(running, reason="cancelled")
            return CompletionOutcome(CompletionKind.CANCELLED, running.returncode)
        except asyncio.CancelledError:
            self.kill(running, reason="task_cancelled")
            raise

        await self._join_streams(running)
        return CompletionOutcome(CompletionKind.EXITED, exit_code)

    def kill(self, running: RunningProcess, *, reason: str) -> None:
        """Kill the process tree; failures are logged, never raised."""
        try:
            failures = self._kill_tree(running.pid, leader_alive=running.returncode is None)
        except Exception:
            logger.exception("process_kill_failed", pid=running.pid, reason=reason)
            return
        if failures:
            logger.warning(
                "process_kill_incomplete", pid=running.pid, reason=reason, failures=failures
            )
        else:
            logger.debug("process_tree_killed", pid=running.pid, reason=reason)

    async def dispose(self, running: RunningProcess) -> None:
        """Kill if still running, then reap within the disposal budget."""
        if running.returncode is None:
            self.kill(running, reason="dispose")
        try:
            await asyncio.wait_for(_reap(running), timeout=self._disposal_timeout)
        except TimeoutError:
            logger.warning(
                "process_disposal_abandoned",
                pid=running.pid,
                timeout_seconds=self._disposal_timeout,
            )
        except Exception:
            logger.exception("process_disposal_failed", pid=running.pid)

    async def _join_streams(self, running: RunningProcess) -> None:
        pending = [task for task in running.tasks if not task.done()]
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=self._disposal_timeout)
        if not still_running:
            return
        # A descendant outlived the leader and still holds the pipes open.
        logger.warning(
            "stream_readers_stalled", pid=running.pid, pending_tasks=len(still_running)
        )
        self.kill(running, reason="orphaned_descendants")
        for task in still_running:
            task.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)


async def _reap(running: RunningProcess) -> None:
    await running.process.wait()
    for task in running.tasks:
        if not task.done():
            task.cancel()
    results = await asyncio.gather(*running.tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.warning("stream_task_failed", pid=running.pid, error=repr(result))


__all__ = [
    "CompletionKind",
    "CompletionOutcome",
    "LifecycleController",
    "kill_process_tree",
]
