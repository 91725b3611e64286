"""Async concurrency primitives used by the rewrite engine."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class OperationCancelledError(Exception):
    """Raised when a cancellation token fires at a suspension point."""


class GateClosedError(OperationCancelledError):
    """Raised when a gate is shut down while (or before) a caller waits on it."""


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    Tokens can be chained with :meth:`linked`; a linked token fires as soon as
    any of its parents fires. Call :meth:`close` to detach a linked token from
    its parents once it is no longer needed.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._detach: list[Callable[[], None]] = []

    @classmethod
    def linked(cls, *parents: CancellationToken | None) -> CancellationToken:
        token = cls()
        for parent in parents:
            if parent is None:
                continue
            token._detach.append(parent.register(token.cancel))
        return token

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("operation cancelled")

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation; returns a function that unregisters it."""
        if self._event.is_set():
            callback()
            return _noop

        self._callbacks.append(callback)

        def unregister() -> None:
            with suppress(ValueError):
                self._callbacks.remove(callback)

        return unregister

    def close(self) -> None:
        detach, self._detach = self._detach, []
        for unregister in detach:
            unregister()


class GatePermit:
    """Proof of admission through a :class:`ConcurrencyGate`."""

    __slots__ = ("_gate", "_released")

    def __init__(self, gate: ConcurrencyGate) -> None:
        self._gate = gate
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        self._gate.release(self)


class ConcurrencyGate:
    """Single-slot gate admitting one permit holder at a time.

    ``acquire`` suspends until the slot is free, the caller's token fires, or
    the gate shuts down. A slot won in the same loop iteration as a
    cancellation is handed back before the cancellation is raised.
    """

    def __init__(self) -> None:
        self._semaphore = asyncio.Semaphore(1)
        self._closed = asyncio.Event()
        self._holder: GatePermit | None = None

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def in_use(self) -> bool:
        return self._holder is not None

    async def acquire(self, cancel_token: CancellationToken | None = None) -> GatePermit:
        if self._closed.is_set():
            raise GateClosedError("gate is shut down")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        acquire_task = asyncio.ensure_future(self._semaphore.acquire())
        watchers: set[asyncio.Future[object]] = {asyncio.ensure_future(self._closed.wait())}
        if cancel_token is not None:
            watchers.add(asyncio.ensure_future(cancel_token.wait()))

        try:
            await asyncio.wait({acquire_task, *watchers}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await self._abandon(acquire_task)
            raise
        finally:
            for watcher in watchers:
                watcher.cancel()

        if self._closed.is_set():
            await self._abandon(acquire_task)
            raise GateClosedError("gate shut down while waiting")
        if cancel_token is not None and cancel_token.is_cancelled:
            await self._abandon(acquire_task)
            raise OperationCancelledError("cancelled while waiting for the gate")

        permit = GatePermit(self)
        self._holder = permit
        return permit

    def release(self, permit: GatePermit) -> None:
        if permit._released:
            return
        if permit is not self._holder:
            raise RuntimeError("permit does not belong to the current holder")
        permit._released = True
        self._holder = None
        self._semaphore.release()

    def shutdown(self) -> None:
        """Wake pending acquirers with ``GateClosedError`` and refuse new ones."""
        self._closed.set()

    async def _abandon(self, acquire_task: asyncio.Future[bool]) -> None:
        if not acquire_task.done():
            acquire_task.cancel()
            with suppress(asyncio.CancelledError):
                await acquire_task
        if acquire_task.cancelled():
            return
        if acquire_task.exception() is None:
            # Won the slot but lost the race.
            self._semaphore.release()


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` with timeout and cooperative cancellation support.

    Raises ``TimeoutError`` when the budget elapses and
    ``OperationCancelledError`` when the token fires first. If the token is
    already set when the race resolves, cancellation wins.
    """
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise OperationCancelledError("operation cancelled")

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if token.is_cancelled:
            await _cancel_and_wait(task)
            raise OperationCancelledError("operation cancelled")

        if task in done:
            return await task

        await _cancel_and_wait(task)
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


async def _cancel_and_wait(task: asyncio.Task[T]) -> None:
    if task.done():
        # Retrieve the outcome so a failed task is not reported as unhandled.
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # If cancellation/validation fails before scheduling, close raw coroutine objects
    # so CPython does not emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


def _noop() -> None:
    return None


__all__ = [
    "CancellationToken",
    "ConcurrencyGate",
    "GateClosedError",
    "GatePermit",
    "OperationCancelledError",
    "run_with_timeout",
]
