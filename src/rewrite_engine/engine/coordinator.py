"""
rewrite-engine — rewrite coordinator

File: src/rewrite_engine/engine/coordinator.py

Purpose
- Public entry point: ``RewriteEngine.rewrite`` turns text plus an instruction
  prompt into rewritten text by driving one external tool process.

Functional requirements
- One invocation in flight per engine; other callers wait at the gate and may
  cancel while waiting.
- Blank input is returned unchanged without touching the gate or spawning.
- Every path (success, failure, timeout, cancellation, unexpected error, task
  cancellation) ends in cleanup: process reaped or abandoned after the
  disposal budget, input artifact removed, permit released.
- After ``dispose`` no request is accepted and in-flight work is cancelled.

Observability
- Each call runs inside a ``request_id`` correlation scope and logs every
  state transition through structlog.
"""

from __future__ import annotations

import asyncio
import enum
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from rewrite_engine.constants import PROCESS_DISPOSAL_TIMEOUT_SECONDS, PROCESS_TIMEOUT_SECONDS
from rewrite_engine.engine.errors import (
    ConfigurationError,
    EngineDisposedError,
    ProcessFailure,
    RewriteCancelledError,
    RewriteError,
    RewriteTimeoutError,
)
from rewrite_engine.engine.invocation import InvocationBuilder, describe_command
from rewrite_engine.engine.lifecycle import CompletionKind, LifecycleController
from rewrite_engine.engine.models import (
    InvocationConfig,
    InvocationSpec,
    RewriteRequest,
    RewriteResult,
)
from rewrite_engine.engine.runner import ProcessRunner
from rewrite_engine.observability.logging import correlation_scope
from rewrite_engine.utils.concurrency import (
    CancellationToken,
    ConcurrencyGate,
    GatePermit,
    OperationCancelledError,
)

if TYPE_CHECKING:
    from types import TracebackType

    from rewrite_engine.engine.runner import RunningProcess

logger = structlog.get_logger(__name__)

ConfigSource = InvocationConfig | Callable[[], InvocationConfig]


class RewriteState(enum.Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    BUILDING = "building"
    LAUNCHING = "launching"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"
    CLEANING_UP = "cleaning_up"
    TERMINAL = "terminal"


class RewriteEngine:
    """Serialize rewrite requests onto a single external tool invocation.

    ``config`` is either a fixed ``InvocationConfig`` or a zero-argument
    callable returning one. A callable is read exactly once per request, after
    the gate admits the caller; the snapshot is never re-read mid-flight.

    ``dispose`` must be called from the event loop thread.
    """

    def __init__(
        self,
        config: ConfigSource,
        *,
        builder: InvocationBuilder | None = None,
        runner: ProcessRunner | None = None,
        lifecycle: LifecycleController | None = None,
        timeout_seconds: float = PROCESS_TIMEOUT_SECONDS,
        disposal_timeout_seconds: float = PROCESS_DISPOSAL_TIMEOUT_SECONDS,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._config_source = config
        self._builder = builder or InvocationBuilder()
        self._runner = runner or ProcessRunner()
        self._lifecycle = lifecycle or LifecycleController(
            disposal_timeout_seconds=disposal_timeout_seconds
        )
        self._timeout_seconds = float(timeout_seconds)
        self._gate = ConcurrencyGate()
        self._disposal_token = CancellationToken()
        self._disposed = False
        self._active_calls = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def in_flight(self) -> int:
        """Calls currently waiting at the gate or running."""
        return self._active_calls

    async def rewrite(
        self,
        text: str,
        prompt: str,
        cancel_token: CancellationToken | None = None,
    ) -> RewriteResult:
        if self._disposed:
            raise EngineDisposedError()

        request = RewriteRequest(text=text, prompt=prompt, cancel_token=cancel_token)
        if request.is_blank:
            return RewriteResult(text=text, elapsed_seconds=0.0)

        self._enter()
        try:
            with correlation_scope(request_id=uuid.uuid4().hex):
                return await self._execute(request)
        finally:
            self._leave()

    def dispose(self) -> None:
        """Refuse new work, cancel in-flight work and wake gate waiters. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        logger.info("rewrite_engine_disposed", in_flight=self._active_calls)
        self._disposal_token.cancel()
        self._gate.shutdown()

    async def aclose(self) -> None:
        """``dispose`` and wait until in-flight calls have finished cleanup."""
        self.dispose()
        await self._idle.wait()

    async def __aenter__(self) -> RewriteEngine:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _execute(self, request: RewriteRequest) -> RewriteResult:
        started = time.perf_counter()
        token = CancellationToken.linked(request.cancel_token, self._disposal_token)
        permit: GatePermit | None = None
        spec: InvocationSpec | None = None
        running: RunningProcess | None = None

        logger.info(
            "rewrite_requested",
            input_chars=len(request.text),
            input_text=request.text,
            prompt_text=request.prompt,
        )
        try:
            _transition(RewriteState.ACQUIRING)
            try:
                permit = await self._gate.acquire(token)
            except OperationCancelledError as exc:
                raise self._cancelled() from exc

            _transition(RewriteState.BUILDING)
            config = self._snapshot()
            try:
                spec = self._builder.build(request, config)
            except RewriteError:
                raise
            except Exception as exc:
                raise ConfigurationError(f"unable to build tool invocation: {exc}") from exc

            if token.is_cancelled:
                raise self._cancelled()

            _transition(RewriteState.LAUNCHING, command=describe_command(spec))
            try:
                running = await self._runner.launch(spec)
            except Exception as exc:
                raise ConfigurationError(f"failed to start {spec.executable}: {exc}") from exc

            _transition(RewriteState.RUNNING, pid=running.pid)
            outcome = await self._lifecycle.await_completion(
                running,
                timeout_seconds=self._timeout_seconds,
                cancel_token=token,
            )

            if outcome.kind is CompletionKind.TIMED_OUT:
                _transition(RewriteState.TIMED_OUT)
                raise RewriteTimeoutError(self._timeout_seconds)
            if outcome.kind is CompletionKind.CANCELLED:
                _transition(RewriteState.CANCELLED)
                raise self._cancelled()
            if outcome.exit_code != 0:
                _transition(RewriteState.FAILED, exit_code=outcome.exit_code)
                raise ProcessFailure(
                    outcome.exit_code if outcome.exit_code is not None else -1,
                    running.stderr.text(),
                    tool=Path(spec.executable).name,
                )

            output = running.stdout.text().strip()
            _transition(
                RewriteState.COMPLETED,
                output_chars=len(output),
                stdout_truncated=running.stdout.truncated,
            )
            if not output:
                logger.warning("rewrite_output_empty", returning="original_text")
            return RewriteResult(
                text=output or request.text,
                elapsed_seconds=time.perf_counter() - started,
                exit_code=outcome.exit_code,
                stdout_truncated=running.stdout.truncated,
            )
        except RewriteError as exc:
            logger.info("rewrite_failed", code=exc.code, detail=exc.detail)
            raise
        except asyncio.CancelledError:
            logger.info("rewrite_task_cancelled")
            raise
        except Exception:
            logger.exception("rewrite_unexpected_error")
            raise
        finally:
            _transition(RewriteState.CLEANING_UP)
            try:
                await asyncio.shield(self._cleanup(permit, spec, running))
            finally:
                token.close()
            _transition(
                RewriteState.TERMINAL,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
            )

    def _snapshot(self) -> InvocationConfig:
        source = self._config_source
        if isinstance(source, InvocationConfig):
            return source
        try:
            snapshot = source()
        except RewriteError:
            raise
        except Exception as exc:
            raise ConfigurationError(f"unable to read tool settings: {exc}") from exc
        if not isinstance(snapshot, InvocationConfig):
            raise ConfigurationError(
                f"tool settings provider returned {type(snapshot).__name__}, "
                "expected InvocationConfig"
            )
        return snapshot

    async def _cleanup(
        self,
        permit: GatePermit | None,
        spec: InvocationSpec | None,
        running: RunningProcess | None,
    ) -> None:
        try:
            if running is not None:
                await self._lifecycle.dispose(running)
            if spec is not None:
                try:
                    if self._builder.discard(spec):
                        logger.debug("input_artifact_removed", path=str(spec.input_artifact))
                except Exception:
                    logger.exception(
                        "input_artifact_cleanup_failed", path=str(spec.input_artifact)
                    )
        finally:
            if permit is not None:
                permit.release()

    def _cancelled(self) -> RewriteCancelledError:
        if self._disposal_token.is_cancelled:
            return RewriteCancelledError("rewrite engine disposed while the request was active")
        return RewriteCancelledError()

    def _enter(self) -> None:
        self._active_calls += 1
        self._idle.clear()

    def _leave(self) -> None:
        self._active_calls -= 1
        if self._active_calls == 0:
            self._idle.set()


def _transition(state: RewriteState, **fields: object) -> None:
    logger.debug("rewrite_state", state=state.value, **fields)


__all__ = ["ConfigSource", "RewriteEngine", "RewriteState"]
