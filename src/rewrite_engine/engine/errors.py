"""
rewrite-engine — error taxonomy

File: src/rewrite_engine/engine/errors.py

Purpose
- Normalized, machine-readable errors surfaced by ``RewriteEngine.rewrite``.

Functional requirements
- Every error carries ``code``, ``detail`` and a ``retryable`` classification.
- Process failures carry the exit code and a bounded stderr excerpt.
- Cancellation stays distinguishable from timeouts and tool failures.
"""

from __future__ import annotations

from rewrite_engine.constants import STDERR_EXCERPT_CHARS
from rewrite_engine.utils.concurrency import OperationCancelledError


class RewriteError(RuntimeError):
    """Base normalized rewrite error with deterministic machine-readable fields."""

    def __init__(self, *, code: str, detail: str, retryable: bool) -> None:
        self.code = code
        self.detail = _normalize_detail(detail)
        self.retryable = bool(retryable)
        super().__init__(
            f"code={self.code} retryable={str(self.retryable).lower()} detail={self.detail}"
        )


class ConfigurationError(RewriteError):
    """Tool executable, model, or invocation settings could not be resolved."""

    def __init__(self, detail: str) -> None:
        super().__init__(code="configuration", detail=detail, retryable=False)


class RewriteTimeoutError(RewriteError, TimeoutError):
    """The tool did not exit within the wall-clock budget (its tree was killed)."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = float(timeout_seconds)
        super().__init__(
            code="timeout",
            detail=f"rewrite timed out after {self.timeout_seconds:g} seconds",
            retryable=True,
        )


class ProcessFailure(RewriteError):
    """The tool exited with a nonzero code."""

    def __init__(self, exit_code: int, stderr: str = "", *, tool: str = "rewrite tool") -> None:
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt(stderr)
        rendered = self.stderr_excerpt if self.stderr_excerpt else "(no stderr)"
        super().__init__(
            code="process_failure",
            detail=f"{tool} exited with code {exit_code}: {rendered}",
            retryable=False,
        )


class RewriteCancelledError(RewriteError, OperationCancelledError):
    """Cancellation was observed (caller token or engine disposal)."""

    def __init__(self, detail: str = "rewrite cancelled") -> None:
        super().__init__(code="cancelled", detail=detail, retryable=False)


class EngineDisposedError(RewriteError):
    """The engine was torn down; no further requests are accepted."""

    def __init__(self, detail: str = "rewrite engine has been disposed") -> None:
        super().__init__(code="disposed", detail=detail, retryable=False)


def stderr_excerpt(stderr: str, limit: int = STDERR_EXCERPT_CHARS) -> str:
    """Return at most ``limit`` characters of trimmed stderr."""
    return stderr.strip()[:limit]


def _normalize_detail(value: object) -> str:
    text = str(value).strip()
    if not text:
        return "unknown error"
    return " ".join(text.split())


__all__ = [
    "ConfigurationError",
    "EngineDisposedError",
    "ProcessFailure",
    "RewriteCancelledError",
    "RewriteError",
    "RewriteTimeoutError",
    "stderr_excerpt",
]
