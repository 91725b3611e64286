"""Utility exports for filesystem and concurrency helpers."""

from rewrite_engine.utils.concurrency import (
    CancellationToken,
    ConcurrencyGate,
    GateClosedError,
    GatePermit,
    OperationCancelledError,
    run_with_timeout,
)
from rewrite_engine.utils.fs import remove_artifact, write_input_artifact

__all__ = [
    "CancellationToken",
    "ConcurrencyGate",
    "GateClosedError",
    "GatePermit",
    "OperationCancelledError",
    "remove_artifact",
    "run_with_timeout",
    "write_input_artifact",
]
