"""
rewrite-engine — package root.

File: src/rewrite_engine/__init__.py

Purpose
- Drive a local text-generation CLI (Ollama or llama.cpp) to rewrite text
  under a wall-clock budget, one invocation at a time, with process-tree
  cleanup on every exit path.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from rewrite_engine.engine import (
    ConfigurationError,
    EngineDisposedError,
    InvocationConfig,
    ProcessFailure,
    RewriteCancelledError,
    RewriteEngine,
    RewriteError,
    RewriteResult,
    RewriteTimeoutError,
    ToolBackend,
)
from rewrite_engine.utils.concurrency import CancellationToken

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "ConfigurationError",
    "EngineDisposedError",
    "InvocationConfig",
    "ProcessFailure",
    "RewriteCancelledError",
    "RewriteEngine",
    "RewriteError",
    "RewriteResult",
    "RewriteTimeoutError",
    "ToolBackend",
    "__version__",
]
