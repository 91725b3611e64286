"""JSON-lines logging for rewrite runs, with structlog routing and redaction."""

from rewrite_engine.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "setup_logging",
    "shutdown_logging",
]
