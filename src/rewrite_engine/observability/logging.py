"""
rewrite-engine — structured logging

File: src/rewrite_engine/observability/logging.py

Purpose
- Write one JSON object per log record to ``<log_dir>/<run_id>/rewrite.jsonl``.
- Route structlog events from engine components into the same sink.

Functional requirements
- Emitting threads never block on disk: records go through a bounded queue and
  are dropped (and counted) when it is full.
- Secrets are always redacted. User text (input, prompt, output, stderr) is
  redacted unless ``redact_text`` is disabled.
- ``request_id`` and other correlation fields bound with ``correlation_scope``
  follow the emitting task, including across ``await`` points.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

LogRedactor = Callable[[Any], Any]

REDACTED: Final[str] = "***REDACTED***"
LOG_FILENAME: Final[str] = "rewrite.jsonl"
ROOT_LOGGER_NAME: Final[str] = "rewrite_engine"

_SECRET_KEY_MARKERS: Final[tuple[str, ...]] = (
    "password",
    "passphrase",
    "secret",
    "access_token",
    "auth_token",
    "refresh_token",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "credential",
    "private_key",
)
_TEXT_KEYS: Final[frozenset[str]] = frozenset(
    {"input_text", "prompt_text", "output_text", "stderr_excerpt"}
)

_INLINE_SECRET: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(token|password|secret|api[_-]?key|authorization)(\s*[:=]\s*)[^\s,;]+"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[\w.~+/-]+=*")

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation"}

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "rewrite_engine_correlation", default={}
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = LOG_FILENAME
    log_to_stdout: bool = False
    redact_text: bool = True


@dataclass(slots=True)
class StructuredLoggingHandle:
    """An installed queue handler plus the listener thread writing its sinks."""

    logger: logging.Logger
    run_id: str
    log_path: Path
    _handler: _DroppingQueueHandler
    _listener: logging.handlers.QueueListener
    _sinks: tuple[logging.Handler, ...]
    _closed: bool = field(default=False)

    @property
    def run_log_dir(self) -> Path:
        return self.log_path.parent

    @property
    def dropped_records(self) -> int:
        return self._handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """Drain pending records, detach the handler and close every sink."""
        if self._closed:
            return
        self._closed = True
        # stop() processes everything queued before returning.
        self._listener.stop()
        self.logger.removeHandler(self._handler)
        self._handler.close()
        for sink in self._sinks:
            sink.flush()
            sink.close()


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see the emitter's contextvars.
        record.correlation = dict(_correlation.get())
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            # Runs under the handler lock.
            self.dropped += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redact: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": _redact_text(record.getMessage()),
            "run_id": self._run_id,
        }
        event.update(getattr(record, "correlation", {}))

        extras = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if extras:
            event["fields"] = self._redact(extras)
        # QueueHandler.prepare already folded any traceback into the message.
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
) -> StructuredLoggingHandle:
    """Install logging from an ``[observability]`` config section.

    Also configures structlog so component loggers obtained with
    ``structlog.get_logger(__name__)`` land in the same JSON-lines file.
    """
    section = dict(observability_config or {})
    level = section.get("log_level", "INFO")
    log_dir = section.get("log_dir") or "logs"
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=log_dir if isinstance(log_dir, (str, Path)) else "logs",
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(section.get("log_to_stdout", False)),
            redact_text=bool(section.get("redact_text", True)),
        )
    )
    configure_structlog()
    return handle


def configure_structlog() -> None:
    """Hand structlog events to stdlib logging with keyword fields as ``extra``."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Attach a queue-backed JSON-lines sink to ``config.logger_name``.

    Any previously active handle is shut down first; only one run logs at a time.
    """
    shutdown_logging()

    run_id = _required_text("run_id", config.run_id)
    logger_name = _required_text("logger_name", config.logger_name)
    filename = _required_text("log_filename", config.log_filename)
    if Path(filename).name != filename:
        raise ValueError("log_filename must not include path separators")
    if not isinstance(config.queue_size, int) or config.queue_size <= 0:
        raise ValueError("queue_size must be a positive integer")
    level = _log_level(config.level)

    log_path = Path(config.base_log_dir) / run_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _JsonLinesFormatter(
        run_id=run_id,
        redact=default_log_redactor if config.redact_text else secrets_only_redactor,
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler(sys.stdout))
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        _handler=handler,
        _listener=listener,
        _sinks=tuple(sinks),
    )
    global _active, _atexit_hooked
    with _active_lock:
        _active = handle
        if not _atexit_hooked:
            atexit.register(shutdown_logging)
            _atexit_hooked = True
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shut down ``handle``, or the active handle when none is given."""
    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown()


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str) -> Iterator[None]:
    """Bind correlation fields (e.g. ``request_id``) for records emitted in scope."""
    merged = dict(_correlation.get())
    for key, value in fields.items():
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"correlation value for {key!r} must be a non-empty string")
        merged[key] = value.strip()
    token = _correlation.set(merged)
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: Any) -> Any:
    """Redact secrets and user text."""
    return _redact(value, redact_text=True)


def secrets_only_redactor(value: Any) -> Any:
    """Redact secrets, keep user text (``redact_text = false``)."""
    return _redact(value, redact_text=False)


def _redact(value: Any, *, redact_text: bool) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED
            if _is_sensitive_key(key, redact_text=redact_text)
            else _redact(item, redact_text=redact_text)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item, redact_text=redact_text) for item in value]
    if isinstance(value, str):
        return _redact_text(value)
    return value


def _is_sensitive_key(key: str, *, redact_text: bool) -> bool:
    lowered = key.lower()
    if any(marker in lowered for marker in _SECRET_KEY_MARKERS):
        return True
    return redact_text and lowered in _TEXT_KEYS


def _redact_text(text: str) -> str:
    text = _INLINE_SECRET.sub(lambda match: match.group(1) + match.group(2) + REDACTED, text)
    return _BEARER.sub("Bearer " + REDACTED, text)


def _jsonable(value: object) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return repr(value)


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _required_text(name: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value.strip()


def _log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return resolved


__all__ = [
    "LOG_FILENAME",
    "LogRedactor",
    "LoggingConfig",
    "REDACTED",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "secrets_only_redactor",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
