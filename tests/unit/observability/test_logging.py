"""
rewrite-engine — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction, correlation metadata, and queue-backed reliability.

What this test file should cover
- JSON line validity and redaction guarantees (secrets and user text).
- Correlation field propagation.
- structlog events routed into the JSON sink.
- Queue drain/shutdown behavior.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from rewrite_engine.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    secrets_only_redactor,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"rewrite_engine.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-logging-redaction",
            base_log_dir=tmp_path,
            logger_name=logger_name,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(request_id="req-123"):
        logger.info(
            "payload token=tok-FAKE and header Bearer abc.def",
            extra={"nested": {"password": "hunter2", "safe": "ok"}, "max_tokens": 512},
        )

    shutdown_logging(handle)

    assert handle.log_path.exists()
    assert handle.log_path.name == "rewrite.jsonl"
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    first = parsed[0]
    assert first["run_id"] == "run-logging-redaction"
    assert first["request_id"] == "req-123"
    assert first["fields"] == {
        "max_tokens": 512,
        "nested": {"password": "***REDACTED***", "safe": "ok"},
    }

    line = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "abc.def" not in line
    assert "hunter2" not in line


def test_user_text_fields_are_redacted_by_default(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(run_id="run-text", base_log_dir=tmp_path, logger_name=logger_name)
    )

    logging.getLogger(logger_name).info(
        "rewrite_requested",
        extra={"input_text": "my private letter", "prompt_text": "Fix it", "input_chars": 17},
    )
    shutdown_logging(handle)

    fields = _read_json_lines(handle.log_path)[0]["fields"]
    assert fields == {
        "input_chars": 17,
        "input_text": "***REDACTED***",
        "prompt_text": "***REDACTED***",
    }


def test_redactors_differ_only_on_text_fields() -> None:
    payload = {"input_text": "hello", "api_key": "k-1", "stderr_excerpt": "boom"}

    assert default_log_redactor(payload) == {
        "input_text": "***REDACTED***",
        "api_key": "***REDACTED***",
        "stderr_excerpt": "***REDACTED***",
    }
    assert secrets_only_redactor(payload) == {
        "input_text": "hello",
        "api_key": "***REDACTED***",
        "stderr_excerpt": "boom",
    }


def test_setup_logging_routes_structlog_events(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "DEBUG", "log_dir": str(tmp_path), "redact_text": False},
        run_id="run-structlog",
    )
    logger = structlog.get_logger(f"rewrite_engine.{uuid4().hex}")

    with correlation_scope(request_id="req-9"):
        logger.info("rewrite_state", state="running", pid=4321, output_text="visible")
    shutdown_logging()

    assert handle.log_path == tmp_path / "run-structlog" / "rewrite.jsonl"
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    event = parsed[0]
    assert event["message"] == "rewrite_state"
    assert event["level"] == "INFO"
    assert event["request_id"] == "req-9"
    assert event["fields"] == {"state": "running", "pid": 4321, "output_text": "visible"}


def test_structlog_events_below_level_are_filtered(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "WARNING", "log_dir": str(tmp_path)},
        run_id="run-level",
    )
    logger = structlog.get_logger(f"rewrite_engine.{uuid4().hex}")

    logger.debug("quiet")
    logger.warning("loud", detail="x")
    shutdown_logging()

    messages = [line["message"] for line in _read_json_lines(handle.log_path)]
    assert messages == ["loud"]


def test_correlation_scope_restores_previous_context() -> None:
    with correlation_scope(request_id="outer"):
        with correlation_scope(request_id="inner", correlation_id="c-1"):
            assert get_correlation_context() == {"request_id": "inner", "correlation_id": "c-1"}
        assert get_correlation_context() == {"request_id": "outer"}
    assert get_correlation_context() == {}


def test_correlation_scope_rejects_blank_values() -> None:
    with pytest.raises(ValueError, match="correlation value"), correlation_scope(request_id=" "):
        pass


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        for i in range(per_thread):
            logger.info(
                f"thread={thread_idx} index={i} token=tok-secret-{thread_idx}-{i}",
                extra={"api_key": f"k-FAKE-{thread_idx}-{i}"},
            )

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        parsed = json.loads(line)
        assert isinstance(parsed, dict)
        assert "message" in parsed
        assert "tok-secret" not in line
        assert "k-FAKE" not in line


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert len(lines) == expected
    assert get_active_logging_handle() is None


def test_new_setup_replaces_active_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(
        LoggingConfig(run_id="run-a", base_log_dir=tmp_path, logger_name=_logger_name())
    )
    second = setup_structured_logging(
        LoggingConfig(run_id="run-b", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    assert first.is_shutdown
    assert get_active_logging_handle() is second


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("run_id", " "),
        ("queue_size", 0),
        ("log_filename", "nested/file.jsonl"),
        ("level", "CHATTY"),
    ],
)
def test_invalid_logging_config_is_rejected(tmp_path: Path, field: str, value: object) -> None:
    kwargs: dict[str, object] = {"run_id": "run-invalid", "base_log_dir": tmp_path}
    kwargs[field] = value

    with pytest.raises(ValueError):
        setup_structured_logging(LoggingConfig(**kwargs))  # type: ignore[arg-type]
