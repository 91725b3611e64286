"""CLI routing, output formats and exit-code contract."""

from __future__ import annotations

import io
import json
import os
from pathlib import Path

import pytest

from rewrite_engine.config.loader import ConfigLoadError
from rewrite_engine.engine.errors import (
    ConfigurationError,
    ProcessFailure,
    RewriteCancelledError,
    RewriteTimeoutError,
)
from rewrite_engine.main import ExitCode, _route_exception, cli_entrypoint
from rewrite_engine.ui.cli import build_parser

posix_only = pytest.mark.skipif(os.name == "nt", reason="tool scripts rely on POSIX shebangs")


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("REWRITE_"):
            monkeypatch.delenv(name)
    return tmp_path


def _json_out(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    return json.loads(capsys.readouterr().out)


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_preset_and_prompt_are_mutually_exclusive(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["rewrite", "x", "--preset", "Improve", "--prompt", "p"]) == 2
    assert "not allowed with argument" in capsys.readouterr().err


def test_presets_json_lists_builtins(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["presets", "--json"]) == 0

    payload = _json_out(capsys)
    assert payload["active"] == "Improve"
    names = [item["name"] for item in payload["presets"]]  # type: ignore[index]
    assert names == ["Improve", "Formalize", "Simplify", "Summarize", "Fix Grammar"]


def test_presets_table_marks_active(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    library = tmp_path / "presets.yaml"
    library.write_text(
        "presets:\n  - name: Pirate\n    system_prompt: Talk like a pirate.\n", encoding="utf-8"
    )

    code = cli_entrypoint(
        ["presets", "--set", "prompts.library=presets.yaml", "--set", "prompts.active_preset=Pirate"]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "Pirate *" in out
    assert "custom" in out
    assert "Improve *" not in out


def test_blank_rewrite_needs_no_tool(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(
        ["rewrite", "   ", "--json", "--set", "tool.executable=/definitely/missing/ollama"]
    )

    assert code == 0
    assert _json_out(capsys)["text"] == "   "


@posix_only
def test_rewrite_prints_tool_output_and_logs_redacted_events(
    echo_tool: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli_entrypoint(
        ["rewrite", "hello secret", "--preset", "Simplify", "--set", f"tool.executable={echo_tool}"]
    )

    assert code == 0
    assert capsys.readouterr().out == "HELLO SECRET\n"

    log_files = list((tmp_path / "logs").glob("*/rewrite.jsonl"))
    assert len(log_files) == 1
    content = log_files[0].read_text(encoding="utf-8")
    events = [json.loads(line) for line in content.splitlines()]
    requested = [event for event in events if event["message"] == "rewrite_requested"]
    assert requested
    assert requested[0]["request_id"]
    assert "hello secret" not in content


@posix_only
def test_rewrite_reads_stdin_when_text_omitted(
    echo_tool: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO("from stdin"))

    code = cli_entrypoint(
        ["rewrite", "--prompt", "Shout", "--json", "--set", f"tool.executable={echo_tool}"]
    )

    payload = _json_out(capsys)
    assert code == 0
    assert payload["text"] == "FROM STDIN"
    assert payload["stdout_truncated"] is False


@posix_only
def test_tool_failure_exit_code(make_tool, capsys: pytest.CaptureFixture[str]) -> None:
    tool = make_tool(
        """
        import sys
        sys.stderr.write("model 'x' not found")
        sys.exit(1)
        """
    )

    code = cli_entrypoint(["rewrite", "text", "--set", f"tool.executable={tool}"])

    assert code == ExitCode.PROCESS_FAILURE
    assert "model 'x' not found" in capsys.readouterr().err


@posix_only
def test_timeout_exit_code(make_tool, capsys: pytest.CaptureFixture[str]) -> None:
    tool = make_tool(
        """
        import time
        time.sleep(60)
        """
    )

    code = cli_entrypoint(
        ["rewrite", "text", "--timeout", "0.5", "--set", f"tool.executable={tool}"]
    )

    assert code == ExitCode.TIMEOUT
    assert "timed out" in capsys.readouterr().err


def test_missing_tool_is_a_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(["rewrite", "text", "--set", "tool.executable=/definitely/missing/ollama"])

    assert code == ExitCode.CONFIG_ERROR
    assert "not found" in capsys.readouterr().err


def test_unknown_preset_is_a_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["rewrite", "text", "--preset", "Pirate"]) == 2
    assert "unknown preset 'Pirate'" in capsys.readouterr().err


def test_non_positive_timeout_is_rejected(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["rewrite", "text", "--timeout", "0"]) == 2
    assert "--timeout must be > 0" in capsys.readouterr().err


def test_malformed_override_is_rejected(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["presets", "--set", "no-equals-sign"]) == 2
    assert "expected KEY=VALUE" in capsys.readouterr().err


def test_missing_explicit_config_file(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["presets", "--config", "absent.toml"]) == 2
    assert "config file not found" in capsys.readouterr().err


def test_override_values_are_typed(capsys: pytest.CaptureFixture[str]) -> None:
    # A string where an integer is expected fails validation; an int passes.
    assert cli_entrypoint(["presets", "--set", "generation.max_tokens=lots"]) == 2
    capsys.readouterr()
    assert cli_entrypoint(["presets", "--json", "--set", "generation.max_tokens=256"]) == 0


@posix_only
def test_doctor_reports_detected_tool(make_tool, capsys: pytest.CaptureFixture[str]) -> None:
    tool = make_tool('print("fake-tool 1.0")\n')

    code = cli_entrypoint(["doctor", "--json", "--set", f"tool.executable={tool}"])

    payload = _json_out(capsys)
    checks = {item["name"]: item for item in payload["checks"]}  # type: ignore[union-attr]
    assert code == 0
    assert checks["tool"]["status"] == "ok"
    assert "fake-tool 1.0" in checks["tool"]["detail"]
    assert checks["presets"]["status"] == "ok"
    assert payload["effective_config"]["tool"]["executable"] == str(tool)  # type: ignore[index]


def test_doctor_fails_for_missing_llama_model(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(
        [
            "doctor",
            "--json",
            "--set",
            "tool.backend=llama_cpp",
            "--set",
            "tool.model_path=missing.gguf",
            "--set",
            "tool.executable=/definitely/missing/llama-cli",
        ]
    )

    checks = {item["name"]: item for item in _json_out(capsys)["checks"]}  # type: ignore[union-attr]
    assert code == 2
    assert checks["tool"]["status"] == "fail"
    assert checks["model"]["status"] == "fail"
    assert "model file not found" in checks["model"]["detail"]


def test_doctor_text_output_marks_failures(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(
        [
            "doctor",
            "--set",
            "tool.backend=llama_cpp",
            "--set",
            "tool.executable=/definitely/missing/llama-cli",
        ]
    )

    out = capsys.readouterr().out
    assert code == 2
    assert "  OK  config: loaded successfully" in out
    assert "  FAIL  model: tool.model_path is not set" in out
    assert "Some checks failed." in out


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (RewriteCancelledError(), ExitCode.CANCELLED),
        (KeyboardInterrupt(), ExitCode.CANCELLED),
        (RewriteTimeoutError(1), ExitCode.TIMEOUT),
        (ProcessFailure(1, "boom"), ExitCode.PROCESS_FAILURE),
        (ConfigurationError("bad"), ExitCode.CONFIG_ERROR),
        (ConfigLoadError("bad"), ExitCode.CONFIG_ERROR),
        (RuntimeError("surprise"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_route_exception(exc: BaseException, expected: ExitCode) -> None:
    assert _route_exception(exc) is expected


def test_route_exception_follows_cause_chain() -> None:
    try:
        try:
            raise RewriteTimeoutError(5)
        except RewriteTimeoutError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert _route_exception(outer) is ExitCode.TIMEOUT


def test_doctor_verbose_prints_effective_config(capsys: pytest.CaptureFixture[str]) -> None:
    cli_entrypoint(["doctor", "--verbose", "--set", "generation.max_tokens=300"])

    out = capsys.readouterr().out
    line = next(line for line in out.splitlines() if line.startswith("effective config: "))
    effective = json.loads(line.removeprefix("effective config: "))
    assert effective["generation"]["max_tokens"] == 300
    assert effective["tool"]["backend"] == "ollama"
