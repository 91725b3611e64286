"""
rewrite-engine — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Enforce CLI behavior for `python -m rewrite_engine` as a real child process.
- Verify exit codes, stdout/stderr signals, and that interrupting the CLI
  tears down the tool it spawned.
"""

from __future__ import annotations

import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(os.name == "nt", reason="tool scripts rely on POSIX shebangs"),
]


def _cli_env() -> dict[str, str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("REWRITE_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return env


def _run_cli(cwd: Path, *args: str, stdin: str | None = None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "rewrite_engine", *args],
        cwd=cwd,
        input=stdin,
        text=True,
        capture_output=True,
        check=False,
        env=_cli_env(),
        timeout=60,
    )


def test_rewrite_from_config_file(echo_tool: Path, tmp_path: Path) -> None:
    (tmp_path / "rewrite.toml").write_text(
        f'[tool]\nexecutable = "{echo_tool}"\n[observability]\nlog_dir = "cli-logs"\n',
        encoding="utf-8",
    )

    completed = _run_cli(tmp_path, "rewrite", "quiet words", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["command"] == "rewrite"
    assert payload["text"] == "QUIET WORDS"
    assert payload["stdout_truncated"] is False
    assert list((tmp_path / "cli-logs").glob("*/rewrite.jsonl"))


def test_rewrite_reads_piped_stdin(echo_tool: Path, tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path,
        "rewrite",
        "--prompt",
        "Shout",
        "--set",
        f"tool.executable={echo_tool}",
        stdin="piped in",
    )

    assert completed.returncode == 0, completed.stderr
    assert completed.stdout == "PIPED IN\n"


def test_exit_codes_for_failure_and_timeout(make_tool, tmp_path: Path) -> None:
    failing = make_tool(
        """
        import sys
        sys.stderr.write("out of memory")
        sys.exit(7)
        """,
        name="failing",
    )
    sleeping = make_tool(
        """
        import time
        time.sleep(60)
        """,
        name="sleeping",
    )

    failed = _run_cli(tmp_path, "rewrite", "text", "--set", f"tool.executable={failing}")
    timed_out = _run_cli(
        tmp_path, "rewrite", "text", "--timeout", "0.5", "--set", f"tool.executable={sleeping}"
    )

    assert failed.returncode == 1
    assert "exited with code 7: out of memory" in failed.stderr
    assert timed_out.returncode == 3
    assert "timed out after 0.5 seconds" in timed_out.stderr


def test_missing_tool_exit_code(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path, "rewrite", "text", "--set", "tool.executable=/definitely/missing/ollama"
    )

    assert completed.returncode == 2
    assert "not found" in completed.stderr
    assert completed.stdout == ""


def test_presets_lists_builtins(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "presets", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["active"] == "Improve"
    assert len(payload["presets"]) == 5


def test_interrupt_cancels_and_kills_tool(make_tool, tmp_path: Path, wait_gone) -> None:
    pid_file = tmp_path / "tool.pid"
    tool = make_tool(
        f"""
        import os, time
        with open({str(pid_file)!r}, "w") as handle:
            handle.write(str(os.getpid()))
        time.sleep(60)
        """
    )
    command = [sys.executable, "-m", "rewrite_engine", "rewrite", "text"]
    proc = subprocess.Popen(
        [*command, "--set", f"tool.executable={tool}"],
        cwd=tmp_path,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=_cli_env(),
    )
    try:
        deadline = time.monotonic() + 15
        while not (pid_file.exists() and pid_file.read_text().strip()):
            assert proc.poll() is None, proc.communicate()
            assert time.monotonic() < deadline, "tool never started"
            time.sleep(0.05)
        tool_pid = int(pid_file.read_text())

        proc.send_signal(signal.SIGINT)
        _, stderr = proc.communicate(timeout=15)
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.communicate()

    assert proc.returncode == 130
    assert "cancelled" in stderr
    assert wait_gone(tool_pid)
