"""Command-line interface router for rewrite-engine."""

from __future__ import annotations

import argparse
import asyncio
import functools
import json
import os
import signal
import sys
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from rewrite_engine.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from rewrite_engine.engine import (
    InvocationConfig,
    RewriteEngine,
    RewriteResult,
    ToolBackend,
    detect_tool_backend,
)
from rewrite_engine.observability import setup_logging, shutdown_logging
from rewrite_engine.prompts import PresetLibrary, PresetLibraryError
from rewrite_engine.ui.render import CLIRenderer, create_renderer
from rewrite_engine.utils.concurrency import CancellationToken


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="rewrite-engine",
        description=(
            "rewrite-engine — rewrite text with a local model (Ollama or llama.cpp).\n\n"
            "Common workflows:\n"
            "  rewrite-engine rewrite 'some text'          Rewrite with the active preset\n"
            "  echo text | rewrite-engine rewrite -P Summarize\n"
            "  rewrite-engine presets                      List prompt presets\n"
            "  rewrite-engine doctor                       Check tool and model setup\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to rewrite TOML config (default: ./rewrite.toml if present).",
    )
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config value with a dotted key, e.g. generation.temperature=0.3.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # rewrite -------------------------------------------------------------
    rewrite_parser = subparsers.add_parser(
        "rewrite",
        parents=[common],
        help="Rewrite text (argument or stdin) and print the result",
        description=(
            "Rewrite TEXT, or standard input when TEXT is omitted.\n"
            "Ctrl+C cancels the running tool and cleans up its processes.\n\n"
            "Examples:\n"
            "  rewrite-engine rewrite 'teh quick brwon fox' --preset 'Fix Grammar'\n"
            "  rewrite-engine rewrite --prompt 'Make it sound friendlier' < draft.txt\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    rewrite_parser.add_argument("text", nargs="?", default=None, help="Text to rewrite")
    prompt_group = rewrite_parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "--preset", "-P", default=None, help="Preset name (default: prompts.active_preset)"
    )
    prompt_group.add_argument("--prompt", default=None, help="Explicit instruction prompt")
    rewrite_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Wall-clock budget in seconds (default: 120)",
    )
    rewrite_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    rewrite_parser.set_defaults(handler=_cmd_rewrite)

    # presets -------------------------------------------------------------
    presets_parser = subparsers.add_parser(
        "presets",
        parents=[common],
        help="List built-in and custom prompt presets",
    )
    presets_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    presets_parser.set_defaults(handler=_cmd_presets)

    # doctor --------------------------------------------------------------
    doctor_parser = subparsers.add_parser(
        "doctor",
        parents=[common],
        help="Check tool executable, model file and presets",
        description=(
            "Check config, tool executable resolution and version, model file, and\n"
            "preset library.\n\n"
            "Examples:\n"
            "  rewrite-engine doctor\n"
            "  rewrite-engine doctor --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    doctor_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    doctor_parser.set_defaults(handler=_cmd_doctor)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_rewrite(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    library = _load_presets(config)
    prompt = _resolve_prompt(args, config, library)
    text = args.text if args.text is not None else sys.stdin.read()
    timeout = _resolve_timeout(args)

    handle = setup_logging(_section(config, "observability"), run_id=_new_run_id())
    try:
        result = asyncio.run(_run_rewrite(config, text, prompt, timeout))
    finally:
        shutdown_logging(handle)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "rewrite",
                "text": result.text,
                "elapsed_ms": result.elapsed_ms,
                "stdout_truncated": result.stdout_truncated,
            }
        )
        return 0

    print(result.text)
    if _flag(args, "verbose"):
        renderer = CLIRenderer(verbose=True, stream=sys.stderr)
        renderer.kv("elapsed_ms", result.elapsed_ms)
        if result.stdout_truncated:
            renderer.text("warning: tool output exceeded the capture limit and was truncated")
    return 0


async def _run_rewrite(
    config: Mapping[str, object],
    text: str,
    prompt: str,
    timeout: float | None,
) -> RewriteResult:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    sigint_installed = _install_sigint_handler(loop, token)
    engine_kwargs: dict[str, float] = {}
    if timeout is not None:
        engine_kwargs["timeout_seconds"] = timeout
    try:
        # Settings are resolved lazily so blank input never requires a tool.
        async with RewriteEngine(
            functools.partial(InvocationConfig.from_config, config), **engine_kwargs
        ) as engine:
            return await engine.rewrite(text, prompt, token)
    finally:
        if sigint_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _cmd_presets(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    library = _load_presets(config)
    active = _active_preset(config)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "presets",
                "active": active,
                "presets": [
                    {
                        "name": preset.name,
                        "built_in": preset.built_in,
                        "system_prompt": preset.system_prompt,
                    }
                    for preset in library
                ],
            }
        )
        return 0

    renderer = _get_renderer(args)
    rows = [
        [
            f"{preset.name}{' *' if preset.name == active else ''}",
            "built-in" if preset.built_in else "custom",
            _truncate(preset.system_prompt, 60),
        ]
        for preset in library
    ]
    renderer.table(["name", "type", "prompt"], rows, title="Presets (* = active):")
    return 0


def _cmd_doctor(args: argparse.Namespace) -> int:
    checks: list[tuple[str, bool, str]] = []

    # 1. Config check
    config: dict[str, object] | None = None
    try:
        config = _load_effective_config(args)
        checks.append(("config", True, "loaded successfully"))
    except CLIError as exc:
        checks.append(("config", False, str(exc)))

    if config is not None:
        tool = _section(config, "tool")
        backend = ToolBackend(str(tool.get("backend", ToolBackend.OLLAMA.value)))
        configured = tool.get("executable")

        # 2. Tool executable
        info = detect_tool_backend(backend, configured if isinstance(configured, str) else None)
        if info is None:
            checks.append(("tool", False, f"{backend.value} executable not found"))
        else:
            version = info.version or "unknown version"
            checks.append(("tool", True, f"{backend.value} at {info.binary_path} ({version})"))

        # 3. Model
        if backend is ToolBackend.LLAMA_CPP:
            model_path = str(tool.get("model_path", "") or "")
            if not model_path:
                checks.append(("model", False, "tool.model_path is not set"))
            elif Path(model_path).is_file():
                checks.append(("model", True, model_path))
            else:
                checks.append(("model", False, f"model file not found: {model_path}"))
        else:
            checks.append(("model", True, str(tool.get("model", ""))))

        # 4. Presets
        try:
            library = _load_presets(config)
            active = _active_preset(config)
            if active in library:
                checks.append(("presets", True, f"{len(library)} preset(s), active {active!r}"))
            else:
                checks.append(("presets", False, f"active preset {active!r} is not defined"))
        except CLIError as exc:
            checks.append(("presets", False, str(exc)))
    else:
        checks.append(("tool", False, "skipped (config failed)"))

    all_passed = all(passed for _, passed, _ in checks)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "doctor",
                "checks": [
                    {"name": name, "status": "ok" if passed else "fail", "detail": detail}
                    for name, passed, detail in checks
                ],
                "effective_config": config,
            }
        )
        return 0 if all_passed else 2

    renderer = _get_renderer(args)
    renderer.heading("rewrite-engine doctor")
    for name, passed, detail in checks:
        renderer.check(passed, f"{name}: {detail}")
    if renderer.verbose and config is not None:
        renderer.kv("\neffective config", dump_effective_config(config))

    if all_passed:
        renderer.text("\nAll checks passed.")
        return 0
    renderer.text("\nSome checks failed. See details above.")
    return 2


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, object]:
    config_path = _optional_str(getattr(args, "config_path", None))
    overrides = _parse_overrides(getattr(args, "overrides", None) or [])

    try:
        loaded = load_config(config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    return {key: value for key, value in loaded.items()}


def _parse_overrides(raw_items: Sequence[str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for item in raw_items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise CLIError(f"invalid --set value {item!r}; expected KEY=VALUE", exit_code=2)
        overrides[key.strip()] = _parse_override_value(value.strip())
    return overrides


def _parse_override_value(value: str) -> object:
    lowered = value.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    for parser in (int, float):
        try:
            return parser(value)
        except ValueError:
            continue
    return value


def _load_presets(config: Mapping[str, object]) -> PresetLibrary:
    library_path = _section(config, "prompts").get("library")
    try:
        return PresetLibrary.load(library_path if isinstance(library_path, str) else None)
    except PresetLibraryError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _active_preset(config: Mapping[str, object]) -> str:
    return str(_section(config, "prompts").get("active_preset", "")).strip()


def _resolve_prompt(
    args: argparse.Namespace,
    config: Mapping[str, object],
    library: PresetLibrary,
) -> str:
    explicit = _optional_str(getattr(args, "prompt", None))
    if explicit is not None:
        return explicit
    name = _optional_str(getattr(args, "preset", None)) or _active_preset(config)
    try:
        return library.prompt_for(name)
    except KeyError as exc:
        raise CLIError(str(exc.args[0]), exit_code=2) from exc


def _resolve_timeout(args: argparse.Namespace) -> float | None:
    timeout = getattr(args, "timeout", None)
    if timeout is None:
        return None
    if timeout <= 0:
        raise CLIError("--timeout must be > 0", exit_code=2)
    return float(timeout)


def _install_sigint_handler(
    loop: asyncio.AbstractEventLoop, token: CancellationToken
) -> bool:
    if os.name == "nt":
        return False
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except (NotImplementedError, RuntimeError, ValueError):
        return False
    return True


def _section(config: Mapping[str, object], name: str) -> Mapping[str, object]:
    value = config.get(name)
    if isinstance(value, Mapping):
        return value
    return {}


def _new_run_id() -> str:
    return f"{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}-{uuid.uuid4().hex[:8]}"


def _truncate(text: str, limit: int) -> str:
    flattened = " ".join(text.split())
    if len(flattened) <= limit:
        return flattened
    return flattened[: limit - 3] + "..."


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


__all__ = ["CLIError", "build_parser", "run_cli"]
