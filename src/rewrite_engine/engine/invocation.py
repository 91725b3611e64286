"""
rewrite-engine — invocation builder

File: src/rewrite_engine/engine/invocation.py

Purpose
- Turn a ``RewriteRequest`` plus an ``InvocationConfig`` snapshot into the
  argv / stdin / input-file triple used to launch the tool.

Functional requirements
- Prompt delivery is a pluggable strategy: piped stdin, temporary input file,
  or a single argv element.
- No shell is ever involved. Argument delivery runs text through
  ``escape_argument`` and guards positional prompts that look like options.
- Numeric settings use locale-independent formatting.
- Input artifacts are removed if building fails after they were written.

Non-functional requirements
- Building is synchronous and cheap; the only side effect is the optional
  input artifact.
"""

from __future__ import annotations

import contextlib
import shlex
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final, Protocol

from rewrite_engine.engine.errors import ConfigurationError
from rewrite_engine.engine.models import (
    DeliveryMode,
    InvocationConfig,
    InvocationSpec,
    RewriteRequest,
    ToolBackend,
)
from rewrite_engine.utils.fs import remove_artifact, write_input_artifact

if TYPE_CHECKING:
    import os

PROMPT_TEMPLATE: Final[str] = "{prompt}\n\nText to rewrite:\n{text}"

# Stays under the Windows CreateProcess command-line limit (32767 chars).
MAX_ARGUMENT_CHARS: Final[int] = 30_000

SUPPORTED_DELIVERY: Final[dict[ToolBackend, tuple[DeliveryMode, ...]]] = {
    ToolBackend.OLLAMA: (DeliveryMode.STDIN, DeliveryMode.ARGUMENT),
    ToolBackend.LLAMA_CPP: (DeliveryMode.FILE, DeliveryMode.ARGUMENT),
}

DEFAULT_DELIVERY: Final[dict[ToolBackend, DeliveryMode]] = {
    ToolBackend.OLLAMA: DeliveryMode.STDIN,
    ToolBackend.LLAMA_CPP: DeliveryMode.FILE,
}


def compose_prompt(prompt: str, text: str) -> str:
    """Assemble the single prompt string handed to the tool."""
    return PROMPT_TEMPLATE.format(prompt=prompt.strip(), text=text)


def escape_argument(text: str) -> str:
    """Make ``text`` safe to pass verbatim as one argv element.

    Arguments go straight to ``execve`` / ``CreateProcess`` without a shell, so
    quoting and metacharacters need no treatment. The remaining hazards are:

    - NUL characters, which terminate a C argv string early: removed.
    - CRLF pairs, which Windows argument parsing may split: folded to LF.
    - Lone CR: folded to LF.
    """
    return text.replace("\x00", "").replace("\r\n", "\n").replace("\r", "\n")


def format_temperature(value: float) -> str:
    return f"{value:.2f}"


def format_max_tokens(value: int) -> str:
    return str(int(value))


@dataclass(frozen=True, slots=True)
class DeliveredPayload:
    """What a delivery strategy produced for one prompt."""

    mode: DeliveryMode
    stdin_payload: bytes | None = None
    input_artifact: Path | None = None
    argument: str | None = None


class PayloadDelivery(Protocol):
    """Strategy that hands the composed prompt to the tool."""

    mode: DeliveryMode

    def deliver(self, prompt_text: str) -> DeliveredPayload:
        """Produce the payload for ``prompt_text``."""


class StdinDelivery:
    """Pipe the prompt on standard input (never parsed by a launcher)."""

    mode = DeliveryMode.STDIN

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding

    def deliver(self, prompt_text: str) -> DeliveredPayload:
        return DeliveredPayload(mode=self.mode, stdin_payload=prompt_text.encode(self._encoding))


class InputFileDelivery:
    """Write the prompt to a temporary file whose path is passed to the tool."""

    mode = DeliveryMode.FILE

    def __init__(self, directory: str | os.PathLike[str] | None = None) -> None:
        self._directory = directory

    def deliver(self, prompt_text: str) -> DeliveredPayload:
        try:
            artifact = write_input_artifact(prompt_text, directory=self._directory)
        except OSError as exc:
            raise ConfigurationError(f"unable to write prompt input file: {exc}") from exc
        return DeliveredPayload(mode=self.mode, input_artifact=artifact)


class ArgumentDelivery:
    """Embed the escaped prompt as a single argv element."""

    mode = DeliveryMode.ARGUMENT

    def __init__(self, max_chars: int = MAX_ARGUMENT_CHARS) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be > 0")
        self._max_chars = max_chars

    def deliver(self, prompt_text: str) -> DeliveredPayload:
        escaped = escape_argument(prompt_text)
        if len(escaped) > self._max_chars:
            raise ConfigurationError(
                f"prompt is {len(escaped)} characters; argument delivery allows at most "
                f"{self._max_chars}. Use stdin or file delivery instead."
            )
        return DeliveredPayload(mode=self.mode, argument=escaped)


def default_strategies() -> dict[DeliveryMode, PayloadDelivery]:
    return {
        DeliveryMode.STDIN: StdinDelivery(),
        DeliveryMode.FILE: InputFileDelivery(),
        DeliveryMode.ARGUMENT: ArgumentDelivery(),
    }


class InvocationBuilder:
    """Build ``InvocationSpec`` objects for the configured backend."""

    def __init__(
        self,
        *,
        strategies: Mapping[DeliveryMode, PayloadDelivery] | None = None,
        check_paths: bool = True,
    ) -> None:
        self._strategies = dict(strategies) if strategies is not None else default_strategies()
        self._check_paths = check_paths

    def build(self, request: RewriteRequest, config: InvocationConfig) -> InvocationSpec:
        if self._check_paths:
            _validate_paths(config)
        mode = resolve_delivery(config)
        strategy = self._strategies.get(mode)
        if strategy is None:
            raise ConfigurationError(f"no delivery strategy registered for {mode.value!r}")

        payload = strategy.deliver(compose_prompt(request.prompt, request.text))
        try:
            arguments = _arguments_for(config, payload)
        except BaseException:
            if payload.input_artifact is not None:
                with contextlib.suppress(OSError):
                    remove_artifact(payload.input_artifact)
            raise

        return InvocationSpec(
            executable=config.executable,
            arguments=arguments,
            stdin_payload=payload.stdin_payload,
            input_artifact=payload.input_artifact,
            delivery=mode,
        )

    def discard(self, spec: InvocationSpec) -> bool:
        """Delete the spec's input artifact, if any. Returns ``True`` when removed."""
        if spec.input_artifact is None:
            return False
        return remove_artifact(spec.input_artifact)


def resolve_delivery(config: InvocationConfig) -> DeliveryMode:
    if config.delivery is DeliveryMode.AUTO:
        return DEFAULT_DELIVERY[config.backend]
    supported = SUPPORTED_DELIVERY[config.backend]
    if config.delivery not in supported:
        allowed = ", ".join(mode.value for mode in supported)
        raise ConfigurationError(
            f"delivery {config.delivery.value!r} is not supported by {config.backend.value}; "
            f"expected one of: {allowed}"
        )
    return config.delivery


def describe_command(spec: InvocationSpec) -> str:
    """Shell-quoted argv for logs, with an embedded prompt replaced by its size."""
    parts = list(spec.argv)
    if spec.delivery is DeliveryMode.ARGUMENT and len(parts) > 1:
        parts[-1] = f"<prompt:{len(parts[-1])} chars>"
    rendered = shlex.join(parts)
    if spec.stdin_payload is not None:
        rendered += f" < <stdin:{len(spec.stdin_payload)} bytes>"
    return rendered


def _arguments_for(config: InvocationConfig, payload: DeliveredPayload) -> tuple[str, ...]:
    if config.backend is ToolBackend.OLLAMA:
        # `ollama run` reads the prompt from stdin or from trailing positionals.
        args = ["run", config.model]
        if payload.mode is DeliveryMode.ARGUMENT:
            prompt = payload.argument or ""
            if prompt.startswith("-"):
                args.append("--")
            args.append(prompt)
        return tuple(args)

    args = [
        "-m",
        config.model_path or "",
        "-n",
        format_max_tokens(config.max_tokens),
        "--temp",
        format_temperature(config.temperature),
        "--no-display-prompt",
    ]
    if payload.mode is DeliveryMode.FILE:
        args.extend(["-f", str(payload.input_artifact)])
    elif payload.mode is DeliveryMode.ARGUMENT:
        args.extend(["-p", payload.argument or ""])
    return tuple(args)


def _validate_paths(config: InvocationConfig) -> None:
    executable = config.executable.strip()
    if not executable:
        raise ConfigurationError("tool executable is not configured")
    if not Path(executable).is_file() and shutil.which(executable) is None:
        raise ConfigurationError(f"tool executable not found: {executable}")

    if config.backend is ToolBackend.LLAMA_CPP:
        if config.model_path is None:
            raise ConfigurationError("llama.cpp backend requires tool.model_path")
        if not Path(config.model_path).is_file():
            raise ConfigurationError(f"model file not found: {config.model_path}")


__all__ = [
    "DEFAULT_DELIVERY",
    "MAX_ARGUMENT_CHARS",
    "PROMPT_TEMPLATE",
    "SUPPORTED_DELIVERY",
    "ArgumentDelivery",
    "DeliveredPayload",
    "InputFileDelivery",
    "InvocationBuilder",
    "PayloadDelivery",
    "StdinDelivery",
    "compose_prompt",
    "describe_command",
    "escape_argument",
    "format_max_tokens",
    "format_temperature",
    "resolve_delivery",
]
