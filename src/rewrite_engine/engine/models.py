"""Request, configuration snapshot, and result models for the rewrite engine."""

from __future__ import annotations

import enum
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from rewrite_engine.constants import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_TEMPERATURE,
    MAX_TOKENS_MAX,
    MAX_TOKENS_MIN,
    TEMPERATURE_MAX,
    TEMPERATURE_MIN,
)

if TYPE_CHECKING:
    from rewrite_engine.utils.concurrency import CancellationToken


class ToolBackend(enum.Enum):
    """Supported external text-generation tools."""

    OLLAMA = "ollama"
    LLAMA_CPP = "llama_cpp"


class DeliveryMode(enum.Enum):
    """How the prompt payload reaches the tool."""

    AUTO = "auto"
    STDIN = "stdin"
    FILE = "file"
    ARGUMENT = "argument"


def clamp_temperature(value: float) -> float:
    """Clamp ``value`` into the supported sampling temperature range."""
    parsed = float(value)
    if math.isnan(parsed):
        return DEFAULT_TEMPERATURE
    return min(max(parsed, TEMPERATURE_MIN), TEMPERATURE_MAX)


def clamp_max_tokens(value: int) -> int:
    """Clamp ``value`` into the supported output token range."""
    return min(max(int(value), MAX_TOKENS_MIN), MAX_TOKENS_MAX)


@dataclass(frozen=True, slots=True)
class RewriteRequest:
    """One rewrite call: input text, instruction prompt, optional cancellation."""

    text: str
    prompt: str
    cancel_token: CancellationToken | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.text, str):
            raise TypeError("RewriteRequest.text must be a string")
        if not isinstance(self.prompt, str):
            raise TypeError("RewriteRequest.prompt must be a string")

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True, slots=True)
class InvocationConfig:
    """Read-only snapshot of the tool settings used for a single invocation."""

    executable: str
    backend: ToolBackend = ToolBackend.OLLAMA
    model: str = DEFAULT_OLLAMA_MODEL
    model_path: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    delivery: DeliveryMode = DeliveryMode.AUTO

    def __post_init__(self) -> None:
        if not isinstance(self.executable, str):
            raise TypeError("InvocationConfig.executable must be a string")
        object.__setattr__(self, "backend", ToolBackend(self.backend))
        object.__setattr__(self, "delivery", DeliveryMode(self.delivery))
        model = self.model.strip() if isinstance(self.model, str) else ""
        object.__setattr__(self, "model", model or DEFAULT_OLLAMA_MODEL)
        model_path = self.model_path.strip() if isinstance(self.model_path, str) else ""
        object.__setattr__(self, "model_path", model_path or None)
        object.__setattr__(self, "temperature", clamp_temperature(self.temperature))
        object.__setattr__(self, "max_tokens", clamp_max_tokens(self.max_tokens))

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> InvocationConfig:
        """Build a snapshot from a validated config mapping.

        Resolves the tool executable (see ``tool_detection``); raises
        ``ConfigurationError`` when it cannot be found.
        """
        from rewrite_engine.engine.tool_detection import resolve_tool_executable

        tool = _section(config, "tool")
        generation = _section(config, "generation")
        backend = ToolBackend(str(tool.get("backend", ToolBackend.OLLAMA.value)))
        configured = tool.get("executable")
        executable = resolve_tool_executable(
            backend, configured if isinstance(configured, str) else None
        )
        model_path = tool.get("model_path")
        return cls(
            executable=executable,
            backend=backend,
            model=str(tool.get("model", DEFAULT_OLLAMA_MODEL)),
            model_path=model_path if isinstance(model_path, str) else None,
            temperature=_as_number(generation.get("temperature"), DEFAULT_TEMPERATURE),
            max_tokens=int(_as_number(generation.get("max_tokens"), DEFAULT_MAX_TOKENS)),
            delivery=DeliveryMode(str(tool.get("delivery", DeliveryMode.AUTO.value))),
        )


@dataclass(frozen=True, slots=True)
class InvocationSpec:
    """Concrete launch description for one tool invocation."""

    executable: str
    arguments: tuple[str, ...] = ()
    stdin_payload: bytes | None = None
    input_artifact: Path | None = None
    delivery: DeliveryMode = DeliveryMode.STDIN

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.executable, *self.arguments)


@dataclass(frozen=True, slots=True)
class RewriteResult:
    """Final rewritten text plus timing metadata."""

    text: str
    elapsed_seconds: float
    exit_code: int | None = None
    stdout_truncated: bool = False

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed_seconds * 1000)


def _section(config: Mapping[str, object], name: str) -> Mapping[str, object]:
    value = config.get(name)
    if isinstance(value, Mapping):
        return value
    return {}


def _as_number(value: object, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return float(default)
    return float(value)


__all__ = [
    "DeliveryMode",
    "InvocationConfig",
    "InvocationSpec",
    "RewriteRequest",
    "RewriteResult",
    "ToolBackend",
    "clamp_max_tokens",
    "clamp_temperature",
]
