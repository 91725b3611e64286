"""Rewrite engine: gate, invocation builder, process runner, lifecycle and coordinator."""

from rewrite_engine.engine.coordinator import ConfigSource, RewriteEngine, RewriteState
from rewrite_engine.engine.errors import (
    ConfigurationError,
    EngineDisposedError,
    ProcessFailure,
    RewriteCancelledError,
    RewriteError,
    RewriteTimeoutError,
)
from rewrite_engine.engine.invocation import (
    ArgumentDelivery,
    InputFileDelivery,
    InvocationBuilder,
    PayloadDelivery,
    StdinDelivery,
    compose_prompt,
    describe_command,
    escape_argument,
)
from rewrite_engine.engine.lifecycle import (
    CompletionKind,
    CompletionOutcome,
    LifecycleController,
    kill_process_tree,
)
from rewrite_engine.engine.models import (
    DeliveryMode,
    InvocationConfig,
    InvocationSpec,
    RewriteRequest,
    RewriteResult,
    ToolBackend,
)
from rewrite_engine.engine.runner import BoundedBuffer, ProcessRunner, RunningProcess
from rewrite_engine.engine.tool_detection import (
    ToolBackendInfo,
    detect_tool_backend,
    resolve_tool_executable,
)

__all__ = [
    "ArgumentDelivery",
    "BoundedBuffer",
    "CompletionKind",
    "CompletionOutcome",
    "ConfigSource",
    "ConfigurationError",
    "DeliveryMode",
    "EngineDisposedError",
    "InputFileDelivery",
    "InvocationBuilder",
    "InvocationConfig",
    "InvocationSpec",
    "LifecycleController",
    "PayloadDelivery",
    "ProcessFailure",
    "ProcessRunner",
    "RewriteCancelledError",
    "RewriteEngine",
    "RewriteError",
    "RewriteRequest",
    "RewriteResult",
    "RewriteState",
    "RewriteTimeoutError",
    "RunningProcess",
    "StdinDelivery",
    "ToolBackend",
    "ToolBackendInfo",
    "compose_prompt",
    "describe_command",
    "detect_tool_backend",
    "escape_argument",
    "kill_process_tree",
    "resolve_tool_executable",
]
