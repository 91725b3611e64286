"""Executable CLI entrypoint for ``rewrite_engine``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    PROCESS_FAILURE = 1
    CONFIG_ERROR = 2
    TIMEOUT = 3
    INTERNAL_ERROR = 4
    CANCELLED = 130


_KNOWN_CODES = frozenset(code.value for code in ExitCode)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m rewrite_engine`` and the console script."""

    try:
        from rewrite_engine.ui.cli import run_cli

        code: object = run_cli(argv)
    except SystemExit as exc:
        code = exc.code
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        routed = _route_exception(exc)
        if routed is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(routed)

    if code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(code, int) and code in _KNOWN_CODES:
        return code
    if isinstance(code, str) and code.strip():
        print(code.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def main() -> None:
    """Console-script entrypoint."""

    raise SystemExit(cli_entrypoint())


def _route_exception(exc: BaseException) -> ExitCode:
    """Map ``exc`` (or the first recognized error in its cause chain) to an exit code."""
    from rewrite_engine.config import ConfigLoadError, ConfigValidationError
    from rewrite_engine.engine.errors import (
        ConfigurationError,
        ProcessFailure,
        RewriteCancelledError,
        RewriteTimeoutError,
    )
    from rewrite_engine.prompts import PresetLibraryError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((RewriteCancelledError, KeyboardInterrupt), ExitCode.CANCELLED),
        ((RewriteTimeoutError,), ExitCode.TIMEOUT),
        ((ProcessFailure,), ExitCode.PROCESS_FAILURE),
        (
            (ConfigurationError, ConfigLoadError, ConfigValidationError, PresetLibraryError),
            ExitCode.CONFIG_ERROR,
        ),
    )
    for item in _causes(exc):
        for types, code in routes:
            if isinstance(item, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "cli_entrypoint", "main"]
