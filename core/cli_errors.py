"""Exit codes and error reporting for the planner CLI."""
from __future__ import annotations

import sys
import traceback
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    USAGE = 2  # malformed rules, invalid input
    CONFIG_ERROR = 3
    NOT_FOUND = 6
    INTERRUPTED = 130  # Ctrl+C


@dataclass
class CLIError(Exception):
    """Error that already knows its exit code and an optional hint."""
    message: str
    code: ExitCode = ExitCode.ERROR
    hint: Optional[str] = None

    def __str__(self) -> str:
        return self.message


class ConfigError(CLIError):
    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message, ExitCode.CONFIG_ERROR, hint)


class NotFoundError(CLIError):
    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message, ExitCode.NOT_FOUND, hint)


class UsageError(CLIError):
    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message, ExitCode.USAGE, hint)


def exit_code_for(error: BaseException) -> ExitCode:
    """Map an exception to the exit code the CLI reports for it.

    Lookup failures (missing session/course) are NOT_FOUND; other
    ValueErrors are input problems (USAGE).
    """
    if isinstance(error, CLIError):
        return error.code
    if isinstance(error, KeyboardInterrupt):
        return ExitCode.INTERRUPTED
    if isinstance(error, LookupError):
        return ExitCode.NOT_FOUND
    if isinstance(error, ValueError):
        return ExitCode.USAGE
    return ExitCode.ERROR


def handle_error(error: BaseException, verbose: bool = False) -> int:
    """Print ``error`` to stderr and return its exit code.

    Tracebacks are printed only for unexpected errors in verbose mode.
    """
    code = exit_code_for(error)
    if code is ExitCode.INTERRUPTED:
        print("\nInterrupted.", file=sys.stderr)
        return int(code)
    print(f"Error: {error}", file=sys.stderr)
    hint = getattr(error, "hint", None)
    if hint:
        print(f"Hint: {hint}", file=sys.stderr)
    if verbose and code is ExitCode.ERROR:
        traceback.print_exc()
    return int(code)
