"""
Unified error handling for crucible.

This module defines the error taxonomy of the engine, the control signals
handlers use to steer the lifecycle, and the exit-code mapping used by the
CLI entry points.

Exit Codes:
- 0: Success (including a destroy run)
- 10: Configuration error (missing provider, unsafe state store, bad options)
- 11: Provider error (a resource handler failed)
- 12: Validation error (identity conflicts, illegal lifecycle calls)
- 13: State error (state store or secret codec failure)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    STATE_ERROR = 13
    UNKNOWN_ERROR = 127


class CrucibleError(Exception):
    """Base exception for crucible errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CrucibleError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ProviderNotFoundError(ConfigurationError):
    """Raised when no provider is registered for a resource kind."""

    def __init__(self, kind: str, fqn: str | None = None):
        target = f'resource "{fqn}" ' if fqn else ""
        super().__init__(
            f'No provider registered for {target}kind "{kind}". '
            "Import the module that defines it before running.",
            {"kind": kind, **({"fqn": fqn} if fqn else {})},
        )
        self.kind = kind


class ProviderError(CrucibleError):
    """Raised when a resource handler or its remote service fails."""

    exit_code = ExitCode.PROVIDER_ERROR


class ValidationError(CrucibleError):
    """Raised for validation failures."""

    exit_code = ExitCode.VALIDATION_ERROR


class IdentityConflictError(ValidationError):
    """Raised when an id is reused with a different kind across runs."""


class LifecycleError(ValidationError):
    """Raised when a handler uses a lifecycle operation in the wrong phase."""


class ScopeError(ValidationError):
    """Raised for misuse of the scope tree (no active scope, LIFO violations)."""


class ScopeConflictError(ScopeError):
    """Raised when a sibling scope or resource name is declared twice."""


class ResourceNotFoundError(CrucibleError):
    """Raised in read phase when a resource has no usable state."""

    exit_code = ExitCode.VALIDATION_ERROR


class StateStoreError(CrucibleError):
    """Raised when a state store cannot read or write a record."""

    exit_code = ExitCode.STATE_ERROR


class SecretError(StateStoreError):
    """Raised when a secret cannot be encrypted or decrypted."""


class ControlSignal(Exception):
    """Base for lifecycle signals raised by handlers. Never a failure."""


class DestroyedSignal(ControlSignal):
    """Raised by ``Context.destroy()`` once a delete has completed."""


class ReplacedSignal(ControlSignal):
    """Raised by ``Context.replace()`` when an update cannot be applied in place."""


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - CrucibleError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - SystemExit: Passed through with its code
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except CrucibleError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                from crucible.cli.ux import error as print_error

                print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except SystemExit as e:
                return e.code if isinstance(e.code, int) else ExitCode.SUCCESS
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: CrucibleError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
