"""Core modules for crucible - centralized definitions and utilities."""

from crucible.core.errors import (
    ConfigurationError,
    ControlSignal,
    CrucibleError,
    DestroyedSignal,
    ExitCode,
    IdentityConflictError,
    LifecycleError,
    ProviderError,
    ProviderNotFoundError,
    ReplacedSignal,
    ResourceNotFoundError,
    ScopeConflictError,
    ScopeError,
    SecretError,
    StateStoreError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    # Errors
    "ExitCode",
    "CrucibleError",
    "ConfigurationError",
    "ProviderNotFoundError",
    "ProviderError",
    "ValidationError",
    "IdentityConflictError",
    "LifecycleError",
    "ScopeError",
    "ScopeConflictError",
    "ResourceNotFoundError",
    "StateStoreError",
    "SecretError",
    # Signals
    "ControlSignal",
    "DestroyedSignal",
    "ReplacedSignal",
    # Helpers
    "main_with_error_handling",
    "format_error_message",
]
