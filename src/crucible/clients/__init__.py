"""HTTP client helpers shared by remote state stores and providers."""

from crucible.clients.base import (
    BaseHTTPClient,
    PermanentHTTPError,
    RetryableHTTPError,
    is_retryable_status,
)
from crucible.clients.grafana import GrafanaClient

__all__ = [
    "BaseHTTPClient",
    "GrafanaClient",
    "PermanentHTTPError",
    "RetryableHTTPError",
    "is_retryable_status",
]
