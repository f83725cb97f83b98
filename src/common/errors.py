"""DepCompat exception hierarchy.

All project exceptions inherit from DepCompatError so callers can catch
project failures without swallowing unrelated errors.
"""
from __future__ import annotations

from typing import Optional


class DepCompatError(Exception):
    """Base exception for all DepCompat errors."""


class ManifestError(DepCompatError):
    """Raised when the project manifest is missing or is not structured data."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        super().__init__(message)
        self.file_path = file_path


class ValidationError(DepCompatError):
    """Raised when a manifest lacks required identity fields or has malformed sections."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NetworkError(DepCompatError):
    """Raised by the HTTP transport for unreachable hosts and retryable statuses.

    The registry client catches it; it never propagates past the client.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class ConfigError(DepCompatError):
    """Raised for unreadable configuration files or out-of-range settings."""
