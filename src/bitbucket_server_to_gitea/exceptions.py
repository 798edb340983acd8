"""
Custom exception classes for the Bitbucket Server to Gitea migration tool.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class ConfigError(MigrationError):
    """Raised when required configuration is missing or invalid."""


class RemoteAPIError(MigrationError):
    """Raised when Bitbucket or Gitea answers with a non-2xx status.

    ``status`` is None when the request never got a response (connection
    refused, TLS failure, ...).
    """

    def __init__(self, status: int | None, message: str) -> None:
        self.status: int | None = status
        self.message: str = message
        prefix = f"HTTP {status}" if status is not None else "Request failed"
        super().__init__(f"{prefix}: {message}")


class GroupResolutionError(MigrationError):
    """Raised when the members of a source group cannot be fetched."""

    def __init__(self, group: str, reason: str) -> None:
        self.group: str = group
        super().__init__(f"Failed to resolve members of group '{group}': {reason}")


class InvalidPermissionError(MigrationError):
    """Raised when a permission level has no mapping in the given scope."""

    def __init__(self, level: str, scope: str) -> None:
        self.level: str = level
        self.scope: str = scope
        super().__init__(f"Permission '{level}' is not valid at {scope} scope")


class CloneLinkError(MigrationError):
    """Raised when a repository exposes no HTTP clone link."""


class DeadlineExceededError(MigrationError):
    """Raised when the overall migration timeout has elapsed."""
