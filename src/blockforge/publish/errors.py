"""Exceptions raised by publish operations."""

from __future__ import annotations

from typing import Any, Mapping, Optional

QUOTA_CODES = frozenset({"PLAN_LIMIT_EXCEEDED"})


class PublishError(Exception):
    """Base exception for publish operations."""


class PublishValidationError(PublishError):
    """Raised when a publish request or package metadata is invalid."""


class CatalogNotConfiguredError(PublishError):
    """Raised when publishing is requested without catalog credentials."""


class TaskNotFoundError(PublishError):
    """Raised when a task id is unknown or has been evicted."""


class TaskTimeout(PublishError):
    """Raised when the remote publish call exceeds the tracker's timeout."""


class TaskRemoteFailure(PublishError):
    """Raised when the catalog service rejects a publish.

    Attributes:
        message: Human-readable reason reported by the service.
        code: Machine-readable error code, when provided.
        extensions: Extra error details reported by the service.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        extensions: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.extensions = dict(extensions or {})

    @property
    def is_quota(self) -> bool:
        """Return whether the failure is a plan or quota limit."""
        return self.code in QUOTA_CODES or "limit reached" in self.message.lower()


class TaskTransportFailure(PublishError):
    """Raised when the catalog service cannot be reached."""


__all__ = [
    "QUOTA_CODES",
    "PublishError",
    "PublishValidationError",
    "CatalogNotConfiguredError",
    "TaskNotFoundError",
    "TaskTimeout",
    "TaskRemoteFailure",
    "TaskTransportFailure",
]
