"""Publishing resources to the remote catalog."""

from .client import CatalogClient, CatalogService
from .errors import (
    CatalogNotConfiguredError,
    PublishError,
    PublishValidationError,
    TaskNotFoundError,
    TaskRemoteFailure,
    TaskTimeout,
    TaskTransportFailure,
)
from .models import (
    PROGRESS_SCHEDULE,
    PublishRequest,
    PublishTarget,
    PublishTask,
    TaskError,
    TaskStatus,
    TaskStep,
    VersionBump,
)
from .store import TaskStore
from .tracker import PublishTaskTracker
from .versioning import bump_version

__all__ = [
    "CatalogClient",
    "CatalogService",
    "CatalogNotConfiguredError",
    "PublishError",
    "PublishValidationError",
    "TaskNotFoundError",
    "TaskRemoteFailure",
    "TaskTimeout",
    "TaskTransportFailure",
    "PROGRESS_SCHEDULE",
    "PublishRequest",
    "PublishTarget",
    "PublishTask",
    "TaskError",
    "TaskStatus",
    "TaskStep",
    "VersionBump",
    "TaskStore",
    "PublishTaskTracker",
    "bump_version",
]
