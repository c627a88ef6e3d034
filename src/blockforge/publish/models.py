"""Publish task state models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Lifecycle states of a publish task."""

    PENDING = "pending"
    BUILDING = "building"
    VALIDATING = "validating"
    PUBLISHING = "publishing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


STATUS_ORDER = (
    TaskStatus.PENDING,
    TaskStatus.BUILDING,
    TaskStatus.VALIDATING,
    TaskStatus.PUBLISHING,
    TaskStatus.COMPLETED,
)

PROGRESS_SCHEDULE: Dict[TaskStatus, int] = {
    TaskStatus.PENDING: 0,
    TaskStatus.BUILDING: 10,
    TaskStatus.VALIDATING: 30,
    TaskStatus.PUBLISHING: 50,
    TaskStatus.COMPLETED: 100,
}


class PublishTarget(str, Enum):
    """Destinations a resource can be published to."""

    MARKETPLACE = "marketplace"
    WORKSPACE = "workspace"


class VersionBump(str, Enum):
    """Semantic version increments applied before publishing."""

    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"
    NONE = "none"


class PublishRequest(BaseModel):
    """Body of a publish request.

    Attributes:
        target: Destination of the publish.
        workspace_id: Workspace receiving a workspace publish.
        version_bump: Version increment written to ``package.json`` first.
        resource_type: Disambiguates names shared by a block and a template.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    target: PublishTarget
    workspace_id: Optional[str] = Field(default=None, alias="workspaceId")
    version_bump: VersionBump = Field(default=VersionBump.PATCH, alias="versionBump")
    resource_type: Optional[Literal["block", "template"]] = Field(
        default=None, alias="resourceType"
    )


class TaskStep(BaseModel):
    """One entry of a task's append-only step log."""

    name: str
    status: Literal["running", "completed", "failed"]
    message: str
    at: datetime = Field(default_factory=_utcnow)


class TaskError(BaseModel):
    """Failure recorded on a task.

    Attributes:
        kind: Category of failure.
        message: Human-readable reason.
        code: Machine-readable code reported by the catalog, when any.
        quota: Whether the failure is a plan or quota limit.
    """

    kind: Literal["timeout", "remote", "transport", "build", "validation", "internal"]
    message: str
    code: Optional[str] = None
    quota: bool = False


class PublishTask(BaseModel):
    """One publish attempt. Only the tracker mutates these objects."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    resource_name: str
    resource_type: str
    target: PublishTarget
    workspace_id: Optional[str] = None
    version_bump: VersionBump = VersionBump.PATCH
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    steps: List[TaskStep] = Field(default_factory=list)
    error: Optional[TaskError] = None
    result: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    revision: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> dict[str, Any]:
        """Return a detached JSON view of the task."""
        return {
            "taskId": self.id,
            "resource": self.resource_name,
            "resourceType": self.resource_type,
            "target": self.target.value,
            "workspaceId": self.workspace_id,
            "status": self.status.value,
            "progress": self.progress,
            "steps": [step.model_dump(mode="json") for step in self.steps],
            "error": self.error.model_dump(mode="json") if self.error else None,
            "result": dict(self.result),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


__all__ = [
    "TaskStatus",
    "STATUS_ORDER",
    "PROGRESS_SCHEDULE",
    "PublishTarget",
    "VersionBump",
    "PublishRequest",
    "TaskStep",
    "TaskError",
    "PublishTask",
]
