"""Hot-reload event payloads and their server-sent-event encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ALL_RESOURCES = "*"


class ReloadEvent(BaseModel):
    """Notification sent to preview sessions after a rebuild.

    Attributes:
        resource: Name of the rebuilt resource, or ``"*"`` after a global rebuild.
        resource_type: Type of the rebuilt resource; ``None`` for global rebuilds.
        config_changed: Whether schema or metadata changed, so clients should
            re-fetch them instead of only reloading the bundle.
        ok: Whether the rebuild succeeded; failed rebuilds keep serving the
            previous artifact.
    """

    model_config = ConfigDict(populate_by_name=True)

    ALL: ClassVar[str] = ALL_RESOURCES

    type: Literal["reload"] = "reload"
    resource: str
    resource_type: Optional[str] = Field(default=None, alias="resourceType")
    config_changed: bool = Field(default=False, alias="configChanged")
    ok: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_global(self) -> bool:
        return self.resource == ALL_RESOURCES

    def matches(self, scope: Optional[str], scope_type: Optional[str] = None) -> bool:
        """Return whether a session scoped to ``scope`` should receive the event.

        A session scoped by name alone receives events for every resource type
        sharing that name; ``scope_type`` narrows it to one type.
        """
        if scope is None or self.is_global:
            return True
        if self.resource != scope:
            return False
        return scope_type is None or self.resource_type == scope_type

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(slots=True)
class SSEMessage:
    """One server-sent event frame."""

    data: dict[str, Any]
    event: Optional[str] = None
    id: Optional[str] = None
    retry: Optional[int] = None

    def serialize(self) -> str:
        lines = []
        if self.id:
            lines.append(f"id: {self.id}")
        if self.event:
            lines.append(f"event: {self.event}")
        if self.retry is not None:
            lines.append(f"retry: {self.retry}")
        for line in json.dumps(self.data).split("\n"):
            lines.append(f"data: {line}")
        lines.append("")
        return "\n".join(lines) + "\n"


def sse_comment(text: str) -> str:
    """Return an SSE comment frame, ignored by clients but keeping proxies awake."""
    return f": {text}\n\n"


__all__ = ["ALL_RESOURCES", "ReloadEvent", "SSEMessage", "sse_comment"]
