"""Preview session bookkeeping and hot-reload broadcasting."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from .models import ReloadEvent, SSEMessage, sse_comment

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class PreviewSession:
    """One connected preview client.

    Attributes:
        id: Session identifier.
        resource: Resource name the session is scoped to, or ``None`` for all.
        resource_type: Resource type narrowing ``resource``, or ``None`` for any.
        queue: Pending events; ``None`` entries wake a closing stream.
        closed: Set once the session has been removed.
    """

    queue: asyncio.Queue[Optional[ReloadEvent]]
    resource: Optional[str] = None
    resource_type: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False

    def deliver(self, event: ReloadEvent) -> bool:
        """Queue ``event`` without waiting; return ``False`` if the session cannot take it."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class SessionStore:
    """In-memory set of live sessions keyed by id."""

    def __init__(self) -> None:
        self._sessions: dict[str, PreviewSession] = {}

    def insert(self, session: PreviewSession) -> None:
        self._sessions[session.id] = session

    def remove(self, session_id: str) -> Optional[PreviewSession]:
        return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Optional[PreviewSession]:
        return self._sessions.get(session_id)

    def values(self) -> list[PreviewSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)


class HotReloadNotifier:
    """Push reload notifications to every open preview session.

    Delivery is best effort: a session whose queue is closed or full is
    dropped on that write and the broadcast carries on with the rest. Events
    reach each session in the order :meth:`broadcast` was called.
    """

    def __init__(
        self,
        *,
        queue_size: int = 100,
        heartbeat_seconds: float = 15.0,
        store: Optional[SessionStore] = None,
    ) -> None:
        self._queue_size = queue_size
        self._heartbeat = heartbeat_seconds
        self._store = store or SessionStore()

    def __len__(self) -> int:
        return len(self._store)

    @property
    def sessions(self) -> list[PreviewSession]:
        return self._store.values()

    def subscribe(
        self, resource: Optional[str] = None, resource_type: Optional[str] = None
    ) -> PreviewSession:
        """Open a session, optionally scoped to one resource name and type."""
        session = PreviewSession(
            queue=asyncio.Queue(maxsize=self._queue_size),
            resource=resource,
            resource_type=resource_type if resource is not None else None,
        )
        self._store.insert(session)
        LOGGER.debug(
            "Preview session %s opened (scope=%s%s)",
            session.id,
            resource or "*",
            f", type={resource_type}" if session.resource_type else "",
        )
        return session

    def unsubscribe(self, session: PreviewSession | str) -> bool:
        """Remove a session; removing an unknown or already removed session is a no-op."""
        session_id = session if isinstance(session, str) else session.id
        removed = self._store.remove(session_id)
        if removed is None:
            return False
        removed.close()
        LOGGER.debug("Preview session %s closed", session_id)
        return True

    def broadcast(self, event: ReloadEvent) -> int:
        """Send ``event`` to every matching session.

        Returns:
            int: Number of sessions the event was queued for.
        """
        delivered = 0
        for session in self._store.values():
            if not event.matches(session.resource, session.resource_type):
                continue
            if session.deliver(event):
                delivered += 1
            else:
                LOGGER.info("Dropping unresponsive preview session %s", session.id)
                self.unsubscribe(session)
        LOGGER.debug("Broadcast reload for %s to %d session(s)", event.resource, delivered)
        return delivered

    async def stream(self, session: PreviewSession) -> AsyncIterator[str]:
        """Yield SSE frames for a session until it closes.

        The session is unsubscribed when the consumer stops iterating.
        """
        try:
            yield SSEMessage(
                event="connected",
                data={
                    "session": session.id,
                    "resource": session.resource,
                    "resourceType": session.resource_type,
                },
                retry=3000,
            ).serialize()
            while not session.closed:
                try:
                    event = await asyncio.wait_for(session.queue.get(), timeout=self._heartbeat)
                except asyncio.TimeoutError:
                    yield sse_comment("heartbeat")
                    continue
                if event is None:
                    break
                yield SSEMessage(event=event.type, data=event.payload()).serialize()
        finally:
            self.unsubscribe(session)

    def close_all(self) -> None:
        for session in self._store.values():
            self.unsubscribe(session)


__all__ = ["PreviewSession", "SessionStore", "HotReloadNotifier"]
