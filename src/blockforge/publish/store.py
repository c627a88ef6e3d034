"""Storage of publish tasks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import PublishTask


class TaskStore:
    """In-memory task map with eviction of finished tasks."""

    def __init__(self, *, max_retained: int = 100, ttl_seconds: float = 3600.0) -> None:
        self._tasks: dict[str, PublishTask] = {}
        self._max_retained = max_retained
        self._ttl = timedelta(seconds=ttl_seconds)

    def insert(self, task: PublishTask) -> None:
        self._tasks[task.id] = task

    def get(self, task_id: str) -> Optional[PublishTask]:
        return self._tasks.get(task_id)

    def remove(self, task_id: str) -> Optional[PublishTask]:
        return self._tasks.pop(task_id, None)

    def values(self) -> list[PublishTask]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def evict(self, now: Optional[datetime] = None) -> list[PublishTask]:
        """Drop expired finished tasks, then the oldest finished ones over capacity.

        Tasks still in flight are never evicted.

        Returns:
            list[PublishTask]: Evicted tasks.
        """
        now = now or datetime.now(timezone.utc)
        evicted: list[PublishTask] = []
        for task in self.values():
            if task.is_terminal and task.finished_at and now - task.finished_at > self._ttl:
                evicted.append(task)
                self.remove(task.id)

        overflow = len(self._tasks) - self._max_retained
        if overflow > 0:
            finished = sorted(
                (task for task in self._tasks.values() if task.is_terminal),
                key=lambda task: task.finished_at or task.created_at,
            )
            for task in finished[:overflow]:
                evicted.append(task)
                self.remove(task.id)
        return evicted


__all__ = ["TaskStore"]
