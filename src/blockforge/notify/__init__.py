"""Hot-reload notifications for connected preview sessions."""

from .models import ALL_RESOURCES, ReloadEvent, SSEMessage, sse_comment
from .service import HotReloadNotifier, PreviewSession, SessionStore

__all__ = [
    "ALL_RESOURCES",
    "ReloadEvent",
    "SSEMessage",
    "sse_comment",
    "HotReloadNotifier",
    "PreviewSession",
    "SessionStore",
]
