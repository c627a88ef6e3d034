"""HTTP surface of the development server."""

from .app import SSE_HEADERS, create_app

__all__ = ["SSE_HEADERS", "create_app"]
