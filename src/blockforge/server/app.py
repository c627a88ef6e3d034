"""FastAPI application exposing previews, live reload and publish tasks."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from jinja2 import Environment, PackageLoader, select_autoescape

from blockforge.devserver import DevServer
from blockforge.notify import SSEMessage
from blockforge.publish import (
    CatalogNotConfiguredError,
    PublishRequest,
    PublishValidationError,
    TaskNotFoundError,
    TaskRemoteFailure,
    TaskTransportFailure,
)
from blockforge.resources import (
    AmbiguousResourceError,
    Resource,
    ResourceNotFoundError,
    ResourceType,
)
from blockforge.state import InvalidPreviewStateError, StateError

LOGGER = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (ResourceNotFoundError, 404),
    (TaskNotFoundError, 404),
    (AmbiguousResourceError, 409),
    (PublishValidationError, 400),
    (InvalidPreviewStateError, 400),
    (CatalogNotConfiguredError, 503),
    (TaskRemoteFailure, 502),
    (TaskTransportFailure, 502),
    (StateError, 500),
)

_templates = Environment(
    loader=PackageLoader("blockforge.server", "templates"),
    autoescape=select_autoescape(["html"]),
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _resource_type(value: Optional[str]) -> Optional[ResourceType]:
    if value is None:
        return None
    try:
        return ResourceType(value)
    except ValueError as exc:
        raise PublishValidationError(f"Unknown resource type '{value}'") from exc


def create_app(dev_server: DevServer) -> FastAPI:
    """Create the dev server application.

    The dev server is started and stopped with the application lifespan.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await dev_server.start()
        try:
            yield
        finally:
            await dev_server.stop()

    app = FastAPI(title="BlockForge dev server", lifespan=lifespan)
    app.state.dev_server = dev_server

    dev_server.dev_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/assets", StaticFiles(directory=dev_server.dev_dir, check_dir=False), name="assets")

    for error_cls, status_code in _ERROR_STATUS:
        app.add_exception_handler(error_cls, _handler_for(status_code))

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            message = str(error.get("msg"))
            messages.append(f"{location}: {message}" if location else message)
        return _error(400, "; ".join(messages) or "Invalid request")

    def describe(resource: Resource) -> dict[str, Any]:
        summary = resource.summary()
        summary["build"] = dev_server.artifacts.status(resource.key)
        return summary

    # ------------------------------------------------------------------ #
    # Pages                                                              #
    # ------------------------------------------------------------------ #

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        template = _templates.get_template("index.html")
        return HTMLResponse(
            template.render(
                project_name=dev_server.project_root.name,
                resources=[describe(resource) for resource in dev_server.registry.list()],
                warnings=[str(warning) for warning in dev_server.scan_result.warnings],
            )
        )

    @app.get("/preview/{name}", response_class=HTMLResponse)
    async def preview_page(name: str, type: Optional[str] = Query(default=None)) -> HTMLResponse:
        resource = dev_server.registry.resolve(name, _resource_type(type))
        latest = dev_server.artifacts.latest(resource.key)
        good = dev_server.artifacts.last_good(resource.key)
        failure = latest.summary() if latest is not None and not latest.ok else None

        def asset_url(path: Any) -> Optional[str]:
            if good is None or path is None:
                return None
            return f"/assets/{path.name}?v={int(good.built_at.timestamp() * 1000)}"

        template = _templates.get_template("preview.html")
        return HTMLResponse(
            template.render(
                resource=resource.summary(),
                script_url=asset_url(good.script_path if good else None),
                stylesheet_url=asset_url(good.stylesheet_path if good else None),
                failure=failure,
                preview_state=await dev_server.registry.read_preview(resource.key),
            )
        )

    # ------------------------------------------------------------------ #
    # Registry and preview state                                         #
    # ------------------------------------------------------------------ #

    @app.get("/api/resources")
    async def list_resources(type: Optional[str] = Query(default=None)) -> dict[str, Any]:
        resources = dev_server.registry.list(_resource_type(type))
        return {"resources": [describe(resource) for resource in resources]}

    @app.get("/api/resources/{name}")
    async def get_resource(name: str, type: Optional[str] = Query(default=None)) -> dict[str, Any]:
        resource = dev_server.registry.resolve(name, _resource_type(type))
        payload = describe(resource)
        latest = dev_server.artifacts.latest(resource.key)
        payload["artifact"] = latest.summary() if latest else None
        payload["previewState"] = await dev_server.registry.read_preview(resource.key)
        return payload

    @app.get("/api/preview/{name}")
    async def get_preview(name: str, type: Optional[str] = Query(default=None)) -> dict[str, Any]:
        resource = dev_server.registry.resolve(name, _resource_type(type))
        return await dev_server.registry.read_preview(resource.key)

    @app.post("/api/preview/{name}")
    async def save_preview(
        name: str, request: Request, type: Optional[str] = Query(default=None)
    ) -> dict[str, Any]:
        resource = dev_server.registry.resolve(name, _resource_type(type))
        try:
            state = await request.json()
        except ValueError as exc:
            raise InvalidPreviewStateError("Preview state must be valid JSON") from exc
        return await dev_server.registry.write_preview(resource.key, state)

    # ------------------------------------------------------------------ #
    # Live reload                                                        #
    # ------------------------------------------------------------------ #

    @app.get("/events")
    async def events(
        resource: Optional[str] = Query(default=None),
        type: Optional[str] = Query(default=None),
    ) -> StreamingResponse:
        scope_type = None
        if resource is not None:
            scope_type = dev_server.registry.resolve(resource, _resource_type(type)).type.value
        session = dev_server.notifier.subscribe(resource, scope_type)
        return StreamingResponse(
            dev_server.notifier.stream(session),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    # ------------------------------------------------------------------ #
    # Publishing                                                         #
    # ------------------------------------------------------------------ #

    @app.post("/api/resources/{name}/publish", status_code=202)
    async def publish(name: str, payload: PublishRequest) -> dict[str, str]:
        task_id = dev_server.tracker.create(
            name,
            payload.target,
            workspace_id=payload.workspace_id,
            version_bump=payload.version_bump,
            resource_type=payload.resource_type,
        )
        return {"taskId": task_id}

    @app.get("/api/publish")
    async def list_tasks() -> dict[str, Any]:
        return {"tasks": dev_server.tracker.tasks()}

    @app.get("/api/publish/{task_id}")
    async def publish_progress(task_id: str) -> dict[str, Any]:
        return dev_server.tracker.get_progress(task_id)

    async def _progress_stream(task_id: str) -> AsyncIterator[str]:
        async for snapshot in dev_server.tracker.stream(task_id):
            yield SSEMessage(event="progress", data=snapshot).serialize()

    @app.get("/api/publish/{task_id}/stream")
    async def publish_stream(task_id: str) -> StreamingResponse:
        dev_server.tracker.get(task_id)
        return StreamingResponse(
            _progress_stream(task_id), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @app.get("/api/publish/progress/{task_id}")
    async def publish_stream_alias(task_id: str) -> StreamingResponse:
        return await publish_stream(task_id)

    @app.get("/api/workspaces")
    async def workspaces() -> dict[str, Any]:
        if dev_server.catalog is None:
            raise CatalogNotConfiguredError(
                "Catalog API token not configured; set catalog.api_token to list workspaces"
            )
        return {"workspaces": await dev_server.catalog.list_workspaces()}

    return app


def _handler_for(status_code: int) -> Callable[[Request, Exception], Awaitable[JSONResponse]]:
    async def _handle(_: Request, exc: Exception) -> JSONResponse:
        message = getattr(exc, "message", None) or str(exc)
        if status_code >= 500:
            LOGGER.error("%s: %s", type(exc).__name__, message)
        return _error(status_code, message)

    return _handle


__all__ = ["create_app", "SSE_HEADERS"]
