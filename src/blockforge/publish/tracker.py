"""Publish task state machine with progress streaming."""

from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

from blockforge.build.compiler import ResourceCompiler
from blockforge.build.models import BuildOptions
from blockforge.config.models import PublishSettings
from blockforge.resources.loader import read_manifest, write_manifest
from blockforge.resources.models import Resource, ResourceType
from blockforge.resources.registry import ResourceRegistry

from .client import CatalogService
from .errors import (
    CatalogNotConfiguredError,
    PublishValidationError,
    TaskNotFoundError,
    TaskRemoteFailure,
    TaskTimeout,
    TaskTransportFailure,
)
from .models import (
    PROGRESS_SCHEDULE,
    STATUS_ORDER,
    PublishTarget,
    PublishTask,
    TaskError,
    TaskStatus,
    TaskStep,
    VersionBump,
)
from .payload import marketplace_input, vendor_name_for, workspace_input
from .store import TaskStore
from .versioning import bump_version

LOGGER = logging.getLogger(__name__)

WORKSPACE_EXTERNALS = ("react", "react-dom", "react/jsx-runtime")


class _BuildFailure(Exception):
    pass


def describe_duration(seconds: float) -> str:
    """Return a short human description such as ``3 minutes``."""
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} second{'s' if seconds != 1 else ''}"


class PublishTaskTracker:
    """Create publish tasks and drive each through its steps in the background.

    The tracker is the only writer of :class:`PublishTask` objects. Callers
    read detached snapshots through :meth:`get_progress` or :meth:`stream`.
    """

    def __init__(
        self,
        *,
        registry: ResourceRegistry,
        compiler: ResourceCompiler,
        catalog: Optional[CatalogService],
        out_dir: Path,
        settings: Optional[PublishSettings] = None,
        default_workspace_id: Optional[str] = None,
        target: str = "es2020",
        store: Optional[TaskStore] = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            registry: Registry resources are resolved from.
            compiler: Compiler used for the building step.
            catalog: Remote catalog client; ``None`` disables publishing.
            out_dir: Scratch directory for publish bundles.
            settings: Timeout and retention settings.
            default_workspace_id: Workspace used when a request names none.
            target: JavaScript language target for publish bundles.
            store: Task storage; an in-memory store by default.
        """
        self._settings = settings or PublishSettings()
        self._registry = registry
        self._compiler = compiler
        self._catalog = catalog
        self._out_dir = out_dir
        self._default_workspace_id = default_workspace_id
        self._target = target
        self._store = store or TaskStore(
            max_retained=self._settings.max_retained_tasks,
            ttl_seconds=self._settings.task_ttl_seconds,
        )
        self._running: set[asyncio.Task[None]] = set()
        self._waiters: dict[str, set[asyncio.Event]] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._settings.timeout_seconds

    @property
    def streamed_task_ids(self) -> set[str]:
        """Ids of tasks with at least one stream waiting for their next change."""
        return set(self._waiters)

    def create(
        self,
        resource_name: str,
        target: Union[PublishTarget, str],
        *,
        workspace_id: Optional[str] = None,
        version_bump: Union[VersionBump, str] = VersionBump.PATCH,
        resource_type: Optional[Union[ResourceType, str]] = None,
    ) -> str:
        """Validate a publish request and start it in the background.

        Must be called from a running event loop. Returns as soon as the task
        exists; the publish itself is not awaited.

        Returns:
            str: Identifier of the new task.

        Raises:
            ResourceNotFoundError: If the resource does not exist.
            AmbiguousResourceError: If the name matches several resources.
            PublishValidationError: If the request is malformed; no task is created.
            CatalogNotConfiguredError: If no catalog client is available.
        """
        resource, publish_target, bump, workspace = self._parse_request(
            resource_name, target, workspace_id, version_bump, resource_type
        )
        if self._catalog is None:
            raise CatalogNotConfiguredError(
                "Catalog API token not configured; set catalog.api_token to publish"
            )

        if any(
            not task.is_terminal
            and task.resource_name == resource.name
            and task.resource_type == resource.type.value
            for task in self._store.values()
        ):
            LOGGER.warning(
                "%s already has a publish in flight; starting another one", resource.key
            )

        task = PublishTask(
            resource_name=resource.name,
            resource_type=resource.type.value,
            target=publish_target,
            workspace_id=workspace,
            version_bump=bump,
        )
        self._store.insert(task)
        self._evict()
        LOGGER.info("Publish task %s created for %s (%s)", task.id, resource.key, task.target.value)

        runner = asyncio.get_running_loop().create_task(self._run(task, resource))
        self._running.add(runner)
        runner.add_done_callback(self._running.discard)
        return task.id

    def dry_run(
        self,
        resource_name: str,
        target: Union[PublishTarget, str],
        *,
        workspace_id: Optional[str] = None,
        version_bump: Union[VersionBump, str] = VersionBump.PATCH,
        resource_type: Optional[Union[ResourceType, str]] = None,
    ) -> dict[str, Any]:
        """Run the request and metadata checks of a publish without uploading.

        Nothing is built or written and no task is created, so a catalog client
        is not required.

        Returns:
            dict[str, Any]: The resource, destination and the version it would get.

        Raises:
            ResourceNotFoundError: If the resource does not exist.
            AmbiguousResourceError: If the name matches several resources.
            PublishValidationError: If the request or the package metadata is invalid.
        """
        resource, publish_target, bump, workspace = self._parse_request(
            resource_name, target, workspace_id, version_bump, resource_type
        )
        version = self._next_version(resource, publish_target, bump)
        return {
            "resource": resource.name,
            "resourceType": resource.type.value,
            "packageName": resource.package.name,
            "target": publish_target.value,
            "workspaceId": workspace,
            "currentVersion": resource.package.version,
            "version": version,
        }

    def _parse_request(
        self,
        resource_name: str,
        target: Union[PublishTarget, str],
        workspace_id: Optional[str],
        version_bump: Union[VersionBump, str],
        resource_type: Optional[Union[ResourceType, str]],
    ) -> tuple[Resource, PublishTarget, VersionBump, Optional[str]]:
        try:
            publish_target = PublishTarget(target)
        except ValueError as exc:
            choices = ", ".join(item.value for item in PublishTarget)
            raise PublishValidationError(
                f"Unknown publish target '{target}' (expected one of: {choices})"
            ) from exc
        try:
            bump = VersionBump(version_bump)
        except ValueError as exc:
            choices = ", ".join(item.value for item in VersionBump)
            raise PublishValidationError(
                f"Unknown version bump '{version_bump}' (expected one of: {choices})"
            ) from exc
        try:
            kind = ResourceType(resource_type) if resource_type is not None else None
        except ValueError as exc:
            raise PublishValidationError(f"Unknown resource type '{resource_type}'") from exc

        resource = self._registry.resolve(resource_name, kind)

        workspace = None
        if publish_target is PublishTarget.WORKSPACE:
            workspace = workspace_id or self._default_workspace_id
            if not workspace:
                raise PublishValidationError("A workspace id is required to publish to a workspace")
        return resource, publish_target, bump, workspace

    def get(self, task_id: str) -> PublishTask:
        task = self._store.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Unknown publish task '{task_id}'")
        return task

    def get_progress(self, task_id: str) -> dict[str, Any]:
        """Return a detached snapshot of a task's current state.

        Raises:
            TaskNotFoundError: If the task is unknown or evicted.
        """
        return self.get(task_id).snapshot()

    def tasks(self) -> list[dict[str, Any]]:
        return [task.snapshot() for task in self._store.values()]

    async def stream(self, task_id: str) -> AsyncIterator[dict[str, Any]]:
        """Yield a snapshot now and after every change until the task finishes.

        Raises:
            TaskNotFoundError: If the task is unknown or evicted.
        """
        task = self.get(task_id)
        seen = -1
        while True:
            if task.revision != seen:
                seen = task.revision
                yield task.snapshot()
                if task.is_terminal:
                    return
                continue
            await self._wait_for_change(task.id)

    async def _wait_for_change(self, task_id: str) -> None:
        signal = asyncio.Event()
        waiters = self._waiters.setdefault(task_id, set())
        waiters.add(signal)
        try:
            await signal.wait()
        finally:
            waiters.discard(signal)
            if not waiters and self._waiters.get(task_id) is waiters:
                del self._waiters[task_id]

    async def wait(self, task_id: str) -> dict[str, Any]:
        """Return the terminal snapshot of a task."""
        snapshot: dict[str, Any] = {}
        async for snapshot in self.stream(task_id):
            pass
        return snapshot

    async def shutdown(self) -> None:
        """Cancel publishes still running."""
        runners = list(self._running)
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Task execution                                                     #
    # ------------------------------------------------------------------ #

    async def _run(self, task: PublishTask, resource: Resource) -> None:
        scratch = self._out_dir / task.id
        try:
            self._advance(task, TaskStatus.BUILDING, f"Bundling {resource.name}")
            bundle, stylesheet = await self._build(task, resource, scratch)

            self._advance(task, TaskStatus.VALIDATING, "Validating package metadata")
            version = await self._validate(task, resource)

            destination = (
                "marketplace"
                if task.target is PublishTarget.MARKETPLACE
                else f"workspace {task.workspace_id}"
            )
            self._advance(task, TaskStatus.PUBLISHING, f"Publishing {version} to {destination}")
            try:
                result = await asyncio.wait_for(
                    self._publish(task, resource, version, bundle, stylesheet),
                    timeout=self._settings.timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                raise TaskTimeout(
                    f"Publish timed out after {describe_duration(self._settings.timeout_seconds)}"
                ) from exc

            self._complete(
                task, {**result, "version": version}, f"Published {version} to {destination}"
            )
        except PublishValidationError as exc:
            self._fail(task, TaskError(kind="validation", message=str(exc)))
        except _BuildFailure as exc:
            self._fail(task, TaskError(kind="build", message=str(exc)))
        except TaskTimeout as exc:
            self._fail(task, TaskError(kind="timeout", message=str(exc)))
        except TaskRemoteFailure as exc:
            self._fail(
                task,
                TaskError(kind="remote", message=exc.message, code=exc.code, quota=exc.is_quota),
            )
        except TaskTransportFailure as exc:
            self._fail(task, TaskError(kind="transport", message=str(exc)))
        except asyncio.CancelledError:
            self._fail(task, TaskError(kind="internal", message="Publish cancelled"))
            raise
        except Exception as exc:
            LOGGER.exception("Publish task %s crashed", task.id)
            self._fail(task, TaskError(kind="internal", message=f"Unexpected error: {exc}"))
        finally:
            await asyncio.to_thread(shutil.rmtree, scratch, True)
            self._evict()

    async def _build(
        self, task: PublishTask, resource: Resource, scratch: Path
    ) -> tuple[str, Optional[str]]:
        workspace = task.target is PublishTarget.WORKSPACE
        options = BuildOptions(
            minify=True,
            sourcemaps=False,
            layout="flat",
            format="cjs" if workspace else "esm",
            target=self._target,
            externals=WORKSPACE_EXTERNALS if workspace else (),
            generate_types=False,
        )
        artifact = await self._compiler.compile(resource, scratch, options)
        if not artifact.ok or artifact.script is None:
            details = "; ".join(artifact.diagnostics[:5])
            message = artifact.error_message or "build failed"
            raise _BuildFailure(f"{message}: {details}" if details else message)
        return artifact.script, artifact.stylesheet

    async def _validate(self, task: PublishTask, resource: Resource) -> str:
        package = resource.package
        version = self._next_version(resource, task.target, task.version_bump)
        if version != package.version:
            await asyncio.to_thread(self._write_version, resource.root_path, version)
            self._note(task, f"Version bumped {package.version} -> {version}")
        return version

    def _next_version(self, resource: Resource, target: PublishTarget, bump: VersionBump) -> str:
        package = resource.package
        if not package.name or not package.version:
            raise PublishValidationError(
                f"{resource.name} requires package.json with name and version to publish"
            )
        if target is PublishTarget.MARKETPLACE and not vendor_name_for(
            resource, self._settings.vendor_name
        ):
            raise PublishValidationError(
                "Vendor name required: add 'vendorName' to the block config "
                "or 'author' to package.json"
            )
        try:
            return bump_version(package.version, bump)
        except ValueError as exc:
            raise PublishValidationError(str(exc)) from exc

    @staticmethod
    def _write_version(resource_root: Path, version: str) -> None:
        manifest = read_manifest(resource_root)
        manifest["version"] = version
        write_manifest(resource_root, manifest)

    async def _publish(
        self,
        task: PublishTask,
        resource: Resource,
        version: str,
        bundle: str,
        stylesheet: Optional[str],
    ) -> dict[str, Any]:
        if self._catalog is None:
            raise CatalogNotConfiguredError("Catalog client went away before publishing")
        if task.target is PublishTarget.WORKSPACE:
            if task.workspace_id is None:
                raise PublishValidationError("A workspace id is required to publish to a workspace")
            payload = workspace_input(
                resource, version=version, bundled_code=bundle, css_code=stylesheet
            )
            return await self._catalog.import_block(payload, task.workspace_id)

        entry = self._compiler.entry_for(resource)
        source = await asyncio.to_thread(entry.read_text, "utf-8") if entry else bundle
        payload = marketplace_input(
            resource,
            version=version,
            source_code=source,
            vendor_name=vendor_name_for(resource, self._settings.vendor_name) or "",
        )
        return await self._catalog.publish_package(payload)

    # ------------------------------------------------------------------ #
    # State transitions                                                  #
    # ------------------------------------------------------------------ #

    def _advance(self, task: PublishTask, status: TaskStatus, message: str) -> None:
        if task.is_terminal or STATUS_ORDER.index(status) <= STATUS_ORDER.index(task.status):
            raise RuntimeError(f"Illegal transition {task.status.value} -> {status.value}")
        task.status = status
        task.progress = max(task.progress, PROGRESS_SCHEDULE[status])
        task.steps.append(TaskStep(name=status.value, status="running", message=message))
        LOGGER.info("Publish %s [%s] %s", task.id, status.value, message)
        self._touch(task)

    def _note(self, task: PublishTask, message: str) -> None:
        task.steps.append(TaskStep(name=task.status.value, status="running", message=message))
        self._touch(task)

    def _complete(self, task: PublishTask, result: dict[str, Any], message: str) -> None:
        if task.is_terminal:
            return
        task.status = TaskStatus.COMPLETED
        task.progress = PROGRESS_SCHEDULE[TaskStatus.COMPLETED]
        task.result = dict(result)
        task.steps.append(TaskStep(name="completed", status="completed", message=message))
        task.finished_at = datetime.now(timezone.utc)
        LOGGER.info("Publish %s completed: %s", task.id, message)
        self._touch(task)

    def _fail(self, task: PublishTask, error: TaskError) -> None:
        if task.is_terminal:
            return
        failed_step = task.status.value
        task.status = TaskStatus.FAILED
        task.error = error
        task.steps.append(TaskStep(name=failed_step, status="failed", message=error.message))
        task.finished_at = datetime.now(timezone.utc)
        if error.quota:
            LOGGER.error("Publish %s hit a plan limit: %s", task.id, error.message)
        else:
            LOGGER.error("Publish %s failed (%s): %s", task.id, error.kind, error.message)
        self._touch(task)

    def _touch(self, task: PublishTask) -> None:
        task.revision += 1
        task.updated_at = datetime.now(timezone.utc)
        for signal in self._waiters.get(task.id, ()):
            signal.set()

    def _evict(self) -> None:
        for task in self._store.evict():
            self._waiters.pop(task.id, None)


__all__ = ["PublishTaskTracker", "WORKSPACE_EXTERNALS", "describe_duration"]
