"""Publish task tracker tests."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from blockforge.build import ResourceCompiler
from blockforge.config.models import PublishSettings
from blockforge.publish import (
    CatalogNotConfiguredError,
    PublishTarget,
    PublishTask,
    PublishTaskTracker,
    PublishValidationError,
    TaskNotFoundError,
    TaskRemoteFailure,
    TaskStatus,
    TaskStore,
    TaskTransportFailure,
    VersionBump,
    bump_version,
)
from blockforge.publish.tracker import WORKSPACE_EXTERNALS, describe_duration
from blockforge.resources import ResourceNotFoundError, ResourceRegistry, ResourceScanner
from tests.conftest import BROKEN_MARKER, FakeBundler, FakeCatalog, write_resource


def _tracker(
    project: Path,
    bundler: FakeBundler,
    catalog: Optional[FakeCatalog],
    *,
    default_workspace_id: Optional[str] = None,
    **settings: float,
) -> PublishTaskTracker:
    registry = ResourceRegistry(ResourceScanner(project).scan().resources)
    return PublishTaskTracker(
        registry=registry,
        compiler=ResourceCompiler(bundler),
        catalog=catalog,
        out_dir=project / ".blockforge" / "publish",
        settings=PublishSettings(**settings),
        default_workspace_id=default_workspace_id,
    )


def _manifest_version(project: Path, kind_dir: str, name: str) -> str:
    manifest = json.loads((project / kind_dir / name / "package.json").read_text("utf-8"))
    return manifest["version"]


@pytest.mark.asyncio
async def test_marketplace_publish_completes(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    tracker = _tracker(project, bundler, catalog)

    task_id = tracker.create("hero", "marketplace")
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["status"] == "completed"
    assert final["progress"] == 100
    assert final["error"] is None
    assert final["result"]["version"] == "1.0.1"
    assert final["result"]["packageId"] == "pkg-1"
    assert final["finishedAt"] is not None
    assert [step["name"] for step in final["steps"]] == [
        "building",
        "validating",
        "validating",
        "publishing",
        "completed",
    ]
    assert _manifest_version(project, "blocks", "hero") == "1.0.1"

    [payload] = catalog.published
    source = (project / "blocks" / "hero" / "src" / "index.tsx").read_text("utf-8")
    assert payload["sourceCode"] == source
    assert payload["vendorName"] == "Acme"
    assert payload["vendorEmail"] == "dev@acme.test"
    assert payload["version"] == "1.0.1"
    assert payload["packageType"] == "block"
    assert payload["defaultContent"] == {"theme": "light"}
    assert not (project / ".blockforge" / "publish" / task_id).exists()


@pytest.mark.asyncio
async def test_task_is_pending_until_the_loop_runs_it(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    tracker = _tracker(project, bundler, catalog)

    task_id = tracker.create("hero", "marketplace", version_bump="none")

    snapshot = tracker.get_progress(task_id)
    assert snapshot["status"] == "pending"
    assert snapshot["progress"] == 0
    assert snapshot["taskId"] == task_id
    assert snapshot["resource"] == "hero"
    assert snapshot["resourceType"] == "block"
    await asyncio.wait_for(tracker.wait(task_id), timeout=5)


@pytest.mark.asyncio
async def test_stream_progress_is_monotonic(
    project: Path, bundler: FakeBundler
) -> None:
    tracker = _tracker(project, bundler, FakeCatalog(delay=0.05))
    task_id = tracker.create("hero", "marketplace")

    snapshots = [snapshot async for snapshot in tracker.stream(task_id)]

    progress = [snapshot["progress"] for snapshot in snapshots]
    assert progress == sorted(progress)
    assert snapshots[-1]["status"] == "completed"
    statuses = [snapshot["status"] for snapshot in snapshots]
    assert statuses.index("publishing") < statuses.index("completed")


@pytest.mark.asyncio
async def test_restreaming_finished_tasks_keeps_no_waiters(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    tracker = _tracker(project, bundler, catalog, max_retained_tasks=1)

    for _ in range(5):
        task_id = tracker.create("hero", "marketplace", version_bump="none")
        await asyncio.wait_for(tracker.wait(task_id), timeout=5)
        replay = [snapshot async for snapshot in tracker.stream(task_id)]
        assert [snapshot["status"] for snapshot in replay] == ["completed"]

    await asyncio.sleep(0.05)
    assert len(tracker.tasks()) == 1
    assert tracker.streamed_task_ids == set()


@pytest.mark.asyncio
async def test_abandoned_stream_releases_its_waiter(project: Path, bundler: FakeBundler) -> None:
    tracker = _tracker(project, bundler, FakeCatalog(delay=5))
    task_id = tracker.create("hero", "marketplace", version_bump="none")
    for _ in range(500):
        if tracker.get_progress(task_id)["status"] == "publishing":
            break
        await asyncio.sleep(0.01)

    stream = tracker.stream(task_id)
    current = await stream.__anext__()
    pending = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0.05)

    assert current["status"] == "publishing"
    assert tracker.streamed_task_ids == {task_id}
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending
    assert tracker.streamed_task_ids == set()
    await tracker.shutdown()


@pytest.mark.asyncio
async def test_workspace_publish_sends_bundled_cjs(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    tracker = _tracker(project, bundler, catalog)

    task_id = tracker.create("hero", PublishTarget.WORKSPACE, workspace_id="ws-9")
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["status"] == "completed"
    assert final["workspaceId"] == "ws-9"
    [(payload, workspace_id)] = catalog.imported
    assert workspace_id == "ws-9"
    assert payload["blockType"] == "hero"
    assert payload["sourceCode"].startswith("/* cjs ")
    assert payload["cssCode"] == ".hero { color: red; }\n"
    assert payload["sourceRegistry"] == "local"
    [call] = bundler.calls
    assert call.options.format == "cjs"
    assert call.options.externals == WORKSPACE_EXTERNALS
    assert call.options.minify is True


@pytest.mark.asyncio
async def test_workspace_publish_uses_default_workspace(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    tracker = _tracker(project, bundler, catalog, default_workspace_id="ws-default")

    task_id = tracker.create("hero", "workspace")
    await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert catalog.imported[0][1] == "ws-default"


@pytest.mark.asyncio
async def test_rejected_requests_create_no_task(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    tracker = _tracker(project, bundler, catalog)

    with pytest.raises(PublishValidationError, match="workspace id"):
        tracker.create("hero", "workspace")
    with pytest.raises(PublishValidationError, match="Unknown publish target"):
        tracker.create("hero", "moon")
    with pytest.raises(PublishValidationError, match="Unknown version bump"):
        tracker.create("hero", "marketplace", version_bump="huge")
    with pytest.raises(ResourceNotFoundError):
        tracker.create("missing", "marketplace")

    assert tracker.tasks() == []
    assert bundler.calls == []


@pytest.mark.asyncio
async def test_publish_without_catalog_is_rejected(project: Path, bundler: FakeBundler) -> None:
    tracker = _tracker(project, bundler, None)

    with pytest.raises(CatalogNotConfiguredError):
        tracker.create("hero", "marketplace")
    assert tracker.tasks() == []


@pytest.mark.asyncio
async def test_remote_call_timeout_cancels_the_request(
    project: Path, bundler: FakeBundler
) -> None:
    catalog = FakeCatalog(delay=5)
    tracker = _tracker(project, bundler, catalog, timeout_seconds=0.05)

    task_id = tracker.create("hero", "marketplace")
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["status"] == "failed"
    assert final["error"]["kind"] == "timeout"
    assert final["error"]["message"] == "Publish timed out after 0.05 seconds"
    assert final["steps"][-1]["name"] == "publishing"
    assert final["steps"][-1]["status"] == "failed"
    assert catalog.cancelled == 1


@pytest.mark.asyncio
async def test_plan_limit_failure_is_flagged_as_quota(
    project: Path, bundler: FakeBundler
) -> None:
    error = TaskRemoteFailure("Monthly publish limit reached", code="PLAN_LIMIT_EXCEEDED")
    tracker = _tracker(project, bundler, FakeCatalog(error=error))

    task_id = tracker.create("hero", "marketplace")
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["status"] == "failed"
    assert final["error"] == {
        "kind": "remote",
        "message": "Monthly publish limit reached",
        "code": "PLAN_LIMIT_EXCEEDED",
        "quota": True,
    }
    assert final["progress"] == 50


@pytest.mark.asyncio
async def test_transport_failure(project: Path, bundler: FakeBundler) -> None:
    error = TaskTransportFailure("Catalog request failed: connection refused")
    tracker = _tracker(project, bundler, FakeCatalog(error=error))

    task_id = tracker.create("hero", "marketplace")
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["error"]["kind"] == "transport"
    assert final["error"]["quota"] is False


@pytest.mark.asyncio
async def test_build_failure_leaves_version_untouched(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    (project / "blocks" / "hero" / "src" / "index.tsx").write_text(
        f"export default {BROKEN_MARKER}", encoding="utf-8"
    )
    tracker = _tracker(project, bundler, catalog)

    task_id = tracker.create("hero", "marketplace")
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["status"] == "failed"
    assert final["error"]["kind"] == "build"
    assert "Unexpected token" in final["error"]["message"]
    assert final["steps"][-1]["name"] == "building"
    assert _manifest_version(project, "blocks", "hero") == "1.0.0"
    assert catalog.published == []


@pytest.mark.asyncio
async def test_marketplace_publish_requires_a_vendor(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    write_resource(
        project,
        "blocks",
        "anon",
        config={"name": "Anonymous", "category": "misc"},
        package={"name": "@acme/blocks.anon", "version": "2.0.0"},
    )
    tracker = _tracker(project, bundler, catalog)

    task_id = tracker.create("anon", "marketplace")
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["error"]["kind"] == "validation"
    assert "Vendor name required" in final["error"]["message"]
    assert _manifest_version(project, "blocks", "anon") == "2.0.0"


@pytest.mark.asyncio
async def test_configured_vendor_is_the_fallback(
    project: Path, bundler: FakeBundler, catalog: FakeCatalog
) -> None:
    write_resource(
        project,
        "blocks",
        "anon",
        config={"name": "Anonymous", "category": "misc"},
        package={"name": "@acme/blocks.anon", "version": "2.0.0"},
    )
    registry = ResourceRegistry(ResourceScanner(project).scan().resources)
    tracker = PublishTaskTracker(
        registry=registry,
        compiler=ResourceCompiler(bundler),
        catalog=catalog,
        out_dir=project / ".blockforge" / "publish",
        settings=PublishSettings(vendor_name="Acme Studio"),
    )

    task_id = tracker.create("anon", "marketplace", version_bump=VersionBump.MINOR)
    final = await asyncio.wait_for(tracker.wait(task_id), timeout=5)

    assert final["status"] == "completed"
    assert catalog.published[0]["vendorName"] == "Acme Studio"
    assert _manifest_version(project, "blocks", "anon") == "2.1.0"


def test_dry_run_reports_the_next_version_without_side_effects(
    project: Path, bundler: FakeBundler
) -> None:
    tracker = _tracker(project, bundler, None)

    report = tracker.dry_run("hero", "marketplace", version_bump="minor")

    assert report == {
        "resource": "hero",
        "resourceType": "block",
        "packageName": "@acme/blocks.hero",
        "target": "marketplace",
        "workspaceId": None,
        "currentVersion": "1.0.0",
        "version": "1.1.0",
    }
    assert tracker.tasks() == []
    assert bundler.calls == []
    assert _manifest_version(project, "blocks", "hero") == "1.0.0"


def test_dry_run_applies_publish_validation(project: Path, bundler: FakeBundler) -> None:
    write_resource(
        project,
        "blocks",
        "anon",
        config={"name": "Anonymous", "category": "misc"},
        package={"name": "@acme/blocks.anon", "version": "2.0.0"},
    )
    tracker = _tracker(project, bundler, None)

    with pytest.raises(PublishValidationError, match="Vendor name required"):
        tracker.dry_run("anon", "marketplace")
    with pytest.raises(PublishValidationError, match="workspace id"):
        tracker.dry_run("hero", "workspace")
    assert tracker.dry_run("anon", "workspace", workspace_id="ws-1")["version"] == "2.0.1"


@pytest.mark.asyncio
async def test_concurrent_publishes_complete_independently(
    project: Path, bundler: FakeBundler
) -> None:
    catalog = FakeCatalog(delay=0.05)
    tracker = _tracker(project, bundler, catalog)

    first = tracker.create("hero", "marketplace", version_bump="none")
    second = tracker.create("landing", "marketplace", version_bump="none")
    results = await asyncio.wait_for(
        asyncio.gather(tracker.wait(first), tracker.wait(second)), timeout=5
    )

    assert first != second
    assert [result["status"] for result in results] == ["completed", "completed"]
    assert sorted(payload["name"] for payload in catalog.published) == [
        "@acme/blocks.hero",
        "@acme/templates.landing",
    ]
    assert _manifest_version(project, "templates", "landing") == "0.3.0"


@pytest.mark.asyncio
async def test_unknown_task_ids(project: Path, bundler: FakeBundler, catalog: FakeCatalog) -> None:
    tracker = _tracker(project, bundler, catalog)

    with pytest.raises(TaskNotFoundError):
        tracker.get_progress("missing")
    with pytest.raises(TaskNotFoundError):
        async for _ in tracker.stream("missing"):
            pass


@pytest.mark.asyncio
async def test_shutdown_fails_running_tasks(project: Path, bundler: FakeBundler) -> None:
    tracker = _tracker(project, bundler, FakeCatalog(delay=5))

    task_id = tracker.create("hero", "marketplace", version_bump="none")
    await asyncio.sleep(0.1)
    await tracker.shutdown()

    snapshot = tracker.get_progress(task_id)
    assert snapshot["status"] == "failed"
    assert snapshot["error"]["kind"] == "internal"


def test_describe_duration() -> None:
    assert describe_duration(180) == "3 minutes"
    assert describe_duration(60) == "1 minute"
    assert describe_duration(90) == "90 seconds"
    assert describe_duration(1) == "1 second"


@pytest.mark.parametrize(
    "version, bump, expected",
    [
        ("1.2.3", VersionBump.PATCH, "1.2.4"),
        ("1.2.3", VersionBump.MINOR, "1.3.0"),
        ("1.2.3", VersionBump.MAJOR, "2.0.0"),
        ("1.2.3", VersionBump.NONE, "1.2.3"),
        ("1.2.3-beta.1", VersionBump.PATCH, "1.2.4"),
    ],
)
def test_bump_version(version: str, bump: VersionBump, expected: str) -> None:
    assert bump_version(version, bump) == expected


def test_bump_version_rejects_non_semver() -> None:
    with pytest.raises(ValueError):
        bump_version("latest", VersionBump.PATCH)


def _finished(minutes_ago: float, now: datetime) -> PublishTask:
    return PublishTask(
        resource_name="hero",
        resource_type="block",
        target=PublishTarget.MARKETPLACE,
        status=TaskStatus.COMPLETED,
        finished_at=now - timedelta(minutes=minutes_ago),
    )


def test_store_evicts_oldest_finished_tasks_over_capacity() -> None:
    now = datetime.now(timezone.utc)
    store = TaskStore(max_retained=2, ttl_seconds=3600)
    oldest, older, newest = _finished(3, now), _finished(2, now), _finished(1, now)
    running = PublishTask(
        resource_name="hero",
        resource_type="block",
        target=PublishTarget.MARKETPLACE,
        status=TaskStatus.PUBLISHING,
    )
    for task in (oldest, older, newest, running):
        store.insert(task)

    evicted = store.evict(now)

    assert evicted == [oldest, older]
    assert store.get(running.id) is running
    assert store.get(newest.id) is newest


def test_store_evicts_expired_tasks() -> None:
    now = datetime.now(timezone.utc)
    store = TaskStore(max_retained=10, ttl_seconds=60)
    stale, fresh = _finished(5, now), _finished(0.5, now)
    store.insert(stale)
    store.insert(fresh)

    assert store.evict(now) == [stale]
    assert len(store) == 1


@pytest.mark.asyncio
async def test_publish_step_checks_catalog_and_workspace(
    project: Path, bundler: FakeBundler
) -> None:
    tracker = _tracker(project, bundler, None)
    registry = ResourceRegistry(ResourceScanner(project).scan().resources)
    hero = registry.resolve("hero")
    marketplace, workspace = (
        PublishTask(resource_name="hero", resource_type="block", target=target)
        for target in (PublishTarget.MARKETPLACE, PublishTarget.WORKSPACE)
    )

    with pytest.raises(CatalogNotConfiguredError):
        await tracker._publish(marketplace, hero, "1.0.1", "bundle", None)
    tracker._catalog = FakeCatalog()
    with pytest.raises(PublishValidationError, match="workspace id"):
        await tracker._publish(workspace, hero, "1.0.1", "bundle", None)
