"""Filesystem watch service that turns source changes into targeted rebuilds."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from blockforge.build.artifacts import ArtifactStore
from blockforge.build.compiler import ResourceCompiler
from blockforge.build.errors import CompileError
from blockforge.build.models import BuildArtifact, BuildOptions
from blockforge.config.models import WatchSettings
from blockforge.notify import ALL_RESOURCES, HotReloadNotifier, ReloadEvent
from blockforge.resources.models import ResourceKey
from blockforge.resources.registry import ResourceRegistry
from blockforge.resources.scanner import ResourceScanner

from .classify import Change, ChangeClassifier, ChangeKind

LOGGER = logging.getLogger(__name__)


class Phase(str, Enum):
    """Rebuild state of one watched root."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    REBUILDING = "rebuilding"


@dataclass
class RebuildBatch:
    """Changes coalesced into one rebuild.

    Attributes:
        sources: Resources whose source files changed.
        configs: Resources whose config or manifest changed.
        global_style: Whether a shared stylesheet changed.
        paths: Every path that contributed to the batch.
    """

    sources: set[ResourceKey] = field(default_factory=set)
    configs: set[ResourceKey] = field(default_factory=set)
    global_style: bool = False
    paths: set[Path] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.sources or self.configs or self.global_style)

    def add(self, change: Change) -> None:
        self.paths.add(change.path)
        if change.kind is ChangeKind.GLOBAL_STYLE:
            self.global_style = True
        elif change.kind is ChangeKind.RESOURCE_CONFIG and change.key is not None:
            self.configs.add(change.key)
        elif change.kind is ChangeKind.RESOURCE_SOURCE and change.key is not None:
            self.sources.add(change.key)


@dataclass(eq=False)
class _RootState:
    root: Path
    phase: Phase = Phase.IDLE
    pending: RebuildBatch = field(default_factory=RebuildBatch)
    first_event_at: Optional[float] = None
    timer: Optional[asyncio.TimerHandle] = None
    task: Optional["asyncio.Task[list[ReloadEvent]]"] = None
    rebuilds: int = 0


class RebuildCoordinator:
    """Debounce filesystem changes per watched root and drive rebuilds.

    Each root moves ``idle -> debouncing -> rebuilding -> idle``. Changes that
    arrive while a root is rebuilding are kept and start another debounce
    cycle as soon as the current rebuild finishes.
    """

    def __init__(
        self,
        *,
        registry: ResourceRegistry,
        scanner: ResourceScanner,
        compiler: ResourceCompiler,
        artifacts: ArtifactStore,
        notifier: HotReloadNotifier,
        out_dir: Path,
        options: Optional[BuildOptions] = None,
        settings: Optional[WatchSettings] = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            registry: Registry whose resources are rebuilt and reloaded.
            scanner: Scanner used to reload resource configs.
            compiler: Compiler producing artifacts.
            artifacts: Store receiving every artifact.
            notifier: Notifier informed after each rebuild.
            out_dir: Output directory for dev artifacts.
            options: Build options for rebuilds.
            settings: Debounce and ignore settings.
        """
        settings = settings or WatchSettings()
        self._registry = registry
        self._scanner = scanner
        self._compiler = compiler
        self._artifacts = artifacts
        self._notifier = notifier
        self._out_dir = out_dir
        self._options = options or BuildOptions()
        self._debounce = max(0.01, settings.debounce_seconds)
        self._max_batch_interval = (
            settings.max_batch_interval_seconds
            if settings.max_batch_interval_seconds > 0
            else None
        )
        self._classifier = ChangeClassifier(
            resource_roots=scanner.roots(),
            styles_root=scanner.styles_root(),
            output_root=scanner.output_root(),
            known=registry,
            ignore_dirs=settings.ignore_dirs,
        )
        self._states: dict[Path, _RootState] = {
            root: _RootState(root=root)
            for root in (*scanner.roots().values(), scanner.styles_root())
        }
        self._build_locks: dict[ResourceKey, asyncio.Lock] = {}
        self._unknown_dirs: set[Path] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Any = None
        self._stopping = False

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    @property
    def roots(self) -> list[Path]:
        return list(self._states)

    def phase(self, root: Path) -> Phase:
        return self._states[root].phase

    def rebuild_count(self, root: Path) -> int:
        return self._states[root].rebuilds

    async def start(self) -> None:
        """Schedule watchdog observers for every existing watched root."""
        if self._observer is not None:
            raise RuntimeError("RebuildCoordinator is already running.")
        self._loop = asyncio.get_running_loop()
        self._stopping = False
        observer = Observer()
        for root in self._states:
            if not root.is_dir():
                LOGGER.debug("Not watching missing directory %s", root)
                continue
            observer.schedule(_ChangeHandler(self._loop, self._dispatch), str(root), recursive=True)
            LOGGER.debug("Watching %s", root)
        observer.start()
        self._observer = observer

    async def stop(self) -> None:
        """Stop observers and abandon pending rebuilds."""
        self._stopping = True
        for state in self._states.values():
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
        if self._observer is not None:
            observer, self._observer = self._observer, None
            observer.stop()
            await asyncio.to_thread(observer.join, 5)
        tasks = [state.task for state in self._states.values() if state.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for state in self._states.values():
            state.phase = Phase.IDLE
            state.pending = RebuildBatch()
        self._idle.set()

    async def wait_idle(self) -> None:
        """Return once every root is idle with nothing pending."""
        while True:
            await self._idle.wait()
            if all(state.phase is Phase.IDLE for state in self._states.values()):
                return

    def submit(self, path: Path) -> Change:
        """Record a changed path; must be called on the event loop thread.

        Args:
            path: Absolute path reported as created or modified.

        Returns:
            Change: Classification of the path.
        """
        change = self._classifier.classify(path)
        if change.kind is ChangeKind.UNKNOWN_RESOURCE:
            self._warn_unknown(change)
            return change
        if not change.kind.triggers_rebuild:
            LOGGER.debug("Ignoring %s change to %s", change.kind.value, path)
            return change

        state = self._state_for(change)
        state.pending.add(change)
        LOGGER.debug("Queued %s change to %s (%s)", change.kind.value, path, state.phase.value)
        if state.phase is Phase.IDLE:
            state.phase = Phase.DEBOUNCING
            state.first_event_at = self._now()
            self._idle.clear()
            self._schedule(state)
        elif state.phase is Phase.DEBOUNCING:
            self._schedule(state)
        return change

    async def build_resource(self, key: ResourceKey) -> BuildArtifact:
        """Compile one resource and record the artifact.

        Unexpected compiler exceptions are recorded as failed artifacts.
        """
        lock = self._build_locks.setdefault(key, asyncio.Lock())
        async with lock:
            try:
                resource = self._registry.get(key.type, key.name)
                artifact = await self._compiler.compile(resource, self._out_dir, self._options)
            except Exception as exc:
                LOGGER.exception("Unexpected error while building %s", key)
                artifact = BuildArtifact.failure(
                    key,
                    CompileError(f"Unexpected build error: {exc}"),
                    layout=self._options.layout,
                )
            self._artifacts.record(artifact)
            return artifact

    async def rebuild(self, batch: RebuildBatch) -> list[ReloadEvent]:
        """Apply one batch: reload configs, rebuild, then notify once per resource.

        Returns:
            list[ReloadEvent]: Events broadcast for the batch.
        """
        config_changed: set[ResourceKey] = set()
        for key in sorted(batch.configs, key=str):
            updated, _ = await self._registry.reload(key, self._scanner)
            if updated:
                config_changed.add(key)

        if batch.global_style:
            targets = self._registry.keys()
        else:
            targets = sorted(batch.sources | batch.configs, key=str)
        artifacts = await asyncio.gather(*(self.build_resource(key) for key in targets))

        events: list[ReloadEvent] = []
        if batch.global_style:
            events.append(
                ReloadEvent(
                    resource=ALL_RESOURCES,
                    config_changed=bool(config_changed),
                    ok=all(artifact.ok for artifact in artifacts),
                )
            )
        else:
            for key, artifact in zip(targets, artifacts):
                events.append(
                    ReloadEvent(
                        resource=key.name,
                        resource_type=key.type.value,
                        config_changed=key in config_changed,
                        ok=artifact.ok,
                    )
                )
        for event in events:
            self._notifier.broadcast(event)
        return events

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _dispatch(self, path: Path) -> None:
        try:
            self.submit(path)
        except Exception:
            LOGGER.exception("Failed to handle change to %s", path)

    def _state_for(self, change: Change) -> _RootState:
        if change.kind is ChangeKind.GLOBAL_STYLE:
            return self._states[self._scanner.styles_root()]
        if change.key is None:
            raise ValueError(f"{change.kind.value} change to {change.path} has no resource")
        return self._states[self._scanner.roots()[change.key.type]]

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def _now(self) -> float:
        return self._event_loop().time()

    def _schedule(self, state: _RootState) -> None:
        delay = self._debounce
        if self._max_batch_interval is not None and state.first_event_at is not None:
            remaining = state.first_event_at + self._max_batch_interval - self._now()
            delay = max(0.0, min(delay, remaining))
        if state.timer is not None:
            state.timer.cancel()
        state.timer = self._event_loop().call_later(delay, self._flush, state)

    def _flush(self, state: _RootState) -> None:
        state.timer = None
        if state.phase is not Phase.DEBOUNCING or self._stopping:
            return
        batch, state.pending = state.pending, RebuildBatch()
        state.phase = Phase.REBUILDING
        state.first_event_at = None
        LOGGER.debug("Rebuilding %s for %d changed path(s)", state.root, len(batch.paths))
        state.task = self._event_loop().create_task(self._run(state, batch))

    async def _run(self, state: _RootState, batch: RebuildBatch) -> list[ReloadEvent]:
        try:
            return await self.rebuild(batch)
        except Exception:
            LOGGER.exception("Rebuild of %s failed", state.root)
            return []
        finally:
            self._finish(state)

    def _finish(self, state: _RootState) -> None:
        state.task = None
        state.rebuilds += 1
        if state.pending and not self._stopping:
            state.phase = Phase.DEBOUNCING
            state.first_event_at = self._now()
            self._schedule(state)
        else:
            state.phase = Phase.IDLE
        if all(item.phase is Phase.IDLE for item in self._states.values()):
            self._idle.set()

    def _warn_unknown(self, change: Change) -> None:
        if change.resource_dir is None or change.resource_dir in self._unknown_dirs:
            return
        self._unknown_dirs.add(change.resource_dir)
        LOGGER.warning(
            "New %s '%s' detected at %s; restart the dev server to load it",
            change.key.type.value if change.key else "resource",
            change.resource_dir.name,
            change.resource_dir,
        )


class _ChangeHandler(FileSystemEventHandler):
    """Forward watchdog events from the observer thread onto the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, callback: Any) -> None:
        self._loop = loop
        self._callback = callback

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle a filesystem create event."""
        self._forward(event, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle a filesystem modify event."""
        self._forward(event, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - watchdog-specific
        """Handle a filesystem move event; editors often save by renaming."""
        self._forward(event, event.dest_path)

    def _forward(self, event: FileSystemEvent, raw_path: Any) -> None:
        if event.is_directory:
            return
        path = Path(os.fsdecode(raw_path))
        try:
            self._loop.call_soon_threadsafe(self._callback, path)
        except RuntimeError:
            LOGGER.debug("Event loop closed; dropping change to %s", path)


__all__ = ["Phase", "RebuildBatch", "RebuildCoordinator"]
