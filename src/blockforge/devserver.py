"""Assembly of the development server components."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from blockforge.build import (
    ArtifactStore,
    BuildArtifact,
    BuildOptions,
    Bundler,
    CssCompiler,
    EsbuildBundler,
    PostCssCompiler,
    ResourceCompiler,
    find_css_config,
)
from blockforge.config.models import BlockforgeConfig, BuildSettings
from blockforge.notify import HotReloadNotifier
from blockforge.publish import CatalogClient, CatalogService, PublishTaskTracker
from blockforge.resources import ResourceKey, ResourceRegistry, ResourceScanner, ScanResult
from blockforge.state import PreviewStateRepository
from blockforge.watch import RebuildCoordinator

LOGGER = logging.getLogger(__name__)

DEV_SUBDIR = "dev"
PUBLISH_SUBDIR = "publish"


def create_bundler(settings: BuildSettings, project_root: Path) -> Bundler:
    return EsbuildBundler(
        settings.bundler_command, cwd=project_root, timeout=settings.timeout_seconds
    )


def create_css_compiler(settings: BuildSettings, project_root: Path) -> Optional[CssCompiler]:
    """Return the CSS compiler a project declares, or ``None`` to copy stylesheets."""
    if settings.css_compiler == "none":
        return None
    if settings.css_compiler == "auto" and find_css_config(project_root) is None:
        return None
    return PostCssCompiler(
        settings.css_compiler_command, cwd=project_root, timeout=settings.timeout_seconds
    )


class DevServer:
    """Own the registry, compiler, watcher, notifier and publish tracker of one project.

    Components are assembled by :meth:`load` (scan included) and run between
    :meth:`start` and :meth:`stop`.
    """

    def __init__(
        self,
        project_root: Path,
        config: Optional[BlockforgeConfig] = None,
        *,
        bundler: Optional[Bundler] = None,
        css_compiler: Optional[CssCompiler] = None,
        catalog: Optional[CatalogService] = None,
        strict: bool = False,
    ) -> None:
        """Initialize the server.

        Args:
            project_root: Root directory of the project.
            config: Resolved project configuration.
            bundler: Script bundler; esbuild by default.
            css_compiler: CSS compiler; detected from the project by default.
            catalog: Catalog client; built from ``catalog`` settings by default.
            strict: Report missing or invalid resource configs as errors.
        """
        self.project_root = project_root.expanduser().resolve()
        self.config = config or BlockforgeConfig()
        self._bundler = bundler
        self._css_compiler = css_compiler
        self._catalog = catalog
        self._owns_catalog = False
        self._strict = strict
        self._loaded = False
        self._running = False

        output_root = self.project_root / self.config.project.output_dir
        self.dev_dir = output_root / DEV_SUBDIR
        self.publish_dir = output_root / PUBLISH_SUBDIR

    def load(self) -> ScanResult:
        """Scan the project and assemble every component.

        Returns:
            ScanResult: Outcome of the initial scan.
        """
        config = self.config
        previews = PreviewStateRepository()
        self.scanner = ResourceScanner(
            self.project_root,
            config.project,
            strict=self._strict,
            preview_repository=previews,
        )
        self.scan_result = self.scanner.scan()
        self.registry = ResourceRegistry(
            self.scan_result.resources, preview_repository=previews
        )
        self.artifacts = ArtifactStore()
        self.compiler = ResourceCompiler(
            self._bundler or create_bundler(config.build, self.project_root),
            css_compiler=self._css_compiler or create_css_compiler(config.build, self.project_root),
            framework=config.project.framework,
            style_roots=[self.scanner.styles_root()],
        )
        self.notifier = HotReloadNotifier(
            queue_size=config.server.session_queue_size,
            heartbeat_seconds=config.server.heartbeat_seconds,
        )
        self.coordinator = RebuildCoordinator(
            registry=self.registry,
            scanner=self.scanner,
            compiler=self.compiler,
            artifacts=self.artifacts,
            notifier=self.notifier,
            out_dir=self.dev_dir,
            options=BuildOptions.for_dev(config.build),
            settings=config.watch,
        )
        if self._catalog is None and config.catalog.api_token:
            self._catalog = CatalogClient(
                config.catalog.api_url,
                config.catalog.api_token,
                timeout=config.catalog.request_timeout_seconds,
            )
            self._owns_catalog = True
        self.tracker = PublishTaskTracker(
            registry=self.registry,
            compiler=self.compiler,
            catalog=self._catalog,
            out_dir=self.publish_dir,
            settings=config.publish,
            default_workspace_id=config.catalog.workspace_id,
            target=config.build.target,
        )
        self._loaded = True
        LOGGER.info(
            "Loaded %d resource(s) from %s", len(self.registry), self.project_root
        )
        return self.scan_result

    @property
    def catalog(self) -> Optional[CatalogService]:
        return self._catalog

    @property
    def running(self) -> bool:
        return self._running

    async def build_all(self) -> list[BuildArtifact]:
        """Build every resource, at most ``build.concurrency`` at a time."""
        semaphore = asyncio.Semaphore(self.config.build.concurrency)

        async def _build(key: ResourceKey) -> BuildArtifact:
            async with semaphore:
                return await self.coordinator.build_resource(key)

        return list(await asyncio.gather(*(_build(key) for key in self.registry.keys())))

    async def start(self) -> None:
        """Scan if needed, build every resource, then start watching."""
        if self._running:
            return
        if not self._loaded:
            self.load()
        self.dev_dir.mkdir(parents=True, exist_ok=True)
        artifacts = await self.build_all()
        failed = [artifact for artifact in artifacts if not artifact.ok]
        LOGGER.info(
            "Initial build finished: %d ok, %d failed", len(artifacts) - len(failed), len(failed)
        )
        if self.config.watch.enabled:
            await self.coordinator.start()
        self._running = True

    async def stop(self) -> None:
        if not self._loaded:
            return
        await self.coordinator.stop()
        self.notifier.close_all()
        await self.tracker.shutdown()
        if self._owns_catalog and isinstance(self._catalog, CatalogClient):
            await self._catalog.aclose()
        self._running = False


__all__ = ["DevServer", "create_bundler", "create_css_compiler", "DEV_SUBDIR", "PUBLISH_SUBDIR"]
