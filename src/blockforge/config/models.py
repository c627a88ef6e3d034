"""Configuration models describing BlockForge project settings."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class BlockforgeBaseModel(BaseModel):
    """Shared configuration for BlockForge settings models."""

    model_config = ConfigDict(extra="forbid")


class ProjectSettings(BlockforgeBaseModel):
    """Layout of a BlockForge project tree.

    Attributes:
        framework: UI framework used by resource sources; selects the entry file.
        blocks_dir: Directory (relative to the project root) holding blocks.
        templates_dir: Directory holding page templates.
        styles_dir: Shared styles root; changes here rebuild every resource.
        output_dir: Tool-owned directory for dev and publish artifacts.
    """

    framework: Literal["react", "vue", "angular", "vanilla"] = "react"
    blocks_dir: str = "blocks"
    templates_dir: str = "templates"
    styles_dir: str = "styles"
    output_dir: str = ".blockforge"


class BuildSettings(BlockforgeBaseModel):
    """Options governing resource compilation.

    Attributes:
        bundler_command: Command prefix used to invoke esbuild.
        css_compiler_command: Command prefix used to invoke postcss.
        css_compiler: ``auto`` detects a postcss config in the project root,
            ``postcss`` forces the compiler, ``none`` always copies CSS as-is.
        minify: Minify production bundles.
        sourcemaps: Emit sourcemaps alongside bundles.
        target: JavaScript language target handed to the bundler.
        out_dir: Destination of ``blockforge build`` (versioned layout).
        generate_types: Write ``src/block.d.ts`` from the resource schema.
        concurrency: Maximum number of resources compiled at once during full builds.
        timeout_seconds: Upper bound for a single external tool invocation.
    """

    bundler_command: List[str] = Field(default_factory=lambda: ["npx", "esbuild"])
    css_compiler_command: List[str] = Field(default_factory=lambda: ["npx", "postcss"])
    css_compiler: Literal["auto", "postcss", "none"] = "auto"
    minify: bool = True
    sourcemaps: bool = True
    target: str = "es2020"
    out_dir: str = "public"
    generate_types: bool = True
    concurrency: int = Field(default=4, ge=1)
    timeout_seconds: float = Field(default=120.0, gt=0)


class ServerSettings(BlockforgeBaseModel):
    """Development server options.

    Attributes:
        host: Interface the preview server binds to.
        port: TCP port for the preview server.
        heartbeat_seconds: Interval between keep-alive comments on event streams.
        session_queue_size: Pending notifications buffered per preview session.
    """

    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)
    heartbeat_seconds: float = Field(default=15.0, gt=0)
    session_queue_size: int = Field(default=100, ge=1)


class WatchSettings(BlockforgeBaseModel):
    """Filesystem watch behavior.

    Attributes:
        enabled: Whether the dev server watches sources for changes.
        debounce_seconds: Quiet period that coalesces a burst of events into one rebuild.
        max_batch_interval_seconds: Longest a continuous stream of events may
            postpone a rebuild; ``0`` disables the cap.
        ignore_dirs: Directory names whose contents never trigger rebuilds.
    """

    enabled: bool = True
    debounce_seconds: float = Field(default=0.3, gt=0)
    max_batch_interval_seconds: float = Field(default=2.0, ge=0)
    ignore_dirs: List[str] = Field(default_factory=lambda: ["node_modules", ".git", "dist"])


class PublishSettings(BlockforgeBaseModel):
    """Publish task tracking options.

    Attributes:
        timeout_seconds: Hard limit for the remote publish call.
        max_retained_tasks: Completed tasks kept in memory before eviction.
        task_ttl_seconds: Age after which finished tasks are evicted.
        vendor_name: Vendor reported to the marketplace when a resource omits one.
    """

    timeout_seconds: float = Field(default=180.0, gt=0)
    max_retained_tasks: int = Field(default=100, ge=1)
    task_ttl_seconds: float = Field(default=3600.0, gt=0)
    vendor_name: Optional[str] = None


class CatalogSettings(BlockforgeBaseModel):
    """Remote catalog endpoint and credentials.

    Attributes:
        api_url: GraphQL endpoint of the catalog service.
        api_token: Bearer token; publishing is disabled without one.
        workspace_id: Default workspace for workspace publishes.
        request_timeout_seconds: Transport-level timeout for catalog requests.
    """

    api_url: str = "https://api.blockforge.dev/graphql"
    api_token: Optional[str] = None
    workspace_id: Optional[str] = None
    request_timeout_seconds: float = Field(default=300.0, gt=0)


class LoggingSettings(BlockforgeBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path, relative to the project root.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 3


class BlockforgeConfig(BlockforgeBaseModel):
    """Top-level configuration struct for a BlockForge project."""

    project: ProjectSettings = Field(default_factory=ProjectSettings)
    build: BuildSettings = Field(default_factory=BuildSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    publish: PublishSettings = Field(default_factory=PublishSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


__all__ = [
    "BlockforgeBaseModel",
    "ProjectSettings",
    "BuildSettings",
    "ServerSettings",
    "WatchSettings",
    "PublishSettings",
    "CatalogSettings",
    "LoggingSettings",
    "BlockforgeConfig",
]
