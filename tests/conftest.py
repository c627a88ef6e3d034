"""Shared fixtures and fakes for the BlockForge test suite."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import pytest
import yaml

from blockforge.build import BuildOptions, BundleResult, CompileError

BROKEN_MARKER = "SYNTAX ERROR"

HERO_CONFIG: dict[str, Any] = {
    "name": "Hero Banner",
    "description": "Large heading with a call to action",
    "category": "marketing",
    "tags": ["hero", "landing"],
    "schema": {
        "heading": {"type": "singleLine", "label": "Heading", "required": True},
        "theme": {
            "type": "select",
            "label": "Theme",
            "options": ["light", "dark"],
            "defaultValue": "light",
        },
    },
}

HERO_PACKAGE: dict[str, Any] = {
    "name": "@acme/blocks.hero",
    "version": "1.0.0",
    "description": "Hero banner block",
    "author": {"name": "Acme", "email": "dev@acme.test"},
}


def write_resource(
    project: Path,
    kind_dir: str,
    name: str,
    *,
    config: Optional[Mapping[str, Any]] = None,
    package: Optional[Mapping[str, Any]] = None,
    source: Optional[str] = "export default function Block() { return null; }\n",
    entry: str = "index.tsx",
    css: Optional[str] = None,
) -> Path:
    """Create a resource directory under ``project/kind_dir``."""
    root = project / kind_dir / name
    (root / "src").mkdir(parents=True, exist_ok=True)
    if config is not None:
        (root / "block.config.yaml").write_text(
            yaml.safe_dump(dict(config), sort_keys=False), encoding="utf-8"
        )
    if package is not None:
        (root / "package.json").write_text(json.dumps(dict(package), indent=2), encoding="utf-8")
    if source is not None:
        (root / "src" / entry).write_text(source, encoding="utf-8")
    if css is not None:
        (root / "src" / "index.css").write_text(css, encoding="utf-8")
    return root


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Return a project with one block, one template and a shared styles root."""
    root = (tmp_path / "site").resolve()
    root.mkdir()
    write_resource(
        root,
        "blocks",
        "hero",
        config=HERO_CONFIG,
        package=HERO_PACKAGE,
        css=".hero { color: red; }\n",
    )
    write_resource(
        root,
        "templates",
        "landing",
        config={"name": "Landing Page", "description": "Marketing landing page"},
        package={"name": "@acme/templates.landing", "version": "0.3.0", "author": "Acme"},
    )
    (root / "styles").mkdir()
    (root / "styles" / "global.css").write_text("body { margin: 0; }\n", encoding="utf-8")
    return root


@dataclass
class BundleCall:
    entry: Path
    options: BuildOptions
    outfile_name: str


class FakeBundler:
    """Bundler double that echoes the entry source.

    Sources containing ``SYNTAX ERROR`` fail with a diagnostic. ``gate`` holds
    every bundle until it is set, which lets tests observe in-flight builds.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.calls: list[BundleCall] = []
        self.delay = delay
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None
        self.in_flight: dict[Path, int] = {}
        self.max_in_flight = 0
        self.max_in_flight_per_entry = 0

    def calls_for(self, name: str) -> list[BundleCall]:
        return [call for call in self.calls if call.entry.parent.parent.name == name]

    async def bundle(
        self, entry: Path, options: BuildOptions, *, outfile_name: str = "index.js"
    ) -> BundleResult:
        self.calls.append(BundleCall(entry, options, outfile_name))
        self.in_flight[entry] = self.in_flight.get(entry, 0) + 1
        self.max_in_flight = max(self.max_in_flight, sum(self.in_flight.values()))
        self.max_in_flight_per_entry = max(self.max_in_flight_per_entry, self.in_flight[entry])
        try:
            if self.entered is not None:
                self.entered.set()
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            source = entry.read_text(encoding="utf-8")
        finally:
            self.in_flight[entry] -= 1

        if BROKEN_MARKER in source:
            return BundleResult(diagnostics=[f"{entry}:1:0: ERROR: Unexpected token"])
        code = f"/* {options.format} {outfile_name} */\n{source}"
        sourcemap = json.dumps({"version": 3, "file": outfile_name}) if options.sourcemaps else None
        return BundleResult(code=code, sourcemap=sourcemap, warnings=[])


class FakeCssCompiler:
    """CSS compiler double that prefixes a banner or fails on demand."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[Path, list[Path]]] = []

    async def transform(
        self, source: str, *, source_path: Path, style_roots: Sequence[Path]
    ) -> str:
        self.calls.append((source_path, list(style_roots)))
        if self.fail:
            raise CompileError("postcss exited with status 1", ["Unknown word"])
        return "/* compiled */\n" + source


class FakeCatalog:
    """Catalog double recording calls, with optional delay or failure."""

    def __init__(
        self,
        *,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        workspaces: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        self.delay = delay
        self.error = error
        self.workspaces = workspaces or [{"id": "ws-1", "slug": "acme", "name": "Acme"}]
        self.published: list[dict[str, Any]] = []
        self.imported: list[tuple[dict[str, Any], str]] = []
        self.cancelled = 0

    async def _respond(self) -> None:
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.error is not None:
            raise self.error

    async def publish_package(self, package_input: Mapping[str, Any]) -> dict[str, Any]:
        self.published.append(dict(package_input))
        await self._respond()
        return {"success": True, "message": "Submitted for review", "packageId": "pkg-1"}

    async def import_block(
        self, block_input: Mapping[str, Any], workspace_id: str
    ) -> dict[str, Any]:
        self.imported.append((dict(block_input), workspace_id))
        await self._respond()
        return {"id": "blk-1", "blockType": block_input["blockType"], "version": "1"}

    async def list_workspaces(self) -> list[dict[str, Any]]:
        return list(self.workspaces)


@pytest.fixture
def bundler() -> FakeBundler:
    return FakeBundler()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()
