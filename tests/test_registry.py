"""Resource registry tests."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
import yaml

from blockforge.resources import (
    AmbiguousResourceError,
    ResourceKey,
    ResourceNotFoundError,
    ResourceRegistry,
    ResourceScanner,
    ResourceType,
)
from blockforge.state import InvalidPreviewStateError
from tests.conftest import HERO_CONFIG, write_resource

HERO = ResourceKey(type=ResourceType.BLOCK, name="hero")


def _registry(project: Path) -> tuple[ResourceRegistry, ResourceScanner]:
    scanner = ResourceScanner(project)
    return ResourceRegistry(scanner.scan().resources), scanner


def test_lookup_by_type_and_name(project: Path) -> None:
    registry, _ = _registry(project)

    assert len(registry) == 2
    assert HERO in registry
    assert registry.get(ResourceType.BLOCK, "hero").display_name == "Hero Banner"
    assert registry.resolve("landing").type is ResourceType.TEMPLATE
    assert [r.name for r in registry.list(ResourceType.TEMPLATE)] == ["landing"]

    with pytest.raises(ResourceNotFoundError):
        registry.get(ResourceType.TEMPLATE, "hero")
    with pytest.raises(ResourceNotFoundError):
        registry.resolve("missing")


def test_shared_name_requires_a_type(project: Path) -> None:
    write_resource(project, "templates", "hero", config={"name": "Hero Template"})
    registry, _ = _registry(project)

    with pytest.raises(AmbiguousResourceError):
        registry.resolve("hero")
    assert registry.resolve("hero", ResourceType.TEMPLATE).display_name == "Hero Template"


def test_duplicate_resources_are_rejected(project: Path) -> None:
    resources = ResourceScanner(project).scan().resources

    with pytest.raises(ValueError):
        ResourceRegistry([*resources, resources[0]])


@pytest.mark.asyncio
async def test_reload_refreshes_config(project: Path) -> None:
    registry, scanner = _registry(project)
    config = {**HERO_CONFIG, "name": "Hero v2", "category": "headers"}
    (project / "blocks" / "hero" / "block.config.yaml").write_text(
        yaml.safe_dump(config, sort_keys=False), encoding="utf-8"
    )

    updated, warnings = await registry.reload(HERO, scanner)

    assert updated is True
    assert warnings == []
    hero = registry.get(ResourceType.BLOCK, "hero")
    assert hero.display_name == "Hero v2"
    assert hero.category == "headers"


@pytest.mark.asyncio
async def test_invalid_reload_keeps_previous_config(project: Path) -> None:
    registry, scanner = _registry(project)
    (project / "blocks" / "hero" / "block.config.yaml").write_text(
        "name: [unclosed\n", encoding="utf-8"
    )

    updated, warnings = await registry.reload(HERO, scanner)

    assert updated is False
    assert warnings and warnings[0].name == "hero"
    assert registry.get(ResourceType.BLOCK, "hero").display_name == "Hero Banner"


@pytest.mark.asyncio
async def test_preview_state_is_persisted(project: Path) -> None:
    registry, _ = _registry(project)

    saved = await registry.write_preview(HERO, {"heading": "Hello"})

    assert saved == {"heading": "Hello"}
    assert await registry.read_preview(HERO) == {"heading": "Hello"}
    stored = json.loads((project / "blocks" / "hero" / "preview.json").read_text("utf-8"))
    assert stored == {"heading": "Hello"}


@pytest.mark.asyncio
async def test_read_preview_returns_a_copy(project: Path) -> None:
    registry, _ = _registry(project)
    await registry.write_preview(HERO, {"heading": "Hello"})

    snapshot = await registry.read_preview(HERO)
    snapshot["heading"] = "Mutated"

    assert await registry.read_preview(HERO) == {"heading": "Hello"}


@pytest.mark.asyncio
async def test_invalid_preview_state_leaves_previous_state(project: Path) -> None:
    registry, _ = _registry(project)
    await registry.write_preview(HERO, {"heading": "Kept"})

    with pytest.raises(InvalidPreviewStateError):
        await registry.write_preview(HERO, ["not", "an", "object"])

    assert await registry.read_preview(HERO) == {"heading": "Kept"}


@pytest.mark.asyncio
async def test_concurrent_preview_writes_settle_on_one_document(project: Path) -> None:
    registry, _ = _registry(project)
    states = [{"heading": f"Title {index}", "index": index} for index in range(10)]

    await asyncio.gather(*(registry.write_preview(HERO, state) for state in states))

    in_memory = await registry.read_preview(HERO)
    on_disk = json.loads((project / "blocks" / "hero" / "preview.json").read_text("utf-8"))
    assert in_memory == on_disk
    assert in_memory in states
