"""Parsing of resource config files and package manifests."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError
from yaml.constructor import ConstructorError
from yaml.nodes import MappingNode

from .models import PackageMetadata, ResourceConfig, ResourceType

CONFIG_FILENAMES = ("block.config.yaml", "block.config.yml", "block.config.json")
MANIFEST_FILENAME = "package.json"
LEGACY_SECTION = "blockforge"


class _DuplicateKeyLoader(yaml.SafeLoader):
    """Safe loader that records duplicate mapping keys instead of silently overwriting."""

    def __init__(self, stream: Any) -> None:
        super().__init__(stream)
        self.duplicates: list[str] = []

    def construct_mapping(self, node: MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: set[Any] = set()
        for key_node, _ in node.value:
            try:
                key = self.construct_object(key_node, deep=True)
            except ConstructorError:
                continue
            if not isinstance(key, (str, int, float, bool)) and key is not None:
                continue
            if key in seen:
                self.duplicates.append(
                    f"duplicate key '{key}' (line {key_node.start_mark.line + 1})"
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


@dataclass
class ConfigLoadResult:
    """Outcome of loading a resource config.

    Attributes:
        config: Parsed configuration, or ``None`` when absent or invalid.
        path: File the configuration was read from.
        problems: Parse and validation problems; non-empty means invalid.
        missing: True when no configuration source exists at all.
    """

    config: Optional[ResourceConfig] = None
    path: Optional[Path] = None
    problems: list[str] = field(default_factory=list)
    missing: bool = False


def find_config_file(resource_root: Path) -> Optional[Path]:
    """Return the first config file present in a resource directory."""
    for filename in CONFIG_FILENAMES:
        candidate = resource_root / filename
        if candidate.is_file():
            return candidate
    return None


def load_resource_config(resource_root: Path, resource_type: ResourceType) -> ConfigLoadResult:
    """Load and validate the config of one resource directory.

    Falls back to the legacy ``blockforge`` section of ``package.json`` when no
    dedicated config file exists.
    """
    path = find_config_file(resource_root)
    if path is not None:
        try:
            raw, duplicates = _read_document(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            return ConfigLoadResult(path=path, problems=[f"unable to parse {path.name}: {exc}"])
        if not isinstance(raw, dict):
            return ConfigLoadResult(path=path, problems=[f"{path.name} must contain a mapping"])
        return _validate(raw, path, resource_type, duplicates)

    manifest_path = resource_root / MANIFEST_FILENAME
    if manifest_path.is_file():
        try:
            manifest, duplicates = _read_document(manifest_path)
        except (OSError, ValueError) as exc:
            return ConfigLoadResult(
                path=manifest_path, problems=[f"unable to parse {MANIFEST_FILENAME}: {exc}"]
            )
        legacy = manifest.get(LEGACY_SECTION) if isinstance(manifest, dict) else None
        if isinstance(legacy, dict):
            raw = dict(legacy)
            if "displayName" in raw and "name" not in raw:
                raw["name"] = raw.pop("displayName")
            raw.setdefault("description", manifest.get("description"))
            return _validate(raw, manifest_path, resource_type, duplicates)

    return ConfigLoadResult(
        missing=True,
        problems=[f"no config file found (expected one of: {', '.join(CONFIG_FILENAMES)})"],
    )


def load_package_metadata(resource_root: Path) -> tuple[PackageMetadata, list[str]]:
    """Load ``package.json`` metadata, returning problems instead of raising."""
    manifest_path = resource_root / MANIFEST_FILENAME
    if not manifest_path.is_file():
        return PackageMetadata(), [f"{MANIFEST_FILENAME} not found"]
    try:
        raw, _ = _read_document(manifest_path)
    except (OSError, ValueError) as exc:
        return PackageMetadata(), [f"unable to parse {MANIFEST_FILENAME}: {exc}"]
    if not isinstance(raw, dict):
        return PackageMetadata(), [f"{MANIFEST_FILENAME} must contain an object"]
    try:
        return PackageMetadata.model_validate(raw), []
    except ValidationError as exc:
        return PackageMetadata(), [_format_error(err) for err in exc.errors()]


def read_manifest(resource_root: Path) -> dict[str, Any]:
    """Return the raw ``package.json`` document of a resource."""
    raw = json.loads((resource_root / MANIFEST_FILENAME).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{MANIFEST_FILENAME} must contain an object")
    return raw


def write_manifest(resource_root: Path, data: dict[str, Any]) -> None:
    """Overwrite ``package.json`` using the two-space layout npm writes."""
    (resource_root / MANIFEST_FILENAME).write_text(
        json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
    )


def _read_document(path: Path) -> tuple[Any, list[str]]:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        duplicates: list[str] = []

        def _pairs(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
            result: dict[str, Any] = {}
            for key, value in pairs:
                if key in result:
                    duplicates.append(f"duplicate key '{key}'")
                result[key] = value
            return result

        return json.loads(text, object_pairs_hook=_pairs), duplicates

    loader = _DuplicateKeyLoader(text)
    try:
        return loader.get_single_data(), loader.duplicates
    finally:
        loader.dispose()


def _validate(
    raw: dict[str, Any],
    path: Path,
    resource_type: ResourceType,
    duplicates: list[str],
) -> ConfigLoadResult:
    problems = list(duplicates)
    config: Optional[ResourceConfig] = None
    try:
        config = ResourceConfig.model_validate(raw)
    except ValidationError as exc:
        problems.extend(_format_error(err) for err in exc.errors())
    if config is not None and resource_type is ResourceType.BLOCK and not config.category:
        problems.append("blocks must declare a 'category'")
    if problems:
        return ConfigLoadResult(path=path, problems=problems)
    return ConfigLoadResult(config=config, path=path)


def _format_error(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "")
    message = error.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return f"{location}: {message}" if location else message


__all__ = [
    "CONFIG_FILENAMES",
    "MANIFEST_FILENAME",
    "ConfigLoadResult",
    "find_config_file",
    "load_resource_config",
    "load_package_metadata",
    "read_manifest",
    "write_manifest",
]
