"""Classification of filesystem changes into rebuild decisions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Container, Iterable, Optional

from blockforge.resources.loader import CONFIG_FILENAMES, MANIFEST_FILENAME
from blockforge.resources.models import ResourceKey, ResourceType
from blockforge.state import PREVIEW_FILENAME

GENERATED_TYPES = ("src", "block.d.ts")
_TEMP_SUFFIXES = ("~", ".swp", ".swx", ".tmp", ".crdownload")


class ChangeKind(str, Enum):
    """How a changed path affects the running project."""

    IGNORED = "ignored"
    PREVIEW_STATE = "preview_state"
    GENERATED_TYPES = "generated_types"
    GLOBAL_STYLE = "global_style"
    RESOURCE_CONFIG = "resource_config"
    RESOURCE_SOURCE = "resource_source"
    UNKNOWN_RESOURCE = "unknown_resource"

    @property
    def triggers_rebuild(self) -> bool:
        return self in (
            ChangeKind.GLOBAL_STYLE,
            ChangeKind.RESOURCE_CONFIG,
            ChangeKind.RESOURCE_SOURCE,
        )


@dataclass(frozen=True, slots=True)
class Change:
    """A classified filesystem change.

    Attributes:
        path: Path reported by the change feed.
        kind: Classification of the change.
        key: Resource the path belongs to, when any.
        resource_dir: Directory of that resource, when any.
    """

    path: Path
    kind: ChangeKind
    key: Optional[ResourceKey] = None
    resource_dir: Optional[Path] = None


class ChangeClassifier:
    """Map changed paths onto the resource roots of one project."""

    def __init__(
        self,
        *,
        resource_roots: dict[ResourceType, Path],
        styles_root: Path,
        output_root: Path,
        known: Container[ResourceKey],
        ignore_dirs: Iterable[str] = (),
        preview_filename: str = PREVIEW_FILENAME,
    ) -> None:
        self._resource_roots = resource_roots
        self._styles_root = styles_root
        self._output_root = output_root
        self._known = known
        self._ignore_dirs = set(ignore_dirs)
        self._preview_filename = preview_filename

    def classify(self, path: Path) -> Change:
        if self._is_noise(path):
            return Change(path=path, kind=ChangeKind.IGNORED)
        if _is_under(path, self._styles_root):
            return Change(path=path, kind=ChangeKind.GLOBAL_STYLE)

        for resource_type, root in self._resource_roots.items():
            if not _is_under(path, root):
                continue
            relative = path.relative_to(root)
            if len(relative.parts) < 2:
                return Change(path=path, kind=ChangeKind.IGNORED)
            resource_dir = root / relative.parts[0]
            key = ResourceKey(type=resource_type, name=relative.parts[0])
            inner = relative.parts[1:]
            if key not in self._known:
                return Change(
                    path=path,
                    kind=ChangeKind.UNKNOWN_RESOURCE,
                    key=key,
                    resource_dir=resource_dir,
                )
            if inner == (self._preview_filename,):
                kind = ChangeKind.PREVIEW_STATE
            elif inner == GENERATED_TYPES:
                kind = ChangeKind.GENERATED_TYPES
            elif len(inner) == 1 and inner[0] in (*CONFIG_FILENAMES, MANIFEST_FILENAME):
                kind = ChangeKind.RESOURCE_CONFIG
            else:
                kind = ChangeKind.RESOURCE_SOURCE
            return Change(path=path, kind=kind, key=key, resource_dir=resource_dir)

        return Change(path=path, kind=ChangeKind.IGNORED)

    def _is_noise(self, path: Path) -> bool:
        if _is_under(path, self._output_root):
            return True
        if any(part in self._ignore_dirs for part in path.parts):
            return True
        name = path.name
        return name.startswith(".") or name.endswith(_TEMP_SUFFIXES)


def _is_under(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


__all__ = ["ChangeKind", "Change", "ChangeClassifier", "GENERATED_TYPES"]
