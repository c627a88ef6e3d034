"""In-memory registry of scanned resources."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

from blockforge.state import PreviewStateRepository

from .errors import AmbiguousResourceError, ResourceNotFoundError
from .models import Resource, ResourceKey, ResourceType, ScanWarning
from .scanner import ResourceScanner

LOGGER = logging.getLogger(__name__)


class ResourceRegistry:
    """Own every resource of a running project and serialize their updates.

    Resources are fixed at construction; their mutable fields are refreshed in
    place by :meth:`reload` and :meth:`write_preview`, each holding the
    resource's lock for the whole read-modify-write.
    """

    def __init__(
        self,
        resources: Iterable[Resource] = (),
        *,
        preview_repository: Optional[PreviewStateRepository] = None,
    ) -> None:
        self._resources: dict[ResourceKey, Resource] = {}
        for resource in resources:
            if resource.key in self._resources:
                raise ValueError(f"Duplicate resource {resource.key}")
            self._resources[resource.key] = resource
        self._locks: dict[ResourceKey, asyncio.Lock] = {}
        self._previews = preview_repository or PreviewStateRepository()

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, key: object) -> bool:
        return key in self._resources

    def keys(self) -> list[ResourceKey]:
        return list(self._resources)

    def list(self, resource_type: Optional[ResourceType] = None) -> list[Resource]:
        """Return resources in scan order, optionally filtered by type."""
        return [
            resource
            for resource in self._resources.values()
            if resource_type is None or resource.type is resource_type
        ]

    def get(self, resource_type: ResourceType, name: str) -> Resource:
        """Return the resource identified by type and name.

        Raises:
            ResourceNotFoundError: If no such resource is registered.
        """
        resource = self._resources.get(ResourceKey(type=resource_type, name=name))
        if resource is None:
            raise ResourceNotFoundError(f"No {resource_type.value} named '{name}'")
        return resource

    def resolve(self, name: str, resource_type: Optional[ResourceType] = None) -> Resource:
        """Return the resource with ``name``, searching every type when none is given.

        Raises:
            ResourceNotFoundError: If nothing matches.
            AmbiguousResourceError: If a block and a template share the name.
        """
        if resource_type is not None:
            return self.get(resource_type, name)
        matches = [resource for resource in self._resources.values() if resource.name == name]
        if not matches:
            raise ResourceNotFoundError(f"No resource named '{name}'")
        if len(matches) > 1:
            kinds = ", ".join(resource.type.value for resource in matches)
            raise AmbiguousResourceError(
                f"'{name}' matches several resources ({kinds}); specify a type"
            )
        return matches[0]

    def lock_for(self, key: ResourceKey) -> asyncio.Lock:
        """Return the lock guarding a resource's mutable fields."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def reload(
        self, key: ResourceKey, scanner: ResourceScanner
    ) -> tuple[bool, list[ScanWarning]]:
        """Refresh a resource's config and manifest from disk.

        When the new config is invalid the previous values stay in place and
        the warnings describing the problem are returned.

        Args:
            key: Resource to refresh.
            scanner: Scanner used to load the directory.

        Returns:
            tuple[bool, list[ScanWarning]]: Whether the resource was updated, plus
            problems found while reloading.
        """
        resource = self.get(key.type, key.name)
        async with self.lock_for(key):
            fresh, warnings = await asyncio.to_thread(
                scanner.scan_directory, key.type, resource.root_path
            )
            if fresh is None:
                for warning in warnings:
                    LOGGER.warning("Keeping previous config for %s", warning)
                return False, warnings
            resource.config = fresh.config
            resource.package = fresh.package
            resource.config_path = fresh.config_path
            LOGGER.info("Reloaded config for %s", key)
            return True, warnings

    async def read_preview(self, key: ResourceKey) -> dict[str, Any]:
        """Return a copy of a resource's preview state."""
        resource = self.get(key.type, key.name)
        async with self.lock_for(key):
            return dict(resource.preview_state)

    async def write_preview(self, key: ResourceKey, state: Any) -> dict[str, Any]:
        """Persist and install a new preview state for a resource.

        Raises:
            InvalidPreviewStateError: If ``state`` is not a JSON object.
            StateError: If the document cannot be written.
        """
        resource = self.get(key.type, key.name)
        async with self.lock_for(key):
            saved = await asyncio.to_thread(self._previews.save, resource.root_path, state)
            resource.preview_state = dict(saved)
            return dict(saved)


__all__ = ["ResourceRegistry"]
