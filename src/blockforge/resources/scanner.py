"""Discovery of resource directories inside a project tree."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from blockforge.config.models import ProjectSettings
from blockforge.state import PreviewStateRepository, StateError

from .loader import load_package_metadata, load_resource_config
from .models import Resource, ResourceType, ScanResult, ScanWarning

LOGGER = logging.getLogger(__name__)


class ResourceScanner:
    """Walk the configured resource roots and build validated resources."""

    def __init__(
        self,
        project_root: Path,
        settings: Optional[ProjectSettings] = None,
        *,
        strict: bool = False,
        preview_repository: Optional[PreviewStateRepository] = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            project_root: Root directory of the project.
            settings: Project layout settings; defaults apply when omitted.
            strict: Report missing or invalid configs as errors instead of warnings.
            preview_repository: Repository used to load saved preview state.
        """
        self._project_root = project_root.expanduser().resolve()
        self._settings = settings or ProjectSettings()
        self._strict = strict
        self._previews = preview_repository or PreviewStateRepository()

    @property
    def project_root(self) -> Path:
        return self._project_root

    def roots(self) -> dict[ResourceType, Path]:
        """Return the resource roots keyed by the type they contain."""
        return {
            ResourceType.BLOCK: self._project_root / self._settings.blocks_dir,
            ResourceType.TEMPLATE: self._project_root / self._settings.templates_dir,
        }

    def styles_root(self) -> Path:
        return self._project_root / self._settings.styles_dir

    def output_root(self) -> Path:
        return self._project_root / self._settings.output_dir

    def scan(self) -> ScanResult:
        """Scan every resource root.

        Returns:
            ScanResult: Accepted resources (blocks first, then templates, each
            sorted by name) and warnings for excluded or degraded directories.
        """
        result = ScanResult()
        for resource_type, root in self.roots().items():
            for directory in self._candidates(root):
                resource, warnings = self.scan_directory(resource_type, directory)
                result.warnings.extend(warnings)
                if resource is not None:
                    result.resources.append(resource)

        for warning in result.warnings:
            if not warning.excluded:
                LOGGER.warning("Loaded %s", warning)
            elif warning.severity == "error":
                LOGGER.error("Skipping %s", warning)
            else:
                LOGGER.warning("Skipping %s", warning)
        LOGGER.debug(
            "Scan found %d resource(s) with %d warning(s)",
            len(result.resources),
            len(result.warnings),
        )
        return result

    def scan_directory(
        self, resource_type: ResourceType, directory: Path
    ) -> tuple[Optional[Resource], list[ScanWarning]]:
        """Load one resource directory.

        Args:
            resource_type: Type implied by the root the directory lives under.
            directory: Resource directory.

        Returns:
            tuple[Optional[Resource], list[ScanWarning]]: The resource, or ``None``
            when it must be excluded, plus any warnings collected while loading.
        """
        directory = directory.resolve()
        name = directory.name
        warnings: list[ScanWarning] = []

        loaded = load_resource_config(directory, resource_type)
        if loaded.problems or loaded.config is None:
            warnings.append(
                ScanWarning(
                    path=directory,
                    resource_type=resource_type,
                    name=name,
                    severity="error" if self._strict else "warning",
                    messages=loaded.problems or ["config could not be loaded"],
                )
            )
            return None, warnings

        package, package_problems = load_package_metadata(directory)
        if package_problems:
            LOGGER.debug("%s '%s': %s", resource_type.value, name, "; ".join(package_problems))

        try:
            preview_state = self._previews.load(directory)
        except StateError as exc:
            warnings.append(
                ScanWarning(
                    path=directory,
                    resource_type=resource_type,
                    name=name,
                    messages=[f"ignoring preview state: {exc}"],
                    excluded=False,
                )
            )
            preview_state = {}

        resource = Resource(
            type=resource_type,
            name=name,
            root_path=directory,
            config=loaded.config,
            package=package,
            config_path=loaded.path,
            preview_state=preview_state,
        )
        return resource, warnings

    def _candidates(self, root: Path) -> Iterable[Path]:
        if not root.is_dir():
            LOGGER.debug("Resource root %s does not exist", root)
            return []
        return sorted(
            (
                entry
                for entry in root.iterdir()
                if entry.is_dir() and not entry.name.startswith(".")
            ),
            key=lambda entry: entry.name,
        )


__all__ = ["ResourceScanner"]
