"""Preview state persistence for resources under development."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .errors import InvalidPreviewStateError, StateError

PREVIEW_FILENAME = "preview.json"


class PreviewStateRepository:
    """Read and overwrite the preview state document stored beside each resource."""

    def __init__(self, filename: str = PREVIEW_FILENAME) -> None:
        """Initialize the repository.

        Args:
            filename: Name of the preview document inside a resource directory.
        """
        self._filename = filename

    @property
    def filename(self) -> str:
        """Return the preview document filename."""
        return self._filename

    def path_for(self, resource_root: Path) -> Path:
        """Return the preview document path for a resource directory."""
        return resource_root / self._filename

    def load(self, resource_root: Path) -> dict[str, Any]:
        """Load the preview state for a resource.

        Args:
            resource_root: Directory of the resource.

        Returns:
            dict[str, Any]: Saved preview state, or an empty mapping when none exists.

        Raises:
            StateError: If the stored document cannot be parsed.
            InvalidPreviewStateError: If the document is not a JSON object.
        """
        path = self.path_for(resource_root)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StateError(f"Invalid preview state at {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidPreviewStateError(f"Preview state at {path} must be a JSON object.")
        return data

    def save(self, resource_root: Path, state: Any) -> dict[str, Any]:
        """Overwrite the preview state for a resource.

        The document is written to a temporary file and moved into place, so
        readers never observe a partially written file.

        Args:
            resource_root: Directory of the resource.
            state: JSON-compatible mapping to persist.

        Returns:
            dict[str, Any]: The persisted state.

        Raises:
            InvalidPreviewStateError: If ``state`` is not a mapping.
            StateError: If the document cannot be serialized or written.
        """
        if not isinstance(state, dict):
            raise InvalidPreviewStateError("Preview state must be a JSON object.")
        try:
            payload = json.dumps(state, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StateError(f"Preview state is not JSON serializable: {exc}") from exc

        path = self.path_for(resource_root)
        fd, tmp_name = tempfile.mkstemp(prefix=".preview-", suffix=".json", dir=resource_root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload + "\n")
            os.replace(tmp_name, path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StateError(f"Unable to write preview state to {path}: {exc}") from exc
        return state


__all__ = [
    "PREVIEW_FILENAME",
    "PreviewStateRepository",
    "StateError",
    "InvalidPreviewStateError",
]
