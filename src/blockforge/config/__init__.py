"""Project configuration stored in ``blockforge.yaml``."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import BlockforgeConfig
from .resolver import extract_env_overrides, flatten_for_env, resolve_with_precedence

CONFIG_FILENAME = "blockforge.yaml"
_HEADER_LINES = (
    "# BlockForge project configuration",
    "# Values here are overridden by BLOCKFORGE__SECTION__KEY environment variables",
    "# and by command-line options.",
)


class ConfigManager:
    """Read and write the configuration file of one project.

    The file is optional: a project without ``blockforge.yaml`` runs on
    defaults, environment variables and command-line options alone.
    """

    def __init__(
        self,
        project_root: Path | None = None,
        *,
        config_path: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            project_root: Project directory; the working directory by default.
            config_path: Explicit file location overriding ``project_root``.
            env: Environment consulted for overrides; ``os.environ`` by default.
        """
        self._project_root = (project_root or Path.cwd()).expanduser()
        self._config_path = (config_path or self._project_root / CONFIG_FILENAME).expanduser()
        self._env = os.environ if env is None else env

    @property
    def project_root(self) -> Path:
        return self._project_root

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> BlockforgeConfig:
        """Resolve the effective configuration.

        Args:
            cli_overrides: Dotted-key overrides from the command line.
            include_env: Whether ``BLOCKFORGE__*`` variables apply.
            env_overrides: Environment to read instead of the manager's own.

        Returns:
            BlockforgeConfig: Validated settings.

        Raises:
            ConfigError: If the file is malformed or a value is invalid.
        """
        environment = None
        if include_env:
            source = self._env if env_overrides is None else env_overrides
            environment = extract_env_overrides(source)
        return resolve_with_precedence(
            defaults=BlockforgeConfig(),
            file_overrides=self.load_file_overrides(),
            env_overrides=environment,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the mapping stored in the file, or ``{}`` when there is none.

        Raises:
            ConfigError: If the file is not valid YAML or not a mapping.
        """
        text = self.read_text()
        if not text.strip():
            return {}
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse {self._config_path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{self._config_path.name} must contain a mapping at the top level.")
        return data

    def save(self, config: BlockforgeConfig | Mapping[str, Any]) -> None:
        """Write ``config`` to the file, replacing it atomically."""
        data = (
            config.model_dump(mode="python")
            if isinstance(config, BlockforgeConfig)
            else dict(config)
        )
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        body = yaml.safe_dump(data, sort_keys=False)
        text = "\n".join((*_HEADER_LINES, f"# Last updated: {stamp}", body))

        target = self._config_path
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=".blockforge-", suffix=".yaml", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(temp_name, target)
        except OSError as exc:
            Path(temp_name).unlink(missing_ok=True)
            raise ConfigError(f"Unable to write {target}: {exc}") from exc

    def ensure_exists(self) -> Path:
        """Write a file holding the defaults unless one already exists."""
        if not self._config_path.exists():
            self.save(BlockforgeConfig())
        return self._config_path

    def read_text(self) -> str:
        """Return the raw file contents, or an empty string when it is missing."""
        try:
            return self._config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""


__all__ = [
    "CONFIG_FILENAME",
    "ConfigManager",
    "BlockforgeConfig",
    "resolve_with_precedence",
    "flatten_for_env",
    "ConfigError",
]
