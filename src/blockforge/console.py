"""Shared rich console and logging setup for the CLI and dev server."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from blockforge.config.models import LoggingSettings

console = Console()
error_console = Console(stderr=True)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: LoggingSettings, *, project_root: Path | None = None) -> None:
    """Install rich logging on stderr and an optional rotating file log.

    Log records go to stderr so JSON written to stdout stays parseable.

    Args:
        settings: Logging section of the project configuration.
        project_root: Base directory for a relative ``settings.file``.
    """
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_blockforge", False):
            root.removeHandler(handler)

    rich_handler = RichHandler(console=error_console, show_path=False, rich_tracebacks=True)
    rich_handler._blockforge = True  # type: ignore[attr-defined]
    root.addHandler(rich_handler)

    if settings.file:
        log_path = Path(settings.file)
        if not log_path.is_absolute() and project_root is not None:
            log_path = project_root / log_path
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
                backupCount=max(0, settings.backup_count),
                encoding="utf-8",
            )
        except OSError as exc:
            logging.getLogger(__name__).warning("Unable to open log file %s: %s", log_path, exc)
        else:
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            file_handler._blockforge = True  # type: ignore[attr-defined]
            root.addHandler(file_handler)

    root.setLevel(level)
    # uvicorn installs its own handlers; route them through ours instead.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True


__all__ = ["console", "error_console", "configure_logging"]
