"""Developer tasks for BlockForge, run through Invoke and ``uv``.

``invoke --list`` shows every task; each one shells out to ``uv`` so the
locked environment is used everywhere.
"""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Sequence
from pathlib import Path

from invoke import Collection, Context, task

PROJECT_ROOT = Path(__file__).parent
DIST_DIR = PROJECT_ROOT / "dist"
SOURCES = ("src", "tests", "tasks.py")


def _uv(ctx: Context, *args: str, echo: bool = True) -> None:
    """Run ``uv`` with the given arguments in a PTY."""
    ctx.run(shlex.join(("uv", *args)), echo=echo, pty=True, env=dict(ctx.config.run.env or {}))


def _split(options: str) -> Sequence[str]:
    return shlex.split(options) if options else ()


@task(help={"dev": "Install the dev extra (tests, lint, type checking)."})
def sync(ctx: Context, dev: bool = True) -> None:
    """Create or update the virtual environment."""
    _uv(ctx, "sync", *(("--extra", "dev") if dev else ()))


@task(help={"clean": "Empty dist/ first."})
def build(ctx: Context, clean: bool = False) -> None:
    """Build the sdist and wheel into ``dist/``."""
    if clean:
        shutil.rmtree(DIST_DIR, ignore_errors=True)
    _uv(ctx, "build")


@task(
    help={
        "k": "Only run tests matching this pytest -k expression.",
        "path": "Test file or directory (defaults to tests/).",
        "options": "Extra pytest flags, passed through as-is.",
    }
)
def tests(ctx: Context, k: str = "", path: str = "tests", options: str = "") -> None:
    """Run the pytest suite."""
    selection = ("-k", k) if k else ()
    _uv(ctx, "run", "pytest", *selection, *_split(options), path)


@task(help={"fix": "Let ruff rewrite fixable problems."})
def lint(ctx: Context, fix: bool = False) -> None:
    """Check style with ruff."""
    _uv(ctx, "run", "ruff", "check", *SOURCES, *(("--fix",) if fix else ()))


@task
def fmt(ctx: Context) -> None:
    """Format sources with ruff."""
    _uv(ctx, "run", "ruff", "format", *SOURCES)


@task
def mypy(ctx: Context) -> None:
    """Type-check the package."""
    _uv(ctx, "run", "mypy", "src")


@task(
    help={
        "project": "Project root to serve.",
        "port": "Port override; 0 keeps server.port from the project config.",
        "no_watch": "Build once without watching for changes.",
    }
)
def dev(ctx: Context, project: str = ".", port: int = 0, no_watch: bool = False) -> None:
    """Serve a project with ``blockforge dev``."""
    args = ["run", "blockforge", "dev", "--project", project]
    if port:
        args += ["--port", str(port)]
    if no_watch:
        args.append("--no-watch")
    _uv(ctx, *args)


@task(help={"project": "Project whose .blockforge/ output is removed."})
def clean(ctx: Context, project: str = ".") -> None:
    """Delete dev and publish artifacts of a project."""
    shutil.rmtree(Path(project) / ".blockforge", ignore_errors=True)


@task(pre=[lint, mypy, tests])
def ci(ctx: Context) -> None:
    """Run the same checks as CI: lint, type check, tests."""


namespace = Collection(sync, build, tests, lint, fmt, mypy, dev, clean, ci)
