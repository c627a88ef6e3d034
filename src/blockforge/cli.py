"""Command line interface for BlockForge projects."""

from __future__ import annotations

import asyncio
import difflib
from pathlib import Path
from typing import Any, Optional

import click
import uvicorn
import yaml
from rich.syntax import Syntax
from rich.table import Table

from blockforge.build import BuildArtifact, BuildError, BuildOptions, ResourceCompiler
from blockforge.config import (
    CONFIG_FILENAME,
    BlockforgeConfig,
    ConfigError,
    ConfigManager,
    resolve_with_precedence,
)
from blockforge.console import configure_logging, console
from blockforge.devserver import DevServer, create_bundler, create_css_compiler
from blockforge.publish import PublishError, PublishTarget, VersionBump
from blockforge.resources import (
    Resource,
    ResourceError,
    ResourceScanner,
    ResourceType,
    ScanResult,
)
from blockforge.server import create_app

_PROJECT_OPTION = click.option(
    "-p",
    "--project",
    "project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project root directory.",
)


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Report a command failure and exit with status 1.

    In JSON mode the error is printed as ``{"error": {...}}`` on stdout;
    otherwise it surfaces through click's own error output.

    Args:
        message: Text shown to the user.
        code: Stable identifier for scripts consuming ``--json`` output.
        json_output: Whether ``--json`` was passed.
        details: Extra data attached to the JSON error.
        original: Exception that caused the failure.

    Raises:
        SystemExit: In JSON mode.
        click.ClickException: Otherwise.
    """
    if not json_output:
        if isinstance(original, click.ClickException):
            raise original
        raise click.ClickException(message) from original

    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    console.print_json(data={"error": error})
    raise SystemExit(1)


def _load_config(project: Path, overrides: Optional[dict[str, Any]] = None) -> BlockforgeConfig:
    return ConfigManager(project).load(cli_overrides=overrides or None)


def _emit_scan_warnings(result: ScanResult) -> None:
    for warning in result.warnings:
        colour = "red" if warning.severity == "error" else "yellow"
        console.print(f"[{colour}]{warning.severity.capitalize()}: {warning}[/{colour}]")


def _set_dotted(data: dict[str, Any], segments: list[str], value: Any) -> None:
    """Store ``value`` under ``segments`` in ``data``, creating sections as needed."""
    *sections, leaf = segments
    for section in sections:
        child = data.setdefault(section, {})
        if child is None:
            child = data[section] = {}
        if not isinstance(child, dict):
            raise ConfigError(f"'{section}' in {CONFIG_FILENAME} is not a section.")
        data = child
    data[leaf] = value


async def _production_build(
    project: Path,
    config: BlockforgeConfig,
    scanner: ResourceScanner,
    result: ScanResult,
    out_dir: Path,
) -> list[BuildArtifact]:
    compiler = ResourceCompiler(
        create_bundler(config.build, project),
        css_compiler=create_css_compiler(config.build, project),
        framework=config.project.framework,
        style_roots=[scanner.styles_root()],
    )
    options = BuildOptions.for_production(config.build)
    semaphore = asyncio.Semaphore(config.build.concurrency)

    async def _compile(resource: Resource) -> BuildArtifact:
        async with semaphore:
            return await compiler.compile(resource, out_dir, options)

    return list(await asyncio.gather(*(_compile(resource) for resource in result.resources)))


async def _follow(
    server: DevServer, task_id: str, *, label: Optional[str], json_output: bool
) -> dict[str, Any]:
    shown = 0
    snapshot: dict[str, Any] = {}
    prefix = f"{label} " if label else ""
    async for snapshot in server.tracker.stream(task_id):
        if json_output:
            continue
        for step in snapshot["steps"][shown:]:
            colour = "red" if step["status"] == "failed" else "cyan"
            console.print(
                f"[{colour}]{prefix}{snapshot['progress']:>3}% {step['name']}: "
                f"{step['message'] or ''}[/{colour}]"
            )
        shown = len(snapshot["steps"])
    return snapshot


async def _run_publish(
    server: DevServer,
    selection: list[tuple[str, Optional[str]]],
    *,
    target: str,
    workspace_id: Optional[str],
    bump: str,
    json_output: bool,
) -> list[dict[str, Any]]:
    """Create one task per ``(name, type)`` pair and wait for all of them."""
    try:
        task_ids = [
            server.tracker.create(
                name,
                target,
                workspace_id=workspace_id,
                version_bump=bump,
                resource_type=resource_type,
            )
            for name, resource_type in selection
        ]
        labels = [name if len(selection) > 1 else None for name, _ in selection]
        return list(
            await asyncio.gather(
                *(
                    _follow(server, task_id, label=label, json_output=json_output)
                    for task_id, label in zip(task_ids, labels)
                )
            )
        )
    finally:
        await server.stop()


def _report_dry_run(
    server: DevServer,
    selection: list[tuple[str, Optional[str]]],
    target: str,
    workspace_id: Optional[str],
    bump: str,
    json_output: bool,
) -> None:
    reports: list[dict[str, Any]] = []
    for item_name, item_type in selection:
        try:
            reports.append(
                server.tracker.dry_run(
                    item_name,
                    target,
                    workspace_id=workspace_id,
                    version_bump=bump,
                    resource_type=item_type,
                )
            )
        except (ResourceError, PublishError) as exc:
            if len(selection) == 1:
                _handle_cli_error(
                    str(exc), code="publish_rejected", json_output=json_output, original=exc
                )
                return
            reports.append({"resource": item_name, "resourceType": item_type, "error": str(exc)})

    errors = [report for report in reports if "error" in report]
    if json_output:
        console.print_json(data={"dryRun": True, "resources": reports})
    else:
        table = Table(title=f"Dry run: publish to {target}")
        table.add_column("Type")
        table.add_column("Name")
        table.add_column("Package")
        table.add_column("Version")
        for report in reports:
            if "error" in report:
                version = f"[red]{report['error']}[/red]"
            else:
                version = f"{report['currentVersion']} -> {report['version']}"
            table.add_row(
                report.get("resourceType") or "",
                report["resource"],
                report.get("packageName") or "",
                version,
            )
        console.print(table)
        console.print("[yellow]Dry run; nothing was uploaded.[/yellow]")
    if errors:
        raise SystemExit(1)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="blockforge")
def cli() -> None:
    """BlockForge builds, previews and publishes blocks and page templates."""


@cli.command()
@_PROJECT_OPTION
@click.option("--host", type=str, help="Interface to bind (overrides server.host).")
@click.option("--port", type=int, help="Port to listen on (overrides server.port).")
@click.option("--no-watch", is_flag=True, help="Build once without watching for changes.")
@click.option("--strict", is_flag=True, help="Treat missing or invalid resource configs as errors.")
def dev(
    project: Path, host: Optional[str], port: Optional[int], no_watch: bool, strict: bool
) -> None:
    """Start the development server with live reload.

    Args:
        project: Project root directory.
        host: Optional bind address override.
        port: Optional port override.
        no_watch: Disable filesystem watching.
        strict: Enable strict scanning.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    overrides: dict[str, Any] = {}
    if host:
        overrides["server.host"] = host
    if port is not None:
        overrides["server.port"] = port
    if no_watch:
        overrides["watch.enabled"] = False

    root = project.resolve()
    try:
        config = _load_config(root, overrides)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    configure_logging(config.logging, project_root=root)
    server = DevServer(root, config, strict=strict)
    result = server.load()
    if strict and result.errors:
        _emit_scan_warnings(result)
        raise click.ClickException(f"{len(result.errors)} resource(s) failed to load.")

    console.print(
        f"[green]Serving {len(server.registry)} resource(s) from {root} at "
        f"http://{config.server.host}:{config.server.port}[/green]"
    )
    uvicorn.run(
        create_app(server),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


@cli.command()
@_PROJECT_OPTION
@click.option(
    "--out-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Destination directory (overrides build.out_dir).",
)
@click.option("--strict", is_flag=True, help="Exit non-zero on any scan or build failure.")
@click.option("--json", "json_output", is_flag=True, help="Emit build results as JSON.")
def build(project: Path, out_dir: Optional[Path], strict: bool, json_output: bool) -> None:
    """Build every resource into versioned production bundles.

    Args:
        project: Project root directory.
        out_dir: Optional output directory override.
        strict: Fail when any resource could not be scanned or built.
        json_output: Emit JSON instead of a table.
    """
    root = project.resolve()
    try:
        config = _load_config(root)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return

    if not json_output:
        configure_logging(config.logging, project_root=root)

    destination = out_dir if out_dir is not None else root / config.build.out_dir
    scanner = ResourceScanner(root, config.project, strict=strict)
    result = scanner.scan()
    artifacts = asyncio.run(_production_build(root, config, scanner, result, destination))
    failed = [artifact for artifact in artifacts if not artifact.ok]

    if json_output:
        console.print_json(
            data={
                "outDir": destination.as_posix(),
                "artifacts": [artifact.summary() for artifact in artifacts],
                "warnings": [warning.model_dump(mode="json") for warning in result.warnings],
            }
        )
        if strict and (failed or result.errors):
            raise SystemExit(1)
        return

    _emit_scan_warnings(result)
    table = Table(title=f"Production build for {root}")
    table.add_column("Resource")
    table.add_column("Status")
    table.add_column("Output", overflow="fold")
    table.add_column("Time", justify="right")
    for artifact in artifacts:
        status = "[green]ok[/green]" if artifact.ok else f"[red]{artifact.error_kind}[/red]"
        output = (
            artifact.output_dir.as_posix() if artifact.output_dir else artifact.error_message or ""
        )
        table.add_row(str(artifact.key), status, output, f"{artifact.duration_ms:.0f} ms")
    console.print(table)
    console.print(
        f"[green]Build summary for {root}: built={len(artifacts) - len(failed)}, "
        f"failed={len(failed)}, warnings={len(result.warnings)}.[/green]"
    )

    if strict:
        if result.errors:
            raise click.ClickException(f"{len(result.errors)} resource(s) failed to load.")
        for artifact in failed:
            try:
                artifact.raise_for_status()
            except BuildError as exc:
                raise click.ClickException(f"{artifact.key}: {exc}") from exc


@cli.command("list")
@_PROJECT_OPTION
@click.option(
    "--type",
    "resource_type",
    type=click.Choice([item.value for item in ResourceType]),
    help="Only list resources of this type.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit resources as JSON.")
def list_resources(project: Path, resource_type: Optional[str], json_output: bool) -> None:
    """List the blocks and templates found in a project."""
    root = project.resolve()
    try:
        config = _load_config(root)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return

    result = ResourceScanner(root, config.project).scan()
    resources = [
        resource
        for resource in result.resources
        if resource_type is None or resource.type.value == resource_type
    ]

    if json_output:
        console.print_json(
            data={
                "resources": [resource.summary() for resource in resources],
                "warnings": [warning.model_dump(mode="json") for warning in result.warnings],
            }
        )
        return

    _emit_scan_warnings(result)
    if not resources:
        console.print("[yellow]No resources found.[/yellow]")
        return

    table = Table(title=f"Resources in {root}")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Display name")
    table.add_column("Category")
    table.add_column("Version")
    table.add_column("Fields", justify="right")
    for resource in resources:
        table.add_row(
            resource.type.value,
            resource.name,
            resource.display_name,
            resource.category or "",
            resource.package.version or "",
            str(len(resource.config.fields)),
        )
    console.print(table)


@cli.command()
@click.argument("name", required=False)
@_PROJECT_OPTION
@click.option(
    "--target",
    type=click.Choice([item.value for item in PublishTarget]),
    required=True,
    help="Where to publish the resource.",
)
@click.option("--workspace-id", type=str, help="Workspace receiving a workspace publish.")
@click.option(
    "--bump",
    type=click.Choice([item.value for item in VersionBump]),
    default=VersionBump.PATCH.value,
    show_default=True,
    help="Version increment applied before publishing.",
)
@click.option(
    "--type",
    "resource_type",
    type=click.Choice([item.value for item in ResourceType]),
    help="Resource type, when NAME is ambiguous.",
)
@click.option("--all", "publish_all", is_flag=True, help="Publish every block and template.")
@click.option("--dry-run", is_flag=True, help="Validate and show versions without uploading.")
@click.option("--json", "json_output", is_flag=True, help="Emit the final task state as JSON.")
def publish(
    name: Optional[str],
    project: Path,
    target: str,
    workspace_id: Optional[str],
    bump: str,
    resource_type: Optional[str],
    publish_all: bool,
    dry_run: bool,
    json_output: bool,
) -> None:
    """Publish resource NAME, or every resource with --all, to the marketplace or a workspace.

    Args:
        name: Resource name; omitted with ``--all``.
        project: Project root directory.
        target: Publish destination.
        workspace_id: Workspace identifier for workspace publishes.
        bump: Semantic version increment.
        resource_type: Optional resource type used to disambiguate NAME.
        publish_all: Publish every resource in the project concurrently.
        dry_run: Only report what would be published.
        json_output: Emit JSON instead of progress lines.
    """
    if publish_all == bool(name):
        _handle_cli_error(
            "Give either a resource NAME or --all.", code="usage", json_output=json_output
        )
        return

    root = project.resolve()
    try:
        config = _load_config(root)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return

    if not json_output:
        configure_logging(config.logging, project_root=root)

    server = DevServer(root, config)
    server.load()
    if publish_all:
        selection = [(item.name, item.type.value) for item in server.registry.list()]
        if not selection:
            _handle_cli_error("No resources to publish.", code="usage", json_output=json_output)
            return
    else:
        selection = [(name or "", resource_type)]

    if dry_run:
        _report_dry_run(server, selection, target, workspace_id, bump, json_output)
        return

    try:
        snapshots = asyncio.run(
            _run_publish(
                server,
                selection,
                target=target,
                workspace_id=workspace_id,
                bump=bump,
                json_output=json_output,
            )
        )
    except (ResourceError, PublishError) as exc:
        _handle_cli_error(
            str(exc), code="publish_rejected", json_output=json_output, original=exc
        )
        return

    failed = [snapshot for snapshot in snapshots if snapshot.get("error")]
    if json_output:
        console.print_json(data={"tasks": snapshots} if publish_all else snapshots[0])
        if failed:
            raise SystemExit(1)
        return

    if any(snapshot["error"].get("quota") for snapshot in failed):
        console.print(
            "[bold yellow]Plan limit reached; upgrade your plan or remove "
            "unused resources before publishing again.[/bold yellow]"
        )
    for snapshot in snapshots:
        error = snapshot.get("error")
        if not error:
            version = snapshot.get("result", {}).get("version")
            console.print(
                f"[green]Published {snapshot['resource']} {version or ''} to {target}.[/green]"
            )
        elif publish_all:
            console.print(f"[red]{snapshot['resource']}: {error['kind']}: {error['message']}[/red]")

    if failed and not publish_all:
        error = failed[0]["error"]
        raise click.ClickException(f"Publish failed ({error['kind']}): {error['message']}")
    if failed:
        raise click.ClickException(f"{len(failed)} of {len(snapshots)} publishes failed.")


@cli.group()
def config() -> None:
    """Manage BlockForge project configuration."""


@config.command("view")
@_PROJECT_OPTION
@click.option("--no-env", is_flag=True, help="Show the file and defaults only.")
def config_view(project: Path, no_env: bool) -> None:
    """Print the merged settings as YAML."""
    try:
        settings = ConfigManager(project).load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    rendered = yaml.safe_dump(settings.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(rendered, "yaml", word_wrap=True))


def _changed_lines(before: list[str], after: list[str]) -> list[str]:
    diff = difflib.unified_diff(
        before, after, fromfile=f"{CONFIG_FILENAME} (old)", tofile=CONFIG_FILENAME, lineterm=""
    )
    # The timestamp line changes on every save.
    return [line for line in diff if "# Last updated" not in line]


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML value stored under KEY.")
@_PROJECT_OPTION
def config_set(key: str, value: str, project: Path) -> None:
    """Write one setting, given as a dotted KEY, to the project file.

    The new file is validated before it is saved, and the resulting diff is
    printed.

    Raises:
        click.ClickException: If the value is not valid YAML or fails validation.
    """
    segments = [part for part in (piece.strip() for piece in key.split(".")) if part]
    if not segments:
        raise click.ClickException("KEY must be a dotted path such as 'server.port'.")
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"VALUE is not valid YAML: {exc}") from exc

    manager = ConfigManager(project)
    manager.ensure_exists()
    previous = manager.read_text().splitlines()
    try:
        data = manager.load_file_overrides()
        _set_dotted(data, segments, parsed)
        resolve_with_precedence(defaults=BlockforgeConfig(), file_overrides=data)
        manager.save(data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    changes = _changed_lines(previous, manager.read_text().splitlines())
    if not any(line.startswith(("+", "-")) and line[:3] not in ("+++", "---") for line in changes):
        console.print("[yellow]No changes applied; the value was already set.[/yellow]")
        return
    console.print(Syntax("\n".join(changes), "diff"))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
