"""Resource compiler tests."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Optional

import pytest

import blockforge.build.compiler as compiler_module
from blockforge.build import (
    ArtifactStore,
    BuildOptions,
    EntryMissing,
    EsbuildBundler,
    ResourceCompiler,
    resolve_entry,
)
from blockforge.config.models import BuildSettings
from blockforge.resources import Resource, ResourceScanner, ResourceType
from tests.conftest import BROKEN_MARKER, FakeBundler, FakeCssCompiler, write_resource


def _resource(project: Path, name: str = "hero") -> Resource:
    return next(r for r in ResourceScanner(project).scan().resources if r.name == name)


@pytest.mark.asyncio
async def test_flat_build_writes_script_and_stylesheet(
    project: Path, bundler: FakeBundler, tmp_path: Path
) -> None:
    compiler = ResourceCompiler(bundler)
    out_dir = tmp_path / "out"

    artifact = await compiler.compile(_resource(project), out_dir)

    assert artifact.ok
    assert artifact.script_path == out_dir / "block.hero.js"
    assert artifact.stylesheet_path == out_dir / "block.hero.css"
    assert artifact.sourcemap_path == out_dir / "block.hero.js.map"
    assert (out_dir / "block.hero.css").read_text("utf-8") == ".hero { color: red; }\n"
    assert "export default function Block" in (out_dir / "block.hero.js").read_text("utf-8")
    assert artifact.script is not None and artifact.script.startswith("/* esm block.hero.js */")
    assert artifact.summary()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_entry_fails_without_output(
    project: Path, bundler: FakeBundler, tmp_path: Path
) -> None:
    write_resource(project, "blocks", "empty", config={"category": "misc"}, source=None)
    compiler = ResourceCompiler(bundler)

    artifact = await compiler.compile(_resource(project, "empty"), tmp_path / "out")

    assert not artifact.ok
    assert artifact.error_kind == "entry_missing"
    assert "index.tsx" in (artifact.error_message or "")
    assert bundler.calls == []
    assert not (tmp_path / "out").exists()
    with pytest.raises(EntryMissing):
        artifact.raise_for_status()


@pytest.mark.asyncio
async def test_failed_rebuild_keeps_previous_output(
    project: Path, bundler: FakeBundler, tmp_path: Path
) -> None:
    compiler = ResourceCompiler(bundler)
    out_dir = tmp_path / "out"
    good = await compiler.compile(_resource(project), out_dir)
    previous = (out_dir / "block.hero.js").read_text("utf-8")

    (project / "blocks" / "hero" / "src" / "index.tsx").write_text(
        f"export default {BROKEN_MARKER}", encoding="utf-8"
    )
    failed = await compiler.compile(_resource(project), out_dir)

    assert good.ok and not failed.ok
    assert failed.error_kind == "compile_error"
    assert failed.diagnostics == [
        f"{project / 'blocks' / 'hero' / 'src' / 'index.tsx'}:1:0: ERROR: Unexpected token"
    ]
    assert (out_dir / "block.hero.js").read_text("utf-8") == previous

    store = ArtifactStore()
    store.record(good)
    store.record(failed)
    assert store.latest(good.key) is failed
    assert store.last_good(good.key) is good
    status = store.status(good.key)
    assert status["status"] == "failed"
    assert status["stale"] is True


@pytest.mark.asyncio
async def test_css_compiler_output_is_used(
    project: Path, bundler: FakeBundler, tmp_path: Path
) -> None:
    css = FakeCssCompiler()
    styles = project / "styles"
    compiler = ResourceCompiler(bundler, css_compiler=css, style_roots=[styles])

    artifact = await compiler.compile(_resource(project), tmp_path / "out")

    assert artifact.stylesheet == "/* compiled */\n.hero { color: red; }\n"
    assert css.calls == [(project / "blocks" / "hero" / "src" / "index.css", [styles])]


@pytest.mark.asyncio
async def test_css_failure_falls_back_to_copy(
    project: Path, bundler: FakeBundler, tmp_path: Path
) -> None:
    compiler = ResourceCompiler(bundler, css_compiler=FakeCssCompiler(fail=True))

    artifact = await compiler.compile(_resource(project), tmp_path / "out")

    assert artifact.ok
    assert artifact.stylesheet == ".hero { color: red; }\n"
    assert len(artifact.warnings) == 1
    assert "copying index.css as-is" in artifact.warnings[0]


@pytest.mark.asyncio
async def test_versioned_build_writes_manifest(
    project: Path, bundler: FakeBundler, tmp_path: Path
) -> None:
    compiler = ResourceCompiler(bundler)
    options = BuildOptions.for_production(BuildSettings(sourcemaps=False))

    artifact = await compiler.compile(_resource(project), tmp_path / "public", options)

    destination = tmp_path / "public" / "@acme" / "blocks.hero" / "1.0.0"
    assert artifact.ok
    assert artifact.output_dir == destination
    assert (destination / "index.js").exists()
    assert (destination / "index.css").exists()
    assert not (destination / "index.js.map").exists()
    manifest = json.loads((destination / "package.json").read_text("utf-8"))
    assert manifest["name"] == "@acme/blocks.hero"
    metadata = manifest["blockforge"]
    assert metadata["displayName"] == "Hero Banner"
    assert metadata["category"] == "marketing"
    assert metadata["defaultContent"] == {"theme": "light"}
    assert [field["key"] for field in metadata["schemaFields"]] == ["heading", "theme"]


@pytest.mark.asyncio
async def test_versioned_build_requires_package_version(
    project: Path, bundler: FakeBundler, tmp_path: Path
) -> None:
    write_resource(project, "blocks", "bare", config={"category": "misc"}, package={"name": "x"})
    compiler = ResourceCompiler(bundler)

    artifact = await compiler.compile(
        _resource(project, "bare"), tmp_path / "public", BuildOptions(layout="versioned")
    )

    assert artifact.error_kind == "metadata_missing"
    assert bundler.calls == []


@pytest.mark.asyncio
async def test_type_declarations_are_generated(project: Path, bundler: FakeBundler) -> None:
    compiler = ResourceCompiler(bundler)
    declarations = project / "blocks" / "hero" / "src" / "block.d.ts"

    await compiler.compile(_resource(project), project / ".blockforge" / "dev")

    text = declarations.read_text("utf-8")
    assert "  heading: string;" in text
    assert '  theme?: "light" | "dark";' in text

    await compiler.compile(
        _resource(project),
        project / ".blockforge" / "dev",
        BuildOptions(generate_types=False),
    )
    assert declarations.read_text("utf-8") == text


@pytest.mark.asyncio
async def test_output_files_are_written_off_the_event_loop(
    project: Path, bundler: FakeBundler, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    loop_thread = threading.get_ident()
    writer_threads: list[int] = []
    original_write = compiler_module._write_atomic
    original_types = compiler_module.write_type_declarations

    def recording_write(path: Path, data: bytes) -> None:
        writer_threads.append(threading.get_ident())
        original_write(path, data)

    def recording_types(resource: Resource) -> Optional[Path]:
        writer_threads.append(threading.get_ident())
        return original_types(resource)

    monkeypatch.setattr(compiler_module, "_write_atomic", recording_write)
    monkeypatch.setattr(compiler_module, "write_type_declarations", recording_types)

    options = BuildOptions(layout="versioned", generate_package_json=True)
    compiler = ResourceCompiler(bundler)
    artifact = await compiler.compile(_resource(project), tmp_path / "out", options)

    assert artifact.ok
    assert len(writer_threads) == 5
    assert loop_thread not in writer_threads


def test_entry_resolution_follows_framework(tmp_path: Path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    (src / "index.ts").write_text("", encoding="utf-8")
    (src / "index.tsx").write_text("", encoding="utf-8")

    assert resolve_entry(tmp_path, "react") == src / "index.tsx"
    assert resolve_entry(tmp_path, "vue") == src / "index.ts"

    (src / "index.ts").unlink()
    assert resolve_entry(tmp_path, "vue") == src / "index.tsx"


def test_esbuild_arguments_reflect_options(tmp_path: Path) -> None:
    bundler = EsbuildBundler(["esbuild"])
    options = BuildOptions(
        minify=True, sourcemaps=False, format="cjs", externals=("react", "react-dom")
    )

    args = bundler.arguments(tmp_path / "index.tsx", options, tmp_path / "out.js")

    assert args[:3] == ["esbuild", str(tmp_path / "index.tsx"), "--bundle"]
    assert "--format=cjs" in args
    assert "--minify" in args
    assert "--sourcemap" not in args
    assert args[-2:] == ["--external:react", "--external:react-dom"]


@pytest.mark.asyncio
async def test_missing_bundler_executable_is_a_diagnostic(tmp_path: Path) -> None:
    entry = tmp_path / "index.tsx"
    entry.write_text("export {};\n", encoding="utf-8")
    bundler = EsbuildBundler(["blockforge-missing-esbuild-binary"], cwd=tmp_path)

    result = await bundler.bundle(entry, BuildOptions())

    assert not result.ok
    assert result.diagnostics == [
        "bundler command not found: blockforge-missing-esbuild-binary"
    ]


def test_resource_type_is_part_of_flat_names(project: Path, bundler: FakeBundler) -> None:
    compiler = ResourceCompiler(bundler)
    landing = _resource(project, "landing")

    _, script, stylesheet = compiler.output_paths(landing, Path("/out"), BuildOptions())

    assert landing.type is ResourceType.TEMPLATE
    assert script == Path("/out/template.landing.js")
    assert stylesheet == Path("/out/template.landing.css")
