from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
import typer

from crossdock.cli.context import CLIContext
from crossdock.core.config import ImageConfig
from crossdock.core.errors import ErrorCode
from crossdock.core.workspace import Workspace
from crossdock.output.console import MockConsole
from crossdock.platform.detection import Arch, HostInfo, Platform
from crossdock.services.registry import MemoryRegistry
from crossdock.test.services._fakes import SHA, FakeEmulator, FakeToolchain, three_arch_config

TRIGGER_OPTIONS: dict[str, object] = {
    "event": "push",
    "branch": "main",
    "pr": None,
    "sha": SHA,
    "semver": None,
    "default_branch": True,
}


def _ctx(tmp_path: Path) -> CLIContext:
    (tmp_path / "crossdock.toml").write_text("", encoding="utf-8")
    return CLIContext(
        workspace=Workspace(root=tmp_path),
        host=HostInfo(platform=Platform.LINUX, arch=Arch.X64),
        config=three_arch_config(),
        console=MockConsole(),
    )


def _console(ctx: CLIContext) -> MockConsole:
    assert isinstance(ctx.console, MockConsole)
    return ctx.console


def test_tags_prints_sorted_tags(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.tags as tags_cmd

    ctx = _ctx(tmp_path)
    monkeypatch.setattr(tags_cmd, "build_context", lambda: ctx)

    tags_cmd.tags(labels=False, **TRIGGER_OPTIONS)  # type: ignore[arg-type]

    assert _console(ctx).messages == [SHA[:7], "latest", "main"]


def test_tags_with_labels(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.tags as tags_cmd

    ctx = _ctx(tmp_path)
    monkeypatch.setattr(tags_cmd, "build_context", lambda: ctx)

    tags_cmd.tags(labels=True, **TRIGGER_OPTIONS)  # type: ignore[arg-type]

    assert _console(ctx).find(f"org.opencontainers.image.revision={SHA}")


def test_tags_requires_sha_with_event(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.tags as tags_cmd

    ctx = _ctx(tmp_path)
    monkeypatch.setattr(tags_cmd, "build_context", lambda: ctx)
    options = {**TRIGGER_OPTIONS, "sha": None}

    with pytest.raises(typer.Exit) as exc:
        tags_cmd.tags(labels=False, **options)  # type: ignore[arg-type]

    assert exc.value.exit_code == int(ErrorCode.USER_ERROR)


def test_tags_rejects_invalid_semver(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.tags as tags_cmd

    ctx = _ctx(tmp_path)
    monkeypatch.setattr(tags_cmd, "build_context", lambda: ctx)
    options = {**TRIGGER_OPTIONS, "semver": "2.x"}

    with pytest.raises(typer.Exit) as exc:
        tags_cmd.tags(labels=False, **options)  # type: ignore[arg-type]

    assert exc.value.exit_code == int(ErrorCode.USER_ERROR)
    assert _console(ctx).has_error()


def test_plan_lists_matrix_and_pr_notice(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.plan as plan_cmd

    ctx = _ctx(tmp_path)
    monkeypatch.setattr(plan_cmd, "build_context", lambda: ctx)
    options = {**TRIGGER_OPTIONS, "event": "pull_request", "pr": 9}

    plan_cmd.plan(target=[], release=None, **options)  # type: ignore[arg-type]

    console = _console(ctx)
    assert console.find("Matrix (debug)")
    assert console.find("linux/arm/v7 <- armv7-unknown-linux-musleabihf")
    assert console.find("pr-9")
    assert console.find("will not be pushed")


def _patch_pipeline(
    monkeypatch: pytest.MonkeyPatch, ctx: CLIContext, toolchain: FakeToolchain
) -> MemoryRegistry:
    import crossdock.cli.commands.pipeline as pipeline_cmd

    registry = MemoryRegistry()
    monkeypatch.setattr(pipeline_cmd, "build_context", lambda: ctx)
    monkeypatch.setattr(pipeline_cmd, "make_toolchain", lambda _ctx: toolchain)
    monkeypatch.setattr(pipeline_cmd, "BuildxRegistry", lambda **_: registry)
    monkeypatch.setattr(pipeline_cmd, "_emulator", lambda _ctx, _enabled: FakeEmulator())
    return registry


def test_pipeline_pull_request_does_not_push(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    import crossdock.cli.commands.pipeline as pipeline_cmd

    ctx = _ctx(tmp_path)
    registry = _patch_pipeline(monkeypatch, ctx, FakeToolchain())
    options = {**TRIGGER_OPTIONS, "event": "pull_request", "pr": 3}

    pipeline_cmd.pipeline(target=[], fail_fast=None, dry_run=False, emulation=True, **options)  # type: ignore[arg-type]

    assert registry.push_calls == 0
    assert _console(ctx).find("not pushed")


def test_pipeline_missing_artifact_exit_code(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    import crossdock.cli.commands.pipeline as pipeline_cmd

    ctx = _ctx(tmp_path)
    toolchain = FakeToolchain(outcomes={"aarch64-unknown-linux-musl": ["fail"]})
    registry = _patch_pipeline(monkeypatch, ctx, toolchain)

    with pytest.raises(typer.Exit) as exc:
        pipeline_cmd.pipeline(target=[], fail_fast=None, dry_run=False, emulation=True, **TRIGGER_OPTIONS)  # type: ignore[arg-type]

    assert exc.value.exit_code == int(ErrorCode.BUILD_ERROR)
    assert registry.push_calls == 0
    assert _console(ctx).find("missing artifact aarch64-unknown-linux-musl")


def test_pipeline_builds_only_selected_targets(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    import crossdock.cli.commands.pipeline as pipeline_cmd

    ctx = _ctx(tmp_path)
    ctx = replace(ctx, config=replace(ctx.config, image=ImageConfig(enabled=False)))
    toolchain = FakeToolchain()
    _patch_pipeline(monkeypatch, ctx, toolchain)

    pipeline_cmd.pipeline(
        target=["aarch64-unknown-linux-musl"],
        fail_fast=None,
        dry_run=False,
        emulation=True,
        **TRIGGER_OPTIONS,  # type: ignore[arg-type]
    )

    assert toolchain.compile_calls == ["aarch64-unknown-linux-musl"]
    assert _console(ctx).find("aarch64-unknown-linux-musl: ok")
    assert not _console(ctx).find("x86_64-unknown-linux-musl")


def test_pipeline_unknown_target(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.pipeline as pipeline_cmd

    ctx = _ctx(tmp_path)
    toolchain = FakeToolchain()
    registry = _patch_pipeline(monkeypatch, ctx, toolchain)

    with pytest.raises(typer.Exit) as exc:
        pipeline_cmd.pipeline(
            target=["mips-unknown-linux-gnu"],
            fail_fast=None,
            dry_run=False,
            emulation=True,
            **TRIGGER_OPTIONS,  # type: ignore[arg-type]
        )

    assert exc.value.exit_code == int(ErrorCode.USER_ERROR)
    assert toolchain.compile_calls == []
    assert registry.push_calls == 0


def test_build_stages_artifacts_by_triple(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.build as build_cmd

    ctx = _ctx(tmp_path)
    monkeypatch.setattr(build_cmd, "build_context", lambda: ctx)
    monkeypatch.setattr(build_cmd, "make_toolchain", lambda _ctx: FakeToolchain())

    build_cmd.build(target=["aarch64-unknown-linux-musl"], release=True, fail_fast=False)

    staged = ctx.workspace.artifacts_dir / "aarch64-unknown-linux-musl" / "app"
    assert staged.read_bytes() == b"aarch64-unknown-linux-musl:release"
    assert _console(ctx).has_success()


def test_build_unknown_target(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import crossdock.cli.commands.build as build_cmd

    ctx = _ctx(tmp_path)
    monkeypatch.setattr(build_cmd, "build_context", lambda: ctx)

    with pytest.raises(typer.Exit) as exc:
        build_cmd.build(target=["mips-unknown-linux-gnu"], release=True, fail_fast=False)

    assert exc.value.exit_code == int(ErrorCode.USER_ERROR)
