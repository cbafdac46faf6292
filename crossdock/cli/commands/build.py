"""Build command - compile the matrix and stage binaries by triple."""

from __future__ import annotations

import threading

import typer

from crossdock.cli.commands._helpers import exit_on_pipeline_error, make_toolchain
from crossdock.cli.context import build_context
from crossdock.core.errors import ErrorCode
from crossdock.core.result import Err, Ok
from crossdock.output.console import Style
from crossdock.output.errors import pipeline_error_exit_code, print_pipeline_error
from crossdock.services.artifacts import ArtifactStore
from crossdock.services.build import BuildJobRunner
from crossdock.services.matrix import expand_matrix, select_targets, specs_from_config
from crossdock.services.model import BuildMode
from crossdock.services.pipeline import run_jobs
from crossdock.services.toolchains import binary_filename
from crossdock.services.trigger import build_mode_for, trigger_from_env


def _mode_from_env(release_branches: tuple[str, ...]) -> BuildMode:
    trigger = trigger_from_env()
    if isinstance(trigger, Err):
        return BuildMode.DEBUG
    return build_mode_for(trigger.value, release_branches)


def build(
    target: list[str] = typer.Option([], "--target", help="Only these triples (repeatable)"),
    release: bool | None = typer.Option(
        None,
        "--release/--debug",
        help="Build mode (default: release on release branches in CI, else debug)",
        show_default=False,
    ),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Cancel other jobs on first failure"),
) -> None:
    """Build targets and stage binaries under .crossdock/artifacts/<triple>/."""
    ctx = build_context()
    config = ctx.config

    mode = (
        _mode_from_env(config.project.release_branches)
        if release is None
        else BuildMode.from_release_flag(release)
    )

    selected = select_targets(specs_from_config(config.targets), target)
    if isinstance(selected, Err):
        exit_on_pipeline_error(selected.error, ctx)
    toolchain = make_toolchain(ctx)
    jobs = expand_matrix(selected.value, mode=mode, profile=toolchain.profile)
    if isinstance(jobs, Err):
        exit_on_pipeline_error(jobs.error, ctx)

    store = ArtifactStore()
    cancel = threading.Event()
    runner = BuildJobRunner(
        toolchain=toolchain,
        store=store,
        target_root=ctx.workspace.target_dir,
        console=ctx.console,
        retry_attempts=config.run.retry_attempts,
        retry_delay_seconds=config.run.retry_delay_seconds,
        cancel=cancel,
    )

    ctx.console.header(f"Building {len(jobs.value)} target(s) ({mode})")
    results = run_jobs(
        runner,
        store,
        jobs.value,
        console=ctx.console,
        max_parallel=config.run.max_parallel,
        fail_fast=fail_fast,
        cancel=cancel,
    )

    exit_code = int(ErrorCode.OK)
    for triple, result in results.items():
        match result:
            case Ok(artifact):
                staged = store.download(
                    name=artifact.name,
                    destination=ctx.workspace.artifacts_dir / triple,
                    filename=binary_filename(config.project.binary, triple),
                )
                if isinstance(staged, Err):
                    ctx.console.error(f"{triple}: staging failed")
                    exit_code = exit_code or int(ErrorCode.IO_ERROR)
                    continue
                ctx.console.print(f"{triple}: {staged.value}", Style.DIM)
            case Err(error):
                print_pipeline_error(error, ctx.console)
                exit_code = exit_code or pipeline_error_exit_code(error)

    if exit_code:
        raise typer.Exit(code=exit_code)
    ctx.console.success(f"{len(results)} artifact(s) staged")
