"""Pipeline command - build, assemble and publish in one run."""

from __future__ import annotations

import typer

from crossdock.cli.commands._helpers import exit_on_pipeline_error, make_toolchain, resolve_trigger
from crossdock.cli.context import CLIContext, build_context
from crossdock.output.console import Style
from crossdock.output.errors import pipeline_error_exit_code
from crossdock.services.emulation import Emulator, NoEmulation, QemuEmulator
from crossdock.services.pipeline import Pipeline, PipelineReport
from crossdock.services.registry import BuildxRegistry, EnvCredentials


def _emulator(ctx: CLIContext, enabled: bool) -> Emulator:
    if enabled:
        return QemuEmulator(workspace_root=ctx.workspace.root)
    return NoEmulation()


def pipeline(
    target: list[str] = typer.Option([], "--target", help="Only these triples (repeatable)"),
    fail_fast: bool | None = typer.Option(
        None, "--fail-fast/--no-fail-fast", help="Override [run].fail_fast", show_default=False
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Build and assemble, never push"),
    emulation: bool = typer.Option(
        True, "--emulation/--no-emulation", help="Use QEMU for foreign image platforms"
    ),
    event: str | None = typer.Option(
        None, "--event", help="push, pull_request or schedule (default: from CI env)"
    ),
    branch: str | None = typer.Option(None, "--branch", help="Branch name"),
    pr: int | None = typer.Option(None, "--pr", help="Pull request number"),
    sha: str | None = typer.Option(None, "--sha", help="Commit sha"),
    semver: str | None = typer.Option(None, "--semver", help="Version tag, e.g. v1.2.3"),
    default_branch: bool | None = typer.Option(
        None, "--default-branch/--no-default-branch", show_default=False
    ),
) -> None:
    """Run the full pipeline: matrix build, image assembly, publish."""
    ctx = build_context()
    trigger = resolve_trigger(
        ctx,
        event=event,
        branch=branch,
        pr=pr,
        sha=sha,
        semver=semver,
        default_branch=default_branch,
    )

    config = ctx.config
    runner = Pipeline(
        config=config,
        workspace=ctx.workspace,
        toolchain=make_toolchain(ctx),
        registry=BuildxRegistry(
            workspace_root=ctx.workspace.root,
            staging_dir=ctx.workspace.staging_dir,
            binary=config.project.binary,
            binary_dir=config.image.binary_dir,
        ),
        credentials=EnvCredentials(),
        emulator=_emulator(ctx, emulation),
        host_os_arch=ctx.host.native_os_arch,
        console=ctx.console,
    )
    report = runner.run(trigger, only=target, fail_fast=fail_fast, dry_run=dry_run)
    _print_summary(ctx, report)

    if report.error is not None:
        exit_on_pipeline_error(report.error, ctx)
    for error in report.failed.values():
        raise typer.Exit(code=pipeline_error_exit_code(error))


def _print_summary(ctx: CLIContext, report: PipelineReport) -> None:
    console = ctx.console
    if not report.results:
        return
    console.header("Summary")
    for triple in report.succeeded:
        console.print(f"{triple}: ok", Style.SUCCESS)
    for triple in report.failed:
        console.print(f"{triple}: failed", Style.ERROR)
    if report.receipt is not None:
        state = "pushed" if report.receipt.pushed else "not pushed"
        console.print(f"{report.receipt.repository}: {state}", Style.DIM)
        for tag in report.receipt.tags:
            console.print(f"  {tag}", Style.DIM)
