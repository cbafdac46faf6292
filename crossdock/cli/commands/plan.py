from __future__ import annotations

import typer

from crossdock.cli.commands._helpers import (
    exit_on_pipeline_error,
    make_toolchain,
    resolve_trigger,
)
from crossdock.cli.context import build_context
from crossdock.core.result import Err
from crossdock.output.console import Style
from crossdock.services.model import BuildMode
from crossdock.services.pipeline import plan_run


def plan(
    target: list[str] = typer.Option([], "--target", help="Only these triples (repeatable)"),
    release: bool | None = typer.Option(
        None, "--release/--debug", help="Override the trigger-derived build mode", show_default=False
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
    """Show the build matrix, build mode, image platforms and tags (no side effects)."""
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

    mode = None if release is None else BuildMode.from_release_flag(release)
    result = plan_run(
        ctx.config, trigger, only=target, mode=mode, profile=make_toolchain(ctx).profile
    )
    if isinstance(result, Err):
        exit_on_pipeline_error(result.error, ctx)
    run_plan = result.value

    console = ctx.console
    console.print(f"workspace: {ctx.workspace.root}", Style.DIM)
    console.print(f"trigger: {trigger.event_name} @ {trigger.commit_sha[:12]}", Style.DIM)

    console.header(f"Matrix ({run_plan.mode})")
    for job in run_plan.jobs:
        flags = " ".join(job.spec.build_flags)
        suffix = f"  [{flags}]" if flags else ""
        console.print(f"{job.triple}  on {job.spec.run_environment}{suffix}")

    console.header("Image")
    if run_plan.image is None:
        console.print("disabled", Style.DIM)
    else:
        for os_arch, triple in run_plan.image.platforms:
            console.print(f"{os_arch} <- {triple}")
        console.print(f"base: {run_plan.image.base_image}", Style.DIM)

    console.header(f"Tags ({run_plan.repository})")
    for tag in run_plan.tags.sorted_tags():
        console.print(tag)
    if trigger.is_pull_request:
        console.print("pull request: the image will not be pushed", Style.DIM)
