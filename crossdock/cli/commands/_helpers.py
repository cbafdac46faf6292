"""Shared helpers for CLI commands."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, NoReturn

import typer

from crossdock.core.errors import ErrorCode
from crossdock.core.result import Err
from crossdock.output.errors import pipeline_error_exit_code, print_pipeline_error
from crossdock.services.errors import PipelineError
from crossdock.services.model import TriggerMetadata
from crossdock.services.toolchains import CargoToolchain
from crossdock.services.trigger import make_trigger, trigger_from_env

if TYPE_CHECKING:
    from crossdock.cli.context import CLIContext


def exit_on_pipeline_error(error: PipelineError, ctx: CLIContext) -> NoReturn:
    print_pipeline_error(error, ctx.console)
    raise typer.Exit(code=pipeline_error_exit_code(error))


def resolve_trigger(
    ctx: CLIContext,
    *,
    event: str | None,
    branch: str | None,
    pr: int | None,
    sha: str | None,
    semver: str | None,
    default_branch: bool | None,
) -> TriggerMetadata:
    """Trigger from explicit options, or from the CI environment if --event is absent."""
    if event is None:
        result = trigger_from_env()
    elif sha is None:
        ctx.console.error("--sha is required with --event")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))
    else:
        result = make_trigger(
            event=event,
            sha=sha,
            branch=branch,
            pr_number=pr,
            semver=semver,
            default_branch=default_branch,
            date=datetime.now(UTC).strftime("%Y%m%d") if event == "schedule" else None,
        )

    if isinstance(result, Err):
        exit_on_pipeline_error(result.error, ctx)
    return result.value


def make_toolchain(ctx: CLIContext) -> CargoToolchain:
    return CargoToolchain(
        workspace_root=ctx.workspace.root,
        binary=ctx.config.project.binary,
        host=ctx.host,
        runner=ctx.config.project.runner,
        compile_timeout=ctx.config.run.compile_timeout_seconds,
    )
