from __future__ import annotations

import typer

from crossdock.cli.commands._helpers import exit_on_pipeline_error, resolve_trigger
from crossdock.cli.context import build_context
from crossdock.core.result import Err
from crossdock.output.console import Style
from crossdock.services.pipeline import image_name_for
from crossdock.services.tags import compute_tags, describe_labels


def tags(
    labels: bool = typer.Option(False, "--labels", help="Also print OCI labels"),
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
    """Print the tag set for the current trigger, one tag per line."""
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
    result = compute_tags(
        trigger,
        image_name=image_name_for(config),
        description=config.image.description,
        source=config.registry.source,
        sha_prefix=config.tags.sha_prefix,
        sha_length=config.tags.sha_length,
        schedule_pattern=config.tags.schedule_pattern,
    )
    if isinstance(result, Err):
        exit_on_pipeline_error(result.error, ctx)

    for tag in result.value.sorted_tags():
        ctx.console.print(tag)
    if labels:
        for line in describe_labels(result.value.labels):
            ctx.console.print(line, Style.DIM)
