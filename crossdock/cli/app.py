from __future__ import annotations

import os
from pathlib import Path

import typer

from crossdock import __version__
from crossdock.cli.commands.build import build
from crossdock.cli.commands.pipeline import pipeline
from crossdock.cli.commands.plan import plan
from crossdock.cli.commands.tags import tags
from crossdock.core.errors import ErrorCode
from crossdock.core.workspace import CONFIG_FILENAME, is_workspace_root


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command()(plan)
app.command()(build)
app.command()(tags)
app.command()(pipeline)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        help="Workspace root (overrides auto detection)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if workspace is not None:
        try:
            root = workspace.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --workspace: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        if not root.is_dir() or not is_workspace_root(root):
            typer.echo(
                f"error: --workspace '{root}' is not a valid workspace (missing {CONFIG_FILENAME})",
                err=True,
            )
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

        os.environ["CROSSDOCK_ROOT"] = str(root)


def main() -> None:
    app()
