from __future__ import annotations

from dataclasses import dataclass

import typer

from crossdock.core.config import PipelineConfig, load_config
from crossdock.core.errors import ErrorCode
from crossdock.core.result import Err
from crossdock.core.workspace import Workspace, detect_workspace
from crossdock.output.console import ConsoleProtocol, RichConsole
from crossdock.platform.detection import HostInfo, detect


@dataclass(frozen=True, slots=True)
class CLIContext:
    workspace: Workspace
    host: HostInfo
    config: PipelineConfig
    console: ConsoleProtocol


def build_context() -> CLIContext:
    workspace_result = detect_workspace()
    if isinstance(workspace_result, Err):
        typer.echo(f"error: {workspace_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    workspace = workspace_result.value
    config_result = load_config(workspace.config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    return CLIContext(
        workspace=workspace,
        host=detect(),
        config=config_result.value,
        console=RichConsole(),
    )
