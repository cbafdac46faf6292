"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from crossdock.core.errors import ErrorCode
from crossdock.output.console import Style
from crossdock.services.errors import (
    AssemblyError,
    CompilationError,
    ConfigurationError,
    JobCancelled,
    MissingArtifactError,
    PipelineError,
    PublishError,
    ToolchainError,
    TransientInfraError,
)

if TYPE_CHECKING:
    from crossdock.output.console import ConsoleProtocol

__all__ = ["print_pipeline_error", "pipeline_error_exit_code"]

_DIAGNOSTIC_LINES = 20


def print_pipeline_error(error: PipelineError, console: ConsoleProtocol) -> None:
    """Print a stage or job error, prefixed with where it happened."""
    match error:
        case ConfigurationError(message=message, target=target):
            where = f" ({target})" if target else ""
            console.error(f"config{where}: {message}")
        case ToolchainError(target=target, message=message, hint=hint):
            console.error(f"{target}: {message}")
            if hint:
                console.print(f"hint: {hint}", Style.DIM)
        case CompilationError(target=target, returncode=rc, diagnostics=diagnostics):
            console.error(f"{target}: compilation failed (exit {rc})")
            for line in diagnostics.splitlines()[-_DIAGNOSTIC_LINES:]:
                console.print(f"  {line}", Style.DIM)
        case TransientInfraError(target=target, attempts=attempts, message=message):
            console.error(f"{target}: gave up after {attempts} attempt(s): {message}")
        case JobCancelled(target=target):
            console.warning(f"{target}: cancelled")
        case MissingArtifactError(target=target, triple=triple, reason=reason):
            console.error(f"{target}: missing artifact {triple} ({reason})")
        case AssemblyError(target=target, message=message, hint=hint):
            console.error(f"{target}: {message}")
            if hint:
                console.print(f"hint: {hint}", Style.DIM)
        case PublishError(repository=repository, message=message, hint=hint):
            console.error(f"publish {repository}: {message}")
            if hint:
                console.print(f"hint: {hint}", Style.DIM)


def pipeline_error_exit_code(error: PipelineError) -> int:
    """Get exit code for a pipeline error."""
    match error:
        case ConfigurationError():
            return int(ErrorCode.USER_ERROR)
        case ToolchainError():
            return int(ErrorCode.ENV_ERROR)
        case CompilationError() | JobCancelled() | MissingArtifactError():
            return int(ErrorCode.BUILD_ERROR)
        case TransientInfraError():
            return int(ErrorCode.NETWORK_ERROR)
        case AssemblyError():
            return int(ErrorCode.ENV_ERROR)
        case PublishError():
            return int(ErrorCode.PUBLISH_ERROR)
