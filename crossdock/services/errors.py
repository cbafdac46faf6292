"""Error types for every pipeline stage.

Job errors (toolchain, compilation, transient infrastructure, cancellation)
stay inside the job that raised them. Stage errors (configuration, missing
artifact, assembly, publish) end the run. Each carries the matrix cell or
stage it came from so a failure maps to exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ConfigurationError:
    message: str
    target: str | None = None

    @property
    def stage(self) -> str:
        return "config"


@dataclass(frozen=True, slots=True)
class ToolchainError:
    target: str
    message: str
    hint: str | None = None

    @property
    def stage(self) -> str:
        return "toolchain"


@dataclass(frozen=True, slots=True)
class CompilationError:
    """The compiler rejected the source. Never retried."""

    target: str
    returncode: int
    diagnostics: str = ""

    @property
    def stage(self) -> str:
        return "build"


@dataclass(frozen=True, slots=True)
class TransientInfraError:
    """Network or runner flakiness that outlived the retry budget."""

    target: str
    attempts: int
    message: str

    @property
    def stage(self) -> str:
        return "build"


@dataclass(frozen=True, slots=True)
class JobCancelled:
    target: str

    @property
    def stage(self) -> str:
        return "build"


@dataclass(frozen=True, slots=True)
class MissingArtifactError:
    """An image platform needs a triple whose build job did not succeed."""

    target: str
    triple: str
    reason: str = "artifact not found"

    @property
    def stage(self) -> str:
        return "assemble"


@dataclass(frozen=True, slots=True)
class AssemblyError:
    target: str
    message: str
    hint: str | None = None

    @property
    def stage(self) -> str:
        return "assemble"


@dataclass(frozen=True, slots=True)
class PublishError:
    repository: str
    message: str
    hint: str | None = None

    @property
    def target(self) -> str:
        return self.repository

    @property
    def stage(self) -> str:
        return "publish"


JobError = ToolchainError | CompilationError | TransientInfraError | JobCancelled

StageError = ConfigurationError | MissingArtifactError | AssemblyError | PublishError

PipelineError = JobError | StageError
