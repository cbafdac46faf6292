"""Build job runner.

Runs one matrix cell: resolve the toolchain for the triple, compile with the
run's build mode, and hand the binary to the artifact store under the
triple's name. A job either stores exactly one artifact or stores nothing
and marks its triple as failed, so consumers waiting on it wake up.

Retry policy: transient infrastructure failures are retried with a linear
backoff up to ``retry_attempts`` total attempts. Compilation and toolchain
failures are final on the first attempt.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

from crossdock.core.result import Err, Ok, Result
from crossdock.output.console import ConsoleProtocol, Style
from crossdock.services.artifacts import ArtifactStore
from crossdock.services.errors import (
    CompilationError,
    JobCancelled,
    JobError,
    ToolchainError,
    TransientInfraError,
)
from crossdock.services.model import Artifact, BuildJob
from crossdock.services.toolchains import Toolchain

__all__ = ["BuildJobRunner", "describe_job_error"]


def describe_job_error(error: JobError) -> str:
    """One-line summary, stored as the failure reason for the triple."""
    match error:
        case ToolchainError(message=message):
            return f"toolchain: {message}"
        case CompilationError(returncode=rc):
            return f"compilation failed (exit {rc})"
        case TransientInfraError(attempts=attempts, message=message):
            return f"infrastructure failure after {attempts} attempt(s): {message}"
        case JobCancelled():
            return "cancelled"


class BuildJobRunner:
    """Runs build jobs against one toolchain and one artifact store.

    Safe to share between worker threads: all per-job state lives on the
    stack and the store is internally locked.
    """

    def __init__(
        self,
        *,
        toolchain: Toolchain,
        store: ArtifactStore,
        target_root: Path,
        console: ConsoleProtocol,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 5.0,
        cancel: threading.Event | None = None,
    ) -> None:
        self._toolchain = toolchain
        self._store = store
        self._target_root = target_root
        self._console = console
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay_seconds
        self._cancel = cancel or threading.Event()

    def target_dir_for(self, job: BuildJob) -> Path:
        """Compiler state directory; one per (triple, mode), never shared."""
        return self._target_root / f"{job.triple}-{job.mode}"

    def run(self, job: BuildJob) -> Result[Artifact, JobError]:
        result = self._run(job)
        if isinstance(result, Err):
            self._store.mark_failed(job.triple, describe_job_error(result.error))
        return result

    def _run(self, job: BuildJob) -> Result[Artifact, JobError]:
        triple = job.triple
        self._console.print(f"{triple}: resolving toolchain", Style.DIM)
        resolved = self._attempt(job, lambda: self._toolchain.resolve(job.spec))
        if isinstance(resolved, Err):
            return resolved

        target_dir = self.target_dir_for(job)
        self._console.print(f"{triple}: compiling ({job.mode})", Style.DIM)
        compiled = self._attempt(
            job, lambda: self._toolchain.compile(job, target_dir=target_dir)
        )
        if isinstance(compiled, Err):
            return compiled

        if self._cancel.is_set():
            return Err(JobCancelled(target=triple))

        uploaded = self._store.upload(name=triple, path=compiled.value, mode=job.mode)
        if isinstance(uploaded, Err):
            return Err(
                CompilationError(target=triple, returncode=0, diagnostics=uploaded.error.message)
            )

        artifact = uploaded.value
        self._console.success(f"{triple}: {artifact.size} bytes ({artifact.digest[:19]})")
        return Ok(artifact)

    def _attempt[T](
        self, job: BuildJob, step: Callable[[], Result[T, JobError]]
    ) -> Result[T, JobError]:
        attempts = self._retry_attempts
        last_message = ""
        for attempt in range(1, attempts + 1):
            if self._cancel.is_set():
                return Err(JobCancelled(target=job.triple))

            result = step()
            if isinstance(result, Ok):
                return result
            error = result.error
            if not isinstance(error, TransientInfraError):
                return result

            last_message = error.message
            if attempt == attempts:
                break
            self._console.warning(
                f"{job.triple}: transient failure (attempt {attempt}/{attempts}): {error.message}"
            )
            # Event.wait doubles as an interruptible sleep for fail-fast cancellation.
            if self._cancel.wait(self._retry_delay * attempt):
                return Err(JobCancelled(target=job.triple))

        return Err(TransientInfraError(target=job.triple, attempts=attempts, message=last_message))
