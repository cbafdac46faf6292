"""Compiler toolchains.

A toolchain knows three things: which build flags it reserves for itself
(its profile), how to make a target triple buildable on this host, and how
to compile one job into a binary on disk. ``CargoToolchain`` drives
``rustup`` plus ``cross`` (or plain ``cargo``); tests inject fakes that
satisfy ``Toolchain``.
"""

from __future__ import annotations

import shutil
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from crossdock.core.result import Err, Ok, Result
from crossdock.platform.detection import (
    HostInfo,
    Platform,
    platform_for_run_environment,
    platform_for_triple,
)
from crossdock.platform.process import ProcessError
from crossdock.platform.process import run as run_process
from crossdock.services.errors import CompilationError, ToolchainError, TransientInfraError
from crossdock.services.model import BuildJob, TargetSpec

__all__ = [
    "ToolchainProfile",
    "CARGO_PROFILE",
    "Toolchain",
    "CargoToolchain",
    "is_transient_failure",
    "binary_filename",
]

_RUSTC_TIMEOUT_SECONDS = 60.0
_RUSTUP_TIMEOUT_SECONDS = 10 * 60.0
_DIAGNOSTIC_TAIL_LINES = 40


@dataclass(frozen=True, slots=True)
class ToolchainProfile:
    """Flags the orchestrator owns and a target row may not set itself."""

    name: str
    reserved_flags: frozenset[str]

    def conflicting_flag(self, flags: Sequence[str]) -> str | None:
        """Return the first flag that contradicts this profile, if any."""
        for flag in flags:
            if flag.split("=", 1)[0] in self.reserved_flags:
                return flag
        return None


# Mode, target and output directory are decided per run, never per row.
CARGO_PROFILE = ToolchainProfile(
    name="cargo",
    reserved_flags=frozenset(
        {"--release", "-r", "--debug", "--profile", "--target", "--target-dir"}
    ),
)


class Toolchain(Protocol):
    @property
    def profile(self) -> ToolchainProfile: ...

    def resolve(self, spec: TargetSpec) -> Result[None, ToolchainError | TransientInfraError]:
        """Make ``spec.triple`` buildable here, installing what is missing."""
        ...

    def compile(
        self, job: BuildJob, *, target_dir: Path
    ) -> Result[Path, CompilationError | TransientInfraError]:
        """Compile one job and return the path of the produced binary."""
        ...


_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "tls handshake timeout",
    "network is unreachable",
    "could not resolve host",
    "spurious network error",
    "failed to download",
    "error sending request",
    "toomanyrequests",
    "unexpected eof",
    "http 429",
    "http 500",
    "http 502",
    "http 503",
    "http 504",
)


def is_transient_failure(error: ProcessError) -> bool:
    """True for failures caused by the network or the runner, not the source."""
    if error.timed_out:
        return True
    text = f"{error.stderr}\n{error.stdout}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def binary_filename(binary: str, triple: str) -> str:
    return f"{binary}{platform_for_triple(triple).exe_suffix}"


def _tail(text: str, lines: int = _DIAGNOSTIC_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class CargoToolchain:
    """rustup + cross/cargo.

    Args:
        workspace_root: Directory holding Cargo.toml.
        binary: Name of the executable the crate produces.
        host: The machine running the jobs.
        runner: ``cross`` (containerized cross-compilation) or ``cargo``.
        compile_timeout: Seconds before a compilation counts as hung.
    """

    def __init__(
        self,
        *,
        workspace_root: Path,
        binary: str,
        host: HostInfo,
        runner: str = "cross",
        compile_timeout: float | None = None,
    ) -> None:
        self._root = workspace_root
        self._binary = binary
        self._host = host
        self._runner = runner
        self._compile_timeout = compile_timeout
        self._known_targets: frozenset[str] | None = None
        self._lock = threading.Lock()

    @property
    def profile(self) -> ToolchainProfile:
        return CARGO_PROFILE

    def resolve(self, spec: TargetSpec) -> Result[None, ToolchainError | TransientInfraError]:
        triple = spec.triple

        required = platform_for_run_environment(spec.run_environment)
        host_os = self._host.platform
        if Platform.UNKNOWN not in (required, host_os) and required != host_os:
            return Err(
                ToolchainError(
                    target=triple,
                    message=(
                        f"run environment '{spec.run_environment}' needs a {required} host, "
                        f"this host is {host_os}"
                    ),
                    hint=f"Run this target on a {required} runner",
                )
            )

        if shutil.which(self._runner) is None:
            return Err(
                ToolchainError(
                    target=triple,
                    message=f"{self._runner}: missing",
                    hint=(
                        "Run: cargo install cross"
                        if self._runner == "cross"
                        else "Install Rust: https://rustup.rs/"
                    ),
                )
            )

        known = self._target_list(triple)
        if isinstance(known, Err):
            return known
        if triple not in known.value:
            return Err(
                ToolchainError(
                    target=triple,
                    message=f"target not supported by the installed rustc: {triple}",
                    hint="Run: rustc --print target-list",
                )
            )

        added = run_process(
            ["rustup", "target", "add", triple],
            cwd=self._root,
            timeout=_RUSTUP_TIMEOUT_SECONDS,
        )
        if isinstance(added, Err):
            if is_transient_failure(added.error):
                return Err(TransientInfraError(target=triple, attempts=1, message=str(added.error)))
            return Err(
                ToolchainError(
                    target=triple,
                    message=f"rustup could not install target {triple}",
                    hint=added.error.stderr.strip() or None,
                )
            )
        return Ok(None)

    def compile(
        self, job: BuildJob, *, target_dir: Path
    ) -> Result[Path, CompilationError | TransientInfraError]:
        triple = job.triple
        cmd = [
            self._runner,
            "build",
            *job.mode.compiler_args,
            "--target",
            triple,
            "--target-dir",
            str(target_dir),
            *job.spec.build_flags,
        ]
        result = run_process(cmd, cwd=self._root, timeout=self._compile_timeout)
        if isinstance(result, Err):
            e = result.error
            if is_transient_failure(e):
                return Err(TransientInfraError(target=triple, attempts=1, message=str(e)))
            return Err(
                CompilationError(
                    target=triple,
                    returncode=e.returncode,
                    diagnostics=_tail(e.stderr or e.stdout),
                )
            )

        output = (
            target_dir
            / triple
            / job.mode.output_dir_name
            / binary_filename(self._binary, triple)
        )
        if not output.is_file():
            return Err(
                CompilationError(
                    target=triple,
                    returncode=0,
                    diagnostics=f"expected binary not produced: {output}",
                )
            )
        return Ok(output)

    def _target_list(self, triple: str) -> Result[frozenset[str], ToolchainError]:
        with self._lock:
            if self._known_targets is not None:
                return Ok(self._known_targets)

            result = run_process(
                ["rustc", "--print", "target-list"],
                cwd=self._root,
                timeout=_RUSTC_TIMEOUT_SECONDS,
            )
            if isinstance(result, Err):
                return Err(
                    ToolchainError(
                        target=triple,
                        message="rustc: unable to list targets",
                        hint=result.error.stderr.strip() or "Install Rust: https://rustup.rs/",
                    )
                )
            self._known_targets = frozenset(
                line.strip() for line in result.value.splitlines() if line.strip()
            )
            return Ok(self._known_targets)
