"""Host platform and architecture detection.

The orchestrator needs two facts about the machine it runs on: which OS it is
(a ``macos-latest`` job cannot build on a Linux host) and which container
os/arch it executes natively (every other os/arch needs emulation).
Detection is lazy and cached.
"""

from __future__ import annotations

import os as _os
import platform as _platform
import sys as _sys
from dataclasses import dataclass
from enum import Enum, auto
from functools import lru_cache

__all__ = [
    "Platform",
    "Arch",
    "HostInfo",
    "detect",
    "detect_arch",
    "detect_platform",
    "platform_for_run_environment",
    "platform_for_triple",
]


class Platform(Enum):
    """Operating system platform."""

    LINUX = auto()
    MACOS = auto()
    WINDOWS = auto()
    UNKNOWN = auto()

    def __str__(self) -> str:
        return self.name.lower()

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self == Platform.WINDOWS else ""


class Arch(Enum):
    """CPU architecture."""

    X64 = auto()
    ARM64 = auto()
    ARMV7 = auto()
    UNKNOWN = auto()

    def __str__(self) -> str:
        return self.name.lower()

    @property
    def container_arch(self) -> str | None:
        """Architecture component of an OCI platform string."""
        return {
            Arch.X64: "amd64",
            Arch.ARM64: "arm64",
            Arch.ARMV7: "arm/v7",
            Arch.UNKNOWN: None,
        }[self]


@dataclass(frozen=True, slots=True)
class HostInfo:
    """The machine running the pipeline."""

    platform: Platform
    arch: Arch

    @property
    def native_os_arch(self) -> str | None:
        """The os/arch container builds run without emulation.

        Containers are always Linux; Docker Desktop on macOS and Windows runs
        a Linux VM with the host's CPU architecture.
        """
        arch = self.arch.container_arch
        if arch is None:
            return None
        return f"linux/{arch}"

    def __str__(self) -> str:
        return f"{self.platform}-{self.arch}"


@lru_cache(maxsize=1)
def detect_platform() -> Platform:
    """Detect the current operating system (cached)."""
    # NOTE: avoid platform.system() on Windows (may query WMI and hang).
    system = _sys.platform.lower()
    if system.startswith("linux"):
        return Platform.LINUX
    if system.startswith("darwin"):
        return Platform.MACOS
    if system.startswith(("win32", "cygwin", "msys")):
        return Platform.WINDOWS
    return Platform.UNKNOWN


@lru_cache(maxsize=1)
def detect_arch() -> Arch:
    """Detect the current CPU architecture (cached)."""
    if detect_platform() == Platform.WINDOWS:
        env_arch = (
            _os.environ.get("PROCESSOR_ARCHITEW6432")
            or _os.environ.get("PROCESSOR_ARCHITECTURE")
            or ""
        )
        machine = env_arch.lower()
    else:
        machine = _platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return Arch.X64
    if machine in ("aarch64", "arm64"):
        return Arch.ARM64
    if machine.startswith("armv7"):
        return Arch.ARMV7
    return Arch.UNKNOWN


@lru_cache(maxsize=1)
def detect() -> HostInfo:
    """Detect host information (cached)."""
    return HostInfo(platform=detect_platform(), arch=detect_arch())


_RUN_ENVIRONMENT_PREFIXES: tuple[tuple[str, Platform], ...] = (
    ("ubuntu", Platform.LINUX),
    ("linux", Platform.LINUX),
    ("macos", Platform.MACOS),
    ("windows", Platform.WINDOWS),
)


def platform_for_run_environment(run_environment: str) -> Platform:
    """Map a runner label (``ubuntu-latest``, ``macos-14``...) to an OS.

    Unrecognized labels (self-hosted runner names) map to UNKNOWN, which
    callers treat as "runs anywhere".
    """
    label = run_environment.strip().lower()
    for prefix, platform in _RUN_ENVIRONMENT_PREFIXES:
        if label.startswith(prefix):
            return platform
    return Platform.UNKNOWN


def platform_for_triple(triple: str) -> Platform:
    """The OS a target triple produces binaries for (its third component)."""
    parts = triple.lower().split("-")
    system = parts[2] if len(parts) > 2 else ""
    match system:
        case "linux":
            return Platform.LINUX
        case "darwin":
            return Platform.MACOS
        case "windows":
            return Platform.WINDOWS
    return Platform.UNKNOWN
