"""Foreign-architecture emulation.

Building an ``linux/arm64`` image on an x86 host needs binfmt_misc handlers
for the foreign CPU. The image assembler asks an ``Emulator`` to prepare
every os/arch it cannot execute natively and never branches on specific
architectures itself.
"""

from __future__ import annotations

import shutil
import threading
from pathlib import Path
from typing import Protocol

from crossdock.core.result import Err, Ok, Result
from crossdock.platform.process import run as run_process
from crossdock.services.errors import AssemblyError

__all__ = ["Emulator", "QemuEmulator", "NoEmulation", "binfmt_arch"]

BINFMT_IMAGE = "tonistiigi/binfmt"
_BINFMT_TIMEOUT_SECONDS = 5 * 60.0


class Emulator(Protocol):
    def prepare(self, os_arch: str) -> Result[None, AssemblyError]: ...


def binfmt_arch(os_arch: str) -> str:
    """``linux/arm/v7`` -> ``arm``; ``linux/arm64`` -> ``arm64``."""
    parts = os_arch.split("/")
    return parts[1] if len(parts) > 1 else os_arch


class QemuEmulator:
    """Registers QEMU user-mode handlers through the binfmt helper image."""

    def __init__(self, *, workspace_root: Path) -> None:
        self._root = workspace_root
        self._prepared: set[str] = set()
        self._lock = threading.Lock()

    def prepare(self, os_arch: str) -> Result[None, AssemblyError]:
        arch = binfmt_arch(os_arch)
        with self._lock:
            if arch in self._prepared:
                return Ok(None)

            if shutil.which("docker") is None:
                return Err(
                    AssemblyError(
                        target=os_arch,
                        message="docker: missing (needed for QEMU emulation)",
                        hint="Install Docker: https://docs.docker.com/get-docker/",
                    )
                )

            cmd = ["docker", "run", "--privileged", "--rm", BINFMT_IMAGE, "--install", arch]
            result = run_process(cmd, cwd=self._root, timeout=_BINFMT_TIMEOUT_SECONDS)
            if isinstance(result, Err):
                return Err(
                    AssemblyError(
                        target=os_arch,
                        message=f"failed to install QEMU handler for {arch}",
                        hint=result.error.stderr.strip() or None,
                    )
                )
            self._prepared.add(arch)
            return Ok(None)


class NoEmulation:
    """Refuses every foreign architecture."""

    def prepare(self, os_arch: str) -> Result[None, AssemblyError]:
        return Err(
            AssemblyError(
                target=os_arch,
                message=f"{os_arch} is not native to this host and emulation is disabled",
                hint="Drop --no-emulation or restrict image platforms to the host architecture",
            )
        )
