"""Run-scoped artifact store.

Build jobs hand their binaries over by name (the target triple); the image
assembler fetches them by the same name. One store exists per pipeline run
and is dropped with it, so nothing leaks into the next run.

Concurrency: every operation takes the store's condition lock. Keys are
independent, so jobs for different triples never observe each other, and
``wait_for`` lets a consumer block until a producer delivers, gives up, or a
deadline passes.
"""

from __future__ import annotations

import os
import stat
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from crossdock.core.result import Err, Ok, Result
from crossdock.services.model import Artifact, BuildMode

__all__ = ["ArtifactStore", "NotFound", "TransferError"]


@dataclass(frozen=True, slots=True)
class NotFound:
    triple: str
    reason: str = "artifact not found"


@dataclass(frozen=True, slots=True)
class TransferError:
    name: str
    message: str


class ArtifactStore:
    def __init__(self) -> None:
        self._entries: dict[str, Artifact] = {}
        self._failed: dict[str, str] = {}
        self._cond = threading.Condition()

    def put(self, artifact: Artifact) -> None:
        """Store an artifact under its triple, replacing any previous one."""
        with self._cond:
            self._entries[artifact.triple] = artifact
            self._failed.pop(artifact.triple, None)
            self._cond.notify_all()

    def mark_failed(self, triple: str, reason: str) -> None:
        """Record that no artifact will arrive for ``triple`` in this run."""
        with self._cond:
            if triple in self._entries:
                return
            self._failed[triple] = reason
            self._cond.notify_all()

    def get(self, triple: str) -> Result[Artifact, NotFound]:
        with self._cond:
            artifact = self._entries.get(triple)
            if artifact is not None:
                return Ok(artifact)
            return Err(NotFound(triple, self._failed.get(triple, "artifact not found")))

    def wait_for(self, triple: str, timeout: float | None) -> Result[Artifact, NotFound]:
        """Block until ``triple`` is stored, its producer fails, or timeout expires."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                artifact = self._entries.get(triple)
                if artifact is not None:
                    return Ok(artifact)
                reason = self._failed.get(triple)
                if reason is not None:
                    return Err(NotFound(triple, reason))

                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return Err(NotFound(triple, f"timed out after {timeout}s"))
                self._cond.wait(remaining)

    def triples(self) -> tuple[str, ...]:
        with self._cond:
            return tuple(sorted(self._entries))

    def __contains__(self, triple: object) -> bool:
        with self._cond:
            return triple in self._entries

    def __len__(self) -> int:
        with self._cond:
            return len(self._entries)

    # -------------------------------------------------------------------------
    # Named transfer
    # -------------------------------------------------------------------------

    def upload(self, *, name: str, path: Path, mode: BuildMode) -> Result[Artifact, TransferError]:
        """Read a produced binary from disk and store it under ``name``."""
        try:
            blob = path.read_bytes()
        except OSError as e:
            return Err(TransferError(name=name, message=f"cannot read {path}: {e}"))
        artifact = Artifact(triple=name, mode=mode, binary_blob=blob)
        self.put(artifact)
        return Ok(artifact)

    def download(
        self, *, name: str, destination: Path, filename: str
    ) -> Result[Path, NotFound | TransferError]:
        """Write the artifact ``name`` to ``destination/filename``, executable."""
        found = self.get(name)
        if isinstance(found, Err):
            return found

        target = destination / filename
        try:
            destination.mkdir(parents=True, exist_ok=True)
            target.write_bytes(found.value.binary_blob)
            mode = os.stat(target).st_mode
            target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            return Err(TransferError(name=name, message=f"cannot write {target}: {e}"))
        return Ok(target)
