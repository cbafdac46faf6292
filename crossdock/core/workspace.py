"""Workspace detection and paths.

The workspace is the root of the project being cross-compiled. It is
identified by a ``crossdock.toml`` file next to the project's ``Cargo.toml``.
All run-scoped state (per-target compiler directories, staged artifacts, the
layer cache) lives under ``.crossdock/`` and should be gitignored.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .result import Err, Ok, Result

__all__ = [
    "CONFIG_FILENAME",
    "Workspace",
    "WorkspaceError",
    "detect_workspace",
    "find_workspace_upward",
    "is_workspace_root",
]

CONFIG_FILENAME = "crossdock.toml"


@dataclass(frozen=True)
class WorkspaceError:
    """Error when workspace cannot be detected."""

    message: str
    searched_from: Path | None = None


@dataclass(frozen=True, slots=True)
class Workspace:
    """A detected crossdock workspace."""

    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILENAME

    @property
    def state_dir(self) -> Path:
        """Path to workspace state directory (.crossdock/)."""
        return self.root / ".crossdock"

    @property
    def target_dir(self) -> Path:
        """Parent of the per-(triple, mode) compiler output directories."""
        return self.state_dir / "target"

    @property
    def artifacts_dir(self) -> Path:
        """Where `crossdock build` leaves staged binaries, one dir per triple."""
        return self.state_dir / "artifacts"

    @property
    def staging_dir(self) -> Path:
        """Platform-keyed image build context (builds/<os>/<arch>/...)."""
        return self.state_dir / "image"

    @property
    def layer_cache_dir(self) -> Path:
        return self.state_dir / "cache" / "layers"

    def __str__(self) -> str:
        return str(self.root)


def is_workspace_root(path: Path) -> bool:
    return (path / CONFIG_FILENAME).is_file()


def find_workspace_upward(start: Path) -> Path | None:
    """Search upward from start for a directory holding crossdock.toml."""
    for parent in (start, *start.parents):
        if is_workspace_root(parent):
            return parent
    return None


def detect_workspace(
    *,
    start_dir: Path | None = None,
    env_var: str = "CROSSDOCK_ROOT",
) -> Result[Workspace, WorkspaceError]:
    """Detect the workspace root directory.

    Detection order:
    1. CROSSDOCK_ROOT environment variable (if set, it must be valid)
    2. Search upward from start_dir (or cwd) for crossdock.toml
    """
    env_value = os.environ.get(env_var)
    if env_value:
        env_path = Path(env_value).expanduser().resolve()
        if env_path.is_dir() and is_workspace_root(env_path):
            return Ok(Workspace(root=env_path))
        return Err(
            WorkspaceError(
                message=f"${env_var} is set to '{env_value}' but it is not a valid workspace",
                searched_from=env_path if env_path.is_dir() else None,
            )
        )

    search_start = (start_dir or Path.cwd()).resolve()
    found = find_workspace_upward(search_start)
    if found is None:
        return Err(
            WorkspaceError(
                message=f"Could not find workspace ({CONFIG_FILENAME} not found)",
                searched_from=search_start,
            )
        )
    return Ok(Workspace(root=found))
