"""Domain types shared by every pipeline stage.

All types are frozen: a TargetSpec is declared once per run, an Artifact
never changes after its build job hands it to the store, and a TagSet is
computed once from the trigger.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

__all__ = [
    "BuildMode",
    "TargetSpec",
    "BuildJob",
    "Artifact",
    "PlatformImageLayer",
    "AssembledImage",
    "TagSet",
    "ManifestList",
    "Push",
    "PullRequest",
    "Schedule",
    "TriggerEvent",
    "TriggerMetadata",
]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _empty_labels() -> dict[str, str]:
    return {}


class BuildMode(Enum):
    """Optimization profile applied uniformly to every job of a run."""

    RELEASE = "release"
    DEBUG = "debug"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_release_flag(cls, release: bool) -> BuildMode:
        return cls.RELEASE if release else cls.DEBUG

    @property
    def compiler_args(self) -> tuple[str, ...]:
        return ("--release",) if self is BuildMode.RELEASE else ()

    @property
    def output_dir_name(self) -> str:
        """Directory cargo writes this profile's binaries to."""
        return self.value


@dataclass(frozen=True, slots=True)
class TargetSpec:
    """One declared matrix cell.

    Attributes:
        triple: Target triple, e.g. ``aarch64-unknown-linux-musl``.
        build_flags: Extra compiler flags, in order.
        run_environment: Runner label the job must execute on.
    """

    triple: str
    build_flags: tuple[str, ...] = ()
    run_environment: str = "ubuntu-latest"


@dataclass(frozen=True, slots=True)
class BuildJob:
    spec: TargetSpec
    mode: BuildMode

    @property
    def triple(self) -> str:
        return self.spec.triple


@dataclass(frozen=True, slots=True)
class Artifact:
    """A compiled binary, named by its triple.

    ``produced_at`` is excluded from equality so that two builds of the same
    bytes compare equal.
    """

    triple: str
    mode: BuildMode
    binary_blob: bytes = field(repr=False)
    produced_at: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def name(self) -> str:
        return self.triple

    @property
    def size(self) -> int:
        return len(self.binary_blob)

    @property
    def digest(self) -> str:
        return "sha256:" + hashlib.sha256(self.binary_blob).hexdigest()


@dataclass(frozen=True, slots=True)
class PlatformImageLayer:
    """The layer that carries one architecture's binary.

    Attributes:
        os_arch: OCI platform, e.g. ``linux/arm/v7``.
        artifact: The artifact whose binary the layer contains.
        blob: Uncompressed layer tarball.
        digest: ``sha256:`` digest of ``blob``.
        emulated: True if the layer was built for a foreign architecture.
    """

    os_arch: str
    artifact: Artifact
    blob: bytes = field(repr=False)
    digest: str
    emulated: bool = False

    @property
    def size(self) -> int:
        return len(self.blob)


@dataclass(frozen=True, slots=True)
class AssembledImage:
    """Per-architecture layers ready to be published."""

    base_image: str
    layers: tuple[PlatformImageLayer, ...]
    annotations: Mapping[str, str] = field(default_factory=_empty_labels)

    @property
    def platforms(self) -> tuple[str, ...]:
        return tuple(layer.os_arch for layer in self.layers)

    def layer_for(self, os_arch: str) -> PlatformImageLayer | None:
        for layer in self.layers:
            if layer.os_arch == os_arch:
                return layer
        return None


@dataclass(frozen=True, slots=True)
class TagSet:
    tags: frozenset[str]
    labels: Mapping[str, str] = field(default_factory=_empty_labels)

    def sorted_tags(self) -> tuple[str, ...]:
        return tuple(sorted(self.tags))

    def __len__(self) -> int:
        return len(self.tags)

    def __contains__(self, tag: object) -> bool:
        return tag in self.tags


@dataclass(frozen=True, slots=True)
class ManifestList:
    """What the registry receives: every layer under every tag, or nothing."""

    layers: tuple[PlatformImageLayer, ...]
    tags: TagSet
    base_image: str
    annotations: Mapping[str, str] = field(default_factory=_empty_labels)

    @property
    def platforms(self) -> tuple[str, ...]:
        return tuple(layer.os_arch for layer in self.layers)


# -----------------------------------------------------------------------------
# Trigger events
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Push:
    """A push. ``branch`` is None for tag pushes."""

    branch: str | None = None


@dataclass(frozen=True, slots=True)
class PullRequest:
    number: int
    head_branch: str | None = None


@dataclass(frozen=True, slots=True)
class Schedule:
    """A scheduled run. ``date`` is ``YYYYMMDD`` when known."""

    date: str | None = None


type TriggerEvent = Push | PullRequest | Schedule


@dataclass(frozen=True, slots=True)
class TriggerMetadata:
    """Everything the version-control collaborator tells us about a run."""

    event: TriggerEvent
    commit_sha: str
    is_default_branch: bool = False
    semver_tag: str | None = None

    @property
    def is_pull_request(self) -> bool:
        return isinstance(self.event, PullRequest)

    @property
    def event_name(self) -> str:
        match self.event:
            case Push():
                return "push"
            case PullRequest():
                return "pull_request"
            case Schedule():
                return "schedule"
