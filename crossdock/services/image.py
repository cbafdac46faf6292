"""Multi-architecture image assembly.

Collects the artifacts an image needs from the artifact store, stages them in
a platform-keyed layout (``builds/<os>/<arch>[/<variant>]/<binary>``), then
builds one layer per os/arch on top of a shared base image. The result is
keyed by os/arch so a registry can serve every client the layer for its own
CPU.

Assembly never starts building layers until every required artifact is
present: one missing triple fails the whole image.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from crossdock.core.result import Err, Ok, Result
from crossdock.output.console import ConsoleProtocol, Style
from crossdock.services.artifacts import ArtifactStore, NotFound, TransferError
from crossdock.services.emulation import Emulator
from crossdock.services.errors import AssemblyError, ConfigurationError, MissingArtifactError
from crossdock.services.layers import LayerBuilder, LayerCache, layer_digest
from crossdock.services.model import Artifact, AssembledImage, PlatformImageLayer

__all__ = [
    "TRIPLE_OS_ARCH",
    "DESCRIPTION_ANNOTATION",
    "ImageRequest",
    "ImageAssembler",
    "AssembleError",
    "describe_transfer_error",
    "os_arch_for_triple",
    "validate_platforms",
]

DESCRIPTION_ANNOTATION = "org.opencontainers.image.description"
BASE_NAME_ANNOTATION = "org.opencontainers.image.base.name"

# Only Linux triples can back a container layer.
TRIPLE_OS_ARCH: Mapping[str, str] = {
    "x86_64-unknown-linux-musl": "linux/amd64",
    "x86_64-unknown-linux-gnu": "linux/amd64",
    "i686-unknown-linux-musl": "linux/386",
    "i686-unknown-linux-gnu": "linux/386",
    "aarch64-unknown-linux-musl": "linux/arm64",
    "aarch64-unknown-linux-gnu": "linux/arm64",
    "armv7-unknown-linux-musleabihf": "linux/arm/v7",
    "armv7-unknown-linux-gnueabihf": "linux/arm/v7",
    "arm-unknown-linux-musleabihf": "linux/arm/v6",
    "arm-unknown-linux-gnueabihf": "linux/arm/v6",
    "powerpc64le-unknown-linux-gnu": "linux/ppc64le",
    "s390x-unknown-linux-gnu": "linux/s390x",
    "riscv64gc-unknown-linux-gnu": "linux/riscv64",
}

type AssembleError = ConfigurationError | MissingArtifactError | AssemblyError


def os_arch_for_triple(triple: str) -> str | None:
    return TRIPLE_OS_ARCH.get(triple)


def describe_transfer_error(error: NotFound | TransferError) -> str:
    match error:
        case NotFound(triple=triple, reason=reason):
            return f"{triple}: {reason}"
        case TransferError(message=message):
            return message


@dataclass(frozen=True, slots=True)
class ImageRequest:
    """What to assemble.

    Attributes:
        platforms: (os_arch, triple) pairs, in manifest order.
        base_image: Reference of the common base layer.
        binary: File name of the binary inside each layer.
        binary_dir: Absolute directory the binary is injected into.
        description: Human-readable image description annotation.
    """

    platforms: tuple[tuple[str, str], ...]
    base_image: str
    binary: str
    binary_dir: str = "/usr/local/bin"
    description: str = ""

    @property
    def in_layer_path(self) -> str:
        return str(PurePosixPath(self.binary_dir) / self.binary)

    @property
    def required_triples(self) -> tuple[str, ...]:
        return tuple(triple for _, triple in self.platforms)


def validate_platforms(
    platforms: Sequence[tuple[str, str]],
) -> Result[None, ConfigurationError]:
    """Check every pair against the fixed triple -> os/arch table."""
    if not platforms:
        return Err(ConfigurationError(message="image has no platforms"))

    seen: set[str] = set()
    for os_arch, triple in platforms:
        if os_arch in seen:
            return Err(ConfigurationError(message=f"duplicate image platform: {os_arch}", target=os_arch))
        seen.add(os_arch)

        expected = os_arch_for_triple(triple)
        if expected is None:
            return Err(
                ConfigurationError(
                    message=f"{triple} cannot back a container layer (no Linux os/arch mapping)",
                    target=os_arch,
                )
            )
        if expected != os_arch:
            return Err(
                ConfigurationError(
                    message=f"{triple} builds {expected}, not {os_arch}",
                    target=os_arch,
                )
            )
    return Ok(None)


class ImageAssembler:
    """Turns staged artifacts into per-architecture layers.

    Args:
        store: Artifact store of the current run.
        layer_builder: Produces one layer blob per os/arch.
        emulator: Prepares os/arch values the host cannot execute natively.
        host_os_arch: The host's native os/arch (None if unknown: everything
            is then treated as foreign).
        staging_dir: Build context root; binaries land under ``builds/``.
        cache: Optional layer cache.
        artifact_wait_seconds: Bound on waiting for each required artifact.
    """

    def __init__(
        self,
        *,
        store: ArtifactStore,
        layer_builder: LayerBuilder,
        emulator: Emulator,
        host_os_arch: str | None,
        staging_dir: Path,
        console: ConsoleProtocol,
        cache: LayerCache | None = None,
        artifact_wait_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._builder = layer_builder
        self._emulator = emulator
        self._host_os_arch = host_os_arch
        self._staging_dir = staging_dir
        self._console = console
        self._cache = cache
        self._wait = artifact_wait_seconds

    def platform_dir(self, os_arch: str) -> Path:
        return self._staging_dir.joinpath("builds", *os_arch.split("/"))

    def assemble(self, request: ImageRequest) -> Result[AssembledImage, AssembleError]:
        valid = validate_platforms(request.platforms)
        if isinstance(valid, Err):
            return valid

        gathered = self._gather(request)
        if isinstance(gathered, Err):
            return gathered
        artifacts = gathered.value

        staged = self._stage(request, artifacts)
        if isinstance(staged, Err):
            return staged

        layers: list[PlatformImageLayer] = []
        for os_arch, _triple in request.platforms:
            layer = self._build_layer(request, os_arch, artifacts[os_arch])
            if isinstance(layer, Err):
                return layer
            layers.append(layer.value)

        annotations = {BASE_NAME_ANNOTATION: request.base_image}
        if request.description:
            annotations[DESCRIPTION_ANNOTATION] = request.description

        self._console.success(f"image assembled: {', '.join(os_arch for os_arch, _ in request.platforms)}")
        return Ok(
            AssembledImage(
                base_image=request.base_image,
                layers=tuple(layers),
                annotations=annotations,
            )
        )

    def _gather(self, request: ImageRequest) -> Result[dict[str, Artifact], MissingArtifactError]:
        artifacts: dict[str, Artifact] = {}
        for os_arch, triple in request.platforms:
            found = self._store.wait_for(triple, self._wait)
            if isinstance(found, Err):
                return Err(
                    MissingArtifactError(target=os_arch, triple=triple, reason=found.error.reason)
                )
            artifacts[os_arch] = found.value
        return Ok(artifacts)

    def _stage(
        self, request: ImageRequest, artifacts: Mapping[str, Artifact]
    ) -> Result[None, AssembleError]:
        for os_arch, artifact in artifacts.items():
            downloaded = self._store.download(
                name=artifact.name,
                destination=self.platform_dir(os_arch),
                filename=request.binary,
            )
            if isinstance(downloaded, Err):
                return Err(
                    AssemblyError(
                        target=os_arch,
                        message=f"staging failed: {describe_transfer_error(downloaded.error)}",
                    )
                )
            self._console.print(f"{os_arch}: staged {downloaded.value}", Style.DIM)
        return Ok(None)

    def _build_layer(
        self, request: ImageRequest, os_arch: str, artifact: Artifact
    ) -> Result[PlatformImageLayer, AssemblyError]:
        emulated = os_arch != self._host_os_arch
        if emulated:
            prepared = self._emulator.prepare(os_arch)
            if isinstance(prepared, Err):
                return prepared

        path = request.in_layer_path
        blob: bytes | None = None
        key: str | None = None
        if self._cache is not None:
            key = self._cache.key(
                base_image=request.base_image, in_layer_path=path, binary=artifact.binary_blob
            )
            blob = self._cache.get(key)

        if blob is None:
            try:
                blob = self._builder.build(
                    base_image=request.base_image,
                    os_arch=os_arch,
                    binary=artifact.binary_blob,
                    in_layer_path=path,
                )
            except (OSError, ValueError) as e:
                return Err(AssemblyError(target=os_arch, message=f"layer build failed: {e}"))
            if self._cache is not None and key is not None:
                self._cache.put(key, blob)

        digest = layer_digest(blob)
        suffix = " (emulated)" if emulated else ""
        self._console.print(f"{os_arch}: layer {digest[:19]}{suffix}", Style.DIM)
        return Ok(
            PlatformImageLayer(
                os_arch=os_arch,
                artifact=artifact,
                blob=blob,
                digest=digest,
                emulated=emulated,
            )
        )
