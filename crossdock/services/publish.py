"""Publisher: the only stage with external side effects.

Pull-request runs build and assemble everything but never touch the
registry. Every other run performs exactly one atomic push.
"""

from __future__ import annotations

from dataclasses import dataclass

from crossdock.core.result import Err, Ok, Result
from crossdock.output.console import ConsoleProtocol, Style
from crossdock.services.errors import PublishError
from crossdock.services.model import AssembledImage, ManifestList, TagSet, TriggerMetadata
from crossdock.services.registry import CredentialProvider, Registry

__all__ = ["PublishReceipt", "Publisher"]


@dataclass(frozen=True, slots=True)
class PublishReceipt:
    repository: str
    tags: tuple[str, ...]
    platforms: tuple[str, ...]
    pushed: bool
    digest: str | None = None


class Publisher:
    def __init__(
        self,
        *,
        registry: Registry,
        repository: str,
        credentials: CredentialProvider,
        console: ConsoleProtocol,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._credentials = credentials
        self._console = console

    def publish(
        self, image: AssembledImage, tags: TagSet, trigger: TriggerMetadata
    ) -> Result[PublishReceipt, PublishError]:
        sorted_tags = tags.sorted_tags()

        if trigger.is_pull_request:
            self._console.print("pull request: image built, not pushed", Style.DIM)
            return Ok(
                PublishReceipt(
                    repository=self._repository,
                    tags=sorted_tags,
                    platforms=image.platforms,
                    pushed=False,
                )
            )

        if not self._repository or self._repository.endswith("/"):
            return Err(
                PublishError(
                    repository=self._repository,
                    message="no image name configured",
                    hint="Set [registry].image in crossdock.toml",
                )
            )
        if len(tags) == 0:
            return Err(PublishError(repository=self._repository, message="refusing to push without tags"))
        if not image.layers:
            return Err(PublishError(repository=self._repository, message="image has no layers"))

        manifest = ManifestList(
            layers=image.layers,
            tags=tags,
            base_image=image.base_image,
            annotations=image.annotations,
        )

        self._console.print(
            f"pushing {self._repository} ({', '.join(manifest.platforms)}): {', '.join(sorted_tags)}"
        )
        pushed = self._registry.push(manifest, self._repository, self._credentials.credentials())
        if isinstance(pushed, Err):
            return pushed

        self._console.success(f"published {self._repository} {pushed.value[:19]}")
        return Ok(
            PublishReceipt(
                repository=self._repository,
                tags=sorted_tags,
                platforms=manifest.platforms,
                pushed=True,
                digest=pushed.value,
            )
        )
