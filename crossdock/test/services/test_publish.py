"""Tests for crossdock.services.publish module."""

from __future__ import annotations

from crossdock.core.result import Err, Ok
from crossdock.output.console import MockConsole
from crossdock.services.model import AssembledImage, TagSet
from crossdock.services.publish import Publisher
from crossdock.services.registry import Credentials, MemoryRegistry, manifest_digest

from ._fakes import StaticCredentials, make_image, pr_trigger, push_trigger

REPO = "ghcr.io/acme/dice"
TAGS = TagSet(tags=frozenset({"latest", "main", "0123456"}))


def _publisher(
    registry: MemoryRegistry,
    *,
    repository: str = REPO,
    credentials: StaticCredentials | None = None,
) -> Publisher:
    return Publisher(
        registry=registry,
        repository=repository,
        credentials=credentials or StaticCredentials(),
        console=MockConsole(),
    )


class TestPublish:
    def test_push_publishes_every_tag(self) -> None:
        registry = MemoryRegistry()
        image = make_image()

        result = _publisher(registry).publish(image, TAGS, push_trigger())

        assert isinstance(result, Ok)
        receipt = result.value
        assert receipt.pushed is True
        assert receipt.tags == ("0123456", "latest", "main")
        assert receipt.platforms == ("linux/amd64", "linux/arm64")
        assert registry.tags(REPO) == TAGS.tags
        manifest = registry.resolve(REPO, "latest")
        assert manifest is not None
        assert receipt.digest == manifest_digest(manifest)

    def test_pull_request_never_writes(self) -> None:
        registry = MemoryRegistry()
        credentials = StaticCredentials(Credentials(username="bot", token="t"))

        result = _publisher(registry, credentials=credentials).publish(
            make_image(), TAGS, pr_trigger()
        )

        assert isinstance(result, Ok)
        assert result.value.pushed is False
        assert result.value.digest is None
        assert registry.push_calls == 0
        assert credentials.calls == 0

    def test_registry_failure_is_publish_error(self) -> None:
        registry = MemoryRegistry(fail_with="manifest invalid")

        result = _publisher(registry).publish(make_image(), TAGS, push_trigger())

        assert isinstance(result, Err)
        assert result.error.message == "manifest invalid"
        assert result.error.stage == "publish"
        assert registry.tags(REPO) == frozenset()

    def test_refuses_empty_tag_set(self) -> None:
        registry = MemoryRegistry()
        result = _publisher(registry).publish(
            make_image(), TagSet(tags=frozenset()), push_trigger()
        )
        assert isinstance(result, Err)
        assert registry.push_calls == 0

    def test_refuses_image_without_layers(self) -> None:
        registry = MemoryRegistry()
        empty = AssembledImage(base_image="alpine:3.20", layers=())
        result = _publisher(registry).publish(empty, TAGS, push_trigger())
        assert isinstance(result, Err)
        assert registry.push_calls == 0

    def test_refuses_missing_image_name(self) -> None:
        registry = MemoryRegistry()
        result = _publisher(registry, repository="ghcr.io/").publish(
            make_image(), TAGS, push_trigger()
        )
        assert isinstance(result, Err)
        assert result.error.hint == "Set [registry].image in crossdock.toml"

    def test_credentials_requested_once_per_push(self) -> None:
        credentials = StaticCredentials(Credentials(username="bot", token="t"))
        _publisher(MemoryRegistry(), credentials=credentials).publish(
            make_image(), TAGS, push_trigger()
        )
        assert credentials.calls == 1
