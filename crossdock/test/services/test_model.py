"""Tests for crossdock.services.model module."""

from __future__ import annotations

from datetime import UTC, datetime

from crossdock.services.model import (
    Artifact,
    BuildMode,
    PullRequest,
    Push,
    Schedule,
    TagSet,
    TriggerMetadata,
)

from ._fakes import SHA, make_image


class TestBuildMode:
    def test_from_release_flag(self) -> None:
        assert BuildMode.from_release_flag(True) is BuildMode.RELEASE
        assert BuildMode.from_release_flag(False) is BuildMode.DEBUG

    def test_compiler_args(self) -> None:
        assert BuildMode.RELEASE.compiler_args == ("--release",)
        assert BuildMode.DEBUG.compiler_args == ()
        assert BuildMode.DEBUG.output_dir_name == "debug"


class TestArtifact:
    def test_named_by_triple(self) -> None:
        artifact = Artifact(triple="aarch64-unknown-linux-musl", mode=BuildMode.RELEASE, binary_blob=b"x")
        assert artifact.name == "aarch64-unknown-linux-musl"
        assert artifact.size == 1

    def test_equality_ignores_production_time(self) -> None:
        a = Artifact("t", BuildMode.DEBUG, b"bin", produced_at=datetime(2026, 1, 1, tzinfo=UTC))
        b = Artifact("t", BuildMode.DEBUG, b"bin", produced_at=datetime(2026, 6, 1, tzinfo=UTC))
        assert a == b
        assert a.digest == b.digest
        assert a.digest.startswith("sha256:")

    def test_blob_not_in_repr(self) -> None:
        assert "secret-bytes" not in repr(Artifact("t", BuildMode.DEBUG, b"secret-bytes"))


class TestTagSet:
    def test_sorted_and_membership(self) -> None:
        tags = TagSet(tags=frozenset({"main", "abc1234", "latest"}))
        assert tags.sorted_tags() == ("abc1234", "latest", "main")
        assert "latest" in tags
        assert len(tags) == 3


class TestAssembledImage:
    def test_layer_lookup(self) -> None:
        image = make_image(("linux/amd64", "linux/arm64"))
        layer = image.layer_for("linux/arm64")
        assert layer is not None and layer.os_arch == "linux/arm64"
        assert image.layer_for("linux/s390x") is None


class TestTriggerMetadata:
    def test_event_names(self) -> None:
        assert TriggerMetadata(Push("main"), SHA).event_name == "push"
        assert TriggerMetadata(PullRequest(1), SHA).event_name == "pull_request"
        assert TriggerMetadata(Schedule(), SHA).event_name == "schedule"

    def test_is_pull_request(self) -> None:
        assert TriggerMetadata(PullRequest(1), SHA).is_pull_request
        assert not TriggerMetadata(Push("main"), SHA).is_pull_request
