"""Tests for crossdock.services.layers module."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

from crossdock.services.layers import LayerCache, TarLayerBuilder, layer_digest


def _build(binary: bytes = b"\x7fELF", path: str = "/usr/local/bin/dice") -> bytes:
    return TarLayerBuilder().build(
        base_image="alpine:3.20", os_arch="linux/arm64", binary=binary, in_layer_path=path
    )


class TestTarLayerBuilder:
    def test_contents(self) -> None:
        blob = _build()
        with tarfile.open(fileobj=io.BytesIO(blob)) as tar:
            names = tar.getnames()
            member = tar.getmember("usr/local/bin/dice")
            data = tar.extractfile(member)
            assert data is not None
            assert data.read() == b"\x7fELF"
        assert names == ["usr", "usr/local", "usr/local/bin", "usr/local/bin/dice"]
        assert member.mode == 0o755
        assert member.mtime == 0
        assert member.uid == 0 and member.gid == 0

    def test_reproducible(self) -> None:
        assert _build() == _build()

    def test_depends_on_binary(self) -> None:
        assert _build(b"one") != _build(b"two")

    def test_relative_path_rejected(self) -> None:
        with pytest.raises(ValueError):
            _build(path="usr/local/bin/dice")

    def test_digest_format(self) -> None:
        digest = layer_digest(b"")
        assert digest.startswith("sha256:")
        assert len(digest) == len("sha256:") + 64


class TestLayerCache:
    def test_miss_then_hit(self, tmp_path: Path) -> None:
        cache = LayerCache(tmp_path)
        key = cache.key(base_image="alpine:3.20", in_layer_path="/usr/local/bin/dice", binary=b"x")
        assert cache.get(key) is None
        cache.put(key, b"layer")
        assert cache.get(key) == b"layer"
        assert (cache.hits, cache.misses) == (1, 1)

    def test_key_covers_every_input(self) -> None:
        base = LayerCache.key(base_image="alpine:3.20", in_layer_path="/a", binary=b"x")
        assert base == LayerCache.key(base_image="alpine:3.20", in_layer_path="/a", binary=b"x")
        assert base != LayerCache.key(base_image="alpine:3.19", in_layer_path="/a", binary=b"x")
        assert base != LayerCache.key(base_image="alpine:3.20", in_layer_path="/b", binary=b"x")
        assert base != LayerCache.key(base_image="alpine:3.20", in_layer_path="/a", binary=b"y")

    def test_key_is_unambiguous(self) -> None:
        assert LayerCache.key(base_image="ab", in_layer_path="c", binary=b"") != LayerCache.key(
            base_image="a", in_layer_path="bc", binary=b""
        )

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        cache = LayerCache(tmp_path)
        key = cache.key(base_image="b", in_layer_path="/p", binary=b"x")
        cache.put(key, b"layer")
        files = [p for p in tmp_path.rglob("*") if p.is_file()]
        assert [p.name for p in files] == [f"{key}.tar"]
