"""Image layer construction and caching.

A layer is an uncompressed tarball that drops one binary into the image
filesystem. ``TarLayerBuilder`` produces byte-for-byte reproducible tarballs
(fixed mtime, root ownership, fixed modes), which is what makes the layer
cache safe: a cache hit returns exactly the bytes a rebuild would produce.
"""

from __future__ import annotations

import hashlib
import io
import os
import tarfile
from pathlib import Path, PurePosixPath
from typing import Protocol

__all__ = ["LayerBuilder", "TarLayerBuilder", "LayerCache", "layer_digest"]

_DIR_MODE = 0o755
_EXE_MODE = 0o755


def layer_digest(blob: bytes) -> str:
    return "sha256:" + hashlib.sha256(blob).hexdigest()


class LayerBuilder(Protocol):
    def build(self, *, base_image: str, os_arch: str, binary: bytes, in_layer_path: str) -> bytes:
        """Return the layer blob placing ``binary`` at ``in_layer_path``."""
        ...


class TarLayerBuilder:
    """Builds a single-file layer as a reproducible USTAR tarball.

    The tarball only holds the injected file and its parent directories; the
    base image is referenced by the manifest, not copied into the layer.
    """

    def build(self, *, base_image: str, os_arch: str, binary: bytes, in_layer_path: str) -> bytes:
        del base_image, os_arch
        path = PurePosixPath(in_layer_path)
        if not path.is_absolute() or path.name == "":
            raise ValueError(f"in-layer path must be an absolute file path: {in_layer_path}")

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tar:
            parents = [p for p in reversed(path.parents) if str(p) != "/"]
            for parent in parents:
                info = self._entry(str(parent).lstrip("/") + "/", tarfile.DIRTYPE, _DIR_MODE)
                tar.addfile(info)
            info = self._entry(str(path).lstrip("/"), tarfile.REGTYPE, _EXE_MODE)
            info.size = len(binary)
            tar.addfile(info, io.BytesIO(binary))
        return buf.getvalue()

    @staticmethod
    def _entry(name: str, kind: bytes, mode: int) -> tarfile.TarInfo:
        info = tarfile.TarInfo(name)
        info.type = kind
        info.mode = mode
        info.mtime = 0
        info.uid = 0
        info.gid = 0
        info.uname = ""
        info.gname = ""
        return info


class LayerCache:
    """On-disk layer cache keyed by content.

    Usage:
        key = cache.key(base_image=base, in_layer_path=path, binary=blob)
        layer = cache.get(key)
        if layer is None:
            layer = builder.build(...)
            cache.put(key, layer)
    """

    def __init__(self, cache_dir: Path) -> None:
        self._dir = cache_dir
        self.hits = 0
        self.misses = 0

    @property
    def cache_dir(self) -> Path:
        return self._dir

    @staticmethod
    def key(*, base_image: str, in_layer_path: str, binary: bytes) -> str:
        h = hashlib.sha256()
        for part in (base_image.encode("utf-8"), in_layer_path.encode("utf-8")):
            h.update(len(part).to_bytes(8, "big"))
            h.update(part)
        h.update(hashlib.sha256(binary).digest())
        return h.hexdigest()

    def _path(self, key: str) -> Path:
        return self._dir / key[:2] / f"{key}.tar"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            blob = path.read_bytes()
        except FileNotFoundError:
            self.misses += 1
            return None
        self.hits += 1
        return blob

    def put(self, key: str, blob: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(f".tmp-{os.getpid()}")
        tmp.write_bytes(blob)
        # Readers never see a partially written entry.
        os.replace(tmp, path)
