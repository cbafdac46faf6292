"""Container registries and registry credentials.

A push is all-or-nothing from the publisher's point of view: either every
layer is reachable under every tag, or the registry reports failure and
nothing is visible.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from crossdock.core.result import Err, Ok, Result
from crossdock.platform.process import run as run_process
from crossdock.services.errors import PublishError
from crossdock.services.model import ManifestList

__all__ = [
    "Credentials",
    "CredentialProvider",
    "EnvCredentials",
    "Registry",
    "MemoryRegistry",
    "BuildxRegistry",
    "manifest_digest",
    "render_dockerfile",
    "USER_ENV",
    "TOKEN_ENV",
]

USER_ENV = "CROSSDOCK_REGISTRY_USER"
TOKEN_ENV = "CROSSDOCK_REGISTRY_TOKEN"

_LOGIN_TIMEOUT_SECONDS = 2 * 60.0
_PUSH_TIMEOUT_SECONDS = 60 * 60.0


@dataclass(frozen=True, slots=True)
class Credentials:
    username: str
    token: str = field(repr=False)


class CredentialProvider(Protocol):
    def credentials(self) -> Credentials | None: ...


class EnvCredentials:
    """Reads credentials from the environment at push time."""

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        *,
        user_var: str = USER_ENV,
        token_var: str = TOKEN_ENV,
    ) -> None:
        self._env = env
        self._user_var = user_var
        self._token_var = token_var

    def credentials(self) -> Credentials | None:
        env = os.environ if self._env is None else self._env
        user = env.get(self._user_var, "")
        token = env.get(self._token_var, "")
        if not user or not token:
            return None
        return Credentials(username=user, token=token)


def manifest_digest(manifest: ManifestList) -> str:
    """Digest of the platform -> layer mapping, independent of tags."""
    h = hashlib.sha256()
    h.update(manifest.base_image.encode("utf-8"))
    for layer in sorted(manifest.layers, key=lambda layer: layer.os_arch):
        h.update(f"\n{layer.os_arch}={layer.digest}".encode())
    return "sha256:" + h.hexdigest()


class Registry(Protocol):
    def push(
        self, manifest: ManifestList, repository: str, credentials: Credentials | None
    ) -> Result[str, PublishError]:
        """Publish every layer under every tag; return the manifest digest."""
        ...


class MemoryRegistry:
    """In-process registry.

    Commits a manifest under all of its tags in one step. ``fail_with`` makes
    every push fail with that message, which lets tests check that failed
    pushes leave nothing behind.
    """

    def __init__(self, *, fail_with: str | None = None) -> None:
        self._lock = threading.Lock()
        self._repos: dict[str, dict[str, ManifestList]] = {}
        self.fail_with = fail_with
        self.push_calls = 0

    def push(
        self, manifest: ManifestList, repository: str, credentials: Credentials | None
    ) -> Result[str, PublishError]:
        del credentials
        with self._lock:
            self.push_calls += 1
            if self.fail_with is not None:
                return Err(PublishError(repository=repository, message=self.fail_with))

            staged = dict(self._repos.get(repository, {}))
            for tag in manifest.tags.sorted_tags():
                staged[tag] = manifest
            self._repos[repository] = staged
            return Ok(manifest_digest(manifest))

    def tags(self, repository: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._repos.get(repository, {}))

    def resolve(self, repository: str, tag: str) -> ManifestList | None:
        with self._lock:
            return self._repos.get(repository, {}).get(tag)

    @property
    def writes(self) -> int:
        """Number of repositories holding at least one tag."""
        with self._lock:
            return sum(1 for tags in self._repos.values() if tags)


def render_dockerfile(*, binary: str, binary_dir: str) -> str:
    """Dockerfile that picks the staged binary for the platform being built."""
    in_layer = str(PurePosixPath(binary_dir) / binary)
    return (
        "ARG BASE_IMAGE\n"
        "FROM ${BASE_IMAGE}\n"
        "ARG TARGETPLATFORM\n"
        f"COPY --chmod=755 builds/${{TARGETPLATFORM}}/{binary} {in_layer}\n"
        f'ENTRYPOINT ["{in_layer}"]\n'
        'CMD ["run"]\n'
    )


class BuildxRegistry:
    """Publishes through ``docker buildx`` from the staged build context.

    The staging directory already holds ``builds/<os>/<arch>/<binary>`` for
    every platform (the image assembler put it there), so buildx rebuilds the
    same layers natively per platform and pushes one manifest list.
    """

    def __init__(
        self,
        *,
        workspace_root: Path,
        staging_dir: Path,
        binary: str,
        binary_dir: str,
        push_timeout: float = _PUSH_TIMEOUT_SECONDS,
    ) -> None:
        self._root = workspace_root
        self._staging_dir = staging_dir
        self._binary = binary
        self._binary_dir = binary_dir
        self._push_timeout = push_timeout

    def _login(self, repository: str, credentials: Credentials) -> Result[None, PublishError]:
        host = repository.split("/", 1)[0]
        cmd = ["docker", "login", host, "--username", credentials.username, "--password-stdin"]
        result = run_process(
            cmd, cwd=self._root, timeout=_LOGIN_TIMEOUT_SECONDS, input=credentials.token
        )
        if isinstance(result, Err):
            return Err(
                PublishError(
                    repository=repository,
                    message=f"docker login to {host} failed",
                    hint=result.error.stderr.strip() or None,
                )
            )
        return Ok(None)

    def build_command(self, manifest: ManifestList, repository: str) -> list[str]:
        cmd = [
            "docker",
            "buildx",
            "build",
            "--platform",
            ",".join(manifest.platforms),
            "--build-arg",
            f"BASE_IMAGE={manifest.base_image}",
            "--file",
            str(self._staging_dir / "Dockerfile"),
        ]
        for tag in manifest.tags.sorted_tags():
            cmd += ["--tag", f"{repository}:{tag}"]
        for key, value in sorted(manifest.tags.labels.items()):
            cmd += ["--label", f"{key}={value}"]
        output = f"type=image,name={repository},push=true"
        for key, value in sorted(manifest.annotations.items()):
            output += f",annotation-index.{key}={value}"
        cmd += ["--output", output, str(self._staging_dir)]
        return cmd

    def push(
        self, manifest: ManifestList, repository: str, credentials: Credentials | None
    ) -> Result[str, PublishError]:
        if shutil.which("docker") is None:
            return Err(
                PublishError(
                    repository=repository,
                    message="docker: missing",
                    hint="Install Docker with the buildx plugin",
                )
            )

        if credentials is not None:
            login = self._login(repository, credentials)
            if isinstance(login, Err):
                return login

        dockerfile = self._staging_dir / "Dockerfile"
        try:
            self._staging_dir.mkdir(parents=True, exist_ok=True)
            dockerfile.write_text(
                render_dockerfile(binary=self._binary, binary_dir=self._binary_dir),
                encoding="utf-8",
            )
        except OSError as e:
            return Err(PublishError(repository=repository, message=f"cannot write {dockerfile}: {e}"))

        result = run_process(
            self.build_command(manifest, repository), cwd=self._root, timeout=self._push_timeout
        )
        if isinstance(result, Err):
            return Err(
                PublishError(
                    repository=repository,
                    message=f"buildx push failed: {result.error}",
                    hint=result.error.stderr.strip()[-2000:] or None,
                )
            )
        return Ok(manifest_digest(manifest))
