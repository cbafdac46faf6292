"""Tests for crossdock.services.registry module."""

from __future__ import annotations

from pathlib import Path

import pytest

from crossdock.core.result import Err, Ok
from crossdock.platform.process import ProcessError
from crossdock.services.model import ManifestList, TagSet
from crossdock.services.registry import (
    TOKEN_ENV,
    USER_ENV,
    BuildxRegistry,
    Credentials,
    EnvCredentials,
    MemoryRegistry,
    manifest_digest,
    render_dockerfile,
)

from ._fakes import make_image

REPO = "ghcr.io/acme/dice"


def _manifest(tags: tuple[str, ...] = ("latest", "0123456"), **labels: str) -> ManifestList:
    image = make_image()
    return ManifestList(
        layers=image.layers,
        tags=TagSet(tags=frozenset(tags), labels=dict(labels)),
        base_image=image.base_image,
        annotations={"org.opencontainers.image.description": "Rolls dice"},
    )


class TestEnvCredentials:
    def test_reads_both_variables(self) -> None:
        creds = EnvCredentials({USER_ENV: "bot", TOKEN_ENV: "s3cret"}).credentials()
        assert creds == Credentials(username="bot", token="s3cret")

    def test_missing_token_means_anonymous(self) -> None:
        assert EnvCredentials({USER_ENV: "bot"}).credentials() is None

    def test_token_never_in_repr(self) -> None:
        assert "s3cret" not in repr(Credentials(username="bot", token="s3cret"))


class TestManifestDigest:
    def test_ignores_tags(self) -> None:
        assert manifest_digest(_manifest(("a",))) == manifest_digest(_manifest(("b", "c")))

    def test_ignores_layer_order(self) -> None:
        first = _manifest()
        swapped = ManifestList(
            layers=tuple(reversed(first.layers)),
            tags=first.tags,
            base_image=first.base_image,
        )
        assert manifest_digest(first) == manifest_digest(swapped)


class TestMemoryRegistry:
    def test_push_commits_every_tag(self) -> None:
        registry = MemoryRegistry()
        manifest = _manifest()

        result = registry.push(manifest, REPO, None)

        assert result == Ok(manifest_digest(manifest))
        assert registry.tags(REPO) == {"latest", "0123456"}
        assert registry.resolve(REPO, "latest") is manifest
        assert registry.writes == 1

    def test_failed_push_leaves_nothing(self) -> None:
        registry = MemoryRegistry(fail_with="denied: requested access to the resource is denied")

        result = registry.push(_manifest(), REPO, None)

        assert isinstance(result, Err)
        assert result.error.repository == REPO
        assert registry.tags(REPO) == frozenset()
        assert registry.writes == 0
        assert registry.push_calls == 1


class TestRenderDockerfile:
    def test_default_command_is_run(self) -> None:
        dockerfile = render_dockerfile(binary="dice", binary_dir="/usr/local/bin")
        assert "COPY --chmod=755 builds/${TARGETPLATFORM}/dice /usr/local/bin/dice" in dockerfile
        assert 'ENTRYPOINT ["/usr/local/bin/dice"]' in dockerfile
        assert dockerfile.rstrip().endswith('CMD ["run"]')


class TestBuildxRegistry:
    def _registry(self, tmp_path: Path) -> BuildxRegistry:
        return BuildxRegistry(
            workspace_root=tmp_path,
            staging_dir=tmp_path / "staging",
            binary="dice",
            binary_dir="/usr/local/bin",
        )

    def test_build_command(self, tmp_path: Path) -> None:
        cmd = self._registry(tmp_path).build_command(
            _manifest(**{"org.opencontainers.image.revision": "abc"}), REPO
        )

        assert cmd[:3] == ["docker", "buildx", "build"]
        assert cmd[cmd.index("--platform") + 1] == "linux/amd64,linux/arm64"
        assert "BASE_IMAGE=alpine:3.20" in cmd
        tags = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "--tag"]
        assert tags == [f"{REPO}:0123456", f"{REPO}:latest"]
        assert "org.opencontainers.image.revision=abc" in cmd
        output = cmd[cmd.index("--output") + 1]
        assert output.startswith(f"type=image,name={REPO},push=true")
        assert "annotation-index.org.opencontainers.image.description=Rolls dice" in output
        assert cmd[-1] == str(tmp_path / "staging")

    def test_push_logs_in_then_builds(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import crossdock.services.registry as registry_mod

        calls: list[tuple[list[str], str | None]] = []

        def fake_run(cmd: list[str], cwd: Path, env: object = None, **kwargs: object) -> Ok[str]:
            calls.append((cmd, kwargs.get("input")))  # type: ignore[arg-type]
            return Ok("")

        monkeypatch.setattr(registry_mod.shutil, "which", lambda _: "/usr/bin/docker")
        monkeypatch.setattr(registry_mod, "run_process", fake_run)

        result = self._registry(tmp_path).push(
            _manifest(), REPO, Credentials(username="bot", token="s3cret")
        )

        assert isinstance(result, Ok)
        assert calls[0][0][:3] == ["docker", "login", "ghcr.io"]
        assert "s3cret" not in calls[0][0]
        assert calls[0][1] == "s3cret"
        assert calls[1][0][:3] == ["docker", "buildx", "build"]
        assert (tmp_path / "staging" / "Dockerfile").is_file()

    def test_login_failure_skips_build(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import crossdock.services.registry as registry_mod

        calls: list[list[str]] = []

        def fake_run(cmd: list[str], cwd: Path, env: object = None, **kwargs: object) -> Err[ProcessError]:
            calls.append(cmd)
            return Err(ProcessError(command=tuple(cmd), returncode=1, stdout="", stderr="unauthorized"))

        monkeypatch.setattr(registry_mod.shutil, "which", lambda _: "/usr/bin/docker")
        monkeypatch.setattr(registry_mod, "run_process", fake_run)

        result = self._registry(tmp_path).push(
            _manifest(), REPO, Credentials(username="bot", token="s3cret")
        )

        assert isinstance(result, Err)
        assert result.error.hint == "unauthorized"
        assert len(calls) == 1

    def test_missing_docker(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import crossdock.services.registry as registry_mod

        monkeypatch.setattr(registry_mod.shutil, "which", lambda _: None)
        result = self._registry(tmp_path).push(_manifest(), REPO, None)
        assert isinstance(result, Err)
        assert result.error.message == "docker: missing"
