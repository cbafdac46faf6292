"""Typed configuration loading and access.

This module maps the ``crossdock.toml`` structure onto frozen dataclasses.
Every section is optional; missing values fall back to the stock matrix that
cross-compiles a Rust binary for seven targets and publishes a three-arch
Linux image.
"""

from __future__ import annotations

import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "PipelineConfig",
    "ProjectConfig",
    "TargetConfig",
    "ImageConfig",
    "RegistryConfig",
    "TagsConfig",
    "RunConfig",
    "ConfigError",
    "load_config",
    "load_config_or_default",
    "parse_flags",
    "DEFAULT_TARGETS",
    "DEFAULT_IMAGE_PLATFORMS",
]

DEFAULT_RUNS_ON = "ubuntu-latest"
_OPENSSL_FLAGS = ("--no-default-features", "--features", "openssl")


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class TargetConfig:
    """One row of the build matrix."""

    triple: str
    flags: tuple[str, ...] = ()
    runs_on: str = DEFAULT_RUNS_ON


DEFAULT_TARGETS: tuple[TargetConfig, ...] = (
    TargetConfig("x86_64-pc-windows-msvc", _OPENSSL_FLAGS),
    TargetConfig("x86_64-pc-windows-gnu"),
    TargetConfig("x86_64-unknown-linux-musl"),
    TargetConfig("aarch64-unknown-linux-musl"),
    TargetConfig("armv7-unknown-linux-musleabihf"),
    TargetConfig("x86_64-apple-darwin", _OPENSSL_FLAGS, "macos-latest"),
    TargetConfig("aarch64-apple-darwin", _OPENSSL_FLAGS, "macos-latest"),
)

# Ref: https://github.com/containerd/containerd/blob/main/platforms/platforms.go
DEFAULT_IMAGE_PLATFORMS: tuple[tuple[str, str], ...] = (
    ("linux/amd64", "x86_64-unknown-linux-musl"),
    ("linux/arm/v7", "armv7-unknown-linux-musleabihf"),
    ("linux/arm64", "aarch64-unknown-linux-musl"),
)


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    """The compiled project.

    Attributes:
        binary: Executable name produced by the compiler (without .exe).
        release_branches: Branches whose pushes produce release builds;
            everything else builds in debug mode.
        runner: Compiler front-end, ``cross`` or ``cargo``.
    """

    binary: str = "app"
    release_branches: tuple[str, ...] = ("main",)
    runner: str = "cross"


@dataclass(frozen=True, slots=True)
class ImageConfig:
    enabled: bool = True
    base: str = "alpine:3.20"
    description: str = ""
    binary_dir: str = "/usr/local/bin"
    platforms: tuple[tuple[str, str], ...] = DEFAULT_IMAGE_PLATFORMS


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    host: str = "ghcr.io"
    image: str = ""
    source: str | None = None

    @property
    def repository(self) -> str:
        return f"{self.host}/{self.image}" if self.host else self.image


@dataclass(frozen=True, slots=True)
class TagsConfig:
    sha_prefix: str = ""
    sha_length: int = 7
    schedule_pattern: str = "nightly"


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Scheduling and failure policy for one pipeline run."""

    fail_fast: bool = False
    max_parallel: int = 4
    retry_attempts: int = 3
    retry_delay_seconds: float = 5.0
    compile_timeout_seconds: float = 60 * 60.0
    artifact_wait_seconds: float = 2 * 60 * 60.0


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Main configuration container."""

    project: ProjectConfig = field(default_factory=ProjectConfig)
    targets: tuple[TargetConfig, ...] = DEFAULT_TARGETS
    image: ImageConfig = field(default_factory=ImageConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    tags: TagsConfig = field(default_factory=TagsConfig)
    run: RunConfig = field(default_factory=RunConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PipelineConfig:
        """Create a PipelineConfig from parsed TOML.

        Raises:
            ValueError: A section has the wrong shape or a number is out of range.
        """
        project: StrDict = get_table(data, "project") or {}
        image: StrDict = get_table(data, "image") or {}
        registry: StrDict = get_table(data, "registry") or {}
        tags: StrDict = get_table(data, "tags") or {}
        run: StrDict = get_table(data, "run") or {}

        defaults_project = ProjectConfig()
        defaults_image = ImageConfig()
        defaults_registry = RegistryConfig()
        defaults_run = RunConfig()
        defaults_tags = TagsConfig()
        fail_fast = get_bool(run, "fail_fast")
        enabled = get_bool(image, "enabled")

        return cls(
            project=ProjectConfig(
                binary=get_str(project, "binary") or defaults_project.binary,
                release_branches=tuple(get_str_list(project, "release_branches") or ("main",)),
                runner=get_str(project, "runner") or defaults_project.runner,
            ),
            targets=_parse_targets(data),
            image=ImageConfig(
                enabled=True if enabled is None else enabled,
                base=get_str(image, "base") or defaults_image.base,
                description=get_str(image, "description") or "",
                binary_dir=get_str(image, "binary_dir") or defaults_image.binary_dir,
                platforms=_parse_platforms(image),
            ),
            registry=RegistryConfig(
                host=get_str(registry, "host") or defaults_registry.host,
                image=get_str(registry, "image") or "",
                source=get_str(registry, "source"),
            ),
            tags=TagsConfig(
                sha_prefix=get_str(tags, "sha_prefix") or "",
                sha_length=_int_at_least(tags, "sha_length", defaults_tags.sha_length, 1),
                schedule_pattern=get_str(tags, "schedule_pattern")
                or defaults_tags.schedule_pattern,
            ),
            run=RunConfig(
                fail_fast=bool(fail_fast),
                max_parallel=_int_at_least(run, "max_parallel", defaults_run.max_parallel, 1),
                retry_attempts=_int_at_least(run, "retry_attempts", defaults_run.retry_attempts, 1),
                retry_delay_seconds=_non_negative(
                    run, "retry_delay_seconds", defaults_run.retry_delay_seconds
                ),
                compile_timeout_seconds=_positive(
                    run, "compile_timeout_seconds", defaults_run.compile_timeout_seconds
                ),
                artifact_wait_seconds=_non_negative(
                    run, "artifact_wait_seconds", defaults_run.artifact_wait_seconds
                ),
            ),
        )


def _int_at_least(table: Mapping[str, object], key: str, default: int, minimum: int) -> int:
    value = get_int(table, key)
    if value is None:
        return default
    if value < minimum:
        raise ValueError(f"{key} must be at least {minimum}, got {value}")
    return value


def _non_negative(table: Mapping[str, object], key: str, default: float) -> float:
    value = get_float(table, key)
    if value is None:
        return default
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {value}")
    return value


def _positive(table: Mapping[str, object], key: str, default: float) -> float:
    value = get_float(table, key)
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def parse_flags(value: object) -> tuple[str, ...]:
    """Normalize a flags entry: shell-style string or list of strings.

    Raises:
        ValueError: The value is neither, or the string has unbalanced quotes.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(shlex.split(value))
    if isinstance(value, list):
        items = [item for item in value if isinstance(item, str)]
        if len(items) != len(value):
            raise ValueError("flags list must contain only strings")
        return tuple(items)
    raise ValueError(f"flags must be a string or a list, got {type(value).__name__}")


def _parse_targets(data: Mapping[str, object]) -> tuple[TargetConfig, ...]:
    raw = get_list(data, "targets")
    if raw is None:
        if "targets" in data:
            raise ValueError("targets must be an array of tables")
        return DEFAULT_TARGETS

    targets: list[TargetConfig] = []
    for index, item in enumerate(raw):
        table = as_str_dict(item)
        if table is None:
            raise ValueError(f"targets[{index}] must be a table")
        # Empty triples are kept so the matrix expander can reject the whole run.
        triple = table.get("triple")
        if not isinstance(triple, str):
            raise ValueError(f"targets[{index}].triple must be a string")
        targets.append(
            TargetConfig(
                triple=triple.strip(),
                flags=parse_flags(table.get("flags")),
                runs_on=get_str(table, "runs_on") or DEFAULT_RUNS_ON,
            )
        )
    return tuple(targets)


def _parse_platforms(image: Mapping[str, object]) -> tuple[tuple[str, str], ...]:
    table = get_table(image, "platforms")
    if table is None:
        return DEFAULT_IMAGE_PLATFORMS
    pairs: list[tuple[str, str]] = []
    for os_arch, triple in table.items():
        if not isinstance(triple, str) or not triple.strip():
            raise ValueError(f"image.platforms.{os_arch!r} must name a target triple")
        pairs.append((os_arch, triple.strip()))
    return tuple(pairs)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[PipelineConfig, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to crossdock.toml

    Returns:
        Ok(PipelineConfig) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(PipelineConfig.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> PipelineConfig:
    """Load config from file, or return the default config if it can't be read."""
    result = load_config(path)
    if isinstance(result, Ok):
        return result.value
    return PipelineConfig()
