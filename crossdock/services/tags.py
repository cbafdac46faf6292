"""Tag policy engine.

``compute_tags`` is a pure function of the trigger metadata and the tag
settings: no clock, no environment, no registry lookups. Schedule dates come
in through the trigger, never from ``datetime.now()``.

Rules (union):
    - ``latest`` on the default branch
    - scheduled runs: the schedule pattern (``{date}`` -> ``YYYYMMDD``)
    - branch pushes: the sanitized branch name
    - pull requests: ``pr-<number>``
    - semver: full version, ``MAJOR.MINOR``, ``MAJOR`` (pre-release: full only)
    - always: the short commit hash
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from crossdock.core.result import Err, Ok, Result
from crossdock.services.errors import ConfigurationError
from crossdock.services.model import PullRequest, Push, Schedule, TagSet, TriggerMetadata
from crossdock.services.semver import parse_semver

__all__ = [
    "LATEST",
    "MAX_TAG_LENGTH",
    "compute_tags",
    "describe_labels",
    "sanitize_tag",
    "short_sha",
    "validate_trigger",
]

LATEST = "latest"
MAX_TAG_LENGTH = 128

LABEL_TITLE = "org.opencontainers.image.title"
LABEL_DESCRIPTION = "org.opencontainers.image.description"
LABEL_SOURCE = "org.opencontainers.image.source"
LABEL_VERSION = "org.opencontainers.image.version"
LABEL_REVISION = "org.opencontainers.image.revision"

_SHA_RE = re.compile(r"^[0-9a-fA-F]+$")
_DATE_RE = re.compile(r"^\d{8}$")
_INVALID_TAG_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_tag(value: str) -> str:
    """Map a ref name onto the registry tag alphabet.

    ``feature/login`` -> ``feature-login``. Tags may not start with ``.`` or
    ``-``, so leading ones are replaced by ``_``.
    """
    tag = _INVALID_TAG_CHARS.sub("-", value)
    if tag[:1] in {".", "-"}:
        tag = "_" + tag[1:]
    return tag[:MAX_TAG_LENGTH]


def short_sha(sha: str, length: int = 7) -> str:
    return sha[:length].lower()


def validate_trigger(trigger: TriggerMetadata, sha_length: int = 7) -> ConfigurationError | None:
    """Reject malformed trigger metadata before anything is built."""
    sha = trigger.commit_sha
    if not _SHA_RE.match(sha):
        return ConfigurationError(message=f"commit sha is not hexadecimal: {sha!r}")
    if len(sha) < sha_length:
        return ConfigurationError(
            message=f"commit sha {sha!r} is shorter than {sha_length} characters"
        )

    match trigger.event:
        case Push(branch=branch):
            if branch is not None and not branch.strip():
                return ConfigurationError(message="push event has an empty branch name")
        case PullRequest(number=number):
            if number < 1:
                return ConfigurationError(message=f"invalid pull request number: {number}")
        case Schedule(date=date):
            if date is not None and not _DATE_RE.match(date):
                return ConfigurationError(message=f"schedule date must be YYYYMMDD: {date!r}")

    if trigger.semver_tag is not None and parse_semver(trigger.semver_tag) is None:
        return ConfigurationError(message=f"invalid semantic version: {trigger.semver_tag!r}")
    return None


def compute_tags(
    trigger: TriggerMetadata,
    *,
    image_name: str,
    description: str = "",
    source: str | None = None,
    sha_prefix: str = "",
    sha_length: int = 7,
    schedule_pattern: str = "nightly",
) -> Result[TagSet, ConfigurationError]:
    """Derive the TagSet and OCI labels for one trigger."""
    if sha_length < 1:
        return Err(ConfigurationError(message=f"sha_length must be positive: {sha_length}"))
    invalid = validate_trigger(trigger, sha_length)
    if invalid is not None:
        return Err(invalid)

    tags: set[str] = set()
    ref_tag: str | None = None

    if trigger.is_default_branch:
        tags.add(LATEST)

    match trigger.event:
        case Push(branch=str() as branch):
            ref_tag = sanitize_tag(branch)
            tags.add(ref_tag)
        case Push():
            pass
        case PullRequest(number=number):
            ref_tag = f"pr-{number}"
            tags.add(ref_tag)
        case Schedule(date=date):
            if "{date}" in schedule_pattern and date is None:
                return Err(
                    ConfigurationError(message="schedule pattern needs {date} but trigger has none")
                )
            tags.add(sanitize_tag(schedule_pattern.replace("{date}", date or "")))

    version: str | None = None
    if trigger.semver_tag is not None:
        parsed = parse_semver(trigger.semver_tag)
        if parsed is not None:
            tags.update(parsed.image_tags())
            version = parsed.full()

    sha_tag = sanitize_tag(sha_prefix + short_sha(trigger.commit_sha, sha_length))
    tags.add(sha_tag)

    labels: dict[str, str] = {
        LABEL_TITLE: image_name,
        LABEL_VERSION: version or ref_tag or sha_tag,
        LABEL_REVISION: trigger.commit_sha.lower(),
    }
    if description:
        labels[LABEL_DESCRIPTION] = description
    if source:
        labels[LABEL_SOURCE] = source

    return Ok(TagSet(tags=frozenset(tags), labels=labels))


def describe_labels(labels: Mapping[str, str]) -> list[str]:
    return [f"{key}={labels[key]}" for key in sorted(labels)]
