"""Trigger metadata from the CI environment or explicit options.

The version-control collaborator is modelled on GitHub Actions: the event
name, ref and sha come from ``GITHUB_*`` variables and the event payload
(``GITHUB_EVENT_PATH``) supplies the pull request number and the
repository's default branch.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path

from crossdock.core.result import Err, Ok, Result
from crossdock.core.structured import as_str_dict, get_int, get_str, get_table
from crossdock.services.errors import ConfigurationError
from crossdock.services.model import (
    BuildMode,
    PullRequest,
    Push,
    Schedule,
    TriggerEvent,
    TriggerMetadata,
)
from crossdock.services.semver import parse_semver

__all__ = [
    "EVENT_NAMES",
    "build_mode_for",
    "make_trigger",
    "trigger_from_env",
]

EVENT_NAMES = ("push", "pull_request", "schedule")

_PR_REF_RE = re.compile(r"^refs/pull/(\d+)/")


def _schedule_date(now: datetime | None) -> str:
    return (now or datetime.now(UTC)).strftime("%Y%m%d")


def make_trigger(
    *,
    event: str,
    sha: str,
    branch: str | None = None,
    pr_number: int | None = None,
    semver: str | None = None,
    default_branch: bool | None = None,
    date: str | None = None,
) -> Result[TriggerMetadata, ConfigurationError]:
    """Build trigger metadata from explicit values (CLI options, tests).

    When ``default_branch`` is None it is inferred: a push to ``main`` or
    ``master`` counts as the default branch.
    """
    kind: TriggerEvent
    match event:
        case "push":
            kind = Push(branch=branch)
        case "pull_request":
            if pr_number is None:
                return Err(ConfigurationError(message="pull_request trigger needs a PR number"))
            kind = PullRequest(number=pr_number, head_branch=branch)
        case "schedule":
            kind = Schedule(date=date)
        case _:
            return Err(
                ConfigurationError(
                    message=f"unknown event {event!r} (expected one of: {', '.join(EVENT_NAMES)})"
                )
            )

    if default_branch is None:
        default_branch = isinstance(kind, Push) and branch in {"main", "master"}

    return Ok(
        TriggerMetadata(
            event=kind,
            commit_sha=sha,
            is_default_branch=default_branch,
            semver_tag=semver,
        )
    )


def _load_payload(path: str | None) -> dict[str, object]:
    if not path:
        return {}
    try:
        data: object = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return as_str_dict(data) or {}


def trigger_from_env(
    env: Mapping[str, str] | None = None,
    *,
    now: datetime | None = None,
) -> Result[TriggerMetadata, ConfigurationError]:
    """Read trigger metadata from GitHub-Actions-style variables.

    Tag refs (``refs/tags/v1.2.3``) that parse as semantic versions become the
    trigger's semver tag; branch refs become the push branch.
    """
    env = os.environ if env is None else env

    event = env.get("GITHUB_EVENT_NAME", "")
    sha = env.get("GITHUB_SHA", "")
    if not event:
        return Err(ConfigurationError(message="GITHUB_EVENT_NAME is not set"))
    if not sha:
        return Err(ConfigurationError(message="GITHUB_SHA is not set"))

    ref = env.get("GITHUB_REF", "")
    ref_name = env.get("GITHUB_REF_NAME", "")
    payload = _load_payload(env.get("GITHUB_EVENT_PATH"))
    repository = get_table(payload, "repository") or {}
    default_name = get_str(repository, "default_branch")

    branch: str | None = None
    semver: str | None = None
    pr_number: int | None = None

    if ref.startswith("refs/heads/"):
        branch = ref.removeprefix("refs/heads/")
    elif ref.startswith("refs/tags/"):
        tag = ref.removeprefix("refs/tags/")
        if parse_semver(tag) is not None:
            semver = tag
    elif ref_name and not ref.startswith("refs/pull/"):
        branch = ref_name

    if event == "pull_request":
        pull = get_table(payload, "pull_request") or {}
        pr_number = get_int(payload, "number") or get_int(pull, "number")
        if pr_number is None:
            m = _PR_REF_RE.match(ref)
            if m is not None:
                pr_number = int(m.group(1))
        head = get_table(pull, "head") or {}
        branch = env.get("GITHUB_HEAD_REF") or get_str(head, "ref")

    default_branch = (
        event != "pull_request" and branch is not None and branch == default_name
        if default_name
        else None
    )

    return make_trigger(
        event=event,
        sha=sha,
        branch=branch,
        pr_number=pr_number,
        semver=semver,
        default_branch=default_branch,
        date=_schedule_date(now) if event == "schedule" else None,
    )


def build_mode_for(trigger: TriggerMetadata, release_branches: Sequence[str]) -> BuildMode:
    """Release for pushes to a release branch or a version tag, debug otherwise."""
    if trigger.semver_tag is not None:
        return BuildMode.RELEASE
    match trigger.event:
        case Push(branch=str() as branch):
            return BuildMode.from_release_flag(branch in release_branches)
        case _:
            return BuildMode.DEBUG
