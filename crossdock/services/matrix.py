"""Target matrix expansion.

Turns the declared target rows into one independent build job per row. The
expansion is all-or-nothing: a single malformed row rejects the whole matrix
so that no run ever builds a silently shortened matrix. Nothing here touches
the filesystem or the network.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from crossdock.core.config import TargetConfig
from crossdock.core.result import Err, Ok, Result
from crossdock.services.errors import ConfigurationError
from crossdock.services.model import BuildJob, BuildMode, TargetSpec
from crossdock.services.toolchains import CARGO_PROFILE, ToolchainProfile

__all__ = ["expand_matrix", "specs_from_config", "select_targets"]


def specs_from_config(targets: Iterable[TargetConfig]) -> tuple[TargetSpec, ...]:
    return tuple(
        TargetSpec(triple=t.triple, build_flags=t.flags, run_environment=t.runs_on)
        for t in targets
    )


def _validate(
    index: int, spec: TargetSpec, seen: set[str], profile: ToolchainProfile
) -> ConfigurationError | None:
    triple = spec.triple
    if not triple.strip():
        return ConfigurationError(message="empty target triple", target=f"targets[{index}]")
    if triple != triple.strip() or any(ch.isspace() for ch in triple):
        return ConfigurationError(message=f"invalid target triple: {triple!r}", target=triple)
    if triple in seen:
        return ConfigurationError(message=f"duplicate target triple: {triple}", target=triple)
    if not spec.run_environment.strip():
        return ConfigurationError(message="empty run environment", target=triple)

    conflict = profile.conflicting_flag(spec.build_flags)
    if conflict is not None:
        return ConfigurationError(
            message=(
                f"build flag '{conflict}' contradicts the {profile.name} profile "
                "(mode, target and output dir are set per run)"
            ),
            target=triple,
        )
    return None


def expand_matrix(
    specs: Sequence[TargetSpec],
    *,
    mode: BuildMode,
    profile: ToolchainProfile = CARGO_PROFILE,
) -> Result[tuple[BuildJob, ...], ConfigurationError]:
    """Expand target rows into build jobs, in declaration order.

    Every job carries the same ``mode``.

    Returns:
        Ok(jobs) with exactly one job per row, or Err on the first bad row.
    """
    if not specs:
        return Err(ConfigurationError(message="target matrix is empty"))

    seen: set[str] = set()
    jobs: list[BuildJob] = []
    for index, spec in enumerate(specs):
        error = _validate(index, spec, seen, profile)
        if error is not None:
            return Err(error)
        seen.add(spec.triple)
        jobs.append(BuildJob(spec=spec, mode=mode))
    return Ok(tuple(jobs))


def select_targets(
    specs: Sequence[TargetSpec], only: Sequence[str]
) -> Result[tuple[TargetSpec, ...], ConfigurationError]:
    """Keep the rows named in ``only`` (all rows if it is empty)."""
    if not only:
        return Ok(tuple(specs))

    declared = {spec.triple for spec in specs}
    unknown = [triple for triple in only if triple not in declared]
    if unknown:
        return Err(
            ConfigurationError(
                message=f"unknown target(s): {', '.join(unknown)}",
                target=unknown[0],
            )
        )
    wanted = set(only)
    return Ok(tuple(spec for spec in specs if spec.triple in wanted))
