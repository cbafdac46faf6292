from __future__ import annotations

import re
from dataclasses import dataclass

__all__ = ["SemVer", "parse_semver"]


_SEMVER_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


@dataclass(frozen=True, slots=True)
class SemVer:
    major: int
    minor: int
    patch: int
    prerelease: str | None = None

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None

    def full(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.prerelease}" if self.prerelease else base

    def major_minor(self) -> str:
        return f"{self.major}.{self.minor}"

    def image_tags(self) -> tuple[str, ...]:
        """Tags a version publishes under; pre-releases never move MAJOR/MINOR."""
        if self.is_prerelease:
            return (self.full(),)
        return (self.full(), self.major_minor(), str(self.major))


def parse_semver(value: str) -> SemVer | None:
    """Parse ``1.2.3``, ``v1.2.3`` or ``1.2.3-beta.1``. Build metadata is dropped."""
    m = _SEMVER_RE.match(value.strip())
    if m is None:
        return None
    return SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3)), m.group(4))
