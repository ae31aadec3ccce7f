"""
Version parsing and comparison for release tags and lock-file versions.

Parses loose version strings (``v2.1``, ``3``, ``2.0.0-beta``) into numeric
components and classifies how far apart two versions are.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

# Numeric core with up to three components, optional "-suffix" after it
VERSION_PATTERN = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-(.+))?")

# Tag names that look like a release: v1, 1.2, v1.2.3, 1.2.3-beta
VERSION_TAG_PATTERN = re.compile(r"^v?\d+(\.\d+)*(-[\w.]+)?$")


class VersionChange(Enum):
    """Size of the step from one version to another."""

    NONE = "none"
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"


@dataclass(frozen=True)
class ParsedVersion:
    """Numeric view of a version string."""

    major: int = 0
    minor: int = 0
    patch: int = 0
    prerelease: Optional[str] = None

    @property
    def sort_key(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def is_prerelease(self) -> bool:
        return self.prerelease is not None

    def __str__(self) -> str:
        core = f"{self.major}.{self.minor}.{self.patch}"
        return f"{core}-{self.prerelease}" if self.prerelease else core


@dataclass(frozen=True)
class VersionDifference:
    """Result of comparing a current version against a candidate."""

    type: VersionChange
    current: ParsedVersion
    candidate: ParsedVersion

    @property
    def is_upgrade(self) -> bool:
        return self.type is not VersionChange.NONE


def strip_version_prefix(raw: str) -> str:
    """Remove surrounding whitespace and a single leading ``v``/``V``."""
    cleaned = (raw or "").strip()
    if cleaned[:1] in ("v", "V"):
        cleaned = cleaned[1:]
    return cleaned


def parse_version(raw: str) -> ParsedVersion:
    """
    Parse a version-like string.

    Missing minor/patch components are zero-filled. A ``-suffix`` directly
    after the numeric core is kept verbatim as the prerelease tag. Strings
    that do not start with a digit (after an optional ``v``) parse to
    ``0.0.0`` without prerelease.

    Args:
        raw: Version string such as ``v2.1`` or ``2.0.0-rc1``

    Returns:
        ParsedVersion: Parsed components, never raises
    """
    if not isinstance(raw, str):
        return ParsedVersion()

    match = VERSION_PATTERN.match(strip_version_prefix(raw))
    if not match:
        return ParsedVersion()

    major, minor, patch, prerelease = match.groups()
    return ParsedVersion(
        major=int(major),
        minor=int(minor or 0),
        patch=int(patch or 0),
        prerelease=prerelease,
    )


def is_version_tag(name: str) -> bool:
    """Check whether a tag name is shaped like a release version."""
    return bool(name) and bool(VERSION_TAG_PATTERN.match(name.strip()))


def compare_versions(current: str, candidate: str) -> VersionDifference:
    """
    Classify the change from ``current`` to ``candidate``.

    Only upgrades are reported: when the candidate is numerically lower the
    result is ``none``. For numerically equal versions, moving from a
    prerelease to its stable release counts as a patch; moving into or
    between prereleases never counts.

    Args:
        current: Version currently in use
        candidate: Version that might replace it

    Returns:
        VersionDifference: Change type plus both parsed versions
    """
    a = parse_version(current)
    b = parse_version(candidate)

    if b.sort_key > a.sort_key:
        if b.major != a.major:
            change = VersionChange.MAJOR
        elif b.minor != a.minor:
            change = VersionChange.MINOR
        else:
            change = VersionChange.PATCH
    elif b.sort_key == a.sort_key and a.is_prerelease and not b.is_prerelease:
        change = VersionChange.PATCH
    else:
        change = VersionChange.NONE

    return VersionDifference(type=change, current=a, candidate=b)
