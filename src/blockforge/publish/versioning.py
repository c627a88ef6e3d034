"""Semantic version increments."""

from __future__ import annotations

import re

from .models import VersionBump

_SEMVER = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)(?:[-+].*)?$")


def bump_version(version: str, bump: VersionBump) -> str:
    """Return ``version`` incremented by ``bump``; pre-release tags are dropped.

    Raises:
        ValueError: If ``version`` is not ``MAJOR.MINOR.PATCH``.
    """
    match = _SEMVER.match(version.strip())
    if match is None:
        raise ValueError(f"'{version}' is not a semantic version (expected MAJOR.MINOR.PATCH)")
    if bump is VersionBump.NONE:
        return version
    major, minor, patch = (int(match.group(part)) for part in ("major", "minor", "patch"))
    if bump is VersionBump.MAJOR:
        return f"{major + 1}.0.0"
    if bump is VersionBump.MINOR:
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


__all__ = ["bump_version"]
