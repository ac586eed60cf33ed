"""Version parsing, bumping and ordering utilities.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0").
"""

from __future__ import annotations

import re

import semver

from .models import BumpKind

_LEADING_INT = re.compile(r"^\s*(\d+)")


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Full semver strings (including prerelease/build metadata) are parsed
    as-is. Incomplete versions are padded with zeros:
    - "1" → "1.0.0"
    - "1.2" → "1.2.0"
    - "v1.2.3" → "1.2.3"

    Raises:
        ValueError: If the string is not a version.
    """
    text = version_str.strip().removeprefix("v")
    if semver.Version.is_valid(text):
        return semver.Version.parse(text)
    parts = text.split(".")
    # Pad with zeros to ensure we have at least 3 parts
    while len(parts) < 3:
        parts.append("0")
    return semver.Version.parse(".".join(parts[:3]))


def is_valid_semver(version_str: str) -> bool:
    """True if the string is a complete semver version (no padding applied)."""
    return semver.Version.is_valid(version_str.strip())


def bump_version(version_str: str, kind: BumpKind) -> str:
    """Apply a bump kind and return the new version as a string.

    A prerelease is finalized when the finalized version already carries the
    requested bump (2.0.0-rc.1 + major → 2.0.0, 1.2.3-rc.1 + patch → 1.2.3),
    the same way npm's `semver.inc` treats prereleases.

    Examples:
        ("1.2.3", PATCH) → "1.2.4"
        ("1.2.3", MINOR) → "1.3.0"
        ("1.2.3", MAJOR) → "2.0.0"
        ("1.2.3", NONE) → "1.2.3"
    """
    v = parse_version(version_str)
    if kind is BumpKind.NONE:
        return str(v)
    if kind is BumpKind.MAJOR:
        if v.prerelease and v.minor == 0 and v.patch == 0:
            return str(v.finalize_version())
        return str(v.bump_major())
    if kind is BumpKind.MINOR:
        if v.prerelease and v.patch == 0:
            return str(v.finalize_version())
        return str(v.bump_minor())
    if v.prerelease:
        return str(v.finalize_version())
    return str(v.bump_patch())


def bump_between(old: str, new: str) -> BumpKind:
    """Infer the bump kind that leads from `old` to `new`.

    Used for explicit version overrides, where no classification happens.
    Returns NONE when `new` is not greater than `old`.
    """
    a, b = parse_version(old), parse_version(new)
    if b <= a:
        return BumpKind.NONE
    if b.major != a.major:
        return BumpKind.MAJOR
    if b.minor != a.minor:
        return BumpKind.MINOR
    return BumpKind.PATCH


def _segment(part: str) -> int:
    match = _LEADING_INT.match(part)
    return int(match.group(1)) if match else 0


def compare_versions(a: str, b: str) -> int:
    """Compare dot-separated versions component by component.

    Each segment is compared as an integer; a missing segment counts as 0
    and a non-numeric segment (or tail, as in "3-beta") is ignored. This is
    the ordering used for release tags.

    Returns:
        Negative if a < b, zero if equal, positive if a > b.

    Examples:
        compare_versions("1.10.0", "1.9.0") → positive
        compare_versions("1.0", "1.0.0") → 0
    """
    parts_a = a.split(".")
    parts_b = b.split(".")
    for i in range(max(len(parts_a), len(parts_b))):
        num_a = _segment(parts_a[i]) if i < len(parts_a) else 0
        num_b = _segment(parts_b[i]) if i < len(parts_b) else 0
        if num_a != num_b:
            return num_a - num_b
    return 0


def max_version(versions: list[str]) -> str:
    """Return the greatest version by semver precedence.

    Raises:
        ValueError: If `versions` is empty.
    """
    if not versions:
        raise ValueError("max_version() requires at least one version")
    return max(versions, key=parse_version)
