"""Declared dependency ranges: satisfaction checks and rewriting.

Two dialects are understood:

- npm-style semver ranges: `^1.2.3`, `~1.2.3`, `1.2.3`, `=1.2.3`,
  comparators (`>=1.0.0 <2.0.0`), hyphen ranges (`1.0.0 - 2.0.0`),
  x-ranges (`1.x`, `*`), unions (`||`) and the `workspace:` protocol.
- PEP 440 specifier sets (`==1.2.3`, `~=1.2`, `>=1.0,<2.0`), evaluated
  with `packaging`.

Ranges that are not version ranges at all (`file:../a`, git URLs, npm
aliases) are left alone: they always "satisfy" and are never rewritten.
"""

from __future__ import annotations

import re

import semver
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .models import RangePolicy
from .versions import parse_version

_PEP440_PREFIXES = ("===", "==", "~=", "!=")
_UNMANAGED_PREFIXES = ("file:", "link:", "portal:", "npm:", "git+", "git:", "http:", "https:", "github:")
_WORKSPACE = "workspace:"
_ANY = {"", "*", "x", "X", "latest"}
_COMPARATOR = re.compile(r"^(?P<op>\^|~|>=|<=|>|<|=)?\s*v?(?P<version>[0-9xX*][0-9A-Za-z.*+-]*)$")
_OPERATOR = re.compile(r"^(\^|~=|~|>=|<=|>|<|===|==|=|!=)")


def is_unmanaged(declared: str) -> bool:
    return declared.strip().startswith(_UNMANAGED_PREFIXES)


def is_pep440(declared: str) -> bool:
    text = declared.strip()
    return "," in text or text.startswith(_PEP440_PREFIXES)


def _partial(token: str) -> tuple[semver.Version, int]:
    """Lower bound of a possibly partial version and how many parts it fixes.

    "1.2.3" → (1.2.3, 3), "1.2.x" → (1.2.0, 2), "1" → (1.0.0, 1), "*" → (0.0.0, 0)
    """
    numbers: list[int] = []
    for part in token.split(".")[:3]:
        if part in ("x", "X", "*"):
            break
        match = re.match(r"\d+", part)
        if not match:
            raise ValueError(f"Unsupported version in range: {token!r}")
        numbers.append(int(match.group()))
    if len(numbers) == 3:
        return parse_version(token), 3
    return semver.Version(*(numbers + [0] * (3 - len(numbers)))), len(numbers)


def _ceiling(lower: semver.Version, fixed: int) -> semver.Version | None:
    """Exclusive upper bound of an x-range (None when every part is free)."""
    if fixed == 0:
        return None
    if fixed == 1:
        return lower.bump_major()
    if fixed == 2:
        return lower.bump_minor()
    return lower.bump_patch()


def _comparator_ok(op: str, token: str, v: semver.Version) -> bool:
    lower, fixed = _partial(token)
    if op == "^":
        if fixed == 0:
            return True
        if lower.major > 0 or fixed == 1:
            ceiling = lower.bump_major()
        elif lower.minor > 0 or fixed == 2:
            ceiling = lower.bump_minor()
        else:
            ceiling = lower.bump_patch()
        return lower <= v < ceiling
    if op == "~":
        if fixed == 0:
            return True
        ceiling = lower.bump_major() if fixed == 1 else lower.bump_minor()
        return lower <= v < ceiling
    ceiling = _ceiling(lower, fixed)
    if op in ("", "="):
        if fixed == 3:
            return v == lower
        return lower <= v and (ceiling is None or v < ceiling)
    if op == ">=":
        return v >= lower
    if op == ">":
        if fixed == 3:
            return v > lower
        return ceiling is not None and v >= ceiling
    if op == "<":
        return v < lower
    if op == "<=":
        if fixed == 3:
            return v <= lower
        return ceiling is None or v < ceiling
    raise ValueError(f"Unknown range operator: {op}")


def _npm_satisfies(declared: str, v: semver.Version) -> bool:
    for alternative in declared.split("||"):
        alternative = alternative.strip()
        if alternative in _ANY:
            return True
        hyphen = re.match(r"^(\S+)\s+-\s+(\S+)$", alternative)
        if hyphen:
            if _comparator_ok(">=", hyphen.group(1), v) and _comparator_ok("<=", hyphen.group(2), v):
                return True
            continue
        # Operators may be separated from their version by spaces (">= 1.0.0")
        tokens = re.sub(r"(\^|~|>=|<=|>|<|=)\s+", r"\1", alternative).split()
        ok = True
        for token in tokens:
            match = _COMPARATOR.match(token)
            if not match:
                raise ValueError(f"Unsupported version range: {declared!r}")
            if not _comparator_ok(match.group("op") or "", match.group("version"), v):
                ok = False
                break
        if ok:
            return True
    return False


def satisfies(declared: str, version: str, *, pep440: bool | None = None) -> bool:
    """True if `version` is admitted by the declared range.

    `pep440` selects the dialect; None guesses it from the range's operator.

    Raises:
        ValueError: If the range looks like a version range but cannot be parsed.
    """
    text = declared.strip()
    if is_unmanaged(text):
        return True
    if text.startswith(_WORKSPACE):
        text = text[len(_WORKSPACE):]
        if text in ("^", "~", "*"):
            return True
    if pep440 is None:
        pep440 = is_pep440(text)
    if pep440:
        try:
            return SpecifierSet(text).contains(Version(version), prereleases=True)
        except (InvalidSpecifier, InvalidVersion) as exc:
            raise ValueError(f"Unsupported version range: {declared!r}") from exc
    return _npm_satisfies(text, parse_version(version))


def _is_single_comparator(text: str, pep440: bool) -> bool:
    if pep440:
        return "," not in text
    return "||" not in text and len(text.split()) == 1 and " - " not in text


def update_range(
    declared: str, version: str, policy: RangePolicy, *, pep440: bool | None = None
) -> str:
    """Rewrite a declared range so that it admits `version`.

    - PIN: an exact version (`2.0.0`, or `==2.0.0` for PEP 440 ranges).
    - PRESERVE: keep the operator of a single-comparator range
      (`^1.0.0` → `^2.0.0`, `~=1.2` → `~=2.0.0`). Wildcards, unmanaged
      and bare `workspace:` ranges are returned unchanged. Compound ranges are
      kept if they already admit the version.

    Whatever the policy, the result always admits `version`; a preserved
    candidate that would not (e.g. `<2.0.0`) falls back to an exact pin.

    `pep440` selects the dialect. Manifests that hold PEP 508 requirement
    strings must pass True: `>=1.0` and a bare name are PEP 440 too, and an
    exact pin there is `==2.0.0`. None guesses from the range's operator.
    """
    text = declared.strip()
    if is_unmanaged(text):
        return declared

    workspace = text.startswith(_WORKSPACE)
    if workspace:
        text = text[len(_WORKSPACE):]
        if text in ("^", "~", "*"):
            return declared

    pep = is_pep440(text) if pep440 is None else pep440
    pinned = f"=={version}" if pep else version

    if policy is RangePolicy.PIN:
        result = pinned
    elif text in _ANY and not (pep and text):
        result = text
    elif _is_single_comparator(text, pep):
        match = _OPERATOR.match(text)
        op = match.group(1) if match else ""
        result = f"{op}{version}"
        if not op or not satisfies(result, version, pep440=pep):
            result = pinned
    else:
        result = text if satisfies(text, version, pep440=pep) else pinned

    return f"{_WORKSPACE}{result}" if workspace else result
