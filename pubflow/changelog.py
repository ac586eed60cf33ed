"""Changelog synthesis, merging and validation.

Two output formats are supported:

- conventional: sections grouped by commit type (Features, Bug Fixes, ...)
- keep-a-changelog: the Added / Changed / Fixed / ... headers of
  https://keepachangelog.com, with an `Unreleased` holding area

Both use the same version heading, `## [<version>] - <YYYY-MM-DD>`, so a
changelog can switch format without breaking version lookup.

Merging is idempotent: a section for a version that is already present is
replaced in place, never duplicated. Nothing here touches the filesystem.
"""

from __future__ import annotations

import difflib
import re
from collections.abc import Iterable
from datetime import date as Date
from typing import NamedTuple

from .commits import classify
from .errors import ChangelogValidationError
from .models import ChangelogEntry, ChangelogFormat, Commit, CommitKind, RangeUpdate
from .versions import is_valid_semver

UNRELEASED = "Unreleased"
DEPENDENCIES = "Dependencies"

CONVENTIONAL_GROUPS = {
    CommitKind.BREAKING: "Breaking Changes",
    CommitKind.FEATURE: "Features",
    CommitKind.FIX: "Bug Fixes",
    CommitKind.CHORE: "Chores",
    CommitKind.OTHER: "Other Changes",
}
CONVENTIONAL_ORDER = [
    "Breaking Changes",
    "Features",
    "Bug Fixes",
    DEPENDENCIES,
    "Chores",
    "Other Changes",
]

# Chores are internal and are left out of keep-a-changelog files
KEEP_A_CHANGELOG_GROUPS = {
    CommitKind.BREAKING: "Changed",
    CommitKind.FEATURE: "Added",
    CommitKind.FIX: "Fixed",
    CommitKind.OTHER: "Changed",
}
KEEP_A_CHANGELOG_ORDER = ["Added", "Changed", "Deprecated", "Removed", "Fixed", "Security"]

_TITLE = "# Changelog"
_INTRO = "All notable changes to this project will be documented in this file."
_KEEP_A_CHANGELOG_INTRO = (
    "The format is based on [Keep a Changelog](https://keepachangelog.com/en/1.1.0/),\n"
    "and this project adheres to [Semantic Versioning](https://semver.org/spec/v2.0.0.html)."
)

_SECTION_HEADING = re.compile(r"^##\s+\[?(?P<version>[^\]\s]+)\]?(?:\s+-\s+(?P<date>\S+))?")


class _Section(NamedTuple):
    heading: str
    lines: list[str]

    @property
    def version(self) -> str | None:
        match = _SECTION_HEADING.match(self.heading)
        return match.group("version") if match else None

    @property
    def date(self) -> str | None:
        match = _SECTION_HEADING.match(self.heading)
        return match.group("date") if match else None

    @property
    def is_unreleased(self) -> bool:
        return (self.version or "").lower() == UNRELEASED.lower()

    def text(self) -> str:
        return "\n".join([self.heading, *self.lines]).strip()


def _split(content: str) -> tuple[str, list[_Section]]:
    """Split a changelog into its preamble and `## ` sections."""
    preamble: list[str] = []
    sections: list[_Section] = []
    in_fence = False
    for line in content.splitlines():
        if line.lstrip().startswith("```"):
            in_fence = not in_fence
        if not in_fence and line.startswith("## "):
            sections.append(_Section(line.rstrip(), []))
        elif sections:
            sections[-1].lines.append(line)
        else:
            preamble.append(line)
    return "\n".join(preamble), sections


def _join(preamble: str, sections: list[str]) -> str:
    parts = [preamble.strip()] if preamble.strip() else []
    parts.extend(s.strip() for s in sections)
    return "\n\n".join(parts) + "\n"


def _same_version(a: str | None, b: str) -> bool:
    return a is not None and a.lstrip("v") == b.lstrip("v")


def new_changelog(fmt: ChangelogFormat) -> str:
    """Skeleton of a fresh changelog file in the given format."""
    if fmt is ChangelogFormat.KEEP_A_CHANGELOG:
        return f"{_TITLE}\n\n{_INTRO}\n\n{_KEEP_A_CHANGELOG_INTRO}\n\n## [{UNRELEASED}]\n"
    return f"{_TITLE}\n\n{_INTRO}\n"


def format_commit(commit: Commit, repository_url: str | None = None) -> str:
    """Render one commit as a changelog bullet.

    Example:
        "- **api:** handle null response ([abc1234](https://host/repo/commit/abc1234...))"
    """
    info = classify(commit)
    scope = f"**{info.scope}:** " if info.scope else ""
    if repository_url:
        ref = f"[{commit.short_hash}]({repository_url.rstrip('/')}/commit/{commit.hash})"
    else:
        ref = commit.short_hash
    return f"- {scope}{info.description} ({ref})"


def format_dependency_update(update: RangeUpdate) -> str:
    return f"- Updated dependency `{update.dependency}` to `{update.new_range}`"


def group_order(fmt: ChangelogFormat) -> list[str]:
    if fmt is ChangelogFormat.KEEP_A_CHANGELOG:
        return KEEP_A_CHANGELOG_ORDER
    return CONVENTIONAL_ORDER


def _group_for(kind: CommitKind, fmt: ChangelogFormat) -> str | None:
    if fmt is ChangelogFormat.KEEP_A_CHANGELOG:
        return KEEP_A_CHANGELOG_GROUPS.get(kind)
    return CONVENTIONAL_GROUPS[kind]


def build_entry(
    version: str,
    commits: Iterable[Commit],
    fmt: ChangelogFormat,
    *,
    date: str | None = None,
    dependency_updates: Iterable[RangeUpdate] = (),
    repository_url: str | None = None,
) -> ChangelogEntry:
    """Group classified commits into a changelog entry.

    Args:
        version: Version the entry describes.
        commits: Commits in the release, newest first.
        fmt: Target changelog format (decides group names).
        date: Release date; defaults to today.
        dependency_updates: Workspace dependency ranges changed by the
            release, listed under Dependencies (conventional) or Changed.
        repository_url: Base URL used to link commit hashes.
    """
    sections: dict[str, list[str]] = {}
    for commit in commits:
        info = classify(commit)
        group = _group_for(info.kind, fmt)
        if group is None:
            continue
        line = format_commit(commit, repository_url)
        if info.kind is CommitKind.BREAKING and fmt is ChangelogFormat.KEEP_A_CHANGELOG:
            line = line.replace("- ", "- **BREAKING:** ", 1)
        sections.setdefault(group, []).append(line)

    dep_group = "Changed" if fmt is ChangelogFormat.KEEP_A_CHANGELOG else DEPENDENCIES
    for update in dependency_updates:
        sections.setdefault(dep_group, []).append(format_dependency_update(update))

    order = group_order(fmt)
    ordered = {g: sections[g] for g in order if g in sections}
    return ChangelogEntry(
        version=version,
        date=date or Date.today().isoformat(),
        sections=ordered,
    )


def render(entry: ChangelogEntry, fmt: ChangelogFormat) -> str:
    """Render an entry as a `## [version] - date` section."""
    lines = [f"## [{entry.version}] - {entry.date}"]
    order = group_order(fmt)
    groups = [g for g in order if entry.sections.get(g)]
    groups += [g for g in entry.sections if g not in order and entry.sections[g]]
    for group in groups:
        lines += ["", f"### {group}", "", *entry.sections[group]]
    if not groups:
        lines += ["", "No notable changes."]
    return "\n".join(lines) + "\n"


def merge(existing: str | None, entry: ChangelogEntry, fmt: ChangelogFormat) -> str:
    """Insert or replace the section for `entry.version`.

    An existing section for the same version is replaced in place. A new
    section goes directly below Unreleased if present, else at the top.
    An empty or missing changelog starts from `new_changelog(fmt)`.
    """
    if not existing or not existing.strip():
        existing = new_changelog(fmt)
    preamble, sections = _split(existing)
    rendered = render(entry, fmt)
    texts = [s.text() for s in sections]

    for i, section in enumerate(sections):
        if _same_version(section.version, entry.version):
            texts[i] = rendered
            break
    else:
        position = next((i + 1 for i, s in enumerate(sections) if s.is_unreleased), 0)
        texts.insert(position, rendered)
    return _join(preamble, texts)


def _unreleased(content: str) -> _Section | None:
    _, sections = _split(content)
    return next((s for s in sections if s.is_unreleased), None)


def extract_unreleased(content: str | None) -> list[str]:
    """Lines of the Unreleased section (sub-headings and blanks dropped)."""
    if not content:
        return []
    section = _unreleased(content)
    if section is None:
        return []
    return [line.strip() for line in section.lines if line.strip() and not line.startswith("#")]


def _unreleased_groups(section: _Section, fmt: ChangelogFormat) -> dict[str, list[str]]:
    default = "Changed" if fmt is ChangelogFormat.KEEP_A_CHANGELOG else "Other Changes"
    groups: dict[str, list[str]] = {}
    current = default
    for line in section.lines:
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("### "):
            current = stripped[4:].strip()
            continue
        groups.setdefault(current, []).append(stripped)
    return groups


def promote_unreleased(
    content: str | None, entry: ChangelogEntry, fmt: ChangelogFormat
) -> tuple[ChangelogEntry, str | None]:
    """Fold Unreleased notes into a release entry and clear Unreleased.

    Notes keep their `### Group`; loose lines go to Changed (keep-a-changelog)
    or Other Changes (conventional). Lines already present in the entry are
    not repeated. The Unreleased heading itself is kept, empty.

    Returns:
        The augmented entry and the changelog content with Unreleased cleared
        (`content` unchanged when there is nothing to promote).
    """
    if not content:
        return entry, content
    section = _unreleased(content)
    if section is None:
        return entry, content
    notes = _unreleased_groups(section, fmt)
    if not notes:
        return entry, content

    sections = {group: list(lines) for group, lines in entry.sections.items()}
    for group, lines in notes.items():
        target = sections.setdefault(group, [])
        target.extend(line for line in lines if line not in target)
    promoted = entry.model_copy(update={"sections": sections})

    preamble, parsed = _split(content)
    texts = [s.heading if s.is_unreleased else s.text() for s in parsed]
    return promoted, _join(preamble, texts)


def add_to_unreleased(content: str | None, lines: Iterable[str], fmt: ChangelogFormat) -> str:
    """Append lines to the Unreleased section, creating it if needed.

    Lines already present anywhere in Unreleased are skipped, so re-running
    an update with the same commits is a no-op.
    """
    if not content or not content.strip():
        content = new_changelog(fmt)
    preamble, sections = _split(content)
    index = next((i for i, s in enumerate(sections) if s.is_unreleased), None)
    if index is None:
        sections.insert(0, _Section(f"## [{UNRELEASED}]", []))
        index = 0

    section = sections[index]
    present = {line.strip() for line in section.lines}
    body = list(section.lines)
    new_lines = [line for line in lines if line.strip() not in present]
    while body and not body[-1].strip():
        body.pop()
    if new_lines:
        if not body:
            body.append("")
        body.extend(new_lines)
    sections[index] = _Section(section.heading, body)
    return _join(preamble, [s.text() for s in sections])


def latest_version(content: str | None) -> str | None:
    """Version of the topmost released section, or None."""
    if not content:
        return None
    _, sections = _split(content)
    for section in sections:
        if section.version and not section.is_unreleased:
            return section.version
    return None


def validate(
    content: str | None,
    fmt: ChangelogFormat,
    *,
    required: bool = True,
    path: str | None = None,
) -> None:
    """Check a changelog's structure without modifying it.

    Raises:
        ChangelogValidationError: Listing every problem found: missing file
            (when required), missing title, missing Unreleased section
            (keep-a-changelog), or a latest version heading that is not
            valid semver or lacks an ISO date.
    """
    if content is None or not content.strip():
        if required:
            raise ChangelogValidationError(["changelog file is missing or empty"], path=path)
        return

    problems: list[str] = []
    preamble, sections = _split(content)
    if not any(line.startswith("# ") for line in preamble.splitlines()):
        problems.append(f"missing top-level title (expected '{_TITLE}')")
    if fmt is ChangelogFormat.KEEP_A_CHANGELOG and not any(s.is_unreleased for s in sections):
        problems.append(f"missing '## [{UNRELEASED}]' section required by keep-a-changelog")

    latest = next((s for s in sections if not s.is_unreleased), None)
    if latest is not None:
        version = latest.version or ""
        if not is_valid_semver(version.lstrip("v")):
            problems.append(f"latest version heading {latest.heading!r} is not valid semver")
        try:
            Date.fromisoformat(latest.date or "")
        except ValueError:
            problems.append(f"latest version heading {latest.heading!r} has no ISO date")

    if problems:
        raise ChangelogValidationError(problems, path=path)


def diff(old: str | None, new: str, path: str) -> str:
    """Unified diff between two changelog versions, for dry-run reports."""
    return "".join(
        difflib.unified_diff(
            (old or "").splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        )
    )
