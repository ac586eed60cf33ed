"""Commit log parsing, filtering and conventional-commit classification.

Everything in this module is pure: it works on text and `Commit` values so
that version and changelog logic can be tested without a git repository.
The git-facing reader lives in `pubflow.history`.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from .models import BumpKind, Commit, CommitClassification, CommitKind

# Record separator / unit separator delimit commits and the file list.
# Used together with `git log --name-only`.
LOG_FORMAT = "%x1e%H%n%aI%n%s%n%b%x1f"
_RECORD_SEP = "\x1e"
_FILES_SEP = "\x1f"

_HEADER = re.compile(
    r"^(?P<type>[A-Za-z]+)(?:\((?P<scope>[^()]*)\))?(?P<bang>!)?:\s*(?P<description>.+)$"
)
_BREAKING_MARKER = re.compile(r"BREAKING[ -]CHANGE:")

FEATURE_TYPES = frozenset({"feat", "feature"})
FIX_TYPES = frozenset({"fix", "perf"})
CHORE_TYPES = frozenset(
    {"chore", "docs", "style", "refactor", "test", "tests", "build", "ci", "revert"}
)

_KIND_TO_BUMP = {
    CommitKind.BREAKING: BumpKind.MAJOR,
    CommitKind.FEATURE: BumpKind.MINOR,
    CommitKind.FIX: BumpKind.PATCH,
    CommitKind.CHORE: BumpKind.NONE,
    CommitKind.OTHER: BumpKind.NONE,
}


def parse_log(output: str) -> list[Commit]:
    """Parse `git log --format=LOG_FORMAT --name-only` output into commits.

    Malformed records (missing hash, date or subject) are skipped rather
    than raising. Order is preserved, so git's newest-first order carries
    through.
    """
    commits: list[Commit] = []
    for record in output.split(_RECORD_SEP)[1:]:
        header, _, files_blob = record.partition(_FILES_SEP)
        lines = header.split("\n")
        if len(lines) < 3:
            continue
        hash_, date, subject = (line.strip() for line in lines[:3])
        if not (hash_ and date and subject):
            continue
        body = "\n".join(lines[3:]).strip()
        files = frozenset(f.strip() for f in files_blob.splitlines() if f.strip())
        commits.append(
            Commit(
                hash=hash_,
                authored_date=date,
                subject=subject,
                body=body,
                changed_files=files,
            )
        )
    return commits


class CommitFilter(BaseModel):
    """Selects the commits that belong to one package.

    The two predicates are combined with OR:
    - a changed file lies under `package_path` (relative to the repo root)
    - the subject or body contains the literal marker `(<package_name>)`

    With neither field set, every commit matches.
    """

    model_config = ConfigDict(frozen=True)

    package_path: str | None = None
    package_name: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.package_path and not self.package_name

    def matches_path(self, commit: Commit) -> bool:
        if not self.package_path:
            return False
        path = self.package_path.strip("/")
        if path in ("", "."):
            return bool(commit.changed_files)
        prefix = path + "/"
        return any(f == path or f.startswith(prefix) for f in commit.changed_files)

    def matches_name(self, commit: Commit) -> bool:
        if not self.package_name:
            return False
        marker = f"({self.package_name})"
        return marker in commit.subject or marker in commit.body

    def matches(self, commit: Commit) -> bool:
        if self.is_empty:
            return True
        return self.matches_path(commit) or self.matches_name(commit)


def filter_commits(commits: Iterable[Commit], commit_filter: CommitFilter | None) -> list[Commit]:
    """Apply a CommitFilter, keeping the input order."""
    if commit_filter is None or commit_filter.is_empty:
        return list(commits)
    return [c for c in commits if commit_filter.matches(c)]


def classify(commit: Commit) -> CommitClassification:
    """Classify a commit from its conventional-commit header and body.

    Precedence: a breaking-change marker (`BREAKING CHANGE:` in the body, or
    `!` before the colon) beats the type, and the type beats "other".
    Non-conventional subjects are classified as OTHER with the whole subject
    as description.
    """
    match = _HEADER.match(commit.subject)
    breaking = bool(_BREAKING_MARKER.search(commit.body))
    if not match:
        kind = CommitKind.BREAKING if breaking else CommitKind.OTHER
        return CommitClassification(kind=kind, description=commit.subject)

    commit_type = match.group("type").lower()
    scope = match.group("scope") or None
    description = match.group("description").strip()

    if breaking or match.group("bang"):
        kind = CommitKind.BREAKING
    elif commit_type in FEATURE_TYPES:
        kind = CommitKind.FEATURE
    elif commit_type in FIX_TYPES:
        kind = CommitKind.FIX
    elif commit_type in CHORE_TYPES:
        kind = CommitKind.CHORE
    else:
        kind = CommitKind.OTHER
    return CommitClassification(kind=kind, type=commit_type, scope=scope, description=description)


def bump_for_kind(kind: CommitKind) -> BumpKind:
    return _KIND_TO_BUMP[kind]


def bump_for(commits: Iterable[Commit]) -> BumpKind:
    """Maximum bump kind over a set of commits (NONE when empty)."""
    best = BumpKind.NONE
    for commit in commits:
        bump = bump_for_kind(classify(commit).kind)
        if bump.rank > best.rank:
            best = bump
            if best is BumpKind.MAJOR:
                break
    return best
