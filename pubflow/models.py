"""Data models for pubflow.

These Pydantic models represent the core data structures used throughout
the release pipeline. Commits are frozen once read; plans and outcomes are
transient and only live for the duration of one run.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class BumpKind(str, Enum):
    """Severity of a version change, ordered by `rank`."""

    NONE = "none"
    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"

    @property
    def rank(self) -> int:
        return _BUMP_RANK[self]


_BUMP_RANK = {BumpKind.NONE: 0, BumpKind.PATCH: 1, BumpKind.MINOR: 2, BumpKind.MAJOR: 3}


class CommitKind(str, Enum):
    """Classification of a commit derived from its conventional-commit header."""

    BREAKING = "breaking"
    FEATURE = "feature"
    FIX = "fix"
    CHORE = "chore"
    OTHER = "other"


class BumpStrategy(str, Enum):
    """Whether packages are versioned separately or share one version."""

    INDEPENDENT = "independent"
    FIXED = "fixed"


class RangePolicy(str, Enum):
    """How a dependent's declared range is rewritten when a dependency bumps."""

    PIN = "pin"
    PRESERVE = "preserve"


class ChangelogFormat(str, Enum):
    CONVENTIONAL = "conventional"
    KEEP_A_CHANGELOG = "keep-a-changelog"


class ReleaseState(str, Enum):
    """Per-package release state machine. States only ever move forward."""

    PENDING = "pending"
    VALIDATED = "validated"
    VERSION_COMPUTED = "version-computed"
    CHANGELOG_WRITTEN = "changelog-written"
    COMMITTED = "committed"
    TAGGED = "tagged"
    PUSHED = "pushed"
    PUBLISHED = "published"
    DONE = "done"
    FAILED = "failed"


class Commit(BaseModel):
    """A single commit read from version-control history.

    Attributes:
        hash: Full commit hash.
        authored_date: Author date as emitted by git (ISO 8601).
        subject: First line of the commit message.
        body: Remaining message lines, or "" when there are none.
        changed_files: Paths (relative to the repo root) touched by the commit.
    """

    model_config = ConfigDict(frozen=True)

    hash: str
    authored_date: str
    subject: str
    body: str = ""
    changed_files: frozenset[str] = frozenset()

    @property
    def short_hash(self) -> str:
        return self.hash[:7]


class CommitClassification(BaseModel):
    """Result of classifying a commit. Derived, never stored."""

    model_config = ConfigDict(frozen=True)

    kind: CommitKind
    type: str | None = None
    scope: str | None = None
    description: str


class PackageInfo(BaseModel):
    """Metadata for a single package in the monorepo workspace.

    Attributes:
        name: Unique package name.
        path: Relative path from workspace root to the package directory.
        version: Current version string from the manifest.
        dependencies: Declared dependency name → version range, for every
            dependency in the manifest (internal and external).
        private: Private packages are versioned and tagged but never published.
    """

    name: str
    path: str
    version: str
    dependencies: dict[str, str] = Field(default_factory=dict)
    private: bool = False

    def internal_deps(self, workspace: set[str] | dict[str, PackageInfo]) -> list[str]:
        """Names of dependencies that are themselves workspace packages."""
        return [dep for dep in self.dependencies if dep in workspace and dep != self.name]


class BumpReason(BaseModel):
    """Why a package is in the plan set.

    `dependency` is set only for cascaded bumps.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["commits", "override", "fixed", "cascade"]
    dependency: str | None = None

    def describe(self) -> str:
        if self.kind == "cascade":
            return f"cascaded from dependency {self.dependency}"
        if self.kind == "override":
            return "explicit version override"
        if self.kind == "fixed":
            return "fixed versioning strategy"
        return "direct commits"


class RangeUpdate(BaseModel):
    """A rewritten declared range for one workspace dependency."""

    model_config = ConfigDict(frozen=True)

    dependency: str
    old_range: str
    new_range: str
    version: str


class VersionBumpPlan(BaseModel):
    """Planned version change for one package in one run."""

    model_config = ConfigDict(frozen=True)

    package: str
    from_version: str
    to_version: str
    bump: BumpKind
    reason: BumpReason
    dependency_updates: dict[str, RangeUpdate] = Field(default_factory=dict)


class ChangelogEntry(BaseModel):
    """One version section of a changelog.

    Attributes:
        version: Version the section describes.
        date: Release date (YYYY-MM-DD).
        sections: Group heading → rendered lines, in display order.
    """

    version: str
    date: str
    sections: dict[str, list[str]] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not any(self.sections.values())


class GitStatus(BaseModel):
    """Snapshot of `git status` for the working tree."""

    branch: str | None = None
    tracking: str | None = None
    ahead: int = 0
    behind: int = 0
    files: list[str] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.files


class DependencyUpdate(BaseModel):
    """An outdated dependency reported by the registry adapter."""

    name: str
    current_version: str
    latest_version: str
    is_workspace: bool = False


class ReleaseStepResult(BaseModel):
    """What one pipeline state did (or would do)."""

    state: ReleaseState
    ok: bool = True
    detail: str = ""


class DryRunReport(BaseModel):
    """Projection of a release that was not performed."""

    kind: Literal["dry-run"] = "dry-run"
    package: str
    from_version: str
    to_version: str
    bump: BumpKind
    reason: str
    tag: str
    will_commit: bool
    will_tag: bool
    will_push: bool
    will_publish: bool
    dependency_updates: list[RangeUpdate] = Field(default_factory=list)
    changelog_diff: str = ""
    steps: list[ReleaseStepResult] = Field(default_factory=list)


class ReleaseResult(BaseModel):
    """A release that ran to completion."""

    kind: Literal["released"] = "released"
    package: str
    from_version: str
    to_version: str
    tag: str | None = None
    pushed: bool = False
    published: bool = False
    steps: list[ReleaseStepResult] = Field(default_factory=list)


class ReleaseFailure(BaseModel):
    """A release that stopped in FAILED.

    Attributes:
        failed_at: The state that was being entered when the failure occurred.
        error: Message of the original cause.
        residual: Side effects left behind (empty when nothing was mutated
            or everything was rolled back).
        hint: How to finish or retry by hand.
        rolled_back: True when local changes were undone.
    """

    kind: Literal["failed"] = "failed"
    package: str
    from_version: str
    to_version: str | None = None
    failed_at: ReleaseState
    error: str
    residual: list[str] = Field(default_factory=list)
    hint: str | None = None
    rolled_back: bool = False
    steps: list[ReleaseStepResult] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.residual)


PackageOutcome = Annotated[
    Union[DryRunReport, ReleaseResult, ReleaseFailure],
    Field(discriminator="kind"),
]


class CheckResult(BaseModel):
    """Outcome of one named validation check."""

    name: str
    success: bool
    error: str | None = None
    duration: float = 0.0


class ValidationReport(BaseModel):
    """All check results for one package."""

    package: str
    results: list[CheckResult] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(not r.success for r in self.results)
