"""Version Resolver.

Turns classified commits into proposed versions, under either the
independent strategy (each package bumps from its own commits) or the fixed
strategy (every package moves to one shared version).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .commits import bump_for
from .errors import ConfigurationError
from .models import BumpKind, BumpReason, BumpStrategy, Commit, PackageInfo, VersionBumpPlan
from .versions import bump_between, bump_version, is_valid_semver, max_version


def propose_version(
    package: PackageInfo, commits: Iterable[Commit], override: str | None = None
) -> tuple[str, BumpKind]:
    """Compute the next version of one package.

    An explicit override wins and skips classification entirely. Otherwise
    the bump is the most severe classification among the commits; with no
    bump the current version is returned unchanged.

    Raises:
        ConfigurationError: If the override is not a valid semver version.
    """
    if override is not None:
        if not is_valid_semver(override):
            raise ConfigurationError(f"Invalid version override for {package.name}: {override!r}")
        return override, bump_between(package.version, override)
    bump = bump_for(commits)
    return bump_version(package.version, bump), bump


def _unique(commits: Iterable[Commit]) -> list[Commit]:
    seen: set[str] = set()
    unique: list[Commit] = []
    for commit in commits:
        if commit.hash not in seen:
            seen.add(commit.hash)
            unique.append(commit)
    return unique


class VersionResolver:
    """Builds the initial (pre-propagation) plan set for a run.

    Args:
        strategy: Independent or fixed versioning.
        log: Logger for per-package decisions.
    """

    def __init__(self, strategy: BumpStrategy, log: logging.Logger) -> None:
        self.strategy = strategy
        self.log = log

    def plan(
        self,
        packages: dict[str, PackageInfo],
        commits_by_package: dict[str, list[Commit]],
        overrides: dict[str, str] | None = None,
    ) -> list[VersionBumpPlan]:
        """Propose versions for the packages in `commits_by_package`.

        Args:
            packages: All workspace packages.
            commits_by_package: Commits since each target package's last
                release. Its keys are the release targets.
            overrides: Explicit package → version overrides.

        Returns:
            Plans for every package that changes version. Packages without
            a bump are left out; propagation may add them later.
        """
        overrides = overrides or {}
        unknown = sorted(set(overrides) - set(packages))
        if unknown:
            raise ConfigurationError(f"Version override for unknown package(s): {', '.join(unknown)}")

        if self.strategy is BumpStrategy.FIXED:
            return self._plan_fixed(packages, commits_by_package, overrides)

        plans: list[VersionBumpPlan] = []
        for name, commits in commits_by_package.items():
            info = packages[name]
            override = overrides.get(name)
            version, bump = propose_version(info, commits, override)
            if override is None and bump is BumpKind.NONE:
                self.log.info("  %s: no releasable commits", name)
                continue
            reason = BumpReason(kind="override" if override is not None else "commits")
            self.log.info("  %s: %s → %s (%s)", name, info.version, version, bump.value)
            plans.append(
                VersionBumpPlan(
                    package=name,
                    from_version=info.version,
                    to_version=version,
                    bump=bump,
                    reason=reason,
                )
            )
        # Overrides may name packages outside the target set
        for name, override in overrides.items():
            if name not in commits_by_package:
                version, bump = propose_version(packages[name], [], override)
                plans.append(
                    VersionBumpPlan(
                        package=name,
                        from_version=packages[name].version,
                        to_version=version,
                        bump=bump,
                        reason=BumpReason(kind="override"),
                    )
                )
        return plans

    def _plan_fixed(
        self,
        packages: dict[str, PackageInfo],
        commits_by_package: dict[str, list[Commit]],
        overrides: dict[str, str],
    ) -> list[VersionBumpPlan]:
        """One shared version: the highest current version bumped by the
        most severe classification across the whole commit set."""
        if not packages:
            return []
        all_commits = _unique(c for commits in commits_by_package.values() for c in commits)
        bump = bump_for(all_commits)
        base = max_version([info.version for info in packages.values()])
        shared = bump_version(base, bump)
        if bump is BumpKind.NONE:
            self.log.info("  No releasable commits across the workspace")
        else:
            self.log.info("  Fixed version: %s → %s (%s)", base, shared, bump.value)

        plans: list[VersionBumpPlan] = []
        for name in sorted(packages):
            info = packages[name]
            if name in overrides:
                version, kind = propose_version(info, [], overrides[name])
                reason = BumpReason(kind="override")
            elif bump is BumpKind.NONE:
                continue
            else:
                version, kind = shared, bump_between(info.version, shared)
                reason = BumpReason(kind="fixed")
            plans.append(
                VersionBumpPlan(
                    package=name,
                    from_version=info.version,
                    to_version=version,
                    bump=kind,
                    reason=reason,
                )
            )
        return plans
