"""Pre-release checks.

Each check is named (see `Check`) and either passes silently or raises
`ValidationError` with remediation text. Checks never mutate anything.

Repository checks (clean tree, branch, upstream) look at the working copy
and run once per batch. Package checks run once per package against its
proposed version.

Selection: an explicit include-list (`--only`) overrides the exclude-list
(`--skip` and `[tool.pubflow.checks].skip`).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from enum import Enum

from . import changelog
from .adapters import RegistryAdapter, VersionControlAdapter
from .config import ReleaseConfig
from .errors import ConfigurationError, ExternalCommandError, ValidationError
from .models import ChangelogFormat, CheckResult, GitStatus, PackageInfo
from .ranges import satisfies
from .versions import is_valid_semver


class Check(str, Enum):
    GIT_CLEAN = "git-clean"
    BRANCH = "branch"
    UPSTREAM = "upstream"
    AUTH = "auth"
    VERSION_UNIQUE = "version-unique"
    VERSION_FORMAT = "version-format"
    CHANGELOG = "changelog"
    DEPENDENCIES = "dependencies"


REPOSITORY_CHECKS = (Check.GIT_CLEAN, Check.BRANCH, Check.UPSTREAM)
PACKAGE_CHECKS = (
    Check.AUTH,
    Check.VERSION_UNIQUE,
    Check.VERSION_FORMAT,
    Check.CHANGELOG,
    Check.DEPENDENCIES,
)


def parse_checks(names: Iterable[str]) -> set[Check]:
    """Convert check names to `Check` members.

    Raises:
        ConfigurationError: If a name is not a known check.
    """
    checks: set[Check] = set()
    for name in names:
        try:
            checks.add(Check(name))
        except ValueError:
            valid = ", ".join(c.value for c in Check)
            raise ConfigurationError(f"Unknown check {name!r} (valid: {valid})") from None
    return checks


def should_run(check: Check, include: set[Check], exclude: set[Check]) -> bool:
    if include:
        return check in include
    return check not in exclude


def check_git_clean(status: GitStatus, config: ReleaseConfig) -> None:
    if not config.git.require_clean or status.is_clean:
        return
    shown = "\n".join(f"  {f}" for f in status.files[:10])
    more = f"\n  ... and {len(status.files) - 10} more" if len(status.files) > 10 else ""
    raise ValidationError(
        f"Working tree has uncommitted changes:\n{shown}{more}",
        remediation="Commit or stash your changes (git stash) before releasing.",
    )


def check_branch(status: GitStatus, config: ReleaseConfig, allow_branch: bool = False) -> None:
    if status.branch is None:
        raise ValidationError(
            "HEAD is detached",
            remediation="Check out a branch before releasing (git switch main).",
        )
    if allow_branch or status.branch in config.git.allowed_branches:
        return
    allowed = ", ".join(config.git.allowed_branches)
    raise ValidationError(
        f"Releases are not allowed from branch {status.branch!r} (allowed: {allowed})",
        remediation="Switch to an allowed branch, or pass --allow-branch.",
    )


def check_upstream(
    vcs: VersionControlAdapter, status: GitStatus, config: ReleaseConfig, log: logging.Logger
) -> None:
    """Fetch and fail when the branch is behind its upstream.

    A branch without upstream tracking passes; the push step sets it up.
    """
    if not config.git.require_up_to_date:
        return
    if status.tracking is None:
        log.debug("  Branch %s has no upstream; skipping upstream check", status.branch)
        return
    vcs.fetch(config.git.remote)
    refreshed = vcs.status()
    if refreshed.behind > 0:
        raise ValidationError(
            f"Branch {refreshed.branch} is {refreshed.behind} commit(s) behind {refreshed.tracking}",
            remediation="Pull the latest changes (git pull --rebase) and try again.",
        )


def check_auth(registry: RegistryAdapter, config: ReleaseConfig) -> None:
    registry.validate_auth(config.publish)


def check_version_unique(
    registry: RegistryAdapter, config: ReleaseConfig, package: PackageInfo, version: str
) -> None:
    latest = registry.get_latest_version(package.name, config.publish)
    if latest == version:
        raise ValidationError(
            f"Version {version} of {package.name} already exists in the registry",
            remediation="Increment the version number (or pass --version) before publishing.",
        )


def check_version_format(version: str) -> None:
    if not is_valid_semver(version):
        raise ValidationError(
            f"Version {version!r} is not valid semver",
            remediation="Use MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD], e.g. 1.2.3.",
        )


def check_changelog(content: str | None, fmt: ChangelogFormat, *, required: bool, path: str) -> None:
    changelog.validate(content, fmt, required=required, path=path)


def check_dependencies(
    package: PackageInfo, packages: dict[str, PackageInfo], *, pep440: bool | None = None
) -> None:
    """Every workspace dependency range must admit the dependency's current version."""
    problems: list[str] = []
    for dep in sorted(package.internal_deps(packages)):
        declared = package.dependencies[dep]
        current = packages[dep].version
        try:
            ok = satisfies(declared, current, pep440=pep440)
        except ValueError as exc:
            problems.append(f"{dep}: {exc}")
            continue
        if not ok:
            problems.append(f"{dep}: declared {declared!r} does not admit workspace version {current}")
    if problems:
        raise ValidationError(
            f"{package.name} has inconsistent workspace dependencies:\n"
            + "\n".join(f"  - {p}" for p in problems),
            remediation="Update the declared ranges to match the workspace versions.",
        )


def _timed(check: Check, fn: Callable[[], None]) -> CheckResult:
    start = time.perf_counter()
    try:
        fn()
    except (ValidationError, ExternalCommandError) as exc:
        return CheckResult(
            name=check.value, success=False, error=str(exc), duration=time.perf_counter() - start
        )
    return CheckResult(name=check.value, success=True, duration=time.perf_counter() - start)


def run_repository_checks(
    vcs: VersionControlAdapter,
    config: ReleaseConfig,
    log: logging.Logger,
    *,
    include: set[Check],
    exclude: set[Check],
    allow_branch: bool = False,
) -> list[CheckResult]:
    """Run the selected git checks against the working copy."""
    selected = [c for c in REPOSITORY_CHECKS if should_run(c, include, exclude)]
    if not selected:
        return []
    status = vcs.status()
    runners: dict[Check, Callable[[], None]] = {
        Check.GIT_CLEAN: lambda: check_git_clean(status, config),
        Check.BRANCH: lambda: check_branch(status, config, allow_branch),
        Check.UPSTREAM: lambda: check_upstream(vcs, status, config, log),
    }
    return [_timed(c, runners[c]) for c in selected]


def run_package_checks(
    registry: RegistryAdapter,
    config: ReleaseConfig,
    package: PackageInfo,
    version: str,
    packages: dict[str, PackageInfo],
    *,
    changelog_content: str | None,
    changelog_required: bool,
    include: set[Check],
    exclude: set[Check],
    publishing: bool = True,
) -> list[CheckResult]:
    """Run the selected per-package checks for a proposed version.

    Registry checks (auth, version-unique) are skipped when the package
    will not be published.
    """
    runners: dict[Check, Callable[[], None]] = {
        Check.AUTH: lambda: check_auth(registry, config),
        Check.VERSION_UNIQUE: lambda: check_version_unique(registry, config, package, version),
        Check.VERSION_FORMAT: lambda: check_version_format(version),
        Check.CHANGELOG: lambda: check_changelog(
            changelog_content,
            config.changelog_format_for(package.name),
            required=changelog_required,
            path=f"{package.path}/{config.changelog_file_for(package.name)}",
        ),
        Check.DEPENDENCIES: lambda: check_dependencies(
            package, packages, pep440=config.manifest == "pyproject"
        ),
    }
    results: list[CheckResult] = []
    for check in PACKAGE_CHECKS:
        if not should_run(check, include, exclude):
            continue
        if check in (Check.AUTH, Check.VERSION_UNIQUE) and not publishing:
            continue
        results.append(_timed(check, runners[check]))
    return results


def failure_message(package: str, results: list[CheckResult]) -> str:
    failed = [r for r in results if not r.success]
    lines = [f"Pre-release checks failed for {package}:"]
    lines += [f"[{r.name}] {r.error}" for r in failed]
    return "\n".join(lines)
