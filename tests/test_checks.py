"""Tests for pubflow.checks."""

from __future__ import annotations

import logging

import pytest
from conftest import FakeRegistry, FakeVcs

from pubflow.checks import (
    Check,
    check_branch,
    check_dependencies,
    check_git_clean,
    check_upstream,
    check_version_unique,
    parse_checks,
    run_package_checks,
    run_repository_checks,
    should_run,
)
from pubflow.config import ReleaseConfig, parse_config
from pubflow.errors import ConfigurationError, ValidationError
from pubflow.models import GitStatus, PackageInfo

LOG = logging.getLogger("pubflow.tests")


class TestSelection:
    def test_parse(self) -> None:
        assert parse_checks(["auth", "git-clean"]) == {Check.AUTH, Check.GIT_CLEAN}

    def test_parse_unknown(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown check"):
            parse_checks(["nope"])

    def test_exclude(self) -> None:
        assert not should_run(Check.AUTH, set(), {Check.AUTH})
        assert should_run(Check.BRANCH, set(), {Check.AUTH})

    def test_include_overrides_exclude(self) -> None:
        assert should_run(Check.AUTH, {Check.AUTH}, {Check.AUTH})
        assert not should_run(Check.BRANCH, {Check.AUTH}, set())


class TestGitChecks:
    def test_dirty_tree(self) -> None:
        status = GitStatus(branch="main", files=["a.txt"])
        with pytest.raises(ValidationError) as exc_info:
            check_git_clean(status, ReleaseConfig())
        assert exc_info.value.remediation is not None
        assert "a.txt" in str(exc_info.value)

    def test_dirty_tree_allowed(self) -> None:
        config = parse_config({"git": {"require-clean": False}})
        check_git_clean(GitStatus(branch="main", files=["a.txt"]), config)

    def test_branch_not_allowed(self) -> None:
        with pytest.raises(ValidationError, match="feature"):
            check_branch(GitStatus(branch="feature"), ReleaseConfig())

    def test_allow_branch(self) -> None:
        check_branch(GitStatus(branch="feature"), ReleaseConfig(), allow_branch=True)

    def test_detached(self) -> None:
        with pytest.raises(ValidationError, match="detached"):
            check_branch(GitStatus(branch=None), ReleaseConfig(), allow_branch=True)

    def test_behind_upstream(self) -> None:
        vcs = FakeVcs(status=GitStatus(branch="main", tracking="origin/main", behind=2))
        with pytest.raises(ValidationError, match="2 commit"):
            check_upstream(vcs, vcs.status_value, ReleaseConfig(), LOG)
        assert vcs.called("fetch") == [("fetch", "origin")]

    def test_untracked_branch_skips_upstream(self) -> None:
        vcs = FakeVcs(status=GitStatus(branch="main"))
        check_upstream(vcs, vcs.status_value, ReleaseConfig(), LOG)
        assert vcs.called("fetch") == []

    def test_repository_checks_collect_results(self) -> None:
        vcs = FakeVcs(status=GitStatus(branch="feature", tracking="origin/feature", files=["x"]))
        results = run_repository_checks(vcs, ReleaseConfig(), LOG, include=set(), exclude={Check.UPSTREAM})
        assert [(r.name, r.success) for r in results] == [("git-clean", False), ("branch", False)]


class TestPackageChecks:
    @pytest.fixture
    def packages(self) -> dict[str, PackageInfo]:
        return {
            "a": PackageInfo(name="a", path="packages/a", version="2.0.0"),
            "b": PackageInfo(name="b", path="packages/b", version="1.0.0", dependencies={"a": "^1.0.0"}),
        }

    def test_version_unique(self, packages: dict[str, PackageInfo]) -> None:
        registry = FakeRegistry(latest={"a": "2.0.0"})
        with pytest.raises(ValidationError, match="already exists"):
            check_version_unique(registry, ReleaseConfig(), packages["a"], "2.0.0")
        check_version_unique(registry, ReleaseConfig(), packages["a"], "2.0.1")

    def test_inconsistent_dependencies(self, packages: dict[str, PackageInfo]) -> None:
        with pytest.raises(ValidationError, match="does not admit"):
            check_dependencies(packages["b"], packages)

    @pytest.mark.parametrize("declared", ["", ">=2.0", "~=2.0", ">=1.0,<3"])
    def test_pep440_dependencies(self, packages: dict[str, PackageInfo], declared: str) -> None:
        packages["b"] = packages["b"].model_copy(update={"dependencies": {"a": declared}})
        check_dependencies(packages["b"], packages, pep440=True)

    def test_registry_checks_skipped_when_not_publishing(self, packages: dict[str, PackageInfo]) -> None:
        registry = FakeRegistry()
        registry.authenticated = False
        results = run_package_checks(
            registry,
            ReleaseConfig(),
            packages["a"],
            "2.0.1",
            packages,
            changelog_content=None,
            changelog_required=False,
            include=set(),
            exclude=set(),
            publishing=False,
        )
        assert [r.name for r in results] == ["version-format", "changelog", "dependencies"]
        assert all(r.success for r in results)

    def test_failures_reported_not_raised(self, packages: dict[str, PackageInfo]) -> None:
        registry = FakeRegistry()
        registry.authenticated = False
        results = run_package_checks(
            registry,
            ReleaseConfig(),
            packages["a"],
            "2.0",
            packages,
            changelog_content=None,
            changelog_required=True,
            include=set(),
            exclude=set(),
        )
        failed = {r.name for r in results if not r.success}
        assert failed == {"auth", "version-format", "changelog"}
