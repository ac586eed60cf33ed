"""Shared test fixtures."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import tomlkit

from pubflow.config import PublishConfig, ReleaseConfig
from pubflow.errors import ExternalCommandError, ValidationError
from pubflow.manifests import FileChangelogStore, PackageJsonStore
from pubflow.models import DependencyUpdate, GitStatus, PackageInfo
from pubflow.pipeline import ReleasePipeline

TODAY = "2026-10-19"


def log_record(
    hash_: str, subject: str, files: list[str], body: str = "", date: str = "2026-10-01T12:00:00+00:00"
) -> str:
    """One commit in `git log --format=LOG_FORMAT --name-only` output."""
    return f"\x1e{hash_}\n{date}\n{subject}\n{body}\x1f\n\n" + "\n".join(files) + "\n"


class FakeVcs:
    """In-memory VersionControlAdapter that records every mutating call."""

    def __init__(
        self,
        log_output: str = "",
        tags: list[str] | None = None,
        status: GitStatus | None = None,
    ) -> None:
        self.log_output = log_output
        self.since: dict[str, str] = {}
        self.tag_list = list(tags or [])
        self.status_value = status or GitStatus(branch="main", tracking="origin/main")
        self.head_sha = "0" * 40
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}

    def _record(self, name: str, *args: object) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def status(self) -> GitStatus:
        self._record("status")
        return self.status_value

    def fetch(self, remote: str) -> None:
        self._record("fetch", remote)

    def tags(self) -> list[str]:
        return list(self.tag_list)

    def add_annotated_tag(self, name: str, message: str) -> None:
        self._record("add_annotated_tag", name, message)
        if name in self.tag_list:
            raise ExternalCommandError(f"fatal: tag '{name}' already exists")
        self.tag_list.append(name)

    def delete_tag(self, name: str) -> None:
        self._record("delete_tag", name)
        self.tag_list.remove(name)

    def add(self, paths: list[str]) -> None:
        self._record("add", list(paths))

    def commit(self, message: str) -> None:
        self._record("commit", message)
        self.head_sha = f"{len(self.called('commit')):040d}"

    def push(self, remote: str, branch: str, options: list[str]) -> None:
        self._record("push", remote, branch, list(options))

    def raw(self, args: list[str]) -> str:
        self._record("raw", list(args))
        if args[0] == "log":
            revision = args[-1]
            if revision.endswith("..HEAD"):
                return self.since.get(revision[: -len("..HEAD")], "")
            return self.log_output
        if args[0] == "rev-parse":
            ref = args[-1].removeprefix("refs/tags/")
            if ref not in self.tag_list:
                raise ExternalCommandError(f"unknown ref {args[-1]}", returncode=1)
            return "f" * 40
        if args[0] == "rev-list":
            return "e" * 40 + "\n"
        return ""

    def head(self) -> str:
        return self.head_sha

    def reset_soft(self, ref: str) -> None:
        self._record("reset_soft", ref)
        self.head_sha = ref


class FakeRegistry:
    """In-memory RegistryAdapter."""

    def __init__(self, latest: dict[str, str] | None = None) -> None:
        self.latest = dict(latest or {})
        self.published: list[tuple[str, str]] = []
        self.authenticated = True
        self.publish_error: Exception | None = None
        self.pack_error: Exception | None = None
        self.packed: list[str] = []
        self.outdated: list[DependencyUpdate] = []

    def validate_auth(self, config: PublishConfig) -> None:
        if not self.authenticated:
            raise ValidationError("Not authenticated", remediation="Log in first.")

    def get_latest_version(self, name: str, config: PublishConfig) -> str | None:
        return self.latest.get(name)

    def publish(self, package: PackageInfo, config: PublishConfig) -> None:
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((package.name, package.version))
        self.latest[package.name] = package.version

    def pack(self, package: PackageInfo) -> str:
        if self.pack_error is not None:
            raise self.pack_error
        self.packed.append(package.name)
        return f"dist/{package.name}-{package.version}.tgz"

    def get_dependency_updates(self) -> list[DependencyUpdate]:
        return list(self.outdated)


def write_package(root: Path, name: str, version: str, dependencies: dict[str, str] | None = None) -> None:
    pkg_dir = root / "packages" / name
    pkg_dir.mkdir(parents=True, exist_ok=True)
    data: dict = {"name": name, "version": version}
    if dependencies:
        data["dependencies"] = dependencies
    (pkg_dir / "package.json").write_text(json.dumps(data, indent=2) + "\n")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """npm workspace: b depends on a via ^1.0.0, c is unrelated."""
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "root", "private": True, "workspaces": ["packages/*"]}, indent=2)
    )
    write_package(tmp_path, "a", "1.0.0")
    write_package(tmp_path, "b", "1.0.0", {"a": "^1.0.0"})
    write_package(tmp_path, "c", "0.3.0")
    return tmp_path


@pytest.fixture
def vcs() -> FakeVcs:
    return FakeVcs()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def config() -> ReleaseConfig:
    return ReleaseConfig(manifest="package-json", registry="npm")


@pytest.fixture
def pipeline(
    workspace: Path, vcs: FakeVcs, registry: FakeRegistry, config: ReleaseConfig
) -> ReleasePipeline:
    return ReleasePipeline(
        config,
        workspace,
        vcs,
        registry,
        PackageJsonStore(workspace),
        FileChangelogStore(workspace),
        log=logging.getLogger("pubflow.tests"),
        today=TODAY,
    )


@pytest.fixture
def tmp_pyproject(tmp_path: Path) -> Path:
    """Create a temporary pyproject.toml file."""
    content = """\
[project]
name = "test-package"
version = "1.0.0"
dependencies = [
    "requests>=2.0",
    "internal-dep>=1.0",
]

[project.optional-dependencies]
dev = ["pytest>=8.0", "another-internal>=0.5"]

[dependency-groups]
test = ["pytest>=8.0", "group-internal>=0.1"]
"""
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(content)
    return pyproject


@pytest.fixture
def sample_toml_doc() -> tomlkit.TOMLDocument:
    """Create a sample TOML document."""
    content = """\
[project]
name = "my-package"
version = "2.0.0"
dependencies = ["click>=8.0", "pydantic>=2.0"]

[project.optional-dependencies]
dev = ["pytest>=8.0"]
docs = ["sphinx>=7.0"]

[dependency-groups]
test = ["hypothesis>=6.0"]

[tool.uv.workspace]
members = ["packages/*", "libs/*"]
"""
    return tomlkit.parse(content)
