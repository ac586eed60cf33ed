"""Capability interfaces the release engine consumes.

The pipeline only talks to git, the package registry and the filesystem
through these protocols. Concrete implementations live in `pubflow.git`,
`pubflow.registry` and `pubflow.manifests`; tests substitute in-memory fakes.
"""

from __future__ import annotations

from typing import Protocol

from .config import PublishConfig
from .models import DependencyUpdate, GitStatus, PackageInfo


class VersionControlAdapter(Protocol):
    def status(self) -> GitStatus: ...

    def fetch(self, remote: str) -> None: ...

    def tags(self) -> list[str]: ...

    def add_annotated_tag(self, name: str, message: str) -> None: ...

    def delete_tag(self, name: str) -> None: ...

    def add(self, paths: list[str]) -> None: ...

    def commit(self, message: str) -> None: ...

    def push(self, remote: str, branch: str, options: list[str]) -> None: ...

    def raw(self, args: list[str]) -> str:
        """Run an arbitrary git subcommand (log, rev-parse, ...) and return stdout."""
        ...

    def head(self) -> str: ...

    def reset_soft(self, ref: str) -> None: ...


class RegistryAdapter(Protocol):
    def validate_auth(self, config: PublishConfig) -> None:
        """Raise ValidationError if publishing credentials are missing."""
        ...

    def get_latest_version(self, name: str, config: PublishConfig) -> str | None:
        """Latest published version, or None if the package was never published."""
        ...

    def publish(self, package: PackageInfo, config: PublishConfig) -> None: ...

    def pack(self, package: PackageInfo) -> str:
        """Build a distributable archive and return its path."""
        ...

    def get_dependency_updates(self) -> list[DependencyUpdate]: ...


class ManifestStore(Protocol):
    #: Dependency ranges are PEP 440 specifiers rather than npm semver ranges.
    pep440_ranges: bool

    def list_workspace_packages(self) -> dict[str, PackageInfo]: ...

    def read(self, path: str) -> PackageInfo: ...

    def manifest_file(self, path: str) -> str:
        """Path of the manifest file for a package directory, relative to the root."""
        ...

    def read_text(self, path: str) -> str: ...

    def write_text(self, path: str, content: str) -> None: ...

    def render_version(
        self, path: str, version: str, dependency_ranges: dict[str, str]
    ) -> str:
        """Return the manifest text with a new version and dependency ranges.

        Does not touch the file; the pipeline buffers the result and writes it
        with `write_text`.
        """
        ...


class ChangelogFileStore(Protocol):
    def read(self, path: str) -> str | None:
        """File content, or None when the changelog does not exist."""
        ...

    def write(self, path: str, content: str) -> None: ...

    def delete(self, path: str) -> None:
        """Remove a changelog created by a release that is being rolled back."""
        ...
