"""Workspace discovery and manifest reading/writing.

Two manifest stores are provided:

- PyprojectStore: uv workspaces. Members come from
  `[tool.uv.workspace].members`, dependencies are PEP 508 strings.
- PackageJsonStore: npm / yarn / pnpm workspaces. Members come from the root
  package.json `workspaces` field.

All paths handed to and returned by the stores are relative to the
workspace root, using forward slashes.
"""

from __future__ import annotations

import glob
import json
from pathlib import Path
from typing import Any, cast

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from .errors import ConfigurationError
from .models import PackageInfo
from .toml import (
    dump_pyproject,
    get_all_dependency_strings,
    get_project_name,
    get_project_version,
    get_workspace_member_globs,
    load_pyproject,
    parse_pyproject,
)

_PRIVATE_CLASSIFIER = "Private :: Do Not Upload"
_NPM_DEPENDENCY_FIELDS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)


def dep_canonical_name(dep_str: str) -> str:
    """Extract the canonical package name from a PEP 508 dependency string.

    Handles version specifiers, extras, and normalizes the name per PEP 503
    (lowercase, hyphens instead of underscores).

    Examples:
        "requests>=2.0" → "requests"
        "My_Package[extra]~=1.0" → "my-package"
    """
    return canonicalize_name(Requirement(dep_str).name)


def with_specifier(dep_str: str, specifier: str) -> str:
    """Replace the version specifier of a PEP 508 dependency string.

    Preserves extras (sorted) and environment markers.

    Examples:
        with_specifier("requests>=2.0", "==2.31.0") → "requests==2.31.0"
        with_specifier("pkg[b,a]~=1.0; python_version>'3.8'", "~=2.0.0")
            → "pkg[a,b]~=2.0.0; python_version > \"3.8\""
    """
    req = Requirement(dep_str)
    extras = f"[{','.join(sorted(req.extras))}]" if req.extras else ""
    marker = f"; {req.marker}" if req.marker else ""
    return f"{req.name}{extras}{specifier}{marker}"


def _expand_members(root: Path, patterns: list[str], manifest: str) -> list[Path]:
    member_dirs: list[Path] = []
    for pattern in patterns:
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            if (p / manifest).exists() and p not in member_dirs:
                member_dirs.append(p)
    if not member_dirs:
        raise ConfigurationError("No packages found matching workspace members")
    return member_dirs


def _relative(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


class _TextFiles:
    """Plain text access to files under the workspace root."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def read_text(self, path: str) -> str:
        return (self.root / path).read_text()

    def write_text(self, path: str, content: str) -> None:
        (self.root / path).write_text(content)


class PyprojectStore(_TextFiles):
    """ManifestStore for uv workspaces (pyproject.toml)."""

    pep440_ranges = True

    def manifest_file(self, path: str) -> str:
        return f"{path}/pyproject.toml" if path not in ("", ".") else "pyproject.toml"

    def list_workspace_packages(self) -> dict[str, PackageInfo]:
        """Read [tool.uv.workspace].members and load every member package.

        Raises:
            ConfigurationError: If no members are defined or none match.
        """
        root_doc = load_pyproject(self.root / "pyproject.toml")
        member_dirs = _expand_members(self.root, get_workspace_member_globs(root_doc), "pyproject.toml")
        packages: dict[str, PackageInfo] = {}
        for d in member_dirs:
            info = self.read(_relative(self.root, d))
            packages[info.name] = info
        return packages

    def read(self, path: str) -> PackageInfo:
        doc = load_pyproject(self.root / self.manifest_file(path))
        name = get_project_name(doc, Path(path).name)
        dependencies: dict[str, str] = {}
        for dep_str in get_all_dependency_strings(doc):
            try:
                req = Requirement(dep_str)
            except InvalidRequirement as exc:
                raise ConfigurationError(f"{name}: invalid dependency {dep_str!r}: {exc}") from exc
            # First declaration wins when a dependency appears in several groups
            dependencies.setdefault(canonicalize_name(req.name), str(req.specifier))
        classifiers = doc.get("project", {}).get("classifiers", [])
        return PackageInfo(
            name=name,
            path=path,
            version=get_project_version(doc),
            dependencies=dependencies,
            private=_PRIVATE_CLASSIFIER in classifiers,
        )

    def render_version(self, path: str, version: str, dependency_ranges: dict[str, str]) -> str:
        """Update [project].version and rewrite internal dependency specifiers.

        Internal deps are rewritten in all locations:
        - [project].dependencies
        - [project].optional-dependencies.*
        - [dependency-groups].*

        Uses tomlkit to preserve formatting and comments.
        """
        doc = parse_pyproject(self.read_text(self.manifest_file(path)))
        # Cast needed because tomlkit types are complex unions
        project = cast(dict[str, Any], doc["project"])
        project["version"] = version

        if dependency_ranges:
            deps = project.get("dependencies")
            if isinstance(deps, list):
                _rewrite_dep_list(deps, dependency_ranges)

            opt_deps = project.get("optional-dependencies")
            if isinstance(opt_deps, dict):
                for group in opt_deps.values():
                    if isinstance(group, list):
                        _rewrite_dep_list(group, dependency_ranges)

            dep_groups = doc.get("dependency-groups")
            if isinstance(dep_groups, dict):
                for group in dep_groups.values():
                    if isinstance(group, list):
                        _rewrite_dep_list(group, dependency_ranges)

        return dump_pyproject(doc)


def _rewrite_dep_list(deps: list, ranges: dict[str, str]) -> None:
    """Rewrite internal dependency specifiers in a list, modifying in place."""
    for i, dep_str in enumerate(deps):
        if not isinstance(dep_str, str):
            continue
        name = dep_canonical_name(str(dep_str))
        if name in ranges:
            specifier = ranges[name]
            # A bare version is not a PEP 508 specifier ("a1.0.1" names another
            # distribution)
            if specifier[:1].isdigit():
                specifier = f"=={specifier}"
            deps[i] = with_specifier(str(dep_str), specifier)


class PackageJsonStore(_TextFiles):
    """ManifestStore for npm/yarn/pnpm workspaces (package.json)."""

    pep440_ranges = False

    def manifest_file(self, path: str) -> str:
        return f"{path}/package.json" if path not in ("", ".") else "package.json"

    def _load(self, path: str) -> dict[str, Any]:
        file = self.manifest_file(path)
        try:
            return json.loads(self.read_text(file))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {file}: {exc}") from exc

    def list_workspace_packages(self) -> dict[str, PackageInfo]:
        root = self._load("")
        workspaces = root.get("workspaces")
        if isinstance(workspaces, dict):
            # yarn classic: {"packages": [...], "nohoist": [...]}
            workspaces = workspaces.get("packages")
        if not workspaces:
            raise ConfigurationError("No \"workspaces\" defined in root package.json")
        packages: dict[str, PackageInfo] = {}
        for d in _expand_members(self.root, list(workspaces), "package.json"):
            info = self.read(_relative(self.root, d))
            packages[info.name] = info
        return packages

    def read(self, path: str) -> PackageInfo:
        data = self._load(path)
        name = data.get("name")
        if not name:
            raise ConfigurationError(f"{self.manifest_file(path)} has no \"name\" field")
        dependencies: dict[str, str] = {}
        for field in _NPM_DEPENDENCY_FIELDS:
            for dep, declared in (data.get(field) or {}).items():
                dependencies.setdefault(dep, str(declared))
        return PackageInfo(
            name=name,
            path=path,
            version=data.get("version", "0.0.0"),
            dependencies=dependencies,
            private=bool(data.get("private", False)),
        )

    def render_version(self, path: str, version: str, dependency_ranges: dict[str, str]) -> str:
        data = self._load(path)
        data["version"] = version
        for field in _NPM_DEPENDENCY_FIELDS:
            deps = data.get(field)
            if not isinstance(deps, dict):
                continue
            for dep in deps:
                if dep in dependency_ranges:
                    deps[dep] = dependency_ranges[dep]
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


class FileChangelogStore:
    """ChangelogFileStore over the workspace directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def read(self, path: str) -> str | None:
        file = self.root / path
        return file.read_text() if file.exists() else None

    def write(self, path: str, content: str) -> None:
        file = self.root / path
        file.parent.mkdir(parents=True, exist_ok=True)
        file.write_text(content)

    def delete(self, path: str) -> None:
        (self.root / path).unlink(missing_ok=True)
