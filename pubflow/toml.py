"""TOML reading and writing utilities.

Uses tomlkit to preserve formatting and comments when modifying pyproject.toml
files. This is important for maintaining readable, diff-friendly files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import ParseError
from packaging.utils import canonicalize_name

from .errors import ConfigurationError


def load_pyproject(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a pyproject.toml file.

    Returns a TOMLDocument that preserves formatting when modified and saved.

    Raises:
        ConfigurationError: If the file is not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text())
    except ParseError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc


def parse_pyproject(text: str) -> tomlkit.TOMLDocument:
    return tomlkit.parse(text)


def dump_pyproject(doc: tomlkit.TOMLDocument) -> str:
    return tomlkit.dumps(doc)


def get_project_name(doc: tomlkit.TOMLDocument, fallback: str) -> str:
    """Extract the canonical package name from [project].name.

    Names are normalized per PEP 503 (lowercase, hyphens instead of
    underscores) for consistent comparison.

    Args:
        doc: Parsed pyproject.toml document.
        fallback: Value to return if name is not specified.
    """
    return canonicalize_name(doc.get("project", {}).get("name", fallback))


def get_project_version(doc: tomlkit.TOMLDocument) -> str:
    """Extract version from [project].version, defaulting to '0.0.0'."""
    return str(doc.get("project", {}).get("version", "0.0.0"))


def get_all_dependency_strings(doc: tomlkit.TOMLDocument) -> list[str]:
    """Collect all dependency strings from a pyproject.toml.

    Gathers dependencies from three locations:
    - [project].dependencies (main runtime deps)
    - [project].optional-dependencies.* (extras like [dev], [test])
    - [dependency-groups].* (PEP 735 dependency groups)

    Returns raw PEP 508 strings like "requests>=2.0" or "pkg[extra]~=1.0".
    """
    project = doc.get("project", {})
    deps: list[str] = [str(d) for d in project.get("dependencies", [])]
    for group_deps in project.get("optional-dependencies", {}).values():
        deps.extend(str(d) for d in group_deps)
    for group_deps in doc.get("dependency-groups", {}).values():
        # PEP 735 groups may contain {include-group = "..."} tables
        deps.extend(str(d) for d in group_deps if isinstance(d, str))
    return deps


def get_workspace_member_globs(doc: tomlkit.TOMLDocument) -> list[str]:
    """Extract workspace member glob patterns from [tool.uv.workspace].

    These patterns (e.g., "packages/*", "libs/*") define which directories
    contain workspace packages.

    Raises:
        ConfigurationError: If no workspace members are defined.
    """
    members = doc.get("tool", {}).get("uv", {}).get("workspace", {}).get("members")
    if not members:
        raise ConfigurationError(
            "No [tool.uv.workspace] members defined in root pyproject.toml"
        )
    return [str(m) for m in members]


def get_tool_table(doc: tomlkit.TOMLDocument, tool: str) -> dict[str, Any]:
    """Return [tool.<tool>] as plain Python data ({} when absent)."""
    table = doc.get("tool", {}).get(tool)
    if table is None:
        return {}
    return table.unwrap() if hasattr(table, "unwrap") else dict(table)
