"""Release configuration.

Configuration lives in the `[tool.pubflow]` table of the workspace root
pyproject.toml. Keys are kebab-case, as is customary in pyproject files:

    [tool.pubflow]
    bump-strategy = "independent"
    changelog-format = "keep-a-changelog"
    range-policy = "preserve"

    [tool.pubflow.git]
    tag-prefix = ""
    allowed-branches = ["main"]

    [tool.pubflow.packages.pkg-alpha]
    changelog-format = "conventional"

Every key is optional; a missing file or table yields the defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .models import BumpStrategy, ChangelogFormat, RangePolicy
from .toml import get_tool_table, load_pyproject

DEFAULT_COMMIT_MESSAGE = "chore(release): release ${packageName}@${version}"
DEFAULT_TAG_TEMPLATE = "${packageName}@${version}"
DEFAULT_TAG_MESSAGE = "Release ${tag}"


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=_kebab, populate_by_name=True, extra="forbid")


class GitConfig(_Section):
    remote: str = "origin"
    tag_prefix: str = ""
    tag_template: str = DEFAULT_TAG_TEMPLATE
    tag_message: str = DEFAULT_TAG_MESSAGE
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    require_clean: bool = True
    require_up_to_date: bool = True
    allowed_branches: list[str] = Field(default_factory=lambda: ["main", "master"])
    commit: bool = True
    tag: bool = True
    push: bool = True


class PublishConfig(_Section):
    """Registry settings handed to the RegistryAdapter.

    Attributes:
        enabled: Publish after tagging and pushing.
        registry_url: Upload endpoint; None uses the adapter's default.
        access: npm access level ("public" / "restricted").
        dist_tag: npm dist-tag for the published version.
        token_env: Environment variable holding the publish token.
        otp: One-time password for two-factor registries.
    """

    enabled: bool = True
    registry_url: str | None = None
    access: str = "public"
    dist_tag: str = "latest"
    token_env: str | None = None
    otp: str | None = None


class ChecksConfig(_Section):
    skip: list[str] = Field(default_factory=list)


class PackageOverrides(_Section):
    changelog_format: ChangelogFormat | None = None
    changelog_file: str | None = None
    publish: bool | None = None


class ReleaseConfig(_Section):
    """Root of the `[tool.pubflow]` table."""

    bump_strategy: BumpStrategy = BumpStrategy.INDEPENDENT
    changelog_format: ChangelogFormat = ChangelogFormat.CONVENTIONAL
    changelog_file: str = "CHANGELOG.md"
    changelog_required: bool = True
    range_policy: RangePolicy = RangePolicy.PRESERVE
    manifest: Literal["pyproject", "package-json"] = "pyproject"
    registry: Literal["pypi", "npm"] = "pypi"
    repository_url: str | None = None
    git: GitConfig = Field(default_factory=GitConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    checks: ChecksConfig = Field(default_factory=ChecksConfig)
    packages: dict[str, PackageOverrides] = Field(default_factory=dict)

    def changelog_format_for(self, package: str) -> ChangelogFormat:
        override = self.packages.get(package)
        if override and override.changelog_format:
            return override.changelog_format
        return self.changelog_format

    def changelog_file_for(self, package: str) -> str:
        override = self.packages.get(package)
        if override and override.changelog_file:
            return override.changelog_file
        return self.changelog_file

    def publish_enabled_for(self, package: str) -> bool:
        override = self.packages.get(package)
        if override and override.publish is not None:
            return override.publish
        return self.publish.enabled


def parse_config(data: dict) -> ReleaseConfig:
    """Validate a raw `[tool.pubflow]` mapping.

    Raises:
        ConfigurationError: If any key is unknown or has an invalid value.
    """
    try:
        return ReleaseConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid [tool.pubflow] configuration:\n{exc}") from exc


def load_config(root: Path) -> ReleaseConfig:
    """Load configuration from `<root>/pyproject.toml`.

    Returns the defaults when the file or the `[tool.pubflow]` table is
    missing.
    """
    pyproject = root / "pyproject.toml"
    if not pyproject.exists():
        return ReleaseConfig()
    return parse_config(get_tool_table(load_pyproject(pyproject), "pubflow"))
