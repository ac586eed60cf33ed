"""Tests for pubflow.changelog."""

from __future__ import annotations

import pytest

from pubflow import changelog
from pubflow.errors import ChangelogValidationError
from pubflow.models import ChangelogEntry, ChangelogFormat, Commit, RangeUpdate

CONVENTIONAL = ChangelogFormat.CONVENTIONAL
KEEP = ChangelogFormat.KEEP_A_CHANGELOG


def _commit(subject: str, hash_: str, body: str = "") -> Commit:
    return Commit(hash=hash_ * 40, authored_date="2026-10-01T00:00:00Z", subject=subject, body=body)


COMMITS = [
    _commit("feat(api): add endpoint", "1"),
    _commit("fix: patch bug", "2"),
    _commit("chore: bump deps", "3"),
    _commit("feat!: drop node 16", "4"),
]


class TestBuildEntry:
    def test_conventional_groups_in_order(self) -> None:
        entry = changelog.build_entry("2.0.0", COMMITS, CONVENTIONAL, date="2026-10-19")
        assert list(entry.sections) == ["Breaking Changes", "Features", "Bug Fixes", "Chores"]
        assert entry.sections["Features"] == ["- **api:** add endpoint (1111111)"]

    def test_keep_a_changelog_groups(self) -> None:
        entry = changelog.build_entry("2.0.0", COMMITS, KEEP, date="2026-10-19")
        assert list(entry.sections) == ["Added", "Changed", "Fixed"]
        assert entry.sections["Changed"] == ["- **BREAKING:** drop node 16 (4444444)"]

    def test_links_commits(self) -> None:
        entry = changelog.build_entry(
            "1.0.1", [COMMITS[1]], CONVENTIONAL, date="2026-10-19", repository_url="https://git.example/repo/"
        )
        assert entry.sections["Bug Fixes"] == [
            f"- patch bug ([2222222](https://git.example/repo/commit/{'2' * 40}))"
        ]

    def test_dependency_updates(self) -> None:
        update = RangeUpdate(dependency="a", old_range="^1.0.0", new_range="^2.0.0", version="2.0.0")
        entry = changelog.build_entry("1.0.1", [], CONVENTIONAL, date="2026-10-19", dependency_updates=[update])
        assert entry.sections == {"Dependencies": ["- Updated dependency `a` to `^2.0.0`"]}


class TestRender:
    def test_heading_and_groups(self) -> None:
        entry = ChangelogEntry(version="1.0.1", date="2026-10-19", sections={"Bug Fixes": ["- x (abc)"]})
        assert changelog.render(entry, CONVENTIONAL) == "## [1.0.1] - 2026-10-19\n\n### Bug Fixes\n\n- x (abc)\n"

    def test_empty_entry(self) -> None:
        entry = ChangelogEntry(version="1.0.1", date="2026-10-19")
        assert "No notable changes." in changelog.render(entry, CONVENTIONAL)


class TestMerge:
    def test_new_file(self) -> None:
        entry = changelog.build_entry("1.0.1", [COMMITS[1]], CONVENTIONAL, date="2026-10-19")
        content = changelog.merge(None, entry, CONVENTIONAL)
        assert content.startswith("# Changelog\n")
        assert "## [1.0.1] - 2026-10-19" in content

    def test_merge_twice_equals_once(self) -> None:
        entry = changelog.build_entry("1.0.1", COMMITS, KEEP, date="2026-10-19")
        once = changelog.merge(changelog.new_changelog(KEEP), entry, KEEP)
        assert changelog.merge(once, entry, KEEP) == once

    def test_replaces_same_version(self) -> None:
        first = changelog.build_entry("1.0.1", [COMMITS[1]], CONVENTIONAL, date="2026-10-19")
        second = changelog.build_entry("1.0.1", [COMMITS[0]], CONVENTIONAL, date="2026-10-19")
        content = changelog.merge(changelog.merge(None, first, CONVENTIONAL), second, CONVENTIONAL)
        assert content.count("## [1.0.1]") == 1
        assert "add endpoint" in content
        assert "patch bug" not in content

    def test_new_version_goes_on_top(self) -> None:
        old = changelog.build_entry("1.0.0", [COMMITS[1]], CONVENTIONAL, date="2026-01-01")
        new = changelog.build_entry("1.1.0", [COMMITS[0]], CONVENTIONAL, date="2026-10-19")
        content = changelog.merge(changelog.merge(None, old, CONVENTIONAL), new, CONVENTIONAL)
        assert content.index("## [1.1.0]") < content.index("## [1.0.0]")

    def test_inserts_below_unreleased(self) -> None:
        entry = changelog.build_entry("1.0.1", [COMMITS[1]], KEEP, date="2026-10-19")
        content = changelog.merge(changelog.new_changelog(KEEP), entry, KEEP)
        assert content.index("## [Unreleased]") < content.index("## [1.0.1]")

    def test_keeps_fenced_headings(self) -> None:
        existing = "# Changelog\n\n## [1.0.0] - 2026-01-01\n\n```md\n## not a section\n```\n"
        entry = changelog.build_entry("1.0.1", [COMMITS[1]], CONVENTIONAL, date="2026-10-19")
        content = changelog.merge(existing, entry, CONVENTIONAL)
        assert "## not a section" in content
        assert content.count("## [") == 2


class TestUnreleased:
    EXISTING = (
        "# Changelog\n\n## [Unreleased]\n\n### Added\n\n- hand-written note\n\n"
        "## [1.0.0] - 2026-01-01\n\n### Fixed\n\n- old fix\n"
    )

    def test_extract(self) -> None:
        assert changelog.extract_unreleased(self.EXISTING) == ["- hand-written note"]

    def test_promote_moves_notes(self) -> None:
        entry = changelog.build_entry("1.1.0", [COMMITS[0]], KEEP, date="2026-10-19")
        promoted, cleared = changelog.promote_unreleased(self.EXISTING, entry, KEEP)

        assert "- hand-written note" in promoted.sections["Added"]
        assert cleared is not None
        assert changelog.extract_unreleased(cleared) == []
        assert "## [Unreleased]" in cleared

    def test_promote_without_unreleased(self) -> None:
        entry = changelog.build_entry("1.1.0", [], KEEP, date="2026-10-19")
        content = "# Changelog\n\n## [1.0.0] - 2026-01-01\n"
        assert changelog.promote_unreleased(content, entry, KEEP) == (entry, content)

    def test_add_is_idempotent(self) -> None:
        once = changelog.add_to_unreleased(self.EXISTING, ["- new line"], KEEP)
        assert changelog.add_to_unreleased(once, ["- new line"], KEEP) == once
        assert "- new line" in changelog.extract_unreleased(once)

    def test_add_creates_section(self) -> None:
        content = changelog.add_to_unreleased("# Changelog\n", ["- x"], CONVENTIONAL)
        assert "## [Unreleased]\n\n- x" in content


class TestValidate:
    def test_valid(self) -> None:
        content = "# Changelog\n\n## [Unreleased]\n\n## [1.0.0] - 2026-01-01\n\n- x\n"
        changelog.validate(content, KEEP)

    def test_missing_required(self) -> None:
        with pytest.raises(ChangelogValidationError, match="missing"):
            changelog.validate(None, CONVENTIONAL, required=True)

    def test_missing_optional(self) -> None:
        changelog.validate(None, CONVENTIONAL, required=False)

    def test_collects_all_problems(self) -> None:
        with pytest.raises(ChangelogValidationError) as exc_info:
            changelog.validate("## [1.0] - someday\n", KEEP, path="packages/a/CHANGELOG.md")
        problems = exc_info.value.problems
        assert len(problems) == 4
        assert "packages/a/CHANGELOG.md" in str(exc_info.value)


class TestHelpers:
    def test_latest_version(self) -> None:
        assert changelog.latest_version(TestUnreleased.EXISTING) == "1.0.0"
        assert changelog.latest_version(None) is None

    def test_diff(self) -> None:
        result = changelog.diff(None, "# Changelog\n", "CHANGELOG.md")
        assert "+++ b/CHANGELOG.md" in result
        assert "+# Changelog" in result
