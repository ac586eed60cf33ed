"""Tests for pubflow.tags."""

from __future__ import annotations

import logging

import pytest
from conftest import FakeVcs

from pubflow.config import DEFAULT_TAG_TEMPLATE
from pubflow.errors import ExternalCommandError, TagExistsError
from pubflow.tags import create_tag, delete_tag, find_last_tag, format_tag, format_template


class TestFormatTag:
    def test_default_template(self) -> None:
        assert format_tag(DEFAULT_TAG_TEMPLATE, "", "a", "1.0.1") == "a@1.0.1"

    def test_prefix(self) -> None:
        assert format_tag(DEFAULT_TAG_TEMPLATE, "release/", "a", "1.0.1") == "release/a@1.0.1"

    def test_custom_template(self) -> None:
        assert format_tag("${packageName}/v${version}", "", "a", "1.0.1") == "a/v1.0.1"

    def test_unknown_placeholder_left_alone(self) -> None:
        assert format_template("${packageName} ${other}", packageName="a") == "a ${other}"


class TestFindLastTag:
    def test_picks_highest(self) -> None:
        tags = ["a@1.9.0", "a@1.10.0", "ab@9.0.0", "b@3.0.0"]
        assert find_last_tag(tags, DEFAULT_TAG_TEMPLATE, "", "a") == "a@1.10.0"

    def test_none(self) -> None:
        assert find_last_tag(["b@1.0.0"], DEFAULT_TAG_TEMPLATE, "", "a") is None


class TestCreateTag:
    def test_creates_annotated_tag(self) -> None:
        vcs = FakeVcs()
        assert create_tag(vcs, "a@1.0.1", "Release a@1.0.1", remote="origin") == "a@1.0.1"
        assert vcs.called("add_annotated_tag") == [("add_annotated_tag", "a@1.0.1", "Release a@1.0.1")]

    def test_existing_without_force(self) -> None:
        vcs = FakeVcs(tags=["a@1.0.1"])
        with pytest.raises(TagExistsError) as exc_info:
            create_tag(vcs, "a@1.0.1", "Release a@1.0.1", remote="origin")

        message = str(exc_info.value)
        assert "already exists" in message
        assert "git tag -d a@1.0.1" in message
        assert "git push origin :refs/tags/a@1.0.1" in message
        assert vcs.called("add_annotated_tag") == []
        assert vcs.called("delete_tag") == []

    def test_existing_with_force(self) -> None:
        vcs = FakeVcs(tags=["a@1.0.1"])
        create_tag(vcs, "a@1.0.1", "Release a@1.0.1", remote="origin", force=True)

        names = [c[0] for c in vcs.calls]
        assert names.index("delete_tag") < names.index("add_annotated_tag")
        assert ("raw", ["push", "origin", ":refs/tags/a@1.0.1"]) in vcs.calls
        assert vcs.tags() == ["a@1.0.1"]

    def test_force_failure_reports_previous_target(self, caplog: pytest.LogCaptureFixture) -> None:
        vcs = FakeVcs(tags=["a@1.0.1"])
        vcs.failures["add_annotated_tag"] = ExternalCommandError("fatal: bad object", returncode=128)
        with caplog.at_level(logging.INFO, logger="pubflow"):
            with pytest.raises(ExternalCommandError) as exc_info:
                create_tag(vcs, "a@1.0.1", "msg", remote="origin", force=True)

        sha = "e" * 40
        message = str(exc_info.value)
        assert "fatal: bad object" in message
        assert f"pointed at {sha}" in message
        assert f"git tag a@1.0.1 {sha}" in message
        assert "git push origin a@1.0.1" in message
        assert exc_info.value.returncode == 128
        assert f"To restore it: git tag a@1.0.1 {sha}" in caplog.text
        assert vcs.tags() == []

    def test_race_maps_to_tag_exists(self) -> None:
        vcs = FakeVcs()
        vcs.failures["add_annotated_tag"] = ExternalCommandError("fatal: tag 'a@1.0.1' already exists")
        with pytest.raises(TagExistsError):
            create_tag(vcs, "a@1.0.1", "msg", remote="origin")

    def test_other_git_errors_propagate(self) -> None:
        vcs = FakeVcs()
        vcs.failures["add_annotated_tag"] = ExternalCommandError("fatal: bad object")
        with pytest.raises(ExternalCommandError):
            create_tag(vcs, "a@1.0.1", "msg", remote="origin")


class TestDeleteTag:
    def test_local_failure_raises(self) -> None:
        vcs = FakeVcs(tags=["a@1.0.1"])
        vcs.failures["delete_tag"] = ExternalCommandError("cannot delete")
        with pytest.raises(ExternalCommandError):
            delete_tag(vcs, "a@1.0.1", "origin")

    def test_remote_failure_ignored(self) -> None:
        vcs = FakeVcs(tags=["a@1.0.1"])
        vcs.failures["raw"] = ExternalCommandError("remote ref does not exist")
        delete_tag(vcs, "a@1.0.1", "origin")
        assert vcs.tags() == []
