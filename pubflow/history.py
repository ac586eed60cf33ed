"""Commit History Reader.

Reads commits from git through a VersionControlAdapter and hands back
structured `Commit` values, newest first.
"""

from __future__ import annotations

import logging

from .adapters import VersionControlAdapter
from .commits import LOG_FORMAT, CommitFilter, filter_commits, parse_log
from .config import DEFAULT_TAG_TEMPLATE
from .errors import ExternalCommandError
from .models import Commit
from .tags import find_last_tag


class CommitHistory:
    """Structured access to the repository log.

    Args:
        vcs: Version-control adapter rooted at the workspace.
        log: Logger for diagnostics.
        tag_template: Release tag template (see `pubflow.tags`).
        tag_prefix: Prefix prepended to every release tag.
    """

    def __init__(
        self,
        vcs: VersionControlAdapter,
        log: logging.Logger,
        *,
        tag_template: str = DEFAULT_TAG_TEMPLATE,
        tag_prefix: str = "",
    ) -> None:
        self.vcs = vcs
        self.log = log
        self.tag_template = tag_template
        self.tag_prefix = tag_prefix

    def last_tag(self, package: str) -> str | None:
        """Most recent release tag of `package`, or None before its first release."""
        return find_last_tag(self.vcs.tags(), self.tag_template, self.tag_prefix, package)

    def all_commits(self, commit_filter: CommitFilter | None = None) -> list[Commit]:
        """Every commit reachable from HEAD, optionally filtered."""
        output = self.vcs.raw(["log", f"--format={LOG_FORMAT}", "--name-only"])
        return filter_commits(parse_log(output), commit_filter)

    def commits_since(
        self, tag: str | None, commit_filter: CommitFilter | None = None
    ) -> list[Commit]:
        """Commits after `tag` up to HEAD, optionally filtered.

        Without a tag this is exactly `all_commits()`: a first release
        includes the full history. A tag that does not resolve is treated
        the same way, with a warning.
        """
        if not tag:
            self.log.debug("No previous tag; reading the full history")
            return self.all_commits(commit_filter)

        try:
            self.vcs.raw(["rev-parse", "--verify", "--quiet", f"refs/tags/{tag}"])
        except ExternalCommandError:
            self.log.warning("Tag %s not found; using all commits instead", tag)
            return self.all_commits(commit_filter)

        output = self.vcs.raw(["log", f"--format={LOG_FORMAT}", "--name-only", f"{tag}..HEAD"])
        commits = filter_commits(parse_log(output), commit_filter)
        self.log.debug("%d commit(s) since %s", len(commits), tag)
        return commits

    def package_commits(self, name: str, path: str) -> tuple[str | None, list[Commit]]:
        """Last tag of a package and the commits that touched it since then."""
        tag = self.last_tag(name)
        return tag, self.commits_since(tag, CommitFilter(package_path=path, package_name=name))
