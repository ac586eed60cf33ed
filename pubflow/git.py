"""Git command-line adapter.

`GitCli` implements the VersionControlAdapter protocol by shelling out to
git in a fixed repository directory. It never changes the process working
directory.
"""

from __future__ import annotations

from pathlib import Path

from .models import GitStatus
from .shell import git


def parse_status(output: str) -> GitStatus:
    """Parse `git status --porcelain=v2 --branch` output.

    Header lines (`# branch.*`) give branch, upstream and ahead/behind
    counts; every other line is a changed, renamed, unmerged or untracked
    path.
    """
    status = GitStatus()
    for line in output.splitlines():
        if line.startswith("# branch.head "):
            head = line.split(" ", 2)[2]
            status.branch = None if head == "(detached)" else head
        elif line.startswith("# branch.upstream "):
            status.tracking = line.split(" ", 2)[2]
        elif line.startswith("# branch.ab "):
            _, _, ahead, behind = line.split(" ")
            status.ahead = abs(int(ahead))
            status.behind = abs(int(behind))
        elif line.startswith("1 "):
            status.files.append(line.split(" ", 8)[8])
        elif line.startswith("2 "):
            # Renames carry "<path>\t<original path>"
            status.files.append(line.split(" ", 9)[9].split("\t")[0])
        elif line.startswith("u "):
            status.files.append(line.split(" ", 10)[10])
        elif line.startswith("? "):
            status.files.append(line[2:])
    return status


class GitCli:
    """VersionControlAdapter backed by the git executable."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _git(self, *args: str, check: bool = True) -> str:
        return git(*args, cwd=self.root, check=check)

    def status(self) -> GitStatus:
        return parse_status(self._git("status", "--porcelain=v2", "--branch"))

    def fetch(self, remote: str) -> None:
        self._git("fetch", remote)

    def tags(self) -> list[str]:
        return [t for t in self._git("tag", "--list").splitlines() if t]

    def add_annotated_tag(self, name: str, message: str) -> None:
        self._git("tag", "-a", name, "-m", message)

    def delete_tag(self, name: str) -> None:
        self._git("tag", "-d", name)

    def add(self, paths: list[str]) -> None:
        self._git("add", "--", *paths)

    def commit(self, message: str) -> None:
        self._git("commit", "-m", message)

    def push(self, remote: str, branch: str, options: list[str]) -> None:
        self._git("push", *options, remote, branch)

    def raw(self, args: list[str]) -> str:
        return self._git(*args)

    def head(self) -> str:
        return self._git("rev-parse", "HEAD")

    def reset_soft(self, ref: str) -> None:
        self._git("reset", "--soft", ref)
