"""Release tag naming and tag lifecycle.

Tag names come from a template with `${packageName}` and `${version}`
placeholders, prefixed by an optional tag prefix: with the defaults a
release of `pkg-a` 1.2.0 is tagged `pkg-a@1.2.0`.
"""

from __future__ import annotations

import logging
import re
from string import Template

from .adapters import VersionControlAdapter
from .errors import ExternalCommandError, TagExistsError
from .versions import compare_versions

logger = logging.getLogger("pubflow")


def format_template(template: str, **values: str) -> str:
    """Substitute `${name}` placeholders, leaving unknown ones untouched."""
    return Template(template).safe_substitute(values)


def format_tag(template: str, prefix: str, package: str, version: str) -> str:
    return prefix + format_template(template, packageName=package, version=version)


def tag_pattern(template: str, prefix: str, package: str) -> re.Pattern[str]:
    """Regex matching every release tag of `package`, capturing the version."""
    pattern = re.escape(prefix + template)
    pattern = pattern.replace(re.escape("${packageName}"), re.escape(package))
    pattern = pattern.replace(re.escape("${version}"), r"(?P<version>\d[^\s]*)")
    return re.compile(f"^{pattern}$")


def find_last_tag(tags: list[str], template: str, prefix: str, package: str) -> str | None:
    """Pick the highest release tag of a package.

    Tags are ordered by component-wise integer comparison of their version
    part, so `a@1.10.0` sorts after `a@1.9.0`.

    Returns:
        The tag name, or None if the package has never been released.
    """
    pattern = tag_pattern(template, prefix, package)
    best: tuple[str, str] | None = None
    for tag in tags:
        match = pattern.match(tag)
        if not match:
            continue
        version = match.group("version")
        if best is None or compare_versions(version, best[1]) > 0:
            best = (tag, version)
    return best[0] if best else None


def delete_tag(
    vcs: VersionControlAdapter,
    tag: str,
    remote: str | None,
    log: logging.Logger = logger,
) -> None:
    """Delete a tag locally and, best-effort, on the remote.

    A failed local deletion raises. A failed remote deletion is only logged:
    the tag may simply never have been pushed.
    """
    if tag in vcs.tags():
        vcs.delete_tag(tag)
        log.info("  Deleted local tag %s", tag)
    if remote:
        try:
            vcs.raw(["push", remote, f":refs/tags/{tag}"])
            log.info("  Deleted remote tag %s on %s", tag, remote)
        except ExternalCommandError as exc:
            log.debug("  Remote tag %s not deleted: %s", tag, exc)


def create_tag(
    vcs: VersionControlAdapter,
    tag: str,
    message: str,
    *,
    remote: str,
    force: bool = False,
    log: logging.Logger = logger,
) -> str:
    """Create an annotated release tag.

    With `force`, the old tag is deleted first and the commit it pointed
    at is logged, so it can be restored by hand if the new tag cannot be
    created.

    Raises:
        TagExistsError: If the tag exists and `force` is not set.
        ExternalCommandError: If git fails to delete or create the tag.
    """
    previous: str | None = None
    if tag in vcs.tags():
        if not force:
            raise TagExistsError(tag, remote)
        previous = vcs.raw(["rev-list", "-n", "1", tag]).strip()
        log.info("  Tag %s exists at %s, replacing it (--force)", tag, previous[:7])
        log.info("  To restore it: git tag %s %s && git push %s %s", tag, previous, remote, tag)
        delete_tag(vcs, tag, remote, log)

    try:
        vcs.add_annotated_tag(tag, message)
    except ExternalCommandError as exc:
        # Lost a race with another tagger, or the tag list was stale
        if "already exists" in str(exc):
            raise TagExistsError(tag, remote) from exc
        if previous:
            raise ExternalCommandError(
                f"{exc}\nThe previous tag {tag} was deleted; it pointed at {previous}.\n"
                f"Restore it with:\n  git tag {tag} {previous}\n  git push {remote} {tag}",
                command=exc.command,
                returncode=exc.returncode,
                stderr=exc.stderr,
            ) from exc
        raise
    return tag
