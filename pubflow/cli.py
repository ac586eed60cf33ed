"""CLI entry point for pubflow."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path

from .config import load_config
from .errors import PubflowError
from .git import GitCli
from .manifests import FileChangelogStore, PackageJsonStore, PyprojectStore
from .models import DependencyUpdate, DryRunReport, ReleaseFailure
from .pipeline import ReleaseOptions, ReleasePipeline
from .registry import create_registry

try:
    __version__ = pkg_version("pubflow")
except PackageNotFoundError:
    __version__ = "0.0.0"


def _fatal(msg: str) -> None:
    """Print error and exit."""
    print(f"Error: {msg}", file=sys.stderr)
    sys.exit(1)


def _configure_logging(debug: bool) -> logging.Logger:
    log = logging.getLogger("pubflow")
    log.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    log.addHandler(handler)
    log.setLevel(logging.DEBUG if debug else logging.INFO)
    return log


def _pipeline(args: argparse.Namespace) -> ReleasePipeline:
    root = Path(args.cwd).resolve()
    config = load_config(root)
    manifests = PyprojectStore(root) if config.manifest == "pyproject" else PackageJsonStore(root)
    return ReleasePipeline(
        config,
        root,
        GitCli(root),
        create_registry(config.registry, root),
        manifests,
        FileChangelogStore(root),
        log=logging.getLogger("pubflow"),
    )


def _names(args: argparse.Namespace, pipeline: ReleasePipeline) -> list[str]:
    """Package names from the command line; [] means every package.

    With neither names nor --all, falls back to the package whose directory
    contains the current directory.
    """
    if args.packages or getattr(args, "all", True):
        return list(args.packages)
    here = Path.cwd().resolve()
    root = pipeline.root.resolve()
    for name, info in sorted(pipeline.workspace().items()):
        if info.path in ("", "."):
            continue
        pkg_dir = (root / info.path).resolve()
        if here == pkg_dir or pkg_dir in here.parents:
            return [name]
    _fatal("Name at least one package, or pass --all.")
    return []


def _options(args: argparse.Namespace) -> ReleaseOptions:
    overrides: dict[str, str] = {}
    if getattr(args, "version", None):
        if len(args.packages) != 1:
            _fatal("--version requires exactly one package.")
        overrides[args.packages[0]] = args.version
    return ReleaseOptions(
        dry_run=getattr(args, "dry_run", False),
        force=getattr(args, "force", False),
        allow_branch=args.allow_branch,
        push=False if getattr(args, "no_push", False) else None,
        publish=False if getattr(args, "no_publish", False) else None,
        otp=getattr(args, "otp", None),
        include_checks=args.only or [],
        exclude_checks=args.skip or [],
        overrides=overrides,
        pack=getattr(args, "pack", False),
    )


def cmd_release(args: argparse.Namespace) -> None:
    """Release packages, or show what a release would do with --dry-run."""
    pipeline = _pipeline(args)
    outcomes = pipeline.release(_names(args, pipeline), _options(args))
    if not outcomes:
        print("Nothing to release.")
        return

    failed = False
    for outcome in outcomes:
        if isinstance(outcome, DryRunReport):
            print(f"{outcome.package}: {outcome.from_version} → {outcome.to_version} ({outcome.reason})")
            print(f"  tag:     {outcome.tag}{'' if outcome.will_tag else ' (not created)'}")
            print(f"  commit:  {'yes' if outcome.will_commit else 'no'}")
            print(f"  push:    {'yes' if outcome.will_push else 'no'}")
            print(f"  publish: {'yes' if outcome.will_publish else 'no'}")
            for update in outcome.dependency_updates:
                print(f"  {update.dependency}: {update.old_range or '*'} → {update.new_range}")
            if outcome.changelog_diff:
                print(outcome.changelog_diff)
        elif isinstance(outcome, ReleaseFailure):
            failed = True
            print(f"{outcome.package}: FAILED at {outcome.failed_at.value}", file=sys.stderr)
            print(f"  {outcome.error}", file=sys.stderr)
            if outcome.rolled_back:
                print("  Local changes were rolled back.", file=sys.stderr)
            for item in outcome.residual:
                print(f"  left behind: {item}", file=sys.stderr)
            if outcome.hint:
                print(f"  to finish:\n  {outcome.hint}", file=sys.stderr)
        else:
            print(f"{outcome.package}: released {outcome.to_version}")
    if failed:
        sys.exit(1)


def cmd_validate(args: argparse.Namespace) -> None:
    """Run pre-release checks and report per package."""
    pipeline = _pipeline(args)
    reports = pipeline.validate(_names(args, pipeline), _options(args))
    if args.deps_report_json:
        print(json.dumps([u.model_dump(mode="json") for u in pipeline.dependency_report()], indent=2))
    else:
        for report in reports:
            print(report.package)
            for result in report.results:
                mark = "✓" if result.success else "✗"
                print(f"  {mark} {result.name} ({result.duration * 1000:.0f}ms)")
                if result.error:
                    print("    " + result.error.replace("\n", "\n    "))
        if args.deps_report:
            _print_dependency_report(pipeline.dependency_report())
    if any(r.has_errors for r in reports):
        sys.exit(1)


def _print_dependency_report(updates: list[DependencyUpdate]) -> None:
    print("Dependency report")
    if not updates:
        print("  All dependencies are up to date.")
        return
    for update in updates:
        scope = " (workspace)" if update.is_workspace else ""
        print(f"  {update.name}: {update.current_version} → {update.latest_version}{scope}")


def cmd_plan(args: argparse.Namespace) -> None:
    """Print the propagated version plan."""
    plans = _pipeline(args).plan(list(args.packages))
    if args.json:
        print(json.dumps([p.model_dump(mode="json") for p in plans], indent=2))
        return
    if not plans:
        print("Nothing to release.")
        return
    for plan in plans:
        print(f"{plan.package}: {plan.from_version} → {plan.to_version} ({plan.bump.value}, {plan.reason.describe()})")
        for update in plan.dependency_updates.values():
            print(f"  {update.dependency}: {update.old_range or '*'} → {update.new_range}")


def cmd_changelog_preview(args: argparse.Namespace) -> None:
    pipeline = _pipeline(args)
    names = list(args.packages) or sorted(pipeline.workspace())
    if args.version and len(names) != 1:
        _fatal("--version requires exactly one package.")
    for name in names:
        print(f"# {name}\n")
        print(pipeline.preview_changelog(name, args.version))


def cmd_changelog_validate(args: argparse.Namespace) -> None:
    problems = _pipeline(args).validate_changelogs(list(args.packages))
    invalid = False
    for name, found in problems.items():
        if found:
            invalid = True
            print(f"✗ {name}", file=sys.stderr)
            for problem in found:
                print(f"    {problem}", file=sys.stderr)
        else:
            print(f"✓ {name}")
    if invalid:
        sys.exit(1)


def cmd_changelog_check(args: argparse.Namespace) -> None:
    """Compare manifest, changelog and tag versions."""
    warnings = _pipeline(args).check_versions(list(args.packages))
    mismatched = False
    for name, found in warnings.items():
        for warning in found:
            mismatched = True
            print(f"⚠ {name}: {warning}", file=sys.stderr)
    if not mismatched:
        print("All versions agree.")
    elif args.strict:
        sys.exit(1)


def cmd_changelog_update(args: argparse.Namespace) -> None:
    changed = _pipeline(args).update_unreleased(list(args.packages))
    for path in changed:
        print(f"Updated {path}")
    if not changed:
        print("Changelogs are up to date.")


def _add_check_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--skip", action="append", metavar="CHECK", help="Skip a check (repeatable)."
    )
    parser.add_argument(
        "--only",
        action="append",
        metavar="CHECK",
        help="Run only this check (repeatable); overrides --skip.",
    )
    parser.add_argument(
        "--allow-branch",
        action="store_true",
        help="Allow releasing from a branch not in allowed-branches.",
    )


def cli(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="pubflow",
        description="Release orchestrator for monorepo workspaces.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-C", "--cwd", default=".", help="Workspace root. (default: current directory)"
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # release subcommand
    release_parser = subparsers.add_parser("release", help="Release packages.")
    release_parser.add_argument("packages", nargs="*", metavar="PKG")
    release_parser.add_argument("--all", action="store_true", help="Release every package.")
    release_parser.add_argument(
        "--dry-run", action="store_true", help="Show what would happen without changing anything."
    )
    release_parser.add_argument(
        "--version", dest="version", default=None, help="Explicit version (one package only)."
    )
    release_parser.add_argument(
        "--force", action="store_true", help="Replace an existing release tag."
    )
    release_parser.add_argument("--no-push", action="store_true", help="Do not push.")
    release_parser.add_argument("--no-publish", action="store_true", help="Do not publish.")
    release_parser.add_argument("--otp", default=None, help="One-time password for the registry.")
    _add_check_args(release_parser)
    release_parser.set_defaults(func=cmd_release)

    # validate subcommand
    validate_parser = subparsers.add_parser("validate", help="Run pre-release checks.")
    validate_parser.add_argument("packages", nargs="*", metavar="PKG")
    validate_parser.add_argument("--all", action="store_true", help="Validate every package.")
    _add_check_args(validate_parser)
    validate_parser.add_argument(
        "--pack", action="store_true", help="Also build each publishable package's archive."
    )
    validate_parser.add_argument(
        "--deps-report", action="store_true", help="Print outdated dependencies after the checks."
    )
    validate_parser.add_argument(
        "--deps-report-json",
        action="store_true",
        help="Print outdated dependencies as JSON instead of the check listing.",
    )
    validate_parser.set_defaults(func=cmd_validate)

    # plan subcommand
    plan_parser = subparsers.add_parser("plan", help="Show the version plan.")
    plan_parser.add_argument("packages", nargs="*", metavar="PKG")
    plan_parser.add_argument("--json", action="store_true", help="Print the plan as JSON.")
    plan_parser.set_defaults(func=cmd_plan)

    # changelog subcommands
    changelog_parser = subparsers.add_parser("changelog", help="Changelog tools.")
    changelog_sub = changelog_parser.add_subparsers(dest="changelog_command", required=True)

    preview_parser = changelog_sub.add_parser("preview", help="Print the next changelog entry.")
    preview_parser.add_argument("packages", nargs="*", metavar="PKG")
    preview_parser.add_argument("--version", dest="version", default=None, help="Version to preview.")
    preview_parser.set_defaults(func=cmd_changelog_preview)

    check_validate_parser = changelog_sub.add_parser("validate", help="Validate changelog files.")
    check_validate_parser.add_argument("packages", nargs="*", metavar="PKG")
    check_validate_parser.set_defaults(func=cmd_changelog_validate)

    check_parser = changelog_sub.add_parser(
        "check", help="Compare manifest, changelog and tag versions."
    )
    check_parser.add_argument("packages", nargs="*", metavar="PKG")
    check_parser.add_argument("--strict", action="store_true", help="Exit 1 on any mismatch.")
    check_parser.set_defaults(func=cmd_changelog_check)

    update_parser = changelog_sub.add_parser(
        "update", help="Add unreleased commits to the Unreleased section."
    )
    update_parser.add_argument("packages", nargs="*", metavar="PKG")
    update_parser.set_defaults(func=cmd_changelog_update)

    args = parser.parse_args(argv)
    _configure_logging(args.debug)
    try:
        args.func(args)
    except PubflowError as exc:
        _fatal(str(exc))
