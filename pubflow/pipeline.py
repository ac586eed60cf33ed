"""Release pipeline: plan → validate → write → commit → tag → push → publish.

Each package moves through a forward-only state machine:

    PENDING → VALIDATED → VERSION_COMPUTED → CHANGELOG_WRITTEN
            → COMMITTED → TAGGED → PUSHED → PUBLISHED → DONE

and FAILED is reachable from every non-terminal state. Packages run one at
a time in dependency order.

Failure handling depends on how far a package got:

- Before CHANGELOG_WRITTEN nothing has been mutated.
- Up to and including TAGGED, local changes are rolled back: the commit is
  soft-reset, the index unstaged and the files restored.
- At PUSHED or PUBLISHED nothing is rolled back. The outcome lists the
  residual state and a hint to finish by hand.

A failed package also fails every later package in the batch whose plan
rewrites its range on the failed one.
"""

from __future__ import annotations

import logging
import time
from datetime import date
from pathlib import Path

from pydantic import BaseModel, Field

from . import changelog
from .adapters import ChangelogFileStore, ManifestStore, RegistryAdapter, VersionControlAdapter
from .checks import (
    Check,
    failure_message,
    parse_checks,
    run_package_checks,
    run_repository_checks,
)
from .config import ReleaseConfig
from .errors import (
    ConfigurationError,
    ExternalCommandError,
    PartialReleaseError,
    PubflowError,
    ValidationError,
)
from .graph import expand, topo_sort
from .history import CommitHistory
from .models import (
    CheckResult,
    Commit,
    DependencyUpdate,
    DryRunReport,
    PackageInfo,
    PackageOutcome,
    ReleaseFailure,
    ReleaseResult,
    ReleaseState,
    ReleaseStepResult,
    ValidationReport,
    VersionBumpPlan,
)
from .resolver import VersionResolver
from .shell import step
from .tags import create_tag, format_tag, format_template, tag_pattern
from .versions import compare_versions


class ReleaseOptions(BaseModel):
    """Per-run switches (CLI flags).

    `push` and `publish` default to the configuration when left as None.
    """

    dry_run: bool = False
    force: bool = False
    allow_branch: bool = False
    push: bool | None = None
    publish: bool | None = None
    otp: str | None = None
    include_checks: list[str] = Field(default_factory=list)
    exclude_checks: list[str] = Field(default_factory=list)
    overrides: dict[str, str] = Field(default_factory=dict)
    #: validate only: build each publishable package's archive as a final check
    pack: bool = False


class _PendingFile(BaseModel):
    """A rendered file change, kept with its original for rollback."""

    path: str
    old: str | None
    new: str
    manifest: bool


class _Prepared(BaseModel):
    packages: dict[str, PackageInfo]
    targets: list[str]
    plans: list[VersionBumpPlan]
    commits: dict[str, list[Commit]]


class ReleasePipeline:
    """Orchestrates releases of a monorepo workspace.

    Args:
        config: Parsed `[tool.pubflow]` configuration.
        root: Workspace root directory.
        vcs: Version-control adapter.
        registry: Package registry adapter.
        manifests: Manifest store for the workspace's package format.
        changelogs: Changelog file store.
        log: Logger; defaults to the "pubflow" logger.
        today: Release date (YYYY-MM-DD); defaults to today.
    """

    def __init__(
        self,
        config: ReleaseConfig,
        root: Path,
        vcs: VersionControlAdapter,
        registry: RegistryAdapter,
        manifests: ManifestStore,
        changelogs: ChangelogFileStore,
        log: logging.Logger | None = None,
        today: str | None = None,
    ) -> None:
        self.config = config
        self.root = root
        self.vcs = vcs
        self.registry = registry
        self.manifests = manifests
        self.changelogs = changelogs
        self.log = log or logging.getLogger("pubflow")
        self.today = today or date.today().isoformat()
        self.history = CommitHistory(
            vcs,
            self.log,
            tag_template=config.git.tag_template,
            tag_prefix=config.git.tag_prefix,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def workspace(self) -> dict[str, PackageInfo]:
        """Load the workspace and reject dependency cycles.

        Raises:
            ConfigurationError: On a cycle or an unreadable workspace.
        """
        packages = self.manifests.list_workspace_packages()
        topo_sort(packages)
        return packages

    def _select(self, names: list[str] | None, packages: dict[str, PackageInfo]) -> list[str]:
        if not names:
            return sorted(packages)
        unknown = sorted(set(names) - set(packages))
        if unknown:
            raise ConfigurationError(f"Unknown package(s): {', '.join(unknown)}")
        return list(dict.fromkeys(names))

    def tag_for(self, package: str, version: str) -> str:
        git = self.config.git
        return format_tag(git.tag_template, git.tag_prefix, package, version)

    def _prepare(self, names: list[str] | None, overrides: dict[str, str] | None) -> _Prepared:
        step(self.log, "Planning release")
        self.log.debug("Workspace root: %s", self.root)
        packages = self.workspace()
        targets = self._select(names, packages)

        commits: dict[str, list[Commit]] = {}
        for name in targets:
            tag, found = self.history.package_commits(name, packages[name].path)
            self.log.debug("  %s: %d commit(s) since %s", name, len(found), tag or "the beginning")
            commits[name] = found

        resolver = VersionResolver(self.config.bump_strategy, self.log)
        initial = resolver.plan(packages, commits, overrides)
        plans = expand(
            initial, packages, self.config.range_policy, pep440=self.manifests.pep440_ranges
        )

        # Cascaded and fixed-strategy packages still list their own commits
        for plan in plans:
            if plan.package not in commits:
                _, commits[plan.package] = self.history.package_commits(
                    plan.package, packages[plan.package].path
                )
        return _Prepared(packages=packages, targets=targets, plans=plans, commits=commits)

    def plan(
        self, names: list[str] | None = None, overrides: dict[str, str] | None = None
    ) -> list[VersionBumpPlan]:
        """Compute the propagated plan set without validating or writing anything.

        Args:
            names: Packages to release; all workspace packages when empty.
            overrides: Explicit package → version overrides.

        Returns:
            Plans in release order (dependencies first).
        """
        return self._prepare(names, overrides).plans

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_sets(self, options: ReleaseOptions) -> tuple[set[Check], set[Check]]:
        include = parse_checks(options.include_checks)
        exclude = parse_checks([*options.exclude_checks, *self.config.checks.skip])
        return include, exclude

    def _publishing(self, info: PackageInfo, options: ReleaseOptions) -> bool:
        if info.private or not self.config.publish_enabled_for(info.name):
            return False
        return options.publish if options.publish is not None else True

    def _pushing(self, options: ReleaseOptions) -> bool:
        if not self.config.git.commit:
            return False
        return options.push if options.push is not None else self.config.git.push

    def _changelog_path(self, info: PackageInfo) -> str:
        return f"{info.path}/{self.config.changelog_file_for(info.name)}"

    def validate(
        self, names: list[str] | None = None, options: ReleaseOptions | None = None
    ) -> list[ValidationReport]:
        """Run the check registry without releasing.

        Each report covers one package: the repository checks (shared) plus
        that package's own checks against its proposed version, or its
        current version when nothing would be released.
        """
        options = options or ReleaseOptions()
        include, exclude = self._check_sets(options)
        prepared = self._prepare(names, options.overrides)
        planned = {p.package: p for p in prepared.plans}

        step(self.log, "Validating")
        repo_results = run_repository_checks(
            self.vcs,
            self.config,
            self.log,
            include=include,
            exclude=exclude,
            allow_branch=options.allow_branch,
        )
        reports: list[ValidationReport] = []
        order = [n for n in topo_sort(prepared.packages) if n in planned or n in prepared.targets]
        for name in order:
            info = prepared.packages[name]
            version = planned[name].to_version if name in planned else info.version
            results = repo_results + run_package_checks(
                self.registry,
                self.config,
                info,
                version,
                prepared.packages,
                changelog_content=self.changelogs.read(self._changelog_path(info)),
                changelog_required=self.config.changelog_required,
                include=include,
                exclude=exclude,
                publishing=self._publishing(info, options),
            )
            if options.pack and self._publishing(info, options):
                results.append(self._check_pack(info))
            report = ValidationReport(package=name, results=results)
            for result in results:
                mark = "✓" if result.success else "✗"
                self.log.info("  %s %s: %s", mark, name, result.name)
            reports.append(report)
        return reports

    def _check_pack(self, info: PackageInfo) -> CheckResult:
        start = time.perf_counter()
        try:
            archive = self.registry.pack(info)
        except ExternalCommandError as exc:
            return CheckResult(
                name="pack",
                success=False,
                error=(
                    f"Failed to pack {info.name}: {exc}\n"
                    "Make sure every required file is present and build artifacts are generated."
                ),
                duration=time.perf_counter() - start,
            )
        self.log.debug("  Packed %s: %s", info.name, archive)
        return CheckResult(name="pack", success=True, duration=time.perf_counter() - start)

    def dependency_report(self) -> list[DependencyUpdate]:
        """Outdated dependencies of the workspace, as reported by the registry tool.

        Entries naming a workspace package are flagged `is_workspace`.
        """
        packages = self.workspace()
        return [
            update.model_copy(update={"is_workspace": update.name in packages})
            for update in self.registry.get_dependency_updates()
        ]

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(
        self, names: list[str] | None = None, options: ReleaseOptions | None = None
    ) -> list[PackageOutcome]:
        """Release the named packages (and everything cascaded from them).

        Args:
            names: Packages to release; all workspace packages when empty.
            options: Per-run switches.

        Returns:
            One outcome per planned package, in release order.

        Raises:
            ConfigurationError: For a cycle, an unknown package or check
                name, or an invalid override. Raised before any mutation.
        """
        options = options or ReleaseOptions()
        include, exclude = self._check_sets(options)
        prepared = self._prepare(names, options.overrides)
        if not prepared.plans:
            self.log.info("Nothing to release.")
            return []

        repo_results = run_repository_checks(
            self.vcs,
            self.config,
            self.log,
            include=include,
            exclude=exclude,
            allow_branch=options.allow_branch,
        )

        outcomes: list[PackageOutcome] = []
        failed: set[str] = set()
        for plan in prepared.plans:
            blocked = sorted(dep for dep in plan.dependency_updates if dep in failed)
            if blocked:
                self.log.error("  %s: skipped, dependency %s failed", plan.package, ", ".join(blocked))
                outcome: PackageOutcome = ReleaseFailure(
                    package=plan.package,
                    from_version=plan.from_version,
                    to_version=plan.to_version,
                    failed_at=ReleaseState.PENDING,
                    error=f"Dependency {', '.join(blocked)} failed to release",
                )
            else:
                outcome = self._release_one(
                    plan,
                    prepared.packages,
                    prepared.commits.get(plan.package, []),
                    repo_results,
                    options,
                    include,
                    exclude,
                )
            if isinstance(outcome, ReleaseFailure):
                failed.add(plan.package)
            outcomes.append(outcome)

        self._summarize(outcomes)
        return outcomes

    def _render_files(
        self, info: PackageInfo, plan: VersionBumpPlan, commits: list[Commit]
    ) -> list[_PendingFile]:
        """Render the new manifest and changelog in memory."""
        manifest_file = self.manifests.manifest_file(info.path)
        ranges = {dep: update.new_range for dep, update in plan.dependency_updates.items()}
        manifest_new = self.manifests.render_version(info.path, plan.to_version, ranges)

        fmt = self.config.changelog_format_for(info.name)
        path = self._changelog_path(info)
        old = self.changelogs.read(path)
        entry = changelog.build_entry(
            plan.to_version,
            commits,
            fmt,
            date=self.today,
            dependency_updates=plan.dependency_updates.values(),
            repository_url=self.config.repository_url,
        )
        entry, base = changelog.promote_unreleased(old, entry, fmt)
        return [
            _PendingFile(
                path=manifest_file,
                old=self.manifests.read_text(manifest_file),
                new=manifest_new,
                manifest=True,
            ),
            _PendingFile(path=path, old=old, new=changelog.merge(base, entry, fmt), manifest=False),
        ]

    def _write(self, files: list[_PendingFile]) -> None:
        for f in files:
            if f.manifest:
                self.manifests.write_text(f.path, f.new)
            else:
                self.changelogs.write(f.path, f.new)

    def _restore(self, files: list[_PendingFile]) -> None:
        for f in files:
            if f.manifest:
                self.manifests.write_text(f.path, f.old or "")
            elif f.old is None:
                self.changelogs.delete(f.path)
            else:
                self.changelogs.write(f.path, f.old)

    def _rollback(self, head: str | None, files: list[_PendingFile]) -> bool:
        """Undo the local release commit and file changes.

        Returns:
            True if everything was restored.
        """
        self.log.warning("  Rolling back local changes")
        try:
            if head and self.vcs.head() != head:
                self.vcs.reset_soft(head)
            self.vcs.raw(["reset", "-q", "--", *[f.path for f in files]])
            self._restore(files)
        except (PubflowError, OSError) as exc:
            self.log.error("  Rollback failed: %s", exc)
            return False
        return True

    def _release_one(
        self,
        plan: VersionBumpPlan,
        packages: dict[str, PackageInfo],
        commits: list[Commit],
        repo_results: list[CheckResult],
        options: ReleaseOptions,
        include: set[Check],
        exclude: set[Check],
    ) -> PackageOutcome:
        name = plan.package
        info = packages[name]
        git = self.config.git
        tag = self.tag_for(name, plan.to_version)
        publishing = self._publishing(info, options)
        pushing = self._pushing(options)
        tagging = git.commit and git.tag
        step(self.log, f"{'[dry-run] ' if options.dry_run else ''}{name}: {plan.from_version} → {plan.to_version}")

        steps: list[ReleaseStepResult] = []
        state = ReleaseState.PENDING
        files: list[_PendingFile] = []
        written = False
        head: str | None = None

        def done(s: ReleaseState, detail: str = "") -> None:
            steps.append(ReleaseStepResult(state=s, detail=detail))
            if detail:
                self.log.info("  %s: %s", s.value, detail)

        try:
            state = ReleaseState.VALIDATED
            results = repo_results + run_package_checks(
                self.registry,
                self.config,
                info,
                plan.to_version,
                packages,
                changelog_content=self.changelogs.read(self._changelog_path(info)),
                changelog_required=False,
                include=include,
                exclude=exclude,
                publishing=publishing,
            )
            if any(not r.success for r in results):
                raise ValidationError(failure_message(name, results))
            done(state, f"{len(results)} check(s) passed")

            state = ReleaseState.VERSION_COMPUTED
            done(state, f"{plan.bump.value} bump, {plan.reason.describe()}")

            state = ReleaseState.CHANGELOG_WRITTEN
            files = self._render_files(info, plan, commits)
            if options.dry_run:
                done(state, "rendered (not written)")
                return DryRunReport(
                    package=name,
                    from_version=plan.from_version,
                    to_version=plan.to_version,
                    bump=plan.bump,
                    reason=plan.reason.describe(),
                    tag=tag,
                    will_commit=git.commit,
                    will_tag=tagging,
                    will_push=pushing,
                    will_publish=publishing,
                    dependency_updates=list(plan.dependency_updates.values()),
                    changelog_diff=changelog.diff(files[1].old, files[1].new, files[1].path),
                    steps=steps,
                )

            head = self.vcs.head() if git.commit else None
            written = True
            self._write(files)
            done(state, ", ".join(f.path for f in files))

            if git.commit:
                state = ReleaseState.COMMITTED
                self.vcs.add([f.path for f in files])
                message = format_template(git.commit_message, packageName=name, version=plan.to_version)
                self.vcs.commit(message)
                done(state, message)

            if tagging:
                state = ReleaseState.TAGGED
                tag_message = format_template(
                    git.tag_message, tag=tag, packageName=name, version=plan.to_version
                )
                create_tag(self.vcs, tag, tag_message, remote=git.remote, force=options.force, log=self.log)
                done(state, tag)

            # Past this point nothing is rolled back
            written = False
            residual = self._residual(name, plan.to_version, tag if tagging else None, git.commit)

            if pushing:
                state = ReleaseState.PUSHED
                self._push(tag if tagging else None, residual)
                residual = [f"pushed release commit{' and tag ' + tag if tagging else ''} to {git.remote}"]
                done(state, git.remote)

            if publishing:
                state = ReleaseState.PUBLISHED
                self._publish(info, plan, options, tag if tagging else None, residual)
                done(state, f"{name}@{plan.to_version}")

            state = ReleaseState.DONE
            done(state)
            return ReleaseResult(
                package=name,
                from_version=plan.from_version,
                to_version=plan.to_version,
                tag=tag if tagging else None,
                pushed=pushing,
                published=publishing,
                steps=steps,
            )
        except PartialReleaseError as exc:
            self.log.error("  %s failed at %s: %s", name, state.value, exc)
            steps.append(ReleaseStepResult(state=ReleaseState.FAILED, ok=False, detail=str(exc)))
            return ReleaseFailure(
                package=name,
                from_version=plan.from_version,
                to_version=plan.to_version,
                failed_at=state,
                error=str(exc),
                residual=exc.residual,
                hint=exc.hint,
                steps=steps,
            )
        except (PubflowError, OSError) as exc:
            self.log.error("  %s failed at %s: %s", name, state.value, exc)
            rolled_back = self._rollback(head, files) if written else False
            steps.append(ReleaseStepResult(state=ReleaseState.FAILED, ok=False, detail=str(exc)))
            return ReleaseFailure(
                package=name,
                from_version=plan.from_version,
                to_version=plan.to_version,
                failed_at=state,
                error=str(exc),
                residual=[] if rolled_back or not written else ["release files left modified"],
                rolled_back=rolled_back,
                steps=steps,
            )

    def _residual(self, name: str, version: str, tag: str | None, committed: bool) -> list[str]:
        residual: list[str] = []
        if committed:
            residual.append(f"local release commit for {name}@{version}")
        if tag:
            residual.append(f"local tag {tag}")
        return residual

    def _push(self, tag: str | None, residual: list[str]) -> None:
        remote = self.config.git.remote
        try:
            status = self.vcs.status()
        except PubflowError as exc:
            raise PartialReleaseError(
                f"Could not read the branch to push: {exc}",
                residual=residual,
                hint=f"git push --follow-tags {remote} <branch>",
            ) from exc
        if status.branch is None:
            raise PartialReleaseError(
                "Cannot push from a detached HEAD",
                residual=residual,
                hint=f"Check out a branch and run: git push --follow-tags {remote} <branch>",
            )
        push_options = ["--follow-tags"]
        if status.tracking is None:
            push_options.append("--set-upstream")
        try:
            self.vcs.push(remote, status.branch, push_options)
        except PubflowError as exc:
            hint = f"git push {' '.join(push_options)} {remote} {status.branch}"
            if tag:
                hint += f"\n  git push {remote} {tag}"
            raise PartialReleaseError(
                f"Push to {remote} failed: {exc}", residual=residual, hint=hint
            ) from exc

    def _publish(
        self,
        info: PackageInfo,
        plan: VersionBumpPlan,
        options: ReleaseOptions,
        tag: str | None,
        residual: list[str],
    ) -> None:
        released = info.model_copy(update={"version": plan.to_version})
        publish_config = self.config.publish
        if options.otp:
            publish_config = publish_config.model_copy(update={"otp": options.otp})
        try:
            self.registry.publish(released, publish_config)
        except PubflowError as exc:
            where = f"from tag {tag}" if tag else "from the release commit"
            raise PartialReleaseError(
                f"Publishing {info.name}@{plan.to_version} failed: {exc}",
                residual=residual,
                hint=f"The release is committed; publish {info.name}@{plan.to_version} again {where}.",
            ) from exc

    def _summarize(self, outcomes: list[PackageOutcome]) -> None:
        step(self.log, "Summary")
        for outcome in outcomes:
            if isinstance(outcome, ReleaseFailure):
                self.log.info("  ✗ %s (failed at %s)", outcome.package, outcome.failed_at.value)
                for item in outcome.residual:
                    self.log.info("      left behind: %s", item)
                if outcome.hint:
                    self.log.info("      to finish: %s", outcome.hint)
            elif isinstance(outcome, DryRunReport):
                self.log.info("  ~ %s %s → %s (dry-run)", outcome.package, outcome.from_version, outcome.to_version)
            else:
                self.log.info("  ✓ %s %s → %s", outcome.package, outcome.from_version, outcome.to_version)

    # ------------------------------------------------------------------
    # Changelog commands
    # ------------------------------------------------------------------

    def preview_changelog(self, name: str, version: str | None = None) -> str:
        """Render the entry the next release of `name` would add.

        Includes notes waiting in Unreleased. Nothing is written.
        """
        packages = self.workspace()
        if name not in packages:
            raise ConfigurationError(f"Unknown package: {name}")
        info = packages[name]
        _, commits = self.history.package_commits(name, info.path)
        overrides = {name: version} if version else None
        plan = next((p for p in self.plan([name], overrides) if p.package == name), None)
        target = plan.to_version if plan else version or info.version
        fmt = self.config.changelog_format_for(name)
        entry = changelog.build_entry(
            target,
            commits,
            fmt,
            date=self.today,
            dependency_updates=plan.dependency_updates.values() if plan else (),
            repository_url=self.config.repository_url,
        )
        entry, _ = changelog.promote_unreleased(self.changelogs.read(self._changelog_path(info)), entry, fmt)
        return changelog.render(entry, fmt)

    def validate_changelogs(self, names: list[str] | None = None) -> dict[str, list[str]]:
        """Validate changelog files; returns package → problems (empty when valid)."""
        packages = self.workspace()
        problems: dict[str, list[str]] = {}
        for name in self._select(names, packages):
            info = packages[name]
            path = self._changelog_path(info)
            try:
                changelog.validate(
                    self.changelogs.read(path),
                    self.config.changelog_format_for(name),
                    required=self.config.changelog_required,
                    path=path,
                )
                problems[name] = []
            except ValidationError as exc:
                problems[name] = getattr(exc, "problems", [str(exc)])
        return problems

    def check_versions(self, names: list[str] | None = None) -> dict[str, list[str]]:
        """Compare manifest, changelog and last-tag versions of each package.

        Returns:
            package → warnings (empty when all three agree or are absent).
        """
        packages = self.workspace()
        template = self.config.git.tag_template
        prefix = self.config.git.tag_prefix
        warnings: dict[str, list[str]] = {}
        for name in self._select(names, packages):
            info = packages[name]
            found: list[str] = []
            logged = changelog.latest_version(self.changelogs.read(self._changelog_path(info)))
            tag = self.history.last_tag(name)
            match = tag_pattern(template, prefix, name).match(tag) if tag else None
            tagged = match.group("version") if match else None
            if logged and compare_versions(logged, info.version) != 0:
                found.append(f"changelog version {logged} differs from manifest version {info.version}")
            if tagged and compare_versions(tagged, info.version) != 0:
                found.append(f"last tag {tag} differs from manifest version {info.version}")
            if logged and tagged and compare_versions(logged, tagged) != 0:
                found.append(f"changelog version {logged} differs from last tag {tag}")
            warnings[name] = found
        return warnings

    def update_unreleased(self, names: list[str] | None = None) -> list[str]:
        """Add commits since each package's last tag to its Unreleased section.

        Returns:
            Paths of the changelogs that changed.
        """
        packages = self.workspace()
        changed: list[str] = []
        for name in self._select(names, packages):
            info = packages[name]
            _, commits = self.history.package_commits(name, info.path)
            fmt = self.config.changelog_format_for(name)
            entry = changelog.build_entry(
                "", commits, fmt, date=self.today, repository_url=self.config.repository_url
            )
            lines = [line for group in entry.sections.values() for line in group]
            if not lines:
                self.log.info("  %s: nothing to add", name)
                continue
            path = self._changelog_path(info)
            old = self.changelogs.read(path)
            new = changelog.add_to_unreleased(old, lines, fmt)
            if new != old:
                self.changelogs.write(path, new)
                changed.append(path)
                self.log.info("  %s: %d entr%s in Unreleased", name, len(lines), "y" if len(lines) == 1 else "ies")
            else:
                self.log.info("  %s: nothing to add", name)
        return changed
