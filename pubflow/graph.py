"""Dependency graph utilities.

Provides topological sorting for release order and the propagator that
cascades version bumps to dependents. Package A depends on package B when
A's manifest declares B and B is a workspace package.
"""

from __future__ import annotations

from collections.abc import Iterable

from .errors import ConfigurationError
from .models import BumpKind, BumpReason, PackageInfo, RangePolicy, RangeUpdate, VersionBumpPlan
from .ranges import update_range
from .versions import bump_version


def reverse_deps(packages: dict[str, PackageInfo]) -> dict[str, list[str]]:
    """Map each package to the workspace packages that depend on it."""
    reverse: dict[str, list[str]] = {n: [] for n in packages}
    for name, info in packages.items():
        for dep in info.internal_deps(packages):
            reverse[dep].append(name)
    return reverse


def topo_sort(packages: dict[str, PackageInfo]) -> list[str]:
    """Topologically sort packages by their internal dependencies.

    Uses Kahn's algorithm to produce an order where dependencies come before
    dependents. Packages with no dependencies are sorted alphabetically for
    deterministic output.

    Args:
        packages: Map of package name → PackageInfo.

    Returns:
        List of package names in release order (dependencies first).

    Raises:
        ConfigurationError: If a dependency cycle is detected.

    Example:
        If A depends on B, and B depends on C:
        topo_sort({A, B, C}) → [C, B, A]
    """
    # Count incoming edges (dependencies) for each package. Only dependencies
    # within the packages being sorted count.
    in_degree = {name: len(info.internal_deps(packages)) for name, info in packages.items()}
    reverse = reverse_deps(packages)

    queue = sorted(n for n, d in in_degree.items() if d == 0)
    order: list[str] = []

    while queue:
        node = queue.pop(0)
        order.append(node)
        for dependent in sorted(reverse[node]):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    # If we didn't process all packages, there must be a cycle
    if len(order) != len(packages):
        cycle = find_cycle(packages)
        remaining = ", ".join(sorted(set(packages) - set(order)))
        detail = " → ".join(cycle) if cycle else remaining
        raise ConfigurationError(f"Dependency cycle detected: {detail}")

    return order


def find_cycle(packages: dict[str, PackageInfo]) -> list[str] | None:
    """Return one dependency cycle as a closed path (["a", "b", "a"]), or None."""
    visiting: list[str] = []
    done: set[str] = set()

    def visit(node: str) -> list[str] | None:
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        if node in done:
            return None
        visiting.append(node)
        for dep in sorted(packages[node].internal_deps(packages)):
            cycle = visit(dep)
            if cycle:
                return cycle
        visiting.pop()
        done.add(node)
        return None

    for name in sorted(packages):
        cycle = visit(name)
        if cycle:
            return cycle
    return None


def expand(
    initial: Iterable[VersionBumpPlan],
    packages: dict[str, PackageInfo],
    policy: RangePolicy = RangePolicy.PRESERVE,
    *,
    pep440: bool | None = None,
) -> list[VersionBumpPlan]:
    """Close a set of bump plans over the dependency graph.

    Any package depending on a bumped package is added with (at least) a
    patch bump, reason "cascaded from dependency X", until a fixed point is
    reached. Every plan whose package depends on a bumped package gets a
    range update computed from its manifest range, so the plan set is
    internally consistent.

    The function is pure: inputs are not mutated, and
    expand(expand(p)) == expand(p).

    Args:
        initial: Plans from the version resolver (or a previous expand).
        packages: All workspace packages.
        policy: How dependents' declared ranges are rewritten.
        pep440: Declared ranges are PEP 440 specifiers (pyproject manifests);
            None guesses per range.

    Returns:
        Plans in topological order (dependencies first).

    Raises:
        ConfigurationError: If the workspace graph has a cycle, or a plan
            names an unknown package, or a dependent's declared range cannot
            be rewritten.
    """
    order = topo_sort(packages)
    plans: dict[str, VersionBumpPlan] = {}
    for plan in initial:
        if plan.package not in packages:
            raise ConfigurationError(f"Plan for unknown package: {plan.package}")
        plans[plan.package] = plan

    # Walking in topological order means every dependency of a node has
    # already been decided when the node is visited.
    for name in order:
        if name in plans:
            continue
        info = packages[name]
        bumped = [dep for dep in sorted(info.internal_deps(packages)) if dep in plans]
        if bumped:
            plans[name] = VersionBumpPlan(
                package=name,
                from_version=info.version,
                to_version=bump_version(info.version, BumpKind.PATCH),
                bump=BumpKind.PATCH,
                reason=BumpReason(kind="cascade", dependency=bumped[0]),
            )

    result: list[VersionBumpPlan] = []
    for name in order:
        if name not in plans:
            continue
        plan = plans[name]
        updates = _range_updates(packages[name], plans, packages, policy, pep440)
        result.append(plan.model_copy(update={"dependency_updates": updates}))
    return result


def _range_updates(
    info: PackageInfo,
    plans: dict[str, VersionBumpPlan],
    packages: dict[str, PackageInfo],
    policy: RangePolicy,
    pep440: bool | None,
) -> dict[str, RangeUpdate]:
    updates: dict[str, RangeUpdate] = {}
    for dep in sorted(info.internal_deps(packages)):
        if dep not in plans:
            continue
        old = info.dependencies[dep]
        new_version = plans[dep].to_version
        try:
            new_range = update_range(old, new_version, policy, pep440=pep440)
        except ValueError as exc:
            raise ConfigurationError(
                f"{info.name}: cannot update range {old!r} for {dep} to {new_version}: {exc}"
            ) from exc
        updates[dep] = RangeUpdate(
            dependency=dep,
            old_range=old,
            new_range=new_range,
            version=new_version,
        )
    return updates
