"""
Planner - Turn a set of ComponentSpecs into a DeploymentPlan.

Planning is purely computational and happens before any backend call:

1. Validate names: unique components, every dependency and deferred
   target declared, every alias pointing at a declared component.
2. Partition edges: a dependency listed in a component's `deferred`
   edges is deferred (satisfied by placeholder-then-patch); every other
   dependency is forward.
3. Topologically sort over forward edges only (Kahn's algorithm). Ties
   are broken by declaration order, so the same topology always yields
   the same plan.
4. Collect deferred edges, in declaration order, as the patch list.

If the forward subgraph still contains a cycle the topology is not
resolvable and PlanningError names the cycle.
"""

import heapq
import logging
from typing import Iterable, Mapping, Optional

from deplorch.errors import PlanningError
from deplorch.schemas import (
    ComponentSpec,
    DeferredEdge,
    DeploymentPlan,
    default_alias,
)

logger = logging.getLogger(__name__)


def build_plan(
    specs: Iterable[ComponentSpec],
    topology: str = "default",
    aliases: Optional[Mapping[str, str]] = None,
) -> DeploymentPlan:
    """
    Compute a deterministic DeploymentPlan.

    Args:
        specs: Component declarations, in declaration order
        topology: Topology name recorded on the plan
        aliases: Extra or overriding alias -> component name entries

    Returns:
        DeploymentPlan with forward-ordered components and patch list

    Raises:
        PlanningError: If the topology is not resolvable
    """
    specs = list(specs)
    if not specs:
        raise PlanningError("Topology declares no components")

    index = _index_specs(specs)
    _check_references(specs, index)

    order = _forward_order(specs, index)
    patches = _collect_patches(specs)
    _warn_unneeded_deferrals(specs)

    plan = DeploymentPlan(
        topology=topology,
        order=tuple(order),
        patches=tuple(patches),
        aliases=resolve_aliases(specs, aliases),
    )
    logger.debug(
        "Planned %s: order=%s patches=%s",
        topology, plan.names, [edge.step_id for edge in plan.patches],
    )
    return plan


def resolve_aliases(
    specs: list[ComponentSpec],
    overrides: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Default <NAME>_ADDRESS alias per component, then topology overrides."""
    declared = {spec.name for spec in specs}
    aliases = {default_alias(spec.name): spec.name for spec in specs}
    for alias, name in (overrides or {}).items():
        if name not in declared:
            raise PlanningError(f"Alias '{alias}' refers to undeclared component '{name}'")
        aliases[alias] = name
    return aliases


def _index_specs(specs: list[ComponentSpec]) -> dict[str, int]:
    index: dict[str, int] = {}
    for position, spec in enumerate(specs):
        if spec.name in index:
            raise PlanningError(f"Duplicate component name: {spec.name}")
        index[spec.name] = position
    return index


def _check_references(specs: list[ComponentSpec], index: dict[str, int]) -> None:
    for spec in specs:
        for dep in spec.dependencies:
            if dep not in index:
                raise PlanningError(
                    f"Component '{spec.name}' depends on undeclared component '{dep}'"
                )
        for edge in spec.deferred:
            if edge.target not in index:
                raise PlanningError(
                    f"Component '{spec.name}' defers undeclared component '{edge.target}'"
                )


def _forward_order(specs: list[ComponentSpec], index: dict[str, int]) -> list[ComponentSpec]:
    """Kahn's algorithm over forward edges, lowest declaration index first."""
    dependents: dict[str, list[str]] = {spec.name: [] for spec in specs}
    indegree: dict[str, int] = {}
    for spec in specs:
        forward = set(spec.forward_dependencies)
        indegree[spec.name] = len(forward)
        for dep in forward:
            dependents[dep].append(spec.name)

    ready = [index[name] for name, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)

    order: list[ComponentSpec] = []
    while ready:
        spec = specs[heapq.heappop(ready)]
        order.append(spec)
        for dependent in dependents[spec.name]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, index[dependent])

    if len(order) != len(specs):
        remaining = [spec for spec in specs if indegree[spec.name] > 0]
        cycle = _find_cycle(remaining)
        raise PlanningError(
            "Forward dependency cycle: " + " -> ".join(cycle)
            + ". Declare one edge as deferred to break it."
        )
    return order


def _find_cycle(specs: list[ComponentSpec]) -> list[str]:
    """Return one forward cycle among specs, as a closed path of names."""
    by_name = {spec.name: spec for spec in specs}
    visiting: list[str] = []
    done: set[str] = set()

    def visit(name: str) -> Optional[list[str]]:
        if name in visiting:
            return visiting[visiting.index(name):] + [name]
        if name in done or name not in by_name:
            return None
        visiting.append(name)
        for dep in by_name[name].forward_dependencies:
            found = visit(dep)
            if found:
                return found
        visiting.pop()
        done.add(name)
        return None

    for spec in specs:
        found = visit(spec.name)
        if found:
            return found
    return [spec.name for spec in specs]


def _collect_patches(specs: list[ComponentSpec]) -> list[DeferredEdge]:
    return [edge for spec in specs for edge in spec.deferred]


def _warn_unneeded_deferrals(specs: list[ComponentSpec]) -> None:
    """A deferred edge whose target cannot reach its source is not part of a cycle."""
    forward = {spec.name: spec.forward_dependencies for spec in specs}
    for spec in specs:
        for edge in spec.deferred:
            if not _reaches(forward, edge.target, spec.name):
                logger.warning(
                    "Deferred edge %s -> %s is not part of a cycle; it will still be patched",
                    edge.source, edge.target,
                )


def _reaches(forward: dict[str, tuple[str, ...]], start: str, goal: str) -> bool:
    stack = [start]
    seen: set[str] = set()
    while stack:
        name = stack.pop()
        if name == goal:
            return True
        if name in seen:
            continue
        seen.add(name)
        stack.extend(forward.get(name, ()))
    return False
