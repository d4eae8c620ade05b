"""
ComponentSpec schema - the declared unit of a deployment topology.

A ComponentSpec names a component, the components whose addresses its
constructor takes (in argument order), and the deferred edges that are
satisfied after deployment by a patch call instead of at construction.
"""

from dataclasses import dataclass, field
from typing import Any, Union

from deplorch.errors import PlanningError


# Stand-in for a dependency address that does not exist yet
PLACEHOLDER_ADDRESS = "0x" + "0" * 40


def default_patch_method(target: str) -> str:
    """Patch method for a deferred edge: update<Target>."""
    return f"update{target[:1].upper()}{target[1:]}"


@dataclass(frozen=True)
class DeferredEdge:
    """
    A cyclic back-edge, patched once both ends are deployed.

    Attributes:
        source: The component holding the reference (patched)
        target: The component whose address is injected
        method: Mutation called on source; defaults to update<Target>
    """
    source: str
    target: str
    method: str = ""

    def __post_init__(self):
        if not self.source or not self.target:
            raise PlanningError("Deferred edge requires both source and target")
        if self.source == self.target:
            raise PlanningError(f"Deferred edge '{self.source}' cannot target itself")
        if not self.method:
            object.__setattr__(self, "method", default_patch_method(self.target))

    @property
    def step_id(self) -> str:
        return f"patch:{self.source}.{self.method}"

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "target": self.target, "method": self.method}


@dataclass(frozen=True)
class ComponentSpec:
    """
    Declaration of one deployable component.

    Attributes:
        name: Unique component name (also the artifact name)
        dependencies: Components whose addresses are constructor arguments, in order
        deferred: Back-edges patched after deployment; a deferred target that is
                  also a dependency receives the placeholder at construction
    """
    name: str
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    deferred: tuple[DeferredEdge, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.name:
            raise PlanningError("Component name is required")
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "deferred", tuple(self.deferred))

        targets = [edge.target for edge in self.deferred]
        if len(targets) != len(set(targets)):
            raise PlanningError(f"Component '{self.name}': duplicate deferred targets {targets}")
        for edge in self.deferred:
            if edge.source != self.name:
                raise PlanningError(
                    f"Component '{self.name}': deferred edge source must be '{self.name}', "
                    f"got '{edge.source}'"
                )

    @property
    def deferred_targets(self) -> frozenset[str]:
        return frozenset(edge.target for edge in self.deferred)

    @property
    def forward_dependencies(self) -> tuple[str, ...]:
        """Dependencies that must be deployed before this component."""
        deferred = self.deferred_targets
        return tuple(dep for dep in self.dependencies if dep not in deferred)

    @property
    def step_id(self) -> str:
        return f"deploy:{self.name}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "dependencies": list(self.dependencies),
        }
        if self.deferred:
            result["deferred"] = [
                {"target": edge.target, "method": edge.method} for edge in self.deferred
            ]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComponentSpec":
        """
        Deserialize from dictionary.

        Deferred entries may be a bare target name or {target, method}.
        """
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise PlanningError(f"Component entry missing 'name': {data}")

        dependencies = data.get("dependencies") or []
        if not isinstance(dependencies, list) or not all(isinstance(d, str) for d in dependencies):
            raise PlanningError(f"Component '{name}': dependencies must be a list of names")

        deferred: list[DeferredEdge] = []
        for entry in data.get("deferred") or []:
            deferred.append(_parse_deferred(name, entry))

        return cls(name=name, dependencies=tuple(dependencies), deferred=tuple(deferred))


def _parse_deferred(source: str, entry: Union[str, dict[str, Any]]) -> DeferredEdge:
    if isinstance(entry, str):
        return DeferredEdge(source=source, target=entry)
    if isinstance(entry, dict) and isinstance(entry.get("target"), str):
        return DeferredEdge(source=source, target=entry["target"], method=entry.get("method") or "")
    raise PlanningError(f"Component '{source}': invalid deferred entry {entry!r}")
