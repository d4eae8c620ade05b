"""
DeploymentPlan schema - the ordered, deterministic output of planning.

A DeploymentPlan is computed once per run and owned by the sequencer.
Its plan_id is a canonical hash of the order and patch list, so two
plans for the same topology compare equal by id.
"""

from dataclasses import dataclass, field
from typing import Any

from deplorch.utils import hash_canonical

from .component import ComponentSpec, DeferredEdge


@dataclass(frozen=True)
class PatchAction:
    """
    A post-deployment call injecting a late-bound address.

    Attributes:
        component: Name of the component being patched
        dependency: Name of the component whose address is injected
        target_address: Address of the component being patched
        method: Mutation to call on target_address
        argument_addresses: Addresses passed to the mutation
    """
    component: str
    dependency: str
    target_address: str
    method: str
    argument_addresses: tuple[str, ...]

    @property
    def step_id(self) -> str:
        return f"patch:{self.component}.{self.method}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "dependency": self.dependency,
            "target_address": self.target_address,
            "method": self.method,
            "argument_addresses": list(self.argument_addresses),
        }


@dataclass(frozen=True)
class DeploymentPlan:
    """
    Deployment order plus the deferred edges to patch afterwards.

    Attributes:
        topology: Name of the topology this plan was built from
        order: Components in deployment order (forward dependencies first)
        patches: Deferred edges in declaration order
        aliases: Well-known alias -> component name
    """
    topology: str
    order: tuple[ComponentSpec, ...]
    patches: tuple[DeferredEdge, ...] = field(default_factory=tuple)
    aliases: dict[str, str] = field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        return [spec.name for spec in self.order]

    @property
    def plan_id(self) -> str:
        return hash_canonical({
            "order": [spec.to_dict() for spec in self.order],
            "patches": [edge.to_dict() for edge in self.patches],
        })

    def to_dict(self) -> dict[str, Any]:
        return {
            "topology": self.topology,
            "plan_id": self.plan_id,
            "order": [spec.to_dict() for spec in self.order],
            "patches": [edge.to_dict() for edge in self.patches],
            "aliases": dict(self.aliases),
        }
