"""
Manifest schemas - what a completed run hands to the manifest sink.

DeployedComponent is created exactly once per component; its address is
write-once. Links change only through the patch phase, which produces a
new DeployedComponent via dataclasses.replace.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional


MANIFEST_VERSION = "deplorch.manifest/1.0.0"

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def default_alias(name: str) -> str:
    """EventManager -> EVENT_MANAGER_ADDRESS."""
    snake = _WORD_BOUNDARY.sub("_", name)
    snake = re.sub(r"[^0-9A-Za-z]+", "_", snake).strip("_")
    return f"{snake.upper()}_ADDRESS"


@dataclass(frozen=True)
class DeployedComponent:
    """
    A component that the backend confirmed as deployed.

    Attributes:
        name: Component name
        address: Address assigned by the execution backend
        abi: Interface descriptor from the artifact
        constructor_args: Arguments the component was constructed with
        links: Dependency name -> address currently held by the component
        tx_ref: Backend reference of the deploy transaction
    """
    name: str
    address: str
    abi: list[Any] = field(default_factory=list)
    constructor_args: tuple[Any, ...] = field(default_factory=tuple)
    links: dict[str, str] = field(default_factory=dict)
    tx_ref: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "address": self.address,
            "abi": self.abi,
            "constructor_args": list(self.constructor_args),
            "links": dict(self.links),
        }
        if self.tx_ref is not None:
            result["tx_ref"] = self.tx_ref
        return result

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "DeployedComponent":
        return cls(
            name=name,
            address=data["address"],
            abi=data.get("abi", []),
            constructor_args=tuple(data.get("constructor_args", [])),
            links=dict(data.get("links", {})),
            tx_ref=data.get("tx_ref"),
        )


@dataclass(frozen=True)
class Manifest:
    """
    Final mapping of component name -> DeployedComponent plus aliases.

    Attributes:
        topology: Topology name
        plan_id: Hash of the plan that produced this manifest
        run_id: Run that produced this manifest
        deployer: Caller identity reported by the backend
        components: Name -> DeployedComponent, in deployment order
        aliases: Well-known alias -> address
        committed_at: ISO timestamp set by the manifest writer
    """
    topology: str
    plan_id: str
    run_id: str
    deployer: str
    components: dict[str, DeployedComponent] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    committed_at: Optional[str] = None

    def address_of(self, name: str) -> str:
        return self.components[name].address

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "manifest_version": MANIFEST_VERSION,
            "topology": self.topology,
            "plan_id": self.plan_id,
            "run_id": self.run_id,
            "deployer": self.deployer,
            "components": {name: c.to_dict() for name, c in self.components.items()},
            "aliases": dict(self.aliases),
        }
        if self.committed_at is not None:
            result["committed_at"] = self.committed_at
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        version = data.get("manifest_version")
        if version != MANIFEST_VERSION:
            raise ValueError(f"Unsupported manifest version: {version}")
        return cls(
            topology=data["topology"],
            plan_id=data["plan_id"],
            run_id=data["run_id"],
            deployer=data["deployer"],
            components={
                name: DeployedComponent.from_dict(name, c)
                for name, c in data.get("components", {}).items()
            },
            aliases=dict(data.get("aliases", {})),
            committed_at=data.get("committed_at"),
        )
