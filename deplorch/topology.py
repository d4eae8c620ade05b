"""
Topology loading - read ComponentSpec sets from YAML or JSON files.

A topology file declares components in order; declaration order is the
tie-break for deployment order. Example:

    topology: mosh
    version: "1.0"
    components:
      - name: Ticket
        dependencies: [EventManager]
        deferred: [EventManager]
      - name: EventManager
        dependencies: [Ticket]
      - name: Marketplace
        dependencies: [EventManager, Ticket]
    aliases:
      TICKET_ADDRESS: Ticket
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from deplorch.errors import PlanningError
from deplorch.planner import build_plan
from deplorch.schemas import ComponentSpec, DeploymentPlan


# Topologies shipped with the package
BUNDLED_DIR = Path(__file__).parent / "topologies"


@dataclass(frozen=True)
class Topology:
    """
    A named, ordered set of ComponentSpecs plus alias overrides.

    Attributes:
        name: Topology name (recorded on plans and manifests)
        version: Version string of the topology file
        components: Component declarations in declaration order
        aliases: Alias -> component name entries added to the defaults
    """
    name: str
    version: str
    components: tuple[ComponentSpec, ...]
    aliases: dict[str, str] = field(default_factory=dict)

    def plan(self) -> DeploymentPlan:
        return build_plan(self.components, topology=self.name, aliases=self.aliases)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "topology": self.name,
            "version": self.version,
            "components": [spec.to_dict() for spec in self.components],
        }
        if self.aliases:
            result["aliases"] = dict(self.aliases)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Topology":
        name = data.get("topology")
        if not isinstance(name, str) or not name:
            raise PlanningError("Topology file missing 'topology' name")

        components = data.get("components")
        if not isinstance(components, list) or not components:
            raise PlanningError(f"Topology '{name}' declares no components")

        aliases = data.get("aliases") or {}
        if not isinstance(aliases, dict):
            raise PlanningError(f"Topology '{name}': aliases must be a mapping")

        return cls(
            name=name,
            version=str(data.get("version", "0")),
            components=tuple(ComponentSpec.from_dict(c) for c in components),
            aliases={str(k): str(v) for k, v in aliases.items()},
        )


def load_topology(path: Path | str) -> Topology:
    """
    Load a topology from a .yaml/.yml/.json file.

    Raises:
        PlanningError: If the file is missing, unparsable or malformed
    """
    path = Path(path)
    if not path.exists():
        raise PlanningError(f"Topology file not found: {path}")

    suffix = path.suffix.lower()
    try:
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise PlanningError(f"Unsupported topology format: {suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise PlanningError(f"Failed to parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise PlanningError(f"Topology file must contain a mapping: {path}")
    return Topology.from_dict(data)


def bundled_topology(name: str) -> Path:
    """Path of a topology shipped with deplorch."""
    path = BUNDLED_DIR / f"{name}.yaml"
    if not path.exists():
        available = sorted(p.stem for p in BUNDLED_DIR.glob("*.yaml"))
        raise PlanningError(f"No bundled topology '{name}'. Available: {available}")
    return path
