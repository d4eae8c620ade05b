"""
Artifact resolution - the boundary to the component compiler/builder.

The compiler produces, per component, deployable bytecode plus an
interface descriptor (ABI). deplorch treats the pair as opaque.

Implementations:
- FileArtifactResolver: Hardhat-style artifacts tree (<root>/**/<Name>.json)
- InMemoryArtifactResolver: For tests and simulation
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from deplorch.errors import ArtifactNotFoundError


@dataclass(frozen=True)
class Artifact:
    """A deployable bundle and its interface descriptor."""
    name: str
    bytecode: str
    abi: list[Any] = field(default_factory=list)


@runtime_checkable
class ArtifactResolver(Protocol):
    """Stateless lookup of component name -> Artifact."""

    def resolve(self, name: str) -> Artifact:
        """
        Return the artifact for a component.

        Raises:
            ArtifactNotFoundError: If no deployable artifact exists
        """
        ...


class FileArtifactResolver:
    """
    Resolve artifacts from a compiler output directory.

    Searches <root>/**/<Name>.json, skipping debug sidecars (*.dbg.json)
    and build-info. Each file must hold "bytecode" and "abi".
    """

    def __init__(self, root: Path | str):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, name: str) -> Artifact:
        path = self._find_artifact(name)
        if path is None:
            raise ArtifactNotFoundError(f"Artifact not found for '{name}' under {self._root}")

        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ArtifactNotFoundError(f"Unreadable artifact {path}: {e}") from e

        bytecode = data.get("bytecode")
        if isinstance(bytecode, dict):
            # solc standard-json layout: {"object": "..."}
            bytecode = bytecode.get("object")
        if not isinstance(bytecode, str) or bytecode in ("", "0x"):
            raise ArtifactNotFoundError(
                f"Artifact {path} has no deployable bytecode (abstract or interface?)"
            )
        if not bytecode.startswith("0x"):
            bytecode = "0x" + bytecode

        return Artifact(name=name, bytecode=bytecode, abi=data.get("abi", []))

    def _find_artifact(self, name: str) -> Optional[Path]:
        if not self._root.exists():
            return None

        filename = f"{name}.json"
        root_path = self._root / filename
        if root_path.exists():
            return root_path

        matches = sorted(
            p for p in self._root.glob(f"**/{filename}")
            if "build-info" not in p.parts
        )
        return matches[0] if matches else None


class InMemoryArtifactResolver:
    """Resolve artifacts from a dict, for tests and simulation."""

    def __init__(self, artifacts: Optional[dict[str, Artifact]] = None):
        self._artifacts = dict(artifacts or {})

    def add(self, artifact: Artifact) -> None:
        self._artifacts[artifact.name] = artifact

    def resolve(self, name: str) -> Artifact:
        try:
            return self._artifacts[name]
        except KeyError:
            raise ArtifactNotFoundError(f"Artifact not found for '{name}'") from None

    @classmethod
    def stub(cls, names: list[str]) -> "InMemoryArtifactResolver":
        """Placeholder artifacts (bytecode derived from the name) for dry runs."""
        return cls({
            name: Artifact(name=name, bytecode="0x" + name.encode().hex(), abi=[])
            for name in names
        })
