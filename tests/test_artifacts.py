"""Tests for artifact resolution."""

import json

import pytest

from deplorch.artifacts import (
    Artifact,
    ArtifactResolver,
    FileArtifactResolver,
    InMemoryArtifactResolver,
)
from deplorch.errors import ArtifactNotFoundError


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


class TestFileArtifactResolver:
    """Tests for FileArtifactResolver."""

    def test_resolves_nested_hardhat_layout(self, tmp_path):
        """<root>/contracts/Ticket.sol/Ticket.json is found by name."""
        _write(
            tmp_path / "contracts" / "Ticket.sol" / "Ticket.json",
            {"abi": [{"type": "constructor"}], "bytecode": "0x6080"},
        )
        artifact = FileArtifactResolver(tmp_path).resolve("Ticket")
        assert artifact == Artifact("Ticket", "0x6080", [{"type": "constructor"}])

    def test_root_file_preferred(self, tmp_path):
        _write(tmp_path / "Ticket.json", {"abi": [], "bytecode": "0x01"})
        _write(tmp_path / "nested" / "Ticket.json", {"abi": [], "bytecode": "0x02"})
        assert FileArtifactResolver(tmp_path).resolve("Ticket").bytecode == "0x01"

    def test_ignores_build_info_and_debug_sidecars(self, tmp_path):
        """build-info and *.dbg.json never match."""
        _write(tmp_path / "build-info" / "Ticket.json", {"abi": [], "bytecode": "0xbad"})
        _write(tmp_path / "contracts" / "Ticket.dbg.json", {"buildInfo": "x"})
        with pytest.raises(ArtifactNotFoundError, match="not found for 'Ticket'"):
            FileArtifactResolver(tmp_path).resolve("Ticket")

    def test_standard_json_bytecode_object(self, tmp_path):
        """solc standard-json bytecode without 0x prefix is normalized."""
        _write(tmp_path / "Token.json", {"abi": [], "bytecode": {"object": "6080"}})
        assert FileArtifactResolver(tmp_path).resolve("Token").bytecode == "0x6080"

    def test_abstract_contract_rejected(self, tmp_path):
        """Empty bytecode is not deployable."""
        _write(tmp_path / "IToken.json", {"abi": [], "bytecode": "0x"})
        with pytest.raises(ArtifactNotFoundError, match="no deployable bytecode"):
            FileArtifactResolver(tmp_path).resolve("IToken")

    def test_unreadable_artifact(self, tmp_path):
        (tmp_path / "Broken.json").write_text("{not json")
        with pytest.raises(ArtifactNotFoundError, match="Unreadable artifact"):
            FileArtifactResolver(tmp_path).resolve("Broken")

    def test_missing_root(self, tmp_path):
        with pytest.raises(ArtifactNotFoundError):
            FileArtifactResolver(tmp_path / "missing").resolve("Ticket")

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(FileArtifactResolver(tmp_path), ArtifactResolver)


class TestInMemoryArtifactResolver:
    """Tests for InMemoryArtifactResolver."""

    def test_add_and_resolve(self):
        resolver = InMemoryArtifactResolver()
        resolver.add(Artifact("A", "0xaa"))
        assert resolver.resolve("A").bytecode == "0xaa"

    def test_missing(self):
        with pytest.raises(ArtifactNotFoundError, match="not found for 'B'"):
            InMemoryArtifactResolver().resolve("B")

    def test_stub(self):
        """Stub bytecode is derived from the name."""
        resolver = InMemoryArtifactResolver.stub(["A", "B"])
        assert resolver.resolve("A").bytecode == "0x41"
        assert resolver.resolve("B").abi == []
        assert isinstance(resolver, ArtifactResolver)
