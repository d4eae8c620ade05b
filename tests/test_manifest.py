"""Tests for manifest sinks, the writer and interface export."""

import json
import os
from unittest.mock import patch

import pytest

from deplorch.errors import SinkWriteError
from deplorch.manifest import (
    FileManifestSink,
    InMemoryManifestSink,
    ManifestWriter,
    export_interfaces,
)
from deplorch.schemas import DeployedComponent, Manifest


def _manifest(run_id="01RUN", address="0x" + "1" * 40):
    return Manifest(
        topology="mosh",
        plan_id="sha256:abc",
        run_id=run_id,
        deployer="0xdeployer",
        components={
            "Ticket": DeployedComponent("Ticket", address, abi=[{"type": "function", "name": "f"}]),
            "EventManager": DeployedComponent("EventManager", "0x" + "2" * 40),
        },
        aliases={"TICKET_ADDRESS": address},
    )


class TestManifestWriter:
    """Tests for ManifestWriter."""

    def test_commit_stamps_committed_at(self):
        sink = InMemoryManifestSink()
        committed = ManifestWriter(sink).commit(_manifest())

        assert committed.committed_at is not None
        assert sink.read() == committed.to_dict()

    def test_sink_failure_wrapped(self):
        sink = InMemoryManifestSink(fail_commits=1)
        with pytest.raises(SinkWriteError) as exc_info:
            ManifestWriter(sink).commit(_manifest())

        assert exc_info.value.document["run_id"] == "01RUN"
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_failed_commit_leaves_previous_document(self):
        """A second reader sees the old manifest, never a partial one."""
        sink = InMemoryManifestSink()
        writer = ManifestWriter(sink)
        first = writer.commit(_manifest("01FIRST"))

        sink._fail_commits = sink.commit_attempts + 1
        with pytest.raises(SinkWriteError):
            writer.commit(_manifest("01SECOND"))

        assert sink.read() == first.to_dict()
        assert writer.read().run_id == "01FIRST"

    def test_read_empty(self):
        assert ManifestWriter(InMemoryManifestSink()).read() is None


class TestFileManifestSink:
    """Tests for FileManifestSink."""

    def test_commit_and_read(self, tmp_path):
        path = tmp_path / "out" / "deployedContracts.json"
        writer = ManifestWriter(FileManifestSink(path))
        committed = writer.commit(_manifest())

        assert json.loads(path.read_text()) == committed.to_dict()
        assert writer.read() == committed
        assert not path.with_suffix(".json.tmp").exists()

    def test_components_keep_deployment_order(self, tmp_path):
        path = tmp_path / "deployedContracts.json"
        writer = ManifestWriter(FileManifestSink(path))
        writer.commit(_manifest())

        assert list(json.loads(path.read_text())["components"]) == ["Ticket", "EventManager"]
        assert list(writer.read().components) == ["Ticket", "EventManager"]

    def test_read_missing(self, tmp_path):
        assert FileManifestSink(tmp_path / "none.json").read() is None

    def test_interrupted_replace_keeps_old_file(self, tmp_path):
        """If the atomic rename fails the old document is intact and no temp file remains."""
        path = tmp_path / "deployedContracts.json"
        writer = ManifestWriter(FileManifestSink(path))
        first = writer.commit(_manifest("01FIRST"))

        with patch("deplorch.utils.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(SinkWriteError, match="disk full"):
                writer.commit(_manifest("01SECOND"))

        assert json.loads(path.read_text()) == first.to_dict()
        assert os.listdir(tmp_path) == ["deployedContracts.json"]


class TestExportInterfaces:
    """Tests for export_interfaces."""

    def test_one_file_per_component(self, tmp_path):
        manifest = _manifest()
        paths = export_interfaces(manifest, tmp_path / "abis")

        assert [p.name for p in paths] == ["Ticket.json", "EventManager.json"]
        ticket = json.loads((tmp_path / "abis" / "Ticket.json").read_text())
        assert ticket == {
            "address": manifest.address_of("Ticket"),
            "abi": [{"type": "function", "name": "f"}],
        }
