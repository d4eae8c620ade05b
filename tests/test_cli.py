import json
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from deplorch.backends import InMemoryBackend
from deplorch.cli import main


MOSH = {
    "topology": "mosh",
    "version": "1.0",
    "components": [
        {"name": "Ticket", "dependencies": ["EventManager"], "deferred": ["EventManager"]},
        {"name": "EventManager", "dependencies": ["Ticket"]},
        {"name": "Marketplace", "dependencies": ["EventManager", "Ticket"]},
    ],
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(test_config):
    """Topology plus a Hardhat-style artifacts tree at the test config paths."""
    test_config.topology_file.parent.mkdir(parents=True, exist_ok=True)
    test_config.topology_file.write_text(yaml.safe_dump(MOSH))
    for position, name in enumerate(["Ticket", "EventManager", "Marketplace"]):
        path = test_config.artifacts_dir / "contracts" / f"{name}.sol" / f"{name}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({
            "abi": [{"type": "function", "name": f"f{position}"}],
            "bytecode": f"0x60{position:02x}",
        }))
    return test_config


def _with_backend(backend):
    return patch("deplorch.backends.JsonRpcBackend", side_effect=lambda *a, **k: backend)


def test_plan_prints_order_and_patches(runner, workspace):
    result = runner.invoke(main, ["plan"])
    assert result.exit_code == 0
    assert "Topology: mosh (version 1.0)" in result.output
    assert "1. Ticket <- EventManager (placeholder)" in result.output
    assert "2. EventManager <- Ticket" in result.output
    assert "3. Marketplace <- EventManager, Ticket" in result.output
    assert "Ticket.updateEventManager(EventManager)" in result.output
    assert "TICKET_ADDRESS -> Ticket" in result.output

def test_plan_reports_forward_cycle(runner, test_config):
    test_config.topology_file.write_text(yaml.safe_dump({
        "topology": "bad",
        "components": [
            {"name": "A", "dependencies": ["B"]},
            {"name": "B", "dependencies": ["A"]},
        ],
    }))
    result = runner.invoke(main, ["plan"])
    assert result.exit_code == 1
    assert "✗ Forward dependency cycle: A -> B -> A" in result.output

def test_plan_missing_topology(runner, test_config):
    result = runner.invoke(main, ["plan"])
    assert result.exit_code == 1
    assert "Topology file not found" in result.output

def test_simulate_with_stub_artifacts(runner, test_config):
    test_config.topology_file.write_text(yaml.safe_dump(MOSH))

    result = runner.invoke(main, ["simulate"])
    assert result.exit_code == 0
    assert "using stub bytecode" in result.output
    assert "✓ Ticket deployed at" in result.output
    assert '"manifest_version"' in result.output
    assert not test_config.manifest_file.exists()

def test_deploy_commits_and_exports(runner, workspace):
    backend = InMemoryBackend()
    with _with_backend(backend):
        result = runner.invoke(main, ["deploy"])

    assert result.exit_code == 0, result.output
    assert "Deploying mosh: Ticket -> EventManager -> Marketplace" in result.output
    assert "(placeholder for EventManager)" in result.output
    assert "✓ Ticket.updateEventManager(EventManager)" in result.output
    assert "✓ Exported 3 interfaces" in result.output

    document = json.loads(workspace.manifest_file.read_text())
    assert set(document["components"]) == {"Ticket", "EventManager", "Marketplace"}
    ticket = document["components"]["Ticket"]
    assert ticket["links"]["EventManager"] == document["components"]["EventManager"]["address"]
    assert backend.calls[0]["bytecode"] == "0x6000"

    exported = json.loads((workspace.interfaces_path / "Ticket.json").read_text())
    assert exported["address"] == ticket["address"]

def test_deploy_partial_failure(runner, workspace):
    with _with_backend(InMemoryBackend(reject_deploys=[2])):
        result = runner.invoke(main, ["deploy"])

    assert result.exit_code == 1
    assert "✗ Step 'deploy:EventManager' failed" in result.output
    assert "cause: BackendRejectedError" in result.output
    assert "deployed before failure:" in result.output
    assert "Ticket: 0x" in result.output
    assert "patch:Ticket.updateEventManager" in result.output
    assert not workspace.manifest_file.exists()

def test_deploy_nothing_deployed(runner, workspace):
    with _with_backend(InMemoryBackend(unavailable_deploys=[1])):
        result = runner.invoke(main, ["deploy"])

    assert result.exit_code == 1
    assert "nothing was deployed" in result.output
    assert "can be retried" in result.output

def test_deploy_missing_artifact(runner, workspace):
    (workspace.artifacts_dir / "contracts" / "Marketplace.sol" / "Marketplace.json").unlink()
    backend = InMemoryBackend()
    with _with_backend(backend):
        result = runner.invoke(main, ["deploy"])

    assert result.exit_code == 1
    assert "Artifact not found for 'Marketplace'" in result.output
    assert backend.request_count == 0

def test_commit_failure_then_recommit(runner, workspace):
    with _with_backend(InMemoryBackend()):
        with patch("deplorch.manifest.FileManifestSink.commit", side_effect=OSError("read-only")):
            result = runner.invoke(main, ["deploy"])

    assert result.exit_code == 1
    assert "Manifest commit failed: read-only" in result.output
    assert "deplorch recommit" in result.output
    assert not workspace.manifest_file.exists()

    (run_id,) = [p.name for p in workspace.run_store_dir.iterdir()]
    result = runner.invoke(main, ["recommit", run_id])
    assert result.exit_code == 0, result.output
    assert f"✓ Manifest for run {run_id} committed" in result.output
    assert json.loads(workspace.manifest_file.read_text())["run_id"] == run_id

def test_recommit_unknown_run(runner, workspace):
    result = runner.invoke(main, ["recommit", "01UNKNOWN"])
    assert result.exit_code == 1
    assert "has no pending manifest" in result.output

def test_show(runner, workspace):
    result = runner.invoke(main, ["show"])
    assert result.exit_code == 1
    assert "No manifest at" in result.output

    with _with_backend(InMemoryBackend()):
        runner.invoke(main, ["deploy"])

    result = runner.invoke(main, ["show"])
    assert result.exit_code == 0
    assert "Topology: mosh" in result.output
    assert "Ticket: 0x" in result.output
    assert "TICKET_ADDRESS=0x" in result.output

def test_deploy_export_failure_after_commit(runner, workspace):
    with _with_backend(InMemoryBackend()):
        with patch("deplorch.manifest.export_interfaces", side_effect=PermissionError("denied")):
            result = runner.invoke(main, ["deploy"])

    assert result.exit_code == 1
    assert "✗ Manifest committed, but exporting interfaces failed: denied" in result.output
    assert workspace.manifest_file.exists()
