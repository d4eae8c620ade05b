import pytest
from deplorch.config import DeplorchConfig
from deplorch.schemas import ComponentSpec, DeferredEdge


@pytest.fixture
def test_config(tmp_path):
    return DeplorchConfig(
        topology_path=str(tmp_path / "topology.yaml"),
        artifacts_root=str(tmp_path / "artifacts"),
        manifest_path=str(tmp_path / "deployedContracts.json"),
        interfaces_dir=str(tmp_path / "abis"),
        run_store_root=str(tmp_path / "runs"),
        rpc_url="http://127.0.0.1:8545",
        poll_interval_s=0,
        log_level="WARNING",
    )

from unittest.mock import patch

@pytest.fixture(autouse=True)
def mock_load_config(request, test_config):
    # Don't patch for config tests
    if "test_config" in request.module.__name__ or "test_cli_config" in request.module.__name__:
        yield
        return

    with patch("deplorch.config.load_config", return_value=test_config):
        yield


@pytest.fixture
def mosh_specs():
    """Ticket <-> EventManager cycle, broken on Ticket, plus a Marketplace."""
    return [
        ComponentSpec(
            "Ticket",
            dependencies=("EventManager",),
            deferred=(DeferredEdge("Ticket", "EventManager"),),
        ),
        ComponentSpec("EventManager", dependencies=("Ticket",)),
        ComponentSpec("Marketplace", dependencies=("EventManager", "Ticket")),
    ]


@pytest.fixture
def abc_specs():
    """A has no deps; B needs A and is patched with C; C needs A and B."""
    return [
        ComponentSpec("A"),
        ComponentSpec("B", dependencies=("A",), deferred=(DeferredEdge("B", "C"),)),
        ComponentSpec("C", dependencies=("A", "B")),
    ]
