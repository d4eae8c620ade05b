"""Tests for DeploymentExecutor.

Tests cover:
- Durability wait (confirmation depth, timeout, failed receipts)
- Error classification at the backend boundary
- Deployer caching
"""

from unittest.mock import MagicMock

import pytest

from deplorch.artifacts import Artifact
from deplorch.backends import ExecutionBackend, InMemoryBackend, Receipt, ReceiptStatus
from deplorch.errors import BackendRejectedError, BackendUnavailableError
from deplorch.executor import DeploymentExecutor


ARTIFACT = Artifact("Ticket", "0x6080", [{"type": "constructor"}])


class FakeClock:
    """Monotonic clock advanced by the executor's sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def _executor(backend, clock, **kwargs):
    kwargs.setdefault("poll_interval_s", 1.0)
    return DeploymentExecutor(backend, sleep=clock.sleep, clock=clock, **kwargs)


class TestDeploy:
    """Tests for deploy()."""

    def test_returns_confirmed_address(self, clock):
        backend = InMemoryBackend()
        deployment = _executor(backend, clock).deploy(ARTIFACT, ["0xabc"])

        assert deployment.address in backend.contracts
        assert deployment.receipt.status == ReceiptStatus.CONFIRMED
        assert backend.calls[0]["args"] == ["0xabc"]
        assert backend.calls[0]["bytecode"] == "0x6080"

    def test_waits_for_required_confirmations(self, clock):
        """Polls until depth reaches the configured confirmations."""
        backend = InMemoryBackend(polls_to_confirm=2)
        deployment = _executor(backend, clock, confirmations=3).deploy(ARTIFACT, [])

        assert deployment.receipt.confirmations == 3
        assert clock.sleeps == [1.0] * 4

    def test_timeout_is_unavailable(self, clock):
        """No confirmation inside the window is transient."""
        backend = InMemoryBackend(polls_to_confirm=100)
        executor = _executor(backend, clock, timeout_s=3.0)

        with pytest.raises(BackendUnavailableError, match="not confirmed within 3.0s"):
            executor.deploy(ARTIFACT, [])

    def test_failed_receipt_rejected(self, clock):
        backend = InMemoryBackend(revert_deploys=[1])
        with pytest.raises(BackendRejectedError, match="execution reverted"):
            _executor(backend, clock).deploy(ARTIFACT, [])

    def test_confirmed_without_address_rejected(self, clock):
        backend = MagicMock(spec=ExecutionBackend)
        backend.default_account.return_value = "0xme"
        backend.submit_deploy.return_value = "0xtx"
        backend.get_receipt.return_value = Receipt("0xtx", ReceiptStatus.CONFIRMED, confirmations=1)

        with pytest.raises(BackendRejectedError, match="has no address"):
            _executor(backend, clock).deploy(ARTIFACT, [])

    def test_submit_rejection_propagates(self, clock):
        backend = InMemoryBackend(reject_deploys=[1])
        with pytest.raises(BackendRejectedError):
            _executor(backend, clock).deploy(ARTIFACT, [])


class TestMutate:
    """Tests for mutate()."""

    def test_mutation_durable_before_return(self, clock):
        backend = InMemoryBackend()
        executor = _executor(backend, clock)
        address = executor.deploy(ARTIFACT, []).address

        receipt = executor.mutate(address, "updateEventManager", ["0xem"])
        assert receipt.status == ReceiptStatus.CONFIRMED
        assert backend.mutations_of(address) == [("updateEventManager", ["0xem"])]

    def test_reverted_mutation_rejected(self, clock):
        backend = InMemoryBackend(revert_calls=[1])
        executor = _executor(backend, clock)
        address = executor.deploy(ARTIFACT, []).address

        with pytest.raises(BackendRejectedError):
            executor.mutate(address, "updateEventManager", ["0xem"])
        assert backend.mutations_of(address) == []


class TestClassification:
    """Tests for exceptions raised by unclassified backends."""

    def _backend(self, error):
        backend = MagicMock(spec=ExecutionBackend)
        backend.default_account.return_value = "0xme"
        backend.submit_deploy.side_effect = error
        return backend

    def test_builtin_timeout_is_unavailable(self, clock):
        with pytest.raises(BackendUnavailableError) as exc_info:
            _executor(self._backend(TimeoutError("slow")), clock).deploy(ARTIFACT, [])
        assert isinstance(exc_info.value.__cause__, TimeoutError)

    def test_connection_error_is_unavailable(self, clock):
        with pytest.raises(BackendUnavailableError):
            _executor(self._backend(ConnectionResetError()), clock).deploy(ARTIFACT, [])

    def test_unknown_error_is_rejected(self, clock):
        """Unknown exceptions fail fast."""
        with pytest.raises(BackendRejectedError, match="deploy Ticket: weird"):
            _executor(self._backend(RuntimeError("weird")), clock).deploy(ARTIFACT, [])


class TestDeployer:
    """Tests for deployer()."""

    def test_fetched_once(self, clock):
        backend = InMemoryBackend(account="0xabc")
        executor = _executor(backend, clock)

        assert executor.deployer() == "0xabc"
        executor.deployer()
        executor.deploy(ARTIFACT, [])
        assert backend.request_count == 3  # account, submit, receipt
        assert backend.calls[0]["sender"] == "0xabc"

    def test_invalid_confirmations(self):
        with pytest.raises(ValueError):
            DeploymentExecutor(InMemoryBackend(), confirmations=0)
