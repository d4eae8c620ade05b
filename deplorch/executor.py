"""
Deployment Executor - durable deploy/mutate on top of an ExecutionBackend.

deploy() and mutate() submit an action and then poll its receipt until
the backend reports it confirmed at the required depth. Only then does
the call return, so a caller never builds on an action that could still
be dropped or reorganized away.

Error classification:
- BackendUnavailableError / BackendRejectedError: already classified, propagate
- Builtin TimeoutError or ConnectionError: transient -> BackendUnavailableError
- No confirmation inside the wait window: BackendUnavailableError
- Failed receipt, confirmed deploy without an address: BackendRejectedError
- Unknown exceptions: BackendRejectedError (fail fast)
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from deplorch.artifacts import Artifact
from deplorch.backends.base import ExecutionBackend, Receipt, ReceiptStatus
from deplorch.errors import (
    BackendRejectedError,
    BackendUnavailableError,
    PermanentError,
    TransientError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Deployment:
    """A confirmed deploy: the assigned address and its receipt."""
    address: str
    receipt: Receipt


class DeploymentExecutor:
    """
    Wraps an ExecutionBackend with the durability contract.

    Usage:
        executor = DeploymentExecutor(backend, confirmations=2, timeout_s=60)
        deployment = executor.deploy(artifact, [PLACEHOLDER_ADDRESS])
        receipt = executor.mutate(deployment.address, "updateEventManager", [other])
    """

    def __init__(
        self,
        backend: ExecutionBackend,
        confirmations: int = 1,
        timeout_s: float = 120.0,
        poll_interval_s: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if confirmations < 1:
            raise ValueError("confirmations must be >= 1")
        self._backend = backend
        self._confirmations = confirmations
        self._timeout_s = timeout_s
        self._poll_interval_s = poll_interval_s
        self._sleep = sleep
        self._clock = clock
        self._deployer: Optional[str] = None

    @property
    def backend(self) -> ExecutionBackend:
        return self._backend

    def deployer(self) -> str:
        """Default caller identity, fetched once per executor."""
        if self._deployer is None:
            self._deployer = self._classified(
                "deployer", self._backend.default_account
            )
        return self._deployer

    def deploy(self, artifact: Artifact, args: list[Any]) -> Deployment:
        """
        Deploy an artifact and wait until it is durable.

        Returns:
            Deployment with the backend-assigned address

        Raises:
            BackendUnavailableError: Transient failure or confirmation timeout
            BackendRejectedError: The backend refused or reverted the deploy
        """
        sender = self.deployer()
        action = f"deploy {artifact.name}"
        tx_ref = self._classified(
            action,
            lambda: self._backend.submit_deploy(artifact.bytecode, list(args), sender),
        )
        logger.debug("%s submitted as %s", action, tx_ref)

        receipt = self._await_durable(action, tx_ref)
        if not receipt.address:
            raise BackendRejectedError(f"{action}: confirmed receipt {tx_ref} has no address")
        return Deployment(address=receipt.address, receipt=receipt)

    def mutate(self, address: str, method: str, args: list[Any]) -> Receipt:
        """
        Call a state-changing method and wait until it is durable.

        Raises:
            BackendUnavailableError: Transient failure or confirmation timeout
            BackendRejectedError: The backend refused or reverted the call
        """
        sender = self.deployer()
        action = f"{method} on {address}"
        tx_ref = self._classified(
            action,
            lambda: self._backend.submit_call(address, method, list(args), sender),
        )
        logger.debug("%s submitted as %s", action, tx_ref)
        return self._await_durable(action, tx_ref)

    def _await_durable(self, action: str, tx_ref: str) -> Receipt:
        deadline = self._clock() + self._timeout_s
        while True:
            receipt = self._classified(action, lambda: self._backend.get_receipt(tx_ref))
            if receipt is not None:
                if receipt.status == ReceiptStatus.FAILED:
                    raise BackendRejectedError(
                        f"{action}: {tx_ref} failed: {receipt.error or 'no reason given'}"
                    )
                if (
                    receipt.status == ReceiptStatus.CONFIRMED
                    and receipt.confirmations >= self._confirmations
                ):
                    return receipt

            if self._clock() >= deadline:
                seen = receipt.confirmations if receipt is not None else 0
                raise BackendUnavailableError(
                    f"{action}: {tx_ref} not confirmed within {self._timeout_s}s "
                    f"({seen}/{self._confirmations} confirmations)"
                )
            self._sleep(self._poll_interval_s)

    @staticmethod
    def _classified(action: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except (TransientError, PermanentError):
            raise
        except (TimeoutError, ConnectionError) as e:
            raise BackendUnavailableError(f"{action}: {e}") from e
        except Exception as e:
            raise BackendRejectedError(f"{action}: {e}") from e
