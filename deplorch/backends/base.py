"""
Execution backend interface.

A backend accepts deploy requests (bytecode + constructor args) and
mutation requests (method + args against a live address) and reports
receipts. Submitting returns immediately with a transaction reference;
durability is observed by polling get_receipt (see DeploymentExecutor).

Implementations:
- InMemoryBackend: Deterministic, in-process; for tests and simulation
- JsonRpcBackend: JSON-RPC 2.0 over HTTP to a deployer service
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ReceiptStatus(str, Enum):
    """Backend-reported state of a submitted action."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class Receipt:
    """
    Result of a deploy or mutation as seen by the backend.

    Attributes:
        tx_ref: Backend transaction reference
        status: pending, confirmed or failed
        confirmations: Depth of the including block (0 while pending)
        address: Contract address, for confirmed deploys
        block: Block number the action was included in
        error: Backend error message for failed actions
    """
    tx_ref: str
    status: ReceiptStatus
    confirmations: int = 0
    address: Optional[str] = None
    block: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "tx_ref": self.tx_ref,
            "status": self.status.value,
            "confirmations": self.confirmations,
        }
        if self.address is not None:
            result["address"] = self.address
        if self.block is not None:
            result["block"] = self.block
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Receipt":
        return cls(
            tx_ref=data["tx_ref"],
            status=ReceiptStatus(data.get("status", "pending")),
            confirmations=int(data.get("confirmations", 0)),
            address=data.get("address"),
            block=data.get("block"),
            error=data.get("error"),
        )


class ExecutionBackend(ABC):
    """
    Abstract base class for execution backends.

    Errors:
        BackendUnavailableError: transient, the caller may retry
        BackendRejectedError: the backend refused the action
    """

    @abstractmethod
    def default_account(self) -> str:
        """Return the default caller identity (the deployer). Opaque to deplorch."""
        pass

    @abstractmethod
    def submit_deploy(self, bytecode: str, args: list[Any], sender: str) -> str:
        """
        Submit a deploy.

        Args:
            bytecode: Deployable bytecode
            args: Constructor arguments
            sender: Caller identity

        Returns:
            Transaction reference for get_receipt
        """
        pass

    @abstractmethod
    def submit_call(self, address: str, method: str, args: list[Any], sender: str) -> str:
        """
        Submit a state-changing call against a deployed address.

        Returns:
            Transaction reference for get_receipt
        """
        pass

    @abstractmethod
    def get_receipt(self, tx_ref: str) -> Optional[Receipt]:
        """
        Return the current receipt, or None if the backend has not seen it yet.
        """
        pass
