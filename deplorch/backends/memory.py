"""
In-memory execution backend for tests and `deplorch simulate`.

Addresses are derived from the deployer and a nonce, so a fixed sequence
of deploys always produces the same addresses. Every request is
journaled in `calls`, and each deployed contract keeps its constructor
args plus the mutations applied to it.
"""

import hashlib
from typing import Any, Iterable, Optional

from deplorch.backends.base import ExecutionBackend, Receipt, ReceiptStatus
from deplorch.errors import BackendRejectedError, BackendUnavailableError


DEFAULT_ACCOUNT = "0x" + "f39fd6e51aad88f6f4ce6ab8827279cfffb92266"


class InMemoryBackend(ExecutionBackend):
    """
    Deterministic in-process backend.

    Fault injection is keyed by 1-indexed ordinal of the submit call:
        reject_deploys: deploy ordinals raising BackendRejectedError at submit
        unavailable_deploys: deploy ordinals raising BackendUnavailableError at submit
        revert_deploys: deploy ordinals whose receipt comes back failed
        reject_calls / unavailable_calls / revert_calls: same for mutations

    polls_to_confirm controls how many get_receipt polls pass before a
    receipt reports a confirmation; confirmations then grow by one per poll.
    """

    def __init__(
        self,
        account: str = DEFAULT_ACCOUNT,
        polls_to_confirm: int = 0,
        reject_deploys: Iterable[int] = (),
        unavailable_deploys: Iterable[int] = (),
        revert_deploys: Iterable[int] = (),
        reject_calls: Iterable[int] = (),
        unavailable_calls: Iterable[int] = (),
        revert_calls: Iterable[int] = (),
    ):
        self._account = account
        self._polls_to_confirm = polls_to_confirm
        self._reject_deploys = set(reject_deploys)
        self._unavailable_deploys = set(unavailable_deploys)
        self._revert_deploys = set(revert_deploys)
        self._reject_calls = set(reject_calls)
        self._unavailable_calls = set(unavailable_calls)
        self._revert_calls = set(revert_calls)

        self._nonce = 0
        self._deploy_count = 0
        self._call_count = 0
        self._block = 0
        self._pending: dict[str, dict[str, Any]] = {}
        self._polls: dict[str, int] = {}

        self.calls: list[dict[str, Any]] = []
        self.contracts: dict[str, dict[str, Any]] = {}
        self.request_count = 0

    def default_account(self) -> str:
        self.request_count += 1
        return self._account

    def submit_deploy(self, bytecode: str, args: list[Any], sender: str) -> str:
        self.request_count += 1
        self._deploy_count += 1
        ordinal = self._deploy_count

        if ordinal in self._unavailable_deploys:
            raise BackendUnavailableError(f"backend unreachable (deploy #{ordinal})")
        if ordinal in self._reject_deploys:
            raise BackendRejectedError(f"deploy #{ordinal} rejected")

        tx_ref = self._next_tx_ref()
        address = self._next_address(sender)
        self.calls.append({
            "kind": "deploy",
            "tx_ref": tx_ref,
            "bytecode": bytecode,
            "args": list(args),
            "sender": sender,
            "address": address,
        })
        self._pending[tx_ref] = {
            "kind": "deploy",
            "address": address,
            "bytecode": bytecode,
            "args": list(args),
            "reverted": ordinal in self._revert_deploys,
        }
        return tx_ref

    def submit_call(self, address: str, method: str, args: list[Any], sender: str) -> str:
        self.request_count += 1
        self._call_count += 1
        ordinal = self._call_count

        if ordinal in self._unavailable_calls:
            raise BackendUnavailableError(f"backend unreachable (call #{ordinal})")
        if ordinal in self._reject_calls:
            raise BackendRejectedError(f"call #{ordinal} rejected")
        if address not in self.contracts:
            raise BackendRejectedError(f"no contract at {address}")

        tx_ref = self._next_tx_ref()
        self.calls.append({
            "kind": "call",
            "tx_ref": tx_ref,
            "address": address,
            "method": method,
            "args": list(args),
            "sender": sender,
        })
        self._pending[tx_ref] = {
            "kind": "call",
            "address": address,
            "method": method,
            "args": list(args),
            "reverted": ordinal in self._revert_calls,
        }
        return tx_ref

    def get_receipt(self, tx_ref: str) -> Optional[Receipt]:
        self.request_count += 1
        action = self._pending.get(tx_ref)
        if action is None:
            return None

        polls = self._polls.get(tx_ref, 0) + 1
        self._polls[tx_ref] = polls
        if polls <= self._polls_to_confirm:
            return Receipt(tx_ref=tx_ref, status=ReceiptStatus.PENDING)

        if "block" not in action:
            self._apply(action)
        confirmations = polls - self._polls_to_confirm

        if action["reverted"]:
            return Receipt(
                tx_ref=tx_ref,
                status=ReceiptStatus.FAILED,
                confirmations=confirmations,
                block=action["block"],
                error="execution reverted",
            )
        return Receipt(
            tx_ref=tx_ref,
            status=ReceiptStatus.CONFIRMED,
            confirmations=confirmations,
            address=action["address"] if action["kind"] == "deploy" else None,
            block=action["block"],
        )

    def mutations_of(self, address: str) -> list[tuple[str, list[Any]]]:
        """Confirmed mutations applied to a contract, in order."""
        return list(self.contracts.get(address, {}).get("mutations", []))

    def _apply(self, action: dict[str, Any]) -> None:
        self._block += 1
        action["block"] = self._block
        if action["reverted"]:
            return
        if action["kind"] == "deploy":
            self.contracts[action["address"]] = {
                "bytecode": action["bytecode"],
                "args": action["args"],
                "mutations": [],
            }
        else:
            self.contracts[action["address"]]["mutations"].append(
                (action["method"], action["args"])
            )

    def _next_tx_ref(self) -> str:
        return f"0x{len(self.calls) + 1:064x}"

    def _next_address(self, sender: str) -> str:
        digest = hashlib.sha256(f"{sender}:{self._nonce}".encode()).hexdigest()
        self._nonce += 1
        return "0x" + digest[:40]
