"""
JSON-RPC execution backend - HTTP boundary to a deployer service.

Every request is a JSON-RPC 2.0 envelope POSTed to a single URL:

    {"jsonrpc": "2.0", "id": "<uuid>", "method": "deployer.deploy",
     "params": {"bytecode": "0x...", "args": [...], "from": "0x..."}}

Methods:
- deployer.account  {}                                  -> "0x..."
- deployer.deploy   {bytecode, args, from}              -> {"tx_ref": "..."}
- deployer.transact {address, method, args, from}       -> {"tx_ref": "..."}
- deployer.receipt  {tx_ref}                            -> null | receipt dict

Error classification:
- Timeout / connection error -> BackendUnavailableError
- HTTP 429 and 5xx           -> BackendUnavailableError
- Other HTTP 4xx             -> BackendRejectedError
- JSON-RPC error with a code in TRANSIENT_RPC_CODES -> BackendUnavailableError
- Any other JSON-RPC error or malformed response    -> BackendRejectedError

Only read methods (account, receipt) are retried; a resubmitted deploy
could create a second contract.
"""

import logging
import time
import uuid
from typing import Any, Callable, Optional

import requests

from deplorch.backends.base import ExecutionBackend, Receipt
from deplorch.errors import BackendRejectedError, BackendUnavailableError, TransientError

logger = logging.getLogger(__name__)


# EIP-1474: resource unavailable, limit exceeded
TRANSIENT_RPC_CODES = frozenset({-32002, -32005})


class JsonRpcBackend(ExecutionBackend):
    """ExecutionBackend speaking JSON-RPC 2.0 over HTTP."""

    def __init__(
        self,
        url: str,
        timeout_s: float = 30.0,
        max_attempts: int = 1,
        backoff_s: float = 1.0,
        backoff_multiplier: float = 2.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._url = url
        self._timeout_s = timeout_s
        self._max_attempts = max_attempts
        self._backoff_s = backoff_s
        self._backoff_multiplier = backoff_multiplier
        self._session = session or requests.Session()
        self._sleep = sleep

    @property
    def url(self) -> str:
        return self._url

    def default_account(self) -> str:
        result = self._call("deployer.account", {}, retry=True)
        if not isinstance(result, str) or not result:
            raise BackendRejectedError(f"deployer.account returned {result!r}")
        return result

    def submit_deploy(self, bytecode: str, args: list[Any], sender: str) -> str:
        result = self._call(
            "deployer.deploy",
            {"bytecode": bytecode, "args": list(args), "from": sender},
        )
        return _tx_ref(result, "deployer.deploy")

    def submit_call(self, address: str, method: str, args: list[Any], sender: str) -> str:
        result = self._call(
            "deployer.transact",
            {"address": address, "method": method, "args": list(args), "from": sender},
        )
        return _tx_ref(result, "deployer.transact")

    def get_receipt(self, tx_ref: str) -> Optional[Receipt]:
        result = self._call("deployer.receipt", {"tx_ref": tx_ref}, retry=True)
        if result is None:
            return None
        if not isinstance(result, dict):
            raise BackendRejectedError(f"deployer.receipt returned {result!r}")
        try:
            return Receipt.from_dict({"tx_ref": tx_ref, **result})
        except (KeyError, ValueError, TypeError) as e:
            raise BackendRejectedError(f"Malformed receipt for {tx_ref}: {e}") from e

    def _call(self, method: str, params: dict[str, Any], retry: bool = False) -> Any:
        attempts = self._max_attempts if retry else 1
        wait_time = self._backoff_s

        for attempt in range(1, attempts + 1):
            try:
                return self._post(method, params)
            except TransientError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    "%s attempt %d/%d failed: %s. Retrying in %.1fs",
                    method, attempt, attempts, e, wait_time,
                )
                self._sleep(wait_time)
                wait_time *= self._backoff_multiplier

        raise AssertionError("unreachable")

    def _post(self, method: str, params: dict[str, Any]) -> Any:
        request = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params,
        }
        try:
            response = self._session.post(self._url, json=request, timeout=self._timeout_s)
        except requests.Timeout as e:
            raise BackendUnavailableError(f"{method}: timeout after {self._timeout_s}s") from e
        except requests.RequestException as e:
            raise BackendUnavailableError(f"{method}: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise BackendUnavailableError(f"{method}: HTTP {status}: {_response_text(response)}")
        if status >= 400:
            raise BackendRejectedError(f"{method}: HTTP {status}: {_response_text(response)}")

        try:
            body = response.json()
        except ValueError as e:
            raise BackendRejectedError(f"{method}: invalid JSON response") from e
        if not isinstance(body, dict):
            raise BackendRejectedError(f"{method}: response is not a JSON-RPC object")

        error = body.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            if code in TRANSIENT_RPC_CODES:
                raise BackendUnavailableError(f"{method}: [{code}] {message}")
            raise BackendRejectedError(f"{method}: [{code}] {message}")

        if "result" not in body:
            raise BackendRejectedError(f"{method}: response missing 'result'")
        return body["result"]


def _tx_ref(result: Any, method: str) -> str:
    if isinstance(result, str) and result:
        return result
    if isinstance(result, dict) and isinstance(result.get("tx_ref"), str):
        return result["tx_ref"]
    raise BackendRejectedError(f"{method} returned no tx_ref: {result!r}")


def _response_text(response: Any) -> str:
    text = getattr(response, "text", "") or ""
    return text[:200]
