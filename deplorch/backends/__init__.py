"""
deplorch.backends - Execution backend implementations.

- ExecutionBackend: Abstract interface (submit + receipt polling)
- InMemoryBackend: Deterministic in-process backend (tests, simulate)
- JsonRpcBackend: JSON-RPC 2.0 over HTTP
"""

from deplorch.backends.base import ExecutionBackend, Receipt, ReceiptStatus
from deplorch.backends.memory import InMemoryBackend
from deplorch.backends.jsonrpc import JsonRpcBackend

__all__ = [
    "ExecutionBackend",
    "Receipt",
    "ReceiptStatus",
    "InMemoryBackend",
    "JsonRpcBackend",
]
