"""
Utility functions for deplorch.

Includes logging, atomic file writes, run ids and canonical hashing.
"""

import hashlib
import json
import logging
import os
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "pretty",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Set up logging for deployment runs.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        log_file: Optional path to also log to (always structured)

    Returns:
        Configured package logger
    """
    logger = logging.getLogger("deplorch")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_format == "pretty":
        console_handler: logging.Handler = RichHandler(
            console=Console(stderr=True), rich_tracebacks=True, show_time=False
        )
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(StructuredFormatter())
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for key in ("run_id", "step_id", "component", "address", "tx_ref"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def hash_canonical(data: Any) -> str:
    """
    Compute canonical hash of JSON-serializable data.

    Uses JSON serialization with sorted keys for determinism.

    Returns:
        SHA256 hash prefixed with "sha256:"
    """
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode()).hexdigest()
    return f"sha256:{digest}"


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    26 characters: 48 bits of millisecond timestamp followed by 80 bits
    of randomness, in Crockford's Base32.
    """
    alphabet = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(alphabet[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    random_part = "".join(random.choice(alphabet) for _ in range(16))

    return timestamp_part + random_part


def write_json_atomic(path: Path, payload: Any, sort_keys: bool = True) -> Path:
    """
    Write JSON so readers observe either the old file or the new one.

    The document is written to a sibling temp file, flushed to disk and
    moved over the target with os.replace. Pass sort_keys=False where
    mapping order is meaningful.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    data = json.dumps(payload, indent=2, sort_keys=sort_keys) + "\n"
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path


def read_json(path: Path) -> Optional[Any]:
    """Read a JSON file, returning None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as f:
        return json.load(f)
