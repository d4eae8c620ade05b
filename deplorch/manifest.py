"""
Manifest Writer - commit the final deployment mapping as one durable unit.

Sinks:
- InMemoryManifestSink: For tests and simulation
- FileManifestSink: A single JSON document, replaced atomically

The writer stamps committed_at and converts any sink failure into
SinkWriteError carrying the document, so the commit can be retried
without redeploying anything.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

from deplorch.errors import SinkWriteError
from deplorch.schemas import Manifest
from deplorch.utils import read_json, utcnow, write_json_atomic

logger = logging.getLogger(__name__)


class ManifestSink(ABC):
    """Durable storage for the manifest document."""

    @abstractmethod
    def commit(self, document: dict[str, Any]) -> None:
        """
        Replace the stored document with `document`, all-or-nothing.

        Readers observe either the previous document or the new one.
        """
        pass

    @abstractmethod
    def read(self) -> Optional[dict[str, Any]]:
        """Return the committed document, or None if nothing was committed."""
        pass


class InMemoryManifestSink(ManifestSink):
    """
    Keeps the committed document in memory.

    fail_commits makes the first N commits raise OSError, leaving the
    stored document untouched.
    """

    def __init__(self, fail_commits: int = 0):
        self._document: Optional[dict[str, Any]] = None
        self._fail_commits = fail_commits
        self.commit_attempts = 0

    def commit(self, document: dict[str, Any]) -> None:
        self.commit_attempts += 1
        if self.commit_attempts <= self._fail_commits:
            raise OSError(f"sink unavailable (attempt {self.commit_attempts})")
        self._document = document

    def read(self) -> Optional[dict[str, Any]]:
        return self._document


class FileManifestSink(ManifestSink):
    """
    Manifest as a single JSON file written via temp file + os.replace.

    Keys are written in document order so components stay in deployment order.
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def commit(self, document: dict[str, Any]) -> None:
        write_json_atomic(self._path, document, sort_keys=False)

    def read(self) -> Optional[dict[str, Any]]:
        return read_json(self._path)


class ManifestWriter:
    """Commits Manifests to a ManifestSink."""

    def __init__(self, sink: ManifestSink):
        self._sink = sink

    @property
    def sink(self) -> ManifestSink:
        return self._sink

    def commit(self, manifest: Manifest) -> Manifest:
        """
        Commit a manifest.

        Returns:
            The manifest as committed (with committed_at set)

        Raises:
            SinkWriteError: If the sink did not accept the document
        """
        committed = replace(manifest, committed_at=utcnow().isoformat())
        document = committed.to_dict()
        try:
            self._sink.commit(document)
        except SinkWriteError:
            raise
        except Exception as e:
            raise SinkWriteError(f"Manifest commit failed: {e}", document=document) from e
        logger.info(
            "Committed manifest for run %s (%d components)",
            committed.run_id, len(committed.components),
            extra={"run_id": committed.run_id},
        )
        return committed

    def read(self) -> Optional[Manifest]:
        document = self._sink.read()
        if document is None:
            return None
        return Manifest.from_dict(document)


def export_interfaces(manifest: Manifest, directory: Path | str) -> list[Path]:
    """
    Write one <Name>.json per component holding {address, abi}.

    Client applications import these directly. Each file is written
    atomically; the manifest itself stays the source of truth.

    Returns:
        Paths written, in manifest order
    """
    directory = Path(directory)
    written = []
    for name, component in manifest.components.items():
        path = write_json_atomic(
            directory / f"{name}.json",
            {"address": component.address, "abi": component.abi},
        )
        written.append(path)
    logger.info("Exported %d interfaces to %s", len(written), directory)
    return written
