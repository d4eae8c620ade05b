"""
RunStore - Journal of deployment runs.

The RunStore manages:
- RunRecords (created when a run starts, closed when it ends)
- StepOutcomes (one per deploy/patch/commit step, in issue order)
- Pending manifests (kept after a failed commit so only the commit is retried)

Storage backends:
- In-memory (for testing)
- File-based (default for the CLI)
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

from deplorch.schemas import DeploymentPlan, RunRecord, RunStatus, StepOutcome
from deplorch.utils import generate_ulid, read_json, utcnow, write_json_atomic


class RunStore(ABC):
    """
    Abstract base class for run journal storage.
    """

    @abstractmethod
    def create_run(self, plan: DeploymentPlan) -> RunRecord:
        """
        Create a new run record for a plan.

        Returns:
            The created RunRecord with a new ULID
        """
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[RunRecord]:
        """Retrieve a run record, or None if unknown."""
        pass

    @abstractmethod
    def list_runs(self) -> list[str]:
        """Run ids, oldest first."""
        pass

    @abstractmethod
    def record_step(self, run_id: str, outcome: StepOutcome) -> None:
        """Append a step outcome to the run's journal."""
        pass

    @abstractmethod
    def get_steps(self, run_id: str) -> list[StepOutcome]:
        """Step outcomes of a run, in the order they were recorded."""
        pass

    @abstractmethod
    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        error: Optional[dict[str, Any]] = None,
    ) -> RunRecord:
        """Close a run with its final status."""
        pass

    @abstractmethod
    def store_pending_manifest(self, run_id: str, document: dict[str, Any]) -> None:
        """Keep a manifest document that failed to commit."""
        pass

    @abstractmethod
    def get_pending_manifest(self, run_id: str) -> Optional[dict[str, Any]]:
        """Return the pending manifest document, if any."""
        pass

    @abstractmethod
    def clear_pending_manifest(self, run_id: str) -> None:
        """Drop the pending manifest once it has been committed."""
        pass

    def _closed(
        self,
        run: RunRecord,
        status: RunStatus,
        error: Optional[dict[str, Any]],
    ) -> RunRecord:
        return replace(run, status=status, completed_at=utcnow(), error=error)


class InMemoryRunStore(RunStore):
    """
    In-memory implementation of RunStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._runs: dict[str, RunRecord] = {}
        self._steps: dict[str, list[StepOutcome]] = {}
        self._pending: dict[str, dict[str, Any]] = {}

    def create_run(self, plan: DeploymentPlan) -> RunRecord:
        run = RunRecord(run_id=generate_ulid(), topology=plan.topology, plan_id=plan.plan_id)
        self._runs[run.run_id] = run
        self._steps[run.run_id] = []
        return run

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    def list_runs(self) -> list[str]:
        return sorted(self._runs)

    def record_step(self, run_id: str, outcome: StepOutcome) -> None:
        self._steps.setdefault(run_id, []).append(outcome)

    def get_steps(self, run_id: str) -> list[StepOutcome]:
        return list(self._steps.get(run_id, []))

    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        error: Optional[dict[str, Any]] = None,
    ) -> RunRecord:
        run = self._require(run_id)
        closed = self._closed(run, status, error)
        self._runs[run_id] = closed
        return closed

    def store_pending_manifest(self, run_id: str, document: dict[str, Any]) -> None:
        self._pending[run_id] = document

    def get_pending_manifest(self, run_id: str) -> Optional[dict[str, Any]]:
        return self._pending.get(run_id)

    def clear_pending_manifest(self, run_id: str) -> None:
        self._pending.pop(run_id, None)

    def _require(self, run_id: str) -> RunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise KeyError(f"Unknown run: {run_id}")
        return run


class FileRunStore(RunStore):
    """
    File-based implementation of RunStore.

    Stores runs as JSON files in a directory tree:
        store_dir/
            {run_id}/
                run.json
                steps.json
                pending_manifest.json
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir)
        self._store_dir.mkdir(parents=True, exist_ok=True)

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def create_run(self, plan: DeploymentPlan) -> RunRecord:
        run = RunRecord(run_id=generate_ulid(), topology=plan.topology, plan_id=plan.plan_id)
        write_json_atomic(self._run_dir(run.run_id) / "run.json", run.to_dict())
        write_json_atomic(self._run_dir(run.run_id) / "steps.json", [])
        return run

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        data = read_json(self._run_dir(run_id) / "run.json")
        if data is None:
            return None
        return RunRecord.from_dict(data)

    def list_runs(self) -> list[str]:
        return sorted(p.parent.name for p in self._store_dir.glob("*/run.json"))

    def record_step(self, run_id: str, outcome: StepOutcome) -> None:
        steps_path = self._run_dir(run_id) / "steps.json"
        steps = read_json(steps_path) or []
        steps.append(outcome.to_dict())
        write_json_atomic(steps_path, steps)

    def get_steps(self, run_id: str) -> list[StepOutcome]:
        steps = read_json(self._run_dir(run_id) / "steps.json") or []
        return [StepOutcome.from_dict(s) for s in steps]

    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        error: Optional[dict[str, Any]] = None,
    ) -> RunRecord:
        run = self.get_run(run_id)
        if run is None:
            raise KeyError(f"Unknown run: {run_id}")
        closed = self._closed(run, status, error)
        write_json_atomic(self._run_dir(run_id) / "run.json", closed.to_dict())
        return closed

    def store_pending_manifest(self, run_id: str, document: dict[str, Any]) -> None:
        write_json_atomic(
            self._run_dir(run_id) / "pending_manifest.json", document, sort_keys=False
        )

    def get_pending_manifest(self, run_id: str) -> Optional[dict[str, Any]]:
        return read_json(self._run_dir(run_id) / "pending_manifest.json")

    def clear_pending_manifest(self, run_id: str) -> None:
        path = self._run_dir(run_id) / "pending_manifest.json"
        if path.exists():
            path.unlink()

    def _run_dir(self, run_id: str) -> Path:
        return self._store_dir / run_id
