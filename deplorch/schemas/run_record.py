"""
Run schemas - journal of a deployment run.

RunRecord is created when a run starts and updated when it ends.
StepOutcome records each deploy, patch and commit step in the order the
side effects were issued against the backend.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# ULID type alias for documentation
ULID = str


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    """Status of a step execution."""
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Overall status of a run."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass(frozen=True)
class StepOutcome:
    """
    The outcome of a single step.

    Attributes:
        step_id: "deploy:<Name>", "patch:<Name>.<method>" or "commit"
        status: completed or failed
        started_at: When the step was issued
        completed_at: When confirmation (or failure) was observed
        address: Address assigned by a deploy step
        tx_ref: Backend transaction reference
        error: Error details if status is failed
    """
    step_id: str
    status: StepStatus
    started_at: datetime
    completed_at: datetime
    address: Optional[str] = None
    tx_ref: Optional[str] = None
    error: Optional[dict[str, Any]] = None

    @property
    def duration_ms(self) -> int:
        delta = self.completed_at - self.started_at
        return int(delta.total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "step_id": self.step_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
        }
        if self.address is not None:
            result["address"] = self.address
        if self.tx_ref is not None:
            result["tx_ref"] = self.tx_ref
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepOutcome":
        """Deserialize from dictionary."""
        return cls(
            step_id=data["step_id"],
            status=StepStatus(data["status"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(data["completed_at"]),
            address=data.get("address"),
            tx_ref=data.get("tx_ref"),
            error=data.get("error"),
        )


@dataclass
class RunRecord:
    """
    A record of a deployment run.

    Attributes:
        run_id: ULID uniquely identifying this run
        topology: Topology being deployed
        plan_id: Hash of the DeploymentPlan
        started_at: When the run started
        completed_at: When the run ended (None while running)
        status: running, success, failed or partial
        error: Failure summary if the run did not succeed
    """
    run_id: ULID
    topology: str
    plan_id: str
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    error: Optional[dict[str, Any]] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "topology": self.topology,
            "plan_id": self.plan_id,
            "started_at": self.started_at.isoformat(),
            "status": self.status.value,
        }
        if self.completed_at:
            result["completed_at"] = self.completed_at.isoformat()
        if self.error:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRecord":
        """Deserialize from dictionary."""
        completed_at = None
        if data.get("completed_at"):
            completed_at = datetime.fromisoformat(data["completed_at"])
        return cls(
            run_id=data["run_id"],
            topology=data["topology"],
            plan_id=data["plan_id"],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=completed_at,
            status=RunStatus(data.get("status", "running")),
            error=data.get("error"),
        )
