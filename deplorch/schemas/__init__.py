"""
deplorch.schemas - Data structures for the deployment layer.

ComponentSpec -> DeploymentPlan -> DeployedComponent -> Manifest

Lifecycle:
1. ComponentSpec: Declared once per topology, immutable for the run
2. DeploymentPlan: Forward-ordered components plus deferred edges to patch
3. DeployedComponent: Created once per confirmed deploy; address is write-once
4. PatchAction: A confirmed post-deployment mutation closing a cycle
5. Manifest: Final mapping committed to the sink in one durable write

RunRecord and StepOutcome journal each run for inspection and recommit.
"""

from .component import (
    PLACEHOLDER_ADDRESS,
    ComponentSpec,
    DeferredEdge,
    default_patch_method,
)
from .plan import (
    DeploymentPlan,
    PatchAction,
)
from .manifest import (
    MANIFEST_VERSION,
    DeployedComponent,
    Manifest,
    default_alias,
)
from .run_record import (
    ULID,
    RunRecord,
    RunStatus,
    StepOutcome,
    StepStatus,
)

__all__ = [
    # Components
    "PLACEHOLDER_ADDRESS",
    "ComponentSpec",
    "DeferredEdge",
    "default_patch_method",
    # Plan
    "DeploymentPlan",
    "PatchAction",
    # Manifest
    "MANIFEST_VERSION",
    "DeployedComponent",
    "Manifest",
    "default_alias",
    # Runs
    "ULID",
    "RunRecord",
    "RunStatus",
    "StepOutcome",
    "StepStatus",
]
