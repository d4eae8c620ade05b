"""
Error classes for deplorch.

These error types enable retry classification at execution boundaries:
- TransientError: Safe to retry (backend unreachable, confirmation timeout)
- PermanentError: Do not retry (backend refused the action, bad arguments)

Run-level errors (DeploymentError, PartialManifestError, SinkWriteError)
carry the partial state reached so a caller can inspect or resume manually.

Error handling contract:
- Every error aborts the current run
- Errors are exceptions, not values
- Nothing is swallowed; the step that failed is always named
"""

from typing import Any, Optional


class DeplorchError(Exception):
    """Base exception for deplorch."""
    pass


class ConfigError(DeplorchError):
    """Configuration validation error."""
    pass


class PlanningError(DeplorchError):
    """
    Topology is not resolvable.

    Raised before any backend call is made:
    - cycle in the forward (non-deferred) dependency subgraph
    - dependency on an undeclared component
    - duplicate component names or malformed deferred edges
    """
    pass


class ArtifactNotFoundError(DeplorchError):
    """No deployable artifact exists for a component name."""
    pass


class TransientError(DeplorchError):
    """
    Transient error - safe to retry.

    Examples:
    - Connection refused / reset
    - HTTP 429 or 5xx from the backend
    - Confirmation not observed within the wait window
    """
    pass


class PermanentError(DeplorchError):
    """
    Permanent error - do not retry.

    Examples:
    - Backend refused the deploy (invalid bytecode, revert)
    - Mutation reverted
    - Malformed backend response
    """
    pass


class BackendUnavailableError(TransientError):
    """The execution backend could not be reached or did not confirm in time."""
    pass


class BackendRejectedError(PermanentError):
    """The execution backend durably refused an action."""
    pass


class RunCancelledError(DeplorchError):
    """The run was cancelled (signal or deadline) between steps."""
    pass


class DeploymentError(DeplorchError):
    """
    A deploy or mutate step did not confirm.

    Attributes:
        step_id: The failing step (e.g. "deploy:Ticket", "patch:Ticket.updateEventManager")
        cause: The underlying exception
        deployed: Components deployed before the failure (name -> DeployedComponent)
    """

    def __init__(
        self,
        step_id: str,
        message: str,
        cause: Optional[BaseException] = None,
        deployed: Optional[dict[str, Any]] = None,
    ):
        self.step_id = step_id
        self.cause = cause
        self.deployed = dict(deployed or {})
        super().__init__(f"Step '{step_id}' failed: {message}")

    @property
    def retryable(self) -> bool:
        """Re-running from scratch is only safe if nothing was deployed."""
        return not self.deployed and isinstance(self.cause, TransientError)


class PartialManifestError(DeploymentError):
    """
    The run aborted after some components were deployed.

    Already-confirmed deployments cannot be rolled back. The partial
    mapping and the patches that never ran are attached for inspection.
    """

    def __init__(
        self,
        step_id: str,
        message: str,
        cause: Optional[BaseException] = None,
        deployed: Optional[dict[str, Any]] = None,
        pending_patches: Optional[list[Any]] = None,
    ):
        super().__init__(step_id, message, cause=cause, deployed=deployed)
        self.pending_patches = list(pending_patches or [])


class SinkWriteError(DeplorchError):
    """
    Manifest commit failed after all deploy-side effects were durable.

    Recoverable by retrying only the commit step; the document that
    failed to commit is attached.
    """

    def __init__(self, message: str, document: Optional[dict[str, Any]] = None):
        self.document = document
        super().__init__(message)
