"""
Dependency Sequencer - run a DeploymentPlan end to end.

A run has four phases, strictly sequential:

1. Plan: partition edges and order components (no side effects)
2. Resolve: fetch every artifact up front (no side effects)
3. Deploy: one durable deploy per component, in plan order, with
   PLACEHOLDER_ADDRESS standing in for each deferred dependency
4. Patch: one durable mutation per deferred edge, in declaration order

The completed mapping is then committed through the ManifestWriter.

Failure contract:
- PlanningError / ArtifactNotFoundError: raised before any backend call
- DeploymentError: a step failed and nothing had been deployed yet
- PartialManifestError: a step failed after at least one deploy confirmed,
  or the run journal could not record a confirmed step
- SinkWriteError: everything is deployed and patched but the commit failed;
  the document is kept in the RunStore for `recommit`

Already-confirmed deployments are never rolled back.
"""

import logging
import threading
import time
from datetime import datetime
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional, Union

from deplorch.artifacts import Artifact, ArtifactResolver
from deplorch.errors import (
    DeplorchError,
    DeploymentError,
    PartialManifestError,
    RunCancelledError,
    SinkWriteError,
)
from deplorch.executor import DeploymentExecutor
from deplorch.manifest import ManifestWriter
from deplorch.planner import build_plan
from deplorch.run_store import InMemoryRunStore, RunStore
from deplorch.schemas import (
    PLACEHOLDER_ADDRESS,
    ComponentSpec,
    DeferredEdge,
    DeployedComponent,
    DeploymentPlan,
    Manifest,
    PatchAction,
    RunRecord,
    RunStatus,
    StepOutcome,
    StepStatus,
)
from deplorch.topology import Topology
from deplorch.utils import utcnow

logger = logging.getLogger(__name__)


COMMIT_STEP = "commit"

EventCallback = Callable[[str, dict[str, Any]], None]
Deployable = Union[Topology, DeploymentPlan, Iterable[ComponentSpec]]


class Sequencer:
    """
    Drives a topology through plan, deploy, patch and commit.

    Usage:
        sequencer = Sequencer(resolver, executor, ManifestWriter(sink))
        manifest = sequencer.run(load_topology("deploy/topology.yaml"))

    on_event(event, data) is called after each phase transition with one of:
    planned, deployed, patched, committed, failed.
    """

    def __init__(
        self,
        resolver: ArtifactResolver,
        executor: DeploymentExecutor,
        writer: ManifestWriter,
        store: Optional[RunStore] = None,
        on_event: Optional[EventCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._resolver = resolver
        self._executor = executor
        self._writer = writer
        self._store = store or InMemoryRunStore()
        self._on_event = on_event
        self._clock = clock
        self._guard = threading.Lock()

    @property
    def store(self) -> RunStore:
        return self._store

    def plan(self, target: Deployable) -> DeploymentPlan:
        """
        Compute the plan for a Topology or a sequence of ComponentSpecs.

        Raises:
            PlanningError: If the topology is not resolvable
        """
        if isinstance(target, DeploymentPlan):
            return target
        if isinstance(target, Topology):
            return target.plan()
        return build_plan(target)

    def run(
        self,
        target: Deployable,
        cancel: Optional[threading.Event] = None,
        deadline_s: Optional[float] = None,
    ) -> Manifest:
        """
        Deploy, patch and commit a topology.

        Args:
            target: Topology, DeploymentPlan or ComponentSpecs in declaration order
            cancel: Checked between steps; when set the run aborts
            deadline_s: Overall time budget, checked between steps

        Returns:
            The committed Manifest

        Raises:
            PlanningError: Topology not resolvable (no backend calls made)
            ArtifactNotFoundError: A component has no artifact (no backend calls made)
            DeploymentError: A step failed before anything was deployed
            PartialManifestError: A step failed after something was deployed
            SinkWriteError: The manifest commit failed
            DeplorchError: The sequencer is already running
        """
        if not self._guard.acquire(blocking=False):
            raise DeplorchError("Sequencer is already running a deployment")
        try:
            deadline = self._clock() + deadline_s if deadline_s is not None else None
            return self._run(self.plan(target), cancel, deadline)
        finally:
            self._guard.release()

    def recommit(self, run_id: str) -> Manifest:
        """
        Retry only the commit step of a run that failed with SinkWriteError.

        Raises:
            DeplorchError: If the run has no pending manifest
            SinkWriteError: If the commit fails again
        """
        document = self._store.get_pending_manifest(run_id)
        if document is None:
            raise DeplorchError(f"Run {run_id} has no pending manifest to commit")

        manifest = Manifest.from_dict(document)
        started = utcnow()
        try:
            committed = self._writer.commit(manifest)
        except SinkWriteError as e:
            self._record(run_id, COMMIT_STEP, started, error=e)
            raise

        self._record(run_id, COMMIT_STEP, started)
        self._store.clear_pending_manifest(run_id)
        self._store.finish_run(run_id, RunStatus.SUCCESS)
        logger.info("Recommitted manifest for run %s", run_id, extra={"run_id": run_id})
        self._emit("committed", {"run_id": run_id, "manifest": committed})
        return committed

    def _run(
        self,
        plan: DeploymentPlan,
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> Manifest:
        artifacts = {name: self._resolver.resolve(name) for name in plan.names}

        run = self._store.create_run(plan)
        logger.info(
            "Run %s: deploying %s (%d components, %d patches)",
            run.run_id, plan.topology, len(plan.order), len(plan.patches),
            extra={"run_id": run.run_id},
        )
        self._emit("planned", {"run_id": run.run_id, "plan": plan})

        deployed: dict[str, DeployedComponent] = {}
        for spec in plan.order:
            self._deploy(run, plan, spec, artifacts[spec.name], deployed, cancel, deadline)

        for position, edge in enumerate(plan.patches):
            self._patch(run, plan, position, edge, deployed, cancel, deadline)

        manifest = Manifest(
            topology=plan.topology,
            plan_id=plan.plan_id,
            run_id=run.run_id,
            deployer=self._executor.deployer(),
            components=deployed,
            aliases={alias: deployed[name].address for alias, name in plan.aliases.items()},
        )
        return self._commit(run, manifest)

    def _deploy(
        self,
        run: RunRecord,
        plan: DeploymentPlan,
        spec: ComponentSpec,
        artifact: Artifact,
        deployed: dict[str, DeployedComponent],
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        args = [
            PLACEHOLDER_ADDRESS if dep in spec.deferred_targets else deployed[dep].address
            for dep in spec.dependencies
        ]

        started = utcnow()
        try:
            self._check_cancelled(spec.step_id, cancel, deadline)
            deployment = self._executor.deploy(artifact, args)
        except DeplorchError as e:
            raise self._failure(run, spec.step_id, started, e, deployed, plan.patches) from e

        component = DeployedComponent(
            name=spec.name,
            address=deployment.address,
            abi=artifact.abi,
            constructor_args=tuple(args),
            links=dict(zip(spec.dependencies, args)),
            tx_ref=deployment.receipt.tx_ref,
        )
        deployed[spec.name] = component
        self._journal(
            run, spec.step_id, started, deployed, plan.patches,
            address=component.address, tx_ref=component.tx_ref,
        )
        logger.info(
            "Deployed %s at %s", spec.name, component.address,
            extra={"run_id": run.run_id, "step_id": spec.step_id,
                   "component": spec.name, "address": component.address},
        )
        self._emit("deployed", {
            "run_id": run.run_id,
            "component": spec.name,
            "address": component.address,
            "placeholders": [dep for dep in spec.dependencies if dep in spec.deferred_targets],
        })

    def _patch(
        self,
        run: RunRecord,
        plan: DeploymentPlan,
        position: int,
        edge: DeferredEdge,
        deployed: dict[str, DeployedComponent],
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        source = deployed[edge.source]
        action = PatchAction(
            component=edge.source,
            dependency=edge.target,
            target_address=source.address,
            method=edge.method,
            argument_addresses=(deployed[edge.target].address,),
        )

        started = utcnow()
        try:
            self._check_cancelled(action.step_id, cancel, deadline)
            receipt = self._executor.mutate(
                action.target_address, action.method, list(action.argument_addresses)
            )
        except DeplorchError as e:
            raise self._failure(
                run, action.step_id, started, e, deployed, plan.patches[position:]
            ) from e

        deployed[edge.source] = replace(
            source,
            links={**source.links, edge.target: action.argument_addresses[0]},
        )
        self._journal(
            run, action.step_id, started, deployed, plan.patches[position + 1:],
            tx_ref=receipt.tx_ref,
        )
        logger.info(
            "Patched %s.%s -> %s", action.component, action.method, action.dependency,
            extra={"run_id": run.run_id, "step_id": action.step_id,
                   "component": action.component, "tx_ref": receipt.tx_ref},
        )
        self._emit("patched", {"run_id": run.run_id, "action": action})

    def _commit(self, run: RunRecord, manifest: Manifest) -> Manifest:
        started = utcnow()
        try:
            committed = self._writer.commit(manifest)
        except SinkWriteError as e:
            try:
                self._store.store_pending_manifest(run.run_id, e.document or manifest.to_dict())
                self._record(run.run_id, COMMIT_STEP, started, error=e)
                self._store.finish_run(
                    run.run_id, RunStatus.PARTIAL, error=_error_info(COMMIT_STEP, e)
                )
            except Exception as journal_error:
                logger.error(
                    "Run %s: could not journal commit failure: %s", run.run_id, journal_error,
                    extra={"run_id": run.run_id, "step_id": COMMIT_STEP},
                )
            logger.error(
                "Run %s: manifest commit failed, retry with 'deplorch recommit %s'",
                run.run_id, run.run_id, extra={"run_id": run.run_id, "step_id": COMMIT_STEP},
            )
            self._emit("failed", {"run_id": run.run_id, "step_id": COMMIT_STEP, "error": e})
            raise

        self._record(run.run_id, COMMIT_STEP, started)
        self._store.finish_run(run.run_id, RunStatus.SUCCESS)
        self._emit("committed", {"run_id": run.run_id, "manifest": committed})
        return committed

    def _failure(
        self,
        run: RunRecord,
        step_id: str,
        started: datetime,
        error: DeplorchError,
        deployed: dict[str, DeployedComponent],
        pending_patches: Iterable[DeferredEdge],
    ) -> DeploymentError:
        failure: DeploymentError
        if deployed:
            failure = PartialManifestError(
                step_id, str(error), cause=error,
                deployed=deployed, pending_patches=list(pending_patches),
            )
            status = RunStatus.PARTIAL
        else:
            failure = DeploymentError(step_id, str(error), cause=error)
            status = RunStatus.FAILED

        try:
            self._record(run.run_id, step_id, started, error=error)
            self._store.finish_run(run.run_id, status, error=_error_info(step_id, error))
        except Exception as journal_error:
            logger.error(
                "Run %s: could not journal failure of %s: %s",
                run.run_id, step_id, journal_error,
                extra={"run_id": run.run_id, "step_id": step_id},
            )
        logger.error(
            "Run %s aborted at %s: %s (%d deployed)",
            run.run_id, step_id, error, len(deployed),
            extra={"run_id": run.run_id, "step_id": step_id},
        )
        self._emit("failed", {"run_id": run.run_id, "step_id": step_id, "error": failure})
        return failure

    def _journal(
        self,
        run: RunRecord,
        step_id: str,
        started: datetime,
        deployed: dict[str, DeployedComponent],
        pending_patches: Iterable[DeferredEdge],
        **outcome: Any,
    ) -> None:
        """
        Record a confirmed step.

        The step already took effect on the backend, so a journal failure
        here is reported as a PartialManifestError over `deployed`.
        """
        try:
            self._record(run.run_id, step_id, started, **outcome)
        except Exception as e:
            failure = PartialManifestError(
                step_id, f"Run journal write failed: {e}", cause=e,
                deployed=deployed, pending_patches=list(pending_patches),
            )
            logger.error(
                "Run %s: journal write failed after %s (%d deployed): %s",
                run.run_id, step_id, len(deployed), e,
                extra={"run_id": run.run_id, "step_id": step_id},
            )
            self._emit("failed", {"run_id": run.run_id, "step_id": step_id, "error": failure})
            raise failure from e

    def _check_cancelled(
        self,
        step_id: str,
        cancel: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        if cancel is not None and cancel.is_set():
            raise RunCancelledError(f"Run cancelled before {step_id}")
        if deadline is not None and self._clock() >= deadline:
            raise RunCancelledError(f"Deadline exceeded before {step_id}")

    def _record(
        self,
        run_id: str,
        step_id: str,
        started: datetime,
        address: Optional[str] = None,
        tx_ref: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self._store.record_step(run_id, StepOutcome(
            step_id=step_id,
            status=StepStatus.FAILED if error is not None else StepStatus.COMPLETED,
            started_at=started,
            completed_at=utcnow(),
            address=address,
            tx_ref=tx_ref,
            error=_error_info(step_id, error) if error is not None else None,
        ))

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        if self._on_event is not None:
            self._on_event(event, data)


def _error_info(step_id: str, error: Exception) -> dict[str, Any]:
    return {"step_id": step_id, "type": type(error).__name__, "message": str(error)}
