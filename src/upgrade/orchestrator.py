"""The upgrade state machine.

A run walks ``Idle -> Planning -> (CheckpointPending -> Executing ->
Validating)* -> Completed | Failed | Cancelled`` and, on failure under the
auto-on-failure policy, ``RollingBack -> RolledBack``. Steps run strictly in
order on the calling thread; progress is reported through the caller's
:class:`~upgrade.events.EventHandlers`.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import CancelledError, Future
from typing import List, Optional, Tuple, Union

from constants import CheckpointFrequency, RollbackPolicy, ThirdPartyHandling
from common.logging_utils import extra_context, is_debug_enabled
from compat.resolver import (
    DependencyCompatibilityResolver,
    ResolveOptions,
    ensure_no_blocking,
    render_report,
)

from .checkpoints import CheckpointStore
from .errors import (
    CheckpointError,
    CriticalDependencyError,
    OrchestratorBusyError,
    ProjectNotFoundError,
    StepExecutionError,
)
from .events import (
    EventHandlers,
    InterventionDecision,
    ManualInterventionRequired,
    Progress,
    StepCompleted,
    StepFailed,
    StepStarted,
)
from .executor import StepExecutor
from .models import (
    Checkpoint,
    RunContext,
    RunState,
    UpgradeOptions,
    UpgradeResult,
    UpgradeStep,
)
from .planner import VersionPathPlanner
from .project import detect_framework_version, read_manifest

logger = logging.getLogger(__name__)


class _RunAborted(Exception):
    """The caller declined to continue at a manual intervention."""


class UpgradeOrchestrator:
    """Drive a planned upgrade one step at a time."""

    def __init__(
        self,
        project_path: str,
        planner: Optional[VersionPathPlanner] = None,
        executor: Optional[StepExecutor] = None,
        checkpoint_store: Optional[CheckpointStore] = None,
        resolver: Optional[DependencyCompatibilityResolver] = None,
        handlers: Optional[EventHandlers] = None,
    ):
        """Initialize the orchestrator.

        Args:
            project_path: Root of the project to upgrade.
            planner: Path planner; bounded to supported versions by default.
            executor: Step executor; the manifest migration by default.
            checkpoint_store: Store to use; built per run from ``backup_path`` when omitted.
                Its lock becomes the project lock, shared with the executor.
            resolver: Compatibility resolver used by comprehensive validation.
            handlers: Receivers for progress messages.
        """
        self.project_path = os.path.abspath(project_path)
        # Serializes every mutation of the project: captures, steps and restores.
        if checkpoint_store is not None:
            self._project_lock = checkpoint_store.lock
        else:
            self._project_lock = threading.RLock()
        self._run_guard = threading.Lock()
        self.planner = planner or VersionPathPlanner.default()
        self.executor = executor or StepExecutor()
        self.executor.lock = self._project_lock
        self.checkpoint_store = checkpoint_store
        self.resolver = resolver or DependencyCompatibilityResolver()
        self.handlers = handlers or EventHandlers()
        self._context: Optional[RunContext] = None

    # -- helpers ---------------------------------------------------------

    def store_for(self, backup_path: Optional[str] = None) -> CheckpointStore:
        """Checkpoint store for this project, relocated to ``backup_path`` when given."""
        if self.checkpoint_store is not None:
            return self.checkpoint_store
        return CheckpointStore(self.project_path, root=backup_path, lock=self._project_lock)

    def _emit(self, event) -> None:
        try:
            self.handlers.dispatch(event)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Event handler for %s raised: %s", type(event).__name__, exc)
            resolution = getattr(event, "resolution", None)
            if resolution is not None and not resolution.done():
                resolution.cancel()

    @staticmethod
    def _should_checkpoint(step: UpgradeStep, options: UpgradeOptions) -> bool:
        frequency = options.checkpoint_frequency
        if frequency == CheckpointFrequency.EVERY_STEP:
            return True
        if frequency == CheckpointFrequency.NONE:
            return False
        if options.checkpoint_boundaries is None:
            # Each planned step lands on a new major.
            return True
        return step.to_version in options.checkpoint_boundaries

    def _current_version(self, current_version: Optional[Union[int, str]]) -> Union[int, str]:
        if current_version is not None:
            return current_version
        detected = detect_framework_version(read_manifest(self.project_path))
        if not detected:
            raise ProjectNotFoundError(f"No @angular/core dependency declared in {self.project_path}")
        return detected

    @staticmethod
    def _result(context: RunContext, started: float, success: bool, error: Optional[str] = None,
                cancelled: bool = False, restored: Optional[Checkpoint] = None) -> UpgradeResult:
        return UpgradeResult(
            success=success,
            from_version=context.plan[0].from_version,
            to_version=context.options.target_version,
            duration=round(time.monotonic() - started, 3),
            completed_steps=tuple(context.completed_steps),
            checkpoints=list(context.checkpoints),
            warnings=list(context.warnings),
            error=error,
            cancelled=cancelled,
            final_state=context.state,
            restored_checkpoint=restored.id if restored else None,
        )

    # -- public API ------------------------------------------------------

    def plan(self, options: UpgradeOptions,
             current_version: Optional[Union[int, str]] = None) -> Tuple[UpgradeStep, ...]:
        """Plan without running anything. Reads the manifest when no version is given.

        Raises:
            InvalidRangeError: If the target is not above the current version.
            ProjectNotFoundError: If the current version cannot be determined.
        """
        return self.planner.plan(self._current_version(current_version), options.target_version)

    def cancel(self) -> None:
        """Ask the active run to stop before its next step."""
        context = self._context
        if context is not None:
            context.cancel_event.set()

    @property
    def running(self) -> bool:
        """True while a run or rollback holds the project."""
        return self._run_guard.locked()

    def orchestrate_upgrade(self, options: UpgradeOptions,
                            current_version: Optional[Union[int, str]] = None) -> UpgradeResult:
        """Run the whole upgrade described by ``options``.

        Args:
            options: Immutable run options.
            current_version: Starting version; read from package.json when omitted.

        Returns:
            The terminal UpgradeResult.

        Raises:
            InvalidRangeError: If planning fails; nothing has been touched then.
            ProjectNotFoundError: If the current version cannot be determined.
            OrchestratorBusyError: If another run or rollback is active.
        """
        if not self._run_guard.acquire(blocking=False):
            raise OrchestratorBusyError("An upgrade or rollback is already in progress")
        try:
            context = RunContext(project_path=self.project_path, options=options)
            self._context = context
            return self._run(context, current_version)
        finally:
            self._context = None
            self._run_guard.release()

    def _run(self, context: RunContext, current_version: Optional[Union[int, str]]) -> UpgradeResult:
        started = time.monotonic()
        options = context.options
        context.transition(RunState.PLANNING)
        context.plan = self.planner.plan(self._current_version(current_version), options.target_version)
        plan = context.plan
        self._emit(Progress(f"Upgrading {plan[0].from_version} -> {plan[-1].to_version} in {len(plan)} step(s)"))
        logger.info("Starting upgrade %s -> %s (%d steps)", plan[0].from_version, plan[-1].to_version, len(plan))

        store = self.store_for(options.backup_path)
        for step in plan:
            if context.cancel_event.is_set():
                context.transition(RunState.CANCELLED)
                message = f"Upgrade cancelled after {len(context.completed_steps)} of {len(plan)} steps"
                self._emit(Progress(message))
                return self._result(context, started, success=False, error=message, cancelled=True)

            if self._should_checkpoint(step, options):
                context.transition(RunState.CHECKPOINT_PENDING)
                try:
                    checkpoint = store.create(context.current_version, f"Before upgrade {step}")
                except CheckpointError as exc:
                    context.transition(RunState.FAILED)
                    logger.error("Checkpoint capture before %s failed: %s", step, exc)
                    return self._result(
                        context, started, success=False,
                        error=f"Checkpoint capture before step {step} failed, no checkpoint was created: {exc}",
                    )
                context.checkpoints.append(checkpoint)
                self._emit(Progress(f"Checkpoint {checkpoint.id} created"))

            self._emit(StepStarted(step))
            context.transition(RunState.EXECUTING)
            try:
                outcome = self.executor.execute(step, context)
            except StepExecutionError as exc:
                self._emit(StepFailed(step, exc))
                return self._handle_failure(context, store, exc, started)

            self._emit(StepCompleted(step, outcome))
            for item in outcome.manual_interventions:
                self._emit(ManualInterventionRequired(step=step, change=item.change, instructions=item.instructions))

            # The step only counts as completed once its validation is over.
            if options.comprehensive:
                context.transition(RunState.VALIDATING)
                try:
                    self._validate(step, context)
                except _RunAborted:
                    context.completed_steps.append(step)
                    context.transition(RunState.FAILED)
                    return self._result(
                        context, started, success=False,
                        error=f"Upgrade stopped during validation of {step}",
                    )
                except CancelledError:
                    context.completed_steps.append(step)
                    context.transition(RunState.CANCELLED)
                    return self._result(
                        context, started, success=False, cancelled=True,
                        error=f"Upgrade cancelled during validation of {step}",
                    )
                except StepExecutionError as exc:
                    self._emit(Progress(f"Validation of {step} failed: {exc}"))
                    return self._handle_failure(context, store, exc, started)
            context.completed_steps.append(step)

        context.transition(RunState.COMPLETED)
        self._emit(Progress(f"Upgrade to {options.target_version} completed"))
        logger.info("Upgrade completed: %d step(s)", len(context.completed_steps))
        return self._result(context, started, success=True)

    def _validate(self, step: UpgradeStep, context: RunContext) -> None:
        """Comprehensive validation: resolve dependencies for the version just reached."""
        options = context.options
        try:
            manifest = read_manifest(self.project_path)
        except ProjectNotFoundError as exc:
            context.warnings.append(f"{step.to_version}: dependency validation skipped: {exc}")
            return
        report = self.resolver.resolve(
            manifest,
            step.to_version,
            ResolveOptions(
                include_dev_dependencies=True,
                update_strategy=options.strategy,
                parallel=options.parallel_processing,
            ),
        )
        context.warnings.extend(f"{step.to_version}: {w}" for w in report.warnings)
        try:
            ensure_no_blocking(report)
        except CriticalDependencyError as exc:
            context.warnings.append(f"BLOCKING: {exc}")
        if report.critical_updates == 0:
            return

        handling = options.third_party_handling
        if handling == ThirdPartyHandling.PROMPT and self.handlers.on_manual_intervention is None:
            logger.warning("No handler to resolve dependency prompt for %s; skipping updates", step)
            handling = ThirdPartyHandling.SKIP

        if handling == ThirdPartyHandling.PROMPT:
            resolution: Future = Future()
            self._emit(ManualInterventionRequired(
                step=step,
                change=report,
                instructions="\n".join(render_report(report)),
                resolution=resolution,
            ))
            decision = resolution.result()
            if decision == InterventionDecision.ABORT:
                raise _RunAborted()
            if decision == InterventionDecision.APPLY:
                handling = ThirdPartyHandling.AUTO
            else:
                handling = ThirdPartyHandling.SKIP

        if handling == ThirdPartyHandling.AUTO:
            changes = self.executor.apply_dependency_updates(step, context, report)
            self._emit(Progress(f"Applied {len(changes)} dependency update(s) for {step.to_version}"))
        else:
            context.warnings.append(
                f"{step.to_version}: {report.critical_updates} critical dependency update(s) not applied"
            )

    def _handle_failure(self, context: RunContext, store: CheckpointStore,
                        exc: StepExecutionError, started: float) -> UpgradeResult:
        policy = context.options.rollback_policy
        error = str(exc)
        logger.error("%s", error)
        if policy == RollbackPolicy.AUTO_ON_FAILURE and context.checkpoints:
            target = context.checkpoints[-1]
            context.transition(RunState.ROLLING_BACK)
            self._emit(Progress(f"Rolling back to checkpoint {target.id}"))
            try:
                store.restore(target.id)
            except CheckpointError as rb_exc:
                context.transition(RunState.FAILED)
                logger.error("Automatic rollback failed: %s", rb_exc)
                return self._result(context, started, success=False, error=f"{error}; rollback failed: {rb_exc}")
            context.transition(RunState.ROLLED_BACK)
            return self._result(context, started, success=False, error=error, restored=target)

        context.transition(RunState.FAILED)
        return self._result(context, started, success=False, error=error)

    def rollback_to_checkpoint(self, checkpoint_id: str, backup_path: Optional[str] = None) -> Checkpoint:
        """Restore ``checkpoint_id`` and discard every later checkpoint.

        Raises:
            OrchestratorBusyError: If a run is active.
            CheckpointNotFoundError: If the id is unknown.
            CorruptSnapshotError: If the snapshot fails verification.
        """
        if not self._run_guard.acquire(blocking=False):
            raise OrchestratorBusyError("Cannot roll back while an upgrade is in progress")
        try:
            store = self.store_for(backup_path)
            checkpoint = store.restore(checkpoint_id)
            discarded: List[Checkpoint] = store.prune_after(checkpoint_id)
        finally:
            self._run_guard.release()
        if is_debug_enabled(logger):
            logger.debug(
                "Rollback finished",
                extra=extra_context(
                    event="rollback",
                    component="orchestrator",
                    action="rollback_to_checkpoint",
                    outcome="success",
                    checkpoint_id=checkpoint_id,
                    discarded=len(discarded),
                )
            )
        self._emit(Progress(f"Rolled back to {checkpoint.id} (version {checkpoint.version})"))
        return checkpoint
