"""Execution of a single upgrade step."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from common.logging_utils import extra_context, is_debug_enabled, Timer
from compat.resolver import apply_updates
from versioning.models import UpdateType

from .catalog import BreakingChangeCatalog
from .errors import StepExecutionError, UpgradeError
from .migration import ManifestMigration, MigrationCapability
from .models import ManualIntervention, RunContext, StepOutcome, UpgradeStep
from .project import read_manifest, write_manifest

logger = logging.getLogger(__name__)


class StepExecutor:
    """Apply one version transition through an injected migration capability."""

    def __init__(
        self,
        migration: Optional[MigrationCapability] = None,
        catalog: Optional[BreakingChangeCatalog] = None,
        lock: Optional[threading.RLock] = None,
    ):
        self.migration = migration or ManifestMigration()
        self.catalog = catalog or BreakingChangeCatalog()
        self.lock = lock or threading.RLock()

    def execute(self, step: UpgradeStep, context: RunContext) -> StepOutcome:
        """Run ``step`` against the project in ``context``.

        Manual changes are reported as advisory items. Under comprehensive
        validation an unacknowledged manual change marked required fails the
        step before anything is touched.

        Args:
            step: The transition to apply.
            context: Run context carrying the project path and options.

        Returns:
            StepOutcome with applied changes and manual interventions.

        Raises:
            StepExecutionError: If the migration fails or a required manual change is unresolved.
        """
        options = context.options
        interventions = [
            ManualIntervention(change=change, instructions=change.instructions)
            for change in self.catalog.manual_changes_for(step.to_version)
        ]
        if options.comprehensive:
            unresolved = [
                i.change.id for i in interventions
                if i.change.required and i.change.id not in options.acknowledged_changes
            ]
            if unresolved:
                raise StepExecutionError(
                    step,
                    message="unresolved manual changes: " + ", ".join(unresolved),
                )

        with self.lock, Timer() as t:
            try:
                applied = self.migration.apply(context.project_path, step, options)
            except StepExecutionError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                raise StepExecutionError(step, exc) from exc

        if is_debug_enabled(logger):
            logger.debug(
                "Step executed",
                extra=extra_context(
                    event="step",
                    component="executor",
                    action="execute",
                    outcome="success",
                    step=str(step),
                    changes=len(applied),
                    manual=len(interventions),
                    duration_ms=t.duration_ms(),
                )
            )
        return StepOutcome(step=step, applied_changes=list(applied), manual_interventions=interventions)

    def apply_dependency_updates(self, step: UpgradeStep, context: RunContext, report) -> List[str]:
        """Write the updates of a compatibility report into the project manifest.

        Raises:
            StepExecutionError: If the manifest cannot be read or written.
        """
        with self.lock:
            try:
                manifest = read_manifest(context.project_path)
                updated = apply_updates(manifest, report)
                if updated != manifest:
                    write_manifest(context.project_path, updated)
            except (OSError, UpgradeError) as exc:
                raise StepExecutionError(step, exc) from exc
        changes = []
        for update in report.updates:
            if update.update_type == UpdateType.DEPRECATED:
                if not update.required:
                    changes.append(f"{update.section.value}.{update.name}: removed")
            else:
                changes.append(
                    f"{update.section.value}.{update.name}: {update.current_version} -> {update.compatible_version}"
                )
        logger.info("Applied %d dependency update(s) for %s", len(changes), step.to_version)
        return changes
