"""CLI entry point for the ``upgrade`` command.

Prints the plan, asks for confirmation, drives the orchestrator and renders
its progress messages on stdout.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

from constants import ExitCodes, RollbackPolicy
from cli_config import ConfigError, build_resolver, build_upgrade_options, load_config, setup_logging
from common.prompts import choose, confirm
from upgrade.errors import CheckpointError, UpgradeError
from upgrade.events import EventHandlers, InterventionDecision
from upgrade.models import UpgradeResult
from upgrade.orchestrator import UpgradeOrchestrator
from upgrade.planner import describe_plan

logger = logging.getLogger(__name__)


def _console_handlers(assume_yes: bool) -> EventHandlers:
    """Handlers that print progress and answer dependency prompts interactively."""

    def on_manual_intervention(event) -> None:
        if event.resolution is None:
            change = event.change
            print(f"  Manual action [{change.id}] {change.description}")
            print(f"    {event.instructions}")
            return
        print(event.instructions)
        if assume_yes:
            decision = InterventionDecision.APPLY.value
        else:
            decision = choose(
                "Apply these dependency updates?",
                [d.value for d in InterventionDecision],
                default=InterventionDecision.APPLY.value,
            )
        event.resolution.set_result(InterventionDecision(decision))

    return EventHandlers(
        on_progress=lambda e: print(e.message),
        on_step_start=lambda e: print(f"Starting: Angular {e.step.from_version} -> {e.step.to_version}"),
        on_step_complete=lambda e: print(
            f"Completed: Angular {e.step.to_version} ({len(e.outcome.applied_changes)} changes)"
        ),
        on_step_failed=lambda e: print(f"Failed: Angular {e.step.from_version} -> {e.step.to_version}: {e.error}"),
        on_manual_intervention=on_manual_intervention,
    )


def _print_result(result: UpgradeResult) -> None:
    print("")
    if result.success:
        print(f"Upgrade {result.from_version} -> {result.to_version} finished in {result.duration:.1f}s")
    elif result.cancelled:
        print(f"Upgrade cancelled: {result.error}")
    else:
        print(f"Upgrade failed: {result.error}")
    print(f"Completed steps: {len(result.completed_steps)}")
    if result.restored_checkpoint:
        print(f"Project restored to checkpoint {result.restored_checkpoint}")
    for warning in result.warnings:
        print(f"Warning: {warning}")
    print(f"Rollback available: {'yes' if result.rollback_available else 'no'}")


def run_upgrade(args: Any) -> None:
    """Entry point for the upgrade command.

    Args:
        args: Parsed CLI arguments namespace.
    """
    setup_logging(args)
    project_path = os.path.abspath(getattr(args, "PROJECT_PATH", "."))
    assume_yes = bool(getattr(args, "ASSUME_YES", False))

    try:
        config = load_config(getattr(args, "CONFIG", None), project_path)
        options = build_upgrade_options(args, config)
        resolver = build_resolver(config)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(ExitCodes.USAGE_ERROR.value)

    orchestrator = UpgradeOrchestrator(project_path, resolver=resolver, handlers=_console_handlers(assume_yes))
    try:
        steps = orchestrator.plan(options)
    except UpgradeError as e:
        logger.error("%s", e)
        sys.exit(ExitCodes.FAILURE.value)

    for line in describe_plan(steps, options):
        print(line)

    if getattr(args, "DRY_RUN", False):
        print("Dry run: no changes were made.")
        sys.exit(ExitCodes.SUCCESS.value)

    if not confirm("Proceed with the upgrade?", default=True, assume_yes=assume_yes):
        print("Upgrade cancelled.")
        sys.exit(ExitCodes.SUCCESS.value)

    try:
        result = orchestrator.orchestrate_upgrade(options)
    except UpgradeError as e:
        logger.error("Upgrade failed: %s", e)
        sys.exit(ExitCodes.FAILURE.value)

    _print_result(result)
    if result.success or result.cancelled:
        sys.exit(ExitCodes.SUCCESS.value)

    if (
        result.rollback_available
        and result.restored_checkpoint is None
        and options.rollback_policy == RollbackPolicy.MANUAL
    ):
        target = result.checkpoints[-1]
        if confirm(f"Roll back to checkpoint {target.id} (version {target.version})?", default=False,
                   assume_yes=assume_yes):
            try:
                orchestrator.rollback_to_checkpoint(target.id, options.backup_path)
                print(f"Rolled back to {target.id}")
            except CheckpointError as e:
                logger.error("Rollback failed: %s", e)
    sys.exit(ExitCodes.FAILURE.value)
