"""Tests for the upgrade orchestrator state machine."""

import json
import os
import threading
from unittest.mock import MagicMock, patch

import pytest

from conftest import read_json, tree_state, write_project
from constants import CheckpointFrequency, RollbackPolicy, ThirdPartyHandling, ValidationLevel
from upgrade.checkpoints import CheckpointStore
from upgrade.errors import (
    CheckpointCaptureError,
    InvalidRangeError,
    OrchestratorBusyError,
    ProjectNotFoundError,
    StepExecutionError,
)
from upgrade.events import (
    EventHandlers,
    InterventionDecision,
    ManualInterventionRequired,
    StepCompleted,
    StepStarted,
)
from upgrade.executor import StepExecutor
from upgrade.migration import MigrationCapability
from upgrade.models import Checkpoint, RunState, UpgradeOptions
from upgrade.orchestrator import UpgradeOrchestrator


class RecordingMigration(MigrationCapability):
    """Bumps @angular/core and drops a marker file; fails on request."""

    def __init__(self, fail_at=None):
        self.fail_at = fail_at
        self.applied = []

    def apply(self, project_path, step, options):
        marker = os.path.join(project_path, "src", "app", f"migrated-{step.to_version}.txt")
        with open(marker, "w", encoding="utf-8") as fh:
            fh.write(str(step))
        if step.to_version == self.fail_at:
            raise RuntimeError("schematic crashed")
        manifest = read_json(os.path.join(project_path, "package.json"))
        manifest["dependencies"]["@angular/core"] = f"^{step.to_version}.0.0"
        with open(os.path.join(project_path, "package.json"), "w", encoding="utf-8") as fh:
            json.dump(manifest, fh, indent=2)
        self.applied.append(step.to_version)
        return [f"@angular/core -> ^{step.to_version}.0.0"]


def make_orchestrator(project, migration=None, handlers=None, store=None):
    executor = StepExecutor(migration=migration or RecordingMigration())
    return UpgradeOrchestrator(project, executor=executor, checkpoint_store=store, handlers=handlers)


def core_range(project):
    return read_json(os.path.join(project, "package.json"))["dependencies"]["@angular/core"]


class TestHappyPath:
    """Runs that complete."""

    def test_three_steps_three_checkpoints(self, angular_project):
        migration = RecordingMigration()
        orch = make_orchestrator(angular_project, migration)
        options = UpgradeOptions(target_version=15, checkpoint_frequency=CheckpointFrequency.MAJOR_VERSIONS)

        result = orch.orchestrate_upgrade(options)

        assert result.success is True
        assert result.from_version == 12
        assert result.to_version == 15
        assert [str(s) for s in result.completed_steps] == ["12 -> 13", "13 -> 14", "14 -> 15"]
        assert [c.version for c in result.checkpoints] == [12, 13, 14]
        assert result.final_state == RunState.COMPLETED
        assert result.rollback_available is True
        assert migration.applied == [13, 14, 15]
        assert core_range(angular_project) == "^15.0.0"

    def test_checkpoints_persisted_in_store(self, angular_project):
        orch = make_orchestrator(angular_project)
        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=14))
        stored = CheckpointStore(angular_project).list()
        assert [c.id for c in stored] == [c.id for c in result.checkpoints]

    def test_explicit_current_version(self, angular_project):
        orch = make_orchestrator(angular_project)
        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=14), current_version=13)
        assert [str(s) for s in result.completed_steps] == ["13 -> 14"]

    def test_checkpoint_boundaries(self, angular_project):
        orch = make_orchestrator(angular_project)
        options = UpgradeOptions(
            target_version=15,
            checkpoint_frequency=CheckpointFrequency.MAJOR_VERSIONS,
            checkpoint_boundaries=frozenset({13, 15}),
        )
        result = orch.orchestrate_upgrade(options)
        assert result.success
        assert [c.version for c in result.checkpoints] == [12, 14]

    def test_no_checkpoints(self, angular_project):
        orch = make_orchestrator(angular_project)
        options = UpgradeOptions(target_version=14, checkpoint_frequency=CheckpointFrequency.NONE)
        result = orch.orchestrate_upgrade(options)
        assert result.success
        assert result.checkpoints == []
        assert not os.path.exists(os.path.join(angular_project, ".ng-upgrade"))

    def test_backup_path_relocates_store(self, angular_project, tmp_path):
        backups = str(tmp_path / "backups")
        orch = make_orchestrator(angular_project)
        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=13, backup_path=backups))
        assert result.success
        assert os.path.isfile(os.path.join(backups, "checkpoints.json"))
        assert not os.path.exists(os.path.join(angular_project, ".ng-upgrade"))


class TestPlanning:
    """Planning errors happen before any mutation."""

    def test_invalid_range_touches_nothing(self, angular_project):
        before = tree_state(angular_project)
        orch = make_orchestrator(angular_project)
        with pytest.raises(InvalidRangeError):
            orch.orchestrate_upgrade(UpgradeOptions(target_version=12))
        assert tree_state(angular_project) == before
        assert not os.path.exists(os.path.join(angular_project, ".ng-upgrade"))
        assert orch.running is False

    def test_missing_project(self, tmp_path):
        orch = make_orchestrator(str(tmp_path))
        with pytest.raises(ProjectNotFoundError):
            orch.orchestrate_upgrade(UpgradeOptions(target_version=14))

    def test_plan_reads_manifest(self, angular_project):
        orch = make_orchestrator(angular_project)
        steps = orch.plan(UpgradeOptions(target_version=14))
        assert [str(s) for s in steps] == ["12 -> 13", "13 -> 14"]


class TestFailureHandling:
    """Rollback policies when a step fails."""

    def test_auto_rollback_to_single_checkpoint(self, angular_project):
        before = tree_state(angular_project)
        migration = RecordingMigration(fail_at=14)
        orch = make_orchestrator(angular_project, migration)
        options = UpgradeOptions(
            target_version=15,
            checkpoint_frequency=CheckpointFrequency.MAJOR_VERSIONS,
            checkpoint_boundaries=frozenset({13}),
        )

        result = orch.orchestrate_upgrade(options)

        assert result.success is False
        assert len(result.completed_steps) == 1
        assert len(result.checkpoints) == 1
        assert result.rollback_available is True
        assert result.final_state == RunState.ROLLED_BACK
        assert result.restored_checkpoint == result.checkpoints[0].id
        assert "schematic crashed" in result.error
        assert tree_state(angular_project) == before

    def test_auto_rollback_restores_latest_checkpoint(self, angular_project):
        orch = make_orchestrator(angular_project, RecordingMigration(fail_at=14))
        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=15))

        assert len(result.checkpoints) == 2
        assert result.restored_checkpoint == result.checkpoints[-1].id
        assert core_range(angular_project) == "^13.0.0"
        assert os.path.exists(os.path.join(angular_project, "src", "app", "migrated-13.txt"))
        assert not os.path.exists(os.path.join(angular_project, "src", "app", "migrated-14.txt"))

    def test_manual_policy_leaves_state(self, angular_project):
        orch = make_orchestrator(angular_project, RecordingMigration(fail_at=14))
        options = UpgradeOptions(target_version=15, rollback_policy=RollbackPolicy.MANUAL)
        result = orch.orchestrate_upgrade(options)

        assert result.final_state == RunState.FAILED
        assert result.rollback_available is True
        assert result.restored_checkpoint is None
        assert os.path.exists(os.path.join(angular_project, "src", "app", "migrated-14.txt"))

    def test_never_policy(self, angular_project):
        orch = make_orchestrator(angular_project, RecordingMigration(fail_at=13))
        options = UpgradeOptions(target_version=14, rollback_policy=RollbackPolicy.NEVER)
        result = orch.orchestrate_upgrade(options)
        assert result.final_state == RunState.FAILED
        assert result.completed_steps == ()
        assert os.path.exists(os.path.join(angular_project, "src", "app", "migrated-13.txt"))

    def test_auto_without_checkpoints_fails_plainly(self, angular_project):
        orch = make_orchestrator(angular_project, RecordingMigration(fail_at=13))
        options = UpgradeOptions(target_version=14, checkpoint_frequency=CheckpointFrequency.NONE)
        result = orch.orchestrate_upgrade(options)
        assert result.success is False
        assert result.rollback_available is False
        assert result.final_state == RunState.FAILED

    def test_checkpoint_capture_failure_stops_before_step(self, angular_project):
        store = MagicMock()
        store.create.side_effect = CheckpointCaptureError("disk full")
        migration = RecordingMigration()
        orch = make_orchestrator(angular_project, migration, store=store)

        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=14))

        assert result.success is False
        assert result.completed_steps == ()
        assert migration.applied == []
        assert "no checkpoint was created" in result.error
        store.restore.assert_not_called()

    def test_second_capture_failure(self, angular_project):
        first = Checkpoint(id="v12-aaaaaaaa", version=12, timestamp="t", description="d", snapshot_ref="")
        store = MagicMock()
        store.create.side_effect = [first, CheckpointCaptureError("disk full")]
        migration = RecordingMigration()
        orch = make_orchestrator(angular_project, migration, store=store)

        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=14))

        assert migration.applied == [13]
        assert len(result.completed_steps) == 1
        assert result.checkpoints == [first]
        assert result.final_state == RunState.FAILED

    def test_io_failure_during_auto_rollback_still_returns_result(self, angular_project):
        orch = make_orchestrator(angular_project, RecordingMigration(fail_at=14))
        with patch.object(CheckpointStore, "_clear_project", side_effect=PermissionError("read-only file")):
            result = orch.orchestrate_upgrade(UpgradeOptions(target_version=15))

        assert result.success is False
        assert result.final_state == RunState.FAILED
        assert result.restored_checkpoint is None
        assert "schematic crashed" in result.error
        assert "rollback failed" in result.error
        assert "read-only file" in result.error
        assert [str(s) for s in result.completed_steps] == ["12 -> 13"]
        assert result.rollback_available is True
        assert orch.running is False

    def test_injected_store_shares_lock_with_executor(self, angular_project):
        store = CheckpointStore(angular_project)
        orch = make_orchestrator(angular_project, store=store)
        assert orch.executor.lock is store.lock
        assert orch.store_for() is store

    def test_built_store_shares_lock_with_executor(self, angular_project):
        orch = make_orchestrator(angular_project)
        assert orch.store_for().lock is orch.executor.lock


class TestEventsAndCancellation:
    """Event delivery and cooperative cancellation."""

    def test_event_order(self, angular_project):
        seen = []
        handlers = EventHandlers(
            on_step_start=lambda e: seen.append(("start", e.step.to_version)),
            on_step_complete=lambda e: seen.append(("complete", e.step.to_version)),
            on_manual_intervention=lambda e: seen.append(("manual", e.change.id, e.resolution)),
        )
        orch = make_orchestrator(angular_project, handlers=handlers)
        orch.orchestrate_upgrade(UpgradeOptions(target_version=14))

        assert seen[0] == ("start", 13)
        assert seen[1] == ("complete", 13)
        manual_13 = [s[1] for s in seen[2:] if s[0] == "manual" and s[1].startswith("ng13")]
        assert manual_13 == ["ng13-view-engine-removal", "ng13-angular-package-format", "ng13-ie11-deprecation"]
        assert all(s[2] is None for s in seen if s[0] == "manual")
        assert seen.index(("start", 14)) > seen.index(("complete", 13))

    def test_handler_errors_do_not_break_run(self, angular_project):
        def boom(_event):
            raise RuntimeError("handler bug")

        orch = make_orchestrator(angular_project, handlers=EventHandlers(on_progress=boom, on_step_start=boom))
        assert orch.orchestrate_upgrade(UpgradeOptions(target_version=14)).success

    def test_cancel_between_steps(self, angular_project):
        migration = RecordingMigration()
        orch = make_orchestrator(angular_project, migration)
        orch.handlers = EventHandlers(on_step_complete=lambda e: orch.cancel())

        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=15))

        assert result.cancelled is True
        assert result.success is False
        assert result.final_state == RunState.CANCELLED
        assert migration.applied == [13]
        assert len(result.completed_steps) == 1

    def test_rollback_refused_while_running(self, angular_project):
        errors = []
        orch = make_orchestrator(angular_project)

        def try_rollback(_event):
            try:
                orch.rollback_to_checkpoint("anything")
            except OrchestratorBusyError as exc:
                errors.append(exc)

        orch.handlers = EventHandlers(on_step_start=try_rollback)
        assert orch.orchestrate_upgrade(UpgradeOptions(target_version=13)).success
        assert len(errors) == 1

    def test_second_run_refused_while_running(self, angular_project):
        errors = []
        orch = make_orchestrator(angular_project)

        def try_run(_event):
            try:
                orch.orchestrate_upgrade(UpgradeOptions(target_version=14))
            except OrchestratorBusyError as exc:
                errors.append(exc)

        orch.handlers = EventHandlers(on_step_start=try_run)
        orch.orchestrate_upgrade(UpgradeOptions(target_version=13))
        assert len(errors) == 1
        assert orch.running is False


class TestRollbackToCheckpoint:
    """Manual rollback after a run."""

    def test_restores_and_prunes_later(self, angular_project):
        before = tree_state(angular_project)
        orch = make_orchestrator(angular_project)
        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=15))
        assert core_range(angular_project) == "^15.0.0"

        restored = orch.rollback_to_checkpoint(result.checkpoints[0].id)

        assert restored.version == 12
        assert tree_state(angular_project) == before
        assert [c.id for c in CheckpointStore(angular_project).list()] == [result.checkpoints[0].id]


class TestComprehensiveValidation:
    """Dependency validation and manual intervention suspension."""

    @pytest.fixture
    def ngrx_project(self, tmp_path):
        return write_project(
            tmp_path / "ngrx",
            dependencies={"@angular/core": "^12.2.0", "@ngrx/store": "^12.0.0"},
            dev_dependencies={"typescript": "~4.3.5"},
        )

    @staticmethod
    def _options(**kw):
        base = dict(
            target_version=13,
            validation_level=ValidationLevel.COMPREHENSIVE,
            acknowledged_changes=frozenset({"ng13-view-engine-removal"}),
        )
        base.update(kw)
        return UpgradeOptions(**base)

    @staticmethod
    def _deciding(decision, seen):
        def handler(event):
            if event.resolution is not None:
                seen.append(event)
                event.resolution.set_result(decision)
        return handler

    def test_unacknowledged_required_change_fails_step(self, ngrx_project):
        before = tree_state(ngrx_project)
        orch = UpgradeOrchestrator(ngrx_project)
        result = orch.orchestrate_upgrade(self._options(acknowledged_changes=frozenset()))
        assert result.success is False
        assert "ng13-view-engine-removal" in result.error
        assert result.completed_steps == ()
        assert tree_state(ngrx_project) == before

    def test_prompt_apply(self, ngrx_project):
        seen = []
        orch = UpgradeOrchestrator(
            ngrx_project,
            handlers=EventHandlers(on_manual_intervention=self._deciding(InterventionDecision.APPLY, seen)),
        )
        result = orch.orchestrate_upgrade(self._options())

        assert result.success is True
        assert len(seen) == 1
        assert isinstance(seen[0], ManualInterventionRequired)
        assert "@ngrx/store" in seen[0].instructions
        deps = read_json(os.path.join(ngrx_project, "package.json"))["dependencies"]
        assert deps["@angular/core"] == "^13.0.0"
        assert deps["@ngrx/store"] == "^13.0.0"

    def test_prompt_skip(self, ngrx_project):
        seen = []
        orch = UpgradeOrchestrator(
            ngrx_project,
            handlers=EventHandlers(on_manual_intervention=self._deciding(InterventionDecision.SKIP, seen)),
        )
        result = orch.orchestrate_upgrade(self._options())

        assert result.success is True
        assert any("not applied" in w for w in result.warnings)
        deps = read_json(os.path.join(ngrx_project, "package.json"))["dependencies"]
        assert deps["@ngrx/store"] == "^12.0.0"

    def test_prompt_abort(self, ngrx_project):
        seen = []
        orch = UpgradeOrchestrator(
            ngrx_project,
            handlers=EventHandlers(on_manual_intervention=self._deciding(InterventionDecision.ABORT, seen)),
        )
        result = orch.orchestrate_upgrade(self._options(target_version=14))

        assert result.success is False
        assert result.final_state == RunState.FAILED
        assert "stopped during validation" in result.error
        assert len(result.completed_steps) == 1

    def test_prompt_cancelled_future(self, ngrx_project):
        def cancel(event):
            if event.resolution is not None:
                event.resolution.cancel()

        orch = UpgradeOrchestrator(ngrx_project, handlers=EventHandlers(on_manual_intervention=cancel))
        result = orch.orchestrate_upgrade(self._options())
        assert result.cancelled is True
        assert result.final_state == RunState.CANCELLED

    def test_prompt_resolved_from_another_thread(self, ngrx_project):
        def later(event):
            if event.resolution is not None:
                threading.Timer(0.05, event.resolution.set_result, [InterventionDecision.APPLY]).start()

        orch = UpgradeOrchestrator(ngrx_project, handlers=EventHandlers(on_manual_intervention=later))
        result = orch.orchestrate_upgrade(self._options())
        assert result.success is True
        deps = read_json(os.path.join(ngrx_project, "package.json"))["dependencies"]
        assert deps["@ngrx/store"] == "^13.0.0"

    def test_prompt_without_handler_skips(self, ngrx_project):
        result = UpgradeOrchestrator(ngrx_project).orchestrate_upgrade(self._options())
        assert result.success is True
        assert any("not applied" in w for w in result.warnings)

    def test_auto_applies_without_prompt(self, ngrx_project):
        seen = []
        orch = UpgradeOrchestrator(
            ngrx_project,
            handlers=EventHandlers(on_manual_intervention=self._deciding(InterventionDecision.ABORT, seen)),
        )
        result = orch.orchestrate_upgrade(self._options(third_party_handling=ThirdPartyHandling.AUTO))
        assert result.success is True
        assert seen == []
        deps = read_json(os.path.join(ngrx_project, "package.json"))["dependencies"]
        assert deps["@ngrx/store"] == "^13.0.0"

    def test_failed_dependency_write_rolls_back_the_step(self, ngrx_project):
        before = tree_state(ngrx_project)
        seen = []
        handlers = EventHandlers(
            on_step_start=lambda e: seen.append(("start", str(e.step))),
            on_step_complete=lambda e: seen.append(("complete", str(e.step))),
            on_step_failed=lambda e: seen.append(("failed", str(e.step))),
        )

        def disk_full(step, context, report):
            raise StepExecutionError(step, OSError("disk full"))

        orch = UpgradeOrchestrator(ngrx_project, handlers=handlers)
        with patch.object(StepExecutor, "apply_dependency_updates", side_effect=disk_full):
            result = orch.orchestrate_upgrade(self._options(third_party_handling=ThirdPartyHandling.AUTO))

        assert result.success is False
        assert result.final_state == RunState.ROLLED_BACK
        assert "disk full" in result.error
        assert result.completed_steps == ()
        assert seen == [("start", "12 -> 13"), ("complete", "12 -> 13")]
        assert tree_state(ngrx_project) == before

    def test_failed_dependency_write_keeps_earlier_steps(self, ngrx_project):
        write_updates = StepExecutor.apply_dependency_updates

        def fail_on_14(executor, step, context, report):
            if step.to_version == 14:
                raise StepExecutionError(step, OSError("disk full"))
            return write_updates(executor, step, context, report)

        orch = UpgradeOrchestrator(ngrx_project)
        with patch.object(StepExecutor, "apply_dependency_updates", autospec=True, side_effect=fail_on_14):
            result = orch.orchestrate_upgrade(
                self._options(target_version=14, third_party_handling=ThirdPartyHandling.AUTO)
            )

        assert result.final_state == RunState.ROLLED_BACK
        assert [str(s) for s in result.completed_steps] == ["12 -> 13"]
        assert result.restored_checkpoint == result.checkpoints[-1].id
        deps = read_json(os.path.join(ngrx_project, "package.json"))["dependencies"]
        assert deps["@angular/core"] == "^13.0.0"
        assert deps["@ngrx/store"] == "^13.0.0"

    def test_basic_validation_does_not_touch_third_party(self, ngrx_project):
        orch = UpgradeOrchestrator(ngrx_project)
        result = orch.orchestrate_upgrade(UpgradeOptions(target_version=13))
        assert result.success is True
        deps = read_json(os.path.join(ngrx_project, "package.json"))["dependencies"]
        assert deps["@ngrx/store"] == "^12.0.0"

    def test_events_are_step_start_complete_then_prompt(self, ngrx_project):
        order = []

        def manual(event):
            order.append("prompt" if event.resolution is not None else "advisory")
            if event.resolution is not None:
                event.resolution.set_result(InterventionDecision.SKIP)

        handlers = EventHandlers(
            on_step_start=lambda e: order.append("start"),
            on_step_complete=lambda e: order.append("complete"),
            on_manual_intervention=manual,
        )
        UpgradeOrchestrator(ngrx_project, handlers=handlers).orchestrate_upgrade(self._options())
        assert order[:2] == ["start", "complete"]
        assert order[-1] == "prompt"
        assert set(order[2:-1]) == {"advisory"}


def test_events_are_typed(angular_project):
    events = []
    handlers = EventHandlers(on_step_start=events.append, on_step_complete=events.append)
    make_orchestrator(angular_project, handlers=handlers).orchestrate_upgrade(UpgradeOptions(target_version=13))
    assert isinstance(events[0], StepStarted)
    assert isinstance(events[1], StepCompleted)
    assert events[1].outcome.applied_changes == ["@angular/core -> ^13.0.0"]
