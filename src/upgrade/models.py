"""Data models for upgrade runs."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from constants import (
    CheckpointFrequency,
    RollbackPolicy,
    Strategy,
    ThirdPartyHandling,
    ValidationLevel,
)
from common.logging_utils import extra_context, is_debug_enabled

logger = logging.getLogger(__name__)


class RunState(Enum):
    """States of the orchestrator state machine."""
    IDLE = "idle"
    PLANNING = "planning"
    CHECKPOINT_PENDING = "checkpoint-pending"
    EXECUTING = "executing"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLING_BACK = "rolling-back"
    ROLLED_BACK = "rolled-back"


@dataclass(frozen=True)
class UpgradeOptions:
    """Options for one upgrade run. Immutable once the run starts."""

    target_version: int
    strategy: Strategy = Strategy.BALANCED
    checkpoint_frequency: CheckpointFrequency = CheckpointFrequency.EVERY_STEP
    # Versions treated as checkpoint boundaries under major-versions; None means every step's target.
    checkpoint_boundaries: Optional[FrozenSet[int]] = None
    validation_level: ValidationLevel = ValidationLevel.BASIC
    third_party_handling: ThirdPartyHandling = ThirdPartyHandling.PROMPT
    rollback_policy: RollbackPolicy = RollbackPolicy.AUTO_ON_FAILURE
    parallel_processing: bool = False
    backup_path: Optional[str] = None
    acknowledged_changes: FrozenSet[str] = frozenset()

    @property
    def comprehensive(self) -> bool:
        """True when comprehensive validation is requested."""
        return self.validation_level == ValidationLevel.COMPREHENSIVE


@dataclass(frozen=True)
class UpgradeStep:
    """One major version transition produced by the planner."""

    from_version: int
    to_version: int
    ordinal: int

    def __str__(self) -> str:
        return f"{self.from_version} -> {self.to_version}"


@dataclass(frozen=True)
class Checkpoint:
    """A restorable snapshot of project state."""

    id: str
    version: int
    timestamp: str
    description: str
    snapshot_ref: str
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the checkpoint index."""
        return {
            "id": self.id,
            "version": self.version,
            "timestamp": self.timestamp,
            "description": self.description,
            "snapshotRef": self.snapshot_ref,
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        """Build from a checkpoint index record."""
        return cls(
            id=str(data["id"]),
            version=int(data["version"]),
            timestamp=str(data["timestamp"]),
            description=str(data.get("description", "")),
            snapshot_ref=str(data.get("snapshotRef", "")),
            sequence=int(data.get("sequence", 0)),
        )


@dataclass(frozen=True)
class ManualIntervention:
    """A change the executor could not apply by itself."""

    change: Any  # upgrade.catalog.BreakingChange
    instructions: str


@dataclass
class StepOutcome:
    """What a single step execution did."""

    step: UpgradeStep
    applied_changes: List[str] = field(default_factory=list)
    manual_interventions: List[ManualIntervention] = field(default_factory=list)


@dataclass
class UpgradeResult:
    """Terminal record of one orchestrated run."""

    success: bool
    from_version: int
    to_version: int
    duration: float
    completed_steps: Tuple[UpgradeStep, ...] = ()
    checkpoints: List[Checkpoint] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False
    final_state: RunState = RunState.COMPLETED
    restored_checkpoint: Optional[str] = None

    @property
    def rollback_available(self) -> bool:
        """True iff at least one checkpoint remains to roll back to."""
        return bool(self.checkpoints)


@dataclass
class RunContext:
    """Explicit state of one run, threaded through planner, executor and checkpoint calls."""

    project_path: str
    options: UpgradeOptions
    plan: Tuple[UpgradeStep, ...] = ()
    state: RunState = RunState.IDLE
    history: List[RunState] = field(default_factory=lambda: [RunState.IDLE])
    completed_steps: List[UpgradeStep] = field(default_factory=list)
    checkpoints: List[Checkpoint] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def transition(self, state: RunState) -> None:
        """Move the state machine and keep the history for inspection."""
        if is_debug_enabled(logger):
            logger.debug(
                "State transition",
                extra=extra_context(
                    event="state_transition",
                    component="orchestrator",
                    action="transition",
                    outcome=state.value,
                    previous=self.state.value,
                )
            )
        self.state = state
        self.history.append(state)

    @property
    def current_version(self) -> Optional[int]:
        """Version the project is at: target of the last completed step, else the plan start."""
        if self.completed_steps:
            return self.completed_steps[-1].to_version
        if self.plan:
            return self.plan[0].from_version
        return None
