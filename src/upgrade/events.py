"""Typed messages the orchestrator sends to its caller."""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .models import StepOutcome, UpgradeStep


class InterventionDecision(Enum):
    """How the caller resolved a blocking manual intervention."""
    APPLY = "apply"
    SKIP = "skip"
    ABORT = "abort"


@dataclass(frozen=True)
class Progress:
    message: str


@dataclass(frozen=True)
class StepStarted:
    step: UpgradeStep


@dataclass(frozen=True)
class StepCompleted:
    step: UpgradeStep
    outcome: StepOutcome


@dataclass(frozen=True)
class StepFailed:
    step: UpgradeStep
    error: BaseException


@dataclass(frozen=True)
class ManualInterventionRequired:
    """A change that needs a human.

    ``resolution`` is set only when the run is suspended on it; the caller must
    complete the future with an :class:`InterventionDecision` (or cancel it) for
    the run to continue.
    """
    step: UpgradeStep
    change: Any
    instructions: str
    resolution: Optional[Future] = None


Handler = Callable[[Any], None]


@dataclass
class EventHandlers:
    """Caller-supplied handlers, one per message type. Missing handlers are skipped."""
    on_progress: Optional[Handler] = None
    on_step_start: Optional[Handler] = None
    on_step_complete: Optional[Handler] = None
    on_step_failed: Optional[Handler] = None
    on_manual_intervention: Optional[Handler] = None

    def dispatch(self, event: Any) -> None:
        """Deliver ``event`` to its handler."""
        routes = {
            Progress: self.on_progress,
            StepStarted: self.on_step_start,
            StepCompleted: self.on_step_complete,
            StepFailed: self.on_step_failed,
            ManualInterventionRequired: self.on_manual_intervention,
        }
        handler = routes.get(type(event))
        if handler is None:
            return
        handler(event)
