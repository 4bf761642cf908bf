"""Exception taxonomy for the upgrade engine."""

from __future__ import annotations

from typing import Iterable, List, Optional


class UpgradeError(Exception):
    """Base class for all upgrade engine failures."""


class InvalidRangeError(UpgradeError):
    """Current version is not strictly below the target version."""

    def __init__(self, current: int, target: int, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot upgrade from {current} to {target}: target must be greater than current"
        )


class UnsupportedVersionError(InvalidRangeError):
    """A version lies outside the supported window."""

    def __init__(self, current: int, target: int, supported: Iterable[int]):
        versions = sorted(supported)
        self.supported = versions
        super().__init__(
            current,
            target,
            f"Upgrade {current} -> {target} is outside the supported range "
            f"{versions[0]}-{versions[-1]}",
        )


class StepExecutionError(UpgradeError):
    """One upgrade step failed; carries the offending step and the underlying cause."""

    def __init__(self, step, cause: Optional[BaseException] = None, message: Optional[str] = None):
        self.step = step
        self.cause = cause
        detail = message or (str(cause) if cause is not None else "step failed")
        super().__init__(f"Step {step.from_version} -> {step.to_version} failed: {detail}")


class CheckpointError(UpgradeError):
    """Base class for checkpoint store failures."""


class CheckpointNotFoundError(CheckpointError):
    """No checkpoint with the requested id exists."""

    def __init__(self, checkpoint_id: str):
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")


class CorruptSnapshotError(CheckpointError):
    """A stored snapshot failed integrity verification."""

    def __init__(self, checkpoint_id: str, problems: List[str]):
        self.checkpoint_id = checkpoint_id
        self.problems = list(problems)
        shown = "; ".join(self.problems[:5])
        super().__init__(f"Checkpoint {checkpoint_id} is corrupt: {shown}")


class CheckpointCaptureError(CheckpointError):
    """Capturing a checkpoint failed; no checkpoint was created."""


class CheckpointRestoreError(CheckpointError):
    """Writing a verified snapshot back into the project failed part way."""


class CriticalDependencyError(UpgradeError):
    """Required dependencies have no compatible mapping to the target version."""

    def __init__(self, names: Iterable[str], target_version: int):
        self.names = sorted(names)
        self.target_version = target_version
        super().__init__(
            f"No compatible version for required dependencies on {target_version}: "
            + ", ".join(self.names)
        )


class OrchestratorBusyError(UpgradeError):
    """Rollback was requested while an upgrade run is in progress."""


class ProjectNotFoundError(UpgradeError):
    """The project path does not contain a package manifest."""
