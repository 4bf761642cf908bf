"""Upgrade path planning: one step per major version."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from constants import Constants, Strategy
from common.logging_utils import extra_context, is_debug_enabled
from versioning.parser import parse_major

from .catalog import COMPLICATED_VERSIONS, BreakingChangeCatalog, Severity
from .errors import InvalidRangeError, UnsupportedVersionError
from .models import UpgradeOptions, UpgradeStep

logger = logging.getLogger(__name__)

VersionLike = Union[int, str]


def parse_version_id(value: VersionLike) -> int:
    """Return the major version for ``12``, ``"12.2.0"``, ``"^12.2.0"`` or ``"~12"``.

    Raises:
        InvalidRangeError: When no major version can be read from ``value``.
    """
    try:
        return parse_major(value)
    except ValueError as exc:
        raise InvalidRangeError(0, 0, f"Not a version: {value!r}") from exc


class VersionPathPlanner:
    """Compute the ordered intermediate steps between two major versions."""

    def __init__(self, supported: Optional[Iterable[int]] = None):
        self._supported = frozenset(supported) if supported is not None else None

    @classmethod
    def default(cls) -> "VersionPathPlanner":
        """Planner bounded to the supported framework versions."""
        return cls(range(Constants.MIN_SUPPORTED_VERSION, Constants.MAX_SUPPORTED_VERSION + 1))

    def plan(self, current: VersionLike, target: VersionLike) -> Tuple[UpgradeStep, ...]:
        """Plan the upgrade from ``current`` to ``target``.

        Args:
            current: Current version; only the major component is used.
            target: Target version; only the major component is used.

        Returns:
            One UpgradeStep per consecutive major version, in order.

        Raises:
            InvalidRangeError: If ``current >= target``.
            UnsupportedVersionError: If either end lies outside the supported window.
        """
        cur = parse_version_id(current)
        tgt = parse_version_id(target)
        if cur >= tgt:
            raise InvalidRangeError(cur, tgt)
        if self._supported is not None and (cur not in self._supported or tgt not in self._supported):
            raise UnsupportedVersionError(cur, tgt, self._supported)

        steps = tuple(
            UpgradeStep(from_version=v, to_version=v + 1, ordinal=i)
            for i, v in enumerate(range(cur, tgt), start=1)
        )
        if is_debug_enabled(logger):
            logger.debug(
                "Planned upgrade path",
                extra=extra_context(
                    event="plan",
                    component="planner",
                    action="plan",
                    outcome="success",
                    count=len(steps),
                )
            )
        return steps


def estimate_duration(steps: Sequence[UpgradeStep], options: UpgradeOptions) -> float:
    """Estimated minutes for the whole run."""
    minutes = float(len(steps) * Constants.MINUTES_PER_STEP)
    if options.strategy == Strategy.CONSERVATIVE:
        minutes *= 1.5
    elif options.strategy == Strategy.PROGRESSIVE:
        minutes *= 0.8
    if options.comprehensive:
        minutes *= 1.3
    return round(minutes, 1)


def complexity_score(steps: Sequence[UpgradeStep], catalog: BreakingChangeCatalog) -> int:
    """Relative difficulty of a plan; higher means riskier."""
    score = 10 * len(steps)
    for step in steps:
        for change in catalog.changes_for(step.to_version):
            if change.severity == Severity.CRITICAL:
                score += 20
            elif change.severity == Severity.HIGH:
                score += 10
        if step.to_version in COMPLICATED_VERSIONS:
            score += 15
    span = len(steps)
    if span > 4:
        score += 5 * span
    return score


def describe_plan(
    steps: Sequence[UpgradeStep],
    options: UpgradeOptions,
    catalog: Optional[BreakingChangeCatalog] = None,
) -> List[str]:
    """Human readable plan lines for dry runs. Touches nothing on disk."""
    catalog = catalog or BreakingChangeCatalog()
    lines = [f"Upgrade plan: {steps[0].from_version} -> {steps[-1].to_version} ({len(steps)} steps)"]
    for step in steps:
        lines.append(f"  {step.ordinal}. Angular {step}")
        prereq = catalog.prerequisites_for(step.to_version)
        if prereq:
            lines.append(f"     Node.js {prereq.node}, TypeScript {prereq.typescript}")
        for change in catalog.changes_for(step.to_version):
            marker = "manual" if not change.automatic else "auto"
            lines.append(f"     - [{change.severity.value}/{marker}] {change.description}")
    lines.append(f"Checkpoints: {options.checkpoint_frequency.value}")
    lines.append(f"Validation: {options.validation_level.value}")
    lines.append(f"Estimated duration: {estimate_duration(steps, options):g} minutes")
    lines.append(f"Complexity score: {complexity_score(steps, catalog)}")
    return lines
