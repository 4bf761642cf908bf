"""Dependency compatibility resolution for a target framework version.

Resolution is read-only: manifests are never mutated and nothing is written
to disk. Problems with a single entry are reported as warnings and never
abort the whole call.
"""

from __future__ import annotations

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from constants import Constants, Strategy
from common.logging_utils import extra_context, is_debug_enabled, Timer
from upgrade.errors import CriticalDependencyError
from versioning.models import DependencyEntry, DependencySection, ResolutionMode, UpdateType
from versioning.parser import classify_update, clean_version, parse_manifest_entry
from versioning.resolvers.npm import NpmRangeResolver

from .matrix import CompatibilityMatrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyUpdate:
    """A change one dependency needs for the target version."""
    name: str
    current_version: str
    compatible_version: Optional[str]
    update_type: UpdateType
    required: bool
    notes: str = ""
    section: DependencySection = DependencySection.DEPENDENCIES


@dataclass(frozen=True)
class CompatibilityReport:
    """Aggregate resolver output; immutable."""
    target_version: int
    updates: Tuple[DependencyUpdate, ...] = ()
    deprecated: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def total_updates(self) -> int:
        """Number of dependency updates."""
        return len(self.updates)

    @property
    def critical_updates(self) -> int:
        """Updates that are required or cross a major version."""
        return sum(1 for u in self.updates if u.required or u.update_type == UpdateType.MAJOR)

    def blocking(self) -> List[DependencyUpdate]:
        """Required dependencies with no compatible mapping."""
        return [u for u in self.updates if u.required and u.compatible_version is None]


@dataclass(frozen=True)
class ResolveOptions:
    """Knobs for one resolve call."""
    include_dev_dependencies: bool = True
    only_framework_ecosystem: bool = False
    update_strategy: Strategy = Strategy.BALANCED
    parallel: bool = False


def read_dependency_entries(manifest: Mapping[str, Any], include_dev: bool) -> List[DependencyEntry]:
    """Declared dependencies of a manifest, in declaration order.

    Accepts either a package.json-shaped mapping or a flat ``{name: range}`` set.
    """
    sectioned = any(
        isinstance(manifest.get(s.value), Mapping)
        for s in (DependencySection.DEPENDENCIES, DependencySection.DEV_DEPENDENCIES)
    )
    if not sectioned:
        return [
            parse_manifest_entry(name, spec, DependencySection.DEPENDENCIES)
            for name, spec in manifest.items()
        ]

    entries = []
    sections = [DependencySection.DEPENDENCIES]
    if include_dev:
        sections.append(DependencySection.DEV_DEPENDENCIES)
    for section in sections:
        declared = manifest.get(section.value) or {}
        if not isinstance(declared, Mapping):
            continue
        for name, spec in declared.items():
            entries.append(parse_manifest_entry(name, spec, section))
    return entries


class DependencyCompatibilityResolver:
    """Map declared dependencies onto versions compatible with a framework major."""

    def __init__(self, matrix: Optional[CompatibilityMatrix] = None, registry=None):
        """Initialize the resolver.

        Args:
            matrix: Compatibility tables; the built-in table when omitted.
            registry: Optional client with ``latest_compatible(name, major)`` used for
                ecosystem packages the table does not know.
        """
        self.matrix = matrix or CompatibilityMatrix()
        self.registry = registry
        self._ranges = NpmRangeResolver()

    def _is_required(self, name: str, strategy: Strategy) -> bool:
        if self.matrix.is_framework(name):
            return True
        return strategy == Strategy.CONSERVATIVE and self.matrix.is_tooling(name)

    def _in_scope(self, name: str, options: ResolveOptions) -> bool:
        if options.only_framework_ecosystem:
            return self.matrix.is_framework(name)
        return (
            self.matrix.is_ecosystem(name)
            or self.matrix.is_tooling(name)
            or self.matrix.is_known(name)
        )

    def _lookup_unknown(self, names: List[str], target: int, parallel: bool) -> Dict[str, Optional[str]]:
        """Ask the registry for packages missing from the table."""
        if not names or self.registry is None:
            return {}

        def _one(name: str) -> Optional[str]:
            try:
                return self.registry.latest_compatible(name, target)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                logger.warning("Registry lookup failed for %s: %s", name, exc)
                return None

        with Timer() as t:
            if parallel and len(names) > 1:
                workers = min(Constants.REGISTRY_MAX_WORKERS, len(names))
                with ThreadPoolExecutor(max_workers=workers) as pool:
                    found = list(pool.map(_one, names))
            else:
                found = [_one(n) for n in names]
        if is_debug_enabled(logger):
            logger.debug(
                "Registry lookups finished",
                extra=extra_context(
                    event="registry_lookup",
                    component="resolver",
                    action="lookup_unknown",
                    outcome="success",
                    count=len(names),
                    duration_ms=t.duration_ms(),
                    parallel=parallel,
                )
            )
        return dict(zip(names, found))

    def resolve(
        self,
        manifest: Mapping[str, Any],
        target_version: int,
        options: Optional[ResolveOptions] = None,
    ) -> CompatibilityReport:
        """Compute the compatibility report for ``manifest`` against ``target_version``.

        Args:
            manifest: package.json contents or a flat dependency set. Never mutated.
            target_version: Framework major to resolve against.
            options: Resolution options.

        Returns:
            CompatibilityReport with updates, deprecated names and warnings.
        """
        options = options or ResolveOptions()
        entries = [
            e for e in read_dependency_entries(manifest, options.include_dev_dependencies)
            if self._in_scope(e.name, options)
        ]

        unknown = [
            e.name for e in entries
            if self.matrix.compatible_range(e.name, target_version) is None
            and self.matrix.deprecation(e.name, target_version) is None
            and not self.matrix.is_known(e.name)
        ]
        looked_up = self._lookup_unknown(unknown, target_version, options.parallel)

        updates: List[DependencyUpdate] = []
        deprecated: List[str] = []
        warnings: List[str] = []

        for entry in entries:
            required = self._is_required(entry.name, options.update_strategy)
            deprecation = self.matrix.deprecation(entry.name, target_version)
            if deprecation is not None:
                alternatives = ", ".join(deprecation.alternatives) or "none known"
                updates.append(DependencyUpdate(
                    name=entry.name,
                    current_version=entry.raw_spec,
                    compatible_version=None,
                    update_type=UpdateType.DEPRECATED,
                    required=required,
                    notes=f"Deprecated since {deprecation.since}; alternatives: {alternatives}",
                    section=entry.section,
                ))
                deprecated.append(entry.name)
                if required:
                    warnings.append(
                        f"Required dependency {entry.name} has no compatible version for {target_version}"
                    )
                continue

            if entry.spec is None or entry.spec.mode in (ResolutionMode.LATEST, ResolutionMode.UNSUPPORTED):
                warnings.append(f"Skipping {entry.name}: cannot resolve spec '{entry.raw_spec}'")
                continue

            target_range = self.matrix.compatible_range(entry.name, target_version)
            if target_range is None and looked_up.get(entry.name):
                target_range = f"^{looked_up[entry.name]}"
            if target_range is None:
                if required:
                    updates.append(DependencyUpdate(
                        name=entry.name,
                        current_version=entry.raw_spec,
                        compatible_version=None,
                        update_type=UpdateType.DEPRECATED,
                        required=True,
                        notes="No known mapping",
                        section=entry.section,
                    ))
                    deprecated.append(entry.name)
                    warnings.append(
                        f"Required dependency {entry.name} has no compatible version for {target_version}"
                    )
                else:
                    warnings.append(f"No compatibility data for {entry.name} with {target_version}")
                continue

            update = self._resolve_entry(entry, target_range, target_version, required, warnings)
            if update is not None:
                updates.append(update)

        report = CompatibilityReport(
            target_version=target_version,
            updates=tuple(updates),
            deprecated=tuple(deprecated),
            warnings=tuple(warnings),
        )
        logger.debug(
            "Resolved %d dependencies for %s: %d updates, %d critical",
            len(entries), target_version, report.total_updates, report.critical_updates,
        )
        return report

    def _resolve_entry(
        self,
        entry: DependencyEntry,
        target_range: str,
        target_version: int,
        required: bool,
        warnings: List[str],
    ) -> Optional[DependencyUpdate]:
        """Update for one mapped dependency, None when its range already fits."""
        if self._ranges.floor(entry.raw_spec) is None:
            warnings.append(f"Ambiguous range for {entry.name}: '{entry.raw_spec}'")
            return None
        if self._ranges.minimal_satisfying(entry.raw_spec, target_range) is not None:
            return None
        try:
            update_type = classify_update(clean_version(entry.raw_spec), clean_version(target_range))
        except ValueError:
            warnings.append(f"Cannot compare {entry.name} '{entry.raw_spec}' with '{target_range}'")
            return None

        notes = self.matrix.note(entry.name, target_version)
        target_floor = self._ranges.floor(target_range)
        current_floor = self._ranges.floor(entry.raw_spec)
        if target_floor is not None and current_floor is not None and current_floor > target_floor:
            notes = (notes + "; " if notes else "") + "declared range is newer than the target supports"
        return DependencyUpdate(
            name=entry.name,
            current_version=entry.raw_spec,
            compatible_version=target_range,
            update_type=update_type,
            required=required,
            notes=notes,
            section=entry.section,
        )


def ensure_no_blocking(report: CompatibilityReport) -> None:
    """Raise when a required dependency cannot follow the upgrade.

    Raises:
        CriticalDependencyError: If the report has blocking entries.
    """
    blocking = report.blocking()
    if blocking:
        raise CriticalDependencyError([u.name for u in blocking], report.target_version)


def apply_updates(manifest: Mapping[str, Any], report: CompatibilityReport) -> Dict[str, Any]:
    """Return a copy of ``manifest`` with the report's updates applied.

    Deprecated packages are removed; everything else gets its compatible range.
    """
    result = copy.deepcopy(dict(manifest))
    for update in report.updates:
        section = result.get(update.section.value)
        if not isinstance(section, dict) or update.name not in section:
            continue
        if update.update_type == UpdateType.DEPRECATED:
            if not update.required:
                del section[update.name]
            continue
        section[update.name] = update.compatible_version
    return result


def render_report(report: CompatibilityReport) -> List[str]:
    """Group a report into printable lines: critical, major, minor, patch, deprecated."""
    lines = [
        f"Dependency compatibility for {report.target_version}: "
        f"{report.total_updates} updates ({report.critical_updates} critical)"
    ]
    groups = [
        ("Critical", [u for u in report.updates if u.required and u.update_type != UpdateType.DEPRECATED]),
        ("Major", [u for u in report.updates if not u.required and u.update_type == UpdateType.MAJOR]),
        ("Minor", [u for u in report.updates if not u.required and u.update_type == UpdateType.MINOR]),
        ("Patch", [u for u in report.updates if not u.required and u.update_type in (UpdateType.PATCH, UpdateType.COMPATIBLE)]),
    ]
    for title, items in groups:
        if not items:
            continue
        lines.append(f"{title}:")
        for u in items:
            suffix = f" ({u.notes})" if u.notes else ""
            lines.append(f"  {u.name}: {u.current_version} -> {u.compatible_version}{suffix}")
    deprecated = [u for u in report.updates if u.update_type == UpdateType.DEPRECATED]
    if deprecated:
        lines.append("Deprecated:")
        for u in deprecated:
            lines.append(f"  {u.name}: {u.notes}")
    for warning in report.warnings:
        lines.append(f"Warning: {warning}")
    return lines
