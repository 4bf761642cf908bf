"""Read-only upgrade readiness analysis of a project."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer
from compat.resolver import CompatibilityReport, DependencyCompatibilityResolver, ResolveOptions
from upgrade.catalog import BreakingChangeCatalog, Prerequisites
from upgrade.project import detect_framework_version, read_json_file, read_manifest
from versioning.parser import parse_major

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = (".ts", ".js", ".html")
SKIP_DIRS = {"node_modules", "dist", ".angular", "coverage", ".nyc_output", ".git", Constants.STATE_DIR}

# Packages that should not be installed together.
CONFLICTING_PAIRS = [
    ("@angular/flex-layout", "@angular/cdk"),
    ("tslint", "eslint"),
    ("karma", "jest"),
]


@dataclass
class CodeMetrics:
    """Size of the source tree."""
    source_files: int = 0
    components: int = 0
    services: int = 0
    modules: int = 0
    lines_of_code: int = 0
    test_coverage: Optional[float] = None


@dataclass
class RiskFactor:
    """One contributor to the overall upgrade risk."""
    category: str
    severity: str
    description: str
    mitigation: str


@dataclass
class ReadinessReport:
    """Everything ``analyze`` reports about a project."""
    project_path: str
    current_version: Optional[str]
    target_version: Optional[int]
    project_type: str
    build_system: str
    metrics: CodeMetrics
    compatibility: Optional[CompatibilityReport] = None
    prerequisites: Optional[Prerequisites] = None
    deprecated: Dict[str, List[str]] = field(default_factory=dict)
    conflicts: List[Tuple[str, str]] = field(default_factory=list)
    risk_factors: List[RiskFactor] = field(default_factory=list)

    @property
    def risk_level(self) -> str:
        """low, medium, high or critical."""
        if not self.risk_factors:
            return "low"
        severities = [f.severity for f in self.risk_factors]
        if "critical" in severities:
            return "critical"
        if "high" in severities or severities.count("medium") > 2:
            return "high"
        if "medium" in severities:
            return "medium"
        return "low"


class ProjectAnalyzer:
    """Inspect a project without modifying it."""

    def __init__(
        self,
        project_path: str,
        resolver: Optional[DependencyCompatibilityResolver] = None,
        catalog: Optional[BreakingChangeCatalog] = None,
    ):
        self.project_path = os.path.abspath(project_path)
        self.resolver = resolver or DependencyCompatibilityResolver()
        self.catalog = catalog or BreakingChangeCatalog()

    def detect_project_type(self) -> str:
        """application, library or workspace, from angular.json."""
        config = read_json_file(os.path.join(self.project_path, Constants.ANGULAR_JSON_FILE))
        if not config:
            return "unknown"
        projects = config.get("projects") or {}
        if len(projects) > 1:
            return "workspace"
        for project in projects.values():
            if isinstance(project, dict) and project.get("projectType") == "library":
                return "library"
        return "application"

    def detect_build_system(self) -> str:
        """nx, angular-cli, webpack or other."""
        if os.path.isfile(os.path.join(self.project_path, Constants.NX_JSON_FILE)):
            return "nx"
        if os.path.isfile(os.path.join(self.project_path, Constants.ANGULAR_JSON_FILE)):
            return "angular-cli"
        for name in ("webpack.config.js", "webpack.config.ts"):
            if os.path.isfile(os.path.join(self.project_path, name)):
                return "webpack"
        return "other"

    def _read_coverage(self) -> Optional[float]:
        summary = os.path.join(self.project_path, "coverage", "coverage-summary.json")
        if not os.path.isfile(summary):
            return None
        try:
            with open(summary, "r", encoding="utf-8") as fh:
                return float(json.load(fh)["total"]["lines"]["pct"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.debug("Unreadable coverage summary %s: %s", summary, exc)
            return None

    def collect_metrics(self) -> CodeMetrics:
        """Count source files, Angular artifacts and lines."""
        metrics = CodeMetrics()
        for dirpath, dirnames, filenames in os.walk(self.project_path):
            dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS]
            for name in filenames:
                if not name.endswith(SOURCE_EXTENSIONS):
                    continue
                metrics.source_files += 1
                if name.endswith(".component.ts"):
                    metrics.components += 1
                elif name.endswith(".service.ts"):
                    metrics.services += 1
                elif name.endswith(".module.ts"):
                    metrics.modules += 1
                try:
                    with open(os.path.join(dirpath, name), "r", encoding="utf-8", errors="replace") as fh:
                        metrics.lines_of_code += sum(1 for _ in fh)
                except OSError as exc:
                    logger.debug("Skipping unreadable %s: %s", name, exc)
        metrics.test_coverage = self._read_coverage()
        return metrics

    def _assess(self, report: ReadinessReport) -> List[RiskFactor]:
        factors = []
        compat = report.compatibility
        if compat is not None and compat.blocking():
            factors.append(RiskFactor(
                "dependency", "critical",
                f"{len(compat.blocking())} required dependencies without a compatible version",
                "Replace or fork the blocking dependencies before upgrading",
            ))
        if report.deprecated:
            factors.append(RiskFactor(
                "dependency", "high",
                f"{len(report.deprecated)} incompatible dependencies",
                "Review and update incompatible dependencies before upgrade",
            ))
        if report.conflicts:
            factors.append(RiskFactor(
                "dependency", "medium",
                f"{len(report.conflicts)} dependency conflicts",
                "Resolve dependency conflicts to prevent build issues",
            ))
        if report.metrics.lines_of_code > Constants.LARGE_CODEBASE_LINES:
            factors.append(RiskFactor(
                "code", "medium", "Large codebase",
                "Consider upgrading in smaller increments with extensive testing",
            ))
        coverage = report.metrics.test_coverage
        if coverage is not None and coverage < Constants.LOW_COVERAGE_PERCENT:
            factors.append(RiskFactor(
                "code", "high", "Low test coverage",
                "Increase test coverage before attempting upgrade",
            ))
        return factors

    def analyze(self, target_version: Optional[int] = None) -> ReadinessReport:
        """Build the readiness report.

        Args:
            target_version: Version to check readiness for; the next major when omitted.

        Raises:
            ProjectNotFoundError: If the project has no readable package.json.
        """
        with Timer() as t:
            manifest = read_manifest(self.project_path)
            current = detect_framework_version(manifest)
            if target_version is None and current:
                try:
                    target_version = min(parse_major(current) + 1, Constants.MAX_SUPPORTED_VERSION)
                except ValueError:
                    target_version = None

            report = ReadinessReport(
                project_path=self.project_path,
                current_version=current,
                target_version=target_version,
                project_type=self.detect_project_type(),
                build_system=self.detect_build_system(),
                metrics=self.collect_metrics(),
            )
            declared = {}
            for section in ("dependencies", "devDependencies"):
                if isinstance(manifest.get(section), dict):
                    declared.update(manifest[section])

            if target_version is not None:
                report.compatibility = self.resolver.resolve(
                    manifest, target_version, ResolveOptions(include_dev_dependencies=True)
                )
                report.prerequisites = self.catalog.prerequisites_for(target_version)
                check_version = target_version
            else:
                check_version = Constants.MAX_SUPPORTED_VERSION

            for name, info in self.resolver.matrix.deprecated_packages().items():
                if name in declared and check_version >= info.since:
                    report.deprecated[name] = list(info.alternatives)
            report.conflicts = [(a, b) for a, b in CONFLICTING_PAIRS if a in declared and b in declared]
            report.risk_factors = self._assess(report)

        if is_debug_enabled(logger):
            logger.debug(
                "Project analyzed",
                extra=extra_context(
                    event="analyze",
                    component="project_analyzer",
                    action="analyze",
                    outcome=report.risk_level,
                    duration_ms=t.duration_ms(),
                )
            )
        return report


def render_readiness(report: ReadinessReport) -> List[str]:
    """Printable lines for a readiness report."""
    m = report.metrics
    lines = [
        f"Project: {report.project_path}",
        f"Angular version: {report.current_version or 'not detected'}",
        f"Project type: {report.project_type}",
        f"Build system: {report.build_system}",
        f"Source files: {m.source_files} ({m.components} components, {m.services} services, "
        f"{m.modules} modules), {m.lines_of_code} lines",
    ]
    if m.test_coverage is not None:
        lines.append(f"Test coverage: {m.test_coverage:g}%")
    if report.prerequisites is not None:
        lines.append(
            f"Requirements for {report.target_version}: Node.js {report.prerequisites.node}, "
            f"TypeScript {report.prerequisites.typescript}"
        )
    if report.compatibility is not None:
        lines.append(
            f"Dependencies needing updates for {report.target_version}: "
            f"{report.compatibility.total_updates} ({report.compatibility.critical_updates} critical)"
        )
    for name, alternatives in report.deprecated.items():
        lines.append(f"Deprecated: {name} -> consider {', '.join(alternatives) or 'removal'}")
    for a, b in report.conflicts:
        lines.append(f"Conflict: {a} and {b}")
    lines.append(f"Risk level: {report.risk_level.upper()}")
    for factor in report.risk_factors:
        lines.append(f"  [{factor.severity}] {factor.description}: {factor.mitigation}")
    return lines
