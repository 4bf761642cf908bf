"""Per-version prerequisites and breaking changes.

Each entry describes what moving *to* a major version involves. Entries with
``automatic=False`` cannot be applied mechanically and are reported as manual
interventions; ``required`` marks the ones that block a comprehensive run until
they are acknowledged.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class Severity(Enum):
    """Impact of a breaking change."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class BreakingChange:
    """A documented change introduced by a major version."""

    id: str
    version: int
    category: str  # api | build | config | dependency | template
    severity: Severity
    description: str
    impact: str
    instructions: str
    automatic: bool = True
    required: bool = False


@dataclass(frozen=True)
class Prerequisites:
    """Toolchain ranges a major version needs."""

    node: str
    typescript: str


PREREQUISITES: Dict[int, Prerequisites] = {
    12: Prerequisites(node=">=12.20.0", typescript=">=4.2.3 <4.4.0"),
    13: Prerequisites(node=">=12.20.0", typescript=">=4.4.2 <4.6.0"),
    14: Prerequisites(node=">=14.15.0", typescript=">=4.7.2 <4.8.0"),
    15: Prerequisites(node=">=14.20.0", typescript=">=4.8.2 <4.10.0"),
    16: Prerequisites(node=">=16.14.0", typescript=">=4.9.3 <5.1.0"),
    17: Prerequisites(node=">=18.13.0", typescript=">=5.2.0 <5.3.0"),
    18: Prerequisites(node=">=18.19.1", typescript=">=5.4.0 <5.5.0"),
    19: Prerequisites(node=">=18.19.1", typescript=">=5.5.0 <5.6.0"),
    20: Prerequisites(node=">=18.19.1", typescript=">=5.6.0 <5.7.0"),
}

# Majors whose migrations historically needed extra care.
COMPLICATED_VERSIONS = frozenset({13, 15, 17})


def _bc(change_id, version, category, severity, description, impact, instructions,
        automatic=True, required=False):
    return BreakingChange(
        id=change_id,
        version=version,
        category=category,
        severity=Severity(severity),
        description=description,
        impact=impact,
        instructions=instructions,
        automatic=automatic,
        required=required,
    )


_CHANGES: List[BreakingChange] = [
    _bc("ng13-view-engine-removal", 13, "build", "critical",
        "View Engine completely removed",
        "All applications must use the Ivy renderer. View Engine is no longer supported.",
        "Ensure all dependencies are Ivy-compatible and remove View Engine configurations",
        automatic=False, required=True),
    _bc("ng13-angular-package-format", 13, "build", "high",
        "Angular Package Format v13 changes",
        "Libraries must use the new package format with updated metadata",
        "Update library build configurations and package.json exports",
        automatic=False),
    _bc("ng13-typescript-version", 13, "dependency", "medium",
        "TypeScript 4.4+ required",
        "Angular 13 requires TypeScript 4.4.2 or higher",
        "Update TypeScript to version 4.4.2 or higher"),
    _bc("ng13-ie11-deprecation", 13, "config", "medium",
        "IE11 support deprecated",
        "IE11 support is deprecated and will be removed in Angular 15",
        "Plan migration away from IE11 support and update browser compatibility",
        automatic=False),
    _bc("ng13-dynamic-imports", 13, "api", "low",
        "Dynamic imports for lazy routes",
        "Lazy route loading now uses dynamic imports by default",
        "Update route configurations to use dynamic import syntax"),
    _bc("ng14-typed-forms", 14, "api", "low",
        "Strict typed reactive forms",
        "Enhanced type safety for reactive forms",
        "Opt-in feature - existing forms continue to work"),
    _bc("ng14-typescript-version", 14, "dependency", "medium",
        "TypeScript 4.7+ required",
        "Angular 14 requires TypeScript 4.7.2 or higher",
        "Update TypeScript to version 4.7.2 or higher"),
    _bc("ng14-nodejs-version", 14, "dependency", "medium",
        "Node.js 14.15+ required",
        "Angular 14 requires Node.js 14.15.0 or higher",
        "Update Node.js to version 14.15.0 or higher",
        automatic=False),
    _bc("ng14-standalone-components", 14, "api", "low",
        "Standalone components introduced",
        "Components can be created without NgModules",
        "Standalone components are opt-in. Existing NgModule approach continues to work"),
    _bc("ng15-standalone-stable", 15, "api", "low",
        "Standalone APIs stable",
        "Standalone components and directives are now stable",
        "No action required - APIs are stable"),
    _bc("ng15-strict-mode", 15, "config", "medium",
        "Strict TypeScript compilation",
        "tsconfig.json compiles with strict checks enabled",
        "Fix new strict-mode compilation errors reported by the build"),
    _bc("ng15-flex-layout-removal", 15, "dependency", "high",
        "@angular/flex-layout no longer published",
        "Layouts built with flex-layout directives stop receiving updates",
        "Replace flex-layout with @angular/cdk/layout or CSS utilities",
        automatic=False),
    _bc("ng16-required-inputs", 16, "api", "medium",
        "Required inputs introduced",
        "New required inputs API available",
        "Optional feature - existing inputs continue to work"),
    _bc("ng17-new-application-bootstrap", 17, "api", "medium",
        "New application bootstrap API",
        "Applications can optionally migrate to the new bootstrapApplication API",
        "Consider migrating to bootstrapApplication for better tree-shaking and performance",
        automatic=False),
    _bc("ng17-new-control-flow", 17, "template", "low",
        "New control flow syntax available",
        "New @if, @for, @switch syntax available as alternative to *ngIf, *ngFor, *ngSwitch",
        "New syntax is optional - existing syntax continues to work"),
    _bc("ng17-angular-material-update", 17, "dependency", "medium",
        "Angular Material 17 with Material Design 3",
        "Angular Material updated with Material Design 3 components",
        "Review Material component designs as they may have visual changes",
        automatic=False),
    _bc("ng18-material3", 18, "dependency", "medium",
        "Material 3 support",
        "Angular Material updated with Material Design 3",
        "Review Material component designs for visual changes",
        automatic=False),
    _bc("ng19-zoneless-detection", 19, "api", "high",
        "Zoneless change detection (experimental)",
        "Experimental zoneless change detection available as opt-in feature",
        "Opt-in experimental feature - Zone.js continues to work by default"),
    _bc("ng19-typescript-version", 19, "dependency", "medium",
        "TypeScript 5.5+ required",
        "Angular 19 requires TypeScript 5.5.0 or higher",
        "Update TypeScript to version 5.5.0 or higher"),
    _bc("ng19-standalone-default", 19, "api", "high",
        "Standalone is the default",
        "Components, directives and pipes are standalone unless declared otherwise",
        "Add standalone: false to declarations that still belong to an NgModule",
        automatic=False),
    _bc("ng20-incremental-hydration", 20, "api", "medium",
        "Incremental hydration stable",
        "Advanced SSR with incremental hydration",
        "Opt-in feature for SSR applications"),
]


class BreakingChangeCatalog:
    """Lookup of breaking changes and prerequisites by target major version."""

    def __init__(self, changes: Optional[List[BreakingChange]] = None,
                 prerequisites: Optional[Dict[int, Prerequisites]] = None):
        self._by_version: Dict[int, List[BreakingChange]] = {}
        for change in (_CHANGES if changes is None else changes):
            self._by_version.setdefault(change.version, []).append(change)
        self._prerequisites = dict(PREREQUISITES if prerequisites is None else prerequisites)

    def changes_for(self, version: int) -> List[BreakingChange]:
        """Breaking changes introduced by ``version``."""
        return list(self._by_version.get(version, []))

    def manual_changes_for(self, version: int) -> List[BreakingChange]:
        """Changes for ``version`` that need a human."""
        return [c for c in self.changes_for(version) if not c.automatic]

    def prerequisites_for(self, version: int) -> Optional[Prerequisites]:
        """Toolchain ranges for ``version`` if known."""
        return self._prerequisites.get(version)
