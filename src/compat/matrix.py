"""Compatibility tables between framework majors and ecosystem packages.

Everything in here is configuration data. :data:`DEFAULT_MATRIX` is the
built-in table; users can override any part of it from the ``compatibility``
section of the config file, which is deep-merged on top.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Pattern

_FRAMEWORK_RANGE = "^{major}.0.0"

DEFAULT_MATRIX: Dict[str, Any] = {
    # First-party packages released in lockstep with the framework; always required.
    "framework_packages": [
        "@angular/animations",
        "@angular/cdk",
        "@angular/cli",
        "@angular/common",
        "@angular/compiler",
        "@angular/compiler-cli",
        "@angular/core",
        "@angular/elements",
        "@angular/forms",
        "@angular/language-service",
        "@angular/localize",
        "@angular/material",
        "@angular/platform-browser",
        "@angular/platform-browser-dynamic",
        "@angular/platform-server",
        "@angular/router",
        "@angular/service-worker",
        "@angular-devkit/build-angular",
        "@schematics/angular",
    ],
    # Name patterns considered part of the framework ecosystem.
    "ecosystem_patterns": [
        r"^@angular/",
        r"^@angular-devkit/",
        r"^@schematics/angular$",
        r"^@ngrx/",
        r"^@ng-bootstrap/",
        r"^@ionic/",
        r"^primeng$",
        r"^primeicons$",
        r"(?i)angular",
    ],
    # Framework-adjacent tooling; required only under the conservative strategy.
    "tooling_patterns": [
        r"^typescript$",
        r"^zone\.js$",
        r"^rxjs$",
        r"^@angular-devkit/",
        r"^@angular-eslint/",
    ],
    # Per-package ranges: a template string applies to every major, a mapping lists majors explicitly.
    "packages": {
        "@ngrx/store": _FRAMEWORK_RANGE,
        "@ngrx/effects": _FRAMEWORK_RANGE,
        "@ngrx/entity": _FRAMEWORK_RANGE,
        "@ngrx/router-store": _FRAMEWORK_RANGE,
        "@ngrx/store-devtools": _FRAMEWORK_RANGE,
        "@angular-eslint/builder": _FRAMEWORK_RANGE,
        "@angular-eslint/eslint-plugin": _FRAMEWORK_RANGE,
        "@angular-eslint/eslint-plugin-template": _FRAMEWORK_RANGE,
        "@angular-eslint/schematics": _FRAMEWORK_RANGE,
        "@angular-eslint/template-parser": _FRAMEWORK_RANGE,
        "primeng": _FRAMEWORK_RANGE,
        "@ng-bootstrap/ng-bootstrap": {
            12: "^10.0.0", 13: "^11.0.0", 14: "^12.0.0", 15: "^14.0.0", 16: "^15.0.0",
            17: "^16.0.0", 18: "^17.0.0", 19: "^18.0.0", 20: "^19.0.0",
        },
        "primeicons": {
            12: "^4.1.0", 13: "^5.0.0", 14: "^5.0.0", 15: "^6.0.0", 16: "^6.0.0",
            17: "^6.0.0", 18: "^7.0.0", 19: "^7.0.0", 20: "^7.0.0",
        },
        "rxjs": {
            12: "~7.1.0", 13: "~7.4.0", 14: "~7.5.0", 15: "~7.5.0", 16: "~7.8.0",
            17: "~7.8.0", 18: "~7.8.0", 19: "~7.8.0", 20: "~7.8.0",
        },
        "typescript": {
            12: "~4.3.0", 13: "~4.4.0", 14: "~4.7.0", 15: "~4.8.0", 16: "~4.9.0",
            17: "~5.2.0", 18: "~5.4.0", 19: "~5.5.0", 20: "~5.6.0",
        },
        "zone.js": {
            12: "~0.11.4", 13: "~0.11.4", 14: "~0.11.4", 15: "~0.12.0", 16: "~0.13.0",
            17: "~0.14.2", 18: "~0.14.3", 19: "~0.15.0", 20: "~0.15.0",
        },
        "@angular/flex-layout": {
            12: "^12.0.0-beta.35", 13: "^13.0.0-beta.38", 14: "^14.0.0-beta.41",
        },
    },
    # Packages with no successor from a given major onward.
    "deprecated": {
        "@angular/flex-layout": {
            "since": 15,
            "alternatives": ["@angular/cdk/layout", "tailwindcss", "bootstrap"],
        },
        "@angular/http": {
            "since": 13,
            "alternatives": ["@angular/common/http"],
        },
        "tslint": {"since": 12, "alternatives": ["eslint", "@angular-eslint/schematics"]},
        "codelyzer": {"since": 12, "alternatives": ["@angular-eslint/eslint-plugin"]},
        "protractor": {"since": 15, "alternatives": ["cypress", "playwright"]},
    },
    "notes": {
        "@angular/flex-layout": {
            14: "Last major with flex-layout releases; plan a replacement before 15",
        },
    },
}


@dataclass(frozen=True)
class Deprecation:
    """Why a package has no mapping from ``since`` onward."""
    name: str
    since: int
    alternatives: List[str]


def _deep_merge(dest: Dict[str, Any], src: Dict[str, Any]) -> None:
    """Deep-merge src into dest in-place."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dest.get(k), dict):
            _deep_merge(dest[k], v)
        else:
            dest[k] = v


def _int_keys(mapping: Dict[Any, Any]) -> Dict[int, Any]:
    # YAML may hand us "15" or 15
    return {int(k): v for k, v in mapping.items()}


class CompatibilityMatrix:
    """Queryable view over a compatibility table."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data = copy.deepcopy(DEFAULT_MATRIX if data is None else data)
        self._framework = frozenset(self._data.get("framework_packages", []))
        self._ecosystem: List[Pattern[str]] = [re.compile(p) for p in self._data.get("ecosystem_patterns", [])]
        self._tooling: List[Pattern[str]] = [re.compile(p) for p in self._data.get("tooling_patterns", [])]
        self._packages: Dict[str, Any] = {}
        for name, entry in (self._data.get("packages") or {}).items():
            self._packages[name] = _int_keys(entry) if isinstance(entry, dict) else entry
        self._deprecated: Dict[str, Deprecation] = {}
        for name, entry in (self._data.get("deprecated") or {}).items():
            self._deprecated[name] = Deprecation(
                name=name,
                since=int(entry.get("since", 0)),
                alternatives=list(entry.get("alternatives", [])),
            )
        self._notes = {name: _int_keys(n) for name, n in (self._data.get("notes") or {}).items()}

    @classmethod
    def with_overrides(cls, overrides: Optional[Dict[str, Any]]) -> "CompatibilityMatrix":
        """Built-in table with ``overrides`` deep-merged on top."""
        data = copy.deepcopy(DEFAULT_MATRIX)
        if overrides:
            _deep_merge(data, overrides)
        return cls(data)

    def is_framework(self, name: str) -> bool:
        """First-party package released with the framework."""
        return name in self._framework

    def is_ecosystem(self, name: str) -> bool:
        """Package that belongs to the framework ecosystem."""
        return self.is_framework(name) or any(p.search(name) for p in self._ecosystem)

    def is_tooling(self, name: str) -> bool:
        """Framework-adjacent tooling package."""
        return any(p.search(name) for p in self._tooling)

    def is_known(self, name: str) -> bool:
        """True when the table has any data for ``name``."""
        return self.is_framework(name) or name in self._packages or name in self._deprecated

    def compatible_range(self, name: str, version: int) -> Optional[str]:
        """Range of ``name`` compatible with framework ``version``, None when unmapped."""
        if self.is_framework(name):
            return _FRAMEWORK_RANGE.format(major=version)
        entry = self._packages.get(name)
        if entry is None:
            return None
        if isinstance(entry, str):
            return entry.format(major=version)
        value = entry.get(version)
        return str(value) if value is not None else None

    def deprecation(self, name: str, version: int) -> Optional[Deprecation]:
        """Deprecation record when ``name`` has no successor at ``version``."""
        info = self._deprecated.get(name)
        if info is not None and version >= info.since:
            return info
        return None

    def deprecated_packages(self) -> Dict[str, Deprecation]:
        """Every deprecation record regardless of version."""
        return dict(self._deprecated)

    def note(self, name: str, version: int) -> str:
        """Free-form note for ``name`` at ``version``."""
        return str(self._notes.get(name, {}).get(version, ""))
