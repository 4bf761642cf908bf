"""Data models for manifest entries and version ranges."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DependencySection(Enum):
    """Manifest sections that declare dependencies."""
    DEPENDENCIES = "dependencies"
    DEV_DEPENDENCIES = "devDependencies"


class ResolutionMode(Enum):
    """How a declared version spec should be interpreted."""
    EXACT = "exact"
    RANGE = "range"
    LATEST = "latest"
    UNSUPPORTED = "unsupported"  # file:, git+, link:, workspace:, URLs


class UpdateType(Enum):
    """Classification of a dependency change."""
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    COMPATIBLE = "compatible"
    DEPRECATED = "deprecated"


@dataclass(frozen=True)
class VersionSpec:
    """Normalized representation of a version spec and derived behavior flags."""
    raw: str
    mode: ResolutionMode
    include_prerelease: bool


@dataclass(frozen=True)
class DependencyEntry:
    """One declared dependency read from a manifest."""
    name: str
    raw_spec: str
    spec: Optional[VersionSpec]
    section: DependencySection
