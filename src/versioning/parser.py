"""Parsing utilities for manifest version specs."""

import re
from typing import Optional, Union

import semantic_version

from .models import DependencyEntry, DependencySection, ResolutionMode, UpdateType, VersionSpec

_NON_REGISTRY_PREFIXES = (
    "file:", "link:", "git+", "git:", "github:", "workspace:", "http:", "https:", "npm:",
)
_LEADING_OPERATORS = re.compile(r"^\s*(?:\^|~|>=|<=|>|<|=|v)+\s*")
_WILDCARD = re.compile(r"(?<![A-Za-z])[xX*](?![A-Za-z])")


def clean_version(spec: str) -> str:
    """Strip range operators and return the first concrete version in a spec.

    ``"^15.2.0"`` -> ``"15.2.0"``; ``">=4.8.2 <4.10.0"`` -> ``"4.8.2"``;
    ``"~5.2"`` -> ``"5.2"``.
    """
    s = spec.strip().split("||")[0].strip()
    s = _LEADING_OPERATORS.sub("", s)
    return s.split()[0] if s else s


def coerce_version(value: str) -> semantic_version.Version:
    """Coerce a partial or operator-prefixed version into a full semantic version.

    Raises:
        ValueError: When no version can be extracted.
    """
    cleaned = _WILDCARD.sub("0", clean_version(value))
    if not cleaned:
        raise ValueError(f"No version in '{value}'")
    return semantic_version.Version.coerce(cleaned)


def parse_major(value: Union[int, str]) -> int:
    """Return the major component of a version id such as ``12``, ``"12.2.0"`` or ``"^12"``."""
    if isinstance(value, int):
        return value
    return coerce_version(str(value)).major


def _determine_resolution_mode(spec: str) -> ResolutionMode:
    """Determine resolution mode from spec string."""
    lowered = spec.strip().lower()
    if lowered.startswith(_NON_REGISTRY_PREFIXES) or "/" in lowered:
        return ResolutionMode.UNSUPPORTED
    if lowered in ("", "latest", "*", "x", "next"):
        return ResolutionMode.LATEST
    range_ops = ["^", "~", "*", "x", " - ", "<", ">", "=", "||"]
    if any(op in lowered for op in range_ops):
        return ResolutionMode.RANGE
    return ResolutionMode.EXACT


def _determine_include_prerelease(spec: str) -> bool:
    """Determine include_prerelease flag based on spec content."""
    return any(pre in spec.lower() for pre in ["-next", "-pre", "-rc", "-alpha", "-beta"])


def parse_manifest_entry(name: str, raw_spec: Optional[str], section: DependencySection) -> DependencyEntry:
    """Construct a DependencyEntry from manifest fields.

    Preserves the raw spec for reporting while deriving the resolution mode.
    """
    raw = "" if raw_spec is None else str(raw_spec).strip()
    mode = _determine_resolution_mode(raw)
    spec = None
    if mode != ResolutionMode.LATEST:
        spec = VersionSpec(raw=raw, mode=mode, include_prerelease=_determine_include_prerelease(raw))
    return DependencyEntry(name=name, raw_spec=raw, spec=spec, section=section)


def classify_update(current: str, target: str) -> UpdateType:
    """Classify the move from ``current`` to ``target`` by comparing version components.

    Raises:
        ValueError: When either side cannot be coerced into a version.
    """
    cur = coerce_version(current)
    tgt = coerce_version(target)
    if tgt.major != cur.major:
        return UpdateType.MAJOR
    if tgt.minor != cur.minor:
        return UpdateType.MINOR
    if tgt.patch != cur.patch:
        return UpdateType.PATCH
    return UpdateType.COMPATIBLE
