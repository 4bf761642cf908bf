"""NPM range arithmetic using semantic versioning."""

import re
from typing import Iterable, List, Optional

import semantic_version

from ..parser import clean_version, coerce_version


class NpmRangeResolver:
    """Evaluate npm-style ranges (``^``, ``~``, hyphen and x-ranges)."""

    def _normalize_spec(self, spec_str: str) -> str:
        """Normalize npm range syntax (hyphen, x-ranges) into SimpleSpec-compatible form."""
        s = spec_str.strip()

        # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3, <=1.4.5"
        m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s*-\s*([0-9A-Za-z\.\-\+]+)\s*$', s)
        if m:
            left, right = m.group(1), m.group(2)
            return f">={left},<={right}"

        # x-ranges: 1.2.x or 1.x or 1.* -> convert to comparator pairs
        s2 = s.replace('*', 'x').lower()
        m = re.match(r'^\s*(\d+)\.(\d+)\.x\s*$', s2)
        if m:
            major, minor = int(m.group(1)), int(m.group(2))
            return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

        m = re.match(r'^\s*(\d+)(?:\.x)?\s*$', s2)
        if m:
            major = int(m.group(1))
            return f">={major}.0.0,<{major + 1}.0.0"

        # Space separated comparators: ">=4.8.2 <4.10.0"
        return ",".join(s.split())

    def build_spec(self, spec_str: str):
        """Parse a range, preferring NpmSpec and falling back to a normalized SimpleSpec.

        Raises:
            ValueError: When the range cannot be parsed either way.
        """
        try:
            return semantic_version.NpmSpec(spec_str)
        except ValueError:
            return semantic_version.SimpleSpec(self._normalize_spec(spec_str))

    def satisfies(self, version: str, spec_str: str) -> bool:
        """Return True when ``version`` falls inside ``spec_str``."""
        try:
            ver = coerce_version(version)
            return self.build_spec(spec_str).match(ver)
        except ValueError:
            return False

    def floor(self, spec_str: str) -> Optional[semantic_version.Version]:
        """Lowest version admitted by a range, or None when it has no usable lower bound."""
        try:
            candidate = coerce_version(clean_version(spec_str))
            spec = self.build_spec(spec_str)
        except ValueError:
            return None
        return candidate if spec.match(candidate) else None

    def minimal_satisfying(self, existing: str, required: str) -> Optional[semantic_version.Version]:
        """Minimal version inside both ``existing`` and ``required``, None when they are disjoint."""
        lows = [v for v in (self.floor(existing), self.floor(required)) if v is not None]
        if not lows:
            return None
        candidate = max(lows)
        if self.satisfies(str(candidate), existing) and self.satisfies(str(candidate), required):
            return candidate
        return None

    def pick_highest(
        self, spec_str: str, candidates: Iterable[str], include_prerelease: bool = False
    ) -> Optional[str]:
        """Apply semver range and pick highest matching version."""
        try:
            spec = self.build_spec(spec_str)
        except ValueError:
            return None

        matching: List[semantic_version.Version] = []
        for v in candidates:
            try:
                ver = semantic_version.Version(v)
            except ValueError:
                continue  # Skip invalid versions
            if ver.prerelease and not include_prerelease:
                continue
            if spec.match(ver):
                matching.append(ver)

        if not matching:
            return None
        matching.sort(reverse=True)
        return str(matching[0])
