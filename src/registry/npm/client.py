"""NPM registry client: peer-dependency driven compatibility lookups."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import semantic_version

from constants import Constants
from common.http_client import get_json
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from versioning.resolvers.npm import NpmRangeResolver

logger = logging.getLogger(__name__)


class NpmRegistryClient:
    """Look up registry metadata for packages the compatibility table does not know."""

    def __init__(self, base_url: Optional[str] = None, peer_package: str = Constants.FRAMEWORK_CORE_PACKAGE):
        base = base_url or Constants.REGISTRY_URL_NPM
        self.base_url = base if base.endswith("/") else base + "/"
        self.peer_package = peer_package
        self._ranges = NpmRangeResolver()

    def fetch_packument(self, name: str) -> Optional[Dict[str, Any]]:
        """Fetch the full packument for ``name``; None on any failure."""
        url = f"{self.base_url}{quote(name, safe='@')}"
        status_code, _, data = get_json(url)
        if status_code != 200 or not isinstance(data, dict):
            if is_debug_enabled(logger):
                logger.debug(
                    "Packument unavailable",
                    extra=extra_context(
                        event="http_response",
                        component="npm_client",
                        action="fetch_packument",
                        outcome="unavailable",
                        status_code=status_code,
                        target=safe_url(url),
                        package=name,
                    )
                )
            return None
        return data

    def latest_compatible(self, name: str, framework_major: int) -> Optional[str]:
        """Newest stable release of ``name`` whose peer range accepts ``framework_major``.

        Args:
            name: Package name.
            framework_major: Framework major version the package must support.

        Returns:
            Version string, or None when no release declares support.
        """
        data = self.fetch_packument(name)
        if not data:
            return None

        releases = []
        for raw, meta in (data.get("versions") or {}).items():
            try:
                ver = semantic_version.Version(raw)
            except ValueError:
                continue
            if ver.prerelease or not isinstance(meta, dict):
                continue
            releases.append((ver, meta))
        releases.sort(key=lambda item: item[0], reverse=True)

        probe = f"{framework_major}.0.0"
        for ver, meta in releases:
            peer_range = (meta.get("peerDependencies") or {}).get(self.peer_package)
            if peer_range and self._ranges.satisfies(probe, peer_range):
                logger.debug("%s %s supports %s %s", name, ver, self.peer_package, framework_major)
                return str(ver)
        return None
