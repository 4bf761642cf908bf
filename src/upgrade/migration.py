"""Migration capabilities applied by the step executor."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import List, Optional

from constants import Constants

from compat.matrix import CompatibilityMatrix

from .models import UpgradeOptions, UpgradeStep
from .project import read_json_file, read_manifest, write_manifest

logger = logging.getLogger(__name__)

STRICT_FROM_VERSION = 15


class MigrationCapability(ABC):
    """Applies the version-specific migration for one transition."""

    @abstractmethod
    def apply(self, project_path: str, step: UpgradeStep, options: UpgradeOptions) -> List[str]:
        """Mutate the project for ``step.to_version`` and describe what changed."""


class ManifestMigration(MigrationCapability):
    """Bump framework packages and toolchain ranges in package.json and tsconfig.json."""

    def __init__(self, matrix: Optional[CompatibilityMatrix] = None):
        self.matrix = matrix or CompatibilityMatrix()

    def _update_manifest(self, project_path: str, version: int) -> List[str]:
        manifest = read_manifest(project_path)
        changes = []
        for section in ("dependencies", "devDependencies"):
            declared = manifest.get(section)
            if not isinstance(declared, dict):
                continue
            for name, current in list(declared.items()):
                if self.matrix.is_framework(name) or name == "typescript":
                    wanted = self.matrix.compatible_range(name, version)
                else:
                    continue
                if wanted and current != wanted:
                    declared[name] = wanted
                    changes.append(f"{section}.{name}: {current} -> {wanted}")
        if changes:
            write_manifest(project_path, manifest)
        return changes

    @staticmethod
    def _enable_strict(project_path: str) -> List[str]:
        path = os.path.join(project_path, Constants.TSCONFIG_FILE)
        tsconfig = read_json_file(path)
        if tsconfig is None:
            return []
        compiler = tsconfig.setdefault("compilerOptions", {})
        if compiler.get("strict") is True:
            return []
        compiler["strict"] = True
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(tsconfig, fh, indent=2)
            fh.write("\n")
        return [f"{Constants.TSCONFIG_FILE}: compilerOptions.strict -> true"]

    def apply(self, project_path: str, step: UpgradeStep, options: UpgradeOptions) -> List[str]:
        changes = self._update_manifest(project_path, step.to_version)
        if step.to_version >= STRICT_FROM_VERSION:
            changes.extend(self._enable_strict(project_path))
        for change in changes:
            logger.debug("Step %s: %s", step, change)
        return changes
