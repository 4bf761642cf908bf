"""Read/write helpers for the project manifest."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

from constants import Constants
from versioning.parser import clean_version

from .errors import ProjectNotFoundError

logger = logging.getLogger(__name__)


def manifest_path(project_path: str) -> str:
    """Path of package.json inside ``project_path``."""
    return os.path.join(project_path, Constants.PACKAGE_JSON_FILE)


def read_manifest(project_path: str) -> Dict[str, Any]:
    """Load package.json.

    Raises:
        ProjectNotFoundError: If the manifest is missing or is not a JSON object.
    """
    path = manifest_path(project_path)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError as exc:
        raise ProjectNotFoundError(f"No {Constants.PACKAGE_JSON_FILE} in {project_path}") from exc
    except json.JSONDecodeError as exc:
        raise ProjectNotFoundError(f"Invalid {Constants.PACKAGE_JSON_FILE}: {exc}") from exc
    if not isinstance(data, dict):
        raise ProjectNotFoundError(f"{path} does not contain a JSON object")
    return data


def write_manifest(project_path: str, data: Dict[str, Any]) -> None:
    """Write package.json atomically with two-space indentation."""
    path = manifest_path(project_path)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)
        fh.write("\n")
    os.replace(tmp_path, path)


def detect_framework_version(manifest: Dict[str, Any]) -> Optional[str]:
    """Declared @angular/core version with range operators stripped, if any."""
    for section in ("dependencies", "devDependencies"):
        declared = manifest.get(section) or {}
        spec = declared.get(Constants.FRAMEWORK_CORE_PACKAGE) if isinstance(declared, dict) else None
        if spec:
            return clean_version(str(spec))
    return None


def read_json_file(path: str) -> Optional[Dict[str, Any]]:
    """Load a JSON config file, None when missing or unreadable.

    Tolerates the ``//`` line comments tsconfig files often carry.
    """
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read()
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        stripped = "\n".join(
            line for line in text.splitlines() if not line.lstrip().startswith("//")
        )
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as exc:
            logger.warning("Cannot parse %s: %s", path, exc)
            return None
    return data if isinstance(data, dict) else None
