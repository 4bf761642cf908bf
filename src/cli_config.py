"""Runtime configuration for the CLI: logging, config files and option building.

Precedence for every tunable is CLI flag, then config file, then the built-in
default.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import yaml

from constants import (
    CheckpointFrequency,
    Constants,
    RollbackPolicy,
    Strategy,
    ThirdPartyHandling,
    ValidationLevel,
)
from common.logging_utils import configure_logging
from compat.matrix import CompatibilityMatrix
from compat.resolver import DependencyCompatibilityResolver
from upgrade.errors import InvalidRangeError
from upgrade.models import UpgradeOptions
from upgrade.planner import parse_version_id

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """The configuration file or a CLI value is unusable."""


def setup_logging(args: Any) -> None:
    """Configure logging based on CLI arguments.

    Args:
        args: Parsed CLI arguments.
    """
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()

    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def load_config(config_path: Optional[str], project_path: str = ".") -> Dict[str, Any]:
    """Load the configuration file.

    Args:
        config_path: Explicit YAML/JSON file. When omitted the project's
            default config file is used if it exists.
        project_path: Project root searched for the default file.

    Returns:
        Configuration dict (empty when there is no file).

    Raises:
        ConfigError: If an explicit file is missing or any file is malformed.
    """
    explicit = bool(config_path)
    path = config_path or os.path.join(project_path, Constants.CONFIG_FILE)
    if not os.path.isfile(path):
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.lower().endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    logger.debug("Loaded config from %s", path)
    return data


def _pick(cli_value: Any, section: Dict[str, Any], key: str, default: Any) -> Any:
    if cli_value is not None:
        return cli_value
    value = section.get(key)
    return default if value is None else value


def _enum(enum_cls, value: Any, key: str):
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigError(f"Invalid {key} '{value}' (expected one of: {allowed})") from e


def build_upgrade_options(args: Any, config: Dict[str, Any]) -> UpgradeOptions:
    """Merge CLI arguments and the ``upgrade`` config section into UpgradeOptions.

    Raises:
        ConfigError: If a value is not valid.
    """
    section = config.get("upgrade") or {}

    target_raw = _pick(getattr(args, "TARGET", None), section, "target", Constants.DEFAULT_TARGET_VERSION)
    try:
        target = parse_version_id(target_raw)
    except InvalidRangeError as e:
        raise ConfigError(f"Invalid target version '{target_raw}'") from e

    frequency = _enum(
        CheckpointFrequency,
        _pick(getattr(args, "CHECKPOINT_FREQUENCY", None), section, "checkpoint_frequency",
              CheckpointFrequency.EVERY_STEP.value),
        "checkpoint_frequency",
    )
    if getattr(args, "NO_BACKUP", False):
        frequency = CheckpointFrequency.NONE

    boundaries = section.get("checkpoint_boundaries")
    acknowledged = list(section.get("acknowledged_changes") or [])
    acknowledged.extend(getattr(args, "ACKNOWLEDGE", None) or [])

    return UpgradeOptions(
        target_version=target,
        strategy=_enum(Strategy, _pick(getattr(args, "STRATEGY", None), section, "strategy",
                                       Strategy.BALANCED.value), "strategy"),
        checkpoint_frequency=frequency,
        checkpoint_boundaries=frozenset(int(b) for b in boundaries) if boundaries else None,
        validation_level=_enum(ValidationLevel, _pick(getattr(args, "VALIDATION", None), section, "validation",
                                                      ValidationLevel.BASIC.value), "validation"),
        third_party_handling=_enum(ThirdPartyHandling, _pick(getattr(args, "THIRD_PARTY", None), section,
                                                             "third_party", ThirdPartyHandling.PROMPT.value),
                                   "third_party"),
        rollback_policy=_enum(RollbackPolicy, _pick(getattr(args, "ROLLBACK_POLICY", None), section,
                                                    "rollback_policy", RollbackPolicy.AUTO_ON_FAILURE.value),
                              "rollback_policy"),
        parallel_processing=bool(_pick(getattr(args, "PARALLEL", None), section, "parallel", False)),
        backup_path=_pick(getattr(args, "BACKUP_PATH", None), section, "backup_path", None),
        acknowledged_changes=frozenset(acknowledged),
    )


def build_resolver(config: Dict[str, Any], registry_lookup: Optional[bool] = None) -> DependencyCompatibilityResolver:
    """Resolver over the built-in compatibility table plus ``compatibility`` overrides."""
    matrix = CompatibilityMatrix.with_overrides(config.get("compatibility") or {})
    registry_cfg = config.get("registry") or {}
    enabled = registry_lookup if registry_lookup is not None else bool(registry_cfg.get("enabled", False))
    registry = None
    if enabled:
        from registry.npm.client import NpmRegistryClient  # pylint: disable=import-outside-toplevel
        registry = NpmRegistryClient(base_url=registry_cfg.get("url"))
    return DependencyCompatibilityResolver(matrix=matrix, registry=registry)


def checkpoint_keep(args: Any, config: Dict[str, Any]) -> int:
    """Retention used by checkpoint cleanup."""
    section = config.get("checkpoints") or {}
    keep = _pick(getattr(args, "KEEP", None), section, "keep", Constants.DEFAULT_KEEP_CHECKPOINTS)
    try:
        keep = int(keep)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid checkpoint retention '{keep}'") from e
    if keep < 0:
        raise ConfigError("Checkpoint retention cannot be negative")
    return keep


def backup_path(args: Any, config: Dict[str, Any]) -> Optional[str]:
    """Checkpoint store location override, if any."""
    return _pick(getattr(args, "BACKUP_PATH", None), config.get("upgrade") or {}, "backup_path", None)
