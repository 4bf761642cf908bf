"""CLI entry point for the ``checkpoints`` command."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, List

from constants import ExitCodes
from cli_config import ConfigError, backup_path, checkpoint_keep, load_config, setup_logging
from common.prompts import confirm
from upgrade.checkpoints import CheckpointStore
from upgrade.errors import UpgradeError
from upgrade.models import Checkpoint
from upgrade.orchestrator import UpgradeOrchestrator
from upgrade.project import detect_framework_version, read_manifest
from versioning.parser import parse_major

logger = logging.getLogger(__name__)


def format_checkpoints(checkpoints: List[Checkpoint]) -> List[str]:
    """One line per checkpoint, oldest first."""
    if not checkpoints:
        return ["No checkpoints found."]
    lines = [f"{'ID':<16} {'VERSION':<8} {'TIMESTAMP':<33} DESCRIPTION"]
    for cp in checkpoints:
        lines.append(f"{cp.id:<16} {cp.version:<8} {cp.timestamp:<33} {cp.description}")
    return lines


def _current_major(project_path: str) -> int:
    detected = detect_framework_version(read_manifest(project_path))
    if not detected:
        raise UpgradeError(f"No @angular/core dependency declared in {project_path}")
    return parse_major(detected)


def run_checkpoints(args: Any) -> None:
    """Entry point for the checkpoints command.

    Args:
        args: Parsed CLI arguments namespace.
    """
    setup_logging(args)
    project_path = os.path.abspath(getattr(args, "PROJECT_PATH", "."))
    assume_yes = bool(getattr(args, "ASSUME_YES", False))

    try:
        config = load_config(getattr(args, "CONFIG", None), project_path)
        keep = checkpoint_keep(args, config)
        root = backup_path(args, config)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(ExitCodes.USAGE_ERROR.value)

    store = CheckpointStore(project_path, root=root)
    acted = False
    try:
        if getattr(args, "CREATE", None):
            acted = True
            checkpoint = store.create(_current_major(project_path), args.CREATE)
            print(f"Created checkpoint {checkpoint.id}")

        if getattr(args, "ROLLBACK", None):
            acted = True
            target = store.get(args.ROLLBACK)
            if confirm(f"Restore checkpoint {target.id} (version {target.version})? "
                       "Later checkpoints will be deleted.", default=False, assume_yes=assume_yes):
                UpgradeOrchestrator(project_path, checkpoint_store=store).rollback_to_checkpoint(target.id)
                print(f"Restored checkpoint {target.id}")
            else:
                print("Rollback cancelled.")

        if getattr(args, "CLEANUP", False):
            acted = True
            total = len(store.list())
            if total <= keep:
                print(f"Nothing to clean up ({total} checkpoint(s), keeping {keep}).")
            elif confirm(f"Delete {total - keep} old checkpoint(s), keeping the {keep} most recent?",
                         default=False, assume_yes=assume_yes):
                removed = store.prune(keep)
                print(f"Removed {len(removed)} checkpoint(s).")
            else:
                print("Cleanup cancelled.")

        if getattr(args, "LIST", False) or not acted:
            for line in format_checkpoints(store.list()):
                print(line)
    except (UpgradeError, ValueError) as e:
        logger.error("%s", e)
        sys.exit(ExitCodes.FAILURE.value)

    sys.exit(ExitCodes.SUCCESS.value)
