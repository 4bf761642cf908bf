"""Durable, verifiable snapshots of project state.

Layout under the store root (``<project>/.ng-upgrade`` unless relocated)::

    checkpoints.json              index of every checkpoint
    checkpoints/<id>/snapshot.json  file list with sha256 digests
    checkpoints/<id>/files/...      copy of the project tree

Captures are staged in a hidden directory and renamed into place so a
half-written snapshot never shows up in the index.
"""

from __future__ import annotations

import fnmatch
import hashlib
import json
import logging
import os
import shutil
import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer

from .errors import (
    CheckpointCaptureError,
    CheckpointError,
    CheckpointNotFoundError,
    CheckpointRestoreError,
    CorruptSnapshotError,
)
from .models import Checkpoint

logger = logging.getLogger(__name__)


def _sha256(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class CheckpointStore:
    """Create, list, verify, restore and prune checkpoints for one project."""

    def __init__(
        self,
        project_path: str,
        root: Optional[str] = None,
        excludes: Optional[List[str]] = None,
        lock: Optional[threading.RLock] = None,
    ):
        """Initialize the store.

        Args:
            project_path: Project root whose state is captured.
            root: Store location; defaults to the hidden state directory in the project.
            excludes: Name patterns never captured nor touched on restore.
            lock: Lock shared with whoever mutates the project, so captures and
                restores never overlap a running step.
        """
        self.project_path = os.path.abspath(project_path)
        self.root = os.path.abspath(root) if root else os.path.join(self.project_path, Constants.STATE_DIR)
        self.checkpoints_dir = os.path.join(self.root, Constants.CHECKPOINTS_DIR)
        self.index_path = os.path.join(self.root, Constants.CHECKPOINT_INDEX_FILE)
        self.excludes = list(Constants.SNAPSHOT_EXCLUDES if excludes is None else excludes)
        self.lock = lock or threading.RLock()

    # -- index -----------------------------------------------------------

    def _read_index(self) -> List[Checkpoint]:
        if not os.path.isfile(self.index_path):
            return []
        try:
            with open(self.index_path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return [Checkpoint.from_dict(item) for item in data.get("checkpoints", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CheckpointError(f"Checkpoint index {self.index_path} is unreadable: {exc}") from exc

    def _write_index(self, checkpoints: List[Checkpoint]) -> None:
        os.makedirs(self.root, exist_ok=True)
        tmp_path = self.index_path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump({"checkpoints": [c.to_dict() for c in checkpoints]}, fh, indent=2)
        os.replace(tmp_path, self.index_path)

    # -- tree helpers ----------------------------------------------------

    def _is_excluded(self, directory: str, name: str) -> bool:
        if os.path.join(directory, name) == self.root:
            return True
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.excludes)

    def _ignore(self, directory: str, names: List[str]) -> List[str]:
        return [n for n in names if self._is_excluded(os.path.abspath(directory), n)]

    @staticmethod
    def _digest_tree(base: str) -> Dict[str, str]:
        """Relative posix path -> digest for every file and symlink below ``base``."""
        digests: Dict[str, str] = {}
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames.sort()
            for name in sorted(filenames) + [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]:
                full = os.path.join(dirpath, name)
                rel = os.path.relpath(full, base).replace(os.sep, "/")
                if os.path.islink(full):
                    digests[rel] = "link:" + os.readlink(full)
                else:
                    digests[rel] = _sha256(full)
        return digests

    def _snapshot_dir(self, checkpoint: Checkpoint) -> str:
        return checkpoint.snapshot_ref or os.path.join(self.checkpoints_dir, checkpoint.id)

    # -- queries ---------------------------------------------------------

    def list(self) -> List[Checkpoint]:
        """All checkpoints, oldest first."""
        with self.lock:
            return sorted(self._read_index(), key=lambda c: (c.timestamp, c.sequence))

    def get(self, checkpoint_id: str) -> Checkpoint:
        """Checkpoint by id.

        Raises:
            CheckpointNotFoundError: If the id is unknown.
        """
        for checkpoint in self.list():
            if checkpoint.id == checkpoint_id:
                return checkpoint
        raise CheckpointNotFoundError(checkpoint_id)

    def latest(self) -> Optional[Checkpoint]:
        """Most recent checkpoint, if any."""
        checkpoints = self.list()
        return checkpoints[-1] if checkpoints else None

    # -- mutations -------------------------------------------------------

    def create(self, version: int, description: str) -> Checkpoint:
        """Capture the current project state.

        Raises:
            CheckpointCaptureError: If anything goes wrong; nothing is recorded then.
        """
        with self.lock, Timer() as t:
            existing = self._read_index()
            sequence = max((c.sequence for c in existing), default=0) + 1
            checkpoint_id = f"v{version}-{uuid.uuid4().hex[:8]}"
            final_dir = os.path.join(self.checkpoints_dir, checkpoint_id)
            staging = os.path.join(self.checkpoints_dir, f".{checkpoint_id}.partial")
            timestamp = datetime.now(timezone.utc).isoformat(timespec="microseconds")
            try:
                if not os.path.isfile(os.path.join(self.project_path, Constants.PACKAGE_JSON_FILE)):
                    raise CheckpointCaptureError(
                        f"{self.project_path} has no {Constants.PACKAGE_JSON_FILE}; nothing to capture"
                    )
                os.makedirs(self.checkpoints_dir, exist_ok=True)
                files_dir = os.path.join(staging, Constants.SNAPSHOT_FILES_DIR)
                shutil.copytree(self.project_path, files_dir, ignore=self._ignore, symlinks=True)
                manifest = {
                    "id": checkpoint_id,
                    "version": version,
                    "timestamp": timestamp,
                    "files": self._digest_tree(files_dir),
                }
                with open(os.path.join(staging, Constants.SNAPSHOT_MANIFEST_FILE), "w", encoding="utf-8") as fh:
                    json.dump(manifest, fh, indent=2, sort_keys=True)
                os.rename(staging, final_dir)

                checkpoint = Checkpoint(
                    id=checkpoint_id,
                    version=version,
                    timestamp=timestamp,
                    description=description,
                    snapshot_ref=final_dir,
                    sequence=sequence,
                )
                self._write_index(existing + [checkpoint])
            except CheckpointCaptureError:
                shutil.rmtree(staging, ignore_errors=True)
                raise
            except (OSError, shutil.Error, CheckpointError) as exc:
                shutil.rmtree(staging, ignore_errors=True)
                shutil.rmtree(final_dir, ignore_errors=True)
                raise CheckpointCaptureError(f"Checkpoint capture failed: {exc}") from exc

        logger.info("Created checkpoint %s (%s)", checkpoint_id, description)
        if is_debug_enabled(logger):
            logger.debug(
                "Checkpoint captured",
                extra=extra_context(
                    event="checkpoint",
                    component="checkpoint_store",
                    action="create",
                    outcome="success",
                    checkpoint_id=checkpoint_id,
                    files=len(manifest["files"]),
                    duration_ms=t.duration_ms(),
                )
            )
        return checkpoint

    def verify(self, checkpoint_id: str) -> Checkpoint:
        """Check a snapshot against its recorded digests.

        Raises:
            CheckpointNotFoundError: If the id is unknown.
            CorruptSnapshotError: If files are missing, altered or unexpected.
        """
        checkpoint = self.get(checkpoint_id)
        snapshot_dir = self._snapshot_dir(checkpoint)
        manifest_file = os.path.join(snapshot_dir, Constants.SNAPSHOT_MANIFEST_FILE)
        files_dir = os.path.join(snapshot_dir, Constants.SNAPSHOT_FILES_DIR)
        try:
            with open(manifest_file, "r", encoding="utf-8") as fh:
                recorded = json.load(fh).get("files", {})
        except (OSError, ValueError, AttributeError) as exc:
            raise CorruptSnapshotError(checkpoint_id, [f"snapshot manifest unreadable: {exc}"]) from exc
        if not os.path.isdir(files_dir):
            raise CorruptSnapshotError(checkpoint_id, ["snapshot files are missing"])

        actual = self._digest_tree(files_dir)
        problems = []
        for rel, digest in sorted(recorded.items()):
            if rel not in actual:
                problems.append(f"missing {rel}")
            elif actual[rel] != digest:
                problems.append(f"modified {rel}")
        problems.extend(f"unexpected {rel}" for rel in sorted(set(actual) - set(recorded)))
        for essential in Constants.ESSENTIAL_FILES:
            if essential not in recorded:
                problems.append(f"essential file {essential} not in snapshot")
        if problems:
            raise CorruptSnapshotError(checkpoint_id, problems)
        return checkpoint

    def _clear_project(self) -> None:
        """Remove every non-excluded file and then the empty directories left behind."""
        for dirpath, dirnames, filenames in os.walk(self.project_path, topdown=True):
            kept = []
            for d in dirnames:
                full = os.path.join(dirpath, d)
                if self._is_excluded(dirpath, d):
                    continue
                if os.path.islink(full):
                    os.unlink(full)
                    continue
                kept.append(d)
            dirnames[:] = kept
            for name in filenames:
                if not self._is_excluded(dirpath, name):
                    os.unlink(os.path.join(dirpath, name))
        for dirpath, _, _ in sorted(os.walk(self.project_path), key=lambda w: len(w[0]), reverse=True):
            if dirpath == self.project_path:
                continue
            rel_parts = os.path.relpath(dirpath, self.project_path).split(os.sep)
            if any(fnmatch.fnmatch(p, pat) for p in rel_parts for pat in self.excludes):
                continue
            if os.path.commonpath([os.path.abspath(dirpath), self.root]) == self.root:
                continue
            if not os.listdir(dirpath):
                os.rmdir(dirpath)

    def restore(self, checkpoint_id: str, backup_first: bool = False) -> Checkpoint:
        """Replace the project state with the snapshot of ``checkpoint_id``.

        The snapshot is verified first; a corrupt snapshot is never applied.

        Args:
            checkpoint_id: Checkpoint to restore.
            backup_first: Capture the current state as a safety checkpoint
                before overwriting it.

        Raises:
            CheckpointNotFoundError: If the id is unknown.
            CorruptSnapshotError: If verification fails.
            CheckpointCaptureError: If the safety checkpoint cannot be taken.
            CheckpointRestoreError: If writing the snapshot back fails.
        """
        with self.lock:
            checkpoint = self.verify(checkpoint_id)
            if backup_first:
                safety = self.create(checkpoint.version, f"Safety backup before restoring {checkpoint_id}")
                logger.info("Safety checkpoint %s taken before restore", safety.id)
            files_dir = os.path.join(self._snapshot_dir(checkpoint), Constants.SNAPSHOT_FILES_DIR)
            try:
                self._clear_project()
                shutil.copytree(files_dir, self.project_path, symlinks=True, dirs_exist_ok=True)
            except (OSError, shutil.Error) as exc:
                logger.error("Restore of %s failed part way: %s", checkpoint_id, exc)
                raise CheckpointRestoreError(f"Restore of {checkpoint_id} failed: {exc}") from exc
        logger.info("Restored checkpoint %s (version %s)", checkpoint.id, checkpoint.version)
        return checkpoint

    def delete(self, checkpoint_id: str) -> None:
        """Remove one checkpoint and its snapshot."""
        with self.lock:
            checkpoints = self._read_index()
            target = next((c for c in checkpoints if c.id == checkpoint_id), None)
            if target is None:
                raise CheckpointNotFoundError(checkpoint_id)
            self._write_index([c for c in checkpoints if c.id != checkpoint_id])
            shutil.rmtree(self._snapshot_dir(target), ignore_errors=True)

    def prune(self, keep: int) -> List[Checkpoint]:
        """Delete all but the ``keep`` most recent checkpoints, oldest first.

        Returns:
            The removed checkpoints. Running it again removes nothing.
        """
        keep = max(0, int(keep))
        with self.lock:
            ordered = self.list()
            doomed = ordered[:-keep] if keep else ordered
            for checkpoint in doomed:
                self.delete(checkpoint.id)
        if doomed:
            logger.info("Pruned %d checkpoint(s), kept %d", len(doomed), min(keep, len(ordered)))
        return doomed

    def prune_after(self, checkpoint_id: str) -> List[Checkpoint]:
        """Delete every checkpoint captured after ``checkpoint_id``."""
        with self.lock:
            anchor = self.get(checkpoint_id)
            later = [c for c in self.list() if (c.timestamp, c.sequence) > (anchor.timestamp, anchor.sequence)]
            for checkpoint in later:
                self.delete(checkpoint.id)
        return later
