"""Tests for the checkpoint store."""

import json
import os
from unittest.mock import patch

import pytest

from conftest import tree_state
from upgrade.checkpoints import CheckpointStore
from upgrade.errors import (
    CheckpointCaptureError,
    CheckpointNotFoundError,
    CheckpointRestoreError,
    CorruptSnapshotError,
)


@pytest.fixture
def store(angular_project):
    return CheckpointStore(angular_project)


def _write(project, rel, content):
    path = os.path.join(project, rel)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)


class TestCreate:
    """Capturing checkpoints."""

    def test_create_records_index_and_snapshot(self, store, angular_project):
        checkpoint = store.create(12, "Before upgrade 12 -> 13")

        assert checkpoint.id.startswith("v12-")
        assert checkpoint.version == 12
        assert checkpoint.description == "Before upgrade 12 -> 13"
        assert os.path.isdir(checkpoint.snapshot_ref)
        with open(os.path.join(angular_project, ".ng-upgrade", "checkpoints.json"), encoding="utf-8") as fh:
            index = json.load(fh)
        assert [c["id"] for c in index["checkpoints"]] == [checkpoint.id]
        assert index["checkpoints"][0]["snapshotRef"] == checkpoint.snapshot_ref

    def test_excluded_paths_not_captured(self, store):
        checkpoint = store.create(12, "cp")
        files = os.path.join(checkpoint.snapshot_ref, "files")
        assert os.path.isfile(os.path.join(files, "package.json"))
        assert os.path.isfile(os.path.join(files, "src", "app", "app.module.ts"))
        assert not os.path.exists(os.path.join(files, "node_modules"))
        assert not os.path.exists(os.path.join(files, "debug.log"))
        assert not os.path.exists(os.path.join(files, ".ng-upgrade"))

    def test_list_is_ordered_and_sequenced(self, store):
        created = [store.create(v, f"cp {v}") for v in (12, 13, 14)]
        listed = store.list()
        assert [c.id for c in listed] == [c.id for c in created]
        assert [c.sequence for c in listed] == [1, 2, 3]
        assert store.latest().id == created[-1].id
        assert store.get(created[1].id).version == 13

    def test_create_without_manifest_fails_cleanly(self, tmp_path):
        project = tmp_path / "empty"
        project.mkdir()
        store = CheckpointStore(str(project))
        with pytest.raises(CheckpointCaptureError):
            store.create(12, "cp")
        assert store.list() == []
        checkpoints_dir = os.path.join(str(project), ".ng-upgrade", "checkpoints")
        assert not os.path.isdir(checkpoints_dir) or os.listdir(checkpoints_dir) == []

    def test_relocated_root(self, angular_project, tmp_path):
        root = str(tmp_path / "backups")
        store = CheckpointStore(angular_project, root=root)
        checkpoint = store.create(12, "cp")
        assert checkpoint.snapshot_ref.startswith(root)
        assert not os.path.exists(os.path.join(angular_project, ".ng-upgrade"))
        assert [c.id for c in CheckpointStore(angular_project, root=root).list()] == [checkpoint.id]


class TestRestore:
    """Restoring and verifying snapshots."""

    def test_round_trip_is_exact(self, store, angular_project):
        before = tree_state(angular_project)
        checkpoint = store.create(12, "cp")

        _write(angular_project, "package.json", '{"dependencies": {"@angular/core": "^13.0.0"}}')
        _write(angular_project, "src/app/new.component.ts", "export class NewComponent {}\n")
        os.remove(os.path.join(angular_project, "src", "app", "data.service.ts"))
        _write(angular_project, "src/extra/deep/file.ts", "x\n")

        store.restore(checkpoint.id)

        assert tree_state(angular_project) == before
        assert not os.path.exists(os.path.join(angular_project, "src", "extra"))

    def test_restore_keeps_excluded_paths(self, store, angular_project):
        checkpoint = store.create(12, "cp")
        _write(angular_project, "node_modules/new-dep/index.js", "1\n")
        store.restore(checkpoint.id)
        assert os.path.isfile(os.path.join(angular_project, "node_modules", "left-pad", "index.js"))
        assert os.path.isfile(os.path.join(angular_project, "node_modules", "new-dep", "index.js"))
        assert os.path.isfile(os.path.join(angular_project, "debug.log"))

    def test_restore_unknown_id(self, store):
        with pytest.raises(CheckpointNotFoundError):
            store.restore("v12-missing")

    def test_corrupt_snapshot_never_applied(self, store, angular_project):
        checkpoint = store.create(12, "cp")
        _write(checkpoint.snapshot_ref, "files/src/app/app.module.ts", "tampered\n")
        _write(angular_project, "src/app/app.module.ts", "current work\n")
        current = tree_state(angular_project)

        with pytest.raises(CorruptSnapshotError) as excinfo:
            store.restore(checkpoint.id)

        assert "modified src/app/app.module.ts" in excinfo.value.problems
        assert tree_state(angular_project) == current

    def test_backup_first_keeps_current_state(self, store, angular_project):
        before = tree_state(angular_project)
        checkpoint = store.create(12, "cp")
        _write(angular_project, "src/app/app.module.ts", "current work\n")
        current = tree_state(angular_project)

        store.restore(checkpoint.id, backup_first=True)

        assert tree_state(angular_project) == before
        listed = store.list()
        assert len(listed) == 2
        safety = listed[-1]
        assert safety.description == f"Safety backup before restoring {checkpoint.id}"
        store.restore(safety.id)
        assert tree_state(angular_project) == current

    def test_restore_without_backup_adds_nothing(self, store):
        checkpoint = store.create(12, "cp")
        store.restore(checkpoint.id)
        assert [c.id for c in store.list()] == [checkpoint.id]

    def test_io_failure_during_restore_is_wrapped(self, store):
        checkpoint = store.create(12, "cp")
        with patch.object(CheckpointStore, "_clear_project", side_effect=PermissionError("read-only file")):
            with pytest.raises(CheckpointRestoreError) as excinfo:
                store.restore(checkpoint.id)
        assert checkpoint.id in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, PermissionError)

    def test_restore_removes_emptied_sibling_of_store(self, store, angular_project):
        checkpoint = store.create(12, "cp")
        os.makedirs(os.path.join(angular_project, ".ng-upgrade-old", "empty"))

        store.restore(checkpoint.id)

        assert not os.path.exists(os.path.join(angular_project, ".ng-upgrade-old"))
        assert os.path.isfile(os.path.join(angular_project, ".ng-upgrade", "checkpoints.json"))

    def test_verify_detects_missing_and_unexpected(self, store):
        checkpoint = store.create(12, "cp")
        os.remove(os.path.join(checkpoint.snapshot_ref, "files", "src", "index.html"))
        _write(checkpoint.snapshot_ref, "files/intruder.ts", "x\n")
        with pytest.raises(CorruptSnapshotError) as excinfo:
            store.verify(checkpoint.id)
        assert "missing src/index.html" in excinfo.value.problems
        assert "unexpected intruder.ts" in excinfo.value.problems

    def test_verify_missing_manifest(self, store):
        checkpoint = store.create(12, "cp")
        os.remove(os.path.join(checkpoint.snapshot_ref, "snapshot.json"))
        with pytest.raises(CorruptSnapshotError):
            store.verify(checkpoint.id)

    def test_verify_passes_for_intact_snapshot(self, store):
        checkpoint = store.create(12, "cp")
        assert store.verify(checkpoint.id).id == checkpoint.id


class TestPrune:
    """Deleting and pruning checkpoints."""

    def test_prune_keeps_most_recent(self, store):
        created = [store.create(12, f"cp {i}") for i in range(8)]

        removed = store.prune(5)

        assert [c.id for c in removed] == [c.id for c in created[:3]]
        assert [c.id for c in store.list()] == [c.id for c in created[3:]]
        for checkpoint in removed:
            assert not os.path.exists(checkpoint.snapshot_ref)
        assert store.prune(5) == []
        assert len(store.list()) == 5

    def test_prune_zero_removes_all(self, store):
        for i in range(3):
            store.create(12, f"cp {i}")
        assert len(store.prune(0)) == 3
        assert store.list() == []

    def test_prune_after(self, store):
        created = [store.create(v, f"cp {v}") for v in (12, 13, 14, 15)]
        removed = store.prune_after(created[1].id)
        assert [c.id for c in removed] == [c.id for c in created[2:]]
        assert [c.id for c in store.list()] == [c.id for c in created[:2]]

    def test_delete_unknown(self, store):
        with pytest.raises(CheckpointNotFoundError):
            store.delete("v12-nope")
