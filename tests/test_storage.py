"""
Unit tests for persistent workspace storage.

This module tests snapshot persistence, repair of malformed data, backups,
restore and bundle import/export through files.
"""

import json
import os
from unittest.mock import patch

import pytest

from prompt_stack.core.storage import (
    StorageError,
    WorkspaceStorage,
    create_storage,
    get_global_storage,
    reset_global_storage,
)
from prompt_stack.core.workspace import Workspace
from prompt_stack.export.transfer import DocumentTransferOptions


@pytest.fixture
def storage(storage_dir):
    return WorkspaceStorage(str(storage_dir))


def write_raw(storage, data):
    with open(storage.storage_file, "w", encoding="utf-8") as f:
        if isinstance(data, str):
            f.write(data)
        else:
            json.dump(data, f)


class TestInitialization:
    """Test directory setup and defaults."""

    def test_creates_directories(self, storage, storage_dir):
        assert storage_dir.is_dir()
        assert (storage_dir / "backups").is_dir()
        assert storage.storage_file == os.path.join(str(storage_dir), "workspace.json")

    def test_defaults_to_home_directory(self, isolated_home):
        storage = WorkspaceStorage()
        assert storage.storage_file == os.path.join(str(isolated_home), "workspace.json")

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(StorageError):
            WorkspaceStorage(str(blocker / "storage"))

    def test_factory_and_global_instance(self, isolated_home):
        reset_global_storage()
        try:
            assert get_global_storage() is get_global_storage()
            assert isinstance(create_storage(str(isolated_home / "other")), WorkspaceStorage)
        finally:
            reset_global_storage()


class TestSaveAndLoad:
    """Test snapshot persistence."""

    def test_load_without_file_starts_fresh(self, storage):
        workspace = storage.load_workspace()

        assert len(workspace.document_order) == 1
        assert not os.path.exists(storage.storage_file)

    def test_round_trip(self, storage, workspace):
        include = workspace.create_include("Shared")
        workspace.toggle_include_for_active_document(include.id)
        workspace.create_document("Second")

        assert storage.save_workspace(workspace) is True
        loaded = storage.load_workspace()

        assert loaded.to_dict() == workspace.to_dict()

    def test_file_is_pretty_json(self, storage, workspace):
        storage.save_workspace(workspace)

        with open(storage.storage_file, encoding="utf-8") as f:
            text = f.read()

        assert text.startswith('{\n  "version": 1')

    def test_no_temporary_files_left(self, storage, workspace, storage_dir):
        storage.save_workspace(workspace)
        assert not [name for name in os.listdir(storage_dir) if name.endswith(".tmp")]

    def test_failed_write_raises_and_cleans_up(self, storage, workspace, storage_dir):
        with patch("prompt_stack.core.storage.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(StorageError):
                storage.save_workspace(workspace)

        assert not [name for name in os.listdir(storage_dir) if name.endswith(".tmp")]

    def test_invalid_json_raises(self, storage):
        write_raw(storage, "{ not json")

        with pytest.raises(StorageError):
            storage.load_workspace()

    def test_non_object_raises(self, storage):
        write_raw(storage, [1, 2, 3])

        with pytest.raises(StorageError):
            storage.load_workspace()


class TestRepair:
    """Test repair of malformed snapshots."""

    def test_malformed_records_are_skipped(self, storage, workspace):
        good_id = workspace.active_document_id
        data = workspace.to_dict()
        data["documentsById"]["broken"] = {"name": "no id"}
        data["includesById"]["broken"] = "not an include"
        data["documentOrder"].append("broken")
        write_raw(storage, data)

        loaded = storage.load_workspace()

        assert loaded.document_order == [good_id]
        assert loaded.include_order == []

    def test_malformed_containers_are_replaced(self, storage):
        write_raw(storage, {"documentsById": [], "includesById": 3, "settings": "loud"})

        loaded = storage.load_workspace()

        assert len(loaded.document_order) == 1
        assert loaded.settings.language == "en"

    def test_duplicate_node_ids_are_reported(self, storage, workspace, caplog):
        document_id = workspace.active_document_id
        data = workspace.to_dict()
        nodes = data["documentsById"][document_id]["nodes"]
        nodes.append(dict(nodes[0]))
        write_raw(storage, data)

        with caplog.at_level("WARNING", logger="prompt_stack.core.storage"):
            loaded = storage.load_workspace()

        assert len(loaded.active_document.nodes) == len(nodes)
        assert f"Duplicate node id: {nodes[0]['id']}" in caplog.text

    def test_clean_snapshot_logs_no_warnings(self, storage, workspace, caplog):
        storage.save_workspace(workspace)

        with caplog.at_level("WARNING", logger="prompt_stack.core.storage"):
            storage.load_workspace()

        assert "Duplicate node id" not in caplog.text

    def test_settings_are_merged_over_defaults(self, storage, workspace):
        data = workspace.to_dict()
        data["settings"] = {"rawXmlStrictMode": True}
        write_raw(storage, data)

        loaded = storage.load_workspace()

        assert loaded.settings.raw_xml_strict_mode is True
        assert loaded.settings.default_root_tag_name == "prompt"


class TestBackups:
    """Test backup and restore."""

    def test_backup_requires_file(self, storage):
        with pytest.raises(StorageError):
            storage.backup_storage()

    def test_save_with_backup(self, storage, workspace):
        storage.save_workspace(workspace)
        storage.save_workspace(workspace, backup=True)

        backups = storage.list_backups()

        assert len(backups) == 1
        assert backups[0]["filename"].startswith("workspace_backup_")

    def test_plain_save_does_not_back_up(self, storage, workspace):
        storage.save_workspace(workspace)
        storage.save_workspace(workspace)

        assert storage.list_backups() == []

    def test_backups_are_pruned(self, storage, workspace):
        storage.MAX_BACKUPS = 3
        storage.save_workspace(workspace)

        for _ in range(5):
            storage.backup_storage()

        assert len(storage.list_backups()) == 3

    def test_restore_from_backup(self, storage, workspace):
        storage.save_workspace(workspace)
        backup_path = storage.backup_storage()
        workspace.create_document("After backup")
        storage.save_workspace(workspace)

        restored = storage.restore_from_backup(backup_path)

        assert len(restored.document_order) == 1
        assert len(storage.load_workspace().document_order) == 1
        # The pre-restore state is kept as another backup.
        assert len(storage.list_backups()) == 2

    def test_restore_missing_backup(self, storage):
        with pytest.raises(StorageError):
            storage.restore_from_backup("/nonexistent/backup.json")

    def test_storage_info(self, storage, workspace):
        info = storage.get_storage_info()
        assert info["file_exists"] is False

        workspace.create_include()
        storage.save_workspace(workspace)
        info = storage.get_storage_info()

        assert info["file_exists"] is True
        assert info["document_count"] == 1
        assert info["include_count"] == 1
        assert info["backups"] == []


class TestAutosave:
    """Test autosave wiring."""

    def test_attach_autosave_persists_changes(self, storage, workspace):
        scheduler = storage.attach_autosave(workspace, delay=60)

        document = workspace.create_document("Autosaved")
        assert scheduler.flush_now() is True

        loaded = storage.load_workspace()
        assert loaded.active_document_id == document.id
        assert storage.list_backups() == []


class TestBundleFiles:
    """Test document bundle import and export through files."""

    def test_export_and_import(self, storage, workspace, tmp_path):
        include = workspace.create_include("Shared")
        workspace.toggle_include_for_active_document(include.id)
        source = workspace.active_document
        bundle_path = str(tmp_path / "bundle.json")

        written = storage.export_document_bundle(
            workspace, source.id, bundle_path, DocumentTransferOptions(include_includes=True)
        )

        target = Workspace()
        imported = storage.import_document_bundle(target, written)

        assert target.active_document_id == imported.document.id
        assert imported.document.name == source.name
        assert target.active_document.global_include_ids == [imported.includes[0].id]
        assert imported.includes[0].name == "Shared"

    def test_export_unknown_document(self, storage, workspace, tmp_path):
        with pytest.raises(StorageError):
            storage.export_document_bundle(workspace, "missing", str(tmp_path / "bundle.json"))

    def test_import_invalid_bundle_carries_reason(self, storage, workspace, tmp_path):
        bundle_path = tmp_path / "bundle.json"
        bundle_path.write_text('{"document": {"id": "x"}}', encoding="utf-8")

        with pytest.raises(StorageError, match="invalid_document"):
            storage.import_document_bundle(workspace, str(bundle_path))

    def test_import_missing_file(self, storage, workspace, tmp_path):
        with pytest.raises(StorageError):
            storage.import_document_bundle(workspace, str(tmp_path / "missing.json"))
