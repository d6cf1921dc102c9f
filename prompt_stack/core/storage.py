"""
Persistent JSON Storage for Prompt Stack Workspaces

This module persists workspace snapshots as JSON files. Storage is a plain
subscriber of the Workspace: it never intercepts commands, it only writes the
snapshot it is handed (directly or through the AutosaveScheduler).

Key Features:
- Thread-safe JSON file storage for the workspace snapshot
- Atomic file operations to prevent data corruption
- Timestamped backups and restore
- Repair of malformed records on load
- Document transfer bundle export/import to files
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..export.transfer import (
    DocumentImport,
    DocumentTransferOptions,
    create_document_transfer_bundle,
    parse_document_transfer_bundle,
    serialize_document_transfer_bundle,
)
from .autosave import DEFAULT_DELAY_SECONDS, AutosaveScheduler
from .document import PromptDocument, WorkspaceSettings
from .includes import GlobalInclude
from .node import PromptStackError, ValidationError
from .validation import validate_tree_integrity
from .workspace import SNAPSHOT_VERSION, Workspace

logger = logging.getLogger(__name__)


class StorageError(PromptStackError):
    """Base exception for storage operations"""
    pass


class WorkspaceStorage:
    """
    Persistent JSON storage manager for a workspace with thread-safe operations.

    Provides:
    - Snapshot save/load with repair of malformed records
    - Atomic file operations to prevent corruption
    - Backup/restore capabilities
    - Import/export of single documents as transfer bundles
    """

    STORAGE_VERSION = SNAPSHOT_VERSION
    DEFAULT_FILENAME = "workspace.json"
    BACKUP_DIR = "backups"
    MAX_BACKUPS = 20

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize WorkspaceStorage with optional custom storage path.

        Args:
            storage_path: Custom storage directory path. If None, uses the
                          workspace home directory from the configuration.

        Raises:
            StorageError: If storage directory cannot be created
        """
        # Import here to avoid circular imports
        from ..config import get_home_directory

        self._lock = threading.RLock()
        self._storage_dir = os.path.abspath(storage_path) if storage_path else get_home_directory()
        self._storage_file = os.path.join(self._storage_dir, self.DEFAULT_FILENAME)
        self._backup_dir = os.path.join(self._storage_dir, self.BACKUP_DIR)

        self._ensure_directories()

    @property
    def storage_file(self) -> str:
        return self._storage_file

    @property
    def backup_dir(self) -> str:
        return self._backup_dir

    def _ensure_directories(self) -> None:
        """Create storage directories if they don't exist"""
        try:
            os.makedirs(self._storage_dir, exist_ok=True)
            os.makedirs(self._backup_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create storage directories: {e}")

    def _atomic_write_text(self, filepath: str, text: str) -> None:
        """
        Perform atomic file write using temporary file and move operation.

        Raises:
            StorageError: If write operation fails
        """
        # Temporary file in the same directory keeps the move on one filesystem
        temp_dir = os.path.dirname(os.path.abspath(filepath))
        temp_path = None
        try:
            os.makedirs(temp_dir, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode='w',
                encoding='utf-8',
                dir=temp_dir,
                delete=False,
                suffix='.tmp'
            ) as temp_file:
                temp_path = temp_file.name
                temp_file.write(text)

            os.replace(temp_path, filepath)

        except OSError as e:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError as cleanup_error:
                    logger.warning(f"Failed to remove temporary file {temp_path}: {cleanup_error}")
            raise StorageError(f"Atomic write failed for {filepath}: {e}")

    def _atomic_write(self, filepath: str, data: Dict[str, Any]) -> None:
        self._atomic_write_text(filepath, json.dumps(data, indent=2, ensure_ascii=False))

    def _validate_storage_data(self, data: Any) -> Dict[str, Any]:
        """
        Validate and repair a loaded snapshot.

        Malformed documents and includes are dropped with a warning; missing
        containers are recreated. References to dropped includes are left for
        the include engine, which skips unknown ids.

        Raises:
            StorageError: If the data is not a JSON object at all
        """
        if not isinstance(data, dict):
            raise StorageError("Storage data must be a JSON object")

        repaired: Dict[str, Any] = {
            "version": data.get("version", self.STORAGE_VERSION),
            "documentsById": {},
            "documentOrder": data.get("documentOrder") if isinstance(data.get("documentOrder"), list) else [],
            "activeDocumentId": data.get("activeDocumentId"),
            "includesById": {},
            "includeOrder": data.get("includeOrder") if isinstance(data.get("includeOrder"), list) else [],
            "settings": {},
            "selectedNodeId": data.get("selectedNodeId"),
        }

        documents = data.get("documentsById")
        if not isinstance(documents, dict):
            if documents is not None:
                logger.warning("Replacing malformed documentsById with an empty map")
            documents = {}
        for document_id, document_data in documents.items():
            try:
                document = PromptDocument.from_dict(document_data)
            except ValidationError as e:
                logger.warning(f"Skipping malformed document {document_id}: {e}")
                continue
            for issue in validate_tree_integrity(document.nodes).warnings:
                logger.warning(f"Document {document.id}: {issue.message}")
            repaired["documentsById"][document.id] = document.to_dict()

        includes = data.get("includesById")
        if not isinstance(includes, dict):
            if includes is not None:
                logger.warning("Replacing malformed includesById with an empty map")
            includes = {}
        for include_id, include_data in includes.items():
            try:
                include = GlobalInclude.from_dict(include_data)
            except ValidationError as e:
                logger.warning(f"Skipping malformed include {include_id}: {e}")
                continue
            repaired["includesById"][include.id] = include.to_dict()

        settings = data.get("settings")
        if isinstance(settings, dict):
            try:
                repaired["settings"] = WorkspaceSettings.from_dict(settings).to_dict()
            except ValidationError as e:
                logger.warning(f"Resetting malformed settings: {e}")
        elif settings is not None:
            logger.warning("Resetting malformed settings")

        return repaired

    def _load_storage_data(self) -> Optional[Dict[str, Any]]:
        """
        Load and repair the stored snapshot.

        Returns:
            Snapshot dictionary, or None if nothing has been saved yet

        Raises:
            StorageError: If the file cannot be read or is not valid JSON
        """
        if not os.path.exists(self._storage_file):
            return None

        try:
            with open(self._storage_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Invalid JSON in storage file: {e}")
        except OSError as e:
            raise StorageError(f"Failed to load storage data: {e}")

        return self._validate_storage_data(data)

    def load_workspace(self) -> Workspace:
        """
        Load the stored workspace, or a fresh one if nothing was saved yet.

        Raises:
            StorageError: If the stored snapshot cannot be read
        """
        with self._lock:
            data = self._load_storage_data()
            if data is None:
                logger.info(f"No workspace stored at {self._storage_file}, starting fresh")
                return Workspace()

            workspace = Workspace.from_dict(data)
            logger.info(
                f"Loaded workspace with {len(workspace.document_order)} document(s) "
                f"and {len(workspace.include_order)} include(s)"
            )
            return workspace

    def save_snapshot(self, snapshot: Dict[str, Any], backup: bool = False) -> bool:
        """
        Write a workspace snapshot.

        Args:
            snapshot: Result of Workspace.to_dict()
            backup: Back up the current file first

        Returns:
            True if the snapshot was written

        Raises:
            StorageError: If the write fails
        """
        with self._lock:
            if backup and os.path.exists(self._storage_file):
                try:
                    self.backup_storage()
                except StorageError as e:
                    logger.warning(f"Failed to create backup: {e}")

            self._atomic_write(self._storage_file, snapshot)
            logger.debug(f"Saved workspace snapshot to {self._storage_file}")
            return True

    def save_workspace(self, workspace: Workspace, backup: bool = False) -> bool:
        return self.save_snapshot(workspace.to_dict(), backup=backup)

    def attach_autosave(self, workspace: Workspace,
                        delay: float = DEFAULT_DELAY_SECONDS) -> AutosaveScheduler:
        """
        Persist every workspace change through a debounced scheduler.

        Returns:
            The scheduler; call flush_now() before shutdown
        """
        scheduler = AutosaveScheduler(self.save_snapshot, delay=delay)
        scheduler.attach(workspace)
        return scheduler

    def backup_storage(self) -> str:
        """
        Create timestamped backup of current storage file.

        Returns:
            Path to created backup file

        Raises:
            StorageError: If backup creation fails
        """
        if not os.path.exists(self._storage_file):
            raise StorageError("No storage file exists to backup")

        try:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            backup_path = os.path.join(self._backup_dir, f"workspace_backup_{timestamp}.json")
            shutil.copy2(self._storage_file, backup_path)
        except OSError as e:
            raise StorageError(f"Backup creation failed: {e}")

        logger.info(f"Created storage backup: {backup_path}")
        self._prune_backups()
        return backup_path

    def list_backups(self) -> List[Dict[str, Any]]:
        """Backups, newest first"""
        backup_files = []
        if not os.path.exists(self._backup_dir):
            return backup_files

        for filename in os.listdir(self._backup_dir):
            if not filename.endswith('.json'):
                continue
            backup_path = os.path.join(self._backup_dir, filename)
            stat = os.stat(backup_path)
            backup_files.append({
                "filename": filename,
                "path": backup_path,
                "size": stat.st_size,
                "created": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            })

        return sorted(backup_files, key=lambda x: x["filename"], reverse=True)

    def _prune_backups(self) -> None:
        for stale in self.list_backups()[self.MAX_BACKUPS:]:
            try:
                os.remove(stale["path"])
            except OSError as e:
                logger.warning(f"Failed to remove old backup {stale['path']}: {e}")

    def restore_from_backup(self, backup_path: str) -> Workspace:
        """
        Restore storage from backup file.

        The current file is backed up first so a restore can be undone.

        Returns:
            The restored workspace

        Raises:
            StorageError: If the backup is missing or unreadable
        """
        with self._lock:
            if not os.path.exists(backup_path):
                raise StorageError(f"Backup file does not exist: {backup_path}")

            try:
                with open(backup_path, 'r', encoding='utf-8') as f:
                    backup_data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(f"Restore failed: {e}")

            repaired = self._validate_storage_data(backup_data)

            if os.path.exists(self._storage_file):
                try:
                    current_backup = self.backup_storage()
                    logger.info(f"Previous state backed up to: {current_backup}")
                except StorageError as e:
                    logger.warning(f"Failed to backup current state: {e}")

            self._atomic_write(self._storage_file, repaired)
            logger.info(f"Restored storage from backup: {backup_path}")
            return Workspace.from_dict(repaired)

    def export_document_bundle(self, workspace: Workspace, document_id: str, export_path: str,
                               options: Optional[DocumentTransferOptions] = None) -> str:
        """
        Export one document as a transfer bundle file.

        Returns:
            Path of the written bundle

        Raises:
            StorageError: If the document does not exist or the write fails
        """
        document = workspace.get_document(document_id)
        if document is None:
            raise StorageError(f"Document not found: {document_id}")

        bundle = create_document_transfer_bundle(
            document,
            workspace.includes_by_id,
            workspace.settings,
            options or DocumentTransferOptions(),
        )
        self._atomic_write_text(export_path, serialize_document_transfer_bundle(bundle))
        logger.info(f"Exported document {document.name!r} to: {export_path}")
        return export_path

    def import_document_bundle(self, workspace: Workspace, import_path: str,
                               apply_settings: bool = False) -> DocumentImport:
        """
        Import a transfer bundle file into the workspace.

        Raises:
            StorageError: If the file cannot be read or the bundle is invalid
                          (the message carries the rejection reason)
        """
        try:
            with open(import_path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except OSError as e:
            raise StorageError(f"Import failed: {e}")

        result = parse_document_transfer_bundle(raw)
        if not result.ok:
            logger.error(f"Rejected transfer bundle {import_path}: {result.message}")
            raise StorageError(f"Import failed: {result.message}")

        imported = workspace.import_bundle(result.bundle, apply_settings=apply_settings)
        logger.info(f"Imported document bundle from: {import_path}")
        return imported

    def get_storage_info(self) -> Dict[str, Any]:
        """
        Get information about storage system status and statistics.
        """
        info: Dict[str, Any] = {
            "storage_directory": self._storage_dir,
            "storage_file": self._storage_file,
            "backup_directory": self._backup_dir,
            "version": self.STORAGE_VERSION,
            "file_exists": os.path.exists(self._storage_file)
        }

        if info["file_exists"]:
            try:
                stat = os.stat(self._storage_file)
                info["file_size"] = stat.st_size
                info["last_modified"] = datetime.fromtimestamp(stat.st_mtime).isoformat()

                data = self._load_storage_data() or {}
                info["document_count"] = len(data.get("documentsById", {}))
                info["include_count"] = len(data.get("includesById", {}))
            except (OSError, StorageError) as e:
                info["error"] = f"Failed to get file info: {e}"

        try:
            info["backups"] = self.list_backups()
        except OSError as e:
            logger.warning(f"Failed to get backup info: {e}")
            info["backups"] = []

        return info


# Factory function for easy instantiation
def create_storage(storage_path: Optional[str] = None) -> WorkspaceStorage:
    """
    Factory function to create WorkspaceStorage instance.

    Args:
        storage_path: Optional custom storage path

    Returns:
        Configured WorkspaceStorage instance
    """
    return WorkspaceStorage(storage_path)


# Global storage instance for shared use
_global_storage: Optional[WorkspaceStorage] = None


def get_global_storage() -> WorkspaceStorage:
    """
    Get or create the global storage instance rooted at the workspace home.
    """
    global _global_storage
    if _global_storage is None:
        _global_storage = WorkspaceStorage()
    return _global_storage


def reset_global_storage() -> None:
    """
    Reset the global storage instance so the next access re-reads the configuration.
    """
    global _global_storage
    _global_storage = None
