"""
Workspace Command API

The Workspace owns every document, include and the shared settings, and
exposes them through explicit commands. Each state-changing command replaces
the affected document/include with a new value (trees are never mutated in
place) and then notifies subscribers, which is how persistence and autosave
observe changes.

Key Features:
- Document lifecycle: create, duplicate, rename, delete (with default fallback)
- Node commands on the active document, built on the pure tree operations
- Include lifecycle, with reference scrubbing on delete
- Import of document transfer bundles with id remapping
- Snapshot serialization for storage
"""

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .document import (
    DEFAULT_DOCUMENT_NAME,
    SCHEMA_VERSION,
    PromptDocument,
    PromptKind,
    WorkspaceSettings,
    create_default_document,
    resolve_node_tag_name,
    touch_document,
)
from .includes import GlobalInclude, InsertionRule, create_include, now_ms
from .node import ContentMode, PromptNode, ValidationError, create_node, generate_id
from .templates import create_document_from_template
from .tree import (
    add_child_node_in_tree,
    deep_clone_nodes,
    duplicate_node_in_tree,
    find_node_by_id,
    move_node_by_drop,
    move_node_to_root_end,
    parse_drop_target,
    remove_node_from_tree,
    update_node_in_tree,
)

if TYPE_CHECKING:
    from ..export.transfer import DocumentImport, DocumentTransferBundle

logger = logging.getLogger(__name__)

WorkspaceListener = Callable[["Workspace"], None]

SNAPSHOT_VERSION = 1

DOCUMENT_FIELDS = {"name", "kind", "tags", "root_tag_enabled", "root_tag_name", "nodes", "global_include_ids"}
INCLUDE_FIELDS = {"name", "description", "nodes", "insertion", "enabled_by_default"}
SETTINGS_FIELDS = tuple(WorkspaceSettings.__dataclass_fields__)

COPY_SUFFIX = {"en": "Copy", "ko": "복사본"}
NEW_INCLUDE_NAME = {"en": "New Include", "ko": "새 Include"}


class Workspace:
    """
    In-memory workspace state with a command API and change listeners.

    Invariants kept by the commands:
    - document_order lists exactly the keys of documents_by_id
    - include_order lists exactly the keys of includes_by_id
    - there is always at least one document and an active one
    """

    def __init__(self, settings: Optional[WorkspaceSettings] = None):
        self.settings = settings or WorkspaceSettings()
        self.documents_by_id: Dict[str, PromptDocument] = {}
        self.document_order: List[str] = []
        self.includes_by_id: Dict[str, GlobalInclude] = {}
        self.include_order: List[str] = []
        self.active_document_id: Optional[str] = None
        self.selected_node_id: Optional[str] = None
        self._listeners: List[WorkspaceListener] = []

        initial = create_default_document(DEFAULT_DOCUMENT_NAME, PromptKind.XML_STACK, self.settings)
        self._put_document(initial, front=True)
        self.active_document_id = initial.id

    # Listeners

    def subscribe(self, listener: WorkspaceListener) -> Callable[[], None]:
        """
        Register a listener called with the workspace after every change.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Workspace listener {listener!r} failed: {e}")

    # Queries

    @property
    def active_document(self) -> Optional[PromptDocument]:
        if self.active_document_id is None:
            return None
        return self.documents_by_id.get(self.active_document_id)

    @property
    def selected_node(self) -> Optional[PromptNode]:
        document = self.active_document
        if document is None or self.selected_node_id is None:
            return None
        return find_node_by_id(document.nodes, self.selected_node_id)

    def list_documents(self) -> List[PromptDocument]:
        return [self.documents_by_id[document_id] for document_id in self.document_order]

    def list_includes(self) -> List[GlobalInclude]:
        return [self.includes_by_id[include_id] for include_id in self.include_order]

    def get_document(self, document_id: str) -> Optional[PromptDocument]:
        return self.documents_by_id.get(document_id)

    def get_include(self, include_id: str) -> Optional[GlobalInclude]:
        return self.includes_by_id.get(include_id)

    # Internal helpers

    def _put_document(self, document: PromptDocument, front: bool = False) -> None:
        if document.id not in self.documents_by_id:
            if front:
                self.document_order.insert(0, document.id)
            else:
                self.document_order.append(document.id)
        self.documents_by_id[document.id] = document

    def _put_include(self, include: GlobalInclude, front: bool = False) -> None:
        if include.id not in self.includes_by_id:
            if front:
                self.include_order.insert(0, include.id)
            else:
                self.include_order.append(include.id)
        self.includes_by_id[include.id] = include

    def _update_active_document(self, updater: Callable[[PromptDocument], PromptDocument]) -> bool:
        """Replace the active document by updater(document) and touch it"""
        document = self.active_document
        if document is None:
            return False
        self.documents_by_id[document.id] = touch_document(updater(document))
        self._notify()
        return True

    def _update_active_nodes(self, operation: Callable[[List[PromptNode]], List[PromptNode]]) -> bool:
        """Apply a tree operation to the active document; no-op operations leave it untouched"""
        document = self.active_document
        if document is None:
            return False
        next_nodes = operation(document.nodes)
        if next_nodes is document.nodes:
            logger.debug(f"Tree operation left document {document.id} unchanged")
            return False
        return self._update_active_document(lambda current: replace(current, nodes=next_nodes))

    def _localized(self, labels: Dict[str, str]) -> str:
        return labels.get(self.settings.language, labels["en"])

    # Documents

    def create_document(self, name: Optional[str] = None,
                        kind: PromptKind = PromptKind.XML_STACK,
                        tags: Optional[List[str]] = None,
                        template_id: Optional[str] = None) -> PromptDocument:
        """
        Create a document, put it first in the order and make it active.

        Args:
            name: Document name (the template's suggested name or "Untitled Prompt" when omitted)
            kind: Document kind
            tags: Optional tags
            template_id: Build the document from a built-in template instead
                         of the default role/task seed

        Raises:
            KeyError: If template_id is not a known template
        """
        if template_id:
            document = create_document_from_template(template_id, name or "")
        else:
            document = create_default_document(name or DEFAULT_DOCUMENT_NAME, kind, self.settings)
        if tags is not None:
            document.tags = list(tags)

        self._put_document(document, front=True)
        self.active_document_id = document.id
        self.selected_node_id = None
        self._notify()
        return document

    def delete_document(self, document_id: str) -> bool:
        """
        Delete a document.

        Deleting the last document replaces it with a fresh default document.
        When the active document is deleted the first remaining one becomes
        active.
        """
        if document_id not in self.documents_by_id:
            return False

        del self.documents_by_id[document_id]
        self.document_order = [other for other in self.document_order if other != document_id]

        if not self.document_order:
            fallback = create_default_document(DEFAULT_DOCUMENT_NAME, PromptKind.XML_STACK, self.settings)
            self._put_document(fallback, front=True)
            self.active_document_id = fallback.id
        elif self.active_document_id == document_id:
            self.active_document_id = self.document_order[0]

        self.selected_node_id = None
        self._notify()
        return True

    def duplicate_document(self, document_id: str) -> Optional[PromptDocument]:
        """
        Copy a document under a new id and make the copy active.

        Node ids are kept; they only need to be unique within one tree.
        """
        source = self.documents_by_id.get(document_id)
        if source is None:
            return None

        timestamp = now_ms()
        duplicate = replace(
            source,
            id=generate_id(),
            name=f"{source.name} {self._localized(COPY_SUFFIX)}",
            tags=list(source.tags),
            nodes=deep_clone_nodes(source.nodes),
            global_include_ids=list(source.global_include_ids),
            created_at=timestamp,
            updated_at=timestamp,
            schema_version=SCHEMA_VERSION,
        )

        self._put_document(duplicate, front=True)
        self.active_document_id = duplicate.id
        self.selected_node_id = None
        self._notify()
        return duplicate

    def rename_document(self, document_id: str, name: str) -> bool:
        document = self.documents_by_id.get(document_id)
        if document is None:
            return False
        self.documents_by_id[document_id] = touch_document(replace(document, name=name))
        self._notify()
        return True

    def set_active_document(self, document_id: str) -> bool:
        if document_id not in self.documents_by_id:
            return False
        self.active_document_id = document_id
        self.selected_node_id = None
        self._notify()
        return True

    def update_document(self, document_id: str, **changes: Any) -> Optional[PromptDocument]:
        """
        Patch fields of a document and refresh its updated_at.

        Returns:
            The updated document, or None if the id is unknown

        Raises:
            ValidationError: If a field is not a patchable document field or the kind is unknown
        """
        unknown = set(changes) - DOCUMENT_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update document fields: {', '.join(sorted(unknown))}")
        if "kind" in changes:
            try:
                changes["kind"] = PromptKind(changes["kind"])
            except ValueError:
                raise ValidationError(f"Unknown document kind: {changes['kind']!r}")

        document = self.documents_by_id.get(document_id)
        if document is None:
            return None

        updated = touch_document(replace(document, **changes))
        self.documents_by_id[document_id] = updated
        self._notify()
        return updated

    def update_active_document(self, **changes: Any) -> bool:
        """Patch fields of the active document (see update_document)"""
        if self.active_document_id is None:
            return False
        return self.update_document(self.active_document_id, **changes) is not None

    # Nodes (active document)

    def select_node(self, node_id: Optional[str]) -> None:
        self.selected_node_id = node_id
        self._notify()

    def add_root_node(self, tag_name: Optional[str] = None) -> Optional[PromptNode]:
        """Append a new node at the end of the active document's root level"""
        node = create_node(tag_name=resolve_node_tag_name(tag_name))
        if not self._update_active_nodes(lambda nodes: [*nodes, node]):
            return None
        return node

    def add_child_node(self, parent_id: str, tag_name: Optional[str] = None) -> Optional[PromptNode]:
        node = create_node(tag_name=resolve_node_tag_name(tag_name))
        document = self.active_document
        if document is None or find_node_by_id(document.nodes, parent_id) is None:
            return None
        self._update_active_nodes(lambda nodes: add_child_node_in_tree(nodes, parent_id, node))
        return node

    def update_node(self, node_id: str, updater: Callable[[PromptNode], PromptNode]) -> bool:
        return self._update_active_nodes(lambda nodes: update_node_in_tree(nodes, node_id, updater))

    def patch_node(self, node_id: str, **changes: Any) -> bool:
        """Update individual node fields (tag_name, attributes, content_mode, content, enabled, collapsed)"""
        allowed = {"tag_name", "attributes", "content_mode", "content", "enabled", "collapsed"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update node fields: {', '.join(sorted(unknown))}")
        if "content_mode" in changes:
            try:
                changes["content_mode"] = ContentMode(changes["content_mode"])
            except ValueError:
                raise ValidationError(f"Unknown content mode: {changes['content_mode']!r}")
        return self.update_node(node_id, lambda node: replace(node, **changes))

    def delete_node(self, node_id: str) -> bool:
        if self.selected_node_id == node_id:
            self.selected_node_id = None
        return self._update_active_nodes(lambda nodes: remove_node_from_tree(nodes, node_id))

    def duplicate_node(self, node_id: str) -> bool:
        return self._update_active_nodes(lambda nodes: duplicate_node_in_tree(nodes, node_id))

    def toggle_node_enabled(self, node_id: str) -> bool:
        return self.update_node(node_id, lambda node: replace(node, enabled=not node.enabled))

    def toggle_node_collapsed(self, node_id: str) -> bool:
        return self.update_node(node_id, lambda node: replace(node, collapsed=not node.collapsed))

    def move_node(self, active_id: str, target_id: str, position) -> bool:
        return self._update_active_nodes(lambda nodes: move_node_by_drop(nodes, active_id, target_id, position))

    def move_node_by_drop_id(self, active_id: str, drop_id: str) -> bool:
        """Move a node using an encoded 'node:<id>:<position>' drop target"""
        target = parse_drop_target(drop_id)
        if target is None:
            logger.debug(f"Ignoring malformed drop id {drop_id!r}")
            return False
        return self.move_node(active_id, target.node_id, target.position)

    def move_node_to_root_end(self, active_id: str) -> bool:
        return self._update_active_nodes(lambda nodes: move_node_to_root_end(nodes, active_id))

    # Includes

    def create_include(self, name: Optional[str] = None,
                       nodes: Optional[List[PromptNode]] = None,
                       insertion: Optional[InsertionRule] = None,
                       description: str = "",
                       enabled_by_default: bool = True) -> GlobalInclude:
        include = create_include(name or self._localized(NEW_INCLUDE_NAME), nodes, insertion,
                                 description, enabled_by_default)
        self._put_include(include, front=True)
        self._notify()
        return include

    def update_include(self, include_id: str, **changes: Any) -> Optional[GlobalInclude]:
        """
        Patch fields of an include and refresh its updated_at.

        Raises:
            ValidationError: If a field is not a patchable include field
        """
        unknown = set(changes) - INCLUDE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update include fields: {', '.join(sorted(unknown))}")

        existing = self.includes_by_id.get(include_id)
        if existing is None:
            return None

        updated = replace(existing, **changes, updated_at=now_ms())
        self.includes_by_id[include_id] = updated
        self._notify()
        return updated

    def delete_include(self, include_id: str) -> bool:
        """Delete an include and scrub its id from every document"""
        if include_id not in self.includes_by_id:
            return False

        del self.includes_by_id[include_id]
        self.include_order = [other for other in self.include_order if other != include_id]

        for document_id, document in self.documents_by_id.items():
            if include_id in document.global_include_ids:
                self.documents_by_id[document_id] = replace(
                    document,
                    global_include_ids=[other for other in document.global_include_ids if other != include_id],
                )

        self._notify()
        return True

    def toggle_include_for_active_document(self, include_id: str) -> bool:
        """Attach the include to the active document (at the end) or detach it"""
        def toggle(document: PromptDocument) -> PromptDocument:
            if include_id in document.global_include_ids:
                ids = [other for other in document.global_include_ids if other != include_id]
            else:
                ids = [*document.global_include_ids, include_id]
            return replace(document, global_include_ids=ids)

        return self._update_active_document(toggle)

    # Settings

    def update_settings(self, **changes: Any) -> WorkspaceSettings:
        """
        Merge changed preferences over the current settings.

        Raises:
            ValidationError: If a field is not a settings field
        """
        unknown = set(changes) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update settings fields: {', '.join(sorted(unknown))}")
        self.settings = replace(self.settings, **changes)
        self._notify()
        return self.settings

    # Transfer

    def import_bundle(self, bundle: "DocumentTransferBundle", apply_settings: bool = False) -> "DocumentImport":
        """
        Merge a parsed transfer bundle into the workspace.

        The document and bundled includes receive fresh ids (see
        prepare_document_import); the imported document is put first and made
        active. Bundled settings replace the workspace settings only when
        apply_settings is set.

        Returns:
            The DocumentImport that was applied
        """
        # Import here to avoid circular imports
        from ..export.transfer import prepare_document_import

        prepared = prepare_document_import(bundle, self.includes_by_id.keys())

        for include in reversed(prepared.includes):
            self._put_include(include, front=True)
        self._put_document(prepared.document, front=True)
        self.active_document_id = prepared.document.id
        self.selected_node_id = None

        if apply_settings and prepared.settings is not None:
            self.settings = prepared.settings

        logger.info(f"Imported document {prepared.document.name!r} with {len(prepared.includes)} include(s)")
        self._notify()
        return prepared

    # Snapshot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "documentsById": {
                document_id: document.to_dict() for document_id, document in self.documents_by_id.items()
            },
            "documentOrder": list(self.document_order),
            "activeDocumentId": self.active_document_id,
            "includesById": {
                include_id: include.to_dict() for include_id, include in self.includes_by_id.items()
            },
            "includeOrder": list(self.include_order),
            "settings": self.settings.to_dict(),
            "selectedNodeId": self.selected_node_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workspace":
        """
        Restore a workspace snapshot.

        Orders are reconciled with the maps: unknown ids are dropped and
        unlisted records are appended. An empty snapshot yields a workspace
        with one default document.

        Raises:
            ValidationError: If a document, include or settings record is malformed
        """
        if not isinstance(data, dict):
            raise ValidationError("Workspace data must be a dictionary")

        workspace = cls.__new__(cls)
        workspace.settings = WorkspaceSettings.from_dict(data.get("settings"))
        workspace.documents_by_id = {}
        workspace.document_order = []
        workspace.includes_by_id = {}
        workspace.include_order = []
        workspace.active_document_id = None
        workspace.selected_node_id = None
        workspace._listeners = []

        documents = {
            document.id: document
            for document in (PromptDocument.from_dict(item) for item in (data.get("documentsById") or {}).values())
        }
        includes = {
            include.id: include
            for include in (GlobalInclude.from_dict(item) for item in (data.get("includesById") or {}).values())
        }

        for document_id in _reconcile_order(data.get("documentOrder"), documents):
            workspace._put_document(documents[document_id])
        for include_id in _reconcile_order(data.get("includeOrder"), includes):
            workspace._put_include(includes[include_id])

        if not workspace.document_order:
            fallback = create_default_document(DEFAULT_DOCUMENT_NAME, PromptKind.XML_STACK, workspace.settings)
            workspace._put_document(fallback)

        active_id = data.get("activeDocumentId")
        workspace.active_document_id = active_id if active_id in workspace.documents_by_id \
            else workspace.document_order[0]

        selected_id = data.get("selectedNodeId")
        if isinstance(selected_id, str):
            workspace.selected_node_id = selected_id

        return workspace


def _reconcile_order(order: Any, records: Dict[str, Any]) -> List[str]:
    result: List[str] = []
    for record_id in order if isinstance(order, list) else []:
        if record_id in records and record_id not in result:
            result.append(record_id)
    result.extend(record_id for record_id in records if record_id not in result)
    return result
