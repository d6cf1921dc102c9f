"""
Core System Components for Prompt Stack

This package contains the foundational data structures and operations that power
the prompt authoring system:

- node: PromptNode data model and factory
- tree: Pure, structure-sharing tree operations and drag-and-drop relocation
- includes: Global includes and the include engine
- validation: XML-name, root tag and raw XML validation
- document: Prompt documents, workspace settings and defaults
- templates: Built-in document templates
- workspace: Command API over documents, includes and settings
- autosave / storage: Debounced persistence of workspace snapshots

These components are free of network I/O and are shared by the HTTP handlers
and any other front end.
"""

from .node import (
    ContentMode,
    PromptNode,
    PromptStackError,
    ValidationError,
    create_node,
    generate_id,
)

from .tree import (
    DropPosition,
    DropTarget,
    add_child_node_in_tree,
    build_node_drop_id,
    build_node_visibility_set,
    clone_node_with_new_ids,
    clone_nodes_with_new_ids,
    count_nodes,
    deep_clone_nodes,
    duplicate_node_in_tree,
    find_node_by_id,
    flatten_visible_node_ids,
    iter_nodes,
    move_node_by_drop,
    move_node_to_root_end,
    parse_drop_target,
    prune_disabled_nodes,
    remove_node_from_tree,
    reorder_nodes_within_parent,
    update_node_in_tree,
)

from .validation import (
    ValidationIssue,
    ValidationResult,
    is_valid_xml_name,
    validate_node_tree,
    validate_raw_xml_nodes,
    validate_root_tag_name,
    validate_tree_integrity,
)

from .includes import (
    GlobalInclude,
    InsertionPosition,
    InsertionRule,
    apply_includes,
    create_include,
)

from .document import (
    DEFAULT_SETTINGS,
    SCHEMA_VERSION,
    PromptDocument,
    PromptKind,
    WorkspaceSettings,
    create_default_document,
    resolve_node_tag_name,
    touch_document,
)

from .templates import (
    TEMPLATE_IDS,
    create_document_from_template,
    create_prompt_template,
)

from .workspace import Workspace

from .autosave import AutosaveScheduler

from .storage import (
    WorkspaceStorage,
    StorageError,
    create_storage,
    get_global_storage,
    reset_global_storage,
)

__all__ = [
    # Data structures
    "ContentMode",
    "PromptNode",
    "DropPosition",
    "DropTarget",
    "GlobalInclude",
    "InsertionPosition",
    "InsertionRule",
    "PromptDocument",
    "PromptKind",
    "WorkspaceSettings",
    "DEFAULT_SETTINGS",
    "SCHEMA_VERSION",

    # Exceptions
    "PromptStackError",
    "ValidationError",
    "StorageError",

    # Node and tree operations
    "create_node",
    "generate_id",
    "add_child_node_in_tree",
    "build_node_drop_id",
    "build_node_visibility_set",
    "clone_node_with_new_ids",
    "clone_nodes_with_new_ids",
    "count_nodes",
    "deep_clone_nodes",
    "duplicate_node_in_tree",
    "find_node_by_id",
    "flatten_visible_node_ids",
    "iter_nodes",
    "move_node_by_drop",
    "move_node_to_root_end",
    "parse_drop_target",
    "prune_disabled_nodes",
    "remove_node_from_tree",
    "reorder_nodes_within_parent",
    "update_node_in_tree",

    # Validation
    "ValidationIssue",
    "ValidationResult",
    "is_valid_xml_name",
    "validate_node_tree",
    "validate_raw_xml_nodes",
    "validate_root_tag_name",
    "validate_tree_integrity",

    # Includes, documents and templates
    "apply_includes",
    "create_include",
    "create_default_document",
    "resolve_node_tag_name",
    "touch_document",
    "TEMPLATE_IDS",
    "create_document_from_template",
    "create_prompt_template",

    # Workspace and persistence
    "Workspace",
    "AutosaveScheduler",
    "WorkspaceStorage",
    "create_storage",
    "get_global_storage",
    "reset_global_storage",
]
