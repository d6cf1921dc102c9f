# =============================================================================
# Standard Library Imports
# =============================================================================

import logging

"""
Prompt Stack

A structured-prompt authoring engine: build a tree of tagged content nodes,
inject reusable global includes, validate the result and export it as XML,
Markdown or JSON, or move whole documents between workspaces as transfer
bundles.

This package includes:
- Immutable prompt tree operations with cycle-safe drag-and-drop
- Include engine with top/bottom/tag-relative insertion
- XML, Markdown and JSON renderers with validation gating
- Schema-validated document transfer bundles
- Workspace command API with JSON persistence and debounced autosave
- aiohttp REST API
"""

# =============================================================================
# Package Metadata
# =============================================================================

__version__ = "0.1.0"
__author__ = "Prompt Stack"
__description__ = "Structured prompt authoring: node trees, global includes, XML/Markdown/JSON export"

# =============================================================================
# Local/Project Imports
# =============================================================================

try:
    from .core import (
        ContentMode,
        GlobalInclude,
        InsertionPosition,
        InsertionRule,
        PromptDocument,
        PromptKind,
        PromptNode,
        PromptStackError,
        StorageError,
        ValidationError,
        Workspace,
        WorkspaceSettings,
        WorkspaceStorage,
        apply_includes,
        create_node,
    )
    from .export import (
        build_xml_preview,
        create_document_transfer_bundle,
        parse_document_transfer_bundle,
        to_json_view,
        to_markdown_view,
    )
except Exception as e:
    logging.getLogger(__name__).error(f"Failed to import core functionality: {e}")
    raise

# =============================================================================
# Public API
# =============================================================================

__all__ = [
    "ContentMode",
    "GlobalInclude",
    "InsertionPosition",
    "InsertionRule",
    "PromptDocument",
    "PromptKind",
    "PromptNode",
    "PromptStackError",
    "StorageError",
    "ValidationError",
    "Workspace",
    "WorkspaceSettings",
    "WorkspaceStorage",
    "apply_includes",
    "create_node",
    "build_xml_preview",
    "create_document_transfer_bundle",
    "parse_document_transfer_bundle",
    "to_json_view",
    "to_markdown_view",
]
