"""
Core Prompt Node Data Structure

This module defines the foundational data structure of the prompt tree used
throughout prompt-stack.

A PromptNode represents one tagged content unit with support for:
- Ordered child nodes owned exclusively by their parent
- XML attributes as a string-to-string map
- Three content modes (plain text, markdown, raw XML)
- Independent enabled/collapsed flags
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TAG_NAME = "context"


class PromptStackError(Exception):
    """Base exception for prompt-stack operations"""
    pass


class ValidationError(PromptStackError):
    """Raised when node, include or document data cannot be deserialized"""
    pass


class ContentMode(str, Enum):
    """How a node's content string is interpreted and serialized"""
    PLAIN = "Plain"
    MARKDOWN = "Markdown"
    RAW_XML = "RawXML"


def generate_id() -> str:
    """Mint a fresh identifier for a node, include or document"""
    return str(uuid.uuid4())


@dataclass
class PromptNode:
    """
    Core data structure for one node of the prompt tree.

    Nodes are treated as immutable values by the tree operations: every
    mutation returns a new node (or list) and leaves the input untouched, so
    untouched subtrees can be shared by reference between successive trees.

    Example node structure (wire format):
    {
        "id": "4f1c...",
        "tagName": "task",
        "attributes": {"priority": "high"},
        "contentMode": "Markdown",
        "content": "Summarize the input.",
        "children": [],
        "enabled": true,
        "collapsed": false
    }
    """
    id: str
    tag_name: str = DEFAULT_TAG_NAME
    attributes: Dict[str, str] = field(default_factory=dict)
    content_mode: ContentMode = ContentMode.PLAIN
    content: str = ""
    children: List["PromptNode"] = field(default_factory=list)
    enabled: bool = True
    collapsed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize node (and its subtree) to the camelCase wire format.

        Returns:
            Dictionary representation of the node

        Example:
            >>> node = PromptNode(id="n1", tag_name="role", content="hi")
            >>> node.to_dict()["tagName"]
            'role'
        """
        return {
            "id": self.id,
            "tagName": self.tag_name,
            "attributes": dict(self.attributes),
            "contentMode": ContentMode(self.content_mode).value,
            "content": self.content,
            "children": [child.to_dict() for child in self.children],
            "enabled": self.enabled,
            "collapsed": self.collapsed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptNode":
        """
        Create a PromptNode from wire-format data.

        Unlike the transfer codec, which rejects any malformed field, this
        constructor is used for locally persisted state and fills missing
        optional fields with the factory defaults.

        Args:
            data: Dictionary containing node data

        Returns:
            New PromptNode instance (with its children)

        Raises:
            ValidationError: If data is not a dictionary or carries an unknown content mode
        """
        if not isinstance(data, dict):
            raise ValidationError("Node data must be a dictionary")

        node_id = data.get("id")
        if not isinstance(node_id, str) or not node_id:
            node_id = generate_id()
            logger.warning(f"Node without id found, assigned {node_id}")

        try:
            content_mode = ContentMode(data.get("contentMode", ContentMode.PLAIN.value))
        except ValueError:
            raise ValidationError(f"Unknown content mode: {data.get('contentMode')!r}")

        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise ValidationError(f"Attributes of node {node_id} must be a dictionary")

        children = data.get("children") or []
        if not isinstance(children, list):
            raise ValidationError(f"Children of node {node_id} must be a list")

        return cls(
            id=node_id,
            tag_name=str(data.get("tagName", DEFAULT_TAG_NAME)),
            attributes={str(key): str(value) for key, value in attributes.items()},
            content_mode=content_mode,
            content=str(data.get("content", "")),
            children=[cls.from_dict(child) for child in children],
            enabled=bool(data.get("enabled", True)),
            collapsed=bool(data.get("collapsed", False)),
        )

    def __repr__(self) -> str:
        """String representation for debugging"""
        return (
            f"PromptNode(id='{self.id}', tag_name='{self.tag_name}', "
            f"children={len(self.children)}, enabled={self.enabled})"
        )


def create_node(id: Optional[str] = None,
                tag_name: str = DEFAULT_TAG_NAME,
                attributes: Optional[Dict[str, str]] = None,
                content_mode: ContentMode = ContentMode.PLAIN,
                content: str = "",
                children: Optional[List[PromptNode]] = None,
                enabled: bool = True,
                collapsed: bool = False) -> PromptNode:
    """
    Create a new node with a generated id and the standard defaults.

    Args:
        id: Explicit id; a fresh one is generated when omitted
        tag_name: XML tag name (defaults to "context")
        attributes: Attribute map (defaults to empty)
        content_mode: Content interpretation (defaults to Plain)
        content: Text content (defaults to empty)
        children: Child nodes (defaults to none)
        enabled: Whether the node takes part in exports
        collapsed: Whether the node's children are hidden in the tree view

    Returns:
        New PromptNode instance

    Example:
        >>> node = create_node(tag_name="role", content="You are terse.")
        >>> node.enabled, node.collapsed
        (True, False)
    """
    return PromptNode(
        id=id or generate_id(),
        tag_name=tag_name,
        attributes=dict(attributes or {}),
        content_mode=ContentMode(content_mode),
        content=content,
        children=list(children or []),
        enabled=enabled,
        collapsed=collapsed,
    )


def nodes_to_dicts(nodes: List[PromptNode]) -> List[Dict[str, Any]]:
    return [node.to_dict() for node in nodes]


def nodes_from_dicts(data: List[Dict[str, Any]]) -> List[PromptNode]:
    if not isinstance(data, list):
        raise ValidationError("Node list must be a list")
    return [PromptNode.from_dict(item) for item in data]
