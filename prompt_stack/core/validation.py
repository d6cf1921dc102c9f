"""
Validation System for prompt-stack

This module provides the structural checks that gate XML export. Issues are
collected and returned, never raised, so callers can surface every problem at
once.

Key Features:
- XML name checking for tag names and attribute keys of every node
- Root tag name checking for documents that wrap their output
- Optional strict well-formedness checking of RawXML content
- Duplicate id detection for persisted trees
"""

import logging
import re
import xml.etree.ElementTree as ET
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

from .node import ContentMode, PromptNode

logger = logging.getLogger(__name__)

XML_NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_:\-.]*")

ISSUE_ERROR = "error"
ISSUE_WARNING = "warning"


@dataclass
class ValidationIssue:
    """A single validation finding, optionally tied to a node"""
    type: str
    message: str
    node_id: Optional[str] = None

    def to_dict(self) -> dict:
        result = {"type": self.type, "message": self.message}
        if self.node_id is not None:
            result["nodeId"] = self.node_id
        return result


@dataclass
class ValidationResult:
    """
    Result container for validation operations.

    Provides structured feedback about validation success/failure with the
    full list of issues. Any error-severity issue makes the result invalid.
    """
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(issue.type == ISSUE_ERROR for issue in self.issues)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.type == ISSUE_ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.type == ISSUE_WARNING]

    def add_error(self, message: str, node_id: Optional[str] = None) -> None:
        """Add an error issue and mark result as invalid"""
        self.issues.append(ValidationIssue(ISSUE_ERROR, message, node_id))

    def add_warning(self, message: str, node_id: Optional[str] = None) -> None:
        self.issues.append(ValidationIssue(ISSUE_WARNING, message, node_id))

    def extend(self, issues: List[ValidationIssue]) -> None:
        self.issues.extend(issues)

    def merge(self, other: "ValidationResult") -> None:
        """Merge another validation result into this one"""
        self.issues.extend(other.issues)


def is_valid_xml_name(value: str) -> bool:
    """
    Check a tag name or attribute key against the exportable XML name pattern.

    Example:
        >>> is_valid_xml_name("output_format"), is_valid_xml_name("1bad")
        (True, False)
    """
    return isinstance(value, str) and XML_NAME_PATTERN.fullmatch(value) is not None


def validate_node_tree(nodes: List[PromptNode]) -> List[ValidationIssue]:
    """
    Check every tag name and attribute key of the tree, depth-first.

    Args:
        nodes: Root-level nodes (usually already pruned of disabled nodes)

    Returns:
        One error issue, carrying the node id, per invalid name
    """
    issues: List[ValidationIssue] = []

    def walk(node_list: List[PromptNode]) -> None:
        for node in node_list:
            if not is_valid_xml_name(node.tag_name):
                issues.append(ValidationIssue(ISSUE_ERROR, f'Invalid tag name: "{node.tag_name}"', node.id))

            for key in node.attributes:
                if not is_valid_xml_name(key):
                    issues.append(ValidationIssue(ISSUE_ERROR, f'Invalid attribute key: "{key}"', node.id))

            walk(node.children)

    walk(nodes)
    return issues


def validate_root_tag_name(root_tag_enabled: bool, root_tag_name: str) -> List[ValidationIssue]:
    """Check the wrapping root tag of a document, if the document uses one"""
    if root_tag_enabled and not is_valid_xml_name(root_tag_name):
        return [ValidationIssue(ISSUE_ERROR, f'Invalid root tag name: "{root_tag_name}"')]
    return []


def is_well_formed_fragment(content: str) -> bool:
    """Parse content wrapped in a synthetic root element"""
    try:
        ET.fromstring(f"<root>{content}</root>")
    except ET.ParseError:
        return False
    return True


def validate_raw_xml_nodes(nodes: List[PromptNode]) -> List[ValidationIssue]:
    """
    Strict-mode check: every non-blank RawXML node must hold well-formed XML.

    Returns:
        One error issue per node whose content fails to parse
    """
    issues: List[ValidationIssue] = []

    def walk(node_list: List[PromptNode]) -> None:
        for node in node_list:
            if node.content_mode == ContentMode.RAW_XML and node.content.strip():
                if not is_well_formed_fragment(node.content):
                    issues.append(ValidationIssue(
                        ISSUE_ERROR, f"Invalid RawXML content in <{node.tag_name}>", node.id,
                    ))
            walk(node.children)

    walk(nodes)
    return issues


def find_duplicate_node_ids(nodes: List[PromptNode]) -> List[str]:
    """
    Return the ids that occur more than once in the tree, in first-seen order.

    Stored trees must have unique ids; synthesized export views may not.
    """
    counts = Counter()
    order: List[str] = []

    def walk(node_list: List[PromptNode]) -> None:
        for node in node_list:
            if node.id not in counts:
                order.append(node.id)
            counts[node.id] += 1
            walk(node.children)

    walk(nodes)
    return [node_id for node_id in order if counts[node_id] > 1]


def validate_tree_integrity(nodes: List[PromptNode]) -> ValidationResult:
    """
    Comprehensive check of a stored tree: XML names plus id uniqueness.

    Duplicate ids are reported as warnings since they do not block export.
    """
    result = ValidationResult()
    result.extend(validate_node_tree(nodes))
    for node_id in find_duplicate_node_ids(nodes):
        result.add_warning(f"Duplicate node id: {node_id}", node_id)
    return result
