"""
XML Serializer

Turns a document into indented XML text. Export is gated by validation: the
document is first synthesized (includes applied, disabled nodes pruned) and
any error-severity issue blocks serialization entirely.

Serialization rules:
- Nodes with children: open tag, children one level deeper, close tag
- Childless nodes with blank content: self-closing element
- RawXML content: emitted verbatim, line by line, one level deeper
- Plain/Markdown content: a CDATA section; literal "]]>" is split across two
  adjacent sections
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from ..core.document import PromptDocument, WorkspaceSettings
from ..core.includes import GlobalInclude, apply_includes
from ..core.node import ContentMode, PromptNode
from ..core.tree import prune_disabled_nodes
from ..core.validation import (
    ISSUE_ERROR,
    ValidationIssue,
    validate_node_tree,
    validate_raw_xml_nodes,
    validate_root_tag_name,
)

logger = logging.getLogger(__name__)

INDENT = "  "


@dataclass
class XmlPreviewResult:
    xml: str
    can_export: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "xml": self.xml,
            "canExport": self.can_export,
            "issues": [issue.to_dict() for issue in self.issues],
        }


def escape_xml_attribute(value: str) -> str:
    """Escape &, <, > and double quotes for use inside a double-quoted attribute"""
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def to_safe_cdata(content: str) -> str:
    """
    Wrap content in a CDATA section.

    Example:
        >>> to_safe_cdata("a]]>b")
        '<![CDATA[a]]]]><![CDATA[>b]]>'
    """
    return f"<![CDATA[{content.replace(']]>', ']]]]><![CDATA[>')}]]>"


def serialize_attributes(attributes: Dict[str, str]) -> str:
    return " ".join(f'{key}="{escape_xml_attribute(value)}"' for key, value in attributes.items())


def _raw_xml_lines(content: str, level: int) -> List[str]:
    if not content.strip():
        return []
    return [f"{INDENT * level}{line}" for line in content.split("\n")]


def serialize_node(node: PromptNode, level: int = 0) -> List[str]:
    """
    Serialize one node and its subtree to a list of output lines.

    Args:
        node: Node to serialize
        level: Indentation depth (two spaces per level)

    Returns:
        Output lines without trailing newlines
    """
    attrs = serialize_attributes(node.attributes)
    open_tag = f"<{node.tag_name} {attrs}>" if attrs else f"<{node.tag_name}>"
    close_tag = f"</{node.tag_name}>"
    indent = INDENT * level

    if node.children:
        lines = [f"{indent}{open_tag}"]
        for child in node.children:
            lines.extend(serialize_node(child, level + 1))
        lines.append(f"{indent}{close_tag}")
        return lines

    if not node.content.strip():
        if not attrs:
            return [f"{indent}<{node.tag_name} />"]
        return [f"{indent}<{node.tag_name} {attrs} />"]

    if node.content_mode == ContentMode.RAW_XML:
        return [
            f"{indent}{open_tag}",
            *_raw_xml_lines(node.content, level + 1),
            f"{indent}{close_tag}",
        ]

    return [f"{indent}{open_tag}{to_safe_cdata(node.content)}{close_tag}"]


def build_xml_body(nodes: List[PromptNode]) -> str:
    lines: List[str] = []
    for node in nodes:
        lines.extend(serialize_node(node, 0))
    return "\n".join(lines)


def build_xml_preview(document: PromptDocument,
                      includes_by_id: Mapping[str, GlobalInclude],
                      settings: WorkspaceSettings) -> XmlPreviewResult:
    """
    Synthesize, validate and serialize a document to XML.

    Args:
        document: Document to render
        includes_by_id: Known includes (resolved through document.global_include_ids)
        settings: Workspace settings; raw_xml_strict_mode enables the RawXML parse check

    Returns:
        XmlPreviewResult; xml is empty and can_export False when any error exists

    Example:
        >>> doc = PromptDocument(id="d", name="n", root_tag_enabled=False,
        ...                      nodes=[create_node(tag_name="role", content="hi")])
        >>> build_xml_preview(doc, {}, WorkspaceSettings()).xml
        '<role><![CDATA[hi]]></role>'
    """
    with_includes = apply_includes(document.nodes, document.global_include_ids, includes_by_id)
    enabled_nodes = prune_disabled_nodes(with_includes)

    issues = validate_node_tree(enabled_nodes)
    issues.extend(validate_root_tag_name(document.root_tag_enabled, document.root_tag_name))
    if settings.raw_xml_strict_mode:
        issues.extend(validate_raw_xml_nodes(enabled_nodes))

    if any(issue.type == ISSUE_ERROR for issue in issues):
        logger.debug(f"XML export of document {document.id} blocked by {len(issues)} issue(s)")
        return XmlPreviewResult(xml="", can_export=False, issues=issues)

    body = build_xml_body(enabled_nodes)

    if not document.root_tag_enabled:
        return XmlPreviewResult(xml=body, can_export=True, issues=issues)

    wrapped_body = "".join(f"{INDENT}{line}\n" for line in body.split("\n")) if body else ""
    root = document.root_tag_name
    return XmlPreviewResult(xml=f"<{root}>\n{wrapped_body}</{root}>", can_export=True, issues=issues)
