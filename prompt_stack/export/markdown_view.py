"""
Markdown renderer.

Each node becomes a heading at level depth + 2. Past level 6 the depth folds
into nested bullets. A node with enabled children renders only its children;
a childless node renders its trimmed content as a paragraph. Markdown export
is never gated by validation.
"""

from typing import List, Mapping

from ..core.document import PromptDocument
from ..core.includes import GlobalInclude, apply_includes
from ..core.node import PromptNode
from ..core.tree import prune_disabled_nodes

MAX_HEADING_LEVEL = 6


def render_markdown_node(node: PromptNode, depth: int = 0) -> List[str]:
    lines: List[str] = []
    heading_level = depth + 2

    if heading_level <= MAX_HEADING_LEVEL:
        lines.append(f"{'#' * heading_level} {node.tag_name}")
    else:
        nested_padding = "  " * (heading_level - MAX_HEADING_LEVEL - 1)
        lines.append(f"{nested_padding}- {node.tag_name}")

    enabled_children = [child for child in node.children if child.enabled]
    if enabled_children:
        for child in enabled_children:
            lines.extend(render_markdown_node(child, depth + 1))
    elif node.content.strip():
        lines.append(node.content.strip())

    lines.append("")
    return lines


def to_markdown_view(document: PromptDocument,
                     includes_by_id: Mapping[str, GlobalInclude]) -> str:
    """
    Render a document (includes applied, disabled nodes pruned) as Markdown.

    Returns:
        Markdown text ending with exactly one newline
    """
    with_includes = apply_includes(document.nodes, document.global_include_ids, includes_by_id)
    enabled_nodes = prune_disabled_nodes(with_includes)

    lines: List[str] = []
    for node in enabled_nodes:
        lines.extend(render_markdown_node(node, 0))

    return "\n".join(lines).rstrip() + "\n"
