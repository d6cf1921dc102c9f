"""
Prompt Tree Operations

This module provides the pure structural operations over a list of root-level
PromptNodes. Every function is total: it never raises for an unknown id and
never mutates its input. Unaffected subtrees are returned by reference, so
only the path from the root to a changed node is rebuilt.

Key Features:
- Node lookup, update, removal, child insertion and duplication
- Cycle-safe drag-and-drop relocation (before / inside / after a target)
- Visibility queries honouring collapse state and text search
- Pruning of disabled subtrees for export
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterator, List, Optional, Set, Tuple

from .node import PromptNode, generate_id

logger = logging.getLogger(__name__)

NodeUpdater = Callable[[PromptNode], PromptNode]


class DropPosition(str, Enum):
    """Where a dragged node lands relative to its drop target"""
    BEFORE = "before"
    INSIDE = "inside"
    AFTER = "after"


@dataclass(frozen=True)
class DropTarget:
    """Parsed drop target: a node id plus a drop position"""
    node_id: str
    position: DropPosition


# Cloning

def clone_node_with_new_ids(node: PromptNode) -> PromptNode:
    """
    Recursively clone a node, assigning a fresh id to every node in the subtree.

    Args:
        node: Node to clone

    Returns:
        Independent copy of the subtree with new ids
    """
    return replace(
        node,
        id=generate_id(),
        attributes=dict(node.attributes),
        children=clone_nodes_with_new_ids(node.children),
    )


def clone_nodes_with_new_ids(nodes: List[PromptNode]) -> List[PromptNode]:
    return [clone_node_with_new_ids(node) for node in nodes]


def deep_clone_nodes(nodes: List[PromptNode]) -> List[PromptNode]:
    """
    Structural deep copy that preserves ids.

    Used to snapshot a tree (for example before injecting includes) so the
    snapshot can be rebuilt freely without touching the original.
    """
    return [
        replace(node, attributes=dict(node.attributes), children=deep_clone_nodes(node.children))
        for node in nodes
    ]


# Traversal

def iter_nodes(nodes: List[PromptNode]) -> Iterator[PromptNode]:
    """Yield every node of the tree in pre-order"""
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)


def count_nodes(nodes: List[PromptNode]) -> int:
    return sum(1 for _ in iter_nodes(nodes))


def find_node_by_id(nodes: List[PromptNode], node_id: str) -> Optional[PromptNode]:
    """
    Depth-first search for a node by id.

    Args:
        nodes: Root-level nodes to search
        node_id: Id to look for

    Returns:
        First matching node in pre-order, or None if not found
    """
    for node in nodes:
        if node.id == node_id:
            return node

        child_hit = find_node_by_id(node.children, node_id)
        if child_hit is not None:
            return child_hit

    return None


def flatten_visible_node_ids(nodes: List[PromptNode]) -> List[str]:
    """
    List node ids in pre-order without descending into collapsed nodes.

    This is the canonical keyboard-navigation order of the tree view.

    Example:
        >>> tree = [create_node(id="a", collapsed=True, children=[create_node(id="b")])]
        >>> flatten_visible_node_ids(tree)
        ['a']
    """
    ids: List[str] = []

    def walk(node_list: List[PromptNode]) -> None:
        for node in node_list:
            ids.append(node.id)
            if not node.collapsed:
                walk(node.children)

    walk(nodes)
    return ids


def build_node_visibility_set(nodes: List[PromptNode], query: str) -> Set[str]:
    """
    Compute the ids visible in the tree view for a search query.

    Matching is a case-insensitive substring test against the tag name or the
    content. A node is visible when it matches itself or when any descendant
    matches, so ancestors of a match are pulled into view. An empty (or blank)
    query yields exactly the ids of flatten_visible_node_ids().

    Args:
        nodes: Root-level nodes
        query: Search text

    Returns:
        Set of visible node ids
    """
    normalized_query = query.strip().lower()
    if not normalized_query:
        return set(flatten_visible_node_ids(nodes))

    visible: Set[str] = set()

    def walk(node: PromptNode) -> bool:
        own_match = (
            normalized_query in node.tag_name.lower()
            or normalized_query in node.content.lower()
        )

        child_match = False
        for child in node.children:
            if walk(child):
                child_match = True

        if own_match or child_match:
            visible.add(node.id)
            return True

        return False

    for node in nodes:
        walk(node)

    return visible


# Mutations (all return a new tree)

def update_node_in_tree(nodes: List[PromptNode], node_id: str,
                        updater: NodeUpdater) -> List[PromptNode]:
    """
    Replace the node with the given id by updater(node).

    Only the path from the root to the target is rebuilt; sibling subtrees are
    returned by reference. When the id is absent the input list itself is
    returned.

    Args:
        nodes: Root-level nodes
        node_id: Id of the node to update
        updater: Function producing the replacement node

    Returns:
        New root-level list (or the input list if nothing matched)
    """
    changed = False
    result: List[PromptNode] = []

    for node in nodes:
        if node.id == node_id:
            result.append(updater(node))
            changed = True
            continue

        if not node.children:
            result.append(node)
            continue

        next_children = update_node_in_tree(node.children, node_id, updater)
        if next_children is node.children:
            result.append(node)
        else:
            result.append(replace(node, children=next_children))
            changed = True

    return result if changed else nodes


def remove_node_from_tree(nodes: List[PromptNode], node_id: str) -> List[PromptNode]:
    """
    Remove the node with the given id, at any depth, along with its subtree.
    """
    changed = False
    result: List[PromptNode] = []

    for node in nodes:
        if node.id == node_id:
            changed = True
            continue

        next_children = remove_node_from_tree(node.children, node_id)
        if next_children is node.children:
            result.append(node)
        else:
            result.append(replace(node, children=next_children))
            changed = True

    return result if changed else nodes


def add_child_node_in_tree(nodes: List[PromptNode], parent_id: str,
                           child: PromptNode) -> List[PromptNode]:
    """
    Append child as the last child of parent_id and expand the parent.

    The parent's collapsed flag is forced to False so the new child is visible.
    """
    return update_node_in_tree(
        nodes,
        parent_id,
        lambda parent: replace(parent, collapsed=False, children=[*parent.children, child]),
    )


def duplicate_node_in_tree(nodes: List[PromptNode], node_id: str) -> List[PromptNode]:
    """
    Insert a fresh-id clone of the node immediately after the original.

    Args:
        nodes: Root-level nodes
        node_id: Id of the node to duplicate

    Returns:
        New tree containing the duplicate at the same level as the original
    """
    for index, node in enumerate(nodes):
        if node.id == node_id:
            duplicate = clone_node_with_new_ids(node)
            return [*nodes[:index + 1], duplicate, *nodes[index + 1:]]

    changed = False
    result: List[PromptNode] = []
    for node in nodes:
        next_children = duplicate_node_in_tree(node.children, node_id) if node.children else node.children
        if next_children is node.children:
            result.append(node)
        else:
            result.append(replace(node, children=next_children))
            changed = True

    return result if changed else nodes


def prune_disabled_nodes(nodes: List[PromptNode]) -> List[PromptNode]:
    """
    Drop every disabled node together with its entire subtree.

    Enabled descendants of a disabled node are dropped as well. The operation
    is idempotent.
    """
    changed = False
    result: List[PromptNode] = []

    for node in nodes:
        if not node.enabled:
            changed = True
            continue

        next_children = prune_disabled_nodes(node.children)
        if next_children is node.children:
            result.append(node)
        else:
            result.append(replace(node, children=next_children))
            changed = True

    return result if changed else nodes


def reorder_nodes_within_parent(nodes: List[PromptNode], active_id: str,
                                over_id: str) -> List[PromptNode]:
    """
    Move active_id to the index of over_id when both share the same parent list.

    If the two nodes are not siblings the tree is returned unchanged.
    """
    ids = [node.id for node in nodes]
    if active_id in ids and over_id in ids:
        active_index = ids.index(active_id)
        over_index = ids.index(over_id)
        reordered = list(nodes)
        reordered.insert(over_index, reordered.pop(active_index))
        return reordered

    for index, node in enumerate(nodes):
        if not node.children:
            continue
        next_children = reorder_nodes_within_parent(node.children, active_id, over_id)
        if next_children is not node.children:
            return [*nodes[:index], replace(node, children=next_children), *nodes[index + 1:]]

    return nodes


# Drag and drop relocation

def _detach_node(nodes: List[PromptNode], node_id: str) -> Tuple[List[PromptNode], Optional[PromptNode]]:
    """Remove the first node with node_id and return (new_tree, detached_node)"""
    for index, node in enumerate(nodes):
        if node.id == node_id:
            return [*nodes[:index], *nodes[index + 1:]], node

    for index, node in enumerate(nodes):
        if not node.children:
            continue
        next_children, detached = _detach_node(node.children, node_id)
        if detached is not None:
            return [*nodes[:index], replace(node, children=next_children), *nodes[index + 1:]], detached

    return nodes, None


def _insert_relative(nodes: List[PromptNode], target_id: str, moving: PromptNode,
                     position: DropPosition) -> Tuple[List[PromptNode], bool]:
    """Insert moving next to (or inside) target_id; returns (new_tree, inserted)"""
    for index, node in enumerate(nodes):
        if node.id != target_id:
            continue
        if position is DropPosition.BEFORE:
            return [*nodes[:index], moving, *nodes[index:]], True
        if position is DropPosition.AFTER:
            return [*nodes[:index + 1], moving, *nodes[index + 1:]], True
        expanded = replace(node, collapsed=False, children=[*node.children, moving])
        return [*nodes[:index], expanded, *nodes[index + 1:]], True

    for index, node in enumerate(nodes):
        if not node.children:
            continue
        next_children, inserted = _insert_relative(node.children, target_id, moving, position)
        if inserted:
            return [*nodes[:index], replace(node, children=next_children), *nodes[index + 1:]], True

    return nodes, False


def move_node_by_drop(nodes: List[PromptNode], active_id: str, target_id: str,
                      position) -> List[PromptNode]:
    """
    Relocate a node (with its subtree) relative to a drop target.

    The move is rejected, returning the input unchanged, when active_id equals
    target_id or when the target is a descendant of the active node: a node can
    never become its own descendant. Unknown ids are no-ops as well.

    Args:
        nodes: Root-level nodes
        active_id: Id of the dragged node
        target_id: Id of the node it is dropped on
        position: "before" / "after" to become a sibling of the target, or
                  "inside" to become the target's last child (the target is
                  expanded)

    Returns:
        New tree with the node relocated

    Example:
        >>> tree = [create_node(id="a"), create_node(id="b")]
        >>> [n.id for n in move_node_by_drop(tree, "b", "a", "before")]
        ['b', 'a']
    """
    try:
        drop_position = DropPosition(position)
    except ValueError:
        logger.debug(f"Ignoring drop with unknown position {position!r}")
        return nodes

    if active_id == target_id:
        return nodes

    active = find_node_by_id(nodes, active_id)
    if active is None or find_node_by_id(nodes, target_id) is None:
        return nodes

    if find_node_by_id(active.children, target_id) is not None:
        logger.debug(f"Rejected drop of {active_id} into its own descendant {target_id}")
        return nodes

    detached_tree, moving = _detach_node(nodes, active_id)
    if moving is None:
        return nodes

    inserted_tree, inserted = _insert_relative(detached_tree, target_id, moving, drop_position)
    if not inserted:
        return [*detached_tree, moving]

    return inserted_tree


def move_node_to_root_end(nodes: List[PromptNode], active_id: str) -> List[PromptNode]:
    """Detach a node (with its subtree) and append it at the end of the root level"""
    detached_tree, moving = _detach_node(nodes, active_id)
    if moving is None:
        return nodes
    return [*detached_tree, moving]


def build_node_drop_id(node_id: str, position) -> str:
    """Encode a drop target as 'node:<id>:<position>'"""
    return f"node:{node_id}:{DropPosition(position).value}"


def parse_drop_target(drop_id: Optional[str]) -> Optional[DropTarget]:
    """
    Decode a drop id produced by build_node_drop_id().

    Returns:
        DropTarget, or None for anything that is not a well-formed node drop id
    """
    if not drop_id:
        return None

    parts = drop_id.split(":")
    if len(parts) != 3 or parts[0] != "node":
        return None

    node_id, position = parts[1], parts[2]
    if not node_id or not position:
        return None

    try:
        return DropTarget(node_id=node_id, position=DropPosition(position))
    except ValueError:
        return None
