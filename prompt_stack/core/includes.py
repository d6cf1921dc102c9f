"""
Global Includes and the Include Engine

A GlobalInclude is a reusable fragment of prompt nodes with a declarative
insertion rule. Documents reference includes by id only; the fragments are
merged into a synthesized copy of the document tree at preview/export time
and never into the stored tree itself.

Key Features:
- Insertion at the top or bottom of the root level
- Insertion before, after or inside every node with a given tag name
- Order-sensitive composition: includes are applied in the document's order
"""

import logging
import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .node import ContentMode, PromptNode, ValidationError, create_node, generate_id, nodes_from_dicts, nodes_to_dicts
from .tree import clone_nodes_with_new_ids, deep_clone_nodes

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current time as integer epoch milliseconds"""
    return int(time.time() * 1000)


def coerce_int(value: Any, default: int) -> int:
    """Convert a JSON number to int, falling back to default for non-finite or non-numeric values"""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    return int(value)


class InsertionPosition(str, Enum):
    """Where an include's fragment is placed in the document tree"""
    TOP = "TOP"
    BOTTOM = "BOTTOM"
    BEFORE_TAG = "BEFORE_TAG"
    AFTER_TAG = "AFTER_TAG"
    INSIDE_TAG = "INSIDE_TAG"


TAG_RELATIVE_POSITIONS = (
    InsertionPosition.BEFORE_TAG,
    InsertionPosition.AFTER_TAG,
    InsertionPosition.INSIDE_TAG,
)


@dataclass
class InsertionRule:
    """Insertion policy: a position plus the target tag for tag-relative positions"""
    position: InsertionPosition = InsertionPosition.TOP
    target_tag_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": InsertionPosition(self.position).value,
            "targetTagName": self.target_tag_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InsertionRule":
        if not isinstance(data, dict):
            raise ValidationError("Insertion rule must be a dictionary")
        try:
            position = InsertionPosition(data.get("position", InsertionPosition.TOP.value))
        except ValueError:
            raise ValidationError(f"Unknown insertion position: {data.get('position')!r}")
        return cls(position=position, target_tag_name=str(data.get("targetTagName", "")))


@dataclass
class GlobalInclude:
    """
    Reusable node fragment with an insertion rule.

    Includes are owned independently of any document; deleting one must also
    scrub its id from every document that references it.
    """
    id: str
    name: str
    description: str = ""
    nodes: List[PromptNode] = field(default_factory=list)
    insertion: InsertionRule = field(default_factory=InsertionRule)
    enabled_by_default: bool = True
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "nodes": nodes_to_dicts(self.nodes),
            "insertion": self.insertion.to_dict(),
            "enabledByDefault": self.enabled_by_default,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalInclude":
        """
        Create a GlobalInclude from wire-format data.

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValidationError("Include data must be a dictionary")

        include_id = data.get("id")
        if not isinstance(include_id, str) or not include_id:
            raise ValidationError("Missing required field: id")

        timestamp = now_ms()
        return cls(
            id=include_id,
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            nodes=nodes_from_dicts(data.get("nodes") or []),
            insertion=InsertionRule.from_dict(data.get("insertion") or {}),
            enabled_by_default=bool(data.get("enabledByDefault", True)),
            created_at=coerce_int(data.get("createdAt"), timestamp),
            updated_at=coerce_int(data.get("updatedAt"), timestamp),
        )


def create_include(name: str = "New Include", nodes: Optional[List[PromptNode]] = None,
                   insertion: Optional[InsertionRule] = None,
                   description: str = "",
                   enabled_by_default: bool = True) -> GlobalInclude:
    """
    Create a new include with a fresh id.

    By default the include is placed at the top of the document and holds a
    single "guideline" node.
    """
    if nodes is None:
        nodes = [create_node(tag_name="guideline", content_mode=ContentMode.PLAIN,
                             content="Always answer concisely.")]
    timestamp = now_ms()
    return GlobalInclude(
        id=generate_id(),
        name=name,
        description=description,
        nodes=nodes,
        insertion=insertion or InsertionRule(),
        enabled_by_default=enabled_by_default,
        created_at=timestamp,
        updated_at=timestamp,
    )


def _copy_fragment(include_nodes: List[PromptNode], fresh_ids: bool) -> List[PromptNode]:
    if fresh_ids:
        return clone_nodes_with_new_ids(include_nodes)
    return deep_clone_nodes(include_nodes)


def _insert_relative_to_tag(nodes: List[PromptNode], include_nodes: List[PromptNode],
                            target_tag_name: str, position: InsertionPosition,
                            fresh_ids: bool) -> List[PromptNode]:
    """Insert a copy of the fragment around (or inside) every node whose tag matches"""
    result: List[PromptNode] = []

    for node in nodes:
        is_target = node.tag_name == target_tag_name

        if is_target and position is InsertionPosition.BEFORE_TAG:
            result.extend(_copy_fragment(include_nodes, fresh_ids))

        if is_target and position is InsertionPosition.INSIDE_TAG:
            # Matches are not scanned again below the injected fragment.
            fragment = _copy_fragment(include_nodes, fresh_ids)
            result.append(replace(node, children=[*fragment, *node.children]))
            continue

        result.append(replace(
            node,
            children=_insert_relative_to_tag(node.children, include_nodes, target_tag_name, position, fresh_ids),
        ))

        if is_target and position is InsertionPosition.AFTER_TAG:
            result.extend(_copy_fragment(include_nodes, fresh_ids))

    return result


def apply_single_include(nodes: List[PromptNode], include: GlobalInclude,
                         fresh_ids: bool = False) -> List[PromptNode]:
    """
    Apply one include onto a tree and return the new tree.

    Args:
        nodes: Tree to inject into (already a private copy)
        include: Include to apply
        fresh_ids: Mint new ids for every injected node instead of reusing the include's ids

    Returns:
        Tree with the include's fragment injected
    """
    include_nodes = deep_clone_nodes(include.nodes)
    position = InsertionPosition(include.insertion.position)

    if position is InsertionPosition.TOP:
        return [*_copy_fragment(include_nodes, fresh_ids), *nodes]
    if position is InsertionPosition.BOTTOM:
        return [*nodes, *_copy_fragment(include_nodes, fresh_ids)]

    return _insert_relative_to_tag(nodes, include_nodes, include.insertion.target_tag_name, position, fresh_ids)


def apply_includes(nodes: List[PromptNode], include_ids: Sequence[str],
                   includes_by_id: Mapping[str, GlobalInclude],
                   fresh_ids: bool = False) -> List[PromptNode]:
    """
    Produce a synthesized copy of the tree with includes injected in order.

    The fold starts from a deep clone of nodes, so the original tree is never
    mutated and the result is never reference-equal to it. Ids missing from
    includes_by_id are skipped silently.

    By default injected fragments keep the ids stored in the include, so an
    include that matches several tags (or is listed twice) produces duplicate
    ids in the synthesized view. The view is transient and export-only; pass
    fresh_ids=True for a duplicate-free view.

    Args:
        nodes: Document root-level nodes
        include_ids: Include ids in injection order
        includes_by_id: Known includes
        fresh_ids: Assign a fresh id to every injected node

    Returns:
        New tree with all includes applied

    Example:
        >>> preamble = create_include(nodes=[create_node(tag_name="preamble")])
        >>> tree = apply_includes([create_node(tag_name="task")], [preamble.id], {preamble.id: preamble})
        >>> [n.tag_name for n in tree]
        ['preamble', 'task']
    """
    result = deep_clone_nodes(nodes)

    for include_id in include_ids:
        include = includes_by_id.get(include_id)
        if include is None:
            logger.debug(f"Skipping unknown include {include_id}")
            continue
        result = apply_single_include(result, include, fresh_ids=fresh_ids)

    return result


def resolve_includes(include_ids: Sequence[str],
                     includes_by_id: Mapping[str, GlobalInclude]) -> List[GlobalInclude]:
    """Look up includes by id in order, dropping unknown ids"""
    return [includes_by_id[include_id] for include_id in include_ids if include_id in includes_by_id]
