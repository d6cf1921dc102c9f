"""
Unit tests for global includes and the include engine.
"""

import pytest

from prompt_stack.core.includes import (
    GlobalInclude,
    InsertionPosition,
    InsertionRule,
    apply_includes,
    apply_single_include,
    coerce_int,
    create_include,
    resolve_includes,
)
from prompt_stack.core.node import ValidationError, create_node
from prompt_stack.core.tree import find_node_by_id, iter_nodes
from prompt_stack.core.validation import find_duplicate_node_ids


def tags(nodes):
    return [node.tag_name for node in nodes]


def include_at(position, target="", tag_name="inc", include_id="i"):
    return GlobalInclude(
        id=include_id,
        name=include_id,
        nodes=[create_node(id=f"{include_id}-node", tag_name=tag_name)],
        insertion=InsertionRule(position, target),
    )


class TestGlobalInclude:
    """Test GlobalInclude data class and factory."""

    def test_create_include_defaults(self):
        include = create_include()

        assert include.id
        assert include.name == "New Include"
        assert include.insertion.position == InsertionPosition.TOP
        assert tags(include.nodes) == ["guideline"]
        assert include.enabled_by_default is True
        assert include.created_at == include.updated_at

    def test_create_include_disabled_by_default(self):
        assert create_include("Opt-in", enabled_by_default=False).enabled_by_default is False

    def test_round_trip_wire_format(self, step_include):
        data = step_include.to_dict()

        assert data["insertion"] == {"position": "AFTER_TAG", "targetTagName": "step"}
        assert GlobalInclude.from_dict(data) == step_include

    def test_from_dict_requires_id(self):
        with pytest.raises(ValidationError):
            GlobalInclude.from_dict({"name": "No id"})

    def test_from_dict_rejects_unknown_position(self):
        with pytest.raises(ValidationError):
            GlobalInclude.from_dict({"id": "x", "insertion": {"position": "MIDDLE"}})

    def test_coerce_int(self):
        assert coerce_int(12.0, 0) == 12
        assert coerce_int(float("inf"), 7) == 7
        assert coerce_int("12", 7) == 7
        assert coerce_int(True, 7) == 7


class TestApplySingleInclude:
    """Test each insertion position on its own."""

    def test_top(self, sample_tree):
        result = apply_single_include(sample_tree, include_at(InsertionPosition.TOP))
        assert tags(result) == ["inc", "role", "task"]

    def test_bottom(self, sample_tree):
        result = apply_single_include(sample_tree, include_at(InsertionPosition.BOTTOM))
        assert tags(result) == ["role", "task", "inc"]

    def test_before_every_matching_tag(self, sample_tree):
        result = apply_single_include(sample_tree, include_at(InsertionPosition.BEFORE_TAG, "step"))
        task = result[1]
        assert tags(task.children) == ["inc", "step", "inc", "step"]

    def test_after_every_matching_tag(self, sample_tree):
        result = apply_single_include(sample_tree, include_at(InsertionPosition.AFTER_TAG, "step"))
        task = result[1]
        assert tags(task.children) == ["step", "inc", "step", "inc"]

    def test_inside_prepends_to_children(self, sample_tree):
        result = apply_single_include(sample_tree, include_at(InsertionPosition.INSIDE_TAG, "step"))
        task = result[1]

        assert tags(task.children[0].children) == ["inc"]
        assert tags(task.children[1].children) == ["inc", "detail"]

    def test_inside_does_not_rescan_below_match(self):
        tree = [create_node(tag_name="step", children=[create_node(tag_name="step")])]

        result = apply_single_include(tree, include_at(InsertionPosition.INSIDE_TAG, "step"))

        # Only the outer match receives the fragment.
        assert tags(result[0].children) == ["inc", "step"]
        assert result[0].children[1].children == []

    def test_no_matching_tag_leaves_structure(self, sample_tree):
        result = apply_single_include(sample_tree, include_at(InsertionPosition.AFTER_TAG, "missing"))
        assert [node.id for node in iter_nodes(result)] == [node.id for node in iter_nodes(sample_tree)]

    def test_matches_nested_tags(self, sample_tree):
        result = apply_single_include(sample_tree, include_at(InsertionPosition.AFTER_TAG, "detail"))
        step = find_node_by_id(result, "s2")
        assert tags(step.children) == ["detail", "inc"]


class TestApplyIncludes:
    """Test the include fold."""

    def test_never_mutates_input(self, sample_tree, top_include, step_include):
        before = [node.to_dict() for node in sample_tree]
        includes = {top_include.id: top_include, step_include.id: step_include}

        result = apply_includes(sample_tree, [top_include.id, step_include.id], includes)

        assert [node.to_dict() for node in sample_tree] == before
        assert result is not sample_tree

    def test_result_not_reference_equal_without_includes(self, sample_tree):
        result = apply_includes(sample_tree, [], {})

        assert result is not sample_tree
        assert result[1] is not sample_tree[1]
        assert [node.to_dict() for node in result] == [node.to_dict() for node in sample_tree]

    def test_unknown_ids_are_skipped(self, sample_tree, top_include):
        result = apply_includes(sample_tree, ["missing", top_include.id], {top_include.id: top_include})
        assert tags(result) == ["preamble", "role", "task"]

    def test_order_is_significant(self):
        tree = [create_node(tag_name="task")]
        first = include_at(InsertionPosition.TOP, tag_name="first", include_id="a")
        second = include_at(InsertionPosition.TOP, tag_name="second", include_id="b")
        includes = {"a": first, "b": second}

        assert tags(apply_includes(tree, ["a", "b"], includes)) == ["second", "first", "task"]
        assert tags(apply_includes(tree, ["b", "a"], includes)) == ["first", "second", "task"]

    def test_later_include_sees_earlier_injection(self):
        tree = [create_node(tag_name="task")]
        wrapper = include_at(InsertionPosition.TOP, tag_name="section", include_id="a")
        filler = include_at(InsertionPosition.INSIDE_TAG, "section", tag_name="filler", include_id="b")

        result = apply_includes(tree, ["a", "b"], {"a": wrapper, "b": filler})

        assert tags(result) == ["section", "task"]
        assert tags(result[0].children) == ["filler"]

    def test_reused_ids_by_default(self, sample_tree, step_include):
        result = apply_includes(sample_tree, [step_include.id], {step_include.id: step_include})

        # "step" matches twice, so the fragment id appears twice.
        assert find_duplicate_node_ids(result) == ["n"]

    def test_fresh_ids_give_unique_ids(self, sample_tree, step_include):
        result = apply_includes(sample_tree, [step_include.id], {step_include.id: step_include}, fresh_ids=True)

        assert find_duplicate_node_ids(result) == []
        assert "n" not in [node.id for node in iter_nodes(result)]

    def test_include_nodes_are_copied(self, sample_tree, top_include):
        result = apply_includes(sample_tree, [top_include.id], {top_include.id: top_include})

        assert result[0] is not top_include.nodes[0]
        assert result[0].id == top_include.nodes[0].id


class TestResolveIncludes:
    """Test include lookup."""

    def test_resolves_in_order_and_drops_unknown(self, top_include, step_include):
        includes = {top_include.id: top_include, step_include.id: step_include}

        resolved = resolve_includes([step_include.id, "missing", top_include.id], includes)

        assert resolved == [step_include, top_include]
