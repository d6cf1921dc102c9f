"""
Unit tests for the Markdown and JSON renderers.
"""

import json

from prompt_stack.core.document import PromptDocument, WorkspaceSettings
from prompt_stack.core.node import create_node
from prompt_stack.export.json_view import JsonViewOptions, build_json_export, to_json_view
from prompt_stack.export.markdown_view import render_markdown_node, to_markdown_view


def chain(depth):
    """A single path of nested nodes tagged level0 .. level<depth-1>, content on the leaf"""
    node = create_node(tag_name=f"level{depth - 1}", content="leaf")
    for level in range(depth - 2, -1, -1):
        node = create_node(tag_name=f"level{level}", children=[node])
    return node


class TestMarkdownView:
    """Test Markdown rendering."""

    def test_sample_document(self, sample_document):
        markdown = to_markdown_view(sample_document, {})

        assert markdown == (
            "## role\n"
            "You are terse.\n"
            "\n"
            "## task\n"
            "### step\n"
            "First\n"
            "\n"
            "### step\n"
            "#### detail\n"
            "Deep\n"
        )

    def test_parent_content_is_ignored(self):
        node = create_node(tag_name="task", content="hidden", children=[create_node(tag_name="step", content="shown")])

        lines = render_markdown_node(node)

        assert "hidden" not in lines
        assert "shown" in lines

    def test_parent_with_only_disabled_children_shows_content(self):
        node = create_node(tag_name="task", content="  visible  ",
                           children=[create_node(tag_name="step", enabled=False)])

        assert render_markdown_node(node) == ["## task", "visible", ""]

    def test_heading_level_capped_then_bullets(self):
        lines = [line for line in render_markdown_node(chain(7)) if line]

        assert lines == [
            "## level0",
            "### level1",
            "#### level2",
            "##### level3",
            "###### level4",
            "- level5",
            "  - level6",
            "leaf",
        ]

    def test_disabled_nodes_are_pruned(self, sample_document):
        sample_document.nodes[0].enabled = False

        markdown = to_markdown_view(sample_document, {})

        assert "role" not in markdown
        assert markdown.startswith("## task\n")

    def test_includes_are_applied(self, sample_document, top_include):
        sample_document.global_include_ids = [top_include.id]

        markdown = to_markdown_view(sample_document, {top_include.id: top_include})

        assert markdown.startswith("## preamble\nBe kind.\n")

    def test_empty_document(self):
        document = PromptDocument(id="d", name="Empty")
        assert to_markdown_view(document, {}) == "\n"

    def test_invalid_names_do_not_block(self):
        document = PromptDocument(id="d", name="Bad", nodes=[create_node(tag_name="1bad", content="x")])
        assert to_markdown_view(document, {}) == "## 1bad\nx\n"


class TestJsonView:
    """Test JSON rendering and its optional sections."""

    def test_document_only(self, sample_document, top_include, settings):
        sample_document.global_include_ids = [top_include.id]

        text = to_json_view(sample_document, {top_include.id: top_include}, settings, JsonViewOptions())
        data = json.loads(text)

        assert list(data) == ["document"]
        assert "includes" not in data
        assert "settings" not in data
        assert data["document"] == sample_document.to_dict()

    def test_pretty_printed_with_trailing_newline(self, sample_document, settings):
        text = to_json_view(sample_document, {}, settings, JsonViewOptions())

        assert text.endswith("}\n")
        assert text.startswith('{\n  "document": {\n    "id": "doc-1"')

    def test_includes_resolved_in_document_order(self, sample_document, top_include, step_include, settings):
        sample_document.global_include_ids = [step_include.id, "missing", top_include.id]
        includes = {top_include.id: top_include, step_include.id: step_include}

        output = build_json_export(sample_document, includes, settings, JsonViewOptions(include_includes=True))

        assert [include["id"] for include in output["includes"]] == [step_include.id, top_include.id]
        assert "settings" not in output

    def test_settings_flag_is_independent(self, sample_document, settings):
        output = build_json_export(sample_document, {}, settings, JsonViewOptions(include_settings=True))

        assert "includes" not in output
        assert output["settings"] == settings.to_dict()

    def test_non_ascii_is_kept(self, settings):
        document = PromptDocument(id="d", name="프롬프트")
        assert "프롬프트" in to_json_view(document, {}, settings, JsonViewOptions())

    def test_settings_wire_format(self):
        settings = WorkspaceSettings(language="ko", raw_xml_strict_mode=True)

        assert settings.to_dict() == {
            "language": "ko",
            "brandColor": "#00E676",
            "confirmBeforeDelete": True,
            "showMarkdownPreview": True,
            "rawXmlStrictMode": True,
            "defaultRootTagEnabled": True,
            "defaultRootTagName": "prompt",
        }
