"""
Unit tests for the document transfer codec.

This module tests bundle creation, schema validation of untrusted bundles
with its closed set of rejection reasons, and import preparation.
"""

import json

import pytest

from prompt_stack.core.document import PromptDocument, WorkspaceSettings
from prompt_stack.core.tree import iter_nodes
from prompt_stack.export.transfer import (
    INVALID_DOCUMENT,
    INVALID_INCLUDES,
    INVALID_JSON,
    INVALID_SETTINGS,
    TRANSFER_VERSION,
    DocumentTransferBundle,
    DocumentTransferOptions,
    create_document_transfer_bundle,
    parse_document_transfer_bundle,
    prepare_document_import,
    serialize_document_transfer_bundle,
)


@pytest.fixture
def includes(top_include, step_include):
    return {top_include.id: top_include, step_include.id: step_include}


@pytest.fixture
def linked_document(sample_document, top_include, step_include):
    sample_document.global_include_ids = [top_include.id, step_include.id]
    return sample_document


def bundle_data(document, **extra):
    data = {"version": 1, "exportedAt": 1700000000000, "document": document.to_dict()}
    data.update(extra)
    return data


class TestCreateBundle:
    """Test bundle creation."""

    def test_document_only(self, linked_document, includes, settings):
        bundle = create_document_transfer_bundle(linked_document, includes, settings, DocumentTransferOptions())

        assert bundle.version == TRANSFER_VERSION
        assert bundle.exported_at > 0
        assert bundle.includes is None
        assert bundle.settings is None
        assert set(bundle.to_dict()) == {"version", "exportedAt", "document"}

    def test_with_includes_and_settings(self, linked_document, includes, settings):
        options = DocumentTransferOptions(include_includes=True, include_settings=True)

        bundle = create_document_transfer_bundle(linked_document, includes, settings, options)

        assert [include.id for include in bundle.includes] == ["inc-top", "inc-step"]
        assert bundle.settings == settings

    def test_serialize_is_pretty_json(self, linked_document, includes, settings):
        bundle = create_document_transfer_bundle(linked_document, includes, settings, DocumentTransferOptions())

        text = serialize_document_transfer_bundle(bundle)

        assert text.endswith("\n")
        assert json.loads(text)["document"]["id"] == "doc-1"


class TestParseBundle:
    """Test parsing of untrusted bundles."""

    def test_round_trip(self, linked_document, includes, settings):
        options = DocumentTransferOptions(include_includes=True, include_settings=True)
        bundle = create_document_transfer_bundle(linked_document, includes, settings, options)

        result = parse_document_transfer_bundle(serialize_document_transfer_bundle(bundle))

        assert result.ok is True
        assert result.message is None
        assert result.bundle.document == linked_document
        assert result.bundle.includes == [includes["inc-top"], includes["inc-step"]]
        assert result.bundle.settings == settings
        assert result.bundle.exported_at == bundle.exported_at

    @pytest.mark.parametrize("raw", ["{", "", "not json", "NaN", '{"document": Infinity}'])
    def test_invalid_json(self, raw):
        result = parse_document_transfer_bundle(raw)

        assert result.ok is False
        assert result.message == INVALID_JSON
        assert result.bundle is None

    @pytest.mark.parametrize("raw", ["[]", "42", '"text"', "{}", '{"document": null}'])
    def test_missing_document(self, raw):
        assert parse_document_transfer_bundle(raw).message == INVALID_DOCUMENT

    def test_node_missing_enabled_field(self, sample_document):
        data = bundle_data(sample_document)
        del data["document"]["nodes"][1]["children"][0]["enabled"]

        result = parse_document_transfer_bundle(json.dumps(data))

        assert result.ok is False
        assert result.message == INVALID_DOCUMENT

    @pytest.mark.parametrize("mutate", [
        lambda doc: doc.update(kind="HTML"),
        lambda doc: doc.update(tags=["ok", 3]),
        lambda doc: doc.update(rootTagEnabled="yes"),
        lambda doc: doc.pop("schemaVersion"),
        lambda doc: doc["nodes"][0].update(contentMode="Html"),
        lambda doc: doc["nodes"][0].update(attributes={"k": 1}),
        lambda doc: doc["nodes"][0].update(children={}),
        lambda doc: doc.update(createdAt=True),
    ])
    def test_malformed_document_fields(self, sample_document, mutate):
        data = bundle_data(sample_document)
        mutate(data["document"])

        assert parse_document_transfer_bundle(json.dumps(data)).message == INVALID_DOCUMENT

    def test_malformed_include(self, sample_document, top_include):
        include = top_include.to_dict()
        include["insertion"]["position"] = "MIDDLE"
        data = bundle_data(sample_document, includes=[include])

        assert parse_document_transfer_bundle(json.dumps(data)).message == INVALID_INCLUDES

    def test_includes_must_be_a_list(self, sample_document, top_include):
        data = bundle_data(sample_document, includes=top_include.to_dict())

        assert parse_document_transfer_bundle(json.dumps(data)).message == INVALID_INCLUDES

    def test_malformed_settings(self, sample_document):
        settings = WorkspaceSettings().to_dict()
        settings["language"] = "fr"
        data = bundle_data(sample_document, settings=settings)

        assert parse_document_transfer_bundle(json.dumps(data)).message == INVALID_SETTINGS

    def test_document_checked_before_includes(self, sample_document):
        data = bundle_data(sample_document, includes="broken", settings="broken")
        data["document"]["name"] = 5

        assert parse_document_transfer_bundle(json.dumps(data)).message == INVALID_DOCUMENT

    def test_missing_version_and_timestamp_default(self, sample_document):
        result = parse_document_transfer_bundle(json.dumps({"document": sample_document.to_dict()}))

        assert result.ok is True
        assert result.bundle.version == TRANSFER_VERSION
        assert result.bundle.exported_at > 0

    def test_non_numeric_version_defaults(self, sample_document):
        data = bundle_data(sample_document, version="two", exportedAt=None)

        result = parse_document_transfer_bundle(json.dumps(data))

        assert result.ok is True
        assert result.bundle.version == TRANSFER_VERSION

    def test_unknown_top_level_keys_are_ignored(self, sample_document):
        data = bundle_data(sample_document, comment="exported by hand")
        assert parse_document_transfer_bundle(json.dumps(data)).ok is True


class TestPrepareImport:
    """Test id remapping on import."""

    def test_fresh_document_and_node_ids(self, linked_document):
        bundle = DocumentTransferBundle(version=1, exported_at=0, document=linked_document)

        imported = prepare_document_import(bundle, [])
        original_ids = {node.id for node in iter_nodes(linked_document.nodes)}
        new_ids = [node.id for node in iter_nodes(imported.document.nodes)]

        assert imported.document.id != linked_document.id
        assert original_ids.isdisjoint(new_ids)
        assert len(new_ids) == len(original_ids)
        assert imported.document.name == linked_document.name

    def test_bundled_includes_are_remapped(self, linked_document, includes):
        bundle = DocumentTransferBundle(
            version=1, exported_at=0, document=linked_document,
            includes=[includes["inc-top"], includes["inc-step"]],
        )

        imported = prepare_document_import(bundle, ["inc-top"])
        new_top = imported.include_id_map["inc-top"]
        new_step = imported.include_id_map["inc-step"]

        assert new_top != "inc-top"
        assert imported.document.global_include_ids == [new_top, new_step]
        assert [include.id for include in imported.includes] == [new_top, new_step]
        assert imported.includes[0].nodes[0].id != "p"
        assert imported.includes[0].nodes[0].tag_name == "preamble"

    def test_unbundled_references_kept_only_if_present(self, linked_document):
        bundle = DocumentTransferBundle(version=1, exported_at=0, document=linked_document)

        imported = prepare_document_import(bundle, ["inc-step"])

        assert imported.document.global_include_ids == ["inc-step"]
        assert imported.include_id_map == {}

    def test_source_bundle_is_untouched(self, linked_document, includes):
        bundle = DocumentTransferBundle(
            version=1, exported_at=0, document=linked_document, includes=[includes["inc-top"]],
        )
        before = bundle.to_dict()

        prepare_document_import(bundle, [])

        assert bundle.to_dict() == before

    def test_settings_are_carried(self, linked_document):
        settings = WorkspaceSettings(language="ko")
        bundle = DocumentTransferBundle(version=1, exported_at=0, document=linked_document, settings=settings)

        assert prepare_document_import(bundle, []).settings == settings

    def test_imported_document_is_independent(self, sample_document):
        bundle = DocumentTransferBundle(version=1, exported_at=0, document=sample_document)

        imported = prepare_document_import(bundle, [])
        imported.document.tags.append("new")

        assert isinstance(imported.document, PromptDocument)
        assert sample_document.tags == []
