"""
Export layer: XML, Markdown and JSON views plus the document transfer codec.
"""

from .files import ExportArtifact, create_export_file_name, render_export
from .json_view import JsonViewOptions, to_json_view
from .markdown_view import to_markdown_view
from .transfer import (
    DocumentImport,
    DocumentTransferBundle,
    DocumentTransferOptions,
    TransferParseResult,
    create_document_transfer_bundle,
    parse_document_transfer_bundle,
    prepare_document_import,
    serialize_document_transfer_bundle,
)
from .xml_view import XmlPreviewResult, build_xml_preview

__all__ = [
    "ExportArtifact",
    "create_export_file_name",
    "render_export",
    "JsonViewOptions",
    "to_json_view",
    "to_markdown_view",
    "DocumentImport",
    "DocumentTransferBundle",
    "DocumentTransferOptions",
    "TransferParseResult",
    "create_document_transfer_bundle",
    "parse_document_transfer_bundle",
    "prepare_document_import",
    "serialize_document_transfer_bundle",
    "XmlPreviewResult",
    "build_xml_preview",
]
