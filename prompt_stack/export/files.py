"""
Export artifacts: file names, MIME types and rendered content for a document.
"""

import logging
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from ..core.document import PromptDocument, WorkspaceSettings
from ..core.includes import GlobalInclude
from .json_view import JsonViewOptions, to_json_view
from .markdown_view import to_markdown_view
from .xml_view import build_xml_preview

logger = logging.getLogger(__name__)

VIEW_XML = "xml"
VIEW_MARKDOWN = "markdown"
VIEW_JSON = "json"

EXPORT_VIEWS = (VIEW_XML, VIEW_MARKDOWN, VIEW_JSON)

FILE_EXTENSIONS = {
    VIEW_XML: "xml",
    VIEW_MARKDOWN: "md",
    VIEW_JSON: "json",
}

MIME_TYPES = {
    VIEW_XML: "application/xml",
    VIEW_MARKDOWN: "text/markdown",
    VIEW_JSON: "application/json",
}

_WHITESPACE_RUN = re.compile(r"\s+")


@dataclass
class ExportArtifact:
    file_name: str
    mime_type: str
    content: str

    def to_dict(self) -> dict:
        return {
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "content": self.content,
        }


def slugify_document_name(name: str) -> str:
    slug = _WHITESPACE_RUN.sub("-", (name or "").strip()).lower()
    return slug or "untitled"


def create_export_file_name(name: str, view: str) -> str:
    """
    Build the download file name for a document view.

    Example:
        >>> create_export_file_name("  My Prompt ", "markdown")
        'my-prompt-markdown.md'
    """
    if view not in FILE_EXTENSIONS:
        raise ValueError(f"Unknown export view: {view!r}")
    return f"{slugify_document_name(name)}-{view}.{FILE_EXTENSIONS[view]}"


def render_export(document: PromptDocument,
                  includes_by_id: Mapping[str, GlobalInclude],
                  settings: WorkspaceSettings,
                  view: str,
                  json_options: Optional[JsonViewOptions] = None) -> Optional[ExportArtifact]:
    """
    Render one view of a document as a downloadable artifact.

    Args:
        document: Document to export
        includes_by_id: Known includes
        settings: Workspace settings
        view: One of "xml", "markdown" or "json"
        json_options: Optional sections for the JSON view

    Returns:
        ExportArtifact, or None when XML export is blocked by validation errors

    Raises:
        ValueError: If view is not a known export view
    """
    file_name = create_export_file_name(document.name, view)

    if view == VIEW_XML:
        preview = build_xml_preview(document, includes_by_id, settings)
        if not preview.can_export:
            logger.info(f"XML export of document {document.id} blocked by validation")
            return None
        content = preview.xml
    elif view == VIEW_MARKDOWN:
        content = to_markdown_view(document, includes_by_id)
    else:
        content = to_json_view(document, includes_by_id, settings, json_options or JsonViewOptions())

    return ExportArtifact(file_name=file_name, mime_type=MIME_TYPES[view], content=content)
