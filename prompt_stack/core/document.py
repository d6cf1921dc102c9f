"""
Prompt Documents and Workspace Settings

A PromptDocument owns a root-level list of PromptNodes and references global
includes by id. WorkspaceSettings carry the user preferences that influence
export (strict raw-XML checking, default root tag policy).
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .includes import coerce_int, now_ms
from .node import ContentMode, PromptNode, ValidationError, create_node, generate_id, nodes_from_dicts, nodes_to_dicts
from .validation import is_valid_xml_name

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
BRAND_COLOR_DEFAULT = "#00E676"
DEFAULT_DOCUMENT_NAME = "Untitled Prompt"
SUPPORTED_LANGUAGES = ("en", "ko")


class PromptKind(str, Enum):
    XML_STACK = "XML_STACK"
    MARKDOWN_DOC = "MARKDOWN_DOC"
    RAW_XML = "RAW_XML"
    CHAT_MESSAGES_JSON = "CHAT_MESSAGES_JSON"


@dataclass
class WorkspaceSettings:
    """User preferences shared by every document in a workspace"""
    language: str = "en"
    brand_color: str = BRAND_COLOR_DEFAULT
    confirm_before_delete: bool = True
    show_markdown_preview: bool = True
    raw_xml_strict_mode: bool = False
    default_root_tag_enabled: bool = True
    default_root_tag_name: str = "prompt"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language,
            "brandColor": self.brand_color,
            "confirmBeforeDelete": self.confirm_before_delete,
            "showMarkdownPreview": self.show_markdown_preview,
            "rawXmlStrictMode": self.raw_xml_strict_mode,
            "defaultRootTagEnabled": self.default_root_tag_enabled,
            "defaultRootTagName": self.default_root_tag_name,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WorkspaceSettings":
        """
        Build settings from a (possibly partial) dictionary.

        Missing keys fall back to the defaults, so older settings files keep
        loading after new preferences are introduced.
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("Settings data must be a dictionary")

        defaults = cls()
        language = data.get("language", defaults.language)
        if language not in SUPPORTED_LANGUAGES:
            logger.warning(f"Unsupported language {language!r}, using {defaults.language!r}")
            language = defaults.language

        return cls(
            language=language,
            brand_color=str(data.get("brandColor", defaults.brand_color)),
            confirm_before_delete=bool(data.get("confirmBeforeDelete", defaults.confirm_before_delete)),
            show_markdown_preview=bool(data.get("showMarkdownPreview", defaults.show_markdown_preview)),
            raw_xml_strict_mode=bool(data.get("rawXmlStrictMode", defaults.raw_xml_strict_mode)),
            default_root_tag_enabled=bool(data.get("defaultRootTagEnabled", defaults.default_root_tag_enabled)),
            default_root_tag_name=str(data.get("defaultRootTagName", defaults.default_root_tag_name)),
        )


DEFAULT_SETTINGS = WorkspaceSettings()


@dataclass
class PromptDocument:
    """
    A named prompt: root-level nodes plus an ordered list of include ids.

    The order of global_include_ids is the injection order of the includes.
    schema_version is recorded but no migration is performed on load.
    """
    id: str
    name: str
    kind: PromptKind = PromptKind.XML_STACK
    tags: List[str] = field(default_factory=list)
    root_tag_enabled: bool = True
    root_tag_name: str = "prompt"
    nodes: List[PromptNode] = field(default_factory=list)
    global_include_ids: List[str] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    schema_version: int = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": PromptKind(self.kind).value,
            "tags": list(self.tags),
            "rootTagEnabled": self.root_tag_enabled,
            "rootTagName": self.root_tag_name,
            "nodes": nodes_to_dicts(self.nodes),
            "globalIncludeIds": list(self.global_include_ids),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "schemaVersion": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptDocument":
        """
        Create a PromptDocument from wire-format data.

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ValidationError("Document data must be a dictionary")

        document_id = data.get("id")
        if not isinstance(document_id, str) or not document_id:
            raise ValidationError("Missing required field: id")

        try:
            kind = PromptKind(data.get("kind", PromptKind.XML_STACK.value))
        except ValueError:
            raise ValidationError(f"Unknown document kind: {data.get('kind')!r}")

        tags = data.get("tags") or []
        include_ids = data.get("globalIncludeIds") or []
        if not isinstance(tags, list) or not isinstance(include_ids, list):
            raise ValidationError(f"Document {document_id}: tags and globalIncludeIds must be lists")

        timestamp = now_ms()
        return cls(
            id=document_id,
            name=str(data.get("name", DEFAULT_DOCUMENT_NAME)),
            kind=kind,
            tags=[str(tag) for tag in tags],
            root_tag_enabled=bool(data.get("rootTagEnabled", True)),
            root_tag_name=str(data.get("rootTagName", "prompt")),
            nodes=nodes_from_dicts(data.get("nodes") or []),
            global_include_ids=[str(include_id) for include_id in include_ids],
            created_at=coerce_int(data.get("createdAt"), timestamp),
            updated_at=coerce_int(data.get("updatedAt"), timestamp),
            schema_version=coerce_int(data.get("schemaVersion"), SCHEMA_VERSION),
        )


def create_default_document(name: str = DEFAULT_DOCUMENT_NAME,
                            kind: PromptKind = PromptKind.XML_STACK,
                            settings: WorkspaceSettings = DEFAULT_SETTINGS) -> PromptDocument:
    """
    Create a new document seeded with a role and a task node.

    The root tag policy comes from the workspace settings.
    """
    timestamp = now_ms()
    return PromptDocument(
        id=generate_id(),
        name=name,
        kind=PromptKind(kind),
        tags=[],
        root_tag_enabled=settings.default_root_tag_enabled,
        root_tag_name=settings.default_root_tag_name,
        nodes=[
            create_node(tag_name="role", content_mode=ContentMode.PLAIN,
                        content="You are a senior assistant."),
            create_node(tag_name="task", content_mode=ContentMode.MARKDOWN,
                        content="Write concise and deterministic output."),
        ],
        global_include_ids=[],
        created_at=timestamp,
        updated_at=timestamp,
        schema_version=SCHEMA_VERSION,
    )


def touch_document(document: PromptDocument) -> PromptDocument:
    """Return a copy of the document with a refreshed updated_at"""
    return replace(document, updated_at=now_ms())


def resolve_node_tag_name(tag_name: Optional[str] = None) -> str:
    """Use tag_name for a new node if it is a valid XML name, otherwise 'context'"""
    if not tag_name:
        return "context"
    candidate = tag_name.strip()
    return candidate if is_valid_xml_name(candidate) else "context"
