"""
Document Transfer Codec

Portable import/export of one document plus, optionally, the includes it
references and the workspace settings. Untrusted bundles are checked against
the bundled JSON schema section by section; failures are reported through a
closed set of reasons instead of exceptions.

Key Features:
- Bundle creation with includes resolved from the document's include ids
- Exhaustive schema validation of the document, includes and settings
- Import preparation with fresh ids and include-reference remapping
"""

import json
import logging
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from jsonschema import Draft202012Validator

from ..core.document import PromptDocument, WorkspaceSettings
from ..core.includes import GlobalInclude, now_ms, resolve_includes
from ..core.node import generate_id
from ..core.tree import clone_nodes_with_new_ids

logger = logging.getLogger(__name__)

TRANSFER_VERSION = 1
SCHEMA_PATH = Path(__file__).resolve().parent.parent / "schemas" / "transfer-bundle.schema.json"

INVALID_JSON = "invalid_json"
INVALID_DOCUMENT = "invalid_document"
INVALID_INCLUDES = "invalid_includes"
INVALID_SETTINGS = "invalid_settings"


@dataclass
class DocumentTransferOptions:
    include_includes: bool = False
    include_settings: bool = False


@dataclass
class DocumentTransferBundle:
    """Envelope for moving one document between workspaces"""
    version: int
    exported_at: int
    document: PromptDocument
    includes: Optional[List[GlobalInclude]] = None
    settings: Optional[WorkspaceSettings] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "version": self.version,
            "exportedAt": self.exported_at,
            "document": self.document.to_dict(),
        }
        if self.includes is not None:
            result["includes"] = [include.to_dict() for include in self.includes]
        if self.settings is not None:
            result["settings"] = self.settings.to_dict()
        return result


@dataclass
class TransferParseResult:
    """Either ok with a bundle, or not ok with one of the INVALID_* reasons"""
    ok: bool
    bundle: Optional[DocumentTransferBundle] = None
    message: Optional[str] = None


@dataclass
class DocumentImport:
    """A bundle rewritten with fresh ids, ready to be merged into a workspace"""
    document: PromptDocument
    includes: List[GlobalInclude] = field(default_factory=list)
    settings: Optional[WorkspaceSettings] = None
    include_id_map: Dict[str, str] = field(default_factory=dict)


@lru_cache(maxsize=None)
def load_transfer_schema() -> Dict[str, Any]:
    with open(SCHEMA_PATH, "r", encoding="utf-8") as schema_file:
        return json.load(schema_file)


@lru_cache(maxsize=None)
def _section_validator(definition: str) -> Draft202012Validator:
    """Validator for one $defs entry of the transfer schema"""
    schema = load_transfer_schema()
    return Draft202012Validator({
        "$schema": schema["$schema"],
        "$defs": schema["$defs"],
        "$ref": f"#/$defs/{definition}",
    })


def _is_valid(definition: str, value: Any) -> bool:
    errors = list(_section_validator(definition).iter_errors(value))
    for error in errors[:3]:
        path = ".".join(str(part) for part in error.absolute_path)
        logger.debug(f"Transfer bundle {definition} rejected at '{path}': {error.message}")
    return not errors


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Unsupported JSON constant: {name}")


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value \
        and value not in (float("inf"), float("-inf"))


def create_document_transfer_bundle(document: PromptDocument,
                                    includes_by_id: Mapping[str, GlobalInclude],
                                    settings: WorkspaceSettings,
                                    options: DocumentTransferOptions) -> DocumentTransferBundle:
    """
    Wrap a document into a transfer bundle.

    Args:
        document: Document to export
        includes_by_id: Known includes; only those the document references are bundled
        settings: Workspace settings
        options: Which optional sections to add

    Returns:
        DocumentTransferBundle stamped with the current version and time
    """
    bundle = DocumentTransferBundle(
        version=TRANSFER_VERSION,
        exported_at=now_ms(),
        document=document,
    )

    if options.include_includes:
        bundle.includes = resolve_includes(document.global_include_ids, includes_by_id)

    if options.include_settings:
        bundle.settings = settings

    return bundle


def serialize_document_transfer_bundle(bundle: DocumentTransferBundle) -> str:
    return json.dumps(bundle.to_dict(), indent=2, ensure_ascii=False) + "\n"


def parse_document_transfer_bundle(raw: str) -> TransferParseResult:
    """
    Parse and validate an untrusted transfer bundle.

    The document is checked first, then the includes, then the settings; the
    first failing section determines the reason. Missing or non-numeric
    version/exportedAt values fall back to defaults instead of failing.

    Args:
        raw: JSON text

    Returns:
        TransferParseResult with ok=True and a typed bundle, or ok=False and
        one of invalid_json, invalid_document, invalid_includes, invalid_settings

    Example:
        >>> parse_document_transfer_bundle("{").message
        'invalid_json'
    """
    try:
        parsed = json.loads(raw, parse_constant=_reject_constant)
    except (TypeError, ValueError):
        return TransferParseResult(ok=False, message=INVALID_JSON)

    if not isinstance(parsed, dict) or not _is_valid("document", parsed.get("document")):
        return TransferParseResult(ok=False, message=INVALID_DOCUMENT)

    includes: Optional[List[GlobalInclude]] = None
    if "includes" in parsed:
        raw_includes = parsed["includes"]
        if not isinstance(raw_includes, list) or not all(_is_valid("include", item) for item in raw_includes):
            return TransferParseResult(ok=False, message=INVALID_INCLUDES)
        includes = [GlobalInclude.from_dict(item) for item in raw_includes]

    settings: Optional[WorkspaceSettings] = None
    if "settings" in parsed:
        if not _is_valid("settings", parsed["settings"]):
            return TransferParseResult(ok=False, message=INVALID_SETTINGS)
        settings = WorkspaceSettings.from_dict(parsed["settings"])

    version = parsed.get("version")
    exported_at = parsed.get("exportedAt")

    bundle = DocumentTransferBundle(
        version=version if _is_finite_number(version) else TRANSFER_VERSION,
        exported_at=exported_at if _is_finite_number(exported_at) else now_ms(),
        document=PromptDocument.from_dict(parsed["document"]),
        includes=includes,
        settings=settings,
    )
    return TransferParseResult(ok=True, bundle=bundle)


def prepare_document_import(bundle: DocumentTransferBundle,
                            existing_include_ids: Iterable[str]) -> DocumentImport:
    """
    Rewrite a parsed bundle with fresh ids so it can join a workspace.

    The document gets a new id and every node a fresh id. Every bundled include
    gets a new id (its nodes fresh ids as well). The document's include
    references are remapped to the new include ids; references to includes
    that were not bundled are kept only if the destination workspace already
    has an include with that id.

    Args:
        bundle: Parsed transfer bundle
        existing_include_ids: Include ids already present in the destination

    Returns:
        DocumentImport holding the rewritten document and includes
    """
    existing = set(existing_include_ids)
    timestamp = now_ms()

    include_id_map: Dict[str, str] = {}
    imported_includes: List[GlobalInclude] = []
    for include in bundle.includes or []:
        new_id = generate_id()
        include_id_map[include.id] = new_id
        imported_includes.append(replace(
            include,
            id=new_id,
            nodes=clone_nodes_with_new_ids(include.nodes),
            updated_at=timestamp,
        ))

    remapped_ids: List[str] = []
    for include_id in bundle.document.global_include_ids:
        if include_id in include_id_map:
            remapped_ids.append(include_id_map[include_id])
        elif include_id in existing:
            remapped_ids.append(include_id)
        else:
            logger.info(f"Dropping reference to unknown include {include_id} on import")

    document = replace(
        bundle.document,
        id=generate_id(),
        nodes=clone_nodes_with_new_ids(bundle.document.nodes),
        global_include_ids=remapped_ids,
        tags=list(bundle.document.tags),
        updated_at=timestamp,
    )

    return DocumentImport(
        document=document,
        includes=imported_includes,
        settings=bundle.settings,
        include_id_map=include_id_map,
    )
