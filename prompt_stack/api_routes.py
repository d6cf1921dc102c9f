"""
API Routes for Prompt Stack

This module provides the preview, export and transfer endpoints and registers
every REST route of the workspace API on an aiohttp application.
"""

import logging
import traceback
from typing import Optional

from aiohttp import web
from aiohttp.web_request import Request
from aiohttp.web_response import Response

from . import api_handlers as handlers
from .api_handlers import (
    WORKSPACE_KEY,
    create_error_response,
    create_success_response,
    get_workspace,
    not_found,
    server_error,
)
from .core.autosave import AutosaveScheduler
from .core.storage import WorkspaceStorage
from .core.workspace import Workspace
from .export.files import EXPORT_VIEWS, render_export
from .export.json_view import JsonViewOptions, to_json_view
from .export.markdown_view import to_markdown_view
from .export.transfer import (
    DocumentTransferOptions,
    create_document_transfer_bundle,
    parse_document_transfer_bundle,
)
from .export.xml_view import build_xml_preview

logger = logging.getLogger(__name__)

AUTOSAVE_KEY = web.AppKey("autosave", AutosaveScheduler)

API_PREFIX = "/api"

TRUTHY_QUERY_VALUES = ("1", "true", "yes", "on")


def query_flag(request: Request, name: str) -> bool:
    return request.query.get(name, "").lower() in TRUTHY_QUERY_VALUES


async def preview_xml(request: Request) -> Response:
    """XML preview with validation issues; xml is empty when export is blocked"""
    document_id = request.match_info["document_id"]
    workspace = get_workspace(request)
    document = workspace.get_document(document_id)
    if document is None:
        return not_found("Document", document_id)

    try:
        preview = build_xml_preview(document, workspace.includes_by_id, workspace.settings)
        return create_success_response("XML preview generated", preview.to_dict())
    except Exception as e:
        return server_error("Failed to build XML preview", e)


async def preview_markdown(request: Request) -> Response:
    document_id = request.match_info["document_id"]
    workspace = get_workspace(request)
    document = workspace.get_document(document_id)
    if document is None:
        return not_found("Document", document_id)

    try:
        markdown = to_markdown_view(document, workspace.includes_by_id)
        return create_success_response("Markdown preview generated", {"markdown": markdown})
    except Exception as e:
        return server_error("Failed to build Markdown preview", e)


async def preview_json(request: Request) -> Response:
    """JSON view; ?includeIncludes=1 and ?includeSettings=1 add the optional sections"""
    document_id = request.match_info["document_id"]
    workspace = get_workspace(request)
    document = workspace.get_document(document_id)
    if document is None:
        return not_found("Document", document_id)

    options = JsonViewOptions(
        include_includes=query_flag(request, "includeIncludes"),
        include_settings=query_flag(request, "includeSettings"),
    )
    try:
        text = to_json_view(document, workspace.includes_by_id, workspace.settings, options)
        return create_success_response("JSON preview generated", {"json": text})
    except Exception as e:
        return server_error("Failed to build JSON preview", e)


async def export_document(request: Request) -> Response:
    """
    Download one view of a document as a file.

    Blocked XML exports answer 422 with the validation issues.
    """
    document_id = request.match_info["document_id"]
    view = request.match_info["view"]

    if view not in EXPORT_VIEWS:
        return create_error_response(
            "Unknown export format",
            [f"Format must be one of: {', '.join(EXPORT_VIEWS)}"],
            status=400
        )

    workspace = get_workspace(request)
    document = workspace.get_document(document_id)
    if document is None:
        return not_found("Document", document_id)

    options = JsonViewOptions(
        include_includes=query_flag(request, "includeIncludes"),
        include_settings=query_flag(request, "includeSettings"),
    )
    try:
        artifact = render_export(document, workspace.includes_by_id, workspace.settings, view, options)
    except Exception as e:
        return server_error("Failed to export document", e)

    if artifact is None:
        preview = build_xml_preview(document, workspace.includes_by_id, workspace.settings)
        return create_error_response(
            "XML export blocked by validation errors",
            [issue.message for issue in preview.issues if issue.type == "error"],
            status=422
        )

    return web.Response(
        text=artifact.content,
        content_type=artifact.mime_type,
        charset="utf-8",
        headers={"Content-Disposition": f'attachment; filename="{artifact.file_name}"'},
    )


async def export_bundle(request: Request) -> Response:
    """Transfer bundle for one document; ?includeIncludes=1 and ?includeSettings=1 as for the JSON view"""
    document_id = request.match_info["document_id"]
    workspace = get_workspace(request)
    document = workspace.get_document(document_id)
    if document is None:
        return not_found("Document", document_id)

    options = DocumentTransferOptions(
        include_includes=query_flag(request, "includeIncludes"),
        include_settings=query_flag(request, "includeSettings"),
    )
    try:
        bundle = create_document_transfer_bundle(document, workspace.includes_by_id, workspace.settings, options)
        return create_success_response("Bundle created successfully", bundle.to_dict())
    except Exception as e:
        return server_error("Failed to create bundle", e)


async def import_bundle(request: Request) -> Response:
    """
    Import a transfer bundle posted as the raw request body.

    Rejected bundles answer 400 with the rejection reason (invalid_json,
    invalid_document, invalid_includes or invalid_settings). ?applySettings=1
    also adopts bundled settings.
    """
    try:
        raw = await request.text()
    except UnicodeDecodeError as e:
        return create_error_response("Invalid bundle encoding", [str(e)], status=400)

    result = parse_document_transfer_bundle(raw)
    if not result.ok:
        logger.info(f"Rejected transfer bundle: {result.message}")
        return create_error_response("Invalid transfer bundle", [result.message], status=400)

    workspace = get_workspace(request)
    try:
        imported = workspace.import_bundle(result.bundle, apply_settings=query_flag(request, "applySettings"))
    except Exception as e:
        return server_error("Failed to import bundle", e)

    return create_success_response(
        "Bundle imported successfully",
        {
            "document": imported.document.to_dict(),
            "includes": [include.to_dict() for include in imported.includes],
            "includeIdMap": imported.include_id_map,
        },
        status=201
    )


def setup_api_routes(app: web.Application) -> None:
    """Register every workspace API route on app"""

    try:
        routes = web.RouteTableDef()

        # Documents
        routes.get(f"{API_PREFIX}/documents")(handlers.list_documents)
        routes.post(f"{API_PREFIX}/documents")(handlers.create_document)
        routes.get(f"{API_PREFIX}/documents/{{document_id}}")(handlers.get_document)
        routes.patch(f"{API_PREFIX}/documents/{{document_id}}")(handlers.update_document)
        routes.delete(f"{API_PREFIX}/documents/{{document_id}}")(handlers.delete_document)
        routes.post(f"{API_PREFIX}/documents/{{document_id}}/duplicate")(handlers.duplicate_document)
        routes.post(f"{API_PREFIX}/documents/{{document_id}}/activate")(handlers.activate_document)

        # Previews, exports and transfer
        routes.get(f"{API_PREFIX}/documents/{{document_id}}/preview/xml")(preview_xml)
        routes.get(f"{API_PREFIX}/documents/{{document_id}}/preview/markdown")(preview_markdown)
        routes.get(f"{API_PREFIX}/documents/{{document_id}}/preview/json")(preview_json)
        routes.get(f"{API_PREFIX}/documents/{{document_id}}/export/{{view}}")(export_document)
        routes.get(f"{API_PREFIX}/documents/{{document_id}}/bundle")(export_bundle)
        routes.post(f"{API_PREFIX}/bundles/import")(import_bundle)

        # Nodes of the active document
        routes.post(f"{API_PREFIX}/nodes")(handlers.add_node)
        routes.patch(f"{API_PREFIX}/nodes/{{node_id}}")(handlers.update_node)
        routes.delete(f"{API_PREFIX}/nodes/{{node_id}}")(handlers.delete_node)
        routes.post(f"{API_PREFIX}/nodes/{{node_id}}/duplicate")(handlers.duplicate_node)
        routes.post(f"{API_PREFIX}/nodes/{{node_id}}/move")(handlers.move_node)

        # Includes
        routes.get(f"{API_PREFIX}/includes")(handlers.list_includes)
        routes.post(f"{API_PREFIX}/includes")(handlers.create_include)
        routes.patch(f"{API_PREFIX}/includes/{{include_id}}")(handlers.update_include)
        routes.delete(f"{API_PREFIX}/includes/{{include_id}}")(handlers.delete_include)
        routes.post(f"{API_PREFIX}/includes/{{include_id}}/toggle")(handlers.toggle_include)

        # Settings and templates
        routes.get(f"{API_PREFIX}/settings")(handlers.get_settings)
        routes.patch(f"{API_PREFIX}/settings")(handlers.update_settings)
        routes.get(f"{API_PREFIX}/templates")(handlers.list_templates)

        app.add_routes(routes)

    except Exception as e:
        logger.error(f"API setup failed: {e}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        raise


def create_app(workspace: Optional[Workspace] = None,
               storage: Optional[WorkspaceStorage] = None,
               autosave_delay: Optional[float] = None) -> web.Application:
    """
    Build the aiohttp application.

    Args:
        workspace: Workspace to serve; loaded from storage (or created) when omitted
        storage: Storage to persist changes to; without it the workspace is in-memory only
        autosave_delay: Debounce delay for autosave in seconds

    Returns:
        Configured web.Application
    """
    if workspace is None:
        workspace = storage.load_workspace() if storage is not None else Workspace()

    app = web.Application()
    app[WORKSPACE_KEY] = workspace

    if storage is not None:
        if autosave_delay is None:
            scheduler = storage.attach_autosave(workspace)
        else:
            scheduler = storage.attach_autosave(workspace, delay=autosave_delay)
        app[AUTOSAVE_KEY] = scheduler

        async def flush_autosave(app: web.Application) -> None:
            app[AUTOSAVE_KEY].flush_now()

        app.on_cleanup.append(flush_autosave)

    setup_api_routes(app)
    return app
