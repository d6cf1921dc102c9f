"""
API Request Handlers for Prompt Stack

This module contains the HTTP request handlers for the workspace REST API:
documents, nodes of the active document, includes, settings and templates.
Preview, export and transfer endpoints live in api_routes.py next to the route
table.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
from aiohttp import web

from .config import load_settings_schema
from .core.document import PromptKind, WorkspaceSettings
from .core.includes import InsertionRule
from .core.node import ValidationError, nodes_from_dicts
from .core.templates import create_prompt_template, get_prompt_template_ids
from .core.workspace import Workspace

logger = logging.getLogger(__name__)

WORKSPACE_KEY = web.AppKey("workspace", Workspace)

MAX_NAME_LENGTH = 255

DOCUMENT_FIELD_MAP = {
    "name": "name",
    "kind": "kind",
    "tags": "tags",
    "rootTagEnabled": "root_tag_enabled",
    "rootTagName": "root_tag_name",
    "globalIncludeIds": "global_include_ids",
}

NODE_FIELD_MAP = {
    "tagName": "tag_name",
    "attributes": "attributes",
    "contentMode": "content_mode",
    "content": "content",
    "enabled": "enabled",
    "collapsed": "collapsed",
}

DOCUMENT_STRING_FIELDS = ("rootTagName",)
DOCUMENT_BOOL_FIELDS = ("rootTagEnabled",)
NODE_STRING_FIELDS = ("tagName", "content")
NODE_BOOL_FIELDS = ("enabled", "collapsed")


def get_workspace(request: web.Request) -> Workspace:
    return request.app[WORKSPACE_KEY]


def validate_request_json(request_data: Any) -> Tuple[bool, Optional[str], Optional[List[str]]]:
    """
    Validate basic request JSON structure.

    Args:
        request_data: The parsed JSON data from the request

    Returns:
        Tuple of (is_valid, error_message, error_details)
    """
    if not isinstance(request_data, dict):
        return False, "Request body must be a JSON object", ["Invalid data format"]

    return True, None, None


def validate_name_field(data: Dict[str, Any], field_name: str = "name",
                        required: bool = True) -> Tuple[bool, Optional[str], Optional[List[str]]]:
    """
    Validate name field in request data.

    Args:
        data: Request data dictionary
        field_name: Name of the field to validate
        required: Whether a missing field is an error

    Returns:
        Tuple of (is_valid, error_message, error_details)
    """
    if field_name not in data:
        if required:
            return False, f"Missing required field: {field_name}", [f"Field '{field_name}' is required"]
        return True, None, None

    value = data[field_name]
    if not isinstance(value, str) or not value.strip() or len(value.strip()) > MAX_NAME_LENGTH:
        return False, "Invalid name", [f"Name must be between 1 and {MAX_NAME_LENGTH} characters"]

    return True, None, None


def create_success_response(message: str, data: Any, status: int = 200) -> web.Response:
    """
    Create a standardized success response.

    Args:
        message: Success message
        data: Response data
        status: HTTP status code

    Returns:
        JSON response object
    """
    return web.json_response({
        "success": True,
        "message": message,
        "data": data,
        "errors": []
    }, status=status)


def create_error_response(message: str, errors: List[str], status: int = 400) -> web.Response:
    """
    Create a standardized error response.

    Args:
        message: Error message
        errors: List of error details
        status: HTTP status code

    Returns:
        JSON response object
    """
    return web.json_response({
        "success": False,
        "message": message,
        "data": None,
        "errors": errors
    }, status=status)


async def read_json_object(request: web.Request) -> Tuple[Optional[Dict[str, Any]], Optional[web.Response]]:
    """
    Read the request body as a JSON object.

    Returns:
        Tuple of (data, error_response); exactly one of them is None
    """
    try:
        data = await request.json()
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in request to {request.path}: {e}")
        return None, create_error_response("Invalid JSON format", [str(e)], status=400)

    is_valid, message, errors = validate_request_json(data)
    if not is_valid:
        return None, create_error_response(message or "Validation error", errors or [], status=400)

    return data, None


def is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def find_type_errors(data: Dict[str, Any], string_fields: Tuple[str, ...] = (),
                     bool_fields: Tuple[str, ...] = ()) -> List[str]:
    """List fields whose values are not of the type the model stores"""
    errors = [f"{key} must be a string" for key in string_fields
              if key in data and not isinstance(data[key], str)]
    errors.extend(f"{key} must be a boolean" for key in bool_fields
                  if key in data and not isinstance(data[key], bool))
    return errors


def map_fields(data: Dict[str, Any], field_map: Dict[str, str]) -> Dict[str, Any]:
    """Translate camelCase request keys to keyword arguments, rejecting unknown keys"""
    unknown = [key for key in data if key not in field_map]
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return {field_map[key]: value for key, value in data.items()}


def workspace_summary(workspace: Workspace) -> Dict[str, Any]:
    return {
        "documents": [document.to_dict() for document in workspace.list_documents()],
        "documentOrder": list(workspace.document_order),
        "activeDocumentId": workspace.active_document_id,
    }


def not_found(kind: str, record_id: str) -> web.Response:
    return create_error_response(
        f"{kind} not found",
        [f"No {kind.lower()} with id '{record_id}' exists"],
        status=404
    )


def server_error(message: str, e: Exception) -> web.Response:
    logger.error(f"{message}: {e}")
    return create_error_response(message, ["An unexpected error occurred"], status=500)


# Documents

async def list_documents(request: web.Request) -> web.Response:
    """Get every document in workspace order plus the active document id"""
    try:
        return create_success_response(
            "Documents retrieved successfully",
            workspace_summary(get_workspace(request))
        )
    except Exception as e:
        return server_error("Failed to retrieve documents", e)


async def create_document(request: web.Request) -> web.Response:
    """
    Create a document from the default seed or a built-in template.

    Body: {"name"?, "kind"?, "tags"?, "templateId"?}
    """
    data, error = await read_json_object(request)
    if error is not None:
        return error

    is_valid, message, errors = validate_name_field(data, required=False)
    if not is_valid:
        return create_error_response(message or "Validation error", errors or [], status=400)

    tags = data.get("tags")
    if tags is not None and not is_string_list(tags):
        return create_error_response("Invalid tags format", ["tags must be an array of strings"], status=400)

    try:
        kind = PromptKind(data.get("kind", PromptKind.XML_STACK.value))
    except ValueError:
        return create_error_response("Validation error", [f"Unknown document kind: {data.get('kind')!r}"], status=400)

    template_id = data.get("templateId")
    if template_id is not None and template_id not in get_prompt_template_ids():
        return create_error_response("Validation error", [f"Unknown template: {template_id!r}"], status=400)

    try:
        name = data["name"].strip() if "name" in data else None
        document = get_workspace(request).create_document(name=name, kind=kind, tags=tags, template_id=template_id)
        return create_success_response("Document created successfully", document.to_dict(), status=201)
    except Exception as e:
        return server_error("Failed to create document", e)


async def get_document(request: web.Request) -> web.Response:
    document_id = request.match_info["document_id"]
    document = get_workspace(request).get_document(document_id)
    if document is None:
        return not_found("Document", document_id)
    return create_success_response("Document retrieved successfully", document.to_dict())


async def update_document(request: web.Request) -> web.Response:
    """Patch document fields (name, kind, tags, rootTagEnabled, rootTagName, globalIncludeIds)"""
    document_id = request.match_info["document_id"]

    data, error = await read_json_object(request)
    if error is not None:
        return error

    is_valid, message, errors = validate_name_field(data, required=False)
    if not is_valid:
        return create_error_response(message or "Validation error", errors or [], status=400)

    for list_field in ("tags", "globalIncludeIds"):
        if list_field in data and not is_string_list(data[list_field]):
            return create_error_response("Validation error", [f"{list_field} must be an array of strings"], status=400)

    type_errors = find_type_errors(data, DOCUMENT_STRING_FIELDS, DOCUMENT_BOOL_FIELDS)
    if type_errors:
        return create_error_response("Validation error", type_errors, status=400)

    try:
        changes = map_fields(data, DOCUMENT_FIELD_MAP)
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        document = get_workspace(request).update_document(document_id, **changes)
    except ValidationError as e:
        return create_error_response("Validation error", [str(e)], status=400)
    except Exception as e:
        return server_error("Failed to update document", e)

    if document is None:
        return not_found("Document", document_id)
    return create_success_response("Document updated successfully", document.to_dict())


async def delete_document(request: web.Request) -> web.Response:
    document_id = request.match_info["document_id"]
    workspace = get_workspace(request)

    try:
        deleted = workspace.delete_document(document_id)
    except Exception as e:
        return server_error("Failed to delete document", e)

    if not deleted:
        return not_found("Document", document_id)
    return create_success_response(f"Document '{document_id}' deleted successfully", workspace_summary(workspace))


async def duplicate_document(request: web.Request) -> web.Response:
    document_id = request.match_info["document_id"]

    try:
        duplicate = get_workspace(request).duplicate_document(document_id)
    except Exception as e:
        return server_error("Failed to duplicate document", e)

    if duplicate is None:
        return not_found("Document", document_id)
    return create_success_response("Document duplicated successfully", duplicate.to_dict(), status=201)


async def activate_document(request: web.Request) -> web.Response:
    document_id = request.match_info["document_id"]
    workspace = get_workspace(request)

    if not workspace.set_active_document(document_id):
        return not_found("Document", document_id)
    return create_success_response("Active document changed", workspace_summary(workspace))


# Nodes of the active document

def active_document_response(workspace: Workspace, message: str, status: int = 200) -> web.Response:
    return create_success_response(message, workspace.active_document.to_dict(), status=status)


async def add_node(request: web.Request) -> web.Response:
    """
    Add a node to the active document.

    Body: {"tagName"?, "parentId"?}; without parentId the node is appended at the root.
    """
    data, error = await read_json_object(request)
    if error is not None:
        return error

    workspace = get_workspace(request)
    tag_name = data.get("tagName")
    parent_id = data.get("parentId")

    if tag_name is not None and not isinstance(tag_name, str):
        return create_error_response("Validation error", ["tagName must be a string"], status=400)

    try:
        if parent_id:
            node = workspace.add_child_node(parent_id, tag_name)
            if node is None:
                return not_found("Node", parent_id)
        else:
            node = workspace.add_root_node(tag_name)
    except Exception as e:
        return server_error("Failed to add node", e)

    return create_success_response("Node added successfully", node.to_dict(), status=201)


async def update_node(request: web.Request) -> web.Response:
    """Patch node fields (tagName, attributes, contentMode, content, enabled, collapsed)"""
    node_id = request.match_info["node_id"]

    data, error = await read_json_object(request)
    if error is not None:
        return error

    attributes = data.get("attributes")
    if attributes is not None and (
        not isinstance(attributes, dict) or not all(isinstance(value, str) for value in attributes.values())
    ):
        return create_error_response("Validation error", ["attributes must map strings to strings"], status=400)

    type_errors = find_type_errors(data, NODE_STRING_FIELDS, NODE_BOOL_FIELDS)
    if type_errors:
        return create_error_response("Validation error", type_errors, status=400)

    workspace = get_workspace(request)
    try:
        changes = map_fields(data, NODE_FIELD_MAP)
        updated = workspace.patch_node(node_id, **changes)
    except ValidationError as e:
        return create_error_response("Validation error", [str(e)], status=400)
    except Exception as e:
        return server_error("Failed to update node", e)

    if not updated:
        return not_found("Node", node_id)
    return active_document_response(workspace, "Node updated successfully")


async def delete_node(request: web.Request) -> web.Response:
    node_id = request.match_info["node_id"]
    workspace = get_workspace(request)

    if not workspace.delete_node(node_id):
        return not_found("Node", node_id)
    return active_document_response(workspace, "Node deleted successfully")


async def duplicate_node(request: web.Request) -> web.Response:
    node_id = request.match_info["node_id"]
    workspace = get_workspace(request)

    if not workspace.duplicate_node(node_id):
        return not_found("Node", node_id)
    return active_document_response(workspace, "Node duplicated successfully", status=201)


async def move_node(request: web.Request) -> web.Response:
    """
    Move a node of the active document.

    Body: {"targetId", "position"} or {"dropId"} or {"toRootEnd": true}.
    A rejected move (cycle, unknown target) leaves the tree unchanged and
    answers 409.
    """
    node_id = request.match_info["node_id"]

    data, error = await read_json_object(request)
    if error is not None:
        return error

    workspace = get_workspace(request)
    try:
        if data.get("toRootEnd"):
            moved = workspace.move_node_to_root_end(node_id)
        elif "dropId" in data:
            moved = workspace.move_node_by_drop_id(node_id, str(data["dropId"]))
        elif "targetId" in data and "position" in data:
            moved = workspace.move_node(node_id, str(data["targetId"]), data["position"])
        else:
            return create_error_response(
                "Missing move target",
                ["Provide targetId and position, dropId, or toRootEnd"],
                status=400
            )
    except Exception as e:
        return server_error("Failed to move node", e)

    if not moved:
        return create_error_response("Move rejected", [f"Node '{node_id}' was not moved"], status=409)
    return active_document_response(workspace, "Node moved successfully")


# Includes

async def list_includes(request: web.Request) -> web.Response:
    workspace = get_workspace(request)
    return create_success_response(
        "Includes retrieved successfully",
        [include.to_dict() for include in workspace.list_includes()]
    )


def parse_include_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert an include request body into keyword arguments.

    Raises:
        ValidationError: If a field is malformed or unknown
    """
    changes: Dict[str, Any] = {}
    for key, value in data.items():
        if key in ("name", "description"):
            if not isinstance(value, str):
                raise ValidationError(f"{key} must be a string")
            changes[key] = value
        elif key == "nodes":
            changes["nodes"] = nodes_from_dicts(value)
        elif key == "insertion":
            changes["insertion"] = InsertionRule.from_dict(value)
        elif key == "enabledByDefault":
            if not isinstance(value, bool):
                raise ValidationError("enabledByDefault must be a boolean")
            changes["enabled_by_default"] = value
        else:
            raise ValidationError(f"Unknown fields: {key}")
    return changes


async def create_include(request: web.Request) -> web.Response:
    """Create an include; every field is optional (default: TOP include with one guideline node)"""
    data, error = await read_json_object(request)
    if error is not None:
        return error

    try:
        include = get_workspace(request).create_include(**parse_include_fields(data))
    except ValidationError as e:
        return create_error_response("Validation error", [str(e)], status=400)
    except Exception as e:
        return server_error("Failed to create include", e)

    return create_success_response("Include created successfully", include.to_dict(), status=201)


async def update_include(request: web.Request) -> web.Response:
    include_id = request.match_info["include_id"]

    data, error = await read_json_object(request)
    if error is not None:
        return error

    try:
        include = get_workspace(request).update_include(include_id, **parse_include_fields(data))
    except ValidationError as e:
        return create_error_response("Validation error", [str(e)], status=400)
    except Exception as e:
        return server_error("Failed to update include", e)

    if include is None:
        return not_found("Include", include_id)
    return create_success_response("Include updated successfully", include.to_dict())


async def delete_include(request: web.Request) -> web.Response:
    include_id = request.match_info["include_id"]
    workspace = get_workspace(request)

    if not workspace.delete_include(include_id):
        return not_found("Include", include_id)
    return create_success_response(
        f"Include '{include_id}' deleted successfully",
        [include.to_dict() for include in workspace.list_includes()]
    )


async def toggle_include(request: web.Request) -> web.Response:
    """Attach the include to the active document, or detach it if already attached"""
    include_id = request.match_info["include_id"]
    workspace = get_workspace(request)

    if workspace.get_include(include_id) is None:
        return not_found("Include", include_id)

    workspace.toggle_include_for_active_document(include_id)
    return active_document_response(workspace, "Include toggled for active document")


# Settings and templates

async def get_settings(request: web.Request) -> web.Response:
    return create_success_response("Settings retrieved successfully", get_workspace(request).settings.to_dict())


async def update_settings(request: web.Request) -> web.Response:
    """Merge a partial settings object (camelCase keys) over the current settings"""
    data, error = await read_json_object(request)
    if error is not None:
        return error

    try:
        jsonschema.validate(data, load_settings_schema())
    except jsonschema.ValidationError as e:
        return create_error_response("Invalid settings", [e.message], status=400)

    workspace = get_workspace(request)
    try:
        merged = WorkspaceSettings.from_dict({**workspace.settings.to_dict(), **data})
        settings = workspace.update_settings(**vars(merged))
    except Exception as e:
        return server_error("Failed to update settings", e)

    return create_success_response("Settings updated successfully", settings.to_dict())


async def list_templates(request: web.Request) -> web.Response:
    templates = []
    for template_id in get_prompt_template_ids():
        template = create_prompt_template(template_id)
        templates.append({
            "id": template.id,
            "kind": template.kind.value,
            "suggestedName": template.suggested_name,
            "tags": template.tags,
            "nodeCount": len(template.nodes),
        })
    return create_success_response("Templates retrieved successfully", templates)
