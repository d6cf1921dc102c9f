"""
JSON view builder.

Renders {document, includes?, settings?} as pretty-printed JSON. The optional
sections are controlled independently; includes are resolved in the order of
the document's include ids.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from ..core.document import PromptDocument, WorkspaceSettings
from ..core.includes import GlobalInclude, resolve_includes


@dataclass
class JsonViewOptions:
    include_includes: bool = False
    include_settings: bool = False


def build_json_export(document: PromptDocument,
                      includes_by_id: Mapping[str, GlobalInclude],
                      settings: WorkspaceSettings,
                      options: JsonViewOptions) -> Dict[str, Any]:
    output: Dict[str, Any] = {"document": document.to_dict()}

    if options.include_includes:
        output["includes"] = [
            include.to_dict() for include in resolve_includes(document.global_include_ids, includes_by_id)
        ]

    if options.include_settings:
        output["settings"] = settings.to_dict()

    return output


def to_json_view(document: PromptDocument,
                 includes_by_id: Mapping[str, GlobalInclude],
                 settings: WorkspaceSettings,
                 options: JsonViewOptions) -> str:
    """Pretty-print the JSON export with a 2-space indent and a trailing newline"""
    output = build_json_export(document, includes_by_id, settings, options)
    return json.dumps(output, indent=2, ensure_ascii=False) + "\n"
