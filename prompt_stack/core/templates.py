"""
Built-in prompt templates.

Each template is described by nested seed dictionaries and materialized into
fresh nodes every time it is requested, so two documents created from the same
template never share node ids.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .document import PromptDocument, PromptKind, SCHEMA_VERSION
from .includes import now_ms
from .node import ContentMode, PromptNode, create_node, generate_id

XML_BASELINE = "XML_BASELINE"
XML_STRICT_OUTPUT = "XML_STRICT_OUTPUT"
RAW_XML_FRAGMENT = "RAW_XML_FRAGMENT"
CHAT_MESSAGES_STARTER = "CHAT_MESSAGES_STARTER"

TEMPLATE_IDS = [XML_BASELINE, XML_STRICT_OUTPUT, RAW_XML_FRAGMENT, CHAT_MESSAGES_STARTER]


@dataclass
class PromptTemplate:
    id: str
    kind: PromptKind
    suggested_name: str
    tags: List[str] = field(default_factory=list)
    root_tag_enabled: bool = True
    root_tag_name: str = "prompt"
    nodes: List[PromptNode] = field(default_factory=list)


_TEMPLATE_SEEDS: Dict[str, Dict[str, Any]] = {
    XML_BASELINE: {
        "kind": PromptKind.XML_STACK,
        "suggested_name": "XML Baseline Prompt",
        "tags": ["xml", "baseline"],
        "root_tag_enabled": True,
        "nodes": [
            {"tag_name": "role", "content_mode": ContentMode.PLAIN,
             "content": "You are a precise assistant."},
            {"tag_name": "task", "content_mode": ContentMode.MARKDOWN,
             "content": "Complete the user request exactly.\n- Keep output concise.\n- Avoid extra assumptions."},
            {"tag_name": "context", "content_mode": ContentMode.PLAIN,
             "content": "Relevant background information goes here."},
            {"tag_name": "constraints", "content_mode": ContentMode.MARKDOWN,
             "content": "- Follow required format.\n- Do not include forbidden content."},
            {"tag_name": "output_format", "content_mode": ContentMode.PLAIN,
             "content": "Return a clear final answer."},
        ],
    },
    XML_STRICT_OUTPUT: {
        "kind": PromptKind.XML_STACK,
        "suggested_name": "XML Strict Output Prompt",
        "tags": ["xml", "structured-output"],
        "root_tag_enabled": True,
        "nodes": [
            {"tag_name": "role", "content_mode": ContentMode.PLAIN,
             "content": "You are a strict formatter."},
            {"tag_name": "objective", "content_mode": ContentMode.PLAIN,
             "content": "Solve the request and produce schema-compliant output."},
            {"tag_name": "format_rules", "content_mode": ContentMode.MARKDOWN,
             "content": "- Use exactly the requested keys.\n- Keep key order stable.\n- No prose outside the format."},
            {"tag_name": "output_schema", "content_mode": ContentMode.RAW_XML,
             "content": '<schema>\n  <field name="result" type="string" />\n'
                        '  <field name="confidence" type="number" />\n</schema>'},
        ],
    },
    RAW_XML_FRAGMENT: {
        "kind": PromptKind.RAW_XML,
        "suggested_name": "Raw XML Fragment Prompt",
        "tags": ["raw-xml", "fragment"],
        "root_tag_enabled": True,
        "nodes": [
            {"tag_name": "instructions", "content_mode": ContentMode.PLAIN,
             "content": "Inject the fragment below into downstream XML pipeline."},
            {"tag_name": "fragment", "content_mode": ContentMode.RAW_XML,
             "content": '<rules>\n  <rule id="r1">Be deterministic.</rule>\n'
                        '  <rule id="r2">No hidden steps.</rule>\n</rules>'},
        ],
    },
    CHAT_MESSAGES_STARTER: {
        "kind": PromptKind.CHAT_MESSAGES_JSON,
        "suggested_name": "Chat Messages Starter",
        "tags": ["chat", "messages-json"],
        "root_tag_enabled": False,
        "nodes": [
            {"tag_name": "system", "content_mode": ContentMode.PLAIN,
             "content": "You are a helpful assistant."},
            {"tag_name": "user", "content_mode": ContentMode.PLAIN,
             "content": "Summarize the following text in 3 bullets."},
            {"tag_name": "assistant_format", "content_mode": ContentMode.MARKDOWN,
             "content": "- bullet 1\n- bullet 2\n- bullet 3"},
        ],
    },
}


def _seed_to_node(seed: Dict[str, Any]) -> PromptNode:
    return create_node(
        tag_name=seed["tag_name"],
        content_mode=seed["content_mode"],
        content=seed["content"],
        attributes=seed.get("attributes", {}),
        children=[_seed_to_node(child) for child in seed.get("children", [])],
    )


def get_prompt_template_ids() -> List[str]:
    return list(TEMPLATE_IDS)


def create_prompt_template(template_id: str) -> PromptTemplate:
    """
    Materialize a built-in template with fresh node ids.

    Raises:
        KeyError: If template_id is not a built-in template
    """
    seed = _TEMPLATE_SEEDS[template_id]
    return PromptTemplate(
        id=template_id,
        kind=seed["kind"],
        suggested_name=seed["suggested_name"],
        tags=list(seed["tags"]),
        root_tag_enabled=seed["root_tag_enabled"],
        root_tag_name="prompt",
        nodes=[_seed_to_node(node_seed) for node_seed in seed["nodes"]],
    )


def create_document_from_template(template_id: str, name: str = "") -> PromptDocument:
    """Create a new document from a built-in template, using its suggested name by default"""
    template = create_prompt_template(template_id)
    timestamp = now_ms()
    return PromptDocument(
        id=generate_id(),
        name=name.strip() or template.suggested_name,
        kind=template.kind,
        tags=template.tags,
        root_tag_enabled=template.root_tag_enabled,
        root_tag_name=template.root_tag_name,
        nodes=template.nodes,
        global_include_ids=[],
        created_at=timestamp,
        updated_at=timestamp,
        schema_version=SCHEMA_VERSION,
    )
