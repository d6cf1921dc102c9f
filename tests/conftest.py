"""
Test configuration and fixtures for Prompt Stack tests.
"""
from unittest.mock import AsyncMock, Mock

import pytest

from prompt_stack.api_handlers import WORKSPACE_KEY
from prompt_stack.core.document import PromptDocument, WorkspaceSettings
from prompt_stack.core.includes import GlobalInclude, InsertionPosition, InsertionRule
from prompt_stack.core.node import ContentMode, create_node
from prompt_stack.core.workspace import Workspace


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.prompt-stack directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("PROMPT_STACK_HOME", str(home))
    return home


@pytest.fixture
def sample_tree():
    """
    Tree used across tests:

        role (r)
        task (t)
          step (s1)
          step (s2)
            detail (d)
    """
    return [
        create_node(id="r", tag_name="role", content="You are terse."),
        create_node(id="t", tag_name="task", children=[
            create_node(id="s1", tag_name="step", content="First"),
            create_node(id="s2", tag_name="step", children=[
                create_node(id="d", tag_name="detail", content="Deep"),
            ]),
        ]),
    ]


@pytest.fixture
def sample_document(sample_tree):
    return PromptDocument(
        id="doc-1",
        name="Sample Prompt",
        root_tag_enabled=False,
        nodes=sample_tree,
    )


@pytest.fixture
def top_include():
    return GlobalInclude(
        id="inc-top",
        name="Preamble",
        nodes=[create_node(id="p", tag_name="preamble", content="Be kind.")],
        insertion=InsertionRule(InsertionPosition.TOP),
    )


@pytest.fixture
def step_include():
    return GlobalInclude(
        id="inc-step",
        name="Step note",
        nodes=[create_node(id="n", tag_name="note", content_mode=ContentMode.MARKDOWN, content="- check")],
        insertion=InsertionRule(InsertionPosition.AFTER_TAG, "step"),
    )


@pytest.fixture
def settings():
    return WorkspaceSettings()


@pytest.fixture
def workspace():
    """Fresh workspace with its single default document."""
    return Workspace()


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "storage"


@pytest.fixture
def make_request(workspace):
    """Factory for mocked aiohttp requests bound to the workspace fixture."""
    def factory(json_data=None, match_info=None, json_error=None, query=None, text=None):
        request = Mock()
        request.app = {WORKSPACE_KEY: workspace}
        request.match_info = match_info or {}
        request.query = query or {}
        request.path = "/api/test"
        if json_error is not None:
            request.json = AsyncMock(side_effect=json_error)
        else:
            request.json = AsyncMock(return_value=json_data if json_data is not None else {})
        request.text = AsyncMock(return_value=text or "")
        return request

    return factory
