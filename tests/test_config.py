"""
Unit tests for settings configuration in Prompt Stack.

This module tests the settings data model, schema validation of settings
files and their persistence.
"""

import json
import os

import pytest

from prompt_stack.config import (
    ConfigError,
    get_config_path,
    get_home_directory,
    load_settings,
    save_settings,
    settings_from_data,
)
from prompt_stack.core.document import DEFAULT_SETTINGS, WorkspaceSettings
from prompt_stack.core.node import ValidationError


class TestWorkspaceSettings:
    """Test WorkspaceSettings data class."""

    def test_defaults(self):
        settings = WorkspaceSettings()

        assert settings.language == "en"
        assert settings.confirm_before_delete is True
        assert settings.show_markdown_preview is True
        assert settings.raw_xml_strict_mode is False
        assert settings.default_root_tag_enabled is True
        assert settings.default_root_tag_name == "prompt"

    def test_from_partial_dict(self):
        settings = WorkspaceSettings.from_dict({"rawXmlStrictMode": True})

        assert settings.raw_xml_strict_mode is True
        assert settings.language == "en"

    def test_from_empty_dict(self):
        assert WorkspaceSettings.from_dict({}) == WorkspaceSettings()
        assert WorkspaceSettings.from_dict(None) == WorkspaceSettings()

    def test_unsupported_language_falls_back(self):
        assert WorkspaceSettings.from_dict({"language": "fr"}).language == "en"

    def test_rejects_non_dict(self):
        with pytest.raises(ValidationError):
            WorkspaceSettings.from_dict(["en"])

    def test_round_trip(self):
        settings = WorkspaceSettings(language="ko", default_root_tag_name="system")
        assert WorkspaceSettings.from_dict(settings.to_dict()) == settings


class TestPaths:
    """Test home and settings path resolution."""

    def test_home_from_environment(self, isolated_home):
        assert get_home_directory() == str(isolated_home)
        assert get_config_path() == os.path.join(str(isolated_home), "settings.json")

    def test_config_path_follows_home_changes(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PROMPT_STACK_HOME", str(tmp_path / "moved"))
        assert get_config_path() == os.path.join(str(tmp_path / "moved"), "settings.json")

    def test_default_home(self, monkeypatch):
        monkeypatch.delenv("PROMPT_STACK_HOME", raising=False)
        assert get_home_directory().endswith(".prompt-stack")


class TestSettingsFromData:
    """Test schema validation of settings data."""

    def test_valid_data_is_merged_over_defaults(self):
        settings = settings_from_data({"language": "ko", "rawXmlStrictMode": True})

        assert settings.language == "ko"
        assert settings.raw_xml_strict_mode is True
        assert settings.default_root_tag_name == DEFAULT_SETTINGS.default_root_tag_name

    def test_empty_data_gives_defaults(self):
        assert settings_from_data({}) == WorkspaceSettings()
        assert settings_from_data(None) == WorkspaceSettings()

    @pytest.mark.parametrize("data", [
        {"language": "fr"},
        {"brandColor": "green"},
        {"rawXmlStrictMode": "yes"},
        {"defaultRootTagName": ""},
        ["not", "an", "object"],
    ])
    def test_invalid_data_gives_defaults(self, data):
        assert settings_from_data(data) == WorkspaceSettings()

    def test_defaults_are_not_shared(self):
        settings = settings_from_data({})
        settings.language = "ko"

        assert DEFAULT_SETTINGS.language == "en"


class TestLoadAndSave:
    """Test settings persistence."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_settings(str(tmp_path / "missing.json")) == WorkspaceSettings()

    def test_save_then_load(self, tmp_path):
        path = str(tmp_path / "nested" / "settings.json")
        settings = WorkspaceSettings(language="ko", raw_xml_strict_mode=True)

        assert save_settings(settings, path) == path
        assert load_settings(path) == settings

    def test_saved_file_is_camel_case(self, tmp_path):
        path = tmp_path / "settings.json"
        save_settings(WorkspaceSettings(), str(path))

        data = json.loads(path.read_text(encoding="utf-8"))

        assert data["defaultRootTagEnabled"] is True
        assert "default_root_tag_enabled" not in data

    def test_default_path_uses_home(self, isolated_home):
        path = save_settings(WorkspaceSettings(language="ko"))

        assert path == os.path.join(str(isolated_home), "settings.json")
        assert load_settings().language == "ko"

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{ nope", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_settings(str(path))

    def test_schema_violation_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"language": "fr"}), encoding="utf-8")

        assert load_settings(str(path)) == WorkspaceSettings()
