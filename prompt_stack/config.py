import json
import logging
import os
import os.path
from typing import Any, Dict, Optional

import jsonschema

from .core.document import DEFAULT_SETTINGS, WorkspaceSettings
from .core.node import PromptStackError

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "PROMPT_STACK_HOME"
DEFAULT_HOME = os.path.join(os.path.expanduser("~"), ".prompt-stack")

package_path = os.path.dirname(__file__)
schema_path = os.path.join(package_path, "schemas", "settings.schema.json")


class ConfigError(PromptStackError):
    """Raised when the settings file cannot be read"""
    pass


def get_home_directory() -> str:
    """Workspace home: $PROMPT_STACK_HOME if set, otherwise ~/.prompt-stack"""
    return os.path.abspath(os.environ.get(HOME_ENV_VAR) or DEFAULT_HOME)


def get_config_path() -> str:
    return os.path.join(get_home_directory(), "settings.json")


def load_settings_schema() -> Dict[str, Any]:
    with open(schema_path, "r", encoding="utf-8") as schema_file:
        return json.load(schema_file)


def settings_from_data(config_data: Any) -> WorkspaceSettings:
    """
    Validate raw settings data and merge it over the defaults.

    Invalid data is logged and replaced by the defaults rather than rejected.
    """
    if not config_data:
        return WorkspaceSettings.from_dict(DEFAULT_SETTINGS.to_dict())

    try:
        jsonschema.validate(config_data, load_settings_schema())
    except jsonschema.ValidationError as e:
        logger.error(f"Settings failed to validate against expected schema: {e.message}")
        return WorkspaceSettings.from_dict(DEFAULT_SETTINGS.to_dict())

    return WorkspaceSettings.from_dict({**DEFAULT_SETTINGS.to_dict(), **config_data})


def load_settings(path: Optional[str] = None) -> WorkspaceSettings:
    """
    Load workspace settings from a JSON file.

    A missing file yields the defaults.

    Raises:
        ConfigError: If the file exists but cannot be read or is not JSON
    """
    path = path or get_config_path()

    if not os.path.exists(path):
        logger.info(f"No settings found at {path}, using defaults")
        return WorkspaceSettings.from_dict(DEFAULT_SETTINGS.to_dict())

    try:
        with open(path, "r", encoding="utf-8") as config_file:
            config_data = json.load(config_file)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read settings from {path}: {e}")

    logger.info(f"Loaded settings from: {path}")
    return settings_from_data(config_data)


def save_settings(settings: WorkspaceSettings, path: Optional[str] = None) -> str:
    """
    Write workspace settings as JSON.

    Returns:
        Path the settings were written to

    Raises:
        ConfigError: If the file cannot be written
    """
    path = path or get_config_path()

    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "w", encoding="utf-8") as config_file:
            json.dump(settings.to_dict(), config_file, indent=2, ensure_ascii=False)
    except OSError as e:
        raise ConfigError(f"Failed to write settings to {path}: {e}")

    return path
