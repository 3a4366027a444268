"""
User settings - the flat record edited in the Settings dialog.

The record is persisted as JSON in a platform configuration directory and is
always overwritten wholesale on save.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import PROJECT_ROOT

logger = logging.getLogger(__name__)

APP_DIR_NAME = "Celestis"
SETTINGS_FILE_NAME = "settings.json"

DEFAULT_MODEL = "meta-llama/llama-4-maverick:free"
DEFAULT_TEMPLATE = "You are a helpful AI assistant in a VRM avatar application. Be friendly and engaging."

TEMPLATE_PRESETS: Dict[str, str] = {
    "friendly": (
        "You are a warm, friendly AI assistant in a VRM avatar application. Be cheerful, "
        "enthusiastic, and supportive in all your responses. Use casual language and show "
        "genuine interest in helping users."
    ),
    "professional": (
        "You are a professional AI assistant with expertise across multiple domains. Provide "
        "clear, accurate, and well-structured responses. Maintain a courteous and "
        "business-appropriate tone."
    ),
    "creative": (
        "You are a creative AI assistant who loves to think outside the box. Be imaginative, "
        "inspiring, and help users explore new ideas. Encourage creativity and offer unique "
        "perspectives."
    ),
    "technical": (
        "You are a technical expert AI assistant specializing in programming, technology, and "
        "problem-solving. Provide detailed, accurate technical information and practical solutions."
    ),
}

# Renderer names written by older builds
_LEGACY_RENDERERS = {"three": "3d", "babylon": "3d", "webgl": "3d", "canvas": "2d"}


class UserSettings(BaseModel):
    """Settings record. Accepts the camelCase keys older builds wrote."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, extra="ignore")

    openrouter_api_key: str = Field("", validation_alias=AliasChoices("openrouter_api_key", "openrouterApiKey"))
    ai_model: str = Field(DEFAULT_MODEL, validation_alias=AliasChoices("ai_model", "aiModel"))
    voice_language: str = Field("en-US", validation_alias=AliasChoices("voice_language", "voiceLanguage"))
    renderer_engine: Literal["3d", "2d"] = Field(
        "3d", validation_alias=AliasChoices("renderer_engine", "rendererEngine")
    )
    renderer_timeout_ms: int = Field(
        30000, gt=0, validation_alias=AliasChoices("renderer_timeout_ms", "rendererTimeoutMs")
    )
    avatar_scroll: bool = Field(True, validation_alias=AliasChoices("avatar_scroll", "avatarScroll"))
    avatar_in_chat: bool = Field(False, validation_alias=AliasChoices("avatar_in_chat", "avatarInChat"))
    initial_template: str = Field(
        DEFAULT_TEMPLATE, validation_alias=AliasChoices("initial_template", "initialTemplate")
    )
    previous_renderer: Optional[str] = Field(
        None, validation_alias=AliasChoices("previous_renderer", "previousRenderer")
    )

    @field_validator("renderer_engine", mode="before")
    @classmethod
    def _normalize_renderer(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return _LEGACY_RENDERERS.get(value, value)
        return value

    @field_validator("openrouter_api_key", mode="before")
    @classmethod
    def _strip_key(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @property
    def has_api_key(self) -> bool:
        return bool(self.openrouter_api_key)


def _field_for_key(key: str) -> str:
    """Map a stored key, including the legacy camelCase ones, to its field name."""
    for name, info in UserSettings.model_fields.items():
        alias = info.validation_alias
        if key == name or (isinstance(alias, AliasChoices) and key in alias.choices):
            return name
    return key


def _validate_dropping_invalid(data: Dict[str, Any], source: Path) -> Optional[UserSettings]:
    """Validate ``data``, discarding only the keys that fail so the rest still apply."""
    values = dict(data)
    while True:
        try:
            return UserSettings.model_validate(values)
        except ValidationError as e:
            invalid = {_field_for_key(str(error["loc"][0])) for error in e.errors() if error["loc"]}
            dropped = [key for key in values if _field_for_key(key) in invalid]
            if not dropped:
                logger.error(f"Settings file {source} is invalid: {e}")
                return None
            logger.warning(f"Ignoring invalid settings in {source}: {', '.join(dropped)}")
            for key in dropped:
                del values[key]


def apply_preset(settings: UserSettings, preset: str) -> UserSettings:
    """Replace the system prompt template with a named preset."""
    settings.initial_template = TEMPLATE_PRESETS[preset]
    logger.debug(f"Applied {preset} template preset")
    return settings


def default_settings_path() -> Path:
    """Return the platform-appropriate location of settings.json."""
    if sys.platform == "win32":
        base = Path(os.getenv("APPDATA") or Path.home() / "AppData" / "Roaming") / APP_DIR_NAME
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    else:
        base = Path(os.getenv("XDG_CONFIG_HOME") or Path.home() / ".config") / APP_DIR_NAME.lower()
    return base / SETTINGS_FILE_NAME


def development_settings_path() -> Path:
    """Settings file used when running from a source checkout in dev mode."""
    return PROJECT_ROOT / SETTINGS_FILE_NAME


class SettingsStore:
    """Reads and writes the user settings JSON file."""

    def __init__(self, path: Optional[Path] = None, dev_mode: bool = False):
        if path is None:
            path = development_settings_path() if dev_mode else default_settings_path()
        self.path = Path(path)
        logger.debug(f"Settings store using {self.path}")

    def load(self) -> Optional[UserSettings]:
        """Load saved settings; ``None`` when missing or unreadable.

        Keys holding invalid values are dropped and fall back to their defaults.
        """
        logger.info(f"Loading settings from: {self.path}")
        if not self.path.exists():
            logger.info("No settings file found")
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Error loading settings: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Error loading settings: expected an object, got {type(data).__name__}")
            return None

        return _validate_dropping_invalid(data, self.path)

    def load_or_default(self) -> UserSettings:
        """Saved values layered over the defaults."""
        return self.load() or UserSettings()

    def save(self, settings: UserSettings) -> bool:
        """Overwrite the settings file with ``settings``."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = settings.model_dump(mode="json")
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            logger.info(f"Settings saved to: {self.path}")
            return True
        except OSError as e:
            logger.error(f"Error saving settings: {e}")
            return False
