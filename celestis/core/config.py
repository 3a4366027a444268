"""
Configuration management for Celestis AI Avatar.
Handles loading and validation of application-level settings.

User-editable settings (API key, model, voice language, renderer...) live in
``settings.py``; this module covers how the application itself is run.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_FILE = "configs/config.yaml"

class ChatConfig(BaseModel):
    """OpenRouter chat-completion parameters."""
    api_url: str = "https://openrouter.ai/api/v1"
    app_title: str = "Celestis AI Avatar"
    max_tokens: int = 1000
    temperature: float = 0.7
    request_timeout: float = 60.0

class GraphicsConfig(BaseModel):
    """Window and avatar rendering configuration."""
    window_width: int = 1200
    window_height: int = 800
    avatar_width: int = 420
    avatar_height: int = 560
    target_fps: int = 60
    camera_fov: float = 50.0
    assets_dir: Path = PROJECT_ROOT / "assets"

class VoiceConfig(BaseModel):
    """Speech recognition configuration."""
    enabled: bool = True
    phrase_time_limit: float = 15.0
    ambient_adjust_seconds: float = 0.5

class SystemConfig(BaseModel):
    """System integration configuration."""
    startup_with_windows: bool = False

class AppConfig(BaseModel):
    """Main application configuration."""
    app_name: str = "Celestis AI Avatar"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    settings_file: Optional[Path] = None
    openrouter_api_key: Optional[str] = None
    openrouter_model: Optional[str] = None

    # Component configurations
    chat: ChatConfig = Field(default_factory=ChatConfig)
    graphics: GraphicsConfig = Field(default_factory=GraphicsConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)

def _env_flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")

def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            base[key] = deep_merge(base[key], value)
        else:
            base[key] = value
    return base

def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from file or environment variables."""

    if config_file is None:
        config_file = os.getenv("CELESTIS_CONFIG", DEFAULT_CONFIG_FILE)

    config_path = Path(config_file)

    # Load from YAML if exists
    config_data: Dict[str, Any] = {}
    if config_path.exists() and config_path.suffix in ['.yaml', '.yml']:
        import yaml
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    env_overrides: Dict[str, Any] = {}

    if os.getenv('OPENROUTER_API_KEY'):
        env_overrides['openrouter_api_key'] = os.getenv('OPENROUTER_API_KEY')
    if os.getenv('OPENROUTER_MODEL'):
        env_overrides['openrouter_model'] = os.getenv('OPENROUTER_MODEL')
    if os.getenv('CELESTIS_LOG_LEVEL'):
        env_overrides['log_level'] = os.getenv('CELESTIS_LOG_LEVEL')
    if os.getenv('CELESTIS_DEV') is not None:
        env_overrides['debug'] = _env_flag(os.getenv('CELESTIS_DEV'))
    if os.getenv('CELESTIS_SETTINGS_FILE'):
        env_overrides['settings_file'] = os.getenv('CELESTIS_SETTINGS_FILE')

    final_config = deep_merge(config_data, env_overrides)

    return AppConfig(**final_config)
