#!/usr/bin/env python3
"""
User settings tests: defaults, legacy keys, presets and the JSON store.
"""

import json
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

from celestis.core.config import PROJECT_ROOT
from celestis.core.settings import (
    DEFAULT_MODEL, DEFAULT_TEMPLATE, TEMPLATE_PRESETS, SettingsStore, UserSettings,
    apply_preset, default_settings_path,
)

def test_defaults():
    settings = UserSettings()
    assert settings.openrouter_api_key == ""
    assert settings.ai_model == DEFAULT_MODEL == "meta-llama/llama-4-maverick:free"
    assert settings.voice_language == "en-US"
    assert settings.renderer_engine == "3d"
    assert settings.renderer_timeout_ms == 30000
    assert settings.avatar_scroll is True
    assert settings.avatar_in_chat is False
    assert settings.initial_template == DEFAULT_TEMPLATE
    assert settings.previous_renderer is None
    assert not settings.has_api_key

def test_legacy_camel_case_keys():
    settings = UserSettings.model_validate({
        "openrouterApiKey": "  sk-or-123  ",
        "aiModel": "openai/gpt-4o-mini",
        "voiceLanguage": "ja-JP",
        "rendererEngine": "three",
        "rendererTimeoutMs": 5000,
        "avatarInChat": True,
        "previousRenderer": "three",
        "someFutureKey": 1,
    })
    assert settings.openrouter_api_key == "sk-or-123"
    assert settings.has_api_key
    assert settings.ai_model == "openai/gpt-4o-mini"
    assert settings.voice_language == "ja-JP"
    assert settings.renderer_engine == "3d"
    assert settings.renderer_timeout_ms == 5000
    assert settings.avatar_in_chat is True

def test_renderer_engine_is_validated():
    assert UserSettings(renderer_engine="2D").renderer_engine == "2d"
    with pytest.raises(ValidationError):
        UserSettings(renderer_engine="vulkan")

def test_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        UserSettings(renderer_timeout_ms=0)

def test_assignment_is_validated():
    settings = UserSettings()
    settings.renderer_engine = "canvas"
    assert settings.renderer_engine == "2d"

def test_apply_preset():
    settings = apply_preset(UserSettings(), "technical")
    assert settings.initial_template == TEMPLATE_PRESETS["technical"]
    assert set(TEMPLATE_PRESETS) == {"friendly", "professional", "creative", "technical"}

    with pytest.raises(KeyError):
        apply_preset(settings, "sarcastic")

def test_store_missing_file(tmp_path):
    assert SettingsStore(tmp_path / "settings.json").load() is None

def test_store_invalid_json(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    store = SettingsStore(path)
    assert store.load() is None
    assert store.load_or_default() == UserSettings()

def test_store_rejects_non_object(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert SettingsStore(path).load() is None

def test_store_drops_only_invalid_keys(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "openrouterApiKey": "sk-or-saved",
        "aiModel": "x/y",
        "rendererTimeoutMs": 0,
        "renderer_engine": "vulkan",
    }), encoding="utf-8")

    settings = SettingsStore(path).load()
    assert settings.openrouter_api_key == "sk-or-saved"
    assert settings.ai_model == "x/y"
    assert settings.renderer_timeout_ms == 30000
    assert settings.renderer_engine == "3d"

def test_store_save_overwrites_wholesale(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    path.parent.mkdir()
    path.write_text(json.dumps({"aiModel": "old/model", "legacyOnly": True}), encoding="utf-8")

    store = SettingsStore(path)
    settings = UserSettings(openrouter_api_key="sk-1", voice_language="de-DE")
    assert store.save(settings)

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert "legacyOnly" not in saved
    assert saved["ai_model"] == DEFAULT_MODEL
    assert store.load() == settings

def test_store_save_failure_returns_false(tmp_path):
    # A directory where the file should be
    path = tmp_path / "settings.json"
    path.mkdir()
    assert SettingsStore(path).save(UserSettings()) is False

def test_dev_mode_uses_project_root():
    assert SettingsStore(dev_mode=True).path == PROJECT_ROOT / "settings.json"

def test_default_path_linux(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert default_settings_path() == tmp_path / "celestis" / "settings.json"

def test_default_path_windows(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "platform", "win32")
    monkeypatch.setenv("APPDATA", str(tmp_path))
    assert default_settings_path() == tmp_path / "Celestis" / "settings.json"

def test_default_path_macos(monkeypatch):
    monkeypatch.setattr(sys, "platform", "darwin")
    expected = Path.home() / "Library" / "Application Support" / "Celestis" / "settings.json"
    assert default_settings_path() == expected
