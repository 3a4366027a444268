#!/usr/bin/env python3
"""
Application orchestration tests. The Tk window is replaced by a recording
stub, so no display is needed.
"""

import asyncio
import signal
from unittest.mock import MagicMock

import pytest

pytest.importorskip("tkinter")

from celestis.ai.conversation import ConversationManager
from celestis.core import application as application_module
from celestis.core.application import (
    SAVE_FAILED_MESSAGE, SAVE_SUCCESS_MESSAGE, STATUS_2D_READY, STATUS_3D_INIT, STATUS_3D_READY, STATUS_FALLBACK,
    CelestisApplication,
)
from celestis.core.config import AppConfig
from celestis.core.settings import SettingsStore, UserSettings
from celestis.graphics import renderer as renderer_module
from celestis.graphics.renderer import Avatar2DRenderer, RendererUnavailable

from conftest import TRIANGLE, build_glb, png_bytes, triangle_gltf

class StubWindow:
    def __init__(self):
        self.messages = []
        self.statuses = []
        self.input_text = None
        self.layout = None
        self.root = None
        self.spawned = []

    def avatar_canvas_size(self):
        return (64, 96)

    def set_avatar_status(self, text):
        self.statuses.append(text)

    def add_message(self, message):
        self.messages.append(message)

    def set_input_text(self, text):
        self.input_text = text

    def apply_layout(self, avatar_in_chat, avatar_scroll):
        self.layout = (avatar_in_chat, avatar_scroll)

    def spawn(self, callback, *args):
        self.spawned.append((callback, args))

    async def shutdown(self):
        pass

@pytest.fixture(autouse=True)
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr(signal, "signal", lambda *args: None)

@pytest.fixture
def app(tmp_path):
    assets = tmp_path / "assets"
    (assets / "avatars").mkdir(parents=True)
    (assets / "avatars" / "default-2d.png").write_bytes(png_bytes())
    config = AppConfig(graphics={"assets_dir": assets})
    return CelestisApplication(config, settings_store=SettingsStore(tmp_path / "settings.json"))

async def started(app, renderer=None):
    await app.event_bus.initialize()
    app._setup_event_handlers()
    app.window = StubWindow()
    app.conversation_manager = ConversationManager(app.settings, event_bus=app.event_bus)
    if renderer is not None:
        app.renderer = renderer
    return app

def test_settings_seeded_from_environment_config(tmp_path):
    config = AppConfig(openrouter_api_key="sk-or-env", openrouter_model="openai/gpt-4o-mini")
    app = CelestisApplication(config, settings_store=SettingsStore(tmp_path / "settings.json"))
    settings = app._load_settings()
    assert settings.openrouter_api_key == "sk-or-env"
    assert settings.ai_model == "openai/gpt-4o-mini"

def test_saved_key_wins_over_environment(tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    store.save(UserSettings(openrouter_api_key="sk-or-saved", ai_model="saved/model"))
    config = AppConfig(openrouter_api_key="sk-or-env", openrouter_model="env/model")
    settings = CelestisApplication(config, settings_store=store)._load_settings()
    assert settings.openrouter_api_key == "sk-or-saved"
    assert settings.ai_model == "saved/model"

def test_renderer_status_when_3d_is_unavailable(app, monkeypatch):
    def unavailable():
        raise RendererUnavailable("no display")

    monkeypatch.setattr(renderer_module, "acquire_3d_backend", unavailable)

    async def scenario():
        await started(app)
        await app._setup_renderer()
        return app

    asyncio.run(scenario())
    assert app.renderer.engine == "2d"
    assert app.window.statuses == [STATUS_3D_INIT, STATUS_FALLBACK]

def test_renderer_status_when_3d_is_ready(app, monkeypatch):
    monkeypatch.setattr(renderer_module, "acquire_3d_backend", lambda: (MagicMock(), "fake"))

    async def scenario():
        await started(app)
        await app._setup_renderer()
        await app.renderer.shutdown()

    asyncio.run(scenario())
    assert app.renderer.engine == "3d"
    assert app.window.statuses == [STATUS_3D_INIT, STATUS_3D_READY]

def test_renderer_status_for_2d_setting(app):
    async def scenario():
        await started(app)
        app.settings.renderer_engine = "2d"
        await app._setup_renderer()

    asyncio.run(scenario())
    assert app.renderer.engine == "2d"
    assert app.window.statuses == [STATUS_2D_READY]

def test_import_image_avatar(app, tmp_path):
    path = tmp_path / "face.png"
    path.write_bytes(png_bytes())

    async def scenario():
        await started(app, Avatar2DRenderer((64, 96)))
        return await app.import_avatar(path)

    avatar = asyncio.run(scenario())
    assert avatar.is_image
    assert app.window.statuses[-1] == "2D Image Loaded: face.png"
    assert app.renderer.image is avatar.image

def test_model_into_2d_renderer_reports_error(app, tmp_path, triangle_glb):
    path = tmp_path / "model.vrm"
    path.write_bytes(triangle_glb)

    async def scenario():
        await started(app, Avatar2DRenderer((64, 96)))
        return await app.import_avatar(path)

    assert asyncio.run(scenario()) is None
    assert app.window.statuses[-1] == "Error loading avatar: 3D engine not ready - cannot load VRM model"

def test_model_into_3d_renderer(app, tmp_path, triangle_glb):
    path = tmp_path / "model.vrm"
    path.write_bytes(triangle_glb)

    async def scenario():
        renderer = renderer_module.Avatar3DRenderer((64, 96), acquire=lambda: (MagicMock(), "fake"))
        await renderer.initialize()
        await started(app, renderer)
        avatar = await app.import_avatar(path)
        await renderer.shutdown()
        return avatar

    avatar = asyncio.run(scenario())
    assert avatar.vertex_count == 3
    assert app.window.statuses[-1] == "VRM Avatar Loaded: model.vrm (3 vertices)"
    assert app.renderer.placement.scale == pytest.approx(0.85)

def test_broken_mesh_keeps_previous_avatar(app, tmp_path, triangle_glb):
    good = tmp_path / "good.vrm"
    good.write_bytes(triangle_glb)
    truncated = tmp_path / "truncated.vrm"
    truncated.write_bytes(build_glb(triangle_gltf(), binary=TRIANGLE[:12]))

    async def scenario():
        renderer = renderer_module.Avatar3DRenderer((64, 96), acquire=lambda: (MagicMock(), "fake"))
        await renderer.initialize()
        await started(app, renderer)
        first = await app.import_avatar(good)
        primitives = list(renderer.primitives)
        broken = await app.import_avatar(truncated)
        await renderer.shutdown()
        return first, primitives, broken

    first, primitives, broken = asyncio.run(scenario())
    assert broken is None
    assert app.window.statuses[-1].startswith("Error loading avatar: Invalid mesh data in truncated.vrm")
    assert app.renderer.avatar is first
    assert app.current_avatar is first
    assert len(primitives) == 1


def test_missing_import_file(app, tmp_path):
    async def scenario():
        await started(app, Avatar2DRenderer((64, 96)))
        return await app.import_avatar(tmp_path / "gone.vrm")

    assert asyncio.run(scenario()) is None
    assert app.window.statuses[-1].startswith("Error loading avatar:")

def test_internal_avatars(app):
    async def scenario():
        await started(app, Avatar2DRenderer((64, 96)))
        loaded = await app.load_internal_avatar("default-2d.png")
        missing = await app.load_internal_avatar("ghost.png")
        return loaded, missing

    loaded, missing = asyncio.run(scenario())
    assert loaded.is_image
    assert missing is None
    assert app.window.statuses[-1] == "Error loading avatar: File not found: ghost.png"

def test_save_settings_applies_everywhere(app, tmp_path):
    new_settings = UserSettings(openrouter_api_key="sk-or-new", avatar_in_chat=True, avatar_scroll=False)

    async def scenario():
        await started(app)
        return await app.save_settings(new_settings)

    assert asyncio.run(scenario()) is True
    assert app.settings is new_settings
    assert app.conversation_manager.settings is new_settings
    assert app.window.layout == (True, False)
    assert SettingsStore(tmp_path / "settings.json").load() == new_settings
    assert app.window.messages[-1].kind == "system"
    assert app.window.messages[-1].content == SAVE_SUCCESS_MESSAGE

def test_save_settings_failure_shows_system_message(app, tmp_path):
    (tmp_path / "blocked").mkdir()
    app.settings_store = SettingsStore(tmp_path / "blocked")

    async def scenario():
        await started(app)
        return await app.save_settings(UserSettings(openrouter_api_key="sk-or-new"))

    assert asyncio.run(scenario()) is False
    assert app.window.messages[-1].kind == "system"
    assert app.window.messages[-1].content == SAVE_FAILED_MESSAGE
    assert not app.settings.has_api_key

def test_speech_fills_input_without_sending(app):
    async def scenario():
        await started(app)
        await app.event_bus.emit("speech_recognized", "tell me a joke")

    asyncio.run(scenario())
    assert app.window.input_text == "tell me a joke"
    assert app.conversation_manager.history == []

class RecordingDialog:
    def __init__(self, parent, settings, on_save):
        self.settings = settings
        self.on_save = on_save
        self.shown = False
        self.models = None

    def show(self):
        self.shown = True

    def set_model_choices(self, models):
        self.models = list(models)

def test_settings_dialog_work_runs_as_tracked_tasks(app, monkeypatch):
    monkeypatch.setattr(application_module, "SettingsDialog", RecordingDialog)
    app.window = StubWindow()

    app.open_settings()
    callback, (dialog,) = app.window.spawned[0]
    assert dialog.shown
    assert callback == app._offer_models

    new_settings = UserSettings(openrouter_api_key="sk-or-new")
    dialog.on_save(new_settings)
    assert app.window.spawned[1] == (app.save_settings, (new_settings,))

def test_dialog_is_offered_openrouter_models(app):
    class ModelSource:
        async def available_models(self):
            return ["x/one", "y/two"]

    dialog = RecordingDialog(None, app.settings, on_save=None)
    app.conversation_manager = ModelSource()
    asyncio.run(app._offer_models(dialog))
    assert dialog.models == ["x/one", "y/two"]
