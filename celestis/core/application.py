"""
Main application class for Celestis AI Avatar.
Coordinates all components and manages the main application loop.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Union

from .config import AppConfig
from .event_bus import (
    AVATAR_ANIMATE, AVATAR_STATUS, CHAT_MESSAGE, RECORDING_CHANGED, SETTINGS_CHANGED,
    SPEECH_RECOGNIZED, VOICE_STATUS, WINDOW_CLOSED, EventBus,
)
from .settings import SettingsStore, UserSettings
from ..ai.conversation import ChatMessage, ConversationManager
from ..graphics.renderer import Avatar2DRenderer, Avatar3DRenderer, select_renderer
from ..gui.settings_dialog import SettingsDialog
from ..gui.window import ChatWindow
from ..integrations.files import (
    AvatarEntry, find_default_2d_avatar, list_internal_avatars, read_internal_avatar, read_model_file,
)
from ..integrations.system import disable_autostart, enable_autostart
from ..models.avatar import AvatarLoader, AvatarLoadError, LoadedAvatar
from ..voice.speech import SpeechManager

logger = logging.getLogger(__name__)

STATUS_INITIALIZING = "Initializing application..."
STATUS_3D_INIT = "Initializing 3D engine..."
STATUS_3D_READY = "3D engine ready - Import VRM to load avatar"
STATUS_2D_READY = "2D engine ready"
STATUS_FALLBACK = "3D engine not available - using fallback mode"
SAVE_FAILED_MESSAGE = "Error saving settings"
SAVE_SUCCESS_MESSAGE = "Settings saved successfully!"

Renderer = Union[Avatar2DRenderer, Avatar3DRenderer]

class CelestisApplication:
    """Main application class that orchestrates all components."""

    def __init__(self, config: AppConfig, settings_store: Optional[SettingsStore] = None):
        self.config = config
        self.running = False
        self.event_bus = EventBus()
        self.settings_store = settings_store or SettingsStore(
            path=config.settings_file, dev_mode=config.debug
        )
        self.settings = UserSettings()
        self.loader = AvatarLoader()

        # Core components
        self.window: Optional[ChatWindow] = None
        self.renderer: Optional[Renderer] = None
        self.conversation_manager: Optional[ConversationManager] = None
        self.speech_manager: Optional[SpeechManager] = None
        self.internal_avatars = []
        self.current_avatar: Optional[LoadedAvatar] = None
        self.avatar_status = STATUS_INITIALIZING

        # Setup signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        logger.info("Celestis application created")

    async def initialize(self):
        """Initialize all application components."""
        logger.info("Initializing application components...")

        try:
            await self.event_bus.initialize()
            self._setup_event_handlers()

            self.settings = self._load_settings()

            graphics = self.config.graphics
            self.window = ChatWindow(
                title=self.config.app_name,
                width=graphics.window_width,
                height=graphics.window_height,
                avatar_size=(graphics.avatar_width, graphics.avatar_height),
            )
            self._bind_window_callbacks()
            await self.window.initialize()
            self.window.apply_layout(self.settings.avatar_in_chat, self.settings.avatar_scroll)

            await self._setup_renderer()

            self.speech_manager = SpeechManager(
                settings=self.settings,
                event_bus=self.event_bus,
                config=self.config.voice,
            )
            await self.speech_manager.initialize()

            self.conversation_manager = ConversationManager(
                settings=self.settings,
                event_bus=self.event_bus,
                chat_config=self.config.chat,
            )

            self.internal_avatars = list_internal_avatars(graphics.assets_dir)
            self.window.set_internal_avatars([entry.name for entry in self.internal_avatars])

            if self.renderer.engine == "2d":
                await self._load_default_2d_avatar()

            if self.config.system.startup_with_windows:
                enable_autostart(args=[str(Path(sys.argv[0]).resolve())])
            else:
                disable_autostart()

            logger.info("All components initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize application: {e}", exc_info=True)
            raise

    def _load_settings(self) -> UserSettings:
        saved = self.settings_store.load()
        settings = saved or UserSettings()
        if not settings.openrouter_api_key and self.config.openrouter_api_key:
            settings.openrouter_api_key = self.config.openrouter_api_key
        if saved is None and self.config.openrouter_model:
            settings.ai_model = self.config.openrouter_model
        logger.info(f"Settings loaded (model: {settings.ai_model}, renderer: {settings.renderer_engine})")
        return settings

    async def _setup_renderer(self):
        requested = self.settings.renderer_engine
        if requested == "3d":
            await self._set_avatar_status(STATUS_3D_INIT)

        self.renderer = await select_renderer(
            self.settings,
            size=self.window.avatar_canvas_size(),
            fov=self.config.graphics.camera_fov,
        )

        if self.renderer.engine == "3d":
            await self._set_avatar_status(STATUS_3D_READY)
        elif requested == "3d":
            await self._set_avatar_status(STATUS_FALLBACK)
        else:
            await self._set_avatar_status(STATUS_2D_READY)

    async def _load_default_2d_avatar(self):
        entry = find_default_2d_avatar(self.internal_avatars)
        if entry is None:
            logger.info("No bundled 2D avatar found")
            return
        await self.load_internal_avatar(entry.name)

    def _bind_window_callbacks(self):
        self.window.on_send = self.send_message
        self.window.on_mic = self._toggle_recording
        self.window.on_clear = self._clear_conversation
        self.window.on_import = self.import_avatar_dialog
        self.window.on_settings = self.open_settings
        self.window.on_internal_avatar = self.load_internal_avatar
        self.window.on_close = lambda: self.event_bus.emit(WINDOW_CLOSED)

    def _setup_event_handlers(self):
        """Setup event handlers for inter-component communication."""

        # Conversation -> chat transcript
        self.event_bus.subscribe(CHAT_MESSAGE, self._handle_chat_message)

        # Speech recognition -> text input (never auto-sent)
        self.event_bus.subscribe(SPEECH_RECOGNIZED, self._handle_speech_input)
        self.event_bus.subscribe(VOICE_STATUS, self._handle_voice_status)
        self.event_bus.subscribe(RECORDING_CHANGED, self._handle_recording_changed)

        # Conversation -> animation
        self.event_bus.subscribe(AVATAR_ANIMATE, self._handle_avatar_animate)
        self.event_bus.subscribe(AVATAR_STATUS, self._handle_avatar_status)

        # System events
        self.event_bus.subscribe(WINDOW_CLOSED, self._handle_window_close)

        logger.info("Event handlers configured")

    async def _handle_chat_message(self, message: ChatMessage):
        if self.window:
            self.window.add_message(message)

    async def _handle_speech_input(self, text: str):
        logger.info(f"Speech input: {text}")
        if self.window:
            self.window.set_input_text(text)

    async def _handle_voice_status(self, status: str):
        if self.window:
            self.window.set_voice_status(status)

    async def _handle_recording_changed(self, recording: bool):
        if self.window:
            self.window.set_recording(recording)

    async def _handle_avatar_animate(self, kind: str):
        if self.renderer:
            self.renderer.animate(kind)

    async def _handle_avatar_status(self, status: str):
        if self.window:
            self.window.set_avatar_status(status)
        if self.renderer:
            self.renderer.set_status(status)

    async def _handle_window_close(self):
        logger.info("Window close requested")
        self.running = False

    async def _set_avatar_status(self, status: str):
        self.avatar_status = status
        await self.event_bus.emit(AVATAR_STATUS, status)

    async def send_message(self, text: str):
        if self.conversation_manager:
            await self.conversation_manager.send_message(text)

    async def _toggle_recording(self):
        if self.speech_manager:
            await self.speech_manager.toggle_recording()

    async def _clear_conversation(self):
        if self.window:
            self.window.clear_messages()
        if self.conversation_manager:
            await self.conversation_manager.clear_conversation()

    async def import_avatar_dialog(self):
        """Ask for a model file and load it."""
        path = self.window.ask_model_file()
        if path is None:
            logger.info("Import cancelled")
            return
        await self.import_avatar(path)

    async def import_avatar(self, path) -> Optional[LoadedAvatar]:
        """Load a user-chosen model or image into the renderer."""
        path = Path(path)
        try:
            data = await asyncio.to_thread(read_model_file, path)
        except OSError as e:
            logger.error(f"Error reading model file: {e}")
            await self._set_avatar_status(f"Error loading avatar: {e}")
            return None
        return await self._load_avatar_bytes(data, path.name, path.parent)

    async def load_internal_avatar(self, name: str) -> Optional[LoadedAvatar]:
        """Load one of the avatars bundled under assets/avatars."""
        assets_dir = self.config.graphics.assets_dir
        try:
            data = await asyncio.to_thread(read_internal_avatar, assets_dir, name)
        except OSError as e:
            logger.error(f"Error reading internal avatar: {e}")
            await self._set_avatar_status(f"Error loading avatar: {e}")
            return None
        entry = AvatarEntry(name=name, path=Path(assets_dir) / "avatars" / name)
        return await self._load_avatar_bytes(data, entry.name, entry.path.parent)

    async def _load_avatar_bytes(self, data: bytes, name: str, base_dir: Path) -> Optional[LoadedAvatar]:
        await self._set_avatar_status(f"Loading {name}...")
        try:
            avatar = await asyncio.to_thread(self.loader.load_bytes, data, name, base_dir)
            await self.renderer.load_avatar(avatar)
        except AvatarLoadError as e:
            logger.error(f"Error loading avatar {name}: {e}")
            await self._set_avatar_status(f"Error loading avatar: {e}")
            return None

        self.current_avatar = avatar
        if avatar.is_image:
            await self._set_avatar_status(f"2D Image Loaded: {name}")
        else:
            await self._set_avatar_status(f"VRM Avatar Loaded: {name} ({avatar.vertex_count} vertices)")
        return avatar

    def open_settings(self):
        dialog = SettingsDialog(
            self.window.root,
            self.settings,
            on_save=lambda settings: self.window.spawn(self.save_settings, settings),
        )
        dialog.show()
        self.window.spawn(self._offer_models, dialog)

    async def _offer_models(self, dialog: SettingsDialog):
        """Extend the dialog's model list with what OpenRouter offers for the key."""
        if not self.conversation_manager:
            return
        models = await self.conversation_manager.available_models()
        if models:
            dialog.set_model_choices(models)

    async def save_settings(self, settings: UserSettings) -> bool:
        """Persist the whole record and re-apply it to the running components."""
        if not self.settings_store.save(settings):
            if self.conversation_manager:
                await self.conversation_manager.add_message(SAVE_FAILED_MESSAGE, "system")
            return False

        self.settings = settings
        if self.conversation_manager:
            self.conversation_manager.update_settings(settings)
        if self.speech_manager:
            self.speech_manager.settings = settings
            self.speech_manager.set_language(settings.voice_language)
        if self.window:
            self.window.apply_layout(settings.avatar_in_chat, settings.avatar_scroll)

        await self.event_bus.emit(SETTINGS_CHANGED, settings)
        if self.conversation_manager:
            await self.conversation_manager.add_message(SAVE_SUCCESS_MESSAGE, "system")
        logger.info("Settings applied")
        return True

    async def run(self):
        """Main application run loop."""
        try:
            await self.initialize()

            self.running = True
            logger.info("Starting main application loop")

            frame_delay = 1.0 / max(self.config.graphics.target_fps, 1)
            while self.running:
                try:
                    if self.renderer and self.window:
                        size = self.window.avatar_canvas_size()
                        if size != self.renderer.size:
                            self.renderer.resize(size)
                        self.window.show_frame(await self.renderer.render_frame())

                    if self.window:
                        await self.window.process_events()

                    await asyncio.sleep(frame_delay)

                except Exception as e:
                    logger.error(f"Error in main loop: {e}", exc_info=True)
                    if not self.running:
                        break

        except Exception as e:
            logger.error(f"Application error: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Shutdown the application gracefully."""
        logger.info("Shutting down application...")
        self.running = False

        # Shutdown components in reverse order
        components = [
            self.speech_manager,
            self.conversation_manager,
            self.renderer,
            self.window,
            self.event_bus,
        ]

        for component in components:
            if component:
                try:
                    await component.shutdown()
                except Exception as e:
                    logger.error(f"Error shutting down component: {e}")

        self.speech_manager = None
        self.conversation_manager = None
        self.renderer = None
        self.window = None
        logger.info("Application shutdown complete")

    def _signal_handler(self, signum, frame):
        """Handle system signals for graceful shutdown."""
        logger.info(f"Received signal {signum}")
        self.running = False
