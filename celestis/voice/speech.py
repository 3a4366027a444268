"""
Speech recognition manager for Celestis AI Avatar.
Captures one utterance from the microphone and hands the final transcript to
the chat input. Recognition itself is done by the SpeechRecognition library.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import speech_recognition as sr

from ..core.config import VoiceConfig
from ..core.event_bus import EventBus, RECORDING_CHANGED, SPEECH_RECOGNIZED, VOICE_STATUS
from ..core.settings import UserSettings

logger = logging.getLogger(__name__)

NOT_SUPPORTED = "Speech recognition not supported"
LISTENING = "Listening..."
RECEIVED = "Voice input received"

class SpeechManager:
    """
    Push-to-talk speech input.

    ``toggle_recording`` starts listening for a single utterance in the
    configured language, or stops an utterance in progress. Events published:
    ``voice_status`` (text for the status label), ``speech_recognized``
    (final transcript) and ``recording_changed`` (bool).
    """

    def __init__(self, settings: UserSettings, event_bus: EventBus,
                 config: Optional[VoiceConfig] = None,
                 recognizer_factory: Callable[[], Any] = sr.Recognizer,
                 microphone_factory: Callable[[], Any] = sr.Microphone):
        self.settings = settings
        self.event_bus = event_bus
        self.config = config or VoiceConfig()
        self._recognizer_factory = recognizer_factory
        self._microphone_factory = microphone_factory

        self.recognizer: Optional[Any] = None
        self.microphone: Optional[Any] = None
        self.supported = False
        self.is_recording = False
        self.language = settings.voice_language

        self._stopper: Optional[Callable[..., None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._status_reset: Optional[asyncio.TimerHandle] = None

        logger.info("Speech Manager created")

    async def initialize(self):
        """Create the recognizer and open the default microphone."""
        self._loop = asyncio.get_running_loop()

        if not self.config.enabled:
            logger.info("Speech recognition disabled in configuration")
            return

        try:
            self.recognizer = self._recognizer_factory()
            self.recognizer.dynamic_energy_threshold = True
            self.microphone = self._microphone_factory()
        except (AttributeError, OSError) as e:
            # sr.Microphone raises AttributeError when PyAudio is missing
            logger.warning(f"Speech recognition not supported: {e}")
            self.recognizer = None
            self.microphone = None
            return

        self.supported = True
        logger.info("Speech recognition setup completed")

    def set_language(self, language: str):
        self.language = language

    async def toggle_recording(self):
        """Start or stop capturing an utterance."""
        if not self.supported:
            await self._set_status(NOT_SUPPORTED)
            return

        if self.is_recording:
            await self.stop_recording()
        else:
            await self.start_recording()

    async def start_recording(self):
        if self.is_recording or not self.supported:
            return

        self.language = self.settings.voice_language
        try:
            with self.microphone as source:
                self.recognizer.adjust_for_ambient_noise(source, duration=self.config.ambient_adjust_seconds)
            self._stopper = self.recognizer.listen_in_background(
                self.microphone,
                self._on_audio,
                phrase_time_limit=self.config.phrase_time_limit,
            )
        except (OSError, sr.WaitTimeoutError) as e:
            logger.error(f"Failed to start listening: {e}")
            await self._set_status(f"Voice recognition error: {e}", clear_after=3.0)
            return

        self.is_recording = True
        logger.info(f"Started speech recognition ({self.language})")
        await self.event_bus.emit(RECORDING_CHANGED, True)
        await self._set_status(LISTENING)

    async def stop_recording(self):
        if self._stopper is not None:
            stopper, self._stopper = self._stopper, None
            stopper(wait_for_stop=False)

        if self.is_recording:
            self.is_recording = False
            logger.info("Stopped speech recognition")
            await self.event_bus.emit(RECORDING_CHANGED, False)

    def _on_audio(self, recognizer, audio):
        """Called on the listener thread with one captured phrase."""
        if self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(self.process_audio(audio), self._loop)

    async def process_audio(self, audio) -> Optional[str]:
        """Recognize ``audio`` and publish the transcript. Ends the utterance."""
        transcript = None
        try:
            transcript = await asyncio.to_thread(
                self.recognizer.recognize_google, audio, language=self.language
            )
        except sr.UnknownValueError:
            await self._set_status("Voice recognition error: no-speech", clear_after=3.0)
        except sr.RequestError as e:
            logger.error(f"Speech service request failed: {e}")
            await self._set_status(f"Voice recognition error: {e}", clear_after=3.0)

        # Single-utterance mode
        await self.stop_recording()

        if transcript:
            logger.info(f"Speech recognized: {transcript}")
            await self.event_bus.emit(SPEECH_RECOGNIZED, transcript)
            await self._set_status(RECEIVED, clear_after=2.0)
        return transcript

    async def _set_status(self, message: str, clear_after: Optional[float] = None):
        if self._status_reset is not None:
            self._status_reset.cancel()
            self._status_reset = None

        await self.event_bus.emit(VOICE_STATUS, message)

        if clear_after and self._loop is not None:
            self._status_reset = self._loop.call_later(
                clear_after, lambda: asyncio.ensure_future(self.event_bus.emit(VOICE_STATUS, ""))
            )

    async def shutdown(self):
        """Stop listening and release the microphone."""
        logger.info("Shutting down Speech Manager...")
        await self.stop_recording()
        if self._status_reset is not None:
            self._status_reset.cancel()
        self.supported = False
        logger.info("Speech Manager shutdown complete")
