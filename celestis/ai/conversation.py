"""
Conversation Manager - Keeps the chat transcript and the message history
sent to OpenRouter, and turns failures into visible system messages.
"""

import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Callable, List, Literal, Optional, Tuple

from .openrouter_client import OpenRouterClient, OpenRouterConfig, OpenRouterError, build_messages
from ..core.config import ChatConfig
from ..core.event_bus import EventBus, AI_RESPONSE, AVATAR_ANIMATE, CHAT_MESSAGE
from ..core.settings import UserSettings

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "Please set your OpenRouter API key in settings."
REQUEST_FAILED_MESSAGE = "Error: Could not get AI response. Please check your API key and try again."
CLEARED_MESSAGE = "Conversation cleared. The AI will continue using the initial template."

@dataclass
class ChatTurn:
    """One entry of the context sent with the next request."""
    role: Literal["user", "assistant"]
    content: str

@dataclass
class ChatMessage:
    """One entry of the visible transcript."""
    kind: Literal["user", "ai", "system"]
    content: str

ClientFactory = Callable[[UserSettings], OpenRouterClient]

class ConversationManager:
    """Sends user input to OpenRouter with the running conversation as context."""

    def __init__(self, settings: UserSettings, event_bus: Optional[EventBus] = None,
                 chat_config: Optional[ChatConfig] = None,
                 client_factory: Optional[ClientFactory] = None):
        self.settings = settings
        self.event_bus = event_bus
        self.chat_config = chat_config or ChatConfig()
        self._client_factory = client_factory or self._default_client_factory

        self.history: List[ChatTurn] = []
        self.transcript: List[ChatMessage] = []

        self._client: Optional[OpenRouterClient] = None
        self._client_key: Optional[Tuple[str, str]] = None
        # Submissions are serialized so history stays in request order
        self._send_lock = asyncio.Lock()

        logger.info("Conversation manager initialized")

    def _default_client_factory(self, settings: UserSettings) -> OpenRouterClient:
        return OpenRouterClient(OpenRouterConfig(
            api_key=settings.openrouter_api_key,
            model=settings.ai_model,
            base_url=self.chat_config.api_url,
            app_title=self.chat_config.app_title,
            max_tokens=self.chat_config.max_tokens,
            temperature=self.chat_config.temperature,
            timeout=self.chat_config.request_timeout,
        ))

    def _get_client(self) -> OpenRouterClient:
        key = (self.settings.openrouter_api_key, self.settings.ai_model)
        if self._client is None or self._client_key != key:
            self._client = self._client_factory(self.settings)
            self._client_key = key
        return self._client

    def update_settings(self, settings: UserSettings):
        """Use a new settings record; the client is rebuilt on next send."""
        self.settings = settings
        self._client = None
        self._client_key = None

    def history_as_dicts(self) -> List[dict]:
        return [asdict(turn) for turn in self.history]

    async def add_message(self, content: str, kind: str):
        """Append to the visible transcript and notify the UI."""
        message = ChatMessage(kind=kind, content=content)
        self.transcript.append(message)
        if self.event_bus:
            await self.event_bus.emit(CHAT_MESSAGE, message)

    async def send_message(self, text: str) -> Optional[str]:
        """Submit user text. Returns the AI reply, or ``None`` if nothing was received."""
        message = (text or "").strip()
        if not message:
            logger.debug("Empty message, not sending")
            return None

        if not self.settings.has_api_key:
            await self.add_message(MISSING_KEY_MESSAGE, "system")
            return None

        async with self._send_lock:
            await self.add_message(message, "user")
            self.history.append(ChatTurn(role="user", content=message))

            try:
                logger.info(f"Sending message to AI: {message[:80]}")
                client = self._get_client()
                messages = build_messages(self.settings.initial_template, self.history_as_dicts())
                response = await asyncio.to_thread(client.complete, messages)
            except (OpenRouterError, ValueError) as e:
                logger.error(f"ERROR calling AI: {e}")
                await self.add_message(REQUEST_FAILED_MESSAGE, "system")
                return None

            await self.add_message(response, "ai")
            self.history.append(ChatTurn(role="assistant", content=response))

        if self.event_bus:
            await self.event_bus.emit(AI_RESPONSE, response)
            await self.event_bus.emit(AVATAR_ANIMATE, "talk")

        return response

    async def clear_conversation(self):
        """Forget the context and the transcript."""
        logger.info("Clearing conversation history...")
        self.history = []
        self.transcript = []
        await self.add_message(CLEARED_MESSAGE, "system")

    async def available_models(self) -> List[str]:
        """Model ids OpenRouter offers for the configured key; empty without one."""
        if not self.settings.has_api_key:
            return []
        client = self._get_client()
        return await asyncio.to_thread(client.list_models)

    async def shutdown(self):
        logger.info("Conversation manager shutdown complete")
