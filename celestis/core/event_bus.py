"""
Event Bus - Central event system for component communication.
Lets the chat, voice, avatar and window components talk without holding
references to each other.
"""

import logging
import asyncio
from typing import Dict, List, Callable
from collections import defaultdict

logger = logging.getLogger(__name__)

# Event names used across the application
CHAT_MESSAGE = "chat_message"
AI_RESPONSE = "ai_response"
AVATAR_ANIMATE = "avatar_animate"
AVATAR_STATUS = "avatar_status"
VOICE_STATUS = "voice_status"
SPEECH_RECOGNIZED = "speech_recognized"
RECORDING_CHANGED = "recording_changed"
SETTINGS_CHANGED = "settings_changed"
WINDOW_CLOSED = "window_closed"

class EventBus:
    """Async event bus for component communication."""

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = defaultdict(list)
        self.running = False

    async def initialize(self):
        """Initialize the event bus."""
        self.running = True
        logger.info("Event bus initialized")

    def subscribe(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        self.listeners[event_name].append(callback)
        logger.debug(f"Subscribed to event: {event_name}")

    def unsubscribe(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if callback in self.listeners.get(event_name, []):
            self.listeners[event_name].remove(callback)
            logger.debug(f"Unsubscribed from event: {event_name}")

    async def emit(self, event_name: str, *args, **kwargs) -> int:
        """Emit an event to all listeners. Returns how many were called."""
        if not self.running:
            return 0

        # Copy so listeners may unsubscribe while being called
        listeners = list(self.listeners.get(event_name, []))
        if listeners:
            logger.debug(f"Emitting event: {event_name} to {len(listeners)} listeners")

        for callback in listeners:
            try:
                result = callback(*args, **kwargs)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event listener for {event_name}: {e}", exc_info=True)
        return len(listeners)

    async def shutdown(self):
        """Shutdown the event bus."""
        self.running = False
        self.listeners.clear()
        logger.info("Event bus shutdown")
