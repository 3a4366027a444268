"""
OpenRouter client for Celestis AI Avatar.
OpenRouter exposes an OpenAI-compatible chat-completions endpoint, so the
official ``openai`` SDK is used with a different base URL.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import openai

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

class OpenRouterError(Exception):
    """Raised when a chat completion cannot be obtained."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

@dataclass
class OpenRouterConfig:
    """Configuration for the OpenRouter client."""
    api_key: str
    model: str
    base_url: str = OPENROUTER_BASE_URL
    app_title: str = "Celestis AI Avatar"
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout: float = 60.0

def build_messages(system_prompt: str, history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    """System prompt first, then every turn of the conversation in order."""
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": turn["role"], "content": turn["content"]} for turn in history)
    return messages

class OpenRouterClient:
    """Thin synchronous wrapper around the chat-completions endpoint."""

    def __init__(self, config: OpenRouterConfig, client: Optional[Any] = None):
        if not config.api_key:
            raise ValueError("OpenRouter API key is required")

        self.config = config
        self._client = client or openai.OpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            default_headers={"X-Title": config.app_title},
        )
        logger.info(f"OpenRouter client initialized with model: {config.model}")

    def complete(self, messages: List[Dict[str, str]]) -> str:
        """Send ``messages`` and return the generated text."""
        logger.debug(f"Requesting completion ({len(messages)} messages, model={self.config.model})")
        try:
            response = self._client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except openai.APIStatusError as e:
            raise OpenRouterError(f"HTTP error! status: {e.status_code}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise OpenRouterError(f"OpenRouter request failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise OpenRouterError("OpenRouter returned no choices")

        content = choices[0].message.content
        if content is None:
            raise OpenRouterError("OpenRouter returned an empty message")

        logger.info(f"Received OpenRouter response: {len(content)} characters")
        return content

    def list_models(self) -> List[str]:
        """Model identifiers available to this key."""
        try:
            return [model.id for model in self._client.models.list()]
        except openai.APIError as e:
            logger.error(f"Failed to get available models: {e}")
            return []
