#!/usr/bin/env python3
"""
OpenRouter client tests against a fake chat-completions SDK object.
"""

from types import SimpleNamespace

import httpx
import openai
import pytest

from celestis.ai.openrouter_client import (
    OpenRouterClient, OpenRouterConfig, OpenRouterError, build_messages,
)

API_URL = "https://openrouter.ai/api/v1/chat/completions"

class FakeCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response

def fake_sdk(response=None, error=None, models=()):
    completions = FakeCompletions(response, error)
    return SimpleNamespace(
        chat=SimpleNamespace(completions=completions),
        models=SimpleNamespace(list=lambda: [SimpleNamespace(id=m) for m in models]),
    )

def reply(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])

def make_client(sdk, **overrides):
    config = OpenRouterConfig(api_key="sk-or-test", model="meta-llama/llama-4-maverick:free", **overrides)
    return OpenRouterClient(config, client=sdk)

def test_build_messages_order():
    history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
    messages = build_messages("Be brief.", history)
    assert messages == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]

def test_complete_sends_model_and_parameters():
    sdk = fake_sdk(reply("Hello there"))
    client = make_client(sdk, max_tokens=256, temperature=0.2)

    assert client.complete([{"role": "user", "content": "hi"}]) == "Hello there"
    call = sdk.chat.completions.calls[0]
    assert call["model"] == "meta-llama/llama-4-maverick:free"
    assert call["max_tokens"] == 256
    assert call["temperature"] == 0.2
    assert call["messages"] == [{"role": "user", "content": "hi"}]

def test_http_status_error():
    response = httpx.Response(401, request=httpx.Request("POST", API_URL))
    error = openai.AuthenticationError("unauthorized", response=response, body=None)
    client = make_client(fake_sdk(error=error))

    with pytest.raises(OpenRouterError, match="HTTP error! status: 401") as excinfo:
        client.complete([{"role": "user", "content": "hi"}])
    assert excinfo.value.status_code == 401

def test_connection_error():
    error = openai.APIConnectionError(request=httpx.Request("POST", API_URL))
    client = make_client(fake_sdk(error=error))

    with pytest.raises(OpenRouterError) as excinfo:
        client.complete([{"role": "user", "content": "hi"}])
    assert excinfo.value.status_code is None

def test_empty_choices():
    client = make_client(fake_sdk(SimpleNamespace(choices=[])))
    with pytest.raises(OpenRouterError, match="no choices"):
        client.complete([])

def test_null_content():
    client = make_client(fake_sdk(reply(None)))
    with pytest.raises(OpenRouterError, match="empty message"):
        client.complete([])

def test_api_key_required():
    with pytest.raises(ValueError):
        OpenRouterClient(OpenRouterConfig(api_key="", model="x"))

def test_list_models():
    client = make_client(fake_sdk(models=["a/b", "c/d"]))
    assert client.list_models() == ["a/b", "c/d"]

def test_default_sdk_client_uses_openrouter():
    client = OpenRouterClient(OpenRouterConfig(api_key="sk-or-test", model="some/model", app_title="Celestis Tests"))
    assert str(client._client.base_url).startswith("https://openrouter.ai/api/v1")
    assert client._client.default_headers["X-Title"] == "Celestis Tests"
