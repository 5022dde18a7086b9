"""
Unit tests for LLM provider selection and reply handling.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from farm_assistant.services.llm_provider import (
    DEFAULT_MODELS, LLMResponseError, check_llm_api_keys, get_llm_provider,
    get_model_name, llm_complete, llm_stream
)


def test_explicit_provider(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "Anthropic")

    assert get_llm_provider() == "anthropic"


def test_unknown_provider(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "bard")

    with pytest.raises(ValueError, match="Unknown provider"):
        get_llm_provider()


def test_provider_from_first_configured_key(monkeypatch):
    monkeypatch.delenv("LLM_PROVIDER")
    monkeypatch.delenv("OPENAI_API_KEY")
    monkeypatch.setenv("MISTRAL_API_KEY", "m-key")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "d-key")

    assert get_llm_provider() == "mistral"


def test_openrouter_is_preferred(monkeypatch):
    monkeypatch.delenv("LLM_PROVIDER")
    monkeypatch.setenv("OPEN_ROUTER_API_KEY", "or-key")

    assert get_llm_provider() == "openrouter"


def test_no_provider_configured(monkeypatch):
    monkeypatch.delenv("LLM_PROVIDER")
    monkeypatch.delenv("OPENAI_API_KEY")

    with pytest.raises(RuntimeError, match="No LLM provider"):
        get_llm_provider()
    with pytest.raises(RuntimeError, match="No LLM API key"):
        check_llm_api_keys()


def test_model_name(monkeypatch):
    assert get_model_name("openai") == DEFAULT_MODELS["openai"]

    monkeypatch.setenv("LLM_MODEL", "gpt-4o-mini")
    assert get_model_name("openai") == "gpt-4o-mini"


def _openai_client(create):
    client = MagicMock()
    client.chat.completions.create = create
    return client


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


async def test_llm_complete_returns_content():
    create = AsyncMock(return_value=_completion("🌱 **Main Advice**: Water early."))
    messages = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]

    with patch("farm_assistant.services.llm_provider._openai_compatible_client", return_value=_openai_client(create)):
        reply = await llm_complete(messages)

    assert reply == "🌱 **Main Advice**: Water early."
    create.assert_awaited_once_with(model="gpt-4o", messages=messages)


async def test_llm_complete_empty_reply():
    create = AsyncMock(return_value=_completion("   "))

    with patch("farm_assistant.services.llm_provider._openai_compatible_client", return_value=_openai_client(create)):
        with pytest.raises(LLMResponseError, match="empty content"):
            await llm_complete([{"role": "user", "content": "hi"}])


async def test_llm_complete_anthropic_moves_system_prompt(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "a-key")
    response = SimpleNamespace(content=[SimpleNamespace(type="text", text="Use mulch.")])
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=response)

    with patch("farm_assistant.services.llm_provider.anthropic.AsyncAnthropic", return_value=client):
        reply = await llm_complete(
            [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}],
            provider="anthropic",
        )

    assert reply == "Use mulch."
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["system"] == "sys"
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]


class _FakeStream:
    def __init__(self, deltas):
        self._deltas = deltas

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for delta in self._deltas:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=delta))])


async def test_llm_stream_yields_deltas():
    create = AsyncMock(return_value=_FakeStream(["Water ", None, "early."]))

    with patch("farm_assistant.services.llm_provider._openai_compatible_client", return_value=_openai_client(create)):
        parts = [delta async for delta in llm_stream([{"role": "user", "content": "hi"}])]

    assert parts == ["Water ", "early."]
    assert create.await_args.kwargs["stream"] is True


async def test_llm_stream_empty():
    create = AsyncMock(return_value=_FakeStream([]))

    with patch("farm_assistant.services.llm_provider._openai_compatible_client", return_value=_openai_client(create)):
        with pytest.raises(LLMResponseError, match="empty stream"):
            async for _ in llm_stream([{"role": "user", "content": "hi"}]):
                pass
