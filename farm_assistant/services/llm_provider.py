"""
LLM provider utilities for Farm Assistant.

This module handles interactions with the hosted LLM providers, both for
whole completions and for incremental (streamed) replies.
"""
import os
import logging
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
import anthropic
from mistralai import Mistral
from openai import AsyncOpenAI

from farm_assistant.config import SITE_NAME, SITE_URL

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"

# Environment variable holding the API key of each provider
API_KEY_VARS = {
    "openrouter": "OPEN_ROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
}

DEFAULT_MODELS = {
    "openrouter": "meta-llama/llama-3.3-70b-instruct:free",
    "openai": "gpt-4o",
    "anthropic": "claude-3-haiku-20240307",
    "mistral": "mistral-large-latest",
    "deepseek": "deepseek-chat",
}

REQUEST_TIMEOUT = 60.0
MAX_TOKENS = 1500

Message = Dict[str, str]


class LLMResponseError(Exception):
    """Raised when a provider answers without usable content."""


def check_llm_api_keys() -> Dict[str, str]:
    """Return the configured API keys, failing when there is none."""
    keys = {
        provider: os.getenv(var, "").strip()
        for provider, var in API_KEY_VARS.items()
    }
    keys = {provider: key for provider, key in keys.items() if key}
    if not keys:
        raise RuntimeError(
            "No LLM API key found. Please set at least one of: "
            + ", ".join(API_KEY_VARS.values())
        )
    return keys


def get_llm_provider() -> str:
    provider = os.getenv("LLM_PROVIDER", "").strip()
    if provider:
        provider = provider.lower()
        if provider not in API_KEY_VARS:
            raise ValueError(f"Unknown provider: {provider}")
        return provider
    for provider, var in API_KEY_VARS.items():
        if os.getenv(var, "").strip():
            return provider
    raise RuntimeError("No LLM provider configured and no API key found.")


def get_model_name(provider: str) -> str:
    return os.getenv("LLM_MODEL", "").strip() or DEFAULT_MODELS[provider]


def _api_key(provider: str) -> str:
    api_key = os.getenv(API_KEY_VARS[provider], "").strip()
    if not api_key:
        raise ValueError(f"{API_KEY_VARS[provider]} is not set in environment variables.")
    return api_key


def _openai_compatible_client(provider: str) -> AsyncOpenAI:
    kwargs = {
        "api_key": _api_key(provider),
        "http_client": httpx.AsyncClient(timeout=REQUEST_TIMEOUT),
    }
    if provider == "openrouter":
        kwargs["base_url"] = OPENROUTER_BASE_URL
        kwargs["default_headers"] = {"HTTP-Referer": SITE_URL, "X-Title": SITE_NAME}
    elif provider == "deepseek":
        kwargs["base_url"] = DEEPSEEK_BASE_URL
    return AsyncOpenAI(**kwargs)


def _split_system(messages: List[Message]) -> Tuple[Optional[str], List[Message]]:
    """Anthropic takes the system prompt outside the message list."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    rest = [m for m in messages if m["role"] != "system"]
    return ("\n\n".join(system_parts) if system_parts else None), rest


def _anthropic_kwargs(provider: str, messages: List[Message]) -> dict:
    system, rest = _split_system(messages)
    kwargs = {
        "model": get_model_name(provider),
        "max_tokens": MAX_TOKENS,
        "messages": rest,
    }
    if system:
        kwargs["system"] = system
    return kwargs


async def llm_complete(messages: List[Message], provider: Optional[str] = None) -> str:
    """Return the full reply of the configured provider."""
    provider = provider or get_llm_provider()
    model = get_model_name(provider)
    logger.debug("[llm_complete] provider=%s model=%s", provider, model)

    if provider in ("openrouter", "openai", "deepseek"):
        client = _openai_compatible_client(provider)
        response = await client.chat.completions.create(model=model, messages=messages)
        content = response.choices[0].message.content if response.choices else None
    elif provider == "anthropic":
        client = anthropic.AsyncAnthropic(api_key=_api_key(provider), timeout=REQUEST_TIMEOUT)
        response = await client.messages.create(**_anthropic_kwargs(provider, messages))
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
    elif provider == "mistral":
        client = Mistral(api_key=_api_key(provider))
        response = await client.chat.complete_async(model=model, messages=messages)
        content = response.choices[0].message.content if response and response.choices else None
    else:
        raise ValueError(f"Unknown provider: {provider}")

    if not content or not str(content).strip():
        raise LLMResponseError(f"Invalid response from {provider}: empty content")
    return str(content)


async def llm_stream(messages: List[Message], provider: Optional[str] = None) -> AsyncIterator[str]:
    """Yield the reply of the configured provider as text deltas."""
    provider = provider or get_llm_provider()
    model = get_model_name(provider)
    logger.debug("[llm_stream] provider=%s model=%s", provider, model)
    received = False

    if provider in ("openrouter", "openai", "deepseek"):
        client = _openai_compatible_client(provider)
        stream = await client.chat.completions.create(model=model, messages=messages, stream=True)
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                received = True
                yield delta
    elif provider == "anthropic":
        client = anthropic.AsyncAnthropic(api_key=_api_key(provider), timeout=REQUEST_TIMEOUT)
        async with client.messages.stream(**_anthropic_kwargs(provider, messages)) as stream:
            async for text in stream.text_stream:
                if text:
                    received = True
                    yield text
    elif provider == "mistral":
        client = Mistral(api_key=_api_key(provider))
        stream = await client.chat.stream_async(model=model, messages=messages)
        async for event in stream:
            delta = event.data.choices[0].delta.content if event.data.choices else None
            if isinstance(delta, str) and delta:
                received = True
                yield delta
    else:
        raise ValueError(f"Unknown provider: {provider}")

    if not received:
        raise LLMResponseError(f"Invalid response from {provider}: empty stream")
