"""
Lembra Assistant — LLM Provider Abstraction.

Single public function `complete()` that routes to the configured provider.
Provider is selected on first call via the LLM_PROVIDER env var.
Supports: anthropic (default), gemini, openai, cohere.

Prior conversation turns can be passed as ``history`` so the model sees the
same working memory the dialogue resolver does. Every call is bounded by
EXTERNAL_CALL_TIMEOUT_SECONDS; a timeout raises like any provider error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# (role, text) with role "user" or "assistant", oldest first
History = list[tuple[str, str]]

# Type alias for provider implementations
_ProviderFn = Callable[[str, str, str, str, History, int], Awaitable[str]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


def _chat_messages(history: History, user_message: str) -> list[dict]:
    messages = [{"role": role, "content": text} for role, text in history]
    messages.append({"role": "user", "content": user_message})
    return messages


async def _complete_anthropic(
    api_key: str, model: str, system: str, user_message: str, history: History, max_tokens: int,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=_chat_messages(history, user_message),
    )
    return response.content[0].text


async def _complete_gemini(
    api_key: str, model: str, system: str, user_message: str, history: History, max_tokens: int,
) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    contents = [
        {"role": "model" if role == "assistant" else "user", "parts": [text]}
        for role, text in history
    ]
    contents.append({"role": "user", "parts": [user_message]})
    response = await gm.generate_content_async(
        contents,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _complete_openai(
    api_key: str, model: str, system: str, user_message: str, history: History, max_tokens: int,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *_chat_messages(history, user_message)],
    )
    return response.choices[0].message.content


async def _complete_cohere(
    api_key: str, model: str, system: str, user_message: str, history: History, max_tokens: int,
) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *_chat_messages(history, user_message)],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from src.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Lazy singleton, populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str,
    user_message: str,
    max_tokens: int = 256,
    history: History | None = None,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises on API errors and on timeout — callers should handle exceptions.
    """
    global _provider_fn, _model, _api_key
    from src.config import settings

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    return await asyncio.wait_for(
        _provider_fn(_api_key, _model, system, user_message, history or [], max_tokens),
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
    )
