"""
maintainable — LLM Provider Abstraction.

Single public function `complete()` that routes to the configured provider.
Provider is selected at startup via the LLM_PROVIDER env var.
Supports: ollama (default), gemini, anthropic, openai, cohere.

Every call is bounded by a hard timeout; exceeding it raises
asyncio.TimeoutError instead of hanging the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


@dataclass
class CompletionRequest:
    system: str
    user_message: str
    model: str
    max_tokens: int = 1024
    temperature: float = 0.0
    json_mode: bool = False


# Type alias for provider implementations: (api_key, base_url, request) -> text
_ProviderFn = Callable[[str, str, CompletionRequest], Awaitable[str]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_ollama(api_key: str, base_url: str, req: CompletionRequest) -> str:
    payload = {
        "model": req.model,
        "messages": [
            {"role": "system", "content": req.system},
            {"role": "user", "content": req.user_message},
        ],
        "stream": False,
        "options": {"temperature": req.temperature, "num_predict": req.max_tokens},
    }
    if req.json_mode:
        payload["format"] = "json"

    # The outer wait_for in complete() owns the deadline
    async with httpx.AsyncClient(timeout=None) as client:
        resp = await client.post(f"{base_url.rstrip('/')}/api/chat", json=payload)
        resp.raise_for_status()
        data = resp.json()
    return data["message"]["content"]


async def _complete_gemini(api_key: str, base_url: str, req: CompletionRequest) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=req.model,
        system_instruction=req.system,
    )
    config = genai.types.GenerationConfig(
        max_output_tokens=req.max_tokens,
        temperature=req.temperature,
        response_mime_type="application/json" if req.json_mode else None,
    )
    response = await gm.generate_content_async(req.user_message, generation_config=config)
    return response.text


async def _complete_anthropic(api_key: str, base_url: str, req: CompletionRequest) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=req.model,
        max_tokens=req.max_tokens,
        temperature=req.temperature,
        system=req.system,
        messages=[{"role": "user", "content": req.user_message}],
    )
    return response.content[0].text


async def _complete_openai(api_key: str, base_url: str, req: CompletionRequest) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    kwargs = {}
    if req.json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat.completions.create(
        model=req.model,
        max_tokens=req.max_tokens,
        temperature=req.temperature,
        messages=[
            {"role": "system", "content": req.system},
            {"role": "user", "content": req.user_message},
        ],
        **kwargs,
    )
    return response.choices[0].message.content


async def _complete_cohere(api_key: str, base_url: str, req: CompletionRequest) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    kwargs = {}
    if req.json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat(
        model=req.model,
        max_tokens=req.max_tokens,
        temperature=req.temperature,
        messages=[
            {"role": "system", "content": req.system},
            {"role": "user", "content": req.user_message},
        ],
        **kwargs,
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "ollama":    (_complete_ollama,    "llama3.1:8b"),
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, str, str, str]:
    """Read settings and return (provider_fn, model, api_key, base_url)."""
    from maintainable.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, settings.LLM_API_KEY, settings.LLM_BASE_URL


# Lazy singleton, populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""
_base_url: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str,
    user_message: str,
    max_tokens: int = 1024,
    *,
    temperature: float = 0.0,
    json_mode: bool = False,
    model: str | None = None,
    timeout: float = 60.0,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises on API errors and on asyncio.TimeoutError once `timeout` seconds
    elapse — callers should handle exceptions.
    """
    global _provider_fn, _model, _api_key, _base_url

    if _provider_fn is None:
        _provider_fn, _model, _api_key, _base_url = _select_provider()

    req = CompletionRequest(
        system=system,
        user_message=user_message,
        model=model or _model,
        max_tokens=max_tokens,
        temperature=temperature,
        json_mode=json_mode,
    )
    return await asyncio.wait_for(_provider_fn(_api_key, _base_url, req), timeout=timeout)
