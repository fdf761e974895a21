"""
LLM client for the reading assistant.

Features:
  - OpenAI-compatible /chat/completions (Gemini's compatibility endpoint or OpenAI)
  - Retry with exponential backoff + jitter (handles 429, 500, 502, 503, 504)
  - Provider fallback (primary → fallback) when another key is configured
  - Token usage reported back to the caller for the usage ledger
  - Reusable client (connection pooling)
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from ..core.config import get_settings
from ..core.errors import ServiceUnavailable
from ..core.flags import get_flags

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    model: str = ""


class LLMClient(Protocol):
    async def complete(
        self,
        messages: list[dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Completion: ...


# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=120, write=30, pool=10),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Provider config ──────────────────────────────────────────────────

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"


def _get_provider_config(provider: Optional[str] = None) -> tuple[str, str, str]:
    """Returns (base_url, api_key, default_model) for a provider."""
    settings = get_settings()
    p = (provider or get_flags().llm_provider).lower()

    if p == "gemini":
        return GEMINI_OPENAI_BASE_URL, settings.gemini_api_key, settings.default_llm_model
    return settings.openai_base_url, settings.openai_api_key, settings.openai_model


def _get_fallback_provider(primary: str) -> Optional[str]:
    """Get fallback provider. Returns None if no fallback available."""
    settings = get_settings()
    if primary != "gemini" and settings.gemini_api_key:
        return "gemini"
    if primary != "openai" and settings.openai_api_key:
        return "openai"
    return None


# ── Retry logic ──────────────────────────────────────────────────────

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_DELAY = 16.0


def _backoff(attempt: int) -> float:
    return min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1))


async def _retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """Execute request with exponential backoff + jitter."""
    last_exc: Optional[Exception] = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            last_exc = e
            if attempt < MAX_RETRIES:
                delay = _backoff(attempt)
                logger.warning(
                    "LLM timeout (attempt %d/%d), retrying in %.1fs",
                    attempt + 1, MAX_RETRIES + 1, delay,
                )
                await asyncio.sleep(delay)
            continue
        except httpx.TransportError as e:
            last_exc = e
            if attempt < MAX_RETRIES:
                await asyncio.sleep(_backoff(attempt))
            continue

        if resp.status_code not in RETRYABLE_STATUS:
            if resp.status_code >= 400:
                logger.error("LLM API error %d: %s", resp.status_code, resp.text[:500])
            resp.raise_for_status()
            return resp

        last_exc = httpx.HTTPStatusError(
            f"{resp.status_code}", request=resp.request, response=resp
        )
        if attempt < MAX_RETRIES:
            retry_after = resp.headers.get("retry-after")
            try:
                delay = min(MAX_DELAY, float(retry_after)) if retry_after else _backoff(attempt)
            except ValueError:
                delay = _backoff(attempt)
            logger.warning(
                "LLM %d (attempt %d/%d), retrying in %.1fs",
                resp.status_code, attempt + 1, MAX_RETRIES + 1, delay,
            )
            await asyncio.sleep(delay)

    raise last_exc or RuntimeError("LLM request failed after retries")


# ── Completion ───────────────────────────────────────────────────────


def _parse_completion(data: dict, model: str) -> Completion:
    choices = data.get("choices") or [{}]
    message = choices[0].get("message") or {}
    usage = data.get("usage") or {}
    prompt_tokens = int(usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("completion_tokens") or 0)
    return Completion(
        text=(message.get("content") or "").strip(),
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(usage.get("total_tokens") or prompt_tokens + completion_tokens),
        model=data.get("model") or model,
    )


async def complete(
    messages: list[dict],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    provider: Optional[str] = None,
) -> Completion:
    """
    Chat completion with retry + optional provider fallback.
    Returns the answer text and the provider's token usage.
    """
    settings = get_settings()
    active_provider = (provider or get_flags().llm_provider).lower()
    base_url, api_key, default_model = _get_provider_config(active_provider)

    if not api_key:
        raise ServiceUnavailable(
            f"No API key for LLM provider '{active_provider}'. "
            "Set GEMINI_API_KEY or OPENAI_API_KEY."
        )

    payload: dict[str, Any] = {
        "model": model or default_model,
        "messages": messages,
        "temperature": temperature if temperature is not None else settings.default_llm_temperature,
        "max_tokens": max_tokens or settings.default_llm_max_tokens,
    }
    url = f"{base_url.rstrip('/')}/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    start = time.monotonic()
    try:
        resp = await _retry_request(_get_client(), "POST", url, json=payload, headers=headers)
    except Exception as e:
        logger.error("LLM failed after %.1fs: %s", time.monotonic() - start, e)
        fallback = _get_fallback_provider(active_provider)
        if fallback and not provider:  # Only fallback once
            logger.info("Falling back to %s", fallback)
            return await complete(
                messages=messages, model=None, temperature=temperature,
                max_tokens=max_tokens, provider=fallback,
            )
        raise ServiceUnavailable("the AI service is temporarily unavailable", cause=e) from e

    result = _parse_completion(resp.json(), payload["model"])
    logger.info(
        "LLM chat: %dms | in=%d out=%d tokens | model=%s",
        int((time.monotonic() - start) * 1000),
        result.prompt_tokens, result.completion_tokens, result.model,
    )
    return result


class HttpLLMClient:
    """LLMClient backed by the module-level completion function."""

    def __init__(self, model: Optional[str] = None):
        self.model = model

    async def complete(
        self,
        messages: list[dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Completion:
        return await complete(
            messages, model=self.model, temperature=temperature, max_tokens=max_tokens
        )
