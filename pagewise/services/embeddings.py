"""
Text embeddings via Google GenAI.

Async wrapper around the sync google-genai SDK: the blocking call runs in a
worker thread, the client is created once and reused.
"""

import asyncio
import logging
from typing import Optional, Protocol

from ..core.config import get_settings
from ..core.errors import ServiceUnavailable

logger = logging.getLogger(__name__)

# text-embedding-004 rejects very long inputs; pages are well under this.
MAX_EMBED_CHARS = 8000


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


_gemini_client = None


def _get_gemini_client():
    """Lazy-load and cache the google-genai client as a singleton."""
    global _gemini_client
    if _gemini_client is not None:
        return _gemini_client
    from google import genai

    api_key = get_settings().gemini_api_key
    if not api_key:
        raise ServiceUnavailable("GEMINI_API_KEY is required for embeddings")
    _gemini_client = genai.Client(api_key=api_key)
    return _gemini_client


# ── Sync function (run in a thread for async compatibility) ──────────


def _sync_embed(text: str, model: str) -> list[float]:
    client = _get_gemini_client()
    resp = client.models.embed_content(model=model, contents=text)
    if not resp.embeddings:
        return []
    return list(resp.embeddings[0].values or [])


# ── Async public API ─────────────────────────────────────────────────


class GeminiEmbedder:
    def __init__(self, model: Optional[str] = None):
        self.model = model or get_settings().embedding_model

    async def embed(self, text: str) -> list[float]:
        text = text.strip()[:MAX_EMBED_CHARS]
        if not text:
            return []
        vector = await asyncio.to_thread(_sync_embed, text, self.model)
        logger.debug("Embedded %d chars → %d dims (%s)", len(text), len(vector), self.model)
        return vector
