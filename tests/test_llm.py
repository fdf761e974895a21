"""OpenAI-compatible completion client: usage parsing and provider fallback."""

import json

import httpx
import pytest

from pagewise.core.config import get_settings
from pagewise.core.errors import ServiceUnavailable
from pagewise.core.flags import get_flags
from pagewise.services import llm


def _completion(text: str, model: str) -> dict:
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 11, "completion_tokens": 4, "total_tokens": 15},
    }


@pytest.fixture
def providers(monkeypatch):
    monkeypatch.setenv("FF_LLM_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")
    monkeypatch.setenv("OPENAI_API_KEY", "openai-key")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
    monkeypatch.delenv("DEFAULT_LLM_MODEL", raising=False)
    get_flags.cache_clear()
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def routed(monkeypatch):
    """Installs an httpx client whose responses come from a handler."""
    requests: list[httpx.Request] = []

    def install(handler):
        def record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(record))
        monkeypatch.setattr(llm, "_get_client", lambda: client)
        return requests

    return install


async def test_usage_is_reported(providers, routed):
    requests = routed(lambda r: httpx.Response(200, json=_completion("Answer.", "gemini-2.0-flash-001")))

    result = await llm.complete([{"role": "user", "content": "hi"}])

    assert result.text == "Answer."
    assert (result.prompt_tokens, result.completion_tokens, result.total_tokens) == (11, 4, 15)
    assert requests[0].url.host == "generativelanguage.googleapis.com"
    assert requests[0].headers["authorization"] == "Bearer gemini-key"


async def test_fallback_requests_the_fallback_providers_model(providers, routed):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "generativelanguage.googleapis.com":
            return httpx.Response(400, json={"error": "bad request"})
        body = json.loads(request.content)
        return httpx.Response(200, json=_completion("From OpenAI.", body["model"]))

    requests = routed(handler)

    result = await llm.complete([{"role": "user", "content": "hi"}])

    assert result.text == "From OpenAI."
    assert [r.url.host for r in requests] == ["generativelanguage.googleapis.com", "api.openai.com"]
    assert json.loads(requests[0].content)["model"] == "gemini-2.0-flash-001"
    assert json.loads(requests[1].content)["model"] == "gpt-4o-mini"
    assert requests[1].headers["authorization"] == "Bearer openai-key"


async def test_no_fallback_key_is_unavailable(providers, routed, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    get_settings.cache_clear()
    routed(lambda r: httpx.Response(400, json={"error": "bad request"}))

    with pytest.raises(ServiceUnavailable):
        await llm.complete([{"role": "user", "content": "hi"}])
