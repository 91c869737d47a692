"""Unit tests for the extraction LLM client."""

import json

import httpx
import pytest

from hub_indexer.core.exceptions import ExtractionError
from hub_indexer.core.llm_client import LLMClient


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "OLLAMA_HOST"):
        monkeypatch.delenv(var, raising=False)


def transport_returning(status: int, payload: dict | None = None, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload or {})

    return httpx.MockTransport(handler)


class TestProviderSelection:
    def test_openai_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-router")
        assert LLMClient().provider == "openai"

    def test_openrouter_next(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-router")
        client = LLMClient()
        assert client.provider == "openrouter"
        assert client.model == "anthropic/claude-3-haiku"

    def test_ollama_fallback(self):
        client = LLMClient()
        assert client.provider == "ollama"
        assert client.api_endpoint == "http://localhost:11434/api/chat"

    def test_ollama_host_override(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434/")
        assert LLMClient(provider="ollama").api_endpoint == "http://gpu-box:11434/api/chat"

    def test_missing_key_for_explicit_provider(self):
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            LLMClient(provider="openai")

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClient(provider="mystery")


class TestComplete:
    @pytest.mark.asyncio
    async def test_openai_response(self):
        seen = []
        transport = transport_returning(
            200, {"choices": [{"message": {"content": '{"entities": []}'}}]}, seen
        )
        client = LLMClient(provider="openai", api_key="sk-test", transport=transport)

        content = await client.complete("extract this")

        assert content == '{"entities": []}'
        body = json.loads(seen[0].content)
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"] == [{"role": "user", "content": "extract this"}]
        assert seen[0].headers["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_openrouter_sends_title_header(self):
        seen = []
        transport = transport_returning(
            200, {"choices": [{"message": {"content": "ok"}}]}, seen
        )
        client = LLMClient(provider="openrouter", api_key="sk-router", transport=transport)

        await client.complete("hi")

        assert seen[0].headers["X-Title"] == "Hub Indexer"

    @pytest.mark.asyncio
    async def test_ollama_response(self):
        seen = []
        transport = transport_returning(200, {"message": {"content": "ok"}}, seen)
        client = LLMClient(provider="ollama", transport=transport)

        assert await client.complete("hi") == "ok"
        assert json.loads(seen[0].content)["stream"] is False
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_empty_completion(self):
        transport = transport_returning(200, {"choices": [{"message": {"content": ""}}]})
        client = LLMClient(provider="openai", api_key="sk-test", transport=transport)

        with pytest.raises(ExtractionError, match="empty completion"):
            await client.complete("hi")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [{"choices": []}, {"choices": [{"message": None}]}, {"choices": None}],
    )
    async def test_missing_choices_raise_extraction_error(self, payload):
        transport = transport_returning(200, payload)
        client = LLMClient(provider="openai", api_key="sk-test", transport=transport)

        with pytest.raises(ExtractionError, match="empty completion"):
            await client.complete("hi")

    @pytest.mark.asyncio
    async def test_null_ollama_message_raises_extraction_error(self):
        client = LLMClient(
            provider="ollama", transport=transport_returning(200, {"message": None})
        )

        with pytest.raises(ExtractionError, match="empty completion"):
            await client.complete("hi")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "message"),
        [
            (401, "Invalid Openai API key"),
            (429, "rate limit exceeded"),
            (503, "server error"),
            (400, "HTTP 400"),
        ],
    )
    async def test_http_errors_are_mapped(self, status, message):
        client = LLMClient(
            provider="openai", api_key="sk-test", transport=transport_returning(status)
        )

        with pytest.raises(ExtractionError, match=message) as exc_info:
            await client.complete("hi")

        assert exc_info.value.context["status_code"] == status

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("no route", request=request)

        client = LLMClient(
            provider="ollama", timeout=1.0, transport=httpx.MockTransport(handler)
        )

        with pytest.raises(ExtractionError, match="timed out"):
            await client.complete("hi")
