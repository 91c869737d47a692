"""LLM client for knowledge-graph extraction using OpenAI, OpenRouter or Ollama."""

import os
from typing import Any, Literal

import httpx
from loguru import logger

from .exceptions import ExtractionError

# Type alias for provider
LLMProvider = Literal["openai", "openrouter", "ollama"]


class LLMClient:
    """Completion client used by the structured extractor.

    Supports three chat-completion backends:
    1. OpenAI (``OPENAI_API_KEY``)
    2. OpenRouter (``OPENROUTER_API_KEY``)
    3. Ollama (local server, no key, ``OLLAMA_HOST``)

    Provider Selection Priority:
    1. Explicit provider parameter
    2. Auto-detect: OpenAI if a key is available, then OpenRouter, then Ollama
    """

    DEFAULT_MODELS = {
        "openai": "gpt-4o-mini",
        "openrouter": "anthropic/claude-3-haiku",
        "ollama": "llama3.1",
    }

    API_ENDPOINTS = {
        "openai": "https://api.openai.com/v1/chat/completions",
        "openrouter": "https://openrouter.ai/api/v1/chat/completions",
        "ollama": "http://localhost:11434/api/chat",
    }

    KEY_ENV_VARS = {
        "openai": "OPENAI_API_KEY",
        "openrouter": "OPENROUTER_API_KEY",
    }

    TIMEOUT_SECONDS = 60.0

    def __init__(
        self,
        provider: LLMProvider | None = None,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float = TIMEOUT_SECONDS,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize LLM client.

        Args:
            provider: Explicit provider ('openai', 'openrouter' or 'ollama')
            model: Model to use (defaults based on provider)
            api_key: API key (or use the provider's environment variable)
            timeout: Request timeout in seconds
            base_url: Override the provider endpoint
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)

        Raises:
            ValueError: If the selected provider needs an API key and none is found
        """
        if provider is None:
            if api_key or os.environ.get("OPENAI_API_KEY"):
                provider = "openai"
            elif os.environ.get("OPENROUTER_API_KEY"):
                provider = "openrouter"
            else:
                provider = "ollama"

        if provider not in self.DEFAULT_MODELS:
            raise ValueError(f"Unknown LLM provider: {provider}")
        self.provider: LLMProvider = provider

        if provider == "ollama":
            self.api_key = None
            host = os.environ.get("OLLAMA_HOST")
            default_endpoint = (
                f"{host.rstrip('/')}/api/chat" if host else self.API_ENDPOINTS["ollama"]
            )
        else:
            env_var = self.KEY_ENV_VARS[provider]
            self.api_key = api_key or os.environ.get(env_var)
            if not self.api_key:
                raise ValueError(
                    f"{provider.capitalize()} provider specified but {env_var} not found. "
                    f"Please set {env_var} environment variable."
                )
            default_endpoint = self.API_ENDPOINTS[provider]

        self.api_endpoint = base_url or default_endpoint
        self.model = model or self.DEFAULT_MODELS[provider]
        self.timeout = timeout
        self._transport = transport

        logger.debug(
            f"Initialized LLM client with provider: {self.provider}, model: {self.model}"
        )

    async def complete(self, prompt: str) -> str:
        """Send a single-prompt completion and return the raw response text.

        Args:
            prompt: Full prompt (instructions plus document text)

        Returns:
            Model output as returned by the provider (may be malformed JSON)

        Raises:
            ExtractionError: If the API call fails
        """
        messages = [{"role": "user", "content": prompt}]
        response = await self._chat_completion(messages)

        if self.provider == "ollama":
            message = response.get("message")
        else:
            choices = response.get("choices") or [{}]
            message = (choices[0] or {}).get("message")
        content = message.get("content") if isinstance(message, dict) else None

        if not content:
            raise ExtractionError(
                f"{self.provider.capitalize()} returned an empty completion",
                {"provider": self.provider, "model": self.model},
            )
        return content

    def _build_request(
        self, messages: list[dict[str, str]]
    ) -> tuple[dict[str, str], dict[str, Any]]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        # OpenRouter-specific headers
        if self.provider == "openrouter":
            headers["X-Title"] = "Hub Indexer"

        payload: dict[str, Any] = {"model": self.model, "messages": messages}
        if self.provider == "ollama":
            payload["stream"] = False
        return headers, payload

    async def _chat_completion(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        """Make chat completion request to the configured provider.

        Args:
            messages: List of message dictionaries with role and content

        Returns:
            API response dictionary

        Raises:
            ExtractionError: If API request fails
        """
        headers, payload = self._build_request(messages)
        provider_name = self.provider.capitalize()
        context = {"provider": self.provider, "model": self.model}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.api_endpoint,
                    headers=headers,
                    json=payload,
                )

                response.raise_for_status()
                return response.json()

        except httpx.TimeoutException as e:
            logger.error(f"{provider_name} API timeout after {self.timeout}s")
            raise ExtractionError(
                f"LLM request timed out after {self.timeout} seconds.", context
            ) from e

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            error_msg = f"{provider_name} API error (HTTP {status_code})"

            if status_code == 401:
                env_var = self.KEY_ENV_VARS.get(self.provider, "API key")
                error_msg = f"Invalid {provider_name} API key. Please check {env_var} environment variable."
            elif status_code == 429:
                error_msg = f"{provider_name} API rate limit exceeded. Please wait and try again."
            elif status_code >= 500:
                error_msg = f"{provider_name} API server error. Please try again later."

            logger.error(error_msg)
            raise ExtractionError(error_msg, {**context, "status_code": status_code}) from e

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{provider_name} API request failed: {e}")
            raise ExtractionError(f"LLM request failed: {e}", context) from e
