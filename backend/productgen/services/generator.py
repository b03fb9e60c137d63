"""
AI text generation.
Calls OpenAI, Anthropic or a local Ollama server to turn rendered prompts into
product copy.
"""

import logging
from typing import Any

import httpx

from productgen.config import settings
from productgen.exceptions import GenerationError

logger = logging.getLogger(__name__)

# Default models per provider
DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-haiku-20240307",
    "ollama": "llama3.2",
}

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


async def generate_with_openai(
    client: httpx.AsyncClient,
    system_prompt: str,
    user_prompt: str,
    api_key: str,
    model: str,
    temperature: float,
    max_tokens: int,
) -> str:
    """Use OpenAI chat completions."""
    response = await client.post(
        OPENAI_URL,
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        json={
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
    )
    response.raise_for_status()
    data = response.json()
    return data["choices"][0]["message"]["content"]


async def generate_with_anthropic(
    client: httpx.AsyncClient,
    system_prompt: str,
    user_prompt: str,
    api_key: str,
    model: str,
    temperature: float,
    max_tokens: int,
) -> str:
    """Use Anthropic messages API."""
    response = await client.post(
        ANTHROPIC_URL,
        headers={
            "x-api-key": api_key,
            "Content-Type": "application/json",
            "anthropic-version": "2023-06-01",
        },
        json={
            "model": model,
            "system": system_prompt,
            "max_tokens": max_tokens,
            # Anthropic caps temperature at 1.0
            "temperature": min(temperature, 1.0),
            "messages": [{"role": "user", "content": user_prompt}],
        },
    )
    response.raise_for_status()
    data = response.json()
    return "".join(
        block.get("text", "") for block in data["content"] if block.get("type") == "text"
    )


async def generate_with_ollama(
    client: httpx.AsyncClient,
    system_prompt: str,
    user_prompt: str,
    base_url: str,
    model: str,
    temperature: float,
    max_tokens: int,
) -> str:
    """Use Ollama for local generation."""
    response = await client.post(
        f"{base_url.rstrip('/')}/api/generate",
        json={
            "model": model,
            "system": system_prompt,
            "prompt": user_prompt,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        },
    )
    response.raise_for_status()
    data = response.json()
    return data["response"]


def detect_provider() -> str:
    """Configured provider, else the first one with credentials, else Ollama."""
    if settings.ai_provider:
        return settings.ai_provider
    if settings.openai_api_key:
        return "openai"
    if settings.anthropic_api_key:
        return "anthropic"
    return "ollama"


def get_available_providers() -> dict[str, bool]:
    """Check which AI providers are configured."""
    return {
        "openai": bool(settings.openai_api_key),
        "anthropic": bool(settings.anthropic_api_key),
        "ollama": bool(settings.ollama_base_url),
    }


class TextGenerator:
    """
    Generation collaborator used by the item executor and single-item path.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider or detect_provider()
        if self.provider not in DEFAULT_MODELS:
            raise GenerationError(f"Unknown provider: {self.provider}")
        self.model = model or settings.ai_model or DEFAULT_MODELS[self.provider]
        self.timeout = timeout or settings.ai_timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """
        Generate text for a rendered prompt.

        Raises:
            GenerationError: on missing credentials, HTTP or network errors,
                unexpected response shapes, or an empty completion.
        """
        try:
            async with self._client() as client:
                if self.provider == "openai":
                    if not settings.openai_api_key:
                        raise GenerationError("OpenAI API key not configured")
                    text = await generate_with_openai(
                        client, system_prompt, user_prompt,
                        settings.openai_api_key, self.model, temperature, max_tokens,
                    )
                elif self.provider == "anthropic":
                    if not settings.anthropic_api_key:
                        raise GenerationError("Anthropic API key not configured")
                    text = await generate_with_anthropic(
                        client, system_prompt, user_prompt,
                        settings.anthropic_api_key, self.model, temperature, max_tokens,
                    )
                else:
                    text = await generate_with_ollama(
                        client, system_prompt, user_prompt,
                        settings.ollama_base_url, self.model, temperature, max_tokens,
                    )
        except GenerationError:
            raise
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"API error: {e.response.status_code} - {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Request to {self.provider} failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GenerationError(f"Unexpected response from {self.provider}: {e}") from e

        text = (text or "").strip()
        if not text:
            raise GenerationError("Empty response from AI provider")
        logger.debug(f"Generated {len(text)} chars with {self.provider}/{self.model}")
        return text
