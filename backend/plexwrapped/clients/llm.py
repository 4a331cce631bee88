"""Text-generation client for OpenAI-compatible chat completion endpoints.

Works with OpenAI, OpenRouter, Groq, Ollama (``/v1``) and anything else that
speaks the ``/chat/completions`` dialect.
"""

import httpx
from typing import Optional

from plexwrapped.errors import AIGenerationFailure


class LlmClient:
    """Minimal chat-completions client — one system + one user message."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str = "gpt-4o",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config) -> "LlmClient":
        """Build from an AiConfig row."""
        return cls(base_url=config.base_url, api_key=config.api_key, model=config.model or "gpt-4o")

    async def complete(self, system: str, user: str) -> str:
        """Return the first choice's message content."""
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AIGenerationFailure(f"Text generation failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIGenerationFailure("Text generation returned no choices") from e
        if not content:
            raise AIGenerationFailure("Text generation returned an empty message")
        return content.strip()
