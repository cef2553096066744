"""Async Ollama chat client used to generate simulated user replies."""

from typing import Optional

import httpx
from pydantic import BaseModel


class OllamaConfig(BaseModel):
    """Configuration for the Ollama chat client."""

    base_url: str = "http://localhost:11434"
    model: str = "llama3.2"
    temperature: float = 0.7
    max_tokens: int = 300
    timeout: float = 60.0
    seed: Optional[int] = None


class OllamaClient:
    """Async client for the Ollama chat API.

    Example usage:
        async with OllamaClient() as client:
            reply = await client.chat(
                [{"role": "user", "content": "Hi, I need a flight to Boston"}],
                system="You are role-playing a user named Sam...",
            )
    """

    def __init__(
        self,
        config: Optional[OllamaConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            config: Connection and sampling configuration
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._config = config or OllamaConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def config(self) -> OllamaConfig:
        return self._config

    async def __aenter__(self) -> "OllamaClient":
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def chat(
        self,
        messages: list[dict[str, str]],
        system: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Send a chat request and return the reply text.

        Args:
            messages: Conversation as role/content dicts
            system: Optional system prompt
            temperature: Override the configured temperature

        Raises:
            RuntimeError: If used outside the async context manager
            httpx.HTTPStatusError: If Ollama answers with an error status
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        payload_messages = []
        if system:
            payload_messages.append({"role": "system", "content": system})
        payload_messages.extend(messages)

        options = {
            "temperature": self._config.temperature if temperature is None else temperature,
            "num_predict": self._config.max_tokens,
        }
        if self._config.seed is not None:
            options["seed"] = self._config.seed

        response = await self._client.post(
            "/api/chat",
            json={
                "model": self._config.model,
                "messages": payload_messages,
                "stream": False,
                "options": options,
            },
        )
        response.raise_for_status()
        return response.json()["message"]["content"]

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        """Single-prompt convenience wrapper around chat()."""
        return await self.chat([{"role": "user", "content": prompt}], system=system)
