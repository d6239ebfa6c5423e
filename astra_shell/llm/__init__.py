"""Model backends - `chat(messages) -> text` over HTTP."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from astra_shell.exceptions import LLMAPIError, LLMError
from astra_shell.logging import get_logger

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"

# Conversation roles mapped onto the chat roles the backend understands.
_BACKEND_ROLES = {
    "system": "system",
    "user": "user",
    "assistant": "assistant",
    "tool-result": "tool",
}


@dataclass
class Message:
    """A message sent to the model backend."""

    role: str  # "system", "user", "assistant", "tool-result"
    content: str


class ChatBackend(ABC):
    """Abstract base class for model backends."""

    @abstractmethod
    async def chat(self, messages: list[Message]) -> str:
        """Send the ordered messages and return the model's reply text."""
        pass

    async def ping(self) -> bool:
        """Return whether the backend is reachable."""
        return True

    async def close(self) -> None:
        """Release transport resources."""
        return None


class OllamaBackend(ChatBackend):
    """Direct Ollama API backend."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        api_key: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Ollama backend.

        Args:
            model: Ollama model name (e.g., 'llama3.2', 'qwen3:32b')
            base_url: Ollama API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate
            api_key: Optional API key (Ollama usually doesn't need one locally)
            timeout: Request timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key

        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    @staticmethod
    def _convert_messages(messages: list[Message]) -> list[dict[str, Any]]:
        """Convert messages to Ollama format."""
        result = []
        for msg in messages:
            if isinstance(msg, dict):
                role = msg.get("role")
                content = msg.get("content")
            else:
                role = getattr(msg, "role", None)
                content = getattr(msg, "content", None)
            backend_role = _BACKEND_ROLES.get(str(role or ""))
            if backend_role is None:
                raise LLMError(f"Unsupported message role: {role!r}")
            result.append({"role": backend_role, "content": content or ""})
        return result

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def chat(self, messages: list[Message]) -> str:
        """Generate a completion and return its text."""
        url = f"{self.base_url}/api/chat"
        ollama_messages = self._convert_messages(messages)

        body: dict[str, Any] = {
            "model": self.model,
            "messages": ollama_messages,
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }

        try:
            log.debug("Calling Ollama", model=self.model, url=url, msg_count=len(ollama_messages))
            response = await self.client.post(url, json=body, headers=self._headers())
            log.debug("Ollama response status", status=response.status_code)

            if not response.is_success:
                raise LLMAPIError(
                    f"Ollama API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            data = response.json()
            message = data.get("message") if isinstance(data, dict) else None
            if not isinstance(message, dict):
                raise LLMError("Ollama response missing message content")
            return str(message.get("content") or "")

        except httpx.TimeoutException as e:
            raise LLMAPIError(f"Ollama request timed out: {e}")
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}")

    async def ping(self) -> bool:
        """Check that the Ollama server answers on its version endpoint."""
        try:
            response = await self.client.get(f"{self.base_url}/api/version")
        except httpx.HTTPError as e:
            log.warning("Ollama unreachable", base_url=self.base_url, error=str(e))
            return False
        return response.is_success

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_backend(
    provider: str = "ollama",
    model: str = "llama3.2",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.2,
    max_tokens: int = 4096,
    timeout: float = 120.0,
) -> ChatBackend:
    """Create a model backend.

    Args:
        provider: Provider name (only 'ollama' is built in)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max tokens
        timeout: Request timeout in seconds

    Returns:
        Configured ChatBackend instance
    """
    if provider == "ollama":
        return OllamaBackend(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=timeout,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'ollama'.")


def backend_from_config() -> ChatBackend:
    """Create the backend described by the global configuration."""
    from astra_shell.config import get_config

    cfg = get_config()
    return create_backend(
        provider=cfg.model.provider,
        model=cfg.model.model,
        api_key=cfg.model.api_key or None,
        base_url=cfg.model.base_url or None,
        temperature=cfg.model.temperature,
        max_tokens=cfg.model.max_tokens,
        timeout=cfg.model.timeout,
    )
