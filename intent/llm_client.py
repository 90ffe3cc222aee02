"""
LLM Client

Async embedding and completion provider used by the intent pipeline.
Ships an Ollama implementation over httpx; other providers implement
BaseLLMClient.

Cancellation: cancelling the awaiting task cancels the in-flight HTTP
request. Timeouts are the client's responsibility (OllamaSettings).
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from intent.config import OllamaSettings, get_ollama_settings
from intent.exceptions import ProviderError
from observability.logging_config import get_logger
from observability.metrics import metrics

logger = get_logger(__name__)

ChatMessage = Dict[str, str]


class BaseLLMClient(ABC):
    """Abstract embedding/completion provider."""

    @abstractmethod
    async def generate_embedding(self, model: str, text: str) -> List[float]:
        """Embed one text."""

    @abstractmethod
    async def generate_batch_embeddings(self, model: str, texts: List[str]) -> List[List[float]]:
        """Embed several texts, preserving order."""

    @abstractmethod
    async def generate_completion(
        self,
        model: str,
        prompt: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate text from a prompt."""

    @abstractmethod
    async def generate_chat_completion(
        self,
        model: str,
        messages: List[ChatMessage],
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate the next assistant message."""

    async def close(self) -> None:
        """Release client resources."""


class OllamaClient(BaseLLMClient):
    """
    Ollama client.

    Uses the non-streaming /embeddings, /embed, /generate and /chat
    endpoints. Sampling parameters are merged over the configured defaults
    and sent as Ollama `options`.
    """

    PROVIDER = "ollama"

    def __init__(
        self,
        settings: Optional[OllamaSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Ollama client.

        Args:
            settings: Connection and sampling defaults
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.settings = settings or get_ollama_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                timeout=httpx.Timeout(self.settings.timeout_seconds),
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _options(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": self.settings.default_temperature,
            "top_p": self.settings.default_top_p,
        }
        for key, value in (params or {}).items():
            if key == "max_tokens":
                options["num_predict"] = value
            elif key != "format":
                options[key] = value
        return options

    async def _post(self, path: str, payload: Dict[str, Any], operation: str) -> Dict[str, Any]:
        start_time = time.perf_counter()
        model = payload.get("model", "")
        client = await self._get_client()

        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ollama_api_error",
                operation=operation,
                model=model,
                status_code=e.response.status_code,
                error=str(e),
            )
            raise ProviderError(
                f"Ollama {operation} failed with status {e.response.status_code}",
                status_code=e.response.status_code,
                model=model,
            ) from e
        except httpx.HTTPError as e:
            logger.error("ollama_transport_error", operation=operation, model=model, error=str(e))
            raise ProviderError(f"Ollama {operation} request failed: {e}", model=model) from e
        except ValueError as e:
            logger.error("ollama_invalid_json", operation=operation, model=model, error=str(e))
            raise ProviderError(f"Ollama {operation} returned invalid JSON", model=model) from e

        latency = time.perf_counter() - start_time
        metrics.record_llm_call(
            provider=self.PROVIDER,
            model=model,
            operation=operation,
            latency=latency,
            input_tokens=data.get("prompt_eval_count", 0) or 0,
            output_tokens=data.get("eval_count", 0) or 0,
        )
        logger.debug(
            "ollama_call_complete",
            operation=operation,
            model=model,
            latency_ms=int(latency * 1000),
        )
        return data

    async def generate_embedding(self, model: str, text: str) -> List[float]:
        data = await self._post("/embeddings", {"model": model, "prompt": text}, "embedding")
        embedding = data.get("embedding")
        if not isinstance(embedding, list):
            raise ProviderError("Ollama embedding response has no 'embedding'", model=model)
        return [float(x) for x in embedding]

    async def generate_batch_embeddings(self, model: str, texts: List[str]) -> List[List[float]]:
        """Embed texts in chunks of `batch_size`, preserving input order."""
        embeddings: List[List[float]] = []
        size = self.settings.batch_size
        for start in range(0, len(texts), size):
            chunk = texts[start:start + size]
            data = await self._post("/embed", {"model": model, "input": chunk}, "embedding")
            vectors = data.get("embeddings")
            if not isinstance(vectors, list) or len(vectors) != len(chunk):
                raise ProviderError(
                    f"Ollama batch embedding returned {len(vectors or [])} vectors for {len(chunk)} texts",
                    model=model,
                )
            embeddings.extend([float(x) for x in vector] for vector in vectors)
        return embeddings

    async def generate_completion(
        self,
        model: str,
        prompt: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": model or self.settings.primary_model,
            "prompt": prompt,
            "stream": False,
            "options": self._options(params),
        }
        if params and params.get("format") == "json":
            payload["format"] = "json"

        data = await self._post("/generate", payload, "completion")
        content = data.get("response")
        if not isinstance(content, str):
            raise ProviderError("Ollama completion response has no 'response'", model=model)
        return content

    async def generate_chat_completion(
        self,
        model: str,
        messages: List[ChatMessage],
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": model or self.settings.primary_model,
            "messages": messages,
            "stream": False,
            "options": self._options(params),
        }
        if params and params.get("format") == "json":
            payload["format"] = "json"

        data = await self._post("/chat", payload, "chat")
        message = data.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ProviderError("Ollama chat response has no message content", model=model)
        return content


def get_llm_client(
    provider: str = "ollama",
    settings: Optional[OllamaSettings] = None,
) -> BaseLLMClient:
    """
    Factory function to get an LLM client.

    Args:
        provider: LLM provider name
        settings: Provider settings (defaults from environment)

    Returns:
        LLM client instance
    """
    if provider.lower() != "ollama":
        logger.warning("unknown_llm_provider", provider=provider, fallback="ollama")
    return OllamaClient(settings=settings)
