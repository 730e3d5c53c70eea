"""
Ollama client for chat completions and embeddings.

Chat failures raise LLMUnavailableError so callers can degrade; embedding
failures of any kind come back as an empty vector.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from mailsearch.core.config import Settings

logger = logging.getLogger(__name__)


class LLMUnavailableError(Exception):
    """The model service could not be reached or answered with garbage"""
    pass


class OllamaClient:
    """Thin synchronous client for the Ollama HTTP API"""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        chat_model: str = "llama3.2",
        embedding_model: str = "nomic-embed-text",
        embedding_dimensions: Optional[int] = 768,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "OllamaClient":
        return cls(
            base_url=settings.ollama_base_url,
            chat_model=settings.chat_model,
            embedding_model=settings.embedding_model,
            embedding_dimensions=settings.embedding_dimensions,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "OllamaClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def chat(self, messages: List[Dict[str, str]], model: Optional[str] = None) -> str:
        """
        Send {role, content} messages to /api/chat and return the reply text.

        Raises:
            LLMUnavailableError: connection error, non-2xx status or a
                response without message content
        """
        payload = {"model": model or self.chat_model, "messages": messages, "stream": False}
        try:
            response = self.client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"Ollama chat request failed: {e}")
            raise LLMUnavailableError(f"Cannot reach the model service at {self.base_url}: {e}") from e
        except ValueError as e:
            raise LLMUnavailableError(f"Model service returned invalid JSON: {e}") from e

        content = (data.get("message") or {}).get("content") if isinstance(data, dict) else None
        if not isinstance(content, str):
            raise LLMUnavailableError("Model service response has no message content")
        return content

    def embed(self, text: str) -> List[float]:
        """Embedding vector for text, or [] when anything goes wrong."""
        if not text or not text.strip():
            return []

        try:
            vector = self._embed_legacy(text)
            if vector is None:
                vector = self._embed_current(text)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Embedding request failed: {e}")
            return []

        if not vector:
            return []
        if self.embedding_dimensions and len(vector) != self.embedding_dimensions:
            logger.warning(
                f"Embedding has {len(vector)} dimensions, expected {self.embedding_dimensions}; discarding"
            )
            return []
        return vector

    def _embed_legacy(self, text: str) -> Optional[List[float]]:
        # POST /api/embeddings {model, prompt} -> {embedding: [...]}
        response = self.client.post("/api/embeddings", json={"model": self.embedding_model, "prompt": text})
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning(f"Embedding request returned HTTP {response.status_code}")
            return []
        data = response.json()
        if not isinstance(data, dict):
            logger.warning("Embedding response is not a JSON object")
            return []
        return _as_vector(data.get("embedding"))

    def _embed_current(self, text: str) -> List[float]:
        # Newer servers: POST /api/embed {model, input} -> {embeddings: [[...]]}
        response = self.client.post("/api/embed", json={"model": self.embedding_model, "input": text})
        if response.status_code != 200:
            logger.warning(f"Embedding request returned HTTP {response.status_code}")
            return []
        data = response.json()
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if isinstance(embeddings, list) and embeddings:
            return _as_vector(embeddings[0])
        return []

    def is_available(self) -> bool:
        try:
            return self.client.get("/api/tags", timeout=5.0).status_code == 200
        except httpx.HTTPError:
            return False

    def list_models(self) -> List[str]:
        try:
            response = self.client.get("/api/tags", timeout=5.0)
            if response.status_code != 200:
                return []
            data = response.json()
            models = (data.get("models") if isinstance(data, dict) else None) or []
        except (httpx.HTTPError, ValueError):
            return []
        return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]


def _as_vector(value: Any) -> List[float]:
    if not isinstance(value, list) or not value:
        return []
    if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in value):
        return []
    return [float(x) for x in value]
