"""
Embedding Providers

This module turns chunk text into vectors through one of three HTTP backends:
a local Ollama model, OpenAI, or Gemini. One request is issued per text.

Provider failures surface as ``EmbeddingError`` from ``embed``; the indexing
path calls ``generate_embedding``, which logs the error and returns None so the
chunk can be dropped. Cancellation is never turned into None: it is raised as
``IndexingCancelledError`` so the caller can stop the whole batch.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import requests

from .cancellation import CancellationToken
from .config import EmbeddingConfig, EmbeddingProviderKind
from .errors import ConfigurationError, EmbeddingError, IndexingCancelledError

logger = logging.getLogger(__name__)

OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
OPENAI_MODELS_URL = "https://api.openai.com/v1/models"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

GEMINI_DIMENSIONS = {
    "text-embedding-004": 768,
    "embedding-001": 768,
    "gemini-embedding-001": 3072,
}


class EmbeddingProvider(ABC):
    """Text to vector backend."""

    name = "Embedding"

    def __init__(self, model: str, timeout: float = 30.0):
        self.model = model
        self.timeout = timeout

    @abstractmethod
    def embed(self, text: str, cancellation: Optional[CancellationToken] = None) -> List[float]:
        """Embed text, raising EmbeddingError on any provider failure."""

    @abstractmethod
    def get_embedding_dimension(self, cancellation: Optional[CancellationToken] = None) -> int:
        """Length of the vectors this provider produces."""

    def generate_embedding(self, text: str,
                           cancellation: Optional[CancellationToken] = None) -> Optional[List[float]]:
        """Embed text, or return None if the provider failed.

        Raises:
            IndexingCancelledError: cancellation was requested before or during the call.
        """
        try:
            return self.embed(text, cancellation)
        except EmbeddingError as e:
            logger.error(f"Failed to generate embedding: {e}")
            return None

    def check_connection(self, cancellation: Optional[CancellationToken] = None):
        """Raise EmbeddingError if the provider can't be reached."""
        self.get_embedding_dimension(cancellation)

    def _post(self, url: str, payload: Dict[str, Any],
              cancellation: Optional[CancellationToken] = None,
              headers: Optional[Dict[str, str]] = None,
              params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST JSON and return the decoded response body."""
        return self._send(requests.post, url, cancellation,
                          json=payload, headers=headers, params=params)

    def _get(self, url: str,
             cancellation: Optional[CancellationToken] = None,
             headers: Optional[Dict[str, str]] = None,
             params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return self._send(requests.get, url, cancellation, headers=headers, params=params)

    def _send(self, method: Callable[..., requests.Response], url: str,
              cancellation: Optional[CancellationToken], **kwargs) -> Dict[str, Any]:
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        try:
            response = method(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            if cancellation is not None and cancellation.is_cancellation_requested:
                raise IndexingCancelledError() from e
            raise EmbeddingError(self.name, f"request failed - {e}") from e

        # A response that arrives after cancel is discarded rather than used
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        if not response.ok:
            body = self._read_error_body(response)
            raise EmbeddingError(
                self.name,
                f"{response.status_code} {response.reason} - {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingError(self.name, f"invalid JSON response - {e}") from e
        if not isinstance(data, dict):
            raise EmbeddingError(self.name, "unexpected response shape")
        return data

    @staticmethod
    def _read_error_body(response: requests.Response) -> str:
        try:
            return response.text
        except Exception:
            return "Unable to read error response"

    def _as_vector(self, values: Any) -> List[float]:
        if not isinstance(values, list) or not values:
            raise EmbeddingError(self.name, "response did not contain an embedding")
        try:
            return [float(v) for v in values]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(self.name, f"embedding contains non-numeric values - {e}") from e


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings from a locally served Ollama model."""

    name = "Ollama"

    def __init__(self, base_url: str = "http://localhost:11434",
                 model: str = "nomic-embed-text", timeout: float = 30.0):
        super().__init__(model, timeout)
        self.base_url = base_url.rstrip("/")
        self._dimension: Optional[int] = None

    def embed(self, text: str, cancellation: Optional[CancellationToken] = None) -> List[float]:
        data = self._post(
            f"{self.base_url}/api/embeddings",
            {"model": self.model, "prompt": text},
            cancellation,
        )
        return self._as_vector(data.get("embedding"))

    def get_embedding_dimension(self, cancellation: Optional[CancellationToken] = None) -> int:
        # Ollama models don't advertise their size; probe once and remember
        if self._dimension is None:
            self._dimension = len(self.embed("test", cancellation))
            logger.info(f"Ollama model {self.model} produces {self._dimension}-dimensional vectors")
        return self._dimension

    def check_connection(self, cancellation: Optional[CancellationToken] = None):
        data = self._get(f"{self.base_url}/api/tags", cancellation)
        models = [m.get("name", "") for m in data.get("models", []) if isinstance(m, dict)]
        # Tags carry a ":latest" style suffix the configured name may omit
        if models and not any(name.split(":")[0] == self.model.split(":")[0] for name in models):
            logger.warning(f"Ollama at {self.base_url} does not list model {self.model}")


class OpenAIEmbeddingProvider(EmbeddingProvider):
    name = "OpenAI"

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", timeout: float = 30.0):
        super().__init__(model, timeout)
        if not api_key:
            raise ConfigurationError("OpenAI API key required for embedding provider")
        self.api_key = api_key

    def embed(self, text: str, cancellation: Optional[CancellationToken] = None) -> List[float]:
        data = self._post(
            OPENAI_EMBEDDINGS_URL,
            {"model": self.model, "input": text},
            cancellation,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            values = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            raise EmbeddingError(self.name, "response did not contain an embedding")
        return self._as_vector(values)

    def get_embedding_dimension(self, cancellation: Optional[CancellationToken] = None) -> int:
        return OPENAI_DIMENSIONS.get(self.model, 1536)

    def check_connection(self, cancellation: Optional[CancellationToken] = None):
        self._get(
            f"{OPENAI_MODELS_URL}/{self.model}",
            cancellation,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )


class GeminiEmbeddingProvider(EmbeddingProvider):
    name = "Gemini"

    def __init__(self, api_key: str, model: str = "text-embedding-004", timeout: float = 30.0):
        super().__init__(model, timeout)
        if not api_key:
            raise ConfigurationError("Gemini API key required for embedding provider")
        self.api_key = api_key

    def embed(self, text: str, cancellation: Optional[CancellationToken] = None) -> List[float]:
        data = self._post(
            f"{GEMINI_BASE_URL}/{self.model}:embedContent",
            {"content": {"parts": [{"text": text}]}},
            cancellation,
            params={"key": self.api_key},
        )
        embedding = data.get("embedding")
        if not isinstance(embedding, dict):
            raise EmbeddingError(self.name, "response did not contain an embedding")
        return self._as_vector(embedding.get("values"))

    def get_embedding_dimension(self, cancellation: Optional[CancellationToken] = None) -> int:
        return GEMINI_DIMENSIONS.get(self.model, 768)

    def check_connection(self, cancellation: Optional[CancellationToken] = None):
        self._get(f"{GEMINI_BASE_URL}/{self.model}", cancellation, params={"key": self.api_key})


def create_embedding_provider(config: EmbeddingConfig, timeout: float = 30.0) -> EmbeddingProvider:
    """Build the provider selected by the config's kind."""
    if config.kind is EmbeddingProviderKind.OLLAMA:
        return OllamaEmbeddingProvider(config.base_url, config.model, timeout)
    if config.kind is EmbeddingProviderKind.OPENAI:
        return OpenAIEmbeddingProvider(config.api_key, config.model, timeout)
    if config.kind is EmbeddingProviderKind.GEMINI:
        return GeminiEmbeddingProvider(config.api_key, config.model, timeout)
    raise ConfigurationError(f"Unsupported embedding provider: {config.kind}")
