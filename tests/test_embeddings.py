from unittest.mock import MagicMock, PropertyMock, patch

import pytest
import requests

from semantic_indexer.cancellation import CancellationToken
from semantic_indexer.config import GeminiConfig, OllamaConfig, OpenAIConfig
from semantic_indexer.embeddings import (
    GeminiEmbeddingProvider,
    OllamaEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_embedding_provider,
)
from semantic_indexer.errors import ConfigurationError, EmbeddingError, IndexingCancelledError


def ok_response(data):
    response = MagicMock()
    response.ok = True
    response.json.return_value = data
    return response


def error_response(status_code, reason, body="boom"):
    response = MagicMock()
    response.ok = False
    response.status_code = status_code
    response.reason = reason
    response.text = body
    return response


class TestOllamaProvider:
    @patch("semantic_indexer.embeddings.requests.post")
    def test_generate_embedding(self, mock_post):
        mock_post.return_value = ok_response({"embedding": [0.1, 0.2, 0.3]})
        provider = OllamaEmbeddingProvider("http://ollama:11434/", "nomic-embed-text")

        vector = provider.generate_embedding("def foo(): pass")

        assert vector == [0.1, 0.2, 0.3]
        args, kwargs = mock_post.call_args
        assert args[0] == "http://ollama:11434/api/embeddings"
        assert kwargs["json"] == {"model": "nomic-embed-text", "prompt": "def foo(): pass"}

    @patch("semantic_indexer.embeddings.requests.post")
    def test_dimension_is_detected_once(self, mock_post):
        mock_post.return_value = ok_response({"embedding": [0.0] * 768})
        provider = OllamaEmbeddingProvider()

        assert provider.get_embedding_dimension() == 768
        assert provider.get_embedding_dimension() == 768
        assert mock_post.call_count == 1

    @patch("semantic_indexer.embeddings.requests.post")
    def test_dimension_detection_failure_raises(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("connection refused")
        provider = OllamaEmbeddingProvider()

        with pytest.raises(EmbeddingError, match="Ollama Error"):
            provider.get_embedding_dimension()

    @patch("semantic_indexer.embeddings.requests.post")
    def test_missing_embedding_in_response(self, mock_post):
        mock_post.return_value = ok_response({"error": "model not found"})

        assert OllamaEmbeddingProvider().generate_embedding("x") is None


class TestOpenAIProvider:
    @patch("semantic_indexer.embeddings.requests.post")
    def test_generate_embedding(self, mock_post):
        mock_post.return_value = ok_response({"data": [{"embedding": [1, 2]}]})
        provider = OpenAIEmbeddingProvider("sk-test")

        vector = provider.generate_embedding("hello")

        assert vector == [1.0, 2.0]
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.openai.com/v1/embeddings"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"] == {"model": "text-embedding-3-small", "input": "hello"}

    def test_known_dimensions(self):
        assert OpenAIEmbeddingProvider("k", "text-embedding-3-small").get_embedding_dimension() == 1536
        assert OpenAIEmbeddingProvider("k", "text-embedding-3-large").get_embedding_dimension() == 3072
        assert OpenAIEmbeddingProvider("k", "some-future-model").get_embedding_dimension() == 1536

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            OpenAIEmbeddingProvider("")

    @patch("semantic_indexer.embeddings.requests.post")
    def test_error_response_becomes_none(self, mock_post):
        mock_post.return_value = error_response(429, "Too Many Requests", '{"error": "rate limited"}')
        provider = OpenAIEmbeddingProvider("sk-test")

        assert provider.generate_embedding("hello") is None

    @patch("semantic_indexer.embeddings.requests.post")
    def test_error_message_includes_status_and_body(self, mock_post):
        mock_post.return_value = error_response(500, "Internal Server Error", "upstream timeout")
        provider = OpenAIEmbeddingProvider("sk-test")

        with pytest.raises(EmbeddingError) as exc_info:
            provider.embed("hello")

        assert str(exc_info.value) == "OpenAI Error: 500 Internal Server Error - upstream timeout"
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "upstream timeout"

    @patch("semantic_indexer.embeddings.requests.post")
    def test_unreadable_error_body(self, mock_post):
        response = MagicMock()
        response.ok = False
        response.status_code = 502
        response.reason = "Bad Gateway"
        type(response).text = PropertyMock(side_effect=RuntimeError("stream closed"))
        mock_post.return_value = response

        with pytest.raises(EmbeddingError) as exc_info:
            OpenAIEmbeddingProvider("sk-test").embed("hello")

        assert exc_info.value.status_code == 502
        assert "Unable to read error response" in str(exc_info.value)


class TestGeminiProvider:
    @patch("semantic_indexer.embeddings.requests.post")
    def test_generate_embedding(self, mock_post):
        mock_post.return_value = ok_response({"embedding": {"values": [0.5, 0.25]}})
        provider = GeminiEmbeddingProvider("g-key")

        vector = provider.generate_embedding("hello")

        assert vector == [0.5, 0.25]
        args, kwargs = mock_post.call_args
        assert args[0].endswith("/models/text-embedding-004:embedContent")
        assert kwargs["params"] == {"key": "g-key"}
        assert kwargs["json"] == {"content": {"parts": [{"text": "hello"}]}}

    def test_static_dimension(self):
        assert GeminiEmbeddingProvider("g-key").get_embedding_dimension() == 768

    @patch("semantic_indexer.embeddings.requests.post")
    def test_error_is_provider_specific(self, mock_post):
        mock_post.return_value = error_response(403, "Forbidden", "API key not valid")

        with pytest.raises(EmbeddingError, match="^Gemini Error: 403 Forbidden"):
            GeminiEmbeddingProvider("g-key").embed("hello")


class TestConnectionChecks:
    @patch("semantic_indexer.embeddings.requests.get")
    def test_ollama_lists_tags(self, mock_get):
        mock_get.return_value = ok_response({"models": [{"name": "nomic-embed-text:latest"}]})

        OllamaEmbeddingProvider("http://ollama:11434").check_connection()

        assert mock_get.call_args.args[0] == "http://ollama:11434/api/tags"

    @patch("semantic_indexer.embeddings.requests.get")
    def test_ollama_unreachable(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(EmbeddingError, match="^Ollama Error: request failed"):
            OllamaEmbeddingProvider().check_connection()

    @patch("semantic_indexer.embeddings.requests.get")
    def test_openai_reads_model(self, mock_get):
        mock_get.return_value = ok_response({"id": "text-embedding-3-small"})

        OpenAIEmbeddingProvider("sk-test").check_connection()

        args, kwargs = mock_get.call_args
        assert args[0] == "https://api.openai.com/v1/models/text-embedding-3-small"
        assert kwargs["headers"] == {"Authorization": "Bearer sk-test"}

    @patch("semantic_indexer.embeddings.requests.get")
    def test_gemini_rejected_key(self, mock_get):
        mock_get.return_value = error_response(400, "Bad Request", "API key not valid")

        with pytest.raises(EmbeddingError) as exc_info:
            GeminiEmbeddingProvider("bad-key").check_connection()

        assert exc_info.value.status_code == 400
        assert mock_get.call_args.kwargs["params"] == {"key": "bad-key"}


class TestCancellation:
    @patch("semantic_indexer.embeddings.requests.post")
    def test_cancelled_before_call(self, mock_post):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(IndexingCancelledError):
            OllamaEmbeddingProvider().generate_embedding("x", token)

        mock_post.assert_not_called()

    @patch("semantic_indexer.embeddings.requests.post")
    def test_cancelled_during_call_is_not_a_failure(self, mock_post):
        token = CancellationToken()

        def abort(*args, **kwargs):
            token.cancel()
            raise requests.ConnectionError("connection aborted")

        mock_post.side_effect = abort

        with pytest.raises(IndexingCancelledError):
            OpenAIEmbeddingProvider("sk-test").generate_embedding("x", token)

    @patch("semantic_indexer.embeddings.requests.post")
    def test_response_after_cancel_is_discarded(self, mock_post):
        token = CancellationToken()

        def respond(*args, **kwargs):
            token.cancel()
            return ok_response({"embedding": [0.1]})

        mock_post.side_effect = respond

        with pytest.raises(IndexingCancelledError):
            OllamaEmbeddingProvider().generate_embedding("x", token)

    @patch("semantic_indexer.embeddings.requests.post")
    def test_network_failure_without_cancel_is_none(self, mock_post):
        mock_post.side_effect = requests.Timeout("read timed out")

        assert OllamaEmbeddingProvider().generate_embedding("x", CancellationToken()) is None


class TestFactory:
    def test_dispatches_on_kind(self):
        assert isinstance(create_embedding_provider(OllamaConfig()), OllamaEmbeddingProvider)
        assert isinstance(create_embedding_provider(OpenAIConfig(api_key="k")), OpenAIEmbeddingProvider)
        assert isinstance(create_embedding_provider(GeminiConfig(api_key="k")), GeminiEmbeddingProvider)

    def test_passes_settings_through(self):
        provider = create_embedding_provider(
            OllamaConfig(base_url="http://gpu-box:11434", model="mxbai-embed-large"), timeout=5
        )

        assert provider.base_url == "http://gpu-box:11434"
        assert provider.model == "mxbai-embed-large"
        assert provider.timeout == 5
