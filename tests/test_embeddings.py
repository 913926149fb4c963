"""Tests for the Jina embedding client."""

import pytest
from unittest.mock import MagicMock, patch

import requests

from lorekeeper.embeddings import (
    PASSAGE_TASK,
    QUERY_TASK,
    EmbeddingError,
    JinaEmbeddings,
    RateLimitError,
)


@pytest.fixture
def embedder():
    """Create embedder with a fake API key (no real calls)."""
    return JinaEmbeddings(api_key="test-key", dimensions=4)


def _response(status_code, vectors=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if vectors is not None:
        resp.json.return_value = {
            "data": [{"index": i, "embedding": v} for i, v in enumerate(vectors)]
        }
    return resp


class TestCache:
    def test_cache_put_and_get(self, embedder):
        embedder._cache_put("hello", [1.0, 2.0, 3.0, 4.0])
        assert embedder._cache_get("hello") == [1.0, 2.0, 3.0, 4.0]

    def test_cache_keyed_by_task(self, embedder):
        embedder._cache_put("hello", [1.0, 2.0, 3.0, 4.0], PASSAGE_TASK)
        assert embedder._cache_get("hello", QUERY_TASK) is None

    def test_cache_eviction(self):
        embedder = JinaEmbeddings(api_key="test", dimensions=1, cache_size=2)
        embedder._cache_put("a", [1.0])
        embedder._cache_put("b", [2.0])
        embedder._cache_put("c", [3.0])  # evicts "a"
        assert embedder._cache_get("a") is None
        assert embedder._cache_get("b") == [2.0]
        assert embedder._cache_get("c") == [3.0]


class TestCallAPI:
    @patch("lorekeeper.embeddings.requests.post")
    def test_successful_call(self, mock_post, embedder):
        mock_post.return_value = _response(200, [[0.1, 0.2, 0.3, 0.4]])

        result = embedder._call_api(["test text"], PASSAGE_TASK)
        assert result == [[0.1, 0.2, 0.3, 0.4]]

        payload = mock_post.call_args.kwargs["json"]
        assert payload["task"] == "retrieval.passage"
        assert payload["dimensions"] == 4
        assert payload["model"] == "jina-embeddings-v3"

    @patch("lorekeeper.embeddings.time.sleep")
    @patch("lorekeeper.embeddings.requests.post")
    def test_backs_off_on_429(self, mock_post, mock_sleep, embedder):
        mock_post.side_effect = [
            _response(429, text="slow down"),
            _response(429, text="slow down"),
            _response(200, [[1.0, 0.0, 0.0, 0.0]]),
        ]

        result = embedder._call_api(["text"])
        assert result == [[1.0, 0.0, 0.0, 0.0]]
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2, 4]

    @patch("lorekeeper.embeddings.time.sleep")
    @patch("lorekeeper.embeddings.requests.post")
    def test_rate_limit_exhausted(self, mock_post, mock_sleep, embedder):
        mock_post.return_value = _response(429, text="slow down")

        with pytest.raises(RateLimitError):
            embedder._call_api(["text"])
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2, 4, 8]
        assert mock_post.call_count == 4

    @patch("lorekeeper.embeddings.time.sleep")
    @patch("lorekeeper.embeddings.requests.post")
    def test_non_429_error_not_retried(self, mock_post, mock_sleep, embedder):
        mock_post.return_value = _response(500, text="Internal Server Error")

        with pytest.raises(EmbeddingError, match="500"):
            embedder._call_api(["test"])
        assert mock_post.call_count == 1
        mock_sleep.assert_not_called()

    @patch("lorekeeper.embeddings.requests.post")
    def test_network_error(self, mock_post, embedder):
        mock_post.side_effect = requests.ConnectionError("unreachable")

        with pytest.raises(EmbeddingError, match="Request failed"):
            embedder._call_api(["test"])

    @patch("lorekeeper.embeddings.requests.post")
    def test_dimension_mismatch(self, mock_post, embedder):
        mock_post.return_value = _response(200, [[1.0, 0.0]])

        with pytest.raises(EmbeddingError, match="dimensions"):
            embedder._call_api(["test"])


@pytest.mark.asyncio
class TestAsyncAPI:
    @patch("lorekeeper.embeddings.requests.post")
    async def test_embed_uses_cache(self, mock_post, embedder):
        mock_post.return_value = _response(200, [[0.5, 0.5, 0.5, 0.5]])

        first = await embedder.embed("same text")
        second = await embedder.embed("same text")
        assert first == second
        assert mock_post.call_count == 1

    @patch("lorekeeper.embeddings.requests.post")
    async def test_embed_query_uses_query_task(self, mock_post, embedder):
        mock_post.return_value = _response(200, [[0.5, 0.5, 0.5, 0.5]])

        await embedder.embed_query("where is the dragon?")
        assert mock_post.call_args.kwargs["json"]["task"] == "retrieval.query"
