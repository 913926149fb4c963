"""Jina Embedding Client.

Uses raw ``requests`` to call the Jina ``/v1/embeddings`` endpoint.  Features:

* Async-friendly (uses ``asyncio.to_thread`` around blocking requests)
* Separate tasks for documents (``retrieval.passage``) and queries
  (``retrieval.query``)
* Back-off on HTTP 429 only (2s, 4s, 8s); other failures raise at once
* Simple in-memory LRU cache for repeated texts
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import List, Optional

import requests

from .config import load_config

logger = logging.getLogger(__name__)

PASSAGE_TASK = "retrieval.passage"
QUERY_TASK = "retrieval.query"


class EmbeddingError(Exception):
    """Raised when the embedding API returns an error."""


class RateLimitError(EmbeddingError):
    """Raised when the API keeps answering 429 after every retry."""


class JinaEmbeddings:
    """Lightweight async wrapper around the Jina embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
        max_retries: int = 3,
        cache_size: int = 512,
    ) -> None:
        cfg = load_config()
        self.api_key: str = api_key or cfg.jina_api_key
        self.model: str = model or cfg.embedding_model
        self.dimensions: int = dimensions or cfg.embedding_dimensions
        self.base_url: str = (base_url or cfg.jina_base_url).rstrip("/")
        self.max_retries: int = max_retries

        self._url = f"{self.base_url}/embeddings"
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        self._cache_size = cache_size
        self._cache: dict[str, List[float]] = {}
        self._cache_order: list[str] = []

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _cache_key(self, text: str, task: str) -> str:
        return hashlib.md5(f"{task}\x00{text}".encode("utf-8")).hexdigest()

    def _cache_get(self, text: str, task: str = PASSAGE_TASK) -> Optional[List[float]]:
        return self._cache.get(self._cache_key(text, task))

    def _cache_put(self, text: str, vector: List[float], task: str = PASSAGE_TASK) -> None:
        key = self._cache_key(text, task)
        if key in self._cache:
            return
        if len(self._cache_order) >= self._cache_size:
            evict = self._cache_order.pop(0)
            self._cache.pop(evict, None)
        self._cache[key] = vector
        self._cache_order.append(key)

    # ------------------------------------------------------------------
    # Low-level HTTP call with retries
    # ------------------------------------------------------------------

    def _call_api(self, texts: List[str], task: str = PASSAGE_TASK) -> List[List[float]]:
        """Blocking HTTP POST to Jina, backing off on 429."""
        payload = {
            "model": self.model,
            "input": texts,
            "dimensions": self.dimensions,
            "task": task,
        }

        for attempt in range(self.max_retries + 1):
            try:
                resp = requests.post(
                    self._url,
                    headers=self._headers,
                    json=payload,
                    timeout=60,
                )
            except requests.RequestException as exc:
                raise EmbeddingError(f"Request failed: {exc}") from exc

            if resp.status_code == 200:
                data = resp.json()
                embeddings = sorted(data["data"], key=lambda d: d["index"])
                vectors = [item["embedding"] for item in embeddings]
                for vec in vectors:
                    if len(vec) != self.dimensions:
                        raise EmbeddingError(
                            f"Expected {self.dimensions} dimensions, got {len(vec)}"
                        )
                return vectors

            if resp.status_code == 429 and attempt < self.max_retries:
                wait = 2 ** (attempt + 1)
                logger.warning(
                    "Jina rate limited (attempt %d/%d), retrying in %ds",
                    attempt + 1, self.max_retries + 1, wait,
                )
                time.sleep(wait)
                continue

            if resp.status_code == 429:
                raise RateLimitError(
                    f"HTTP 429 after {self.max_retries} retries: {resp.text[:200]}"
                )

            raise EmbeddingError(f"HTTP {resp.status_code}: {resp.text[:500]}")

        raise RateLimitError(f"Rate limited after {self.max_retries} retries")

    # ------------------------------------------------------------------
    # Public async API
    # ------------------------------------------------------------------

    async def embed(self, text: str, task: str = PASSAGE_TASK) -> List[float]:
        """Embed a single text string. Returns a vector (list of floats)."""
        cached = self._cache_get(text, task)
        if cached is not None:
            return cached

        vectors = await asyncio.to_thread(self._call_api, [text], task)
        vec = vectors[0]
        self._cache_put(text, vec, task)
        return vec

    async def embed_query(self, text: str) -> List[float]:
        return await self.embed(text, task=QUERY_TASK)

