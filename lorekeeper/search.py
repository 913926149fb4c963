"""Campaign retrieval: vector search with keyword fallback.

Primary path embeds the query (``retrieval.query``) and ranks the
campaign's chunks by cosine similarity. When embeddings are not configured,
or the provider fails, a substring search over entity names and content is
used instead. The response says which path answered (``mode``) and whether
the answer is degraded, so callers never get a silent downgrade.

When the vector path returns fewer than ``limit`` hits, keyword hits for
entities not already present top the list up.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .embeddings import EmbeddingError
from .storage import GraphStorage

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.2
DEFAULT_LIMIT = 8

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_query(text: str) -> str:
    """Strip control characters and collapse whitespace."""
    t = _CONTROL_RE.sub("", text or "")
    return re.sub(r"\s+", " ", t).strip()


def keyword_terms(query: str) -> List[str]:
    """Lowercased query words of length >= 2, punctuation trimmed, order kept."""
    terms: List[str] = []
    for word in query.lower().split():
        word = word.strip("?!.,;:\"'()[]")
        if len(word) >= 2 and word not in terms:
            terms.append(word)
    return terms


@dataclass
class SearchResult:
    """A single ranked hit."""
    entity_id: str
    entity_name: str
    entity_type: str
    chunk_text: str
    similarity: float
    source: str = "vector"  # vector | keyword

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "entity_type": self.entity_type,
            "chunk_text": self.chunk_text,
            "similarity": round(self.similarity, 4),
            "source": self.source,
        }


@dataclass
class SearchResponse:
    results: List[SearchResult] = field(default_factory=list)
    mode: str = "vector"  # vector | keyword
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "mode": self.mode,
            "degraded": self.degraded,
        }


def _to_result(row: Dict[str, Any], source: str) -> SearchResult:
    return SearchResult(
        entity_id=row["entity_id"],
        entity_name=row["entity_name"],
        entity_type=row["entity_type"],
        chunk_text=row["chunk_text"],
        similarity=float(row["similarity"]),
        source=source,
    )


def build_context(results: List[SearchResult]) -> str:
    """Render hits as numbered source blocks for a prompt."""
    blocks = [
        f"[Source {i}: {r.entity_name} ({r.entity_type})]\n{r.chunk_text}"
        for i, r in enumerate(results, start=1)
    ]
    return "\n\n---\n\n".join(blocks)


class RetrievalEngine:
    """Similarity search scoped to one campaign."""

    def __init__(
        self,
        storage: GraphStorage,
        embedder: Optional[Any] = None,  # JinaEmbeddings
        keyword_topup: bool = True,
    ) -> None:
        self.storage = storage
        self.embedder = embedder
        self.keyword_topup = keyword_topup

    def _keyword(
        self, campaign_id: str, query: str, limit: int, exclude_restricted: bool
    ) -> List[SearchResult]:
        rows = self.storage.keyword_search(
            campaign_id, keyword_terms(query), limit=limit, exclude_restricted=exclude_restricted
        )
        return [_to_result(row, "keyword") for row in rows]

    async def search(
        self,
        campaign_id: str,
        query: str,
        limit: int = DEFAULT_LIMIT,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        exclude_restricted: bool = False,
    ) -> SearchResponse:
        """Rank chunks for *query*. Never raises for provider trouble."""
        q = sanitize_query(query)
        response = SearchResponse()
        if not q:
            return response

        vector_rows: Optional[List[Dict[str, Any]]] = None
        if self.embedder is not None:
            try:
                query_vec = await self.embedder.embed_query(q)
                vector_rows = self.storage.search_chunks(
                    campaign_id,
                    query_vec,
                    threshold=similarity_threshold,
                    limit=limit,
                    exclude_restricted=exclude_restricted,
                )
            except EmbeddingError as exc:
                logger.warning("Vector search failed (keyword fallback): %s", exc)
                response.degraded = True
        else:
            logger.warning(
                "No embedder configured, keyword-only search for campaign %s", campaign_id
            )
            response.degraded = True

        if vector_rows is None:
            response.mode = "keyword"
            response.results = self._keyword(campaign_id, q, limit, exclude_restricted)
        else:
            response.results = [_to_result(row, "vector") for row in vector_rows]
            if self.keyword_topup and len(response.results) < limit:
                seen = {r.entity_id for r in response.results}
                for hit in self._keyword(campaign_id, q, limit, exclude_restricted):
                    if len(response.results) >= limit:
                        break
                    if hit.entity_id not in seen:
                        seen.add(hit.entity_id)
                        response.results.append(hit)

        logger.debug(
            "search campaign=%s mode=%s hits=%d", campaign_id, response.mode, len(response.results)
        )
        return response
