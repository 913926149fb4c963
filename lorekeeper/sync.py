"""Keep an entity's chunk vectors in step with its content.

Every sync replaces the entity's whole chunk set. Syncs for the same
entity are serialised with a per-entity ``asyncio.Lock`` so that two
overlapping calls cannot interleave their delete and insert phases.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .chunker import CHUNK_OVERLAP, TARGET_CHUNK_SIZE, chunk_content
from .embeddings import EmbeddingError
from .storage import GraphStorage
from .wikilinks import extract_mentions

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync call. ``skipped`` means embeddings are disabled."""
    entity_id: str
    attempted: int = 0
    stored: int = 0
    skipped: bool = False

    @property
    def complete(self) -> bool:
        return not self.skipped and self.stored == self.attempted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "attempted": self.attempted,
            "stored": self.stored,
            "skipped": self.skipped,
            "complete": self.complete,
        }


class EmbeddingSynchronizer:
    """Chunk, embed and persist entity content."""

    def __init__(
        self,
        storage: GraphStorage,
        embedder: Optional[Any] = None,  # JinaEmbeddings
        chunk_size: int = TARGET_CHUNK_SIZE,
        overlap: int = CHUNK_OVERLAP,
    ) -> None:
        self.storage = storage
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.overlap = overlap
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def enabled(self) -> bool:
        return self.embedder is not None

    def _lock_for(self, entity_id: str) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[entity_id] = lock
        return lock

    async def sync(self, entity_id: str, campaign_id: str, name: str, content: str) -> SyncResult:
        """Replace the chunk set of one entity. Safe to call repeatedly."""
        result = SyncResult(entity_id=entity_id)
        if self.embedder is None:
            result.skipped = True
            return result

        async with self._lock_for(entity_id):
            self.storage.delete_chunks(entity_id)
            if not content or not content.strip():
                self.storage.record_sync(entity_id, 0, 0)
                return result

            for chunk in chunk_content(content, name, self.chunk_size, self.overlap):
                result.attempted += 1
                try:
                    vector = await self.embedder.embed(chunk.text)
                    self.storage.insert_chunk(
                        entity_id=entity_id,
                        campaign_id=campaign_id,
                        chunk_index=chunk.index,
                        content=chunk.text,
                        embedding=vector,
                        header_path=chunk.header_path,
                        entity_mentions=extract_mentions(chunk.text),
                    )
                except (EmbeddingError, ValueError) as exc:
                    logger.warning(
                        "Chunk %d of entity %s not embedded: %s", chunk.index, entity_id, exc
                    )
                    continue
                result.stored += 1

            self.storage.record_sync(entity_id, result.attempted, result.stored)

        if result.complete:
            logger.info("Synced %d chunks for %s (%s)", result.stored, name, entity_id)
        else:
            logger.warning(
                "Partially synced %s (%s): %d/%d chunks stored",
                name, entity_id, result.stored, result.attempted,
            )
        return result

    async def sync_entity(self, entity: Dict[str, Any]) -> SyncResult:
        return await self.sync(entity["id"], entity["campaign_id"], entity["name"], entity["content"])

    async def reindex_campaign(self, campaign_id: str) -> Dict[str, Any]:
        """Resync every entity of a campaign and return totals."""
        totals: Dict[str, Any] = {
            "entities": 0,
            "chunks_attempted": 0,
            "chunks_stored": 0,
            "partial": [],
            "skipped": not self.enabled,
        }
        if not self.enabled:
            return totals

        for entity in self.storage.list_entities(campaign_id):
            result = await self.sync_entity(entity)
            totals["entities"] += 1
            totals["chunks_attempted"] += result.attempted
            totals["chunks_stored"] += result.stored
            if not result.complete:
                totals["partial"].append(entity["id"])
        logger.info(
            "Reindexed campaign %s: %d entities, %d/%d chunks",
            campaign_id, totals["entities"], totals["chunks_stored"], totals["chunks_attempted"],
        )
        return totals
