"""Campaign spotlight: a cached at-a-glance summary of the graph."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from .cache import TTLCache
from .storage import GraphStorage

logger = logging.getLogger(__name__)

WEEK_SECONDS = 7 * 24 * 3600.0
_QUEST_DONE_TAGS = {"completed", "done", "failed", "abandoned"}


def _brief(entity: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": entity["id"], "name": entity["name"], "entity_type": entity["entity_type"]}


def build_spotlight(storage: GraphStorage, campaign_id: str, recent: int = 5) -> Dict[str, Any]:
    """Summarise one campaign without touching any external service."""
    stats = storage.stats(campaign_id)

    sessions = storage.list_entities(campaign_id, entity_type="session")
    sessions.sort(key=lambda e: (e.get("session_number") or 0, e["created_at"]), reverse=True)

    quests = [
        q for q in storage.list_entities(campaign_id, entity_type="quest")
        if not _QUEST_DONE_TAGS & {t.lower() for t in q["tags"]}
    ]
    updated = storage.list_entities(campaign_id, order_by="updated", limit=recent)

    return {
        "campaign_id": campaign_id,
        "generated_at": time.time(),
        "stats": stats,
        "latest_sessions": [
            {**_brief(s), "session_number": s.get("session_number"), "session_date": s.get("session_date")}
            for s in sessions[:recent]
        ],
        "active_quests": [_brief(q) for q in quests[:recent]],
        "recently_updated": [_brief(e) for e in updated],
    }


class SpotlightService:
    """Serve spotlights from a TTL cache keyed by campaign.

    The fingerprint is the entity count, so creating or deleting an entity
    invalidates the cached summary before the TTL runs out.
    """

    def __init__(
        self,
        storage: GraphStorage,
        ttl_seconds: float = WEEK_SECONDS,
        cache: Optional[TTLCache] = None,
    ) -> None:
        self.storage = storage
        self.cache: TTLCache = cache or TTLCache(ttl_seconds)

    def fingerprint(self, campaign_id: str) -> int:
        return self.storage.count_entities(campaign_id)

    def get(self, campaign_id: str, refresh: bool = False) -> Dict[str, Any]:
        if refresh:
            self.cache.invalidate(campaign_id)
        fingerprint = self.fingerprint(campaign_id)
        return self.cache.get_or_compute(campaign_id, fingerprint, lambda: self._build(campaign_id))

    def _build(self, campaign_id: str) -> Dict[str, Any]:
        logger.debug("Rebuilding spotlight for campaign %s", campaign_id)
        return build_spotlight(self.storage, campaign_id)
