"""Collapse two committed entities into one.

All graph writes of a merge run in one store transaction, so a failure
cannot leave relationships repointed while the secondary entity survives.
Embedding resync happens after the commit and its failures are only
logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .dedup import merge_aliases
from .storage import GraphStorage
from .sync import EmbeddingSynchronizer, SyncResult
from .wikilinks import rewrite_links

logger = logging.getLogger(__name__)


class MergeError(Exception):
    """Raised for merge requests that can never succeed (missing or equal ids)."""


@dataclass
class MergeResult:
    entity: Dict[str, Any]
    primary_name: str
    secondary_name: str
    relationships_moved: int = 0
    relinked_entities: List[str] = field(default_factory=list)
    sync: Optional[SyncResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "entity": self.entity,
            "merged": {
                "primary_name": self.primary_name,
                "secondary_name": self.secondary_name,
            },
            "relationships_moved": self.relationships_moved,
            "relinked_entities": self.relinked_entities,
            "embeddings": self.sync.to_dict() if self.sync else None,
        }


def merged_content(primary: Dict[str, Any], secondary: Dict[str, Any]) -> str:
    head = primary.get("content") or ""
    tail = secondary.get("content") or ""
    if not tail.strip():
        return head
    if not head.strip():
        return tail
    return f"{head}\n\n---\n\n*Merged from {secondary['name']}:*\n\n{tail}"


async def merge_entities(
    storage: GraphStorage,
    synchronizer: EmbeddingSynchronizer,
    campaign_id: str,
    primary_id: str,
    secondary_id: str,
) -> MergeResult:
    """Fold *secondary_id* into *primary_id* and return the updated primary.

    Raises:
        MergeError: an id is missing or both ids are the same.
        EntityNotFoundError: either entity is not in *campaign_id*.
    """
    if not primary_id or not secondary_id:
        raise MergeError("Both primary_id and secondary_id are required")
    if primary_id == secondary_id:
        raise MergeError("Cannot merge an entity with itself")

    primary = storage.require_entity(primary_id, campaign_id)
    secondary = storage.require_entity(secondary_id, campaign_id)

    aliases = merge_aliases(
        primary["aliases"],
        [secondary["name"], secondary["canonical_name"], *secondary["aliases"]],
        exclude=[primary["name"], primary["canonical_name"]],
    )
    tags = list(dict.fromkeys([*primary["tags"], *secondary["tags"]]))
    old_terms = [secondary["name"], secondary["canonical_name"], *secondary["aliases"]]
    result = MergeResult(entity=primary, primary_name=primary["name"], secondary_name=secondary["name"])
    relinked: List[Dict[str, Any]] = []

    with storage.transaction():
        result.relationships_moved = storage.repoint_relationships(secondary_id, primary_id)
        storage.delete_self_loops(primary_id)

        for other in storage.list_entities(campaign_id):
            if other["id"] in (primary_id, secondary_id):
                continue
            rewritten = rewrite_links(other["content"], old_terms, primary["name"])
            if rewritten != other["content"]:
                relinked.append(storage.update_entity(other["id"], content=rewritten))

        content = rewrite_links(merged_content(primary, secondary), old_terms, primary["name"])
        result.entity = storage.update_entity(primary_id, content=content, aliases=aliases, tags=tags)
        storage.delete_chunks(secondary_id)
        storage.delete_entity(secondary_id)

    result.relinked_entities = [e["id"] for e in relinked]
    logger.info(
        "Merged %s into %s (%d relationships moved, %d entities relinked)",
        secondary["name"], primary["name"], result.relationships_moved, len(relinked),
    )

    try:
        result.sync = await synchronizer.sync_entity(result.entity)
        for entity in relinked:
            await synchronizer.sync_entity(entity)
    except Exception as exc:
        logger.warning("Resync after merging into %s failed: %s", primary_id, exc)
    return result
