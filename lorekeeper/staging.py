"""Staged review records and the commit protocol.

Extraction output is held as ``StagedEntity`` / ``StagedRelationship``
records identified by temporary ids. A reviewer marks each one with a
``ReviewStatus`` and may point an entity at an existing one to merge into.
``commit_batch`` promotes the committable records into the graph inside one
store transaction, then resyncs embeddings for the entities it created.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from .dedup import EntityMatch, canonicalize, match_staged_entities, merge_aliases

if TYPE_CHECKING:
    from .llm import RelationshipMention
    from .settings import VisibilitySettings
    from .storage import GraphStorage
    from .sync import EmbeddingSynchronizer

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8
EXCERPT_LENGTH = 300
SOURCE_EXCERPT_LENGTH = 500

_UNSAFE_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class CommitError(Exception):
    """Raised when a commit request cannot be applied."""


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EDITED = "edited"


def entity_committable(status: ReviewStatus) -> bool:
    """Only entities a reviewer accepted are written."""
    if status is ReviewStatus.APPROVED:
        return True
    if status is ReviewStatus.EDITED:
        return True
    if status is ReviewStatus.REJECTED:
        return False
    if status is ReviewStatus.PENDING:
        return False
    raise AssertionError(f"unhandled review status: {status!r}")


def relationship_committable(status: ReviewStatus) -> bool:
    """Relationships ride along with their endpoints unless explicitly rejected."""
    if status is ReviewStatus.APPROVED:
        return True
    if status is ReviewStatus.EDITED:
        return True
    if status is ReviewStatus.PENDING:
        return True
    if status is ReviewStatus.REJECTED:
        return False
    raise AssertionError(f"unhandled review status: {status!r}")


def sanitize_text(text: Optional[str]) -> str:
    """Drop NUL and other control characters (newlines and tabs survive)."""
    return _UNSAFE_CHARS_RE.sub("", text or "")


@dataclass
class StagedEntity:
    temp_id: str
    name: str
    canonical_name: str
    entity_type: str
    content: str = ""
    aliases: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    confidence: float = DEFAULT_CONFIDENCE
    excerpt: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    merge_target_id: Optional[str] = None
    is_restricted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temp_id": self.temp_id,
            "name": self.name,
            "canonical_name": self.canonical_name,
            "entity_type": self.entity_type,
            "content": self.content,
            "aliases": list(self.aliases),
            "tags": list(self.tags),
            "confidence": self.confidence,
            "excerpt": self.excerpt,
            "status": self.status.value,
            "merge_target_id": self.merge_target_id,
            "is_restricted": self.is_restricted,
        }


@dataclass
class StagedRelationship:
    temp_id: str
    source_temp_id: str
    target_temp_id: str
    source_name: str
    target_name: str
    relationship_type: str
    reverse_label: Optional[str] = None
    excerpt: str = ""
    status: ReviewStatus = ReviewStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temp_id": self.temp_id,
            "source_temp_id": self.source_temp_id,
            "target_temp_id": self.target_temp_id,
            "source_name": self.source_name,
            "target_name": self.target_name,
            "relationship_type": self.relationship_type,
            "reverse_label": self.reverse_label,
            "excerpt": self.excerpt,
            "status": self.status.value,
        }


@dataclass
class StagedExtraction:
    """Everything a reviewer needs for one extraction session."""
    session_id: str
    source_name: str
    entities: List[StagedEntity] = field(default_factory=list)
    relationships: List[StagedRelationship] = field(default_factory=list)
    matches: List[EntityMatch] = field(default_factory=list)
    failed_chunks: int = 0


# ---------------------------------------------------------------------------
# Staging
# ---------------------------------------------------------------------------

def stage_extraction(
    entities: Iterable[Any],
    relationships: Iterable[RelationshipMention],
    existing: List[Dict[str, Any]],
    source_name: str = "",
) -> StagedExtraction:
    """Give extracted records temp ids, resolve edges and find existing matches.

    *entities* are aggregated extraction entities (name, canonical_name,
    entity_type, content, aliases, tags). Relationships whose endpoints are
    not among them (by name or alias, case-insensitive) are dropped.
    """
    staged = StagedExtraction(session_id=uuid.uuid4().hex, source_name=source_name)

    name_to_temp: Dict[str, str] = {}
    for entity in entities:
        temp_id = uuid.uuid4().hex
        staged.entities.append(StagedEntity(
            temp_id=temp_id,
            name=entity.name,
            canonical_name=entity.canonical_name or canonicalize(entity.name),
            entity_type=entity.entity_type,
            content=entity.content,
            aliases=list(entity.aliases),
            tags=list(entity.tags),
            excerpt=entity.content[:EXCERPT_LENGTH],
        ))
        name_to_temp.setdefault(entity.name.lower(), temp_id)
    for item in staged.entities:
        for alias in item.aliases:
            name_to_temp.setdefault(alias.lower(), item.temp_id)

    dropped = 0
    for rel in relationships:
        source_temp = name_to_temp.get(rel.source.lower())
        target_temp = name_to_temp.get(rel.target.lower())
        if source_temp is None or target_temp is None:
            dropped += 1
            continue
        staged.relationships.append(StagedRelationship(
            temp_id=uuid.uuid4().hex,
            source_temp_id=source_temp,
            target_temp_id=target_temp,
            source_name=rel.source,
            target_name=rel.target,
            relationship_type=rel.relationship_type,
            reverse_label=rel.reverse_label,
            excerpt=rel.excerpt,
        ))
    if dropped:
        logger.debug("Dropped %d relationships with unresolved endpoints", dropped)

    staged.matches = match_staged_entities(staged.entities, existing)
    return staged


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------

@dataclass
class CommitResult:
    document_id: str
    created: List[Dict[str, str]] = field(default_factory=list)
    merged: List[Dict[str, str]] = field(default_factory=list)
    relationships_created: int = 0
    embeddings_total: int = 0
    embeddings_succeeded: int = 0
    embeddings_failed: int = 0
    embeddings_skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "document_id": self.document_id,
            "created_entities": self.created,
            "merged_entities": self.merged,
            "created_count": len(self.created),
            "merged_count": len(self.merged),
            "created_relationships": self.relationships_created,
            "embeddings": {
                "total": self.embeddings_total,
                "succeeded": self.embeddings_succeeded,
                "failed": self.embeddings_failed,
                "skipped": self.embeddings_skipped,
            },
        }


async def commit_batch(
    storage: GraphStorage,
    synchronizer: EmbeddingSynchronizer,
    campaign_id: str,
    entities: List[StagedEntity],
    relationships: List[StagedRelationship],
    document_name: str,
    document_content: str = "",
    visibility: Optional[VisibilitySettings] = None,
) -> CommitResult:
    """Promote reviewed records into the graph.

    All graph writes happen in one transaction: a duplicate canonical name
    or a missing merge target rolls everything back. Embedding sync runs
    afterwards and its failures never undo the commit.

    Raises:
        CommitError: nothing in *entities* is committable.
        DuplicateEntityError: a new entity collides with an existing one.
        EntityNotFoundError: a merge target is not in this campaign.
    """
    approved = [e for e in entities if entity_committable(e.status)]
    if not approved:
        raise CommitError("No approved entities to commit")

    id_map: Dict[str, str] = {}
    created_entities: List[Dict[str, Any]] = []

    with storage.transaction():
        document_id = storage.create_document(
            campaign_id,
            sanitize_text(document_name).strip() or "Untitled document",
            sanitize_text(document_content),
        )
        result = CommitResult(document_id=document_id)

        for staged in approved:
            content = sanitize_text(staged.content)
            if staged.merge_target_id:
                target = storage.require_entity(staged.merge_target_id, campaign_id)
                aliases = merge_aliases(
                    target["aliases"],
                    [staged.name, *staged.aliases],
                    exclude=[target["name"], target["canonical_name"]],
                )
                if aliases != target["aliases"]:
                    storage.update_entity(target["id"], aliases=aliases)
                storage.add_entity_source(target["id"], document_id, content[:SOURCE_EXCERPT_LENGTH])
                id_map[staged.temp_id] = target["id"]
                result.merged.append(
                    {"temp_id": staged.temp_id, "id": target["id"], "name": target["name"]}
                )
                continue

            restricted = staged.is_restricted or (
                visibility is not None and visibility.is_restricted(staged.entity_type)
            )
            entity = storage.create_entity(
                campaign_id,
                sanitize_text(staged.name),
                entity_type=staged.entity_type,
                content=content,
                aliases=[sanitize_text(a) for a in staged.aliases],
                tags=staged.tags,
                is_restricted=restricted,
            )
            storage.add_entity_source(entity["id"], document_id, content[:SOURCE_EXCERPT_LENGTH])
            id_map[staged.temp_id] = entity["id"]
            created_entities.append(entity)
            result.created.append(
                {"temp_id": staged.temp_id, "id": entity["id"], "name": entity["name"]}
            )

        for rel in relationships:
            if not relationship_committable(rel.status):
                continue
            source_id = id_map.get(rel.source_temp_id)
            target_id = id_map.get(rel.target_temp_id)
            if not source_id or not target_id or source_id == target_id:
                continue
            if storage.create_relationship(
                campaign_id,
                source_id,
                target_id,
                rel.relationship_type,
                reverse_label=rel.reverse_label,
                document_id=document_id,
            ):
                result.relationships_created += 1

    logger.info(
        "Committed document %s: %d created, %d merged, %d relationships",
        document_id, len(result.created), len(result.merged), result.relationships_created,
    )

    result.embeddings_total = len(created_entities)
    result.embeddings_skipped = not synchronizer.enabled
    if synchronizer.enabled:
        for entity in created_entities:
            try:
                sync = await synchronizer.sync_entity(entity)
            except Exception as exc:
                logger.warning("Embedding sync failed for %s: %s", entity["id"], exc)
                result.embeddings_failed += 1
                continue
            if sync.complete:
                result.embeddings_succeeded += 1
            else:
                result.embeddings_failed += 1
    return result
