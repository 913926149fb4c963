"""Extraction orchestration.

``ExtractionOrchestrator.run`` takes raw text through these stages:

    starting -> parsed -> loading -> loaded -> starting (extraction)
    -> per-chunk extraction -> processing -> entities -> relationships
    -> duplicates -> complete | error

Progress is written to a ``ProgressChannel``. The HTTP layer drains it
into server-sent events, so nothing in here knows about the transport.
The whole run sits under ``with_deadline``; when the deadline passes the
run is abandoned and a single ``error`` event is emitted.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .chunker import pack_content
from .dedup import canonicalize, merge_aliases
from .llm import ChunkExtraction, EntityMention, RelationshipMention
from .settings import ExtractionSettings
from .staging import StagedExtraction, sanitize_text, stage_extraction
from .storage import GraphStorage
from .wikilinks import link_known_names

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVENT_BATCH_SIZE = 20

TYPE_LABELS: Dict[str, str] = {
    "npc": "Character",
    "location": "Location",
    "item": "Item",
    "quest": "Quest",
    "faction": "Faction",
    "lore": "Lore",
    "session": "Session",
    "player_character": "Player Character",
}

RELATIONSHIP_LABELS: Dict[str, str] = {
    "lives_in": "Lives in",
    "member_of": "Member of",
    "owns": "Owns",
    "created": "Created",
    "enemy_of": "Enemy of",
    "ally_of": "Ally of",
    "located_in": "Located in",
    "participated_in": "Participated in",
    "mentioned_in": "Mentioned in",
    "related_to": "Related to",
    "knows": "Knows",
    "serves": "Serves",
    "rules": "Rules over",
    "guards": "Guards",
    "seeks": "Seeks",
    "fears": "Fears",
    "loves": "Loves",
    "hates": "Hates",
    "works_for": "Works for",
    "parent_of": "Parent of",
    "child_of": "Child of",
    "sibling_of": "Sibling of",
    "married_to": "Married to",
    "worships": "Worships",
    "leads": "Leads",
    "follows": "Follows",
    "created_by": "Created by",
    "contains": "Contains",
    "part_of": "Part of",
    "killed_by": "Killed by",
    "visited": "Visited",
    "hired_by": "Hired by",
}


class ExtractionError(Exception):
    """Raised when an extraction run cannot produce a staged result."""


class ExtractionTimeout(ExtractionError):
    """Raised when a run outlives its deadline."""


async def with_deadline(
    awaitable: Awaitable[T],
    seconds: float,
    error: type = ExtractionTimeout,
) -> T:
    """Await *awaitable*, cancelling it and raising *error* after *seconds*."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise error(f"Timed out after {seconds:g}s") from exc


# ---------------------------------------------------------------------------
# Progress channel
# ---------------------------------------------------------------------------

@dataclass
class ProgressEvent:
    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return f"event: {self.event}\ndata: {json.dumps(self.data)}\n\n"


class ProgressChannel:
    """Unbounded queue of ProgressEvents, closed once by the producer.

    Iterating the channel yields events until it is closed. Emitting after
    close is ignored, so a producer never blocks on a consumer that left.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: str, **data: Any) -> None:
        if self._closed:
            return
        self._queue.put_nowait(ProgressEvent(event, data))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def __aiter__(self) -> "ProgressChannel":
        return self

    async def __anext__(self) -> ProgressEvent:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item


def _batched(items: Sequence[T], size: int) -> Iterator[Tuple[int, Sequence[T]]]:
    for start in range(0, len(items), size):
        yield start, items[start:start + size]


def _emit_batches(channel: "ProgressChannel", event: str, items: List[Dict[str, Any]]) -> None:
    """Emit *items* in capped batches. An empty list still yields one event."""
    if not items:
        channel.emit(event, offset=0, total=0, items=[])
        return
    for offset, batch in _batched(items, EVENT_BATCH_SIZE):
        channel.emit(event, offset=offset, total=len(items), items=list(batch))


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@dataclass
class ExtractedEntity:
    name: str
    canonical_name: str
    entity_type: str
    content: str
    aliases: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


@dataclass
class ExtractionResult:
    entities: List[ExtractedEntity] = field(default_factory=list)
    relationships: List[RelationshipMention] = field(default_factory=list)
    chunks_total: int = 0
    chunks_processed: int = 0
    failed_chunks: int = 0


def render_entity_page(
    mention: EntityMention,
    outgoing: List[RelationshipMention],
    incoming: List[RelationshipMention],
    known_names: Sequence[str],
) -> str:
    """Build wiki-style content with [[links]] for one aggregated mention."""
    label = TYPE_LABELS.get(mention.entity_type, "Entry")
    description = mention.description or f"A {label.lower()} mentioned in the campaign."
    description = link_known_names(description, known_names, exclude=mention.name)

    lines = [f"# {mention.name}", ""]
    if mention.aliases:
        lines += [f"*Also known as: {', '.join(mention.aliases)}*", ""]
    lines += [description, ""]

    if outgoing:
        grouped: Dict[str, List[str]] = {}
        for rel in outgoing:
            rel_label = RELATIONSHIP_LABELS.get(
                rel.relationship_type, rel.relationship_type.replace("_", " ")
            )
            grouped.setdefault(rel_label, []).append(f"[[{rel.target}]]")
        lines += ["## Connections", ""]
        lines += [f"- **{rel_label}:** {', '.join(targets)}" for rel_label, targets in grouped.items()]
        lines.append("")

    backlinks = list(dict.fromkeys(rel.source for rel in incoming))
    if backlinks:
        lines += ["## Mentioned By", ""]
        lines += [f"- [[{name}]]" for name in backlinks]
        lines.append("")

    return "\n".join(lines).strip() + "\n"


def aggregate_extractions(
    extractions: Sequence[ChunkExtraction],
    known_names: Sequence[str] = (),
    confidence_threshold: float = 0.0,
    enable_relationships: bool = True,
) -> Tuple[List[ExtractedEntity], List[RelationshipMention]]:
    """Merge per-chunk mentions (in chunk order) into one entity list."""
    mentions: Dict[str, EntityMention] = {}
    all_relationships: List[RelationshipMention] = []

    for extraction in extractions:
        for mention in extraction.entities:
            if mention.confidence < confidence_threshold:
                continue
            key = mention.name.lower()
            existing = mentions.get(key)
            if existing is None:
                mentions[key] = EntityMention(
                    name=mention.name,
                    entity_type=mention.entity_type,
                    aliases=merge_aliases([], mention.aliases, exclude=[mention.name]),
                    description=mention.description,
                    confidence=mention.confidence,
                )
                continue
            existing.aliases = merge_aliases(existing.aliases, mention.aliases, exclude=[existing.name])
            if mention.description and mention.description not in existing.description:
                existing.description = f"{existing.description} {mention.description}".strip()
            existing.confidence = max(existing.confidence, mention.confidence)
        if enable_relationships:
            all_relationships.extend(extraction.relationships)

    seen: set[Tuple[str, str, str]] = set()
    relationships: List[RelationshipMention] = []
    for rel in all_relationships:
        key = (rel.source.lower(), rel.relationship_type, rel.target.lower())
        if key in seen:
            continue
        seen.add(key)
        relationships.append(rel)

    link_names = list(dict.fromkeys([m.name for m in mentions.values()] + list(known_names)))
    entities: List[ExtractedEntity] = []
    for key, mention in mentions.items():
        outgoing = [r for r in relationships if r.source.lower() == key]
        incoming = [r for r in relationships if r.target.lower() == key]
        entities.append(ExtractedEntity(
            name=mention.name,
            canonical_name=canonicalize(mention.name),
            entity_type=mention.entity_type,
            content=render_entity_page(mention, outgoing, incoming, link_names),
            aliases=list(mention.aliases),
            tags=[mention.entity_type],
        ))
    return entities, relationships


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class ExtractionOrchestrator:
    """Drive the extractor over a document and stage the result."""

    def __init__(
        self,
        storage: GraphStorage,
        extractor: Any,  # ClaudeExtractor
        deadline: float = 45.0,
    ) -> None:
        self.storage = storage
        self.extractor = extractor
        self.deadline = deadline

    async def _extract_chunk(
        self,
        text: str,
        known_names: Sequence[str],
        language: str,
        settings: ExtractionSettings,
    ) -> ChunkExtraction:
        return await self.extractor.extract(
            text,
            known_names=known_names,
            language=language,
            aggressiveness=settings.aggressiveness,
            custom_prompts=settings.custom_prompts,
        )

    async def extract(
        self,
        text: str,
        source_name: str,
        known_names: Sequence[str],
        language: str = "en",
        settings: Optional[ExtractionSettings] = None,
        channel: Optional[ProgressChannel] = None,
    ) -> ExtractionResult:
        """Pack *text* up to ``chunk_size`` and extract from the first ``max_chunks`` chunks.

        Chunks go out in batches of ``parallel_batch_size``. Results are
        aggregated in chunk order. A failed chunk is counted and skipped;
        if every chunk fails an ExtractionError is raised.
        """
        settings = settings or ExtractionSettings()
        chunks = pack_content(text, settings.chunk_size)
        selected = chunks[: settings.max_chunks]
        if len(chunks) > len(selected):
            logger.info(
                "%s: processing %d of %d chunks", source_name, len(selected), len(chunks)
            )

        result = ExtractionResult(chunks_total=len(chunks))
        if not selected:
            return result

        total = len(selected)
        if channel is not None:
            channel.emit(
                "progress", stage="starting", current=0, total=total,
                message=f"Extracting from {total} chunk(s)",
            )

        per_chunk: List[Optional[ChunkExtraction]] = [None] * total
        for start, batch in _batched(selected, settings.parallel_batch_size):
            outcomes = await asyncio.gather(
                *(self._extract_chunk(c.text, known_names, language, settings) for c in batch),
                return_exceptions=True,
            )
            for offset, outcome in enumerate(outcomes):
                index = start + offset
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    result.failed_chunks += 1
                    logger.warning(
                        "%s: chunk %d/%d failed: %s", source_name, index + 1, total, outcome
                    )
                    status = "failed"
                else:
                    per_chunk[index] = outcome
                    result.chunks_processed += 1
                    status = "ok"
                if channel is not None:
                    channel.emit(
                        "extraction", stage="extracting", current=index + 1, total=total,
                        status=status, message=f"Chunk {index + 1}/{total}",
                    )

        if result.failed_chunks == total:
            raise ExtractionError(f"All {total} chunk(s) failed to extract")

        result.entities, result.relationships = aggregate_extractions(
            [c for c in per_chunk if c is not None],
            known_names=known_names,
            confidence_threshold=settings.confidence_threshold,
            enable_relationships=settings.enable_relationships,
        )
        return result

    async def _run(
        self,
        campaign_id: str,
        text: str,
        source_name: str,
        language: str,
        settings: ExtractionSettings,
        channel: ProgressChannel,
    ) -> StagedExtraction:
        channel.emit("progress", stage="starting", message=f"Reading {source_name}")
        text = sanitize_text(text).strip()
        if not text:
            raise ExtractionError("Document has no text content")
        channel.emit(
            "progress", stage="parsed", characters=len(text),
            message=f"Parsed {len(text)} characters",
        )

        channel.emit("progress", stage="loading", message="Loading existing entities")
        existing = self.storage.list_entities(campaign_id)
        known_names = [e["name"] for e in existing]
        channel.emit(
            "progress", stage="loaded", count=len(existing),
            message=f"Found {len(existing)} existing entities",
        )

        result = await self.extract(text, source_name, known_names, language, settings, channel)

        channel.emit("progress", stage="processing", message="Preparing review")
        staged = stage_extraction(result.entities, result.relationships, existing, source_name)
        staged.failed_chunks = result.failed_chunks

        entities = [e.to_dict() for e in staged.entities]
        relationships = [r.to_dict() for r in staged.relationships]
        matches = [m.to_dict() for m in staged.matches]
        _emit_batches(channel, "entities", entities)
        _emit_batches(channel, "relationships", relationships)
        _emit_batches(channel, "duplicates", matches)

        channel.emit(
            "complete",
            success=True,
            session_id=staged.session_id,
            file_name=source_name,
            extracted_entities=entities,
            extracted_relationships=relationships,
            existing_entity_matches=matches,
            entity_count=len(entities),
            relationship_count=len(relationships),
            match_count=len(matches),
            failed_chunks=staged.failed_chunks,
        )
        return staged

    async def run(
        self,
        campaign_id: str,
        text: str,
        source_name: str,
        language: str = "en",
        settings: Optional[ExtractionSettings] = None,
        channel: Optional[ProgressChannel] = None,
    ) -> StagedExtraction:
        """Extract, stage and report. Closes *channel* when done.

        Exactly one terminal event (``complete`` or ``error``) is emitted.
        Failures are re-raised after the ``error`` event.
        """
        channel = channel or ProgressChannel()
        settings = settings or ExtractionSettings()
        try:
            return await with_deadline(
                self._run(campaign_id, text, source_name, language, settings, channel),
                self.deadline,
            )
        except ExtractionTimeout as exc:
            logger.error("Extraction of %s abandoned: %s", source_name, exc)
            channel.emit("error", message=f"Extraction timed out: {exc}")
            raise
        except Exception as exc:
            logger.warning("Extraction of %s failed: %s", source_name, exc)
            channel.emit("error", message=str(exc))
            raise
        finally:
            channel.close()
