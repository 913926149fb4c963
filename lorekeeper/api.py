"""FastAPI HTTP API for the Lorekeeper campaign knowledge graph.

Endpoints (all campaign routes live under ``/v1/campaigns/{campaign_id}``):
    GET    /v1/health                   -- Health check
    GET    .../stats                    -- Graph statistics
    GET    .../settings                 -- Effective campaign settings
    PUT    .../settings                 -- Replace stored settings (partial dicts allowed)
    GET    .../entities                 -- List entities
    POST   .../entities                 -- Create entity (409 on duplicate canonical name)
    GET    .../entities/{id}            -- Entity + relationships + index status
    PATCH  .../entities/{id}            -- Update entity (resyncs embeddings)
    DELETE .../entities/{id}            -- Delete entity
    GET    .../entities/{id}/index      -- Embedding index status
    GET    .../duplicates               -- Advisory fuzzy duplicate check
    POST   .../extract-stream           -- Extraction with server-sent progress events
    POST   .../entities/batch           -- Commit reviewed extraction
    POST   .../entities/merge           -- Merge two entities
    POST   .../search                   -- Vector / keyword retrieval
    POST   .../chat                     -- Answer from retrieved campaign context
    POST   .../reindex                  -- Resync every entity's embeddings
    GET    .../spotlight                -- Cached campaign summary

Run: ``python -m lorekeeper.api``
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse, StreamingResponse

from .chat import CampaignChat, ChatError, ChatMessage
from .config import Config, load_config
from .dedup import canonicalize, find_potential_duplicates
from .embeddings import JinaEmbeddings
from .extraction import ExtractionOrchestrator, ProgressChannel
from .llm import ClaudeExtractor
from .merge import MergeError, merge_entities
from .middleware import AuditLogMiddleware
from .search import RetrievalEngine, build_context
from .settings import CampaignSettings, load_campaign_settings
from .spotlight import SpotlightService
from .staging import (
    CommitError,
    ReviewStatus,
    StagedEntity,
    StagedRelationship,
    commit_batch,
)
from .storage import DuplicateEntityError, EntityNotFoundError, GraphStorage
from .sync import EmbeddingSynchronizer

logger = logging.getLogger(__name__)

# Streaming extraction must finish inside the request deadline
STREAM_MAX_CHUNKS = 6
STREAM_BATCH_SIZE = 1

# ---------------------------------------------------------------------------
# Shared state (initialised in lifespan)
# ---------------------------------------------------------------------------

_config: Optional[Config] = None
_storage: Optional[GraphStorage] = None
_embedder: Optional[JinaEmbeddings] = None
_synchronizer: Optional[EmbeddingSynchronizer] = None
_retrieval: Optional[RetrievalEngine] = None
_orchestrator: Optional[ExtractionOrchestrator] = None
_spotlight: Optional[SpotlightService] = None
_chat: Optional[CampaignChat] = None
_start_time: float = 0.0

_audit_log_path = os.environ.get("LOREKEEPER_AUDIT_LOG")
if _audit_log_path:
    try:
        _audit_handler = logging.FileHandler(_audit_log_path)
        _audit_handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        logging.getLogger("audit").addHandler(_audit_handler)
    except OSError as exc:
        logger.warning("Audit log %s unavailable: %s", _audit_log_path, exc)
logging.getLogger("audit").setLevel(logging.INFO)


def _get_storage() -> GraphStorage:
    if _storage is None:
        raise HTTPException(503, "Storage not initialised")
    return _storage


def _get_synchronizer() -> EmbeddingSynchronizer:
    if _synchronizer is None:
        raise HTTPException(503, "Embedding synchronizer not initialised")
    return _synchronizer


def _get_retrieval() -> RetrievalEngine:
    if _retrieval is None:
        raise HTTPException(503, "Search not initialised")
    return _retrieval


def _get_orchestrator() -> ExtractionOrchestrator:
    if _orchestrator is None:
        raise HTTPException(503, "Extraction is not configured (ANTHROPIC_API_KEY missing)")
    return _orchestrator


def _get_spotlight() -> SpotlightService:
    if _spotlight is None:
        raise HTTPException(503, "Spotlight not initialised")
    return _spotlight


def _get_chat() -> CampaignChat:
    if _chat is None:
        raise HTTPException(503, "Chat not initialised")
    return _chat


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown logic."""
    global _config, _storage, _embedder, _synchronizer, _retrieval, _orchestrator, _spotlight, _chat
    global _start_time

    _config = load_config()
    errors = _config.validate()
    if errors:
        logger.warning("Config validation warnings: %s", errors)

    _storage = GraphStorage(db_path=_config.db_path, dimensions=_config.embedding_dimensions)

    if _config.jina_api_key:
        _embedder = JinaEmbeddings(
            api_key=_config.jina_api_key,
            model=_config.embedding_model,
            dimensions=_config.embedding_dimensions,
            max_retries=_config.embed_max_retries,
            cache_size=_config.embed_cache_size,
        )
    else:
        logger.warning("No JINA_API_KEY -- embeddings disabled, search is keyword-only")
        _embedder = None

    _synchronizer = EmbeddingSynchronizer(_storage, _embedder)
    _retrieval = RetrievalEngine(_storage, _embedder)

    if _config.anthropic_api_key:
        extractor = ClaudeExtractor(
            api_key=_config.anthropic_api_key,
            model=_config.extraction_model,
            max_tokens=_config.extraction_max_tokens,
        )
        _orchestrator = ExtractionOrchestrator(_storage, extractor, deadline=_config.extraction_deadline)
        _chat = CampaignChat(
            _retrieval,
            client=extractor.client,
            model=_config.chat_model,
            max_tokens=_config.chat_max_tokens,
        )
    else:
        logger.warning("No ANTHROPIC_API_KEY -- extraction disabled, chat is search-only")
        _orchestrator = None
        _chat = CampaignChat(_retrieval)

    _spotlight = SpotlightService(_storage, ttl_seconds=_config.spotlight_ttl_seconds)
    _start_time = time.time()
    logger.info("Lorekeeper API ready (db=%s)", _config.db_path)

    yield

    _storage.close()
    logger.info("Lorekeeper API shut down")


app = FastAPI(
    title="Lorekeeper API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(AuditLogMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in load_config().cors_origins.split(",") if o.strip()],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
)

# --- Centralized error handling ---

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "status_code": status_code},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    logger.warning("HTTP %d: %s (path=%s)", exc.status_code, exc.detail, request.url.path)
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    logger.warning("Validation error: %s (path=%s)", str(exc)[:200], request.url.path)
    return JSONResponse(
        status_code=422,
        content={"error": "Validation error", "status_code": 422, "detail": exc.errors()},
    )


@app.exception_handler(DuplicateEntityError)
async def duplicate_entity_handler(request, exc):
    logger.info("Conflict: %s (path=%s)", exc, request.url.path)
    return _error(409, str(exc))


@app.exception_handler(EntityNotFoundError)
async def not_found_handler(request, exc):
    return _error(404, str(exc))


@app.exception_handler(MergeError)
@app.exception_handler(CommitError)
@app.exception_handler(ValueError)
async def bad_request_handler(request, exc):
    logger.warning("Bad request: %s (path=%s)", exc, request.url.path)
    return _error(400, str(exc))


@app.exception_handler(ChatError)
async def chat_error_handler(request, exc):
    logger.warning("Chat failed: %s (path=%s)", exc, request.url.path)
    return _error(502, str(exc))


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.exception("Unhandled error: %s (path=%s)", exc, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class EntityCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    entity_type: str = Field(default="freeform", min_length=1, max_length=64)
    content: str = ""
    aliases: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_restricted: Optional[bool] = Field(
        default=None, description="None applies the campaign's visibility defaults"
    )
    source_note_id: Optional[str] = None
    session_number: Optional[int] = None
    session_date: Optional[str] = None
    session_status: Optional[str] = None
    player_id: Optional[str] = None


class EntityUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    entity_type: Optional[str] = None
    content: Optional[str] = None
    aliases: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    is_restricted: Optional[bool] = None
    source_note_id: Optional[str] = None
    session_number: Optional[int] = None
    session_date: Optional[str] = None
    session_status: Optional[str] = None
    player_id: Optional[str] = None


class ExtractRequest(BaseModel):
    text: str = Field(..., min_length=1)
    source_name: str = Field(default="Untitled document", max_length=300)
    language: str = "en"
    aggressiveness: Optional[str] = None


class StagedEntityModel(BaseModel):
    temp_id: str
    name: str = Field(..., min_length=1, max_length=200)
    canonical_name: Optional[str] = None
    entity_type: str = "freeform"
    content: str = ""
    aliases: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    confidence: float = 0.8
    excerpt: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    merge_target_id: Optional[str] = None
    is_restricted: bool = False


class StagedRelationshipModel(BaseModel):
    temp_id: str = ""
    source_temp_id: str
    target_temp_id: str
    source_name: str = ""
    target_name: str = ""
    relationship_type: str = "related_to"
    reverse_label: Optional[str] = None
    excerpt: str = ""
    status: ReviewStatus = ReviewStatus.PENDING


class CommitRequest(BaseModel):
    document_name: str = "Untitled document"
    document_content: str = ""
    entities: List[StagedEntityModel] = Field(default_factory=list)
    relationships: List[StagedRelationshipModel] = Field(default_factory=list)


class MergeRequest(BaseModel):
    primary_id: str = ""
    secondary_id: str = ""


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    limit: Optional[int] = Field(default=None, ge=1, le=50)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    privileged: bool = Field(default=False, description="Viewer may see restricted entities")


class ChatMessageModel(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=20000)


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    history: List[ChatMessageModel] = Field(default_factory=list)
    mode: Literal["rag", "direct"] = "rag"
    privileged: bool = Field(default=False, description="Viewer may see restricted entities")


class SettingsRequest(BaseModel):
    extraction: Dict[str, Any] = Field(default_factory=dict)
    visibility: Dict[str, Any] = Field(default_factory=dict)
    search: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/v1/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "uptime_seconds": round(time.time() - _start_time, 1) if _start_time else 0.0,
        "embeddings": _embedder is not None,
        "extraction": _orchestrator is not None,
        "chat": _chat is not None and _chat.available,
    }


@app.get("/v1/campaigns/{campaign_id}/stats")
async def stats(campaign_id: str) -> Dict[str, Any]:
    return _get_storage().stats(campaign_id)


@app.get("/v1/campaigns/{campaign_id}/settings")
async def get_settings(campaign_id: str) -> Dict[str, Any]:
    return load_campaign_settings(_get_storage(), campaign_id).to_dict()


@app.put("/v1/campaigns/{campaign_id}/settings")
async def put_settings(campaign_id: str, req: SettingsRequest) -> Dict[str, Any]:
    raw = {"extraction": req.extraction, "visibility": req.visibility, "search": req.search}
    effective = CampaignSettings.from_dict(raw)  # raises ValueError -> 400
    _get_storage().save_settings(campaign_id, raw)
    return effective.to_dict()


@app.get("/v1/campaigns/{campaign_id}/entities")
async def list_entities(
    campaign_id: str,
    entity_type: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    entities = _get_storage().list_entities(campaign_id, entity_type=entity_type)
    return {"entities": entities, "count": len(entities)}


@app.post("/v1/campaigns/{campaign_id}/entities", status_code=201)
async def create_entity(campaign_id: str, req: EntityCreateRequest) -> Dict[str, Any]:
    storage = _get_storage()
    restricted = req.is_restricted
    if restricted is None:
        visibility = load_campaign_settings(storage, campaign_id).visibility
        restricted = visibility.is_restricted(req.entity_type)

    entity = storage.create_entity(
        campaign_id,
        req.name,
        entity_type=req.entity_type,
        content=req.content,
        aliases=req.aliases,
        tags=req.tags,
        is_restricted=restricted,
        source_note_id=req.source_note_id,
        session_number=req.session_number,
        session_date=req.session_date,
        session_status=req.session_status,
        player_id=req.player_id,
    )
    sync = await _get_synchronizer().sync_entity(entity)
    return {"entity": entity, "embeddings": sync.to_dict()}


@app.get("/v1/campaigns/{campaign_id}/entities/{entity_id}")
async def get_entity(campaign_id: str, entity_id: str) -> Dict[str, Any]:
    storage = _get_storage()
    entity = storage.require_entity(entity_id, campaign_id)
    return {
        "entity": entity,
        "relationships": storage.list_relationships(campaign_id, entity_id),
        "index": storage.index_status(entity_id),
    }


@app.patch("/v1/campaigns/{campaign_id}/entities/{entity_id}")
async def update_entity(campaign_id: str, entity_id: str, req: EntityUpdateRequest) -> Dict[str, Any]:
    storage = _get_storage()
    storage.require_entity(entity_id, campaign_id)
    changes = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    entity = storage.update_entity(entity_id, **changes)

    sync = None
    if "content" in changes or "name" in changes:
        sync = (await _get_synchronizer().sync_entity(entity)).to_dict()
    return {"entity": entity, "embeddings": sync}


@app.delete("/v1/campaigns/{campaign_id}/entities/{entity_id}")
async def delete_entity(campaign_id: str, entity_id: str) -> Dict[str, Any]:
    storage = _get_storage()
    storage.require_entity(entity_id, campaign_id)
    storage.delete_entity(entity_id)
    return {"deleted": True, "id": entity_id}


@app.get("/v1/campaigns/{campaign_id}/entities/{entity_id}/index")
async def entity_index_status(campaign_id: str, entity_id: str) -> Dict[str, Any]:
    storage = _get_storage()
    storage.require_entity(entity_id, campaign_id)
    return storage.index_status(entity_id)


@app.get("/v1/campaigns/{campaign_id}/duplicates")
async def potential_duplicates(
    campaign_id: str,
    name: str = Query(..., min_length=1, max_length=200),
    threshold: float = Query(default=0.7, ge=0.0, le=1.0),
) -> Dict[str, Any]:
    matches = find_potential_duplicates(_get_storage(), campaign_id, name, threshold)
    return {"name": name, "matches": [m.to_dict() for m in matches]}


@app.post("/v1/campaigns/{campaign_id}/extract-stream")
async def extract_stream(campaign_id: str, req: ExtractRequest) -> StreamingResponse:
    """Run extraction and stream its progress as server-sent events."""
    orchestrator = _get_orchestrator()
    settings = load_campaign_settings(_get_storage(), campaign_id).extraction
    settings = dataclasses.replace(
        settings,
        aggressiveness=req.aggressiveness or settings.aggressiveness,
        max_chunks=min(settings.max_chunks, STREAM_MAX_CHUNKS),
        parallel_batch_size=STREAM_BATCH_SIZE,
    )
    channel = ProgressChannel()

    async def event_stream():
        task = asyncio.create_task(
            orchestrator.run(campaign_id, req.text, req.source_name, req.language, settings, channel)
        )
        try:
            async for event in channel:
                yield event.to_sse()
        finally:
            if not task.done():
                task.cancel()
            # Failures were already reported as an ``error`` event.
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/v1/campaigns/{campaign_id}/entities/batch")
async def commit_entities(campaign_id: str, req: CommitRequest) -> Dict[str, Any]:
    storage = _get_storage()
    visibility = load_campaign_settings(storage, campaign_id).visibility
    entities = [
        StagedEntity(
            temp_id=e.temp_id,
            name=e.name,
            canonical_name=e.canonical_name or canonicalize(e.name),
            entity_type=e.entity_type,
            content=e.content,
            aliases=e.aliases,
            tags=e.tags,
            confidence=e.confidence,
            excerpt=e.excerpt,
            status=e.status,
            merge_target_id=e.merge_target_id,
            is_restricted=e.is_restricted,
        )
        for e in req.entities
    ]
    relationships = [
        StagedRelationship(
            temp_id=r.temp_id,
            source_temp_id=r.source_temp_id,
            target_temp_id=r.target_temp_id,
            source_name=r.source_name,
            target_name=r.target_name,
            relationship_type=r.relationship_type,
            reverse_label=r.reverse_label,
            excerpt=r.excerpt,
            status=r.status,
        )
        for r in req.relationships
    ]
    result = await commit_batch(
        storage,
        _get_synchronizer(),
        campaign_id,
        entities,
        relationships,
        document_name=req.document_name,
        document_content=req.document_content,
        visibility=visibility,
    )
    return result.to_dict()


@app.post("/v1/campaigns/{campaign_id}/entities/merge")
async def merge(campaign_id: str, req: MergeRequest) -> Dict[str, Any]:
    result = await merge_entities(
        _get_storage(), _get_synchronizer(), campaign_id, req.primary_id, req.secondary_id
    )
    return result.to_dict()


@app.post("/v1/campaigns/{campaign_id}/search")
async def search(campaign_id: str, req: SearchRequest) -> Dict[str, Any]:
    settings = load_campaign_settings(_get_storage(), campaign_id).search
    response = await _get_retrieval().search(
        campaign_id,
        req.query,
        limit=req.limit or settings.result_limit,
        similarity_threshold=(
            req.threshold if req.threshold is not None else settings.similarity_threshold
        ),
        exclude_restricted=not req.privileged,
    )
    body = response.to_dict()
    body["context"] = build_context(response.results)
    return body


@app.post("/v1/campaigns/{campaign_id}/chat")
async def chat(campaign_id: str, req: ChatRequest) -> Dict[str, Any]:
    chat_service = _get_chat()
    if req.mode == "rag" and not chat_service.available:
        raise HTTPException(503, "Chat is not configured (ANTHROPIC_API_KEY missing)")
    settings = load_campaign_settings(_get_storage(), campaign_id)
    response = await chat_service.answer(
        campaign_id,
        req.message,
        history=[ChatMessage(m.role, m.content) for m in req.history],
        settings=settings.search,
        privileged=req.privileged,
        mode=req.mode,
        custom_prompts=settings.extraction.custom_prompts,
    )
    return response.to_dict()


@app.post("/v1/campaigns/{campaign_id}/reindex")
async def reindex(campaign_id: str) -> Dict[str, Any]:
    return await _get_synchronizer().reindex_campaign(campaign_id)


@app.get("/v1/campaigns/{campaign_id}/spotlight")
async def spotlight(campaign_id: str, refresh: bool = Query(default=False)) -> Dict[str, Any]:
    return _get_spotlight().get(campaign_id, refresh=refresh)


# ---------------------------------------------------------------------------
# CLI entry-point
# ---------------------------------------------------------------------------

def main() -> None:
    """Run the API server via uvicorn."""
    import uvicorn

    cfg = load_config()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    logger.info("Starting Lorekeeper API on %s:%d", cfg.api_host, cfg.api_port)
    uvicorn.run(
        "lorekeeper.api:app",
        host=cfg.api_host,
        port=cfg.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
