"""SQLite + sqlite-vec storage layer for the campaign knowledge graph.

Single-file database with:
* Graph tables (entities, relationships) scoped per campaign
* Provenance tables (documents, entity_sources)
* Chunk table holding float32 embedding blobs, scored with
  ``vec_distance_cosine`` from the ``sqlite-vec`` extension
* Auto-create schema on first use
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np

from .dedup import canonicalize

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for graph store failures."""


class DuplicateEntityError(StorageError):
    """Raised when a canonical name is already taken within a campaign.

    Callers should treat this as a retryable conflict.
    """

    def __init__(self, campaign_id: str, canonical_name: str) -> None:
        super().__init__(
            f"An entity with canonical name '{canonical_name}' already exists in campaign {campaign_id}"
        )
        self.campaign_id = campaign_id
        self.canonical_name = canonical_name


class EntityNotFoundError(StorageError):
    """Raised when an entity id does not exist in the requested campaign."""


# ---------------------------------------------------------------------------
# sqlite-vec extension loading
# ---------------------------------------------------------------------------

def _load_vec_extension(conn: sqlite3.Connection) -> None:
    """Load the sqlite-vec extension into *conn*.

    Hardening: only enable extension loading for the duration of the load call.
    """
    conn.enable_load_extension(True)
    try:
        import sqlite_vec
        sqlite_vec.load(conn)
    except Exception as exc:
        logger.error("Failed to load sqlite-vec: %s", exc)
        raise
    finally:
        conn.enable_load_extension(False)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL,
    name TEXT NOT NULL,
    canonical_name TEXT NOT NULL,
    entity_type TEXT NOT NULL DEFAULT 'freeform',
    content TEXT NOT NULL DEFAULT '',
    aliases TEXT NOT NULL DEFAULT '[]',
    tags TEXT NOT NULL DEFAULT '[]',
    is_restricted INTEGER NOT NULL DEFAULT 0,
    source_note_id TEXT,
    session_number INTEGER,
    session_date TEXT,
    session_status TEXT,
    player_id TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    UNIQUE (campaign_id, canonical_name)
);

CREATE INDEX IF NOT EXISTS idx_entities_campaign ON entities(campaign_id);
CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(campaign_id, entity_type);

CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL,
    name TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS relationships (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL,
    source_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    target_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    relationship_type TEXT NOT NULL,
    reverse_label TEXT,
    document_id TEXT REFERENCES documents(id) ON DELETE SET NULL,
    created_at REAL NOT NULL,
    UNIQUE (source_id, target_id, relationship_type)
);

CREATE INDEX IF NOT EXISTS idx_rel_source ON relationships(source_id);
CREATE INDEX IF NOT EXISTS idx_rel_target ON relationships(target_id);

CREATE TABLE IF NOT EXISTS entity_sources (
    id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    excerpt TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sources_entity ON entity_sources(entity_id);

-- Chunks are fully replaced on every resync
CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    campaign_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    content TEXT NOT NULL,
    header_path TEXT NOT NULL DEFAULT '[]',
    entity_mentions TEXT NOT NULL DEFAULT '[]',
    embedding BLOB NOT NULL,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_entity ON chunks(entity_id);
CREATE INDEX IF NOT EXISTS idx_chunks_campaign ON chunks(campaign_id);

CREATE TABLE IF NOT EXISTS embedding_status (
    entity_id TEXT PRIMARY KEY REFERENCES entities(id) ON DELETE CASCADE,
    attempted INTEGER NOT NULL,
    stored INTEGER NOT NULL,
    synced_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS campaign_settings (
    campaign_id TEXT PRIMARY KEY,
    settings TEXT NOT NULL DEFAULT '{}',
    updated_at REAL NOT NULL
)
"""

_ENTITY_FIELDS = {
    "name",
    "entity_type",
    "content",
    "aliases",
    "tags",
    "is_restricted",
    "source_note_id",
    "session_number",
    "session_date",
    "session_status",
    "player_id",
}


def _like_pattern(word: str) -> str:
    escaped = word.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class GraphStorage:
    """SQLite-backed graph store with chunk vectors."""

    def __init__(self, db_path: Optional[str] = None, dimensions: int = 0) -> None:
        from .config import load_config

        cfg = load_config()
        self.db_path = db_path or cfg.db_path
        self.dimensions = dimensions or cfg.embedding_dimensions

        # Ensure parent directory exists
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn: Optional[sqlite3.Connection] = None
        self._tx_depth = 0
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA temp_store = MEMORY")
            _load_vec_extension(self._conn)
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _commit(self) -> None:
        # Inside transaction() the outermost block commits.
        if self._tx_depth == 0:
            self._get_conn().commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Group several writes into one all-or-nothing unit.

        Nested blocks join the outermost one. Any exception rolls back
        every write made since the outermost block was entered.
        """
        conn = self._get_conn()
        self._tx_depth += 1
        try:
            yield conn
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            conn.commit()

    # ------------------------------------------------------------------
    # Schema bootstrap
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        cur = conn.cursor()
        for stmt in _SCHEMA_SQL.split(";"):
            stmt = stmt.strip()
            if stmt:
                cur.execute(stmt)
        conn.commit()

    # ------------------------------------------------------------------
    # Entity CRUD
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entity(row: sqlite3.Row) -> Dict[str, Any]:
        d = dict(row)
        d["aliases"] = json.loads(d.get("aliases") or "[]")
        d["tags"] = json.loads(d.get("tags") or "[]")
        d["is_restricted"] = bool(d.get("is_restricted"))
        return d

    def create_entity(
        self,
        campaign_id: str,
        name: str,
        entity_type: str = "freeform",
        content: str = "",
        aliases: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        is_restricted: bool = False,
        source_note_id: Optional[str] = None,
        session_number: Optional[int] = None,
        session_date: Optional[str] = None,
        session_status: Optional[str] = None,
        player_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert an entity and return it.

        Raises:
            ValueError: the name has no alphanumeric characters.
            DuplicateEntityError: the canonical name is taken in this campaign.
        """
        canonical = canonicalize(name)
        if not canonical:
            raise ValueError(f"Entity name {name!r} has no usable characters")

        conn = self._get_conn()
        eid = entity_id or uuid.uuid4().hex
        now = time.time()
        try:
            conn.execute(
                """INSERT INTO entities
                   (id, campaign_id, name, canonical_name, entity_type, content,
                    aliases, tags, is_restricted, source_note_id, session_number,
                    session_date, session_status, player_id, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    eid, campaign_id, name.strip(), canonical, entity_type, content,
                    json.dumps(aliases or []), json.dumps(tags or []),
                    int(bool(is_restricted)), source_note_id, session_number,
                    session_date, session_status, player_id, now, now,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateEntityError(campaign_id, canonical) from exc
            raise
        self._commit()
        return self.get_entity(eid)  # type: ignore[return-value]

    def get_entity(
        self, entity_id: str, campaign_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Return entity dict or None (also None when it belongs to another campaign)."""
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
        if row is None:
            return None
        if campaign_id is not None and row["campaign_id"] != campaign_id:
            return None
        return self._row_to_entity(row)

    def require_entity(self, entity_id: str, campaign_id: str) -> Dict[str, Any]:
        entity = self.get_entity(entity_id, campaign_id)
        if entity is None:
            raise EntityNotFoundError(f"Entity {entity_id} not found in campaign {campaign_id}")
        return entity

    def list_entities(
        self,
        campaign_id: str,
        entity_type: Optional[str] = None,
        order_by: str = "name",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        order = {"name": "name COLLATE NOCASE", "updated": "updated_at DESC"}.get(order_by, "name")
        sql = "SELECT * FROM entities WHERE campaign_id = ?"
        params: List[Any] = [campaign_id]
        if entity_type:
            sql += " AND entity_type = ?"
            params.append(entity_type)
        sql += f" ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_entity(r) for r in conn.execute(sql, params).fetchall()]

    def list_campaigns(self) -> List[str]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT DISTINCT campaign_id FROM entities ORDER BY campaign_id"
        ).fetchall()
        return [r["campaign_id"] for r in rows]

    def count_entities(self, campaign_id: str) -> int:
        conn = self._get_conn()
        return conn.execute(
            "SELECT COUNT(*) AS c FROM entities WHERE campaign_id = ?", (campaign_id,)
        ).fetchone()["c"]

    def update_entity(self, entity_id: str, **fields: Any) -> Dict[str, Any]:
        """Update the given columns of an entity. Renames recompute the canonical name."""
        unknown = set(fields) - _ENTITY_FIELDS
        if unknown:
            raise ValueError(f"Unknown entity fields: {sorted(unknown)}")

        conn = self._get_conn()
        current = conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
        if current is None:
            raise EntityNotFoundError(f"Entity {entity_id} not found")

        updates: Dict[str, Any] = {}
        for key, val in fields.items():
            if key in ("aliases", "tags"):
                val = json.dumps(list(val or []))
            elif key == "is_restricted":
                val = int(bool(val))
            elif key == "name":
                val = val.strip()
                canonical = canonicalize(val)
                if not canonical:
                    raise ValueError(f"Entity name {val!r} has no usable characters")
                updates["canonical_name"] = canonical
            updates[key] = val
        if not updates:
            return self._row_to_entity(current)

        updates["updated_at"] = time.time()
        assignments = ", ".join(f"{col} = ?" for col in updates)
        try:
            conn.execute(
                f"UPDATE entities SET {assignments} WHERE id = ?",
                (*updates.values(), entity_id),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateEntityError(current["campaign_id"], updates["canonical_name"]) from exc
            raise
        self._commit()
        return self.get_entity(entity_id)  # type: ignore[return-value]

    def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity. Chunks, relationships and sources cascade."""
        conn = self._get_conn()
        cur = conn.execute("DELETE FROM entities WHERE id = ?", (entity_id,))
        self._commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def create_relationship(
        self,
        campaign_id: str,
        source_id: str,
        target_id: str,
        relationship_type: str,
        reverse_label: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> Optional[str]:
        """Insert an edge. Returns its id, or None when the edge already existed."""
        conn = self._get_conn()
        rid = uuid.uuid4().hex
        cur = conn.execute(
            """INSERT OR IGNORE INTO relationships
               (id, campaign_id, source_id, target_id, relationship_type,
                reverse_label, document_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (rid, campaign_id, source_id, target_id, relationship_type,
             reverse_label, document_id, time.time()),
        )
        self._commit()
        return rid if cur.rowcount > 0 else None

    def list_relationships(
        self, campaign_id: str, entity_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        if entity_id is None:
            rows = conn.execute(
                "SELECT * FROM relationships WHERE campaign_id = ? ORDER BY created_at",
                (campaign_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                """SELECT * FROM relationships
                   WHERE campaign_id = ? AND (source_id = ? OR target_id = ?)
                   ORDER BY created_at""",
                (campaign_id, entity_id, entity_id),
            ).fetchall()
        return [dict(r) for r in rows]

    def repoint_relationships(self, old_id: str, new_id: str) -> int:
        """Move every edge touching *old_id* onto *new_id*.

        Edges that would duplicate an existing (source, target, type) stay on
        *old_id* and disappear when it is deleted.
        """
        conn = self._get_conn()
        moved = conn.execute(
            "UPDATE OR IGNORE relationships SET source_id = ? WHERE source_id = ?",
            (new_id, old_id),
        ).rowcount
        moved += conn.execute(
            "UPDATE OR IGNORE relationships SET target_id = ? WHERE target_id = ?",
            (new_id, old_id),
        ).rowcount
        self._commit()
        return moved

    def delete_self_loops(self, entity_id: str) -> int:
        conn = self._get_conn()
        cur = conn.execute(
            "DELETE FROM relationships WHERE source_id = ? AND target_id = ?",
            (entity_id, entity_id),
        )
        self._commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Documents / provenance
    # ------------------------------------------------------------------

    def create_document(self, campaign_id: str, name: str, content: str = "") -> str:
        conn = self._get_conn()
        did = uuid.uuid4().hex
        conn.execute(
            "INSERT INTO documents (id, campaign_id, name, content, created_at) VALUES (?, ?, ?, ?, ?)",
            (did, campaign_id, name, content, time.time()),
        )
        self._commit()
        return did

    def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        conn = self._get_conn()
        row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        return dict(row) if row else None

    def add_entity_source(self, entity_id: str, document_id: str, excerpt: str = "") -> str:
        conn = self._get_conn()
        sid = uuid.uuid4().hex
        conn.execute(
            """INSERT INTO entity_sources (id, entity_id, document_id, excerpt, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (sid, entity_id, document_id, excerpt, time.time()),
        )
        self._commit()
        return sid

    def list_entity_sources(self, entity_id: str) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM entity_sources WHERE entity_id = ? ORDER BY created_at",
            (entity_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Chunks + vector search
    # ------------------------------------------------------------------

    def delete_chunks(self, entity_id: str) -> int:
        conn = self._get_conn()
        cur = conn.execute("DELETE FROM chunks WHERE entity_id = ?", (entity_id,))
        self._commit()
        return cur.rowcount

    def insert_chunk(
        self,
        entity_id: str,
        campaign_id: str,
        chunk_index: int,
        content: str,
        embedding: Sequence[float],
        header_path: Optional[List[str]] = None,
        entity_mentions: Optional[List[str]] = None,
    ) -> str:
        if len(embedding) != self.dimensions:
            raise ValueError(
                f"Embedding has {len(embedding)} dimensions, store expects {self.dimensions}"
            )
        conn = self._get_conn()
        cid = uuid.uuid4().hex
        blob = np.array(embedding, dtype=np.float32).tobytes()
        conn.execute(
            """INSERT INTO chunks
               (id, entity_id, campaign_id, chunk_index, content, header_path,
                entity_mentions, embedding, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (cid, entity_id, campaign_id, chunk_index, content,
             json.dumps(header_path or []), json.dumps(entity_mentions or []),
             blob, time.time()),
        )
        self._commit()
        return cid

    def list_chunks(self, entity_id: str) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        rows = conn.execute(
            """SELECT id, entity_id, campaign_id, chunk_index, content, header_path,
                      entity_mentions, embedding
               FROM chunks WHERE entity_id = ? ORDER BY chunk_index""",
            (entity_id,),
        ).fetchall()
        results = []
        for r in rows:
            d = dict(r)
            d["header_path"] = json.loads(d["header_path"])
            d["entity_mentions"] = json.loads(d["entity_mentions"])
            d["embedding"] = np.frombuffer(d["embedding"], dtype=np.float32).tolist()
            results.append(d)
        return results

    def count_chunks(self, entity_id: str) -> int:
        conn = self._get_conn()
        return conn.execute(
            "SELECT COUNT(*) AS c FROM chunks WHERE entity_id = ?", (entity_id,)
        ).fetchone()["c"]

    def search_chunks(
        self,
        campaign_id: str,
        query_vector: Sequence[float],
        threshold: float = 0.0,
        limit: int = 8,
        exclude_restricted: bool = False,
    ) -> List[Dict[str, Any]]:
        """Cosine search over one campaign's chunks.

        Returns dicts with ``entity_id``, ``entity_name``, ``entity_type``,
        ``chunk_text``, ``chunk_index`` and ``similarity`` (1 - cosine distance).
        """
        conn = self._get_conn()
        blob = np.array(query_vector, dtype=np.float32).tobytes()
        restricted_clause = "AND e.is_restricted = 0" if exclude_restricted else ""
        rows = conn.execute(
            f"""
            SELECT * FROM (
                SELECT
                    c.entity_id      AS entity_id,
                    e.name           AS entity_name,
                    e.entity_type    AS entity_type,
                    c.content        AS chunk_text,
                    c.chunk_index    AS chunk_index,
                    1.0 - vec_distance_cosine(c.embedding, ?) AS similarity
                FROM chunks c
                JOIN entities e ON e.id = c.entity_id
                WHERE c.campaign_id = ? {restricted_clause}
            )
            WHERE similarity >= ?
            ORDER BY similarity DESC
            LIMIT ?
            """,
            (blob, campaign_id, threshold, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def keyword_search(
        self,
        campaign_id: str,
        words: Sequence[str],
        limit: int = 8,
        exclude_restricted: bool = False,
    ) -> List[Dict[str, Any]]:
        """Substring search over entity names and content.

        Name hits score 0.35 and content-only hits 0.25. ``chunk_text`` is the
        first 500 characters of the entity content.
        """
        words = [w for w in words if w]
        if not words:
            return []
        conn = self._get_conn()
        patterns = [_like_pattern(w) for w in words]
        name_clause = " OR ".join("lower(name) LIKE ? ESCAPE '\\'" for _ in patterns)
        content_clause = " OR ".join("lower(content) LIKE ? ESCAPE '\\'" for _ in patterns)
        restricted_clause = "AND is_restricted = 0" if exclude_restricted else ""
        rows = conn.execute(
            f"""
            SELECT
                id AS entity_id,
                name AS entity_name,
                entity_type,
                substr(content, 1, 500) AS chunk_text,
                CASE WHEN ({name_clause}) THEN 0.35 ELSE 0.25 END AS similarity
            FROM entities
            WHERE campaign_id = ?
              AND (({name_clause}) OR ({content_clause}))
              {restricted_clause}
            ORDER BY similarity DESC, name COLLATE NOCASE
            LIMIT ?
            """,
            (*patterns, campaign_id, *patterns, *patterns, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Index status
    # ------------------------------------------------------------------

    def record_sync(self, entity_id: str, attempted: int, stored: int) -> None:
        conn = self._get_conn()
        conn.execute(
            """INSERT OR REPLACE INTO embedding_status (entity_id, attempted, stored, synced_at)
               VALUES (?, ?, ?, ?)""",
            (entity_id, attempted, stored, time.time()),
        )
        self._commit()

    def index_status(self, entity_id: str) -> Dict[str, Any]:
        """Return how completely an entity is indexed.

        ``status`` is ``unindexed`` (never synced), ``empty`` (no content),
        ``full`` or ``partial``.
        """
        conn = self._get_conn()
        row = conn.execute(
            "SELECT * FROM embedding_status WHERE entity_id = ?", (entity_id,)
        ).fetchone()
        if row is None:
            return {"entity_id": entity_id, "status": "unindexed", "attempted": 0, "stored": 0}
        d = dict(row)
        if d["attempted"] == 0:
            d["status"] = "empty"
        elif d["stored"] >= d["attempted"]:
            d["status"] = "full"
        else:
            d["status"] = "partial"
        return d

    # ------------------------------------------------------------------
    # Campaign settings
    # ------------------------------------------------------------------

    def get_settings(self, campaign_id: str) -> Dict[str, Any]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT settings FROM campaign_settings WHERE campaign_id = ?", (campaign_id,)
        ).fetchone()
        return json.loads(row["settings"]) if row else {}

    def save_settings(self, campaign_id: str, settings: Dict[str, Any]) -> None:
        conn = self._get_conn()
        conn.execute(
            """INSERT OR REPLACE INTO campaign_settings (campaign_id, settings, updated_at)
               VALUES (?, ?, ?)""",
            (campaign_id, json.dumps(settings), time.time()),
        )
        self._commit()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self, campaign_id: str) -> Dict[str, Any]:
        """Return per-campaign statistics."""
        conn = self._get_conn()
        by_type = conn.execute(
            """SELECT entity_type, COUNT(*) AS c FROM entities
               WHERE campaign_id = ? GROUP BY entity_type""",
            (campaign_id,),
        ).fetchall()
        rel_count = conn.execute(
            "SELECT COUNT(*) AS c FROM relationships WHERE campaign_id = ?", (campaign_id,)
        ).fetchone()["c"]
        chunk_count = conn.execute(
            "SELECT COUNT(*) AS c FROM chunks WHERE campaign_id = ?", (campaign_id,)
        ).fetchone()["c"]
        doc_count = conn.execute(
            "SELECT COUNT(*) AS c FROM documents WHERE campaign_id = ?", (campaign_id,)
        ).fetchone()["c"]

        return {
            "entities": sum(r["c"] for r in by_type),
            "by_type": {r["entity_type"]: r["c"] for r in by_type},
            "relationships": rel_count,
            "chunks": chunk_count,
            "documents": doc_count,
        }
