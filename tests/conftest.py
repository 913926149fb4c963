"""Shared fixtures for Lorekeeper tests."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest

from lorekeeper.embeddings import EmbeddingError
from lorekeeper.llm import ChunkExtraction
from lorekeeper.storage import GraphStorage
from lorekeeper.sync import EmbeddingSynchronizer

CAMPAIGN = "camp-1"


# ---------------------------------------------------------------------------
# Ensure no real API calls leak out
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch):
    """Drop provider keys so nothing talks to Jina or Anthropic."""
    monkeypatch.delenv("JINA_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("LOREKEEPER_CONFIG", raising=False)


# ---------------------------------------------------------------------------
# Storage fixture (temporary DB)
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_storage(tmp_path):
    """Create a fresh GraphStorage backed by a temp SQLite file (4-dim vectors)."""
    db_path = str(tmp_path / "test.sqlite")
    s = GraphStorage(db_path=db_path, dimensions=4)
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Mock embedder
# ---------------------------------------------------------------------------

AXES = ("dragon", "castle", "sword", "tavern")


class FakeEmbedder:
    """Deterministic embedder: one axis per keyword in ``AXES``.

    Texts about the same keyword land close together, unrelated texts stay
    near-orthogonal. ``fail_on`` makes any text containing that substring
    raise EmbeddingError.
    """

    def __init__(self, dimensions: int = 4, fail_on: Optional[str] = None, fail_all: bool = False):
        self.dimensions = dimensions
        self.fail_on = fail_on
        self.fail_all = fail_all
        self.calls: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def embed(self, text: str, task: str = "retrieval.passage") -> List[float]:
        self.calls.append(text)
        if self.fail_all or (self.fail_on and self.fail_on in text):
            raise EmbeddingError("HTTP 500: boom")
        return self._vector(text)

    async def embed_query(self, text: str) -> List[float]:
        return await self.embed(text, task="retrieval.query")

    def _vector(self, text: str) -> List[float]:
        lower = text.lower()
        vec = [0.01 + lower.count(word) for word in AXES][: self.dimensions]
        mag = max(sum(v * v for v in vec) ** 0.5, 1e-9)
        return [v / mag for v in vec]


@pytest.fixture
def fake_embedder():
    return FakeEmbedder(dimensions=4)


@pytest.fixture
def make_embedder():
    """Build FakeEmbedders with custom failure behaviour."""
    return FakeEmbedder


@pytest.fixture
def synchronizer(tmp_storage, fake_embedder):
    return EmbeddingSynchronizer(tmp_storage, fake_embedder)


# ---------------------------------------------------------------------------
# Mock extractor
# ---------------------------------------------------------------------------

class FakeExtractor:
    """Stand-in for ClaudeExtractor.

    ``respond`` maps a chunk's text to a ChunkExtraction. Chunks containing
    ``fail_on`` raise; ``delay`` sleeps before answering.
    """

    def __init__(
        self,
        respond: Optional[Callable[[str], ChunkExtraction]] = None,
        fail_on: Optional[str] = None,
        delay: float = 0.0,
    ):
        self.respond = respond or (lambda text: ChunkExtraction())
        self.fail_on = fail_on
        self.delay = delay
        self.calls: List[str] = []
        self.known_names: List[List[str]] = []

    async def extract(self, chunk_text, known_names=(), language="en",
                      aggressiveness="obsessive", custom_prompts=None):
        self.calls.append(chunk_text)
        self.known_names.append(list(known_names))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on and self.fail_on in chunk_text:
            raise RuntimeError("provider exploded")
        return self.respond(chunk_text)


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def make_extractor():
    return FakeExtractor


# ---------------------------------------------------------------------------
# Fake Anthropic client
# ---------------------------------------------------------------------------

class FakeMessages:
    """Stand-in for ``AsyncAnthropic().messages``. Records every request."""

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.requests: List[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


@pytest.fixture
def make_anthropic():
    """Build a fake client: ``make_anthropic("reply")`` exposes ``.messages.requests``."""
    def build(text: str = "", error: Optional[Exception] = None):
        return SimpleNamespace(messages=FakeMessages(text, error))
    return build


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture
def campaign_id():
    return CAMPAIGN


@pytest.fixture
def seeded(tmp_storage):
    """A small campaign graph: a dragon, a castle and a tavern keeper."""
    dragon = tmp_storage.create_entity(
        CAMPAIGN, "Vermithrax", entity_type="npc",
        content="An ancient red dragon who sleeps beneath the mountain.",
        aliases=["The Red Wyrm"],
    )
    castle = tmp_storage.create_entity(
        CAMPAIGN, "Castle Greyhold", entity_type="location",
        content="A ruined castle on the northern road.",
    )
    keeper = tmp_storage.create_entity(
        CAMPAIGN, "Grog", entity_type="npc",
        content="Runs the Prancing Pony tavern. Knows every rumour.",
        aliases=["Chief"],
    )
    return {"dragon": dragon, "castle": castle, "keeper": keeper}
