"""Tests for campaign retrieval."""

import logging

import pytest

from lorekeeper.search import (
    RetrievalEngine,
    SearchResult,
    build_context,
    keyword_terms,
    sanitize_query,
)

CAMPAIGN = "camp-1"


@pytest.fixture
async def indexed(tmp_storage, synchronizer, seeded):
    for entity in seeded.values():
        await synchronizer.sync_entity(entity)
    return seeded


class TestQueryHelpers:
    def test_sanitize_query(self):
        assert sanitize_query("  where\x00 is\n\n the   dragon ") == "where is the dragon"

    def test_keyword_terms(self):
        assert keyword_terms("Where is the Dragon? a dragon!") == ["where", "is", "the", "dragon"]


@pytest.mark.asyncio
class TestVectorSearch:
    async def test_finds_relevant_entity(self, tmp_storage, fake_embedder, indexed):
        engine = RetrievalEngine(tmp_storage, fake_embedder)
        response = await engine.search(CAMPAIGN, "dragon", similarity_threshold=0.2)

        assert response.mode == "vector"
        assert not response.degraded
        assert response.results[0].entity_name == "Vermithrax"
        assert response.results[0].source == "vector"
        assert response.results[0].similarity > 0.9
        assert response.to_dict()["mode"] == "vector"
        assert not hasattr(engine, "last_search_mode")

    async def test_threshold_excludes_unrelated(self, tmp_storage, fake_embedder, indexed):
        engine = RetrievalEngine(tmp_storage, fake_embedder, keyword_topup=False)
        response = await engine.search(CAMPAIGN, "dragon", similarity_threshold=0.5)
        assert [r.entity_name for r in response.results] == ["Vermithrax"]

    async def test_keyword_topup(self, tmp_storage, fake_embedder, indexed):
        engine = RetrievalEngine(tmp_storage, fake_embedder)
        # "rumour" has no vector axis; only the keyword pass can find Grog
        response = await engine.search(CAMPAIGN, "dragon rumour", similarity_threshold=0.5)
        names = [r.entity_name for r in response.results]
        assert names[0] == "Vermithrax"
        assert "Grog" in names
        grog = next(r for r in response.results if r.entity_name == "Grog")
        assert grog.source == "keyword"
        assert names.count("Vermithrax") == 1

    async def test_restricted_hidden_from_players(self, tmp_storage, synchronizer, fake_embedder):
        lair = tmp_storage.create_entity(
            CAMPAIGN, "Secret Lair", content="Where the dragon hides its hoard.", is_restricted=True
        )
        await synchronizer.sync_entity(lair)
        engine = RetrievalEngine(tmp_storage, fake_embedder)

        hidden = await engine.search(CAMPAIGN, "dragon", exclude_restricted=True)
        shown = await engine.search(CAMPAIGN, "dragon", exclude_restricted=False)
        assert "Secret Lair" not in [r.entity_name for r in hidden.results]
        assert "Secret Lair" in [r.entity_name for r in shown.results]

    async def test_campaign_scoped(self, tmp_storage, synchronizer, fake_embedder, indexed):
        other = tmp_storage.create_entity("other", "Other Dragon", content="A dragon elsewhere.")
        await synchronizer.sync_entity(other)
        engine = RetrievalEngine(tmp_storage, fake_embedder)
        response = await engine.search(CAMPAIGN, "dragon")
        assert "Other Dragon" not in [r.entity_name for r in response.results]

    async def test_empty_query(self, tmp_storage, fake_embedder, indexed):
        engine = RetrievalEngine(tmp_storage, fake_embedder)
        calls_before = fake_embedder.call_count
        response = await engine.search(CAMPAIGN, "   ")
        assert response.results == []
        assert fake_embedder.call_count == calls_before


@pytest.mark.asyncio
class TestKeywordFallback:
    async def test_no_embedder_is_degraded(self, tmp_storage, seeded, caplog):
        engine = RetrievalEngine(tmp_storage, embedder=None)
        with caplog.at_level(logging.WARNING, logger="lorekeeper.search"):
            response = await engine.search(CAMPAIGN, "tavern rumours")

        assert response.mode == "keyword"
        assert response.degraded
        assert [r.entity_name for r in response.results] == ["Grog"]
        assert response.results[0].similarity == pytest.approx(0.25)
        assert response.to_dict()["degraded"] is True
        assert any(
            r.levelno == logging.WARNING and "keyword-only" in r.getMessage() for r in caplog.records
        )

    async def test_provider_failure_falls_back(self, tmp_storage, make_embedder, seeded):
        engine = RetrievalEngine(tmp_storage, make_embedder(fail_all=True))
        response = await engine.search(CAMPAIGN, "dragon")

        assert response.mode == "keyword"
        assert response.degraded
        assert [r.entity_name for r in response.results] == ["Vermithrax"]

    async def test_name_hits_rank_first(self, tmp_storage, seeded):
        tmp_storage.create_entity(CAMPAIGN, "Ledger", content="Grog owes forty gold.")
        engine = RetrievalEngine(tmp_storage)
        response = await engine.search(CAMPAIGN, "grog")

        assert [r.entity_name for r in response.results] == ["Grog", "Ledger"]
        assert response.results[0].similarity == pytest.approx(0.35)
        assert response.results[1].similarity == pytest.approx(0.25)

    async def test_like_wildcards_are_literal(self, tmp_storage, seeded):
        engine = RetrievalEngine(tmp_storage)
        response = await engine.search(CAMPAIGN, "%% __")
        assert response.results == []

    async def test_response_dict(self, tmp_storage, seeded):
        response = await RetrievalEngine(tmp_storage).search(CAMPAIGN, "castle")
        body = response.to_dict()
        assert body["mode"] == "keyword"
        assert body["degraded"] is True
        assert body["results"][0]["entity_name"] == "Castle Greyhold"


class TestBuildContext:
    def test_numbered_blocks(self):
        results = [
            SearchResult("1", "Grog", "npc", "Runs the tavern.", 0.9),
            SearchResult("2", "Greyhold", "location", "A ruin.", 0.5),
        ]
        context = build_context(results)
        assert context == (
            "[Source 1: Grog (npc)]\nRuns the tavern."
            "\n\n---\n\n"
            "[Source 2: Greyhold (location)]\nA ruin."
        )

    def test_empty(self):
        assert build_context([]) == ""
