"""Tests for the TTL cache and the campaign spotlight."""

from lorekeeper.cache import CacheEntry, TTLCache, is_fresh
from lorekeeper.spotlight import SpotlightService, build_spotlight

CAMPAIGN = "camp-1"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestIsFresh:
    def test_within_ttl_same_fingerprint(self):
        assert is_fresh(CacheEntry("v", 100.0, 3), now=150.0, ttl=60.0, fingerprint=3)

    def test_expired(self):
        assert not is_fresh(CacheEntry("v", 100.0, 3), now=160.0, ttl=60.0, fingerprint=3)

    def test_fingerprint_changed(self):
        assert not is_fresh(CacheEntry("v", 100.0, 3), now=101.0, ttl=60.0, fingerprint=4)


class TestTTLCache:
    def test_get_or_compute_caches(self):
        cache = TTLCache(60.0, clock=FakeClock())
        calls = []

        def compute():
            calls.append(1)
            return {"value": len(calls)}

        assert cache.get_or_compute("k", 1, compute) == {"value": 1}
        assert cache.get_or_compute("k", 1, compute) == {"value": 1}
        assert len(calls) == 1

    def test_expiry_evicts(self):
        clock = FakeClock()
        cache = TTLCache(60.0, clock=clock)
        cache.put("k", "old", fingerprint=1)
        clock.now += 61
        assert cache.get("k", 1) is None
        assert "k" not in cache

    def test_fingerprint_mismatch_recomputes(self):
        cache = TTLCache(60.0, clock=FakeClock())
        cache.put("k", "old", fingerprint=1)
        assert cache.get_or_compute("k", 2, lambda: "new") == "new"
        assert cache.get("k", 2) == "new"

    def test_invalidate(self):
        cache = TTLCache(60.0)
        cache.put("k", "v", fingerprint=None)
        cache.invalidate("k")
        cache.invalidate("missing")
        assert len(cache) == 0


class TestSpotlight:
    def test_build(self, tmp_storage, seeded):
        tmp_storage.create_entity(CAMPAIGN, "Session 2", entity_type="session", session_number=2)
        tmp_storage.create_entity(CAMPAIGN, "Session 1", entity_type="session", session_number=1)
        tmp_storage.create_entity(CAMPAIGN, "Slay the Wyrm", entity_type="quest")
        tmp_storage.create_entity(CAMPAIGN, "Find the Cat", entity_type="quest", tags=["Completed"])

        spotlight = build_spotlight(tmp_storage, CAMPAIGN)

        assert spotlight["stats"]["entities"] == 7
        assert [s["name"] for s in spotlight["latest_sessions"]] == ["Session 2", "Session 1"]
        assert spotlight["latest_sessions"][0]["session_number"] == 2
        assert [q["name"] for q in spotlight["active_quests"]] == ["Slay the Wyrm"]
        assert len(spotlight["recently_updated"]) == 5

    def test_service_caches_until_entities_change(self, tmp_storage, seeded):
        clock = FakeClock()
        service = SpotlightService(tmp_storage, cache=TTLCache(60.0, clock=clock))

        first = service.get(CAMPAIGN)
        assert service.get(CAMPAIGN) is first

        tmp_storage.create_entity(CAMPAIGN, "Newcomer")
        second = service.get(CAMPAIGN)
        assert second is not first
        assert second["stats"]["entities"] == 4

    def test_refresh_forces_rebuild(self, tmp_storage, seeded):
        service = SpotlightService(tmp_storage)
        first = service.get(CAMPAIGN)
        assert service.get(CAMPAIGN, refresh=True) is not first

    def test_ttl_expiry(self, tmp_storage, seeded):
        clock = FakeClock()
        service = SpotlightService(tmp_storage, cache=TTLCache(10.0, clock=clock))
        first = service.get(CAMPAIGN)
        clock.now += 11
        assert service.get(CAMPAIGN) is not first
