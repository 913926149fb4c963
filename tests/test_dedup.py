"""Tests for canonical names, the entity resolver and the fuzzy finder."""

from lorekeeper.dedup import (
    EntityIndex,
    canonicalize,
    find_existing_entity,
    find_potential_duplicates,
    match_staged_entities,
    merge_aliases,
    name_similarity,
)
from lorekeeper.staging import StagedEntity

CAMPAIGN = "camp-1"


class TestCanonicalize:
    def test_basic(self):
        assert canonicalize("Bob the Wizard!!") == "bob-the-wizard"

    def test_collapses_runs_and_trims(self):
        assert canonicalize("  --Castle   Greyhold__ ") == "castle-greyhold"

    def test_unicode_letters_kept(self):
        assert canonicalize("Zoë Ærinsdóttir") == "zoë-ærinsdóttir"

    def test_empty(self):
        assert canonicalize("!!!") == ""
        assert canonicalize("") == ""


class TestNameSimilarity:
    def test_identical_case_insensitive(self):
        assert name_similarity("Grog", "grog") == 1.0

    def test_empty(self):
        assert name_similarity("", "Grog") == 0.0

    def test_containment(self):
        assert name_similarity("Grog", "Grog the Barkeep") == 0.8

    def test_symmetric(self):
        assert name_similarity("Vermithrax", "Vermitrax") == name_similarity("Vermitrax", "Vermithrax")

    def test_edit_distance(self):
        # one deletion over ten characters
        assert abs(name_similarity("Vermithrax", "Vermitrax") - 0.9) < 1e-9


class TestMergeAliases:
    def test_case_insensitive_union_keeps_order(self):
        assert merge_aliases(["Chief", "Big G"], ["chief", "Boss"]) == ["Chief", "Big G", "Boss"]

    def test_excludes_and_blanks(self):
        assert merge_aliases([], ["Grog", " ", "", "Chief"], exclude=["grog"]) == ["Chief"]


class TestResolver:
    def test_canonical_match(self, tmp_storage, seeded):
        match = find_existing_entity(tmp_storage, CAMPAIGN, "castle greyhold!")
        assert match.entity["id"] == seeded["castle"]["id"]
        assert match.match_type == "exact"
        assert match.confidence == 1.0

    def test_name_in_aliases(self, tmp_storage, seeded):
        match = find_existing_entity(tmp_storage, CAMPAIGN, "the red wyrm")
        assert match.entity["id"] == seeded["dragon"]["id"]
        assert match.match_type == "alias"
        assert match.confidence == 0.8

    def test_candidate_alias_matches_name(self, tmp_storage, seeded):
        match = find_existing_entity(tmp_storage, CAMPAIGN, "The Barkeep", aliases=["Grog"])
        assert match.entity["id"] == seeded["keeper"]["id"]
        assert match.match_type == "alias"

    def test_exact_beats_alias(self):
        entities = [
            {"id": "a", "name": "Chief", "canonical_name": "chief", "entity_type": "npc", "aliases": []},
            {"id": "b", "name": "Grog", "canonical_name": "grog", "entity_type": "npc", "aliases": ["Chief"]},
        ]
        match = EntityIndex(entities).resolve("Chief")
        assert match.entity["id"] == "a"
        assert match.match_type == "exact"

    def test_no_match(self, tmp_storage, seeded):
        assert find_existing_entity(tmp_storage, CAMPAIGN, "Nobody", aliases=["Stranger"]) is None

    def test_other_campaign_invisible(self, tmp_storage, seeded):
        assert find_existing_entity(tmp_storage, "other", "Grog") is None

    def test_match_staged_entities(self, tmp_storage, seeded):
        staged = [
            StagedEntity(temp_id="t1", name="Grog", canonical_name="grog", entity_type="npc"),
            StagedEntity(temp_id="t2", name="Elara", canonical_name="elara", entity_type="npc"),
        ]
        matches = match_staged_entities(staged, tmp_storage.list_entities(CAMPAIGN))
        assert len(matches) == 1
        assert matches[0].staged_temp_id == "t1"
        assert matches[0].to_dict()["existing_entity"]["id"] == seeded["keeper"]["id"]

    def test_match_staged_entities_empty_graph(self):
        staged = [StagedEntity(temp_id="t1", name="Grog", canonical_name="grog", entity_type="npc")]
        assert match_staged_entities(staged, []) == []


class TestPotentialDuplicates:
    def test_fuzzy_hits_sorted(self, tmp_storage, seeded):
        tmp_storage.create_entity(CAMPAIGN, "Vermithrax Prime", entity_type="npc")
        matches = find_potential_duplicates(tmp_storage, CAMPAIGN, "Vermitrax")
        names = [m.entity["name"] for m in matches]
        assert names[0] == "Vermithrax"
        assert all(m.match_type == "fuzzy" for m in matches)
        assert [m.confidence for m in matches] == sorted((m.confidence for m in matches), reverse=True)

    def test_alias_scored(self, tmp_storage, seeded):
        matches = find_potential_duplicates(tmp_storage, CAMPAIGN, "Chief", threshold=0.9)
        assert [m.entity["name"] for m in matches] == ["Grog"]

    def test_threshold_filters(self, tmp_storage, seeded):
        assert find_potential_duplicates(tmp_storage, CAMPAIGN, "Zzyzx", threshold=0.7) == []
