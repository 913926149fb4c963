"""Tests for the Anthropic extractor and response parsing."""

from types import SimpleNamespace

import pytest

from lorekeeper.llm import ClaudeExtractor, parse_extraction
from lorekeeper.prompts import BALANCED_PROMPT, build_system_prompt


class TestParseExtraction:
    def test_fenced_json(self):
        text = (
            "Here you go:\n```json\n"
            '{"entities": [{"name": "Elara", "type": "NPC", "aliases": ["The Grey"],'
            ' "description": "A mage.", "confidence": 0.95}],'
            ' "relationships": [{"source_entity": "Elara", "target_entity": "Grog",'
            ' "relationship_type": "knows", "reverse_label": "known by"}]}\n```'
        )
        result = parse_extraction(text)
        elara = result.entities[0]
        assert elara.name == "Elara"
        assert elara.entity_type == "npc"
        assert elara.aliases == ["The Grey"]
        assert elara.confidence == 0.95
        rel = result.relationships[0]
        assert (rel.source, rel.target, rel.relationship_type) == ("Elara", "Grog", "knows")
        assert rel.reverse_label == "known by"

    def test_bare_json_camel_case(self):
        text = (
            'Sure! {"entities": [], "relationships": [{"sourceEntity": "A", '
            '"targetEntity": "B", "relationshipType": "ally_of", "reverseLabel": "ally of"}]}'
        )
        rel = parse_extraction(text).relationships[0]
        assert rel.relationship_type == "ally_of"
        assert rel.reverse_label == "ally of"

    def test_skips_incomplete_items(self):
        text = (
            '{"entities": [{"name": "", "type": "npc"}, {"name": "X"}, "junk",'
            ' {"name": "Y", "type": "item", "confidence": "high"}],'
            ' "relationships": [{"source_entity": "Y"}]}'
        )
        result = parse_extraction(text)
        assert [e.name for e in result.entities] == ["Y"]
        assert result.entities[0].confidence == 0.8
        assert result.relationships == []

    def test_confidence_clamped(self):
        result = parse_extraction('{"entities": [{"name": "Z", "type": "npc", "confidence": 7}]}')
        assert result.entities[0].confidence == 1.0

    def test_no_json(self):
        with pytest.raises(ValueError):
            parse_extraction("I could not find any entities.")


class TestSystemPrompt:
    def test_mode_language_and_known_names(self):
        prompt = build_system_prompt("balanced", "de", ["Grog", "Elara"])
        assert prompt.startswith(BALANCED_PROMPT)
        assert "German" in prompt
        assert "Grog, Elara" in prompt

    def test_english_has_no_language_note(self):
        assert "IMPORTANT: The content is in" not in build_system_prompt("obsessive", "en")

    def test_custom_prompt_overrides_mode(self):
        prompt = build_system_prompt(
            "conservative", custom_prompts={"extraction_conservative_prompt": "ONLY GODS"}
        )
        assert prompt.startswith("ONLY GODS")


class _FakeMessages:
    def __init__(self, text):
        self.text = text
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


@pytest.mark.asyncio
class TestClaudeExtractor:
    async def test_extract_calls_messages_api(self):
        messages = _FakeMessages('{"entities": [{"name": "Grog", "type": "npc"}]}')
        extractor = ClaudeExtractor(
            api_key="test", model="claude-test", max_tokens=512,
            client=SimpleNamespace(messages=messages),
        )

        result = await extractor.extract("Grog pours ale.", known_names=["Elara"], language="fr")

        assert [e.name for e in result.entities] == ["Grog"]
        assert messages.kwargs["model"] == "claude-test"
        assert messages.kwargs["max_tokens"] == 512
        assert messages.kwargs["messages"] == [{"role": "user", "content": "Grog pours ale."}]
        assert "French" in messages.kwargs["system"]
        assert "Elara" in messages.kwargs["system"]

    async def test_unparseable_response_is_empty(self):
        extractor = ClaudeExtractor(
            api_key="test", client=SimpleNamespace(messages=_FakeMessages("no json here"))
        )
        result = await extractor.extract("text")
        assert result.entities == []
        assert result.relationships == []
