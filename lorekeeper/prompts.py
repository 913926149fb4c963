"""System prompts for entity extraction and campaign chat."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

MAX_KNOWN_NAMES = 200

_RESPONSE_SHAPE = """Return ONLY valid JSON:
{
  "entities": [{
    "name": "Exact Name",
    "type": "most_specific_type",
    "aliases": ["other names"],
    "description": "%s",
    "confidence": %s
  }],
  "relationships": [{
    "source_entity": "Name",
    "target_entity": "Name",
    "relationship_type": "type",
    "reverse_label": "reverse",
    "excerpt": "short supporting quote"
  }]
}"""

CONSERVATIVE_PROMPT = (
    "You are a careful wiki curator for a tabletop RPG campaign. Extract only "
    "entities that are explicitly named and carry meaningful information.\n\n"
    "RELATIONSHIPS: lives_in, member_of, owns, enemy_of, ally_of, located_in, related_to\n\n"
    + _RESPONSE_SHAPE % ("Key facts only (1-2 sentences)", "0.7-1.0")
    + "\n\nPrefer precision. Skip anything you are unsure about."
)

BALANCED_PROMPT = (
    "You are a thorough wiki curator for a tabletop RPG campaign. Extract both "
    "major and minor entities.\n\n"
    "RELATIONSHIPS: lives_in, member_of, owns, created, enemy_of, ally_of, located_in, "
    "participated_in, mentioned_in, related_to, knows, serves, rules\n\n"
    + _RESPONSE_SHAPE % ("Key information (2-3 sentences)", "0.5-1.0")
    + "\n\nTypical session notes yield 10-20 entities. Use the most specific type."
)

OBSESSIVE_PROMPT = (
    "You are an exhaustive wiki curator for a tabletop RPG campaign. Extract every "
    "entity in the text, including unnamed but titled characters (\"the old wizard\" "
    "becomes \"The Old Wizard\"), relatives (\"my father\" becomes \"Father of X\"), "
    "creatures, places down to single rooms, items, spells, factions, events, customs "
    "and quests.\n\n"
    "RELATIONSHIPS: lives_in, member_of, owns, created, enemy_of, ally_of, located_in, "
    "participated_in, mentioned_in, related_to, knows, serves, rules, guards, seeks, "
    "fears, loves, hates, works_for, parent_of, child_of, sibling_of, married_to, "
    "worships, leads, follows, created_by, contains, part_of, killed_by, visited, "
    "hired_by, killed, attacked\n\n"
    + _RESPONSE_SHAPE % ("All known information (2-4 sentences)", "0.5-1.0")
    + "\n\nTypical session notes yield 20-50 entities. Fewer than 10 means you missed some."
)

MODE_PROMPTS: Dict[str, str] = {
    "conservative": CONSERVATIVE_PROMPT,
    "balanced": BALANCED_PROMPT,
    "obsessive": OBSESSIVE_PROMPT,
}

# Keys accepted in a campaign's ``custom_prompts`` mapping
CUSTOM_PROMPT_KEYS: Dict[str, str] = {
    "conservative": "extraction_conservative_prompt",
    "balanced": "extraction_balanced_prompt",
    "obsessive": "extraction_obsessive_prompt",
}

ENTITY_TYPES_DESCRIPTION = """
ENTITY TYPES - use the most specific type that fits:
- npc: named characters, villains, allies, historical figures
- creature: monsters, beasts, dragons, undead, constructs
- location: cities, dungeons, taverns, buildings, rooms, planes
- region: kingdoms, continents, geographic areas
- item: weapons, armor, potions, scrolls, mundane objects
- artifact: legendary or unique items
- spell: named spells, rituals, magical effects
- ability: skills, feats, class features
- faction: guilds, cults, armies, families, political groups
- quest: missions, objectives, bounties, contracts
- event: battles, ceremonies, historical moments, prophecies
- lore: legends, customs, calendars, magic systems
- deity: gods, divine beings, patrons
- race: species and peoples
- class: character classes and professions
- condition: diseases, curses, blessings
- material: special materials such as mithril
- session: play session summaries
- player_character: player characters

New types are allowed when none fit (vehicle, mount, language, title, currency...)."""

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "pt": "Portuguese",
    "pt-BR": "Brazilian Portuguese",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "nl": "Dutch",
    "pl": "Polish",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def language_instruction(code: str) -> str:
    if not code or code == "en":
        return ""
    name = language_name(code)
    return (
        f"IMPORTANT: The content is in {name}. Keep entity names exactly as they "
        f"appear in the original language. Descriptions may be written in {name}."
    )


def build_system_prompt(
    aggressiveness: str,
    language: str = "en",
    known_names: Sequence[str] = (),
    custom_prompts: Optional[Dict[str, str]] = None,
) -> str:
    """Assemble the mode prompt, language note, type catalogue and known names."""
    custom = (custom_prompts or {}).get(CUSTOM_PROMPT_KEYS.get(aggressiveness, ""))
    parts = [custom or MODE_PROMPTS.get(aggressiveness, OBSESSIVE_PROMPT)]
    lang = language_instruction(language)
    if lang:
        parts.append(lang)
    parts.append(ENTITY_TYPES_DESCRIPTION)
    if known_names:
        names = list(known_names)[:MAX_KNOWN_NAMES]
        parts.append(
            "ALREADY KNOWN ENTITIES (do not extract these again unless the text adds "
            "new facts about them; reuse these exact names in relationships):\n"
            + ", ".join(names)
        )
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Campaign chat
# ---------------------------------------------------------------------------

CHAT_SYSTEM_PROMPT = (
    "You are the lore keeper of a tabletop RPG campaign. Answer questions about "
    "the campaign using ONLY the context from the campaign knowledge base.\n\n"
    "Guidelines:\n"
    "- If the context does not contain the answer, say you do not know\n"
    "- Be concise (at most 100 words)\n"
    "- Mention where the information came from (entity name and type)\n"
    "- Use wikilinks [[Entity Name]] when mentioning campaign entities\n"
    "- For game rules outside the knowledge base you may use general knowledge, "
    "but say that it is not from the campaign"
)

CHAT_PROMPT_KEY = "chat_system_prompt"


def build_chat_system_prompt(
    context: str,
    campaign: str = "",
    custom_prompts: Optional[Dict[str, str]] = None,
) -> str:
    """Base chat prompt (or the campaign's override) followed by the retrieved context."""
    base = (custom_prompts or {}).get(CHAT_PROMPT_KEY) or CHAT_SYSTEM_PROMPT
    return (
        f"{base}\n\n"
        f"Campaign: {campaign or 'Unknown Campaign'}\n\n"
        f"Context from campaign knowledge base:\n{context or '(no matching entries)'}"
    )
