"""Anthropic-backed entity extractor.

One ``extract`` call sends one chunk of text to the model and parses the
JSON it returns. Provider errors propagate to the caller. A response that
contains no parseable JSON is logged and treated as an empty extraction.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from anthropic import AsyncAnthropic

from .config import load_config
from .prompts import build_system_prompt

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass
class EntityMention:
    name: str
    entity_type: str
    aliases: List[str] = field(default_factory=list)
    description: str = ""
    confidence: float = 0.8


@dataclass
class RelationshipMention:
    source: str
    target: str
    relationship_type: str = "related_to"
    reverse_label: Optional[str] = None
    excerpt: str = ""


@dataclass
class ChunkExtraction:
    entities: List[EntityMention] = field(default_factory=list)
    relationships: List[RelationshipMention] = field(default_factory=list)


def _first(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        val = item.get(key)
        if val:
            return val
    return None


def _json_payload(text: str) -> str:
    fenced = _FENCE_RE.search(text)
    if fenced:
        return fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in model response")
    return text[start:end + 1]


def parse_extraction(text: str) -> ChunkExtraction:
    """Parse a model response into mentions.

    Raises:
        ValueError: no JSON object could be decoded.
    """
    data = json.loads(_json_payload(text or ""))
    if not isinstance(data, dict):
        raise ValueError("model response is not a JSON object")

    result = ChunkExtraction()
    for item in data.get("entities") or []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        entity_type = str(_first(item, "type", "entity_type") or "").strip()
        if not name or not entity_type:
            continue
        try:
            confidence = float(item.get("confidence", 0.8))
        except (TypeError, ValueError):
            confidence = 0.8
        result.entities.append(EntityMention(
            name=name,
            entity_type=entity_type.lower(),
            aliases=[str(a).strip() for a in item.get("aliases") or [] if str(a).strip()],
            description=str(_first(item, "description", "content") or "").strip(),
            confidence=max(0.0, min(1.0, confidence)),
        ))

    for item in data.get("relationships") or []:
        if not isinstance(item, dict):
            continue
        source = str(_first(item, "source_entity", "sourceEntity", "source") or "").strip()
        target = str(_first(item, "target_entity", "targetEntity", "target") or "").strip()
        if not source or not target:
            continue
        result.relationships.append(RelationshipMention(
            source=source,
            target=target,
            relationship_type=str(
                _first(item, "relationship_type", "relationshipType", "type") or "related_to"
            ).strip(),
            reverse_label=_first(item, "reverse_label", "reverseLabel"),
            excerpt=str(item.get("excerpt") or ""),
        ))
    return result


class ClaudeExtractor:
    """Calls the Anthropic Messages API once per chunk."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        cfg = load_config()
        self.model = model or cfg.extraction_model
        self.max_tokens = max_tokens or cfg.extraction_max_tokens
        self.client = client or AsyncAnthropic(api_key=api_key or cfg.anthropic_api_key)

    async def extract(
        self,
        chunk_text: str,
        known_names: Sequence[str] = (),
        language: str = "en",
        aggressiveness: str = "obsessive",
        custom_prompts: Optional[Dict[str, str]] = None,
    ) -> ChunkExtraction:
        system = build_system_prompt(aggressiveness, language, known_names, custom_prompts)
        message = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": chunk_text}],
        )
        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        try:
            return parse_extraction(text)
        except ValueError as exc:
            logger.warning("Unparseable extraction response (%d chars): %s", len(text), exc)
            return ChunkExtraction()
