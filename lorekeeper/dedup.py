"""Entity identity resolution.

Two separate algorithms live here:

* ``EntityIndex.resolve`` is the authoritative resolver used while staging
  and committing. It checks exact canonical name, exact name, then alias
  tiers, and returns at most one match.
* ``find_potential_duplicates`` is advisory. It scores every entity name
  and alias with a normalised edit distance and returns everything above a
  threshold, best first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence

from rapidfuzz.distance import Levenshtein

if TYPE_CHECKING:
    from .storage import GraphStorage

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[\W_]+", re.UNICODE)

EXACT_CONFIDENCE = 1.0
ALIAS_CONFIDENCE = 0.8


def canonicalize(name: str) -> str:
    """Derive the campaign-unique slug for a display name.

    ``"Bob the Wizard!!"`` becomes ``"bob-the-wizard"``.
    """
    return _NON_ALNUM_RE.sub("-", (name or "").lower()).strip("-")


def name_similarity(a: str, b: str) -> float:
    """Symmetric similarity in [0, 1] between two names."""
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return 0.8
    longest = max(len(s1), len(s2))
    return 1.0 - Levenshtein.distance(s1, s2) / longest


def merge_aliases(
    existing: Iterable[str],
    additions: Iterable[str],
    exclude: Iterable[str] = (),
) -> List[str]:
    """Union two alias lists, keeping first-seen order.

    Comparison is case-insensitive. Blank values and anything in *exclude*
    are dropped.
    """
    excluded = {e.strip().lower() for e in exclude if e and e.strip()}
    seen: set[str] = set()
    merged: List[str] = []
    for alias in [*existing, *additions]:
        if not alias or not alias.strip():
            continue
        alias = alias.strip()
        key = alias.lower()
        if key in excluded or key in seen:
            continue
        seen.add(key)
        merged.append(alias)
    return merged


# ---------------------------------------------------------------------------
# Authoritative resolver
# ---------------------------------------------------------------------------

@dataclass
class EntityMatch:
    """A candidate paired with the existing entity it resolves to."""
    entity: Dict[str, Any]
    match_type: str  # exact | alias | fuzzy
    confidence: float
    staged_temp_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staged_temp_id": self.staged_temp_id,
            "existing_entity": {
                "id": self.entity["id"],
                "name": self.entity["name"],
                "canonical_name": self.entity["canonical_name"],
                "entity_type": self.entity["entity_type"],
                "aliases": list(self.entity.get("aliases") or []),
            },
            "match_type": self.match_type,
            "confidence": self.confidence,
        }


class EntityIndex:
    """In-memory lookup tables over one snapshot of a campaign's entities."""

    def __init__(self, entities: Iterable[Dict[str, Any]]) -> None:
        self._by_canonical: Dict[str, Dict[str, Any]] = {}
        self._by_name: Dict[str, Dict[str, Any]] = {}
        self._by_alias: Dict[str, Dict[str, Any]] = {}
        for entity in entities:
            self._by_canonical.setdefault(entity["canonical_name"], entity)
            self._by_name.setdefault(entity["name"].strip().lower(), entity)
            for alias in entity.get("aliases") or []:
                if alias and alias.strip():
                    self._by_alias.setdefault(alias.strip().lower(), entity)

    def __len__(self) -> int:
        return len(self._by_canonical)

    def resolve(self, name: str, aliases: Sequence[str] = ()) -> Optional[EntityMatch]:
        """Return the best existing match for *name* (and its aliases), or None.

        Tiers, first hit wins: canonical name, case-insensitive name, name
        found among aliases, then any candidate alias against names, aliases
        and canonical names.
        """
        canonical = canonicalize(name)
        if canonical and canonical in self._by_canonical:
            return EntityMatch(self._by_canonical[canonical], "exact", EXACT_CONFIDENCE)

        lowered = (name or "").strip().lower()
        if lowered in self._by_name:
            return EntityMatch(self._by_name[lowered], "exact", EXACT_CONFIDENCE)

        if lowered and lowered in self._by_alias:
            return EntityMatch(self._by_alias[lowered], "alias", ALIAS_CONFIDENCE)

        for alias in aliases:
            key = (alias or "").strip().lower()
            if not key:
                continue
            hit = (
                self._by_name.get(key)
                or self._by_alias.get(key)
                or self._by_canonical.get(canonicalize(alias))
            )
            if hit is not None:
                return EntityMatch(hit, "alias", ALIAS_CONFIDENCE)
        return None


def find_existing_entity(
    storage: GraphStorage,
    campaign_id: str,
    name: str,
    aliases: Sequence[str] = (),
) -> Optional[EntityMatch]:
    """Resolve one candidate against the campaign's current entities."""
    return EntityIndex(storage.list_entities(campaign_id)).resolve(name, aliases)


def match_staged_entities(
    staged: Iterable[Any],
    existing: Iterable[Dict[str, Any]],
) -> List[EntityMatch]:
    """Resolve every staged entity against a single snapshot of *existing*."""
    index = EntityIndex(existing)
    matches: List[EntityMatch] = []
    if not len(index):
        return matches
    for entity in staged:
        match = index.resolve(entity.name, entity.aliases)
        if match is not None:
            match.staged_temp_id = entity.temp_id
            matches.append(match)
    return matches


# ---------------------------------------------------------------------------
# Advisory fuzzy finder
# ---------------------------------------------------------------------------

def find_potential_duplicates(
    storage: GraphStorage,
    campaign_id: str,
    name: str,
    threshold: float = 0.7,
) -> List[EntityMatch]:
    """Return entities whose name or an alias scores >= *threshold* against *name*."""
    matches: List[EntityMatch] = []
    for entity in storage.list_entities(campaign_id):
        best = name_similarity(name, entity["name"])
        for alias in entity.get("aliases") or []:
            best = max(best, name_similarity(name, alias))
        if best >= threshold:
            matches.append(EntityMatch(entity, "fuzzy", round(best, 4)))
    matches.sort(key=lambda m: m.confidence, reverse=True)
    return matches
