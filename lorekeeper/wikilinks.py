"""``[[Wikilink]]`` parsing and rewriting."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

_WIKILINK_RE = re.compile(r"\[\[([^\]]+)\]\]")


@dataclass
class WikiLink:
    target: str
    display: Optional[str]
    start: int
    end: int


def parse_wikilinks(text: str) -> List[WikiLink]:
    """Return every ``[[Target]]`` / ``[[Target|Display]]`` link in *text*."""
    links: List[WikiLink] = []
    for match in _WIKILINK_RE.finditer(text or ""):
        inner = match.group(1)
        target, _, display = inner.partition("|")
        target = target.strip()
        if not target:
            continue
        links.append(WikiLink(target, display.strip() or None, match.start(), match.end()))
    return links


def extract_mentions(text: str) -> List[str]:
    """Unique link targets in first-seen order."""
    seen: set[str] = set()
    mentions: List[str] = []
    for link in parse_wikilinks(text):
        if link.target not in seen:
            seen.add(link.target)
            mentions.append(link.target)
    return mentions


def rewrite_links(text: str, terms: Iterable[str], new_name: str) -> str:
    """Replace ``[[term]]`` (case-insensitive, exact brackets) with ``[[new_name]]``."""
    if not text:
        return text
    replacement = f"[[{new_name}]]"
    for term in terms:
        if not term:
            continue
        pattern = re.compile(r"\[\[" + re.escape(term) + r"\]\]", re.IGNORECASE)
        text = pattern.sub(lambda _m: replacement, text)
    return text


def link_known_names(text: str, names: Iterable[str], exclude: str = "") -> str:
    """Wrap whole-word occurrences of *names* in ``[[ ]]``.

    Text already inside a link is left alone. Longer names are linked first
    so that "Iron Keep" wins over "Keep".
    """
    if not text:
        return text
    skip = exclude.lower()
    for name in sorted({n for n in names if n}, key=len, reverse=True):
        if name.lower() == skip:
            continue
        pattern = re.compile(r"(?<!\w)" + re.escape(name) + r"(?!\w)", re.IGNORECASE)
        text = _sub_outside_links(pattern, f"[[{name}]]", text)
    return text


def _sub_outside_links(pattern: re.Pattern, replacement: str, text: str) -> str:
    pieces: List[str] = []
    last = 0
    for match in _WIKILINK_RE.finditer(text):
        pieces.append(pattern.sub(lambda _m: replacement, text[last:match.start()]))
        pieces.append(match.group(0))
        last = match.end()
    pieces.append(pattern.sub(lambda _m: replacement, text[last:]))
    return "".join(pieces)
