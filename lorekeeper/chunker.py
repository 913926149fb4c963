"""Header-aware text chunking.

Content is split into sections at Markdown headings. Each section carries
the stack of headings that encloses it. Sections that fit the target size
become one chunk. Longer sections are cut with a sliding window that
prefers paragraph breaks, then sentence breaks, and overlaps consecutive
windows by a fixed amount.

For extraction the goal is the opposite: as few model calls as possible.
:func:`pack_content` joins adjacent sections and paragraphs up to a size
limit and only breaks up the sections that do not fit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Tuple

TARGET_CHUNK_SIZE = 1000
CHUNK_OVERLAP = 100

_HEADER_RE = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class Chunk:
    text: str
    index: int
    header_path: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"text": self.text, "index": self.index, "header_path": list(self.header_path)}


def _split_sections(content: str) -> List[Tuple[List[str], str]]:
    """Split *content* at headings. Each section includes its heading line."""
    sections: List[Tuple[List[str], str]] = []
    stack: List[str] = []
    last_index = 0

    for match in _HEADER_RE.finditer(content):
        if match.start() > last_index:
            before = content[last_index:match.start()].strip()
            if before:
                sections.append((list(stack), before))
        level = len(match.group(1))
        stack = stack[: level - 1] + [match.group(2).strip()]
        last_index = match.start()

    tail = content[last_index:].strip()
    if tail:
        sections.append((list(stack), tail))
    return sections


def _window_cuts(text: str, target: int, overlap: int) -> List[str]:
    pieces: List[str] = []
    length = len(text)
    start = 0
    while start < length:
        end = start + target
        if end < length:
            half = start + target // 2
            para = text.rfind("\n\n", start, end)
            if para > half:
                end = para
            else:
                sentence = text.rfind(". ", start, end)
                if sentence > half:
                    end = sentence + 1

        piece = text[start:end].strip()
        if piece:
            pieces.append(piece)
        if end >= length:
            break

        next_start = end - overlap
        if next_start <= start:
            next_start = end
        start = next_start
    return pieces


def chunk_content(
    content: str,
    title: str,
    target_size: int = TARGET_CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> List[Chunk]:
    """Split *content* into ordered chunks. Deterministic for identical input."""
    if not content or not content.strip():
        return []
    if overlap >= target_size:
        raise ValueError("overlap must be smaller than target_size")

    full = f"# {title}\n\n{content}" if title else content
    chunks: List[Chunk] = []
    for header_path, section in _split_sections(full):
        if len(section) <= target_size:
            pieces = [section]
        else:
            pieces = _window_cuts(section, target_size, overlap)
        for piece in pieces:
            chunks.append(Chunk(text=piece, index=len(chunks), header_path=header_path))
    return chunks


def _pack(
    units: List[Tuple[List[str], str]], max_size: int, sep: str
) -> List[Tuple[List[str], str]]:
    """Greedily join adjacent units while the result stays within *max_size*.

    A packed piece keeps the header path of its first unit.
    """
    packed: List[Tuple[List[str], str]] = []
    current_path: List[str] = []
    current = ""
    for header_path, text in units:
        if current and len(current) + len(sep) + len(text) > max_size:
            packed.append((current_path, current))
            current = ""
        if not current:
            current_path, current = header_path, text
        else:
            current = current + sep + text
    if current:
        packed.append((current_path, current))
    return packed


def _split_oversize(text: str, max_size: int) -> List[str]:
    """Pack sentences up to *max_size*; window-cut any sentence that is still too long."""
    sentences: List[Tuple[List[str], str]] = []
    for sentence in _SENTENCE_RE.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        if len(sentence) <= max_size:
            sentences.append(([], sentence))
        else:
            sentences.extend(([], piece) for piece in _window_cuts(sentence, max_size, 0))
    return [piece for _, piece in _pack(sentences, max_size, " ")]


def pack_content(content: str, max_size: int) -> List[Chunk]:
    """Pack *content* into as few chunks of at most *max_size* characters as possible.

    Adjacent sections and paragraphs are joined until the next one would
    overflow, so a short note with many headings still yields one chunk.
    Only a section larger than *max_size* is broken up: into paragraphs
    (its heading stays with the first body paragraph), then sentences,
    then fixed windows.
    """
    if not content or not content.strip():
        return []
    if max_size < 1:
        raise ValueError("max_size must be >= 1")

    units: List[Tuple[List[str], str]] = []
    for header_path, section in _split_sections(content):
        if len(section) <= max_size:
            units.append((header_path, section))
            continue
        paragraphs = [p.strip() for p in _PARAGRAPH_RE.split(section) if p.strip()]
        if len(paragraphs) > 1 and _HEADER_RE.fullmatch(paragraphs[0]):
            paragraphs[1] = paragraphs[0] + "\n\n" + paragraphs[1]
            del paragraphs[0]
        for paragraph in paragraphs:
            if len(paragraph) <= max_size:
                units.append((header_path, paragraph))
            else:
                units.extend((header_path, piece) for piece in _split_oversize(paragraph, max_size))

    return [
        Chunk(text=text, index=i, header_path=header_path)
        for i, (header_path, text) in enumerate(_pack(units, max_size, "\n\n"))
    ]
