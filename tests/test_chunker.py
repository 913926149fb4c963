"""Tests for header-aware chunking."""

import pytest

from lorekeeper.chunker import CHUNK_OVERLAP, TARGET_CHUNK_SIZE, chunk_content, pack_content


def _paragraphs(count: int, size: int = 300) -> str:
    para = ("The party rested at the inn and argued about the map " * 10)[: size - 1] + "."
    return "\n\n".join(para for _ in range(count))


class TestChunkContent:
    def test_empty_content(self):
        assert chunk_content("", "Title") == []
        assert chunk_content("   \n  ", "Title") == []

    def test_short_content_single_chunk_with_title(self):
        chunks = chunk_content("A small village.", "Millbrook")
        assert len(chunks) == 1
        assert chunks[0].text == "# Millbrook\n\nA small village."
        assert chunks[0].index == 0
        assert chunks[0].header_path == ["Millbrook"]

    def test_no_title(self):
        chunks = chunk_content("Plain text.", "")
        assert chunks[0].text == "Plain text."
        assert chunks[0].header_path == []

    def test_deterministic(self):
        content = _paragraphs(8)
        first = chunk_content(content, "Chronicle")
        second = chunk_content(content, "Chronicle")
        assert first == second

    def test_unbroken_text_windows(self):
        chunks = chunk_content("y" * 2400, "")
        assert len(chunks) == 3
        assert [c.index for c in chunks] == [0, 1, 2]

    def test_long_section_cuts_at_paragraphs(self):
        chunks = chunk_content(_paragraphs(8), "")
        assert len(chunks) == 4
        assert all(c.text.endswith(".") for c in chunks)

    def test_chunks_respect_target_size(self):
        chunks = chunk_content(_paragraphs(12), "Saga")
        assert all(len(c.text) <= TARGET_CHUNK_SIZE for c in chunks)

    def test_windows_overlap(self):
        text = "x" * 2500  # no paragraph or sentence breaks
        chunks = chunk_content(text, "")
        assert len(chunks) == 3
        assert len(chunks[0].text) == TARGET_CHUNK_SIZE
        # second window starts CHUNK_OVERLAP characters before the first ended
        assert chunks[1].text[:CHUNK_OVERLAP] == chunks[0].text[-CHUNK_OVERLAP:]

    def test_prefers_sentence_break(self):
        sentence = "The lich waited in silence for a very long time. "
        text = sentence * 30  # ~1500 chars, no blank lines
        chunks = chunk_content(text, "")
        assert chunks[0].text.endswith(".")

    def test_header_paths(self):
        content = (
            "# Greyhold\n\nIntro text.\n\n"
            "## Dungeons\n\nDark and damp.\n\n"
            "### Crypt\n\nBones everywhere.\n\n"
            "## Towers\n\nTall and windy."
        )
        chunks = chunk_content(content, "")
        paths = [c.header_path for c in chunks]
        assert paths == [
            ["Greyhold"],
            ["Greyhold", "Dungeons"],
            ["Greyhold", "Dungeons", "Crypt"],
            ["Greyhold", "Towers"],
        ]
        # each section keeps its own heading line
        assert chunks[2].text.startswith("### Crypt")

    def test_overlap_must_be_smaller_than_target(self):
        with pytest.raises(ValueError):
            chunk_content("text", "", target_size=100, overlap=100)


class TestPackContent:
    def test_empty_content(self):
        assert pack_content("", 500) == []
        assert pack_content(" \n ", 500) == []

    def test_many_headings_share_one_chunk(self):
        content = "\n\n".join(f"## Scene {i}\n\nThe party camps by the river." for i in range(10))
        chunks = pack_content(content, 6000)
        assert len(chunks) == 1
        assert chunks[0].text == content
        assert chunks[0].header_path == ["Scene 0"]

    def test_sections_pack_up_to_limit(self):
        section = "## Room\n\n" + "x" * 90
        content = "\n\n".join([section] * 5)
        chunks = pack_content(content, 250)
        # two 99-char sections plus a separator fit; a third would not
        assert [len(c.text) for c in chunks] == [200, 200, 99]
        assert [c.index for c in chunks] == [0, 1, 2]

    def test_oversize_section_splits_on_paragraphs(self):
        content = "## Saga\n\n" + _paragraphs(4)
        chunks = pack_content(content, 500)
        assert all(len(c.text) <= 500 for c in chunks)
        assert len(chunks) == 4
        # the heading stays with its first paragraph
        assert chunks[0].text.startswith("## Saga\n\nThe party")
        assert all(c.header_path == ["Saga"] for c in chunks)

    def test_long_paragraph_splits_on_sentences(self):
        sentence = "The dragon circled the tower twice."
        paragraph = " ".join([sentence] * 20)
        chunks = pack_content(paragraph, 200)
        assert all(len(c.text) <= 200 for c in chunks)
        assert all(c.text.endswith(".") for c in chunks)
        assert " ".join(c.text for c in chunks) == paragraph

    def test_unbroken_text_is_windowed(self):
        chunks = pack_content("z" * 1000, 300)
        assert [len(c.text) for c in chunks] == [300, 300, 300, 100]

    def test_deterministic(self):
        content = "# Intro\n\n" + _paragraphs(6) + "\n\n## End\n\nFin."
        assert pack_content(content, 700) == pack_content(content, 700)
