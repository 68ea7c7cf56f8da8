"""Unit tests for the chunking service."""

import math

import pytest

from kb_assistant.config import ChunkingSettings
from kb_assistant.models.document import DocumentType, ExtractedDocument, ExtractedPage
from kb_assistant.services.chunking_service import ChunkingService
from kb_assistant.utils.errors import ChunkingError


@pytest.fixture
def chunker():
    """Default sizes: 2000-character chunks with 200 characters of overlap."""
    return ChunkingService(ChunkingSettings())


class TestThresholds:
    def test_empty_input_yields_no_chunks(self, chunker):
        assert chunker.chunk_text("") == []

    def test_whitespace_only_yields_no_chunks(self, chunker):
        assert chunker.chunk_text("   \n\n\t  ") == []

    def test_under_fifty_characters_yields_no_chunks(self, chunker):
        assert chunker.chunk_text("x" * 49) == []

    def test_exactly_fifty_characters_yields_one_trimmed_chunk(self, chunker):
        chunks = chunker.chunk_text("  " + "x" * 50 + "\n")
        assert len(chunks) == 1
        assert chunks[0].text == "x" * 50
        assert chunks[0].chunk_index == 0

    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ChunkingError):
            ChunkingService(ChunkingSettings(size_tokens=10, overlap_tokens=10))


class TestSplitting:
    def test_3000_characters_split_into_two_overlapping_chunks(self, chunker):
        text = "abcd " * 600
        chunks = chunker.chunk_text(text)

        assert len(chunks) == 2
        assert chunks[0].text == text[:2000].strip()
        assert chunks[1].text == text[1800:].strip()

    def test_chunks_never_exceed_chunk_size(self, chunker):
        text = " ".join(f"item{i} belongs to the catalogue" for i in range(400))
        chunks = chunker.chunk_text(text)
        assert len(chunks) > 3
        assert all(len(chunk.text) <= chunker.chunk_size for chunk in chunks)

    def test_indices_are_contiguous(self, chunker):
        text = "\n\n".join("Paragraph %d. " % i + "word " * 150 for i in range(20))
        chunks = chunker.chunk_text(text)
        assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))

    def test_paragraph_break_is_preferred(self, chunker):
        text = "A" * 1500 + "\n\n" + "B" * 1000
        chunks = chunker.chunk_text(text)

        assert len(chunks) == 2
        assert chunks[0].text == "A" * 1500
        # next chunk begins 200 characters before the break
        assert chunks[1].text.startswith("A" * 198)
        assert chunks[1].text.endswith("B" * 1000)

    def test_break_too_early_falls_back_to_hard_split(self, chunker):
        text = "A" * 100 + "\n\n" + "B" * 2400
        chunks = chunker.chunk_text(text)

        assert len(chunks) == 2
        assert len(chunks[0].text) == 2000
        assert chunks[1].text == text[1800:]

    def test_token_count_is_ceil_of_quarter_length(self, chunker):
        chunks = chunker.chunk_text("y" * 61)
        assert chunks[0].token_count == math.ceil(61 / 4)


class TestDocumentTypes:
    def test_base_metadata_is_copied_to_every_chunk(self, chunker):
        chunks = chunker.chunk_text(
            "abcd " * 600, base_metadata={"source_file": "faq.txt", "document_id": "doc_1"}
        )
        assert all(chunk.metadata.source_file == "faq.txt" for chunk in chunks)
        assert all(chunk.metadata.document_id == "doc_1" for chunk in chunks)

    def test_pages_are_indexed_globally_with_page_numbers(self, chunker):
        pages = [
            ExtractedPage(page_number=1, text="First page text. " * 10),
            ExtractedPage(page_number=2, text="tiny"),
            ExtractedPage(page_number=3, text="Third page text. " * 10),
        ]
        chunks = chunker.chunk_pages(pages, {"source_file": "manual.pdf"})

        assert [chunk.chunk_index for chunk in chunks] == [0, 1]
        assert [chunk.metadata.page_number for chunk in chunks] == [1, 3]

    def test_markdown_sections_carry_titles(self, chunker):
        text = (
            "# Intro\n"
            + "This introduction explains what the product does in detail.\n"
            + "## Setup\n"
            + "Install the package and configure the environment variables first.\n"
        )
        chunks = chunker.chunk_markdown(text)

        assert [chunk.metadata.section_title for chunk in chunks] == ["Intro", "Setup"]
        assert chunks[0].text.startswith("# Intro")
        assert chunks[1].text.startswith("## Setup")

    def test_markdown_preamble_has_no_title(self, chunker):
        text = "Preamble text that appears before any heading at all.\n# Heading\n" + "z" * 60
        chunks = chunker.chunk_markdown(text)
        assert chunks[0].metadata.section_title is None
        assert chunks[1].metadata.section_title == "Heading"

    def test_chunk_document_dispatches_on_type(self, chunker):
        pdf = ExtractedDocument(
            text="ignored",
            type=DocumentType.PDF,
            pages=[ExtractedPage(page_number=2, text="Page two " + "x" * 60)],
        )
        chunks = chunker.chunk_document(pdf)
        assert len(chunks) == 1
        assert chunks[0].metadata.page_number == 2

        text = ExtractedDocument(text="w" * 80, type=DocumentType.TEXT)
        chunks = chunker.chunk_document(text)
        assert chunks[0].metadata.page_number is None
