"""Text chunking service for RAG ingestion."""

import re
from typing import Any, Dict, List, Optional, Sequence

from kb_assistant.config import ChunkingSettings, get_settings
from kb_assistant.models.chunk import ChunkMetadata, TextChunk
from kb_assistant.models.document import DocumentType, ExtractedDocument, ExtractedPage
from kb_assistant.utils.errors import ChunkingError
from kb_assistant.utils.logging import get_logger
from kb_assistant.utils.text import estimate_tokens

logger = get_logger("chunking_service")

# Tried in order; the empty separator means "hard split".
SEPARATORS: Sequence[str] = ("\n\n", "\n", ". ", " ", "")

_HEADING_SPLIT_RE = re.compile(r"(?=^#{1,3} )", re.MULTILINE)
_HEADING_TITLE_RE = re.compile(r"^#{1,3} (.+)", re.MULTILINE)


class ChunkingService:
    """
    Split extracted document text into overlapping, bounded-size chunks.

    Strategies by document type:
    - text: the whole text is split directly
    - pdf: each page is split on its own, chunk indices run across pages
    - markdown: text is partitioned at ``#``..``###`` headings first and each
      chunk records its section title
    """

    def __init__(self, settings: Optional[ChunkingSettings] = None):
        settings = settings or get_settings().chunking
        self.chunk_size = settings.chunk_size_chars
        self.overlap = settings.overlap_chars
        self.chars_per_token = settings.chars_per_token
        self.min_chunk_chars = settings.min_chunk_chars
        self.min_break_ratio = settings.min_break_ratio

        if self.overlap >= self.chunk_size:
            raise ChunkingError(
                "overlap must be less than chunk_size",
                details={"overlap": self.overlap, "chunk_size": self.chunk_size},
            )

    def chunk_document(
        self,
        document: ExtractedDocument,
        base_metadata: Optional[Dict[str, Any]] = None,
    ) -> List[TextChunk]:
        """
        Chunk an extracted document according to its type.

        Args:
            document: Output of the extraction service
            base_metadata: Metadata copied onto every chunk (source_file, document_id)

        Returns:
            Chunks with contiguous 0-based indices
        """
        base_metadata = base_metadata or {}

        if document.type == DocumentType.PDF and document.pages:
            chunks = self.chunk_pages(document.pages, base_metadata)
        elif document.type == DocumentType.MARKDOWN:
            chunks = self.chunk_markdown(document.text, base_metadata)
        else:
            chunks = self.chunk_text(document.text, base_metadata)

        logger.info(
            f"Chunked document: type={document.type.value}, chunks={len(chunks)}",
            extra={"chunk_size": self.chunk_size, "overlap": self.overlap},
        )
        return chunks

    def chunk_text(self, text: str, base_metadata: Optional[Dict[str, Any]] = None) -> List[TextChunk]:
        collector = _ChunkCollector(self, base_metadata or {})
        collector.add_segments(self.split_text(text or ""))
        return collector.chunks

    def chunk_pages(
        self, pages: Sequence[ExtractedPage], base_metadata: Optional[Dict[str, Any]] = None
    ) -> List[TextChunk]:
        collector = _ChunkCollector(self, base_metadata or {})
        for page in pages:
            collector.add_segments(self.split_text(page.text), page_number=page.page_number)
        return collector.chunks

    def chunk_markdown(
        self, text: str, base_metadata: Optional[Dict[str, Any]] = None
    ) -> List[TextChunk]:
        collector = _ChunkCollector(self, base_metadata or {})
        for section in _HEADING_SPLIT_RE.split(text or ""):
            if not section.strip():
                continue
            match = _HEADING_TITLE_RE.search(section)
            title = match.group(1).strip() if match else None
            collector.add_segments(self.split_text(section), section_title=title or None)
        return collector.chunks

    def split_text(self, text: str) -> List[str]:
        """
        Recursive-separator split, written as a loop.

        Each step breaks at the last separator that falls within the chunk
        size and past ``min_break_ratio`` of it; the next segment starts
        ``overlap`` characters before the break. If no separator qualifies,
        the remainder is hard split in steps of ``chunk_size - overlap``.
        """
        size = self.chunk_size
        segments: List[str] = []
        remaining = text

        while len(remaining) > size:
            cut = self._find_break(remaining)
            if cut is None:
                segments.extend(self._hard_split(remaining))
                return segments
            end, next_start = cut
            segments.append(remaining[:end])
            remaining = remaining[next_start:]

        segments.append(remaining)
        return segments

    def _find_break(self, text: str) -> Optional[tuple]:
        size = self.chunk_size
        for sep in SEPARATORS:
            if not sep:
                return None
            # last occurrence starting at or before ``size``
            idx = text.rfind(sep, 0, size + len(sep))
            if idx > size * self.min_break_ratio:
                end = idx + len(sep)
                next_start = end - self.overlap
                if next_start <= 0:
                    next_start = end
                return end, next_start
        return None

    def _hard_split(self, text: str) -> List[str]:
        step = self.chunk_size - self.overlap
        return [text[start : start + self.chunk_size] for start in range(0, len(text), step)]


class _ChunkCollector:
    """Assigns global indices and drops noise-sized segments."""

    def __init__(self, service: ChunkingService, base_metadata: Dict[str, Any]):
        self._service = service
        self._base = base_metadata
        self.chunks: List[TextChunk] = []

    def add_segments(
        self,
        segments: Sequence[str],
        page_number: Optional[int] = None,
        section_title: Optional[str] = None,
    ) -> None:
        for segment in segments:
            content = segment.strip()
            if len(content) < self._service.min_chunk_chars or not content:
                continue
            metadata = ChunkMetadata(
                **{
                    **self._base,
                    "page_number": page_number,
                    "section_title": section_title,
                }
            )
            self.chunks.append(
                TextChunk(
                    chunk_index=len(self.chunks),
                    text=content,
                    token_count=estimate_tokens(content, self._service.chars_per_token),
                    metadata=metadata,
                )
            )
