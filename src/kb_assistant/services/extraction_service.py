"""Text extraction for uploaded knowledge-base files."""

import io
import re
from pathlib import Path
from typing import List, Optional

from kb_assistant.models.document import DocumentType, ExtractedDocument, ExtractedPage
from kb_assistant.utils.errors import ParsingError
from kb_assistant.utils.logging import get_logger

logger = get_logger("extraction_service")

TEXT_ENCODINGS = ["utf-8", "latin-1", "cp1252"]
FRONTMATTER_PATTERN = re.compile(r"^---[\s\S]*?---\n")
WHITESPACE_PATTERN = re.compile(r"\s+")

PDF_MIME_TYPES = {"application/pdf"}
MARKDOWN_MIME_TYPES = {"text/markdown", "text/x-markdown"}
MARKDOWN_EXTENSIONS = {".md", ".markdown"}


def detect_document_type(mime_type: Optional[str], filename: Optional[str]) -> DocumentType:
    """Pick the extraction strategy from the declared MIME type, falling back to the extension."""
    mime = (mime_type or "").split(";")[0].strip().lower()
    suffix = Path(filename or "").suffix.lower()
    if mime in PDF_MIME_TYPES or suffix == ".pdf":
        return DocumentType.PDF
    if mime in MARKDOWN_MIME_TYPES or suffix in MARKDOWN_EXTENSIONS:
        return DocumentType.MARKDOWN
    return DocumentType.TEXT


class ExtractionService:
    """
    Extracts plain text from stored uploads.

    Supports:
    - PDF - PyPDF2, one entry per non-empty page
    - Markdown - text with front matter removed
    - Plain text - anything else
    """

    async def extract(
        self, file_path: str, mime_type: Optional[str] = None, filename: Optional[str] = None
    ) -> ExtractedDocument:
        """
        Extract text from a file on disk.

        Args:
            file_path: Path of the stored upload
            mime_type: Declared MIME type
            filename: Original filename, used for type detection and logging

        Returns:
            ExtractedDocument with text, type and (for PDFs) pages

        Raises:
            ParsingError: If the file cannot be read or decoded
        """
        name = filename or Path(file_path).name
        doc_type = detect_document_type(mime_type, name)
        logger.info(f"Extracting document: type={doc_type.value}, filename={name}")

        try:
            data = Path(file_path).read_bytes()
        except OSError as e:
            raise ParsingError(f"Failed to read file: {e}", file_type=doc_type.value) from e

        if doc_type == DocumentType.PDF:
            return self._extract_pdf(data, name)

        text = self._decode_text(data, doc_type)
        if doc_type == DocumentType.MARKDOWN:
            text = FRONTMATTER_PATTERN.sub("", text, count=1)
        logger.info(f"Extracted {doc_type.value}: {name}, chars={len(text)}")
        return ExtractedDocument(text=text, type=doc_type)

    def _extract_pdf(self, data: bytes, filename: str) -> ExtractedDocument:
        import PyPDF2

        try:
            reader = PyPDF2.PdfReader(io.BytesIO(data))
            pages: List[ExtractedPage] = []
            for page_number, page in enumerate(reader.pages, start=1):
                try:
                    raw = page.extract_text() or ""
                except Exception as page_error:
                    logger.warning(
                        f"Failed to extract text from page {page_number} in {filename}: {page_error}"
                    )
                    continue
                text = WHITESPACE_PATTERN.sub(" ", raw).strip()
                if text:
                    pages.append(ExtractedPage(page_number=page_number, text=text))
        except PyPDF2.errors.PdfReadError as e:
            raise ParsingError(f"PDF file is corrupted or invalid: {e}", file_type="pdf") from e
        except Exception as e:
            raise ParsingError(f"Failed to parse PDF: {e}", file_type="pdf") from e

        logger.info(f"Extracted PDF: {filename}, pages_with_text={len(pages)}")
        return ExtractedDocument(
            text="\n\n".join(page.text for page in pages),
            type=DocumentType.PDF,
            pages=pages,
        )

    @staticmethod
    def _decode_text(data: bytes, doc_type: DocumentType) -> str:
        for encoding in TEXT_ENCODINGS:
            try:
                text = data.decode(encoding)
                break
            except UnicodeDecodeError:
                continue
        else:
            raise ParsingError(
                "Failed to decode text file. Unsupported encoding.",
                file_type=doc_type.value,
            )

        if text.startswith("\ufeff"):
            text = text[1:]
        return text
