"""Document models for extraction results and the knowledge-base API."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DocumentStatus(str, Enum):
    """Document lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class DocumentType(str, Enum):
    """How the chunker should treat extracted text."""

    TEXT = "text"
    MARKDOWN = "markdown"
    PDF = "pdf"


class ExtractedPage(BaseModel):
    """Text of a single page of a paginated document."""

    page_number: int = Field(..., ge=1, description="1-based page number")
    text: str = Field(..., description="Page text")


class ExtractedDocument(BaseModel):
    """
    Output of the text extraction collaborator.

    ``pages`` is only set for paginated documents; ``text`` always holds the full text.
    """

    text: str = Field(..., description="Extracted text content")
    type: DocumentType = Field(default=DocumentType.TEXT, description="Document type")
    pages: Optional[List[ExtractedPage]] = Field(default=None, description="Pages for PDFs")


class DocumentResponse(BaseModel):
    """Response model for a knowledge-base document."""

    id: str = Field(..., description="Document ID")
    filename: str = Field(..., description="Original filename")
    mime_type: str = Field(..., description="Declared MIME type")
    file_size: int = Field(..., description="File size in bytes")
    status: DocumentStatus = Field(..., description="Processing status")
    chunk_count: int = Field(..., description="Chunks produced by the last chunking pass")
    chunks_processed: int = Field(..., description="Chunks embedded so far")
    error_message: Optional[str] = Field(None, description="Error message if processing failed")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Caller-supplied metadata")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class DocumentStatusResponse(BaseModel):
    """Lightweight status payload polled by clients during ingestion."""

    id: str = Field(..., description="Document ID")
    status: DocumentStatus = Field(..., description="Processing status")
    chunks_total: int = Field(..., description="Total chunks")
    chunks_processed: int = Field(..., description="Chunks embedded so far")
    error: Optional[str] = Field(None, description="Error message if processing failed")


class DocumentListResponse(BaseModel):
    """Paginated list of documents."""

    documents: List[DocumentResponse] = Field(..., description="Documents, newest first")
    total: int = Field(..., description="Total number of documents")
    limit: int = Field(..., description="Page size")
    offset: int = Field(..., description="Page offset")
