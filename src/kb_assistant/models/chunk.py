"""Chunk models produced by the chunker and carried through ingestion."""

import json
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

CHUNK_METADATA_SCHEMA_VERSION = 1


class ChunkMetadata(BaseModel):
    """Per-chunk metadata persisted alongside the chunk content."""

    model_config = ConfigDict(extra="allow")

    schema_version: int = Field(default=CHUNK_METADATA_SCHEMA_VERSION)
    source_file: Optional[str] = Field(default=None, description="Original upload filename")
    document_id: Optional[str] = Field(default=None)
    page_number: Optional[int] = Field(default=None, ge=1, description="1-based page for paginated documents")
    section_title: Optional[str] = Field(default=None, description="Nearest preceding heading")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True))

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ChunkMetadata":
        if not raw:
            return cls()
        return cls.model_validate(json.loads(raw))


class TextChunk(BaseModel):
    """A chunk of text produced by the chunking service."""

    chunk_index: int = Field(..., ge=0, description="0-based index of this chunk within the document")
    text: str = Field(..., description="Chunk text content (trimmed)")
    token_count: int = Field(..., ge=0, description="Approximate token count, ceil(chars / 4)")
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
