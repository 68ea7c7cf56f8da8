"""Retrieval models."""

from typing import List, Optional

from pydantic import BaseModel, Field

from kb_assistant.models.chunk import ChunkMetadata


class RetrievedChunk(BaseModel):
    """A chunk selected by similarity search."""

    chunk_id: str = Field(..., description="Chunk ID")
    document_id: str = Field(..., description="Owning document ID")
    chunk_index: int = Field(..., description="Ordinal within the document")
    content: str = Field(..., description="Chunk text")
    token_count: int = Field(..., description="Approximate tokens")
    similarity: float = Field(..., description="Cosine similarity to the query")
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class SearchRequest(BaseModel):
    """Request model for the knowledge-base search endpoint."""

    query: str = Field(..., min_length=1, max_length=2000, description="Free-text query")
    top_k: int = Field(default=5, ge=1, le=20, description="Number of results")


class SearchResult(BaseModel):
    """A ranked search hit with source metadata."""

    chunk_id: str
    document_id: str
    content: str
    similarity: float
    token_count: int
    source_file: Optional[str] = None
    page_number: Optional[int] = None
    section_title: Optional[str] = None

    @classmethod
    def from_chunk(cls, chunk: RetrievedChunk) -> "SearchResult":
        return cls(
            chunk_id=chunk.chunk_id,
            document_id=chunk.document_id,
            content=chunk.content,
            similarity=round(chunk.similarity, 4),
            token_count=chunk.token_count,
            source_file=chunk.metadata.source_file,
            page_number=chunk.metadata.page_number,
            section_title=chunk.metadata.section_title,
        )


class SearchResponse(BaseModel):
    """Response model for the knowledge-base search endpoint."""

    query: str
    results: List[SearchResult]
