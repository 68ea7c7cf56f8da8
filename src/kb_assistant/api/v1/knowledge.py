"""Knowledge base endpoints for document upload, status and test search."""

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, File, Form, Query, Response, UploadFile, status

from kb_assistant.dependencies import AdminAuthDep, ServicesDep, UploadRateLimitDep
from kb_assistant.models.document import (
    DocumentListResponse,
    DocumentResponse,
    DocumentStatusResponse,
)
from kb_assistant.models.retrieval import SearchRequest, SearchResponse
from kb_assistant.services.container import Services
from kb_assistant.utils.errors import NotFoundError, ValidationError
from kb_assistant.utils.logging import get_logger

logger = get_logger("knowledge_api")

router = APIRouter(prefix="/knowledge", tags=["knowledge"], dependencies=[AdminAuthDep])


def _parse_metadata(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("metadata must be valid JSON", details={"error": str(e)}) from e
    if not isinstance(value, dict):
        raise ValidationError("metadata must be a JSON object")
    return value


@router.post(
    "/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload Knowledge Base Document",
    description="Upload a document; it is queued for chunking and embedding.",
    dependencies=[UploadRateLimitDep],
)
async def upload_document(
    file: UploadFile = File(..., description="PDF, Markdown or plain text file"),
    metadata: Optional[str] = Form(None, description="Optional JSON object stored with the document"),
    services: Services = ServicesDep,
):
    """
    Upload a document to the knowledge base.

    The document is stored, recorded as ``queued`` and an ingestion job is
    enqueued in the same transaction. Poll the status endpoint for progress.
    """
    parsed_metadata = _parse_metadata(metadata)
    data = await file.read()
    return await services.knowledge.create_document(
        filename=file.filename or "",
        content_type=file.content_type,
        data=data,
        metadata=parsed_metadata,
    )


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    limit: int = Query(50, ge=1, le=200, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
    services: Services = ServicesDep,
):
    """List documents, newest first."""
    return await services.knowledge.list_documents(limit=limit, offset=offset)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(document_id: str, services: Services = ServicesDep):
    return await services.knowledge.get_document(document_id)


@router.get("/documents/{document_id}/status", response_model=DocumentStatusResponse)
async def get_document_status(document_id: str, services: Services = ServicesDep):
    """Ingestion progress: status, chunk totals, chunks processed and error."""
    return await services.knowledge.get_document_status(document_id)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(document_id: str, services: Services = ServicesDep):
    """Delete a document, its chunks and their cached embeddings."""
    deleted = await services.knowledge.delete_document(document_id)
    if not deleted:
        raise NotFoundError("Document", document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/search", response_model=SearchResponse)
async def search_knowledge_base(body: SearchRequest, services: Services = ServicesDep):
    """
    Test retrieval against the knowledge base.

    Unlike chat retrieval, no similarity threshold or token budget is applied.
    """
    results = await services.knowledge.search(body.query, top_k=body.top_k)
    return SearchResponse(query=body.query, results=results)
