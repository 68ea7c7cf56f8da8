"""Knowledge-base document lifecycle: upload, status, listing, deletion and test search."""

import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from kb_assistant.config import UploadSettings
from kb_assistant.database.models import Document
from kb_assistant.database.session import SessionFactory, session_scope
from kb_assistant.models.document import (
    DocumentListResponse,
    DocumentResponse,
    DocumentStatus,
    DocumentStatusResponse,
)
from kb_assistant.models.job import EmbedDocumentPayload, JobType
from kb_assistant.models.retrieval import SearchResult
from kb_assistant.repositories.document_repository import DocumentRepository
from kb_assistant.services.embedding_cache import EmbeddingCache
from kb_assistant.services.job_queue import JobQueue
from kb_assistant.services.retrieval_service import RetrievalService
from kb_assistant.utils.errors import NotFoundError, ValidationError
from kb_assistant.utils.logging import get_logger

logger = get_logger("knowledge_service")


def document_to_response(document: Document) -> DocumentResponse:
    metadata: Dict[str, Any] = {}
    if document.metadata_json:
        try:
            metadata = json.loads(document.metadata_json)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable metadata on document {document.id}")
    return DocumentResponse(
        id=document.id,
        filename=document.filename,
        mime_type=document.mime_type,
        file_size=document.file_size,
        status=DocumentStatus(document.status),
        chunk_count=document.chunk_count,
        chunks_processed=document.chunks_processed,
        error_message=document.error_message,
        metadata=metadata,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


class KnowledgeService:
    """
    Document operations used by the knowledge-base API.

    Documents are only created here; every later status change is made by
    the ingestion worker.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        job_queue: JobQueue,
        cache: EmbeddingCache,
        retriever: RetrievalService,
        upload_settings: Optional[UploadSettings] = None,
    ):
        self._session_factory = session_factory
        self._job_queue = job_queue
        self._cache = cache
        self._retriever = retriever
        self.upload_settings = upload_settings or UploadSettings()

    def validate_upload(self, filename: Optional[str], data: bytes) -> str:
        """
        Reject uploads before any write happens.

        Returns:
            The normalized file extension
        """
        if not filename:
            raise ValidationError("Filename is required")
        extension = Path(filename).suffix.lower().lstrip(".")
        allowed = self.upload_settings.allowed_extensions
        if extension not in allowed:
            raise ValidationError(
                f"File type not allowed. Allowed types: {', '.join(allowed)}",
                details={"filename": filename, "extension": extension},
            )
        if not data:
            raise ValidationError("File is empty", details={"filename": filename})
        if len(data) > self.upload_settings.max_file_size:
            raise ValidationError(
                f"File too large. Maximum size: {self.upload_settings.max_file_size} bytes",
                details={"filename": filename, "file_size": len(data)},
            )
        return extension

    async def create_document(
        self,
        filename: str,
        content_type: Optional[str],
        data: bytes,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DocumentResponse:
        """Store an upload, record the document as queued and enqueue its ingestion."""
        extension = self.validate_upload(filename, data)
        mime_type = content_type or "application/octet-stream"

        upload_dir = Path(self.upload_settings.directory)
        upload_dir.mkdir(parents=True, exist_ok=True)
        file_path = upload_dir / f"{uuid.uuid4().hex}.{extension}"
        file_path.write_bytes(data)

        try:
            async with session_scope(self._session_factory) as session:
                document = await DocumentRepository(session).create(
                    filename=filename,
                    mime_type=mime_type,
                    file_size=len(data),
                    status=DocumentStatus.QUEUED.value,
                    metadata_json=json.dumps(metadata) if metadata else None,
                )
                payload = EmbedDocumentPayload(
                    document_id=document.id,
                    file_path=str(file_path),
                    original_filename=filename,
                    mime_type=mime_type,
                )
                await self._job_queue.enqueue(
                    JobType.EMBED_DOCUMENT.value, payload.model_dump(), session=session
                )
        except BaseException:
            file_path.unlink(missing_ok=True)
            raise

        logger.info(f"Document queued: {document.id} ({filename}, {len(data)} bytes)")
        return document_to_response(document)

    async def get_document(self, document_id: str) -> DocumentResponse:
        async with self._session_factory() as session:
            document = await DocumentRepository(session).get_by_id(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document_to_response(document)

    async def get_document_status(self, document_id: str) -> DocumentStatusResponse:
        """Progress snapshot polled by clients while a document is ingested."""
        async with self._session_factory() as session:
            document = await DocumentRepository(session).get_by_id(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return DocumentStatusResponse(
            id=document.id,
            status=DocumentStatus(document.status),
            chunks_total=document.chunk_count,
            chunks_processed=document.chunks_processed,
            error=document.error_message,
        )

    async def list_documents(self, limit: int = 50, offset: int = 0) -> DocumentListResponse:
        async with self._session_factory() as session:
            repo = DocumentRepository(session)
            documents = await repo.list_page(offset=offset, limit=limit)
            total = await repo.count()
        return DocumentListResponse(
            documents=[document_to_response(document) for document in documents],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document with its chunks and drop its cached vectors."""
        async with session_scope(self._session_factory) as session:
            deleted = await DocumentRepository(session).delete(document_id)
        if not deleted:
            return False
        evicted = self._cache.remove_document(document_id)
        logger.info(f"Document deleted: {document_id} (cache entries dropped: {evicted})")
        return True

    async def search(self, query: str, top_k: int = 5) -> List[SearchResult]:
        """Exploratory search: no similarity threshold and no token budget."""
        chunks = await self._retriever.search(query, similarity_threshold=0.0, top_k=top_k)
        return [SearchResult.from_chunk(chunk) for chunk in chunks]
