"""Ingestion worker: the ``embed_document`` job handler."""

from pathlib import Path
from typing import Any, Dict, List, Optional

from kb_assistant.database.models import Chunk
from kb_assistant.database.session import SessionFactory, session_scope
from kb_assistant.models.chunk import TextChunk
from kb_assistant.models.document import DocumentStatus
from kb_assistant.models.job import EmbedDocumentPayload, JobContext
from kb_assistant.repositories.chunk_repository import ChunkRepository
from kb_assistant.repositories.document_repository import DocumentRepository
from kb_assistant.services.chunking_service import ChunkingService
from kb_assistant.services.embedding_cache import EmbeddingCache, vector_to_bytes
from kb_assistant.services.embedding_service import EmbeddingService
from kb_assistant.services.extraction_service import ExtractionService
from kb_assistant.utils import ids
from kb_assistant.utils.errors import KBAssistantException, NotFoundError
from kb_assistant.utils.logging import bind_log_context, get_logger, log_error

logger = get_logger("ingestion_worker")


class IngestionWorker:
    """
    Turns a queued upload into embedded, searchable chunks.

    Processing pipeline:
    1. Mark the document processing
    2. Extract text and store it on the document
    3. Chunk the text
    4. Drop chunks left by an earlier attempt, record the chunk total
    5. Embed batch by batch; each batch is written in one transaction and
       then cached, and the progress counter advances
    6. Mark the document processed

    Any failure marks the document ``error`` and re-raises so the job queue
    can retry. The stored upload is removed once the job succeeds or has
    used its last attempt.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        extraction_service: ExtractionService,
        chunking_service: ChunkingService,
        embedding_service: EmbeddingService,
        cache: EmbeddingCache,
        batch_size: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.extraction_service = extraction_service
        self.chunking_service = chunking_service
        self.embedding_service = embedding_service
        self.cache = cache
        self.batch_size = max(1, batch_size or embedding_service.batch_size)

    async def handle(self, payload: Dict[str, Any], context: JobContext) -> None:
        """Job handler entry point registered for ``embed_document``."""
        job = EmbedDocumentPayload.model_validate(payload)
        succeeded = False
        with bind_log_context(document_id=job.document_id):
            try:
                await self.process_document(job, context)
                succeeded = True
            finally:
                if succeeded or context.is_final_attempt:
                    self._remove_upload(job.file_path)

    async def process_document(self, job: EmbedDocumentPayload, context: JobContext) -> int:
        """
        Run the ingestion pipeline for one document.

        Returns:
            Number of chunks stored
        """
        document_id = job.document_id
        logger.info(
            f"Processing document: document_id={document_id}, filename={job.original_filename}, "
            f"attempt={context.attempt}/{context.max_attempts}"
        )

        async with session_scope(self._session_factory) as session:
            repo = DocumentRepository(session)
            if await repo.get_by_id(document_id) is None:
                raise NotFoundError("Document", document_id)
            await repo.set_status(document_id, DocumentStatus.PROCESSING)

        try:
            extracted = await self.extraction_service.extract(
                job.file_path, job.mime_type, job.original_filename
            )
            chunks = self.chunking_service.chunk_document(
                extracted,
                base_metadata={"source_file": job.original_filename, "document_id": document_id},
            )
            total_tokens = sum(chunk.token_count for chunk in chunks)
            logger.info(
                f"Document chunked: document_id={document_id}, chunks={len(chunks)}, "
                f"total_tokens={total_tokens}"
            )

            async with session_scope(self._session_factory) as session:
                stale_ids = await ChunkRepository(session).delete_for_document(document_id)
                await DocumentRepository(session).start_chunking_pass(
                    document_id, raw_text=extracted.text, chunk_count=len(chunks)
                )
            self._evict(document_id, stale_ids)

            processed = 0
            for start in range(0, len(chunks), self.batch_size):
                batch = chunks[start : start + self.batch_size]
                processed = await self._store_batch(document_id, batch, processed)

            async with session_scope(self._session_factory) as session:
                await DocumentRepository(session).set_status(document_id, DocumentStatus.PROCESSED)

        except Exception as e:
            message = e.message if isinstance(e, KBAssistantException) else (str(e) or type(e).__name__)
            log_error(
                e,
                context={"attempt": context.attempt, "max_attempts": context.max_attempts},
                document_id=document_id,
            )
            await self._mark_error(document_id, message)
            raise

        logger.info(f"Document processed: document_id={document_id}, chunks={len(chunks)}")
        return len(chunks)

    async def _store_batch(self, document_id: str, batch: List[TextChunk], processed: int) -> int:
        vectors = await self.embedding_service.embed([chunk.text for chunk in batch])

        rows = [
            Chunk(
                id=ids.chunk_id(document_id, chunk.chunk_index),
                document_id=document_id,
                chunk_index=chunk.chunk_index,
                content=chunk.text,
                token_count=chunk.token_count,
                embedding=vector_to_bytes(vector),
                metadata_json=chunk.metadata.to_json(),
            )
            for chunk, vector in zip(batch, vectors)
        ]
        processed += len(rows)

        async with session_scope(self._session_factory) as session:
            await ChunkRepository(session).upsert_many(rows)
            await DocumentRepository(session).set_progress(document_id, processed)

        # only after commit, so the cache never holds an unpersisted vector
        for row, vector in zip(rows, vectors):
            self.cache.set(row.id, vector, document_id)

        logger.debug(f"Embedded batch: document_id={document_id}, processed={processed}")
        return processed

    def _evict(self, document_id: str, chunk_ids: List[str]) -> None:
        self.cache.invalidate(document_id)
        for chunk_id in chunk_ids:
            self.cache.delete(chunk_id)

    async def _mark_error(self, document_id: str, message: str) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                await DocumentRepository(session).set_status(
                    document_id, DocumentStatus.ERROR, error_message=message
                )
        except Exception as update_error:
            logger.error(
                f"Failed to update status to error: document_id={document_id} - {update_error}",
                exc_info=True,
            )

    @staticmethod
    def _remove_upload(file_path: str) -> None:
        try:
            Path(file_path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove upload {file_path}: {e}")
