"""Document repository."""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kb_assistant.database.models import Document
from kb_assistant.models.document import DocumentStatus
from kb_assistant.repositories.base import BaseRepository
from kb_assistant.utils.errors import DatabaseError

logger = logging.getLogger(__name__)


class DocumentRepository(BaseRepository[Document]):
    """Data access for knowledge-base documents."""

    def __init__(self, session: AsyncSession):
        super().__init__(Document, session)

    async def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a document to an absolute status; clears the error unless one is given."""
        return await self._update_fields(
            document_id, status=status.value, error_message=error_message
        )

    async def start_chunking_pass(self, document_id: str, raw_text: str, chunk_count: int) -> bool:
        """Record the extracted text and the size of a fresh chunking pass."""
        return await self._update_fields(
            document_id,
            raw_text=raw_text,
            chunk_count=chunk_count,
            chunks_processed=0,
        )

    async def set_progress(self, document_id: str, chunks_processed: int) -> bool:
        return await self._update_fields(document_id, chunks_processed=chunks_processed)

    async def _update_fields(self, document_id: str, **values) -> bool:
        try:
            result = await self.session.execute(
                update(Document).where(Document.id == document_id).values(**values)
            )
            return (result.rowcount or 0) > 0
        except SQLAlchemyError as e:
            logger.error(f"Error updating Document {document_id}: {e}")
            raise DatabaseError("Failed to update Document") from e
