"""Chunk repository: chunk rows and their embedding vectors."""

import logging
from typing import AsyncIterator, Dict, Iterable, List, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kb_assistant.database.models import Chunk
from kb_assistant.repositories.base import BaseRepository
from kb_assistant.utils.errors import DatabaseError

logger = logging.getLogger(__name__)

# (chunk id, document id, raw float32 bytes)
EmbeddingRow = Tuple[str, str, bytes]


class ChunkRepository(BaseRepository[Chunk]):
    """Data access for chunks."""

    def __init__(self, session: AsyncSession):
        super().__init__(Chunk, session)

    async def upsert_many(self, chunks: Iterable[Chunk]) -> int:
        """Insert or overwrite chunk rows by id."""
        count = 0
        try:
            for chunk in chunks:
                await self.session.merge(chunk)
                count += 1
            await self.session.flush()
            return count
        except SQLAlchemyError as e:
            logger.error(f"Error writing chunks: {e}")
            raise DatabaseError("Failed to write chunks") from e

    async def delete_for_document(self, document_id: str) -> List[str]:
        """Delete every chunk of a document and return the removed ids."""
        try:
            ids = await self.ids_for_document(document_id)
            if ids:
                await self.session.execute(delete(Chunk).where(Chunk.document_id == document_id))
            return ids
        except SQLAlchemyError as e:
            logger.error(f"Error deleting chunks for document {document_id}: {e}")
            raise DatabaseError("Failed to delete chunks") from e

    async def ids_for_document(self, document_id: str) -> List[str]:
        try:
            result = await self.session.execute(
                select(Chunk.id).where(Chunk.document_id == document_id).order_by(Chunk.chunk_index)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing chunks for document {document_id}: {e}")
            raise DatabaseError("Failed to list chunks") from e

    async def list_embedded_keys(self) -> List[Tuple[str, str]]:
        """Return ``(chunk id, document id)`` for every chunk with an embedding."""
        try:
            result = await self.session.execute(
                select(Chunk.id, Chunk.document_id)
                .where(Chunk.embedding.is_not(None))
                .order_by(Chunk.id)
            )
            return [(row[0], row[1]) for row in result.all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing embedded chunks: {e}")
            raise DatabaseError("Failed to list embedded chunks") from e

    async def get_embeddings(self, chunk_ids: Sequence[str]) -> Dict[str, EmbeddingRow]:
        """Load raw embeddings for the given ids; missing or null rows are omitted."""
        if not chunk_ids:
            return {}
        try:
            result = await self.session.execute(
                select(Chunk.id, Chunk.document_id, Chunk.embedding).where(
                    Chunk.id.in_(list(chunk_ids)), Chunk.embedding.is_not(None)
                )
            )
            return {row[0]: (row[0], row[1], row[2]) for row in result.all()}
        except SQLAlchemyError as e:
            logger.error(f"Error loading embeddings: {e}")
            raise DatabaseError("Failed to load embeddings") from e

    async def iter_embeddings(self, batch_size: int = 1000) -> AsyncIterator[List[EmbeddingRow]]:
        """Page through all non-null embeddings in id order."""
        last_id = ""
        while True:
            try:
                result = await self.session.execute(
                    select(Chunk.id, Chunk.document_id, Chunk.embedding)
                    .where(Chunk.embedding.is_not(None), Chunk.id > last_id)
                    .order_by(Chunk.id)
                    .limit(batch_size)
                )
                rows = [(row[0], row[1], row[2]) for row in result.all()]
            except SQLAlchemyError as e:
                logger.error(f"Error scanning embeddings: {e}")
                raise DatabaseError("Failed to scan embeddings") from e
            if not rows:
                return
            yield rows
            last_id = rows[-1][0]

    async def get_many(self, chunk_ids: Sequence[str]) -> List[Chunk]:
        """Load full chunk rows (content and metadata) for the given ids."""
        if not chunk_ids:
            return []
        try:
            result = await self.session.execute(select(Chunk).where(Chunk.id.in_(list(chunk_ids))))
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error loading chunks: {e}")
            raise DatabaseError("Failed to load chunks") from e
