"""Shared repository operations over string-keyed models."""

import logging
from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kb_assistant.database.models import Base
from kb_assistant.utils.errors import DatabaseError

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Lookup, insert, delete and paging for one model.

    Repositories never commit. The caller's ``session_scope`` owns the
    transaction, so several repositories can share one unit of work (a
    document row and its ingestion job, for example). Driver errors are
    re-raised as ``DatabaseError``.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    @property
    def _name(self) -> str:
        return self.model.__name__

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        try:
            return await self.session.get(self.model, id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self._name} {id}: {e}")
            raise DatabaseError(f"Failed to retrieve {self._name}") from e

    async def create(self, **values) -> ModelType:
        """Add a row and flush so ids and server defaults are populated."""
        try:
            instance = self.model(**values)
            self.session.add(instance)
            await self.session.flush()
            await self.session.refresh(instance)
            return instance
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self._name}: {e}")
            raise DatabaseError(f"Failed to create {self._name}") from e

    async def delete(self, id: str) -> bool:
        """Delete by id; dependent rows go with it through ``ON DELETE CASCADE``."""
        try:
            instance = await self.session.get(self.model, id)
            if instance is None:
                return False
            await self.session.delete(instance)
            await self.session.flush()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self._name} {id}: {e}")
            raise DatabaseError(f"Failed to delete {self._name}") from e

    async def list_page(self, offset: int = 0, limit: int = 50) -> List[ModelType]:
        """Newest first; ties on ``created_at`` are broken by id so pages are stable."""
        try:
            result = await self.session.execute(
                select(self.model)
                .order_by(self.model.created_at.desc(), self.model.id)
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing {self._name}: {e}")
            raise DatabaseError(f"Failed to list {self._name} records") from e

    async def count(self) -> int:
        try:
            result = await self.session.execute(select(func.count()).select_from(self.model))
            return result.scalar() or 0
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self._name}: {e}")
            raise DatabaseError(f"Failed to count {self._name} records") from e
