"""Chat session and message repositories."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kb_assistant.database.models import ChatMessage, ChatSession
from kb_assistant.repositories.base import BaseRepository
from kb_assistant.utils.errors import DatabaseError

logger = logging.getLogger(__name__)


class ChatSessionRepository(BaseRepository[ChatSession]):
    """Data access for chat sessions. Every lookup is scoped to the owning API key."""

    def __init__(self, session: AsyncSession):
        super().__init__(ChatSession, session)

    async def get_owned(self, session_id: str, api_key_id: str) -> Optional[ChatSession]:
        try:
            result = await self.session.execute(
                select(ChatSession).where(
                    ChatSession.id == session_id, ChatSession.api_key_id == api_key_id
                )
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting chat session {session_id}: {e}")
            raise DatabaseError("Failed to retrieve ChatSession") from e

    async def touch(self, session_id: str) -> None:
        try:
            await self.session.execute(
                update(ChatSession)
                .where(ChatSession.id == session_id)
                .values(last_active_at=datetime.utcnow())
            )
        except SQLAlchemyError as e:
            logger.error(f"Error refreshing chat session {session_id}: {e}")
            raise DatabaseError("Failed to update ChatSession") from e


class ChatMessageRepository(BaseRepository[ChatMessage]):
    """Data access for chat messages."""

    def __init__(self, session: AsyncSession):
        super().__init__(ChatMessage, session)

    async def list_for_session(self, session_id: str) -> List[ChatMessage]:
        """Return all messages of a session in chronological order."""
        try:
            result = await self.session.execute(
                select(ChatMessage)
                .where(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at, ChatMessage.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing messages for session {session_id}: {e}")
            raise DatabaseError("Failed to retrieve ChatMessage records") from e
