"""Chat session engine: sessions, history windowing, RAG context and streamed turns."""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from kb_assistant.config import BotConfig, ChatSettings, RetrievalSettings
from kb_assistant.database.models import ChatSession
from kb_assistant.database.session import SessionFactory, session_scope
from kb_assistant.models.chat import (
    DoneEvent,
    ErrorEvent,
    HistoryMessage,
    HistoryResponse,
    MessageResponse,
    MessageRole,
    StartEvent,
    StreamEvent,
    TokenEvent,
)
from kb_assistant.models.retrieval import RetrievedChunk
from kb_assistant.repositories.chat_repository import ChatMessageRepository, ChatSessionRepository
from kb_assistant.services.llm_service import LLMService
from kb_assistant.services.prompt_builder import PromptBuilder
from kb_assistant.services.retrieval_service import RetrievalService
from kb_assistant.utils.errors import NotFoundError, ValidationError
from kb_assistant.utils.logging import bind_log_context, get_logger, log_error
from kb_assistant.utils.text import estimate_tokens, strip_tags

logger = get_logger("chat_service")

DisconnectCheck = Callable[[], Awaitable[bool]]


@dataclass
class ChatTurn:
    """Everything needed to run the generation half of a turn."""

    session_id: str
    user_message_id: str
    user_message: str
    messages: List[Dict[str, str]]
    context_chunks: List[RetrievedChunk] = field(default_factory=list)


class ChatService:
    """
    Conversation engine.

    A turn is split in two: ``prepare_turn`` does the work that may still
    fail with a regular error response (sanitize, window history, retrieve
    context, store the user message) and ``run_turn`` streams the answer as
    ``start``/``token``/``done`` events, or a single ``error`` event when the
    provider fails. A cancelled or disconnected stream persists nothing more.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        retriever: RetrievalService,
        llm: LLMService,
        bot_config: BotConfig,
        chat_settings: Optional[ChatSettings] = None,
        retrieval_settings: Optional[RetrievalSettings] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        self._session_factory = session_factory
        self._retriever = retriever
        self._llm = llm
        self.bot_config = bot_config
        self.chat_settings = chat_settings or ChatSettings()
        self.retrieval_settings = retrieval_settings or RetrievalSettings()
        self._prompts = prompt_builder or PromptBuilder()

    async def get_or_create_session(
        self, session_id: Optional[str], caller_id: str, origin: Optional[str] = None
    ) -> ChatSession:
        """
        Resume the caller's session or start a new one.

        A session id that is unknown or owned by another caller silently
        yields a fresh session for ``caller_id``.
        """
        async with session_scope(self._session_factory) as db:
            repo = ChatSessionRepository(db)
            if session_id:
                existing = await repo.get_owned(session_id, caller_id)
                if existing is not None:
                    await repo.touch(existing.id)
                    return existing
            created = await repo.create(api_key_id=caller_id, origin=origin)
            logger.info(f"Chat session created: {created.id}")
            return created

    def sanitize_message(self, message: str) -> str:
        """Strip HTML-like tags and truncate to the maximum message length."""
        return strip_tags(message or "")[: self.chat_settings.max_message_length]

    def window_history(self, messages: Sequence[HistoryMessage]) -> List[HistoryMessage]:
        """
        Keep the most recent messages that fit the history budget.

        At most ``max_history_messages`` are considered; walking back from the
        newest, messages are kept while the running token estimate stays
        within ``history_token_budget``. Chronological order is preserved.
        """
        limit = self.chat_settings.max_history_messages
        if limit <= 0:
            return []
        recent = list(messages)[-limit:]
        budget = self.chat_settings.history_token_budget

        windowed: List[HistoryMessage] = []
        total = 0
        for message in reversed(recent):
            tokens = estimate_tokens(message.content)
            if total + tokens > budget:
                break
            windowed.append(message)
            total += tokens
        windowed.reverse()
        return windowed

    def validate_message(self, message: str) -> str:
        """Sanitize a user message; raise ``ValidationError`` when nothing is left."""
        text = self.sanitize_message(message)
        if not text.strip():
            raise ValidationError("Message is empty after removing markup")
        return text

    async def prepare_turn(self, session_id: str, message: str) -> ChatTurn:
        text = self.validate_message(message)
        with bind_log_context(session_id=session_id):
            return await self._prepare(session_id, text)

    async def _prepare(self, session_id: str, text: str) -> ChatTurn:
        async with self._session_factory() as db:
            rows = await ChatMessageRepository(db).list_for_session(session_id)
        history = self.window_history(
            [
                HistoryMessage(role=MessageRole(row.role), content=row.content)
                for row in rows
                if row.role in (MessageRole.USER.value, MessageRole.ASSISTANT.value)
            ]
        )

        chunks = await self._retrieve_context(text)
        system_prompt = self._prompts.build_system_prompt(self.bot_config.system_prompt, chunks)
        messages = self._prompts.build_messages(system_prompt, history, text)

        user_message_id = await self._store_message(session_id, MessageRole.USER, text)
        return ChatTurn(
            session_id=session_id,
            user_message_id=user_message_id,
            user_message=text,
            messages=messages,
            context_chunks=chunks,
        )

    async def run_turn(
        self, turn: ChatTurn, is_disconnected: Optional[DisconnectCheck] = None
    ) -> AsyncIterator[StreamEvent]:
        """Stream the assistant answer for a prepared turn."""
        yield StartEvent(session_id=turn.session_id)

        parts: List[str] = []
        try:
            stream = self._llm.stream_chat(
                turn.messages,
                model=self.bot_config.model,
                temperature=self.bot_config.temperature,
                max_tokens=self.bot_config.max_tokens,
            )
            async with aclosing(stream) as tokens:
                async for token in tokens:
                    if is_disconnected is not None and await is_disconnected():
                        logger.info(f"Client disconnected, aborting stream for session {turn.session_id}")
                        return
                    parts.append(token)
                    yield TokenEvent(content=token)
        except asyncio.CancelledError:
            logger.info(f"Stream cancelled for session {turn.session_id}")
            raise
        except Exception as e:
            log_error(e, context={"stage": "generation"}, session_id=turn.session_id)
            yield ErrorEvent()
            return

        if is_disconnected is not None and await is_disconnected():
            logger.info(f"Client disconnected before completion for session {turn.session_id}")
            return

        try:
            message_id = await self._store_message(
                turn.session_id, MessageRole.ASSISTANT, "".join(parts)
            )
        except Exception as e:
            log_error(e, context={"stage": "persist_answer"}, session_id=turn.session_id)
            yield ErrorEvent(code="storage_error")
            return
        yield DoneEvent(message_id=message_id)

    async def stream_turn(
        self,
        session_id: str,
        message: str,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Prepare and stream one turn."""
        turn = await self.prepare_turn(session_id, message)
        async with aclosing(self.run_turn(turn, is_disconnected)) as events:
            async for event in events:
                yield event

    async def get_history(self, session_id: str, caller_id: str) -> HistoryResponse:
        """Ordered messages of a session owned by ``caller_id``."""
        async with self._session_factory() as db:
            session = await ChatSessionRepository(db).get_owned(session_id, caller_id)
            if session is None:
                raise NotFoundError("Session", session_id)
            rows = await ChatMessageRepository(db).list_for_session(session_id)
        return HistoryResponse(
            session_id=session_id,
            messages=[
                MessageResponse(
                    id=row.id,
                    role=MessageRole(row.role),
                    content=row.content,
                    token_count=row.token_count,
                    created_at=row.created_at,
                )
                for row in rows
            ],
        )

    async def delete_session(self, session_id: str, caller_id: str) -> bool:
        """Delete a session and its messages if owned by ``caller_id``."""
        async with session_scope(self._session_factory) as db:
            repo = ChatSessionRepository(db)
            session = await repo.get_owned(session_id, caller_id)
            if session is None:
                return False
            await repo.delete(session.id)
        logger.info(f"Chat session deleted: {session_id}")
        return True

    async def _retrieve_context(self, text: str) -> List[RetrievedChunk]:
        try:
            return await self._retriever.search(
                text,
                similarity_threshold=self.bot_config.similarity_threshold,
                top_k=self.retrieval_settings.top_k,
                token_budget=self.retrieval_settings.context_token_budget,
            )
        except Exception as e:
            logger.warning(f"KB retrieval failed, continuing without context: {e}")
            return []

    async def _store_message(self, session_id: str, role: MessageRole, content: str) -> str:
        async with session_scope(self._session_factory) as db:
            message = await ChatMessageRepository(db).create(
                session_id=session_id,
                role=role.value,
                content=content,
                token_count=estimate_tokens(content),
            )
            return message.id
