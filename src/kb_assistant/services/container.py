"""Process-wide service container built once at startup."""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from kb_assistant.config import Settings
from kb_assistant.database.session import SessionFactory, create_session_factory
from kb_assistant.models.job import JobType
from kb_assistant.services.chat_service import ChatService
from kb_assistant.services.chunking_service import ChunkingService
from kb_assistant.services.embedding_cache import EmbeddingCache
from kb_assistant.services.embedding_service import EmbeddingService
from kb_assistant.services.extraction_service import ExtractionService
from kb_assistant.services.job_queue import JobQueue
from kb_assistant.services.knowledge_service import KnowledgeService
from kb_assistant.services.llm_service import CompletionFn, LLMService
from kb_assistant.services.rate_limit_service import RateLimitService
from kb_assistant.services.retrieval_service import RetrievalService
from kb_assistant.services.stream_limiter import StreamLimiter
from kb_assistant.workers.ingestion_worker import IngestionWorker


@dataclass
class Services:
    """Explicitly owned component instances shared by the API and the worker."""

    settings: Settings
    engine: AsyncEngine
    session_factory: SessionFactory
    cache: EmbeddingCache
    embedding: EmbeddingService
    job_queue: JobQueue
    retriever: RetrievalService
    llm: LLMService
    chat: ChatService
    knowledge: KnowledgeService
    stream_limiter: StreamLimiter
    rate_limiter: RateLimitService
    ingestion_worker: IngestionWorker

    def register_job_handlers(self) -> None:
        self.job_queue.register_handler(JobType.EMBED_DOCUMENT.value, self.ingestion_worker.handle)


def build_services(
    settings: Settings,
    engine: AsyncEngine,
    embedding_client: Optional[Any] = None,
    completion_fn: Optional[CompletionFn] = None,
) -> Services:
    """
    Wire every component from settings.

    Args:
        settings: Application settings
        engine: Database engine the session factory binds to
        embedding_client: Optional OpenAI-compatible client (tests pass a fake)
        completion_fn: Optional LiteLLM-compatible ``acompletion`` replacement
    """
    session_factory = create_session_factory(engine)
    cache = EmbeddingCache(max_entries=settings.cache.max_entries, session_factory=session_factory)
    embedding = EmbeddingService(settings=settings.embedding, client=embedding_client)
    job_queue = JobQueue(
        session_factory,
        poll_interval=settings.jobs.poll_interval_seconds,
        max_attempts=settings.jobs.max_attempts,
    )
    retriever = RetrievalService(
        session_factory,
        embedding,
        cache,
        overfetch_factor=settings.retrieval.overfetch_factor,
        score_batch_size=settings.retrieval.score_batch_size,
    )
    llm = LLMService(settings=settings.llm, completion_fn=completion_fn)
    chat = ChatService(
        session_factory,
        retriever,
        llm,
        bot_config=settings.bot.to_config(),
        chat_settings=settings.chat,
        retrieval_settings=settings.retrieval,
    )
    knowledge = KnowledgeService(
        session_factory, job_queue, cache, retriever, upload_settings=settings.upload
    )
    ingestion_worker = IngestionWorker(
        session_factory,
        ExtractionService(),
        ChunkingService(settings.chunking),
        embedding,
        cache,
        batch_size=settings.embedding.batch_size,
    )
    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        cache=cache,
        embedding=embedding,
        job_queue=job_queue,
        retriever=retriever,
        llm=llm,
        chat=chat,
        knowledge=knowledge,
        stream_limiter=StreamLimiter(settings.chat.max_concurrent_streams),
        rate_limiter=RateLimitService(),
        ingestion_worker=ingestion_worker,
    )
