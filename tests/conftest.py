"""Pytest configuration and fixtures."""

import asyncio
import re
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from kb_assistant.config import (
    BotSettings,
    CacheSettings,
    ChunkingSettings,
    DatabaseSettings,
    EmbeddingSettings,
    JobQueueSettings,
    LLMSettings,
    Settings,
    UploadSettings,
)
from kb_assistant.database.connection import enable_sqlite_foreign_keys
from kb_assistant.database.models import Base, Chunk, Document
from kb_assistant.database.session import create_session_factory, session_scope
from kb_assistant.models.chunk import ChunkMetadata
from kb_assistant.services.container import build_services
from kb_assistant.services.embedding_cache import vector_to_bytes

# Test database URL (in-memory SQLite for unit tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Keyword vocabulary of the fake embedding provider; the last component is a constant bias.
VOCABULARY = ["refund", "policy", "shipping", "password", "account", "pricing", "support", "warranty"]
EMBEDDING_DIMENSION = len(VOCABULARY) + 1

_WORD_RE = re.compile(r"[a-z]+")


def keyword_vector(text: str) -> List[float]:
    """Deterministic embedding: keyword counts plus a small bias so no vector is zero."""
    words = _WORD_RE.findall(text.lower())
    vector = [float(sum(1 for word in words if word.startswith(term))) for term in VOCABULARY]
    vector.append(0.1)
    return vector


async def seed_chunks(session_factory, rows, document_id="doc_kb", filename="faq.md"):
    """Insert one document and an embedded chunk per ``(chunk_id, content, token_count)`` row."""
    async with session_scope(session_factory) as session:
        session.add(Document(id=document_id, filename=filename, mime_type="text/markdown", status="processed"))
        await session.flush()
        for index, (chunk_id, content, token_count) in enumerate(rows):
            session.add(
                Chunk(
                    id=chunk_id,
                    document_id=document_id,
                    chunk_index=index,
                    content=content,
                    token_count=token_count,
                    embedding=vector_to_bytes(keyword_vector(content)),
                    metadata_json=ChunkMetadata(source_file=filename, document_id=document_id).to_json(),
                )
            )


class FakeEmbeddingClient:
    """Stands in for ``AsyncOpenAI``; only ``embeddings.create`` is used."""

    def __init__(self, fail_times: int = 0, vectors: Optional[Dict[str, List[float]]] = None):
        self.calls: List[List[str]] = []
        self.fail_times = fail_times
        self.vectors = vectors or {}
        self.embeddings = SimpleNamespace(create=self._create)

    async def _create(self, model: str, input: Sequence[str]):
        self.calls.append(list(input))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("embedding provider unavailable")
        data = [
            SimpleNamespace(index=i, embedding=self.vectors.get(text) or keyword_vector(text))
            for i, text in enumerate(input)
        ]
        # the provider does not guarantee order; ``index`` is authoritative
        return SimpleNamespace(data=list(reversed(data)))


class FakeStream:
    """Async iterator of LiteLLM-style streaming chunks."""

    def __init__(self, tokens: Sequence[str], fail_after: Optional[int] = None, delay: float = 0.0):
        self._tokens = list(tokens)
        self._fail_after = fail_after
        self._delay = delay
        self._position = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._fail_after is not None and self._position >= self._fail_after:
            raise RuntimeError("stream interrupted")
        if self._position >= len(self._tokens):
            raise StopAsyncIteration
        if self._delay:
            await asyncio.sleep(self._delay)
        token = self._tokens[self._position]
        self._position += 1
        return {"choices": [{"delta": {"content": token}}]}

    async def aclose(self):
        self.closed = True


class FakeCompletion:
    """Stands in for ``litellm.acompletion`` with ``stream=True``."""

    def __init__(
        self,
        tokens: Sequence[str] = ("Refunds ", "are accepted ", "within 30 days."),
        fail_on_call: bool = False,
        fail_after: Optional[int] = None,
        delay: float = 0.0,
    ):
        self.tokens = list(tokens)
        self.fail_on_call = fail_on_call
        self.fail_after = fail_after
        self.delay = delay
        self.calls: List[dict] = []
        self.streams: List[FakeStream] = []

    async def __call__(self, **params):
        self.calls.append(params)
        if self.fail_on_call:
            raise RuntimeError("completion provider unavailable")
        stream = FakeStream(self.tokens, fail_after=self.fail_after, delay=self.delay)
        self.streams.append(stream)
        return stream


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment's providers and paths."""
    return Settings(
        database=DatabaseSettings(url=TEST_DATABASE_URL),
        embedding=EmbeddingSettings(
            openai_api_key="test-key",
            embedding_dimension=EMBEDDING_DIMENSION,
            max_retries=1,
        ),
        llm=LLMSettings(openai_api_key="test-key"),
        chunking=ChunkingSettings(),
        cache=CacheSettings(load_on_startup=False),
        jobs=JobQueueSettings(poll_interval_seconds=0.01, max_attempts=3),
        upload=UploadSettings(directory=str(tmp_path / "uploads")),
        bot=BotSettings(similarity_threshold=0.5),
    )


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def services(settings, engine, embedding_client, completion):
    """Fully wired service container backed by the in-memory database and fakes."""
    services = build_services(
        settings, engine, embedding_client=embedding_client, completion_fn=completion
    )
    services.register_job_handlers()
    return services


@pytest.fixture
def app(services):
    from kb_assistant.main import create_app

    return create_app(services=services)


@pytest.fixture
async def client(app):
    """HTTP client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def api_headers():
    return {"X-API-Key": "widget-key-1"}
