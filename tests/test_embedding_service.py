"""Unit tests for the embedding service."""

import pytest

from kb_assistant.config import EmbeddingSettings
from kb_assistant.services.embedding_service import EmbeddingService
from kb_assistant.utils.errors import EmbeddingError

from conftest import EMBEDDING_DIMENSION, FakeEmbeddingClient, keyword_vector


def make_service(client, **overrides):
    settings = EmbeddingSettings(
        openai_api_key="test-key",
        embedding_dimension=overrides.pop("dimension", EMBEDDING_DIMENSION),
        max_retries=overrides.pop("max_retries", 1),
    )
    return EmbeddingService(settings=settings, client=client, **overrides)


class TestBatching:
    """Test batch splitting and ordering."""

    @pytest.mark.asyncio
    async def test_250_texts_make_three_calls(self):
        client = FakeEmbeddingClient()
        service = make_service(client)
        texts = [f"text {i}" for i in range(250)]

        vectors = await service.embed(texts)

        assert [len(call) for call in client.calls] == [100, 100, 50]
        assert len(vectors) == 250

    @pytest.mark.asyncio
    async def test_results_follow_input_order(self):
        """The fake provider returns items reversed; ``index`` restores the order."""
        client = FakeEmbeddingClient()
        service = make_service(client)
        texts = ["refund refund", "shipping", "password reset"]

        vectors = await service.embed(texts)

        for text, vector in zip(texts, vectors):
            assert vector.tolist() == pytest.approx(keyword_vector(text))

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_call(self):
        client = FakeEmbeddingClient()
        service = make_service(client)

        assert await service.embed([]) == []
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_embed_one(self):
        service = make_service(FakeEmbeddingClient())
        vector = await service.embed_one("warranty")
        assert vector.shape == (EMBEDDING_DIMENSION,)


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_failure_raises_embedding_error(self):
        service = make_service(FakeEmbeddingClient(fail_times=5))
        with pytest.raises(EmbeddingError):
            await service.embed(["anything"])

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        client = FakeEmbeddingClient(fail_times=1)
        service = make_service(client, max_retries=2)

        vectors = await service.embed(["support"])

        assert len(client.calls) == 2
        assert len(vectors) == 1

    @pytest.mark.asyncio
    async def test_retry_disabled_makes_one_call(self):
        client = FakeEmbeddingClient(fail_times=1)
        service = make_service(client, max_retries=3)

        with pytest.raises(EmbeddingError):
            await service.embed_one("support", retry=False)

        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self):
        service = make_service(FakeEmbeddingClient(), dimension=3)
        with pytest.raises(EmbeddingError) as exc_info:
            await service.embed(["pricing"])
        assert exc_info.value.details["expected_dimension"] == 3

    @pytest.mark.asyncio
    async def test_missing_api_key_without_client(self):
        service = EmbeddingService(settings=EmbeddingSettings(openai_api_key=None, max_retries=1))
        with pytest.raises(EmbeddingError):
            await service.embed(["anything"])
