"""Embedding generation service (OpenAI embeddings API)."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

import numpy as np
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from kb_assistant.config import EmbeddingSettings, get_settings
from kb_assistant.services.embedding_cache import as_vector
from kb_assistant.utils.errors import EmbeddingError
from kb_assistant.utils.logging import get_logger

logger = get_logger("embedding_service")


class EmbeddingService:
    """
    Batch text -> vector client.

    Inputs are sent in groups of at most ``batch_size``, one provider call per
    batch, sequentially; results are concatenated in input order. Any batch
    that still fails after retries raises ``EmbeddingError``; nothing is
    silently dropped.
    """

    def __init__(
        self,
        settings: Optional[EmbeddingSettings] = None,
        client: Any = None,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        self._settings = settings or get_settings().embedding
        self.model_name = self._settings.embedding_model
        self.batch_size = max(1, batch_size or self._settings.batch_size)
        self.max_retries = max(1, max_retries or self._settings.max_retries)
        self.dimension = self._settings.embedding_dimension
        self._client = client  # lazy

    def _get_client(self):
        """Create the OpenAI client on first use."""
        if self._client is not None:
            return self._client

        from openai import AsyncOpenAI

        if not self._settings.openai_api_key:
            raise EmbeddingError(
                "OPENAI_API_KEY is required for embeddings",
                model=self.model_name,
            )
        self._client = AsyncOpenAI(
            api_key=self._settings.openai_api_key,
            base_url=self._settings.openai_base_url,
            timeout=self._settings.timeout,
        )
        return self._client

    async def _embed_batch(self, inputs: List[str]) -> List[List[float]]:
        """Embed one batch of texts."""
        client = self._get_client()
        try:
            resp = await client.embeddings.create(model=self.model_name, input=inputs)
        except Exception as e:
            raise EmbeddingError(f"Embedding request failed: {e}", model=self.model_name) from e
        # the API may return items out of order; ``index`` is authoritative
        data = sorted(resp.data, key=lambda d: getattr(d, "index", 0))
        return [d.embedding for d in data]

    async def _embed_batch_with_retry(self, inputs: List[str], attempts: int) -> List[List[float]]:
        """Embed a batch with retry logic (rate limits, transient failures)."""
        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception_type(EmbeddingError),
        ):
            with attempt:
                return await self._embed_batch(inputs)
        # unreachable due to reraise=True, but keeps type checkers happy
        raise EmbeddingError("Embedding retries exhausted", model=self.model_name)

    async def embed(self, texts: Sequence[str], retry: bool = True) -> List[np.ndarray]:
        """
        Embed texts in input order.

        Args:
            texts: Texts to embed
            retry: Retry failed batches up to ``max_retries`` attempts. Callers
                on a latency-bound path pass False and get one provider call
                per batch.

        Returns:
            One read-only float32 vector per input text
        """
        if not texts:
            return []

        logger.info(
            f"Generating embeddings: model={self.model_name}, "
            f"texts={len(texts)}, batch_size={self.batch_size}"
        )

        attempts = self.max_retries if retry else 1
        out: List[np.ndarray] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            vectors = await self._embed_batch_with_retry(batch, attempts)
            if len(vectors) != len(batch):
                raise EmbeddingError(
                    "Embedding response size mismatch",
                    model=self.model_name,
                    details={"expected": len(batch), "got": len(vectors)},
                )
            for vector in vectors:
                if self.dimension is not None and len(vector) != self.dimension:
                    raise EmbeddingError(
                        "Embedding dimension mismatch",
                        model=self.model_name,
                        details={
                            "expected_dimension": self.dimension,
                            "actual_dimension": len(vector),
                        },
                    )
                out.append(as_vector(vector))

        logger.debug(f"Embeddings generated: count={len(out)}")
        return out

    async def embed_one(self, text: str, retry: bool = True) -> np.ndarray:
        return (await self.embed([text], retry=retry))[0]
