"""Similarity search over chunk embeddings."""

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from kb_assistant.database.session import SessionFactory
from kb_assistant.models.chunk import ChunkMetadata
from kb_assistant.models.retrieval import RetrievedChunk
from kb_assistant.repositories.chunk_repository import ChunkRepository
from kb_assistant.services.embedding_cache import EmbeddingCache, vector_from_bytes
from kb_assistant.services.embedding_service import EmbeddingService
from kb_assistant.utils.errors import EmbeddingError, RetrievalError
from kb_assistant.utils.logging import get_logger

logger = get_logger("retrieval_service")


def cosine_similarity(a, b) -> float:
    """``dot(a, b) / (|a| * |b|)``; 0.0 when either vector has zero norm."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``."""
    query = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float64)
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, dots / denom, 0.0)
    return scores


class RetrievalService:
    """
    Two-phase brute-force retriever.

    Phase 1 scores every stored embedding (cache first, store on miss) and
    keeps those at or above the threshold. Phase 2 loads content only for the
    best ``overfetch_factor * top_k`` candidates and greedily accepts them in
    score order, skipping any chunk that would overrun the token budget.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        embedding_service: EmbeddingService,
        cache: EmbeddingCache,
        overfetch_factor: int = 3,
        score_batch_size: int = 1000,
    ):
        self._session_factory = session_factory
        self._embeddings = embedding_service
        self._cache = cache
        self.overfetch_factor = max(1, overfetch_factor)
        self.score_batch_size = max(1, score_batch_size)

    async def search(
        self,
        query: str,
        similarity_threshold: float,
        top_k: int,
        token_budget: Optional[int] = None,
    ) -> List[RetrievedChunk]:
        """
        Find the chunks most similar to ``query``.

        Args:
            query: Free-text query
            similarity_threshold: Minimum cosine similarity (inclusive)
            top_k: Maximum number of chunks returned
            token_budget: Cap on the summed token counts; None means unbounded

        Returns:
            Chunks ranked by similarity, descending
        """
        if top_k <= 0 or not query.strip():
            return []

        try:
            # one provider call; a chat turn degrades to no context instead of waiting
            query_vector = await self._embeddings.embed_one(query, retry=False)
        except EmbeddingError:
            raise
        except Exception as e:
            raise RetrievalError(f"Query embedding failed: {e}") from e

        async with self._session_factory() as session:
            repo = ChunkRepository(session)
            candidates = await self._score_all(repo, query_vector, similarity_threshold)
            if not candidates:
                logger.debug("Retrieval found no candidates above threshold")
                return []

            shortlist = candidates[: self.overfetch_factor * top_k]
            scores = dict(shortlist)
            rows = await repo.get_many([chunk_id for chunk_id, _ in shortlist])

        # rows deleted between the phases simply drop out
        rows.sort(key=lambda row: (-scores[row.id], row.id))

        selected: List[RetrievedChunk] = []
        used_tokens = 0
        for row in rows:
            if token_budget is not None and used_tokens + row.token_count > token_budget:
                continue
            selected.append(
                RetrievedChunk(
                    chunk_id=row.id,
                    document_id=row.document_id,
                    chunk_index=row.chunk_index,
                    content=row.content,
                    token_count=row.token_count,
                    similarity=scores[row.id],
                    metadata=ChunkMetadata.from_json(row.metadata_json),
                )
            )
            used_tokens += row.token_count
            if len(selected) >= top_k:
                break

        logger.info(
            f"Retrieval complete: candidates={len(candidates)}, selected={len(selected)}, "
            f"tokens={used_tokens}"
        )
        return selected

    async def _score_all(
        self,
        repo: ChunkRepository,
        query_vector: np.ndarray,
        threshold: float,
    ) -> List[Tuple[str, float]]:
        keys = await repo.list_embedded_keys()
        if not keys:
            return []

        vectors: Dict[str, np.ndarray] = {}
        misses: List[Tuple[str, str]] = []
        for chunk_id, document_id in keys:
            vector = self._cache.get(chunk_id)
            if vector is None:
                misses.append((chunk_id, document_id))
            else:
                vectors[chunk_id] = vector

        if misses:
            await self._load_misses(repo, misses, vectors)
            logger.debug(f"Embedding cache misses served from store: {len(misses)}")

        ids: List[str] = []
        rows: List[np.ndarray] = []
        dimension = query_vector.shape[0]
        for chunk_id, _ in keys:
            vector = vectors.get(chunk_id)
            if vector is None:
                continue
            if vector.shape[0] != dimension:
                logger.warning(
                    f"Skipping chunk {chunk_id}: dimension {vector.shape[0]} != {dimension}"
                )
                continue
            ids.append(chunk_id)
            rows.append(vector)

        if not rows:
            return []

        scores = cosine_scores(query_vector, np.vstack(rows))
        candidates = [
            (chunk_id, float(score))
            for chunk_id, score in zip(ids, scores)
            if score >= threshold
        ]
        candidates.sort(key=lambda item: (-item[1], item[0]))
        return candidates

    async def _load_misses(
        self,
        repo: ChunkRepository,
        misses: Sequence[Tuple[str, str]],
        vectors: Dict[str, np.ndarray],
    ) -> None:
        for start in range(0, len(misses), self.score_batch_size):
            batch = misses[start : start + self.score_batch_size]
            found = await repo.get_embeddings([chunk_id for chunk_id, _ in batch])
            for chunk_id, document_id, raw in found.values():
                vector = vector_from_bytes(raw)
                self._cache.set(chunk_id, vector, document_id)
                vectors[chunk_id] = vector
