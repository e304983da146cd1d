"""
Retrieve module - recalls relevant memories.

Memories are ranked against a query by a weighted sum of importance,
recency and relevance (semantic similarity). Retrieval reinforces the
returned memories: their last-access time moves to ``now``, which keeps
them fresh for future recency scoring.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from cognition.config import CognitionConfig
from cognition.errors import InvalidInput
from cognition.memory import Memory, MemoryKind, MemoryStore, coerce_kind
from services.embeddings import cosine_similarity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoredMemory:
    """A retrieved memory with its combined score and the components behind it."""

    memory: Memory
    score: float
    importance: float
    recency: float
    relevance: float

    def to_dict(self) -> dict:
        return {
            "id": self.memory.id,
            "content": self.memory.content,
            "score": round(self.score, 4),
            "importance": round(self.importance, 4),
            "recency": round(self.recency, 4),
            "relevance": round(self.relevance, 4),
        }


class RetrievalScorer:
    """Ranks one agent's memories against a query."""

    def __init__(self, store: MemoryStore, config: CognitionConfig):
        self.store = store
        self.config = config

    def score(
        self,
        memory: Memory,
        query_embedding: tuple[float, ...],
        now: int,
    ) -> ScoredMemory:
        """Score a single memory without touching its access time."""
        w_importance, w_recency, w_relevance = self.config.normalized_weights()

        importance = memory.importance / 10.0
        elapsed = max(now - memory.reference_time, 0)
        recency = self.config.decay_rate**elapsed
        relevance = (cosine_similarity(query_embedding, memory.embedding) + 1.0) / 2.0

        total = w_importance * importance + w_recency * recency + w_relevance * relevance
        return ScoredMemory(
            memory=memory,
            score=total,
            importance=importance,
            recency=recency,
            relevance=relevance,
        )

    def rank(
        self,
        candidates: Iterable[Memory],
        query_embedding: tuple[float, ...],
        now: int,
    ) -> list[ScoredMemory]:
        """
        Score and sort candidates.

        Ordering is by descending score, then by more recent reference time,
        then by id ascending.
        """
        scored = [self.score(memory, query_embedding, now) for memory in candidates]
        scored.sort(key=lambda s: (-s.score, -s.memory.reference_time, s.memory.id))
        return scored

    async def retrieve(
        self,
        query: str,
        k: int,
        now: int,
        *,
        kinds: Iterable[MemoryKind | str] | None = None,
    ) -> list[ScoredMemory]:
        """
        Retrieve the top-k memories for a query.

        Args:
            query: Natural-language query.
            k: Maximum number of results.
            now: Current simulation tick.
            kinds: Restrict candidates to these memory kinds.

        Returns:
            Up to k scored memories, best first. Fewer than k memories in the
            store means all of them are returned.

        Raises:
            InvalidInput: Empty query, non-positive k, or ``now`` before the
                newest memory.
        """
        if not query or not query.strip():
            raise InvalidInput("Retrieval query must not be empty")
        if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
            raise InvalidInput(f"k must be a positive integer, got {k!r}")
        last = self.store.last_time
        if last is not None and now < last:
            raise InvalidInput(f"Retrieval time {now} is before the newest memory ({last})")

        if kinds is None:
            candidates = list(self.store.get_all())
        else:
            allowed = {coerce_kind(kind) for kind in kinds}
            candidates = [m for m in self.store.get_all() if m.kind in allowed]

        if not candidates:
            return []

        query_embedding = await self.store.embed(query)

        results = self.rank(candidates, query_embedding, now)[:k]
        for result in results:
            result.memory.last_accessed = now

        logger.debug(
            f"{self.store.agent_id}: retrieved {len(results)}/{len(candidates)} memories "
            f"for '{query[:40]}'"
        )
        return results
