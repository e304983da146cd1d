"""Tests for memory retrieval scoring."""

import pytest

from cognition.config import CognitionConfig
from cognition.errors import InvalidInput
from cognition.memory import MemoryKind
from cognition.retrieve import RetrievalScorer
from doubles import DIMENSION


def weighted(importance=0.0, recency=0.0, relevance=0.0, **overrides):
    return CognitionConfig(
        embedding_dimension=DIMENSION,
        importance_weight=importance,
        recency_weight=recency,
        relevance_weight=relevance,
        **overrides,
    )


class TestRetrievalScorer:
    """Tests for RetrievalScorer.retrieve."""

    @pytest.mark.asyncio
    async def test_fewer_memories_than_k(self, store, scorer):
        """Test retrieving with fewer memories than k."""
        for i in range(3):
            await store.append(f"event {i}", MemoryKind.OBSERVATION, 3, now=i)

        results = await scorer.retrieve("event", 5, now=3)

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_empty_store(self, scorer):
        """Test retrieving from an empty store."""
        assert await scorer.retrieve("anything", 3, now=0) == []

    @pytest.mark.asyncio
    async def test_at_most_k_sorted_by_score(self, store, scorer):
        """Test returning at most k, sorted by score."""
        for i in range(12):
            await store.append(f"memory number {i}", MemoryKind.OBSERVATION, i % 10 + 1, now=i)

        results = await scorer.retrieve("memory number 4", 5, now=20)

        assert len(results) == 5
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= r.score <= 1.0 for r in results)

    @pytest.mark.asyncio
    async def test_ties_break_by_recency_then_id(self, store):
        """Test breaking ties by recency, then id."""
        scorer = RetrievalScorer(store, weighted(importance=1.0))
        first = await store.append("alpha", MemoryKind.OBSERVATION, 5, now=0)
        second = await store.append("beta", MemoryKind.OBSERVATION, 5, now=5)
        third = await store.append("gamma", MemoryKind.OBSERVATION, 5, now=5)

        results = await scorer.retrieve("anything", 3, now=5)

        assert [r.memory.id for r in results] == [second.id, third.id, first.id]
        assert len({r.score for r in results}) == 1

    @pytest.mark.asyncio
    async def test_deterministic(self, store, scorer):
        """Test that scoring is deterministic."""
        for i in range(6):
            await store.append(f"walked past door {i}", MemoryKind.OBSERVATION, 4, now=0)

        first = await scorer.retrieve("door", 4, now=0)
        second = await scorer.retrieve("door", 4, now=0)

        assert [r.memory.id for r in first] == [r.memory.id for r in second]

    @pytest.mark.asyncio
    async def test_importance_component(self, store):
        """Test the importance component."""
        scorer = RetrievalScorer(store, weighted(importance=1.0))
        await store.append("minor", MemoryKind.OBSERVATION, 2, now=0)
        major = await store.append("major", MemoryKind.OBSERVATION, 9, now=0)

        results = await scorer.retrieve("anything", 1, now=0)

        assert results[0].memory is major
        assert results[0].importance == pytest.approx(0.9)
        assert results[0].score == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_recency_decay(self, store):
        """Test recency decay."""
        scorer = RetrievalScorer(store, weighted(recency=1.0, decay_rate=0.5))
        old = await store.append("old news", MemoryKind.OBSERVATION, 5, now=0)
        await store.append("fresh news", MemoryKind.OBSERVATION, 5, now=2)

        results = await scorer.retrieve("news", 2, now=2)

        assert results[0].memory.content == "fresh news"
        assert results[0].recency == pytest.approx(1.0)
        assert results[1].memory is old
        assert results[1].recency == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_relevance_of_identical_text(self, store):
        """Test relevance of identical text."""
        scorer = RetrievalScorer(store, weighted(relevance=1.0))
        await store.append("the red door is locked", MemoryKind.OBSERVATION, 5, now=0)
        await store.append("a bird sang outside", MemoryKind.OBSERVATION, 5, now=0)

        results = await scorer.retrieve("the red door is locked", 2, now=0)

        assert results[0].memory.content == "the red door is locked"
        assert results[0].relevance == pytest.approx(1.0)
        assert 0.0 <= results[1].relevance < 1.0

    @pytest.mark.asyncio
    async def test_retrieval_reinforces_returned_memories(self, store):
        """Test that retrieval reinforces returned memories."""
        recency = RetrievalScorer(store, weighted(recency=1.0))
        relevance = RetrievalScorer(store, weighted(relevance=1.0))
        old = await store.append("the cellar smells of damp", MemoryKind.OBSERVATION, 5, now=0)
        new = await store.append("a lamp flickered", MemoryKind.OBSERVATION, 5, now=5)

        results = await relevance.retrieve("the cellar smells of damp", 1, now=20)

        assert results[0].memory is old
        assert old.last_accessed == 20
        assert new.last_accessed is None

        ranked = await recency.retrieve("anything", 2, now=20)
        assert [r.memory for r in ranked] == [old, new]

    @pytest.mark.asyncio
    async def test_kind_filter(self, store, scorer):
        """Test filtering by kind."""
        await store.append("saw a cat", MemoryKind.OBSERVATION, 5, now=0)
        await store.append("go find the cat", MemoryKind.PLAN, 5, now=0)

        results = await scorer.retrieve("cat", 5, now=0, kinds=[MemoryKind.PLAN])

        assert [r.memory.kind for r in results] == [MemoryKind.PLAN]

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, store, scorer):
        """Test rejecting invalid arguments."""
        await store.append("something", MemoryKind.OBSERVATION, 5, now=10)

        with pytest.raises(InvalidInput):
            await scorer.retrieve("query", 0, now=10)
        with pytest.raises(InvalidInput):
            await scorer.retrieve("", 3, now=10)
        with pytest.raises(InvalidInput):
            await scorer.retrieve("query", 3, now=9)
        with pytest.raises(InvalidInput):
            await scorer.retrieve("query", 3, now=10, kinds=["dream"])

    def test_weights_are_normalized(self):
        """Test normalizing retrieval weights."""
        config = weighted(importance=2.0, recency=1.0, relevance=1.0)

        assert config.normalized_weights() == pytest.approx((0.5, 0.25, 0.25))
