"""Tests for the reflection engine."""

import pytest

from cognition.config import CognitionConfig
from cognition.errors import MalformedQuestions, ServiceUnavailable
from cognition.memory import MemoryKind, ReflectionNode
from cognition.reflect import (
    HEURISTIC_QUESTIONS,
    META_QUESTION,
    ReflectionEngine,
    parse_insight,
    parse_questions,
    parse_rating,
)
from cognition.retrieve import RetrievalScorer
from doubles import DIMENSION, ScriptedLLM, failing_on


def make_engine(store, llm, **overrides):
    config = CognitionConfig(embedding_dimension=DIMENSION, **overrides)
    return ReflectionEngine(store, RetrievalScorer(store, config), llm, config, agent_name="Alice")


async def observe(store, engine, count, importance, start=0):
    """Append observations, polling the engine after each like an agent does."""
    created = []
    for i in range(count):
        await store.append(
            f"Alice noticed thing {start + i} in the garden",
            MemoryKind.OBSERVATION,
            importance,
            now=start + i,
        )
        created.extend(await engine.maybe_reflect(now=start + i))
    return created


def assert_layered(store):
    """Every reflection's level is one above its highest reflection parent."""
    for node in store.reflections():
        parents = [store.get(pid) for pid in node.parent_ids]
        assert parents
        assert all(p.created_at <= node.created_at for p in parents)
        levels = [p.level for p in parents if isinstance(p, ReflectionNode)]
        assert node.level == (max(levels) + 1 if levels else 0)


class TestParsing:
    """Tests for response parsing helpers."""

    def test_labeled_questions(self):
        """Test parsing labeled questions."""
        response = "QUESTION_1: Why?\nQUESTION_2: Who?\nQUESTION_3: Where?"

        assert parse_questions(response) == ["Why?", "Who?", "Where?"]

    def test_numbered_questions(self):
        """Test parsing numbered questions."""
        response = "Here you go:\n1. Why?\n2) Who?\n3. Where?"

        assert parse_questions(response) == ["Why?", "Who?", "Where?"]

    def test_missing_question_is_malformed(self):
        """Test that a missing question is malformed."""
        with pytest.raises(MalformedQuestions):
            parse_questions("QUESTION_1: Why?\nQUESTION_3: Where?")
        with pytest.raises(MalformedQuestions):
            parse_questions("I have no idea.")

    def test_insight(self):
        """Test parsing an insight."""
        assert parse_insight("INSIGHT: I like gardens. They calm me. Also birds.") == (
            "I like gardens. They calm me."
        )
        assert parse_insight('"Routine shapes my day."') == "Routine shapes my day."
        assert parse_insight("   ") == ""

    def test_rating(self):
        """Test parsing a rating."""
        assert parse_rating("8") == 8
        assert parse_rating("I'd say 12 out of 10") == 10
        assert parse_rating("zero") is None


class TestReflectionTrigger:
    """Tests for the accumulator and pass triggering."""

    @pytest.mark.asyncio
    async def test_twenty_observations_fire_one_pass(self, store, llm):
        """Test that twenty observations fire one pass."""
        engine = make_engine(store, llm)
        fired_at = []

        for i in range(20):
            await store.append(f"Alice saw thing {i}", MemoryKind.OBSERVATION, 8, now=i)
            if await engine.maybe_reflect(now=i):
                fired_at.append(i + 1)

        assert fired_at == [19]
        assert engine.passes_fired == 1
        assert store.accumulator.resets == 1

        reflections = store.reflections(level=0)
        assert len(reflections) >= 1
        for node in reflections:
            assert node.parent_ids
            assert all(store.get(pid).kind is not MemoryKind.REFLECTION for pid in node.parent_ids)
        assert_layered(store)

    @pytest.mark.asyncio
    async def test_accumulator_resets_when_pass_fires(self, store, llm):
        """Test resetting the accumulator when a pass fires."""
        engine = make_engine(store, llm, reflection_threshold=20, rate_reflection_importance=False)

        await observe(store, engine, 2, 9)
        assert engine.accumulator == 18

        created = await observe(store, engine, 1, 9, start=2)

        # Reset to zero, then raised only by the new reflections.
        assert engine.accumulator == 8 * len(created)

    @pytest.mark.asyncio
    async def test_below_threshold_does_nothing(self, store, llm):
        """Test that nothing happens below the threshold."""
        engine = make_engine(store, llm)

        assert await observe(store, engine, 5, 8) == []
        assert llm.prompts == []


class TestReflectionPass:
    """Tests for the contents of a reflection pass."""

    @pytest.mark.asyncio
    async def test_pass_produces_three_grounded_reflections(self, store, llm):
        """Test that a pass produces three grounded reflections."""
        engine = make_engine(store, llm, reflection_threshold=30)

        created = await observe(store, engine, 4, 8)

        assert len(created) == 3
        assert [n.question for n in created] == [
            "What do my recent experiences say about my priorities?",
            "Which places and people have mattered most lately?",
            "What should I do differently tomorrow?",
        ]
        for node in created:
            assert node.level == 0
            assert node.importance == 7
            assert list(node.parent_ids) == sorted(node.parent_ids)
        assert "QUESTION_1" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_malformed_questions_use_fallback(self, store):
        """Test heuristic questions for a malformed reply."""
        llm = ScriptedLLM("Let me think about that.")
        engine = make_engine(store, llm, reflection_threshold=10)

        created = await observe(store, engine, 2, 5)

        assert [n.question for n in created] == list(HEURISTIC_QUESTIONS)
        assert engine.fallback_questions == 1

    @pytest.mark.asyncio
    async def test_fixed_importance_when_rating_disabled(self, store, llm):
        """Test fixed importance when rating is disabled."""
        engine = make_engine(store, llm, reflection_threshold=10, rate_reflection_importance=False)

        created = await observe(store, engine, 2, 5)

        assert created
        assert all(node.importance == 8 for node in created)
        assert not any("Rate the poignancy" in p for p in llm.prompts)

    @pytest.mark.asyncio
    async def test_unusable_rating_uses_default(self, store):
        """Test the default importance for an unusable rating."""
        llm = ScriptedLLM(handler=lambda p: "very important" if "poignancy" in p else None)
        engine = make_engine(store, llm, reflection_threshold=10)

        created = await observe(store, engine, 2, 5)

        assert created
        assert all(node.importance == 8 for node in created)

    @pytest.mark.asyncio
    async def test_empty_insight_is_skipped(self, store):
        """Test skipping an empty insight."""
        llm = ScriptedLLM(handler=lambda p: "   " if p.rstrip().endswith("INSIGHT:") else None)
        engine = make_engine(store, llm, reflection_threshold=10)

        created = await observe(store, engine, 2, 5)

        assert created == []
        assert engine.passes_abandoned == 0

    @pytest.mark.asyncio
    async def test_service_failure_abandons_pass(self, store):
        """Test abandoning a pass when the service fails."""
        llm = ScriptedLLM(ServiceUnavailable("down"))
        engine = make_engine(store, llm, reflection_threshold=10)

        created = await observe(store, engine, 2, 5)

        assert created == []
        assert engine.passes_abandoned == 1
        assert engine.accumulator == 0

        # The same importance does not trigger again.
        await observe(store, engine, 1, 1, start=2)
        assert engine.passes_fired == 1

    @pytest.mark.asyncio
    async def test_failure_mid_pass_keeps_earlier_reflections(self, store):
        """Test keeping earlier reflections after a mid-pass failure."""
        calls = {"insights": 0}

        def handler(prompt):
            if prompt.rstrip().endswith("INSIGHT:"):
                calls["insights"] += 1
                if calls["insights"] == 2:
                    raise ServiceUnavailable("timeout")
            return None

        engine = make_engine(store, ScriptedLLM(handler=handler), reflection_threshold=10)

        created = await observe(store, engine, 2, 5)

        assert len(created) == 1
        assert len(store.reflections()) == 1
        assert engine.passes_abandoned == 1

    @pytest.mark.asyncio
    async def test_reflect_on_topic(self, store, llm):
        """Test reflecting on a topic."""
        engine = make_engine(store, llm)
        await observe(store, engine, 3, 4)

        node = await engine.reflect_on("How do I feel about the garden?", now=3)

        assert node is not None
        assert node.question == "How do I feel about the garden?"
        assert node.level == 0
        assert engine.passes_fired == 0


class TestMetaReflection:
    """Tests for recursive meta-reflection."""

    @pytest.mark.asyncio
    async def test_meta_reflection_consumes_pending(self, store, llm):
        """Test that meta-reflection consumes pending reflections."""
        engine = make_engine(store, llm, reflection_threshold=10, meta_reflection_threshold=3)

        created = await observe(store, engine, 2, 5)

        level0 = store.reflections(level=0)
        level1 = store.reflections(level=1)
        assert len(level0) == 3
        assert len(level1) == 1
        assert created[-1] is level1[0]
        assert level1[0].question == META_QUESTION
        assert set(level1[0].parent_ids) == {n.id for n in level0}
        assert engine.pending(0) == []
        assert_layered(store)

    @pytest.mark.asyncio
    async def test_meta_reflection_recurses(self, store, llm):
        """Test recursive meta-reflection."""
        engine = make_engine(
            store,
            llm,
            reflection_threshold=10,
            meta_reflection_threshold=2,
            rate_reflection_importance=False,
        )

        await observe(store, engine, 2, 5)

        # 3 level-0 insights fold into one level-1 node; a single node cannot fold further.
        assert len(store.reflections(level=0)) == 3
        assert len(store.reflections(level=1)) == 1
        assert store.reflections(level=2) == []

        # The pass's own reflections pushed the accumulator over again.
        await observe(store, engine, 1, 1, start=2)

        assert len(store.reflections(level=1)) == 2
        assert len(store.reflections(level=2)) == 1
        assert_layered(store)

    @pytest.mark.asyncio
    async def test_failed_meta_step_stays_pending(self, store):
        """Test that a failed meta step stays pending."""
        engine = make_engine(
            store,
            ScriptedLLM(handler=failing_on("META-INSIGHT")),
            reflection_threshold=10,
            meta_reflection_threshold=3,
        )

        await observe(store, engine, 2, 5)

        assert store.reflections(level=1) == []
        assert len(engine.pending(0)) == 3
        assert engine.meta_failures == 1
        assert engine.passes_abandoned == 0

        engine.llm = ScriptedLLM()
        await observe(store, engine, 1, 5, start=2)

        meta = store.reflections(level=1)
        assert len(meta) == 1
        assert len(meta[0].parent_ids) == 6
        assert engine.pending(0) == []

    @pytest.mark.asyncio
    async def test_statistics(self, store, llm):
        """Test getting statistics."""
        engine = make_engine(store, llm, reflection_threshold=10, meta_reflection_threshold=3)
        await observe(store, engine, 2, 5)

        stats = engine.statistics()

        assert stats["passes_fired"] == 1
        assert stats["reflections_by_level"] == {0: 3, 1: 1}
        assert stats["pending_by_level"] == {0: 0, 1: 1}
