"""
Reflect module - forms higher-level insights from memories.

When the importance accumulated since the last pass reaches the threshold,
the agent asks itself a few high-level questions about its recent
observations, gathers evidence for each, and records the answers as
level-0 reflections. Once enough reflections of one level are waiting, they
are folded into a single reflection one level up.
"""

import logging
import re
from typing import Any

from cognition.config import CognitionConfig
from cognition.errors import MalformedQuestions, MalformedResponse, ServiceFailure
from cognition.memory import Memory, MemoryKind, MemoryStore, ReflectionNode
from cognition.retrieve import RetrievalScorer
from services.llm import LanguageModel

logger = logging.getLogger(__name__)

QUESTION_COUNT = 3

HEURISTIC_QUESTIONS = (
    "What have I been spending most of my time on?",
    "Who and what has mattered most to me recently?",
    "What should I change about how I act?",
)

META_QUESTION = "What broader pattern unifies these insights?"

EVIDENCE_KINDS = (MemoryKind.OBSERVATION, MemoryKind.PLAN, MemoryKind.DIALOGUE)

_LABELED_QUESTION = re.compile(r"^\s*QUESTION[_\s]*(\d+)\s*[:.)-]\s*(.+?)\s*$", re.IGNORECASE)
_NUMBERED_QUESTION = re.compile(r"^\s*(\d+)\s*[.):-]\s*(.+?)\s*$")
_INSIGHT_LABEL = re.compile(r"^\s*(?:META[-_ ]?)?INSIGHT\s*:\s*", re.IGNORECASE)
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def parse_questions(response: str) -> list[str]:
    """
    Parse exactly three questions from an LLM response.

    ``QUESTION_n:`` lines are preferred; plain numbered lines are accepted
    when no labeled lines are present.

    Raises:
        MalformedQuestions: If questions 1, 2 and 3 cannot all be found.
    """
    for pattern in (_LABELED_QUESTION, _NUMBERED_QUESTION):
        found: dict[int, str] = {}
        for line in response.splitlines():
            match = pattern.match(line)
            if match:
                number = int(match.group(1))
                text = match.group(2).strip().strip('"')
                if text and number not in found:
                    found[number] = text
        if found:
            wanted = range(1, QUESTION_COUNT + 1)
            if all(n in found for n in wanted):
                return [found[n] for n in wanted]
            raise MalformedQuestions(
                f"Expected questions 1-{QUESTION_COUNT}, got numbers {sorted(found)}"
            )

    raise MalformedQuestions("No numbered questions in response")


def parse_insight(response: str) -> str:
    """Strip any label and keep at most the first two sentences."""
    text = " ".join(line.strip() for line in response.strip().splitlines() if line.strip())
    text = _INSIGHT_LABEL.sub("", text).strip().strip('"').strip()
    sentences = [s for s in _SENTENCE_END.split(text) if s]
    return " ".join(sentences[:2])


def parse_rating(response: str) -> int | None:
    """First integer in the response clamped to 1-10, or None."""
    numbers = re.findall(r"\d+", response)
    if not numbers:
        return None
    return min(10, max(1, int(numbers[0])))


class ReflectionEngine:
    """
    Threshold-triggered reflection for one agent.

    The importance accumulator lives on the memory store; the engine reads it
    after every append and resets it when a pass fires, whether or not the
    pass succeeds.
    """

    def __init__(
        self,
        store: MemoryStore,
        scorer: RetrievalScorer,
        llm: LanguageModel,
        config: CognitionConfig,
        agent_name: str | None = None,
    ):
        self.store = store
        self.scorer = scorer
        self.llm = llm
        self.config = config
        self.agent_name = agent_name or store.agent_id

        self.passes_fired = 0
        self.passes_abandoned = 0
        self.meta_failures = 0
        self.fallback_questions = 0

    @property
    def accumulator(self) -> float:
        return self.store.accumulator.value

    def should_reflect(self) -> bool:
        return self.store.accumulator.value >= self.config.reflection_threshold

    def consumed_ids(self) -> set[str]:
        """Reflections already folded into a higher-level reflection."""
        consumed: set[str] = set()
        for node in self.store.reflections():
            if node.level >= 1:
                consumed.update(node.parent_ids)
        return consumed

    def pending(self, level: int) -> list[ReflectionNode]:
        """Reflections of ``level`` not yet folded into a meta-reflection."""
        consumed = self.consumed_ids()
        return [r for r in self.store.reflections(level) if r.id not in consumed]

    async def maybe_reflect(self, now: int) -> list[ReflectionNode]:
        """
        Fire a reflection pass if the accumulator has reached the threshold.

        Returns:
            Reflections created by the pass (including meta-reflections).
        """
        if not self.should_reflect():
            return []

        logger.info(
            f"{self.agent_name} reflecting at tick {now} "
            f"(accumulated importance {self.accumulator})"
        )
        self.store.accumulator.reset()
        return await self.run_pass(now)

    async def run_pass(self, now: int) -> list[ReflectionNode]:
        """Run one reflection pass followed by any meta-reflections it enables."""
        self.passes_fired += 1
        created: list[ReflectionNode] = []

        try:
            questions = await self._generate_questions()
            for question in questions:
                node = await self._answer(question, now)
                if node is not None:
                    created.append(node)
        except (ServiceFailure, MalformedResponse) as e:
            self.passes_abandoned += 1
            logger.error(
                f"{self.agent_name} abandoned reflection pass after "
                f"{len(created)} reflections: {e}"
            )
            return created

        created.extend(await self._meta_reflect(now))
        logger.info(f"{self.agent_name} generated {len(created)} reflections")
        return created

    async def reflect_on(self, topic: str, now: int) -> ReflectionNode | None:
        """
        Force a single reflection on a topic, outside the threshold cycle.

        Returns:
            The new reflection, or None if it could not be produced.
        """
        try:
            return await self._answer(topic, now)
        except (ServiceFailure, MalformedResponse) as e:
            logger.warning(f"{self.agent_name} failed to reflect on '{topic}': {e}")
            return None

    async def _generate_questions(self) -> list[str]:
        """Ask for the pass's questions, falling back to the fixed set."""
        observations = self.store.recent(self.config.reflection_window, MemoryKind.OBSERVATION)
        if not observations:
            observations = self.store.recent(self.config.reflection_window)

        memory_text = "\n".join(f"- {m.content}" for m in observations)
        prompt = f"""Given {self.agent_name}'s recent experiences, newest first:

{memory_text}

What are the {QUESTION_COUNT} most salient high-level questions {self.agent_name} could answer about these experiences? Focus on patterns, relationships, and self-understanding.

Respond in exactly this format:
QUESTION_1: [question]
QUESTION_2: [question]
QUESTION_3: [question]"""

        response = await self.store.lifetime.call(
            self.llm.complete(prompt, temperature=0.8, max_tokens=300)
        )

        try:
            return parse_questions(response)
        except MalformedQuestions as e:
            self.fallback_questions += 1
            logger.warning(f"{self.agent_name} using fallback reflection questions: {e}")
            return list(HEURISTIC_QUESTIONS)

    async def _answer(self, question: str, now: int) -> ReflectionNode | None:
        """Gather evidence for a question and record the insight."""
        evidence = await self.scorer.retrieve(
            question,
            self.config.reflection_evidence_k,
            now,
            kinds=EVIDENCE_KINDS,
        )
        if not evidence:
            logger.debug(f"{self.agent_name} has no evidence for '{question}'")
            return None

        memories = [scored.memory for scored in evidence]
        insight = await self._synthesize(question, memories, label="INSIGHT")
        if not insight:
            logger.debug(f"{self.agent_name} produced an empty insight for '{question}'")
            return None

        importance = await self._rate(insight)
        node = await self.store.add_reflection(
            insight,
            importance,
            sorted(m.id for m in memories),
            now=now,
            question=question,
        )
        return node

    async def _synthesize(self, question: str, evidence: list[Memory], label: str) -> str:
        memory_text = "\n".join(f"{i}. {m.content}" for i, m in enumerate(evidence, 1))
        prompt = f"""Based on {self.agent_name}'s memories:

{memory_text}

Reflecting on: {question}

What insight or conclusion might {self.agent_name} draw? Provide a single, clear statement (1-2 sentences) grounded in the memories above.

{label}:"""

        response = await self.store.lifetime.call(
            self.llm.complete(prompt, temperature=0.7, max_tokens=150)
        )
        return parse_insight(response)

    async def _rate(self, insight: str) -> int:
        if not self.config.rate_reflection_importance:
            return self.config.reflection_importance

        prompt = f"""On a scale of 1 to 10, where 1 is purely mundane
(e.g., brushing teeth, making bed) and 10 is extremely poignant
(e.g., a break up, college acceptance), rate the likely poignancy
of the following realization for {self.agent_name}.

Realization: {insight}

Rate the poignancy of this realization (respond with just a number 1-10):"""

        response = await self.store.lifetime.call(
            self.llm.complete(prompt, temperature=0.3, max_tokens=10)
        )
        rating = parse_rating(response)
        if rating is None:
            logger.debug(f"Unusable importance rating {response!r}, using default")
            return self.config.reflection_importance
        return rating

    async def _meta_reflect(self, now: int) -> list[ReflectionNode]:
        """Fold pending same-level reflections upward until no level has enough."""
        created: list[ReflectionNode] = []
        level = 0

        while level <= self._max_level():
            pending = self.pending(level)
            if len(pending) < self.config.meta_reflection_threshold:
                level += 1
                continue

            try:
                insight = await self._synthesize(META_QUESTION, pending, label="META-INSIGHT")
                if not insight:
                    raise MalformedResponse("Empty meta-insight")
                importance = await self._rate(insight)
            except (ServiceFailure, MalformedResponse) as e:
                self.meta_failures += 1
                logger.warning(
                    f"{self.agent_name} meta-reflection at level {level} failed, "
                    f"{len(pending)} reflections stay pending: {e}"
                )
                break

            node = await self.store.add_reflection(
                insight,
                importance,
                [r.id for r in pending],
                now=now,
                question=META_QUESTION,
            )
            logger.info(
                f"{self.agent_name} formed level-{node.level} reflection "
                f"from {len(pending)} insights"
            )
            created.append(node)

        return created

    def _max_level(self) -> int:
        return max((r.level for r in self.store.reflections()), default=-1)

    def statistics(self) -> dict[str, Any]:
        by_level: dict[int, int] = {}
        for node in self.store.reflections():
            by_level[node.level] = by_level.get(node.level, 0) + 1
        return {
            "accumulator": self.accumulator,
            "passes_fired": self.passes_fired,
            "passes_abandoned": self.passes_abandoned,
            "meta_failures": self.meta_failures,
            "fallback_questions": self.fallback_questions,
            "reflections_by_level": by_level,
            "pending_by_level": {level: len(self.pending(level)) for level in by_level},
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "passes_fired": self.passes_fired,
            "passes_abandoned": self.passes_abandoned,
            "meta_failures": self.meta_failures,
            "fallback_questions": self.fallback_questions,
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        self.passes_fired = int(data.get("passes_fired", 0))
        self.passes_abandoned = int(data.get("passes_abandoned", 0))
        self.meta_failures = int(data.get("meta_failures", 0))
        self.fallback_questions = int(data.get("fallback_questions", 0))
