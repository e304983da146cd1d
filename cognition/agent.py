"""
Agent cognition for generative agents.

``AgentCognition`` owns one agent's memory, retrieval, reflection, planning
and social state, and runs them in a fixed order each tick:

1. Perceive - append the tick's observations, checking for reflection after each
2. Socialize - let idle trust fade, then classify peer detections
3. Plan - advance the three-tier plan, replanning where needed
4. Reflect - check again, since planning records the daily plan as a memory
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from cognition.config import CognitionConfig
from cognition.errors import InvalidInput, InvariantViolation, MalformedResponse, ServiceFailure
from cognition.lifecycle import AgentLifetime
from cognition.memory import Memory, MemoryKind, MemoryStore, ReflectionNode, coerce_kind
from cognition.persistence import SNAPSHOT_VERSION, check_version
from cognition.plan import PlanNode, PlanningContext, PlanTier, Planner
from cognition.reflect import ReflectionEngine, parse_rating
from cognition.retrieve import RetrievalScorer
from cognition.social import InteractionEvent, SocialMemory
from cognition.world import Perception
from services.embeddings import Embedder
from services.llm import LanguageModel

logger = logging.getLogger(__name__)

DEFAULT_IMPORTANCE = 5


@dataclass
class TickResult:
    """What happened during one agent tick."""

    now: int
    memories: list[Memory] = field(default_factory=list)
    reflections: list[ReflectionNode] = field(default_factory=list)
    interactions: list[tuple[str, InteractionEvent]] = field(default_factory=list)
    replanned: list[PlanTier] = field(default_factory=list)
    action: str | None = None


class AgentCognition:
    """
    The cognition core of a single agent.

    Each agent exclusively owns its components; nothing here is shared with
    other agents except the read-only service clients.
    """

    def __init__(
        self,
        agent_id: str,
        llm: LanguageModel,
        embedder: Embedder,
        config: CognitionConfig | None = None,
        name: str | None = None,
    ):
        """
        Initialize an agent's cognition.

        Args:
            agent_id: Unique agent identifier.
            llm: Language model used for reflection, planning and rating.
            embedder: Embedding service for memories and queries.
            config: Cognition tuning; defaults are used if omitted.
            name: Display name used in prompts; defaults to the id.
        """
        if not agent_id:
            raise InvalidInput("Agent id must not be empty")

        self.agent_id = agent_id
        self.name = name or agent_id
        self.config = config or CognitionConfig()
        self.llm = llm
        self.embedder = embedder

        self.lifetime = AgentLifetime(agent_id)
        self.memory = MemoryStore(
            agent_id,
            embedder,
            dimension=self.config.embedding_dimension,
            lifetime=self.lifetime,
        )
        self.scorer = RetrievalScorer(self.memory, self.config)
        self.reflection = ReflectionEngine(self.memory, self.scorer, llm, self.config, self.name)
        self.planner = Planner(self.memory, self.scorer, llm, self.config, self.name)
        self.social = SocialMemory(self.memory, self.config, self.name)

        self.current_time: int | None = None
        self._perception = Perception()
        self._last_crisis: str | None = None

    @property
    def closed(self) -> bool:
        return self.lifetime.closed

    async def observe(
        self,
        content: str,
        importance: int | None = None,
        *,
        now: int,
        kind: MemoryKind | str = MemoryKind.OBSERVATION,
    ) -> tuple[Memory, list[ReflectionNode]]:
        """
        Append a memory and run the reflection check that follows every append.

        Args:
            content: What happened.
            importance: Salience 1-10; rated by the language model when omitted.
            now: Current simulation tick.
            kind: Memory kind (reflections are produced by the engine, not here).

        Returns:
            The new memory and any reflections it triggered.
        """
        if coerce_kind(kind) is MemoryKind.REFLECTION:
            raise InvalidInput("Reflections are created by the reflection engine")
        if importance is None:
            importance = await self.rate_importance(content)
        memory = await self.memory.append(content, kind, importance, now=now)
        reflections = await self.reflection.maybe_reflect(now)
        return memory, reflections

    async def rate_importance(self, description: str) -> int:
        """Ask the language model how poignant an event is, defaulting to 5."""
        prompt = f"""On a scale of 1 to 10, where 1 is purely mundane
(e.g., brushing teeth, making bed) and 10 is extremely poignant
(e.g., a break up, college acceptance), rate the likely poignancy
of the following event for {self.name}.

Event: {description}

Rate the poignancy of this event (respond with just a number 1-10):"""

        try:
            response = await self.lifetime.call(
                self.llm.complete(prompt, temperature=0.3, max_tokens=10)
            )
        except (ServiceFailure, MalformedResponse) as e:
            logger.warning(f"{self.name}: importance rating failed, using default: {e}")
            return DEFAULT_IMPORTANCE
        rating = parse_rating(response)
        return rating if rating is not None else DEFAULT_IMPORTANCE

    async def tick(self, now: int, perception: Perception | None = None) -> TickResult:
        """
        Run one cognition tick.

        Args:
            now: Current simulation tick; never earlier than the previous one.
            perception: What the world reports for this tick.

        Returns:
            A summary of the tick.
        """
        self.lifetime.ensure_open()
        if isinstance(now, bool) or not isinstance(now, int) or now < 0:
            raise InvalidInput(f"Simulation time must be a non-negative integer, got {now!r}")
        if self.current_time is not None and now < self.current_time:
            raise InvalidInput(f"Simulation time went backwards: {now} < {self.current_time}")

        self.current_time = now
        self._perception = perception or Perception()
        result = TickResult(now=now)

        # 1. Perceive
        for observation in self._perception.observations:
            memory, reflections = await self.observe(
                observation.content, observation.importance, now=now
            )
            result.memories.append(memory)
            result.reflections.extend(reflections)

        # 2. Socialize
        self.social.decay(now)
        for detection in self._perception.detections:
            event = await self.social.on_detection(
                detection.peer_id,
                detection.distance,
                detection.has_line_of_sight,
                now,
            )
            if event is not None:
                result.interactions.append((detection.peer_id, event))
                result.reflections.extend(await self.reflection.maybe_reflect(now))

        # 3. Plan; a crisis only forces a new day plan when it first appears
        crisis = self._perception.crisis
        new_crisis = crisis if crisis and crisis != self._last_crisis else None
        self._last_crisis = crisis
        result.replanned = await self.planner.advance(
            now,
            self._planning_context,
            crisis=new_crisis,
        )

        # 4. Reflect
        result.reflections.extend(await self.reflection.maybe_reflect(now))

        result.action = self.planner.current_action()
        logger.debug(
            f"{self.name} tick {now}: {len(result.memories)} memories, "
            f"{len(result.reflections)} reflections, action='{result.action}'"
        )
        return result

    async def complete_action(self, tier: PlanTier | str, now: int) -> list[PlanTier]:
        """
        Report that the agent finished its current step at ``tier`` early.

        Returns:
            The tiers that were replanned.
        """
        replanned = await self.planner.complete(tier, now, self._planning_context)
        self.current_time = now
        return replanned

    async def _planning_context(
        self,
        tier: PlanTier,
        parent: PlanNode | None,
        now: int,
    ) -> PlanningContext:
        return await self.planner.build_context(
            tier,
            parent,
            now,
            location=self._perception.location,
            affordances=[a.describe() for a in self._perception.affordances],
            relationships=self.social.summaries(),
        )

    def close(self) -> None:
        """Tear the agent down, cancelling any outstanding service calls."""
        if not self.lifetime.closed:
            logger.info(f"Closing agent {self.name}")
        self.lifetime.close()

    def statistics(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "now": self.current_time,
            "memory": self.memory.statistics(),
            "reflection": self.reflection.statistics(),
            "planning": self.planner.statistics(),
            "social": {"known_peers": len(self.social), "closest": self.social.closest_peer()},
        }

    def snapshot(self) -> dict[str, Any]:
        """Serialize the agent's full cognition state."""
        return {
            "version": SNAPSHOT_VERSION,
            "agent_id": self.agent_id,
            "name": self.name,
            "now": self.current_time,
            "last_crisis": self._last_crisis,
            "config": self.config.to_dict(),
            "memory": self.memory.to_dict(),
            "reflection": self.reflection.to_dict(),
            "planner": self.planner.to_dict(),
            "social": self.social.to_dict(),
        }

    @classmethod
    def restore(
        cls,
        snapshot: dict[str, Any],
        llm: LanguageModel,
        embedder: Embedder,
    ) -> "AgentCognition":
        """
        Rebuild an agent from a snapshot.

        Raises:
            InvariantViolation: Unsupported version or any inconsistent section.
        """
        check_version(snapshot)
        try:
            config = CognitionConfig.from_dict(snapshot["config"])
            agent = cls(snapshot["agent_id"], llm, embedder, config, snapshot.get("name"))
        except (KeyError, TypeError, InvalidInput) as e:
            raise InvariantViolation(f"Invalid snapshot header: {e}") from e

        agent.memory.load_dict(snapshot.get("memory", {"dimension": config.embedding_dimension}))
        agent.reflection.load_dict(snapshot.get("reflection", {}))
        agent.planner.load_dict(snapshot.get("planner", {}))
        agent.social.load_dict(snapshot.get("social", {}))

        now = snapshot.get("now")
        last = agent.memory.last_time
        if now is not None and last is not None and now < last:
            raise InvariantViolation(f"Snapshot time {now} is before its newest memory ({last})")
        agent.current_time = now
        agent._last_crisis = snapshot.get("last_crisis")

        logger.info(f"Restored agent {agent.name} with {len(agent.memory)} memories")
        return agent
