"""
Population of agents ticked together.

Each agent's tick runs as its own asyncio task, so an agent waiting on the
language model never holds up the others. Agents share no mutable state.
"""

import asyncio
import logging
from collections.abc import Iterator

from cognition.agent import AgentCognition, TickResult
from cognition.errors import InvalidInput
from cognition.persistence import SnapshotStore
from cognition.world import Perception
from services.embeddings import Embedder
from services.llm import LanguageModel

logger = logging.getLogger(__name__)


class Population:
    """Registry of live agents."""

    def __init__(self) -> None:
        self._agents: dict[str, AgentCognition] = {}
        self.ticks = 0

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[AgentCognition]:
        return iter(list(self._agents.values()))

    def get(self, agent_id: str) -> AgentCognition | None:
        return self._agents.get(agent_id)

    def add(self, agent: AgentCognition) -> None:
        if agent.agent_id in self._agents:
            raise InvalidInput(f"Agent {agent.agent_id} is already registered")
        if agent.closed:
            raise InvalidInput(f"Agent {agent.agent_id} is closed")
        self._agents[agent.agent_id] = agent
        logger.info(f"Added agent {agent.name}")

    def remove(self, agent_id: str) -> AgentCognition:
        """Unregister an agent and cancel its outstanding service calls."""
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            raise InvalidInput(f"Unknown agent {agent_id}")
        agent.close()
        logger.info(f"Removed agent {agent.name}")
        return agent

    async def tick(
        self,
        now: int,
        perceptions: dict[str, Perception] | None = None,
    ) -> dict[str, TickResult | Exception]:
        """
        Tick every agent concurrently.

        Returns:
            Per-agent tick results; an agent whose tick failed maps to the
            exception it raised.
        """
        perceptions = perceptions or {}
        unknown = set(perceptions) - set(self._agents)
        if unknown:
            raise InvalidInput(f"Perceptions for unknown agents: {sorted(unknown)}")

        self.ticks += 1
        agents = list(self._agents.values())
        outcomes = await asyncio.gather(
            *(agent.tick(now, perceptions.get(agent.agent_id)) for agent in agents),
            return_exceptions=True,
        )

        results: dict[str, TickResult | Exception] = {}
        for agent, outcome in zip(agents, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error(f"Error processing agent {agent.name}: {outcome}")
            results[agent.agent_id] = outcome
        return results

    def close(self) -> None:
        """Close every agent."""
        for agent_id in list(self._agents):
            self.remove(agent_id)

    def save(self, store: SnapshotStore) -> None:
        for agent in self._agents.values():
            store.save(agent.snapshot())

    @classmethod
    def load(
        cls,
        store: SnapshotStore,
        llm: LanguageModel,
        embedder: Embedder,
    ) -> "Population":
        """Rebuild a population from every snapshot in a store."""
        population = cls()
        for agent_id in store.agent_ids():
            snapshot = store.load(agent_id)
            if snapshot is not None:
                population.add(AgentCognition.restore(snapshot, llm, embedder))
        return population
