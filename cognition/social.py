"""
Social memory - tracks relationships with other agents.

Every detection of a peer pushed in by the world is classified as a first
meeting, a proximity encounter or a passive observation. Each classified
event nudges the relationship and is recorded as an observation memory so
reflection and planning can reason about people.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cognition.config import CognitionConfig
from cognition.errors import InvalidInput, InvariantViolation
from cognition.memory import MemoryKind, MemoryStore

logger = logging.getLogger(__name__)


class InteractionEvent(str, Enum):
    FIRST_MEETING = "first_meeting"
    PROXIMITY = "proximity"
    OBSERVATION = "observation"


@dataclass(frozen=True)
class InteractionRecord:
    event: InteractionEvent
    at: int
    distance: float

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event.value, "at": self.at, "distance": self.distance}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InteractionRecord":
        return cls(
            event=InteractionEvent(data["event"]),
            at=int(data["at"]),
            distance=float(data["distance"]),
        )


@dataclass
class Relationship:
    """
    What one agent knows about one peer.

    Attributes:
        peer_id: The other agent.
        familiarity: Number of classified interactions; never decreases.
        affinity: How much the agent likes the peer, clamped to its bounds.
        trust: How much the agent trusts the peer, clamped to its bounds.
        first_met: Tick of the first meeting.
        last_interaction: Tick of the latest classified interaction.
        history: Latest interactions, oldest first.
        known_facts: Things learned about the peer, oldest first.
        perceived_traits: Distinct traits the agent ascribes to the peer.
    """

    peer_id: str
    first_met: int
    last_interaction: int
    affinity: float
    trust: float
    familiarity: int = 0
    history: deque = field(default_factory=deque)
    known_facts: list[str] = field(default_factory=list)
    perceived_traits: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "peer_id": self.peer_id,
            "first_met": self.first_met,
            "last_interaction": self.last_interaction,
            "affinity": self.affinity,
            "trust": self.trust,
            "familiarity": self.familiarity,
            "history": [record.to_dict() for record in self.history],
            "known_facts": list(self.known_facts),
            "perceived_traits": list(self.perceived_traits),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], history_limit: int) -> "Relationship":
        return cls(
            peer_id=data["peer_id"],
            first_met=int(data["first_met"]),
            last_interaction=int(data["last_interaction"]),
            affinity=float(data["affinity"]),
            trust=float(data["trust"]),
            familiarity=int(data["familiarity"]),
            history=deque(
                (InteractionRecord.from_dict(r) for r in data.get("history", [])),
                maxlen=history_limit,
            ),
            known_facts=[str(fact) for fact in data.get("known_facts", [])],
            perceived_traits=[str(trait) for trait in data.get("perceived_traits", [])],
        )


TICKS_PER_HOUR = 60

RANKINGS = ("familiarity", "affinity", "trust")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SocialMemory:
    """Per-agent map from peer id to relationship."""

    def __init__(self, store: MemoryStore, config: CognitionConfig, agent_name: str | None = None):
        self.store = store
        self.config = config
        self.agent_name = agent_name or store.agent_id
        self._relationships: dict[str, Relationship] = {}
        self._decayed_at: int | None = None

    def __len__(self) -> int:
        return len(self._relationships)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._relationships

    def relationship(self, peer_id: str) -> Relationship | None:
        return self._relationships.get(peer_id)

    def known_peers(self) -> list[str]:
        """Peers in the order they were first met."""
        return list(self._relationships)

    def classify(
        self,
        peer_id: str,
        distance: float,
        has_line_of_sight: bool,
    ) -> InteractionEvent | None:
        """Classify a detection without recording it."""
        if peer_id not in self._relationships:
            return InteractionEvent.FIRST_MEETING
        if distance <= self.config.proximity_threshold:
            return InteractionEvent.PROXIMITY
        if distance <= self.config.perception_radius and has_line_of_sight:
            return InteractionEvent.OBSERVATION
        return None

    async def on_detection(
        self,
        peer_id: str,
        distance: float,
        has_line_of_sight: bool,
        now: int,
    ) -> InteractionEvent | None:
        """
        Record a peer detection.

        Args:
            peer_id: The detected agent.
            distance: Distance to the peer in tiles.
            has_line_of_sight: Whether the peer is visible.
            now: Current simulation tick.

        Returns:
            The classified event, or None if the detection is not an interaction.

        Raises:
            InvalidInput: Empty or own peer id, or a negative or non-finite distance.
        """
        self.store.lifetime.ensure_open()
        if not peer_id:
            raise InvalidInput("Peer id must not be empty")
        if peer_id == self.store.agent_id:
            raise InvalidInput("An agent cannot detect itself")
        if isinstance(distance, bool) or not isinstance(distance, (int, float)):
            raise InvalidInput(f"Distance must be a number, got {distance!r}")
        if not math.isfinite(distance) or distance < 0:
            raise InvalidInput(f"Distance must be a non-negative number, got {distance!r}")

        event = self.classify(peer_id, distance, has_line_of_sight)
        if event is None:
            return None

        content, importance = self._describe_event(event, peer_id, distance)
        # A cancelled append leaves the relationship unchanged.
        await self.store.append(content, MemoryKind.OBSERVATION, importance, now=now)

        rel = self._relationships.get(peer_id)
        if rel is None:
            rel = Relationship(
                peer_id=peer_id,
                first_met=now,
                last_interaction=now,
                affinity=self.config.initial_affinity,
                trust=self.config.initial_trust,
                history=deque(maxlen=self.config.interaction_history_limit),
            )
            self._relationships[peer_id] = rel

        affinity_delta, trust_delta = self._deltas(event)
        rel.familiarity += 1
        rel.affinity = _clamp(
            rel.affinity + affinity_delta, self.config.affinity_min, self.config.affinity_max
        )
        rel.trust = _clamp(rel.trust + trust_delta, self.config.trust_min, self.config.trust_max)
        rel.last_interaction = now
        rel.history.append(InteractionRecord(event=event, at=now, distance=distance))

        logger.debug(
            f"{self.agent_name} {event.value} with {peer_id}: familiarity={rel.familiarity}, "
            f"affinity={rel.affinity:.2f}, trust={rel.trust:.2f}"
        )
        return event

    def _deltas(self, event: InteractionEvent) -> tuple[float, float]:
        if event is InteractionEvent.FIRST_MEETING:
            return self.config.first_meeting_affinity, self.config.first_meeting_trust
        if event is InteractionEvent.PROXIMITY:
            return self.config.proximity_affinity, self.config.proximity_trust
        return self.config.observation_affinity, self.config.observation_trust

    def _describe_event(
        self,
        event: InteractionEvent,
        peer_id: str,
        distance: float,
    ) -> tuple[str, int]:
        if event is InteractionEvent.FIRST_MEETING:
            return f"{self.agent_name} met {peer_id} for the first time", self.config.first_meeting_importance
        if event is InteractionEvent.PROXIMITY:
            return f"{self.agent_name} was close to {peer_id}", self.config.proximity_importance
        return (
            f"{self.agent_name} saw {peer_id} {distance:.0f} tiles away",
            self.config.observation_importance,
        )

    def decay(self, now: int) -> None:
        """
        Let trust fade for peers the agent has not interacted with lately.

        Trust drops by ``trust_decay_rate`` per idle hour once a peer has gone
        ``trust_decay_after`` ticks without an interaction, never below the
        trust floor. Familiarity and affinity do not decay.
        """
        if self._decayed_at is not None and now <= self._decayed_at:
            return
        since = now if self._decayed_at is None else self._decayed_at
        rate = self.config.trust_decay_rate / TICKS_PER_HOUR
        for rel in self._relationships.values():
            start = max(since, rel.last_interaction + self.config.trust_decay_after)
            if now > start:
                rel.trust = _clamp(
                    rel.trust - rate * (now - start), self.config.trust_min, self.config.trust_max
                )
        self._decayed_at = now

    def _known(self, peer_id: str) -> Relationship:
        rel = self._relationships.get(peer_id)
        if rel is None:
            raise InvalidInput(f"{self.agent_name} has not met {peer_id}")
        return rel

    def add_fact(self, peer_id: str, fact: str) -> None:
        """Remember something learned about a peer the agent has met."""
        rel = self._known(peer_id)
        if not fact or not fact.strip():
            raise InvalidInput("Fact must not be empty")
        rel.known_facts.append(fact.strip())
        logger.debug(f"{self.agent_name} learned about {peer_id}: {fact.strip()}")

    def add_trait(self, peer_id: str, trait: str) -> bool:
        """Ascribe a trait to a peer; returns False if it was already known."""
        rel = self._known(peer_id)
        if not trait or not trait.strip():
            raise InvalidInput("Trait must not be empty")
        trait = trait.strip()
        if trait in rel.perceived_traits:
            return False
        rel.perceived_traits.append(trait)
        return True

    def recent_interactions(self, peer_id: str, count: int = 10) -> list[InteractionRecord]:
        """The latest ``count`` interactions with a peer, oldest first."""
        rel = self._relationships.get(peer_id)
        if rel is None or count <= 0:
            return []
        return list(rel.history)[-count:]

    def ranked(self, by: str) -> list[str]:
        """Known peers ordered by familiarity, affinity or trust, highest first."""
        if by not in RANKINGS:
            raise InvalidInput(f"Cannot rank peers by {by!r}; expected one of {RANKINGS}")
        return sorted(
            self._relationships,
            key=lambda peer_id: getattr(self._relationships[peer_id], by),
            reverse=True,
        )

    def closest_peer(self) -> str | None:
        """The peer with the best blend of familiarity, affinity and trust."""
        best_peer = None
        best_score = -math.inf
        for peer_id, rel in self._relationships.items():
            # Familiarity is an unbounded count; squash it into [0, 1).
            familiarity = rel.familiarity / (rel.familiarity + 5)
            affinity = (rel.affinity - self.config.affinity_min) / (
                self.config.affinity_max - self.config.affinity_min
            )
            trust = (rel.trust - self.config.trust_min) / (
                self.config.trust_max - self.config.trust_min
            )
            score = familiarity * 0.4 + affinity * 0.4 + trust * 0.2
            if score > best_score:
                best_peer, best_score = peer_id, score
        return best_peer

    def describe(self, peer_id: str) -> str:
        """One-line natural-language summary of a relationship."""
        rel = self._relationships.get(peer_id)
        if rel is None:
            return f"{self.agent_name} has not met {peer_id}"

        if rel.familiarity >= 20:
            familiarity = "very familiar"
        elif rel.familiarity >= 5:
            familiarity = "somewhat familiar"
        else:
            familiarity = "not well known"

        if rel.affinity > 0.5:
            tone = "friendly"
        elif rel.affinity < -0.3:
            tone = "difficult"
        else:
            tone = "neutral"

        summary = (
            f"{peer_id}: {familiarity}, {tone} relationship, "
            f"{rel.familiarity} interactions since tick {rel.first_met}"
        )
        if rel.trust > 0.7:
            summary += ", highly trusted"
        elif rel.trust < 0.3:
            summary += ", not very trusted"
        if rel.perceived_traits:
            summary += f", seems {', '.join(rel.perceived_traits)}"
        return summary

    def summaries(self) -> list[str]:
        return [self.describe(peer_id) for peer_id in self._relationships]

    def to_dict(self) -> dict[str, Any]:
        return {
            "relationships": {
                peer_id: rel.to_dict() for peer_id, rel in self._relationships.items()
            },
            "decayed_at": self._decayed_at,
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """
        Replace relationships with serialized ones.

        Raises:
            InvariantViolation: Out-of-bounds values or inconsistent records.
        """
        decayed_at = data.get("decayed_at")
        if decayed_at is not None and (not isinstance(decayed_at, int) or decayed_at < 0):
            raise InvariantViolation(f"Invalid trust decay tick {decayed_at!r}")

        relationships: dict[str, Relationship] = {}
        for peer_id, raw in data.get("relationships", {}).items():
            try:
                rel = Relationship.from_dict(raw, self.config.interaction_history_limit)
            except (KeyError, ValueError, TypeError) as e:
                raise InvariantViolation(f"Invalid relationship for {peer_id}: {e}") from e
            if rel.peer_id != peer_id:
                raise InvariantViolation(f"Relationship key {peer_id} does not match {rel.peer_id}")
            if rel.familiarity < 1:
                raise InvariantViolation(f"Relationship with {peer_id} has no interactions")
            if not self.config.affinity_min <= rel.affinity <= self.config.affinity_max:
                raise InvariantViolation(f"Affinity for {peer_id} is out of bounds")
            if not self.config.trust_min <= rel.trust <= self.config.trust_max:
                raise InvariantViolation(f"Trust for {peer_id} is out of bounds")
            if rel.last_interaction < rel.first_met:
                raise InvariantViolation(f"Relationship with {peer_id} ends before it starts")
            relationships[peer_id] = rel
        self._relationships = relationships
        self._decayed_at = decayed_at
