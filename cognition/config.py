"""
Cognition configuration for an agent.

A single ``CognitionConfig`` is handed to each agent at construction time and
tunes retrieval, reflection, planning and social tracking.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any

from cognition.errors import InvalidInput


@dataclass
class CognitionConfig:
    """
    Tuning parameters for one agent's cognition core.

    Time values are simulation ticks (one tick is one in-game minute by
    convention).

    Attributes:
        embedding_dimension: Length of every embedding vector in the session.
        importance_weight: Retrieval weight of normalized importance.
        recency_weight: Retrieval weight of recency decay.
        relevance_weight: Retrieval weight of query similarity.
        decay_rate: Per-tick recency decay factor, in (0, 1).
        reflection_threshold: Accumulated importance that fires a reflection pass.
        reflection_window: Number of newest observations shown when asking questions.
        reflection_evidence_k: Evidence memories retrieved per question.
        meta_reflection_threshold: Same-level reflections needed for a meta-reflection.
        rate_reflection_importance: Ask the LLM to rate each reflection.
        reflection_importance: Importance used when the rating is off or unusable.
        proximity_threshold: Distance at or under which a peer counts as nearby.
        perception_radius: Distance at or under which a visible peer is observed.
        trust_decay_after: Idle ticks before trust in a peer starts to fade.
        trust_decay_rate: Trust lost per idle hour (60 ticks) after that.
        day_length: Ticks in one simulated day.
        hourly_step: Expected length of an hourly-tier step.
        interval_step: Expected length of an interval-tier action.
        review_interval: Ticks between scheduled plan reviews.
    """

    embedding_dimension: int = 256

    # Retrieval
    importance_weight: float = 1.0
    recency_weight: float = 1.0
    relevance_weight: float = 1.0
    decay_rate: float = 0.99

    # Reflection
    reflection_threshold: float = 150.0
    reflection_window: int = 100
    reflection_evidence_k: int = 10
    meta_reflection_threshold: int = 5
    rate_reflection_importance: bool = True
    reflection_importance: int = 8

    # Social
    proximity_threshold: float = 2.0
    perception_radius: float = 5.0
    affinity_min: float = -1.0
    affinity_max: float = 1.0
    trust_min: float = 0.0
    trust_max: float = 1.0
    initial_affinity: float = 0.0
    initial_trust: float = 0.5
    first_meeting_affinity: float = 0.1
    first_meeting_trust: float = 0.05
    proximity_affinity: float = 0.05
    proximity_trust: float = 0.03
    observation_affinity: float = 0.01
    observation_trust: float = 0.01
    first_meeting_importance: int = 6
    proximity_importance: int = 3
    observation_importance: int = 2
    interaction_history_limit: int = 50
    trust_decay_after: int = 60
    trust_decay_rate: float = 0.02

    # Planning
    day_length: int = 1440
    hourly_step: int = 60
    interval_step: int = 5
    review_interval: int = 180
    planning_retrieval_k: int = 10
    plan_memory_importance: int = 4

    def __post_init__(self) -> None:
        """Reject values that would make scoring or planning meaningless."""
        if self.embedding_dimension < 1:
            raise InvalidInput("embedding_dimension must be positive")

        weights = (self.importance_weight, self.recency_weight, self.relevance_weight)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise InvalidInput("retrieval weights must be non-negative with a positive sum")

        if not 0.0 < self.decay_rate < 1.0:
            raise InvalidInput(f"decay_rate must be in (0, 1), got {self.decay_rate}")

        if self.reflection_threshold <= 0:
            raise InvalidInput("reflection_threshold must be positive")
        if self.reflection_window < 1 or self.reflection_evidence_k < 1:
            raise InvalidInput("reflection_window and reflection_evidence_k must be positive")
        if self.meta_reflection_threshold < 2:
            raise InvalidInput("meta_reflection_threshold must be at least 2")

        if self.proximity_threshold < 0 or self.perception_radius < 0:
            raise InvalidInput("detection radii must be non-negative")
        if self.affinity_min >= self.affinity_max or self.trust_min >= self.trust_max:
            raise InvalidInput("relationship bounds must satisfy min < max")
        if not self.affinity_min <= self.initial_affinity <= self.affinity_max:
            raise InvalidInput("initial_affinity must lie within the affinity bounds")
        if not self.trust_min <= self.initial_trust <= self.trust_max:
            raise InvalidInput("initial_trust must lie within the trust bounds")
        if self.interaction_history_limit < 1:
            raise InvalidInput("interaction_history_limit must be positive")
        if self.trust_decay_after < 0 or self.trust_decay_rate < 0:
            raise InvalidInput("trust decay settings must be non-negative")

        for name in (
            "reflection_importance",
            "first_meeting_importance",
            "proximity_importance",
            "observation_importance",
            "plan_memory_importance",
        ):
            value = getattr(self, name)
            if not 1 <= value <= 10:
                raise InvalidInput(f"{name} must be in [1, 10], got {value}")

        if min(self.day_length, self.hourly_step, self.interval_step) < 1:
            raise InvalidInput("planning windows must be positive")
        if not self.interval_step <= self.hourly_step <= self.day_length:
            raise InvalidInput("planning windows must nest: interval <= hourly <= day")
        if self.review_interval < 1 or self.planning_retrieval_k < 1:
            raise InvalidInput("review_interval and planning_retrieval_k must be positive")

    def normalized_weights(self) -> tuple[float, float, float]:
        """Return (importance, recency, relevance) weights scaled to sum to 1."""
        total = self.importance_weight + self.recency_weight + self.relevance_weight
        return (
            self.importance_weight / total,
            self.recency_weight / total,
            self.relevance_weight / total,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CognitionConfig":
        """Create from dictionary, rejecting unknown options."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidInput(f"Unknown configuration options: {sorted(unknown)}")
        return cls(**data)
