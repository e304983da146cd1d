"""
Cognition engine for generative agents.

Components:
- memory: Append-only memory stream
- retrieve: Importance, recency and relevance ranking
- reflect: Threshold-triggered reflection and meta-reflection
- plan: Three-tier daily, hourly and interval planning
- social: Relationship tracking from peer detections
"""

from cognition.agent import AgentCognition, TickResult
from cognition.config import CognitionConfig
from cognition.memory import Memory, MemoryKind, MemoryStore, ReflectionNode
from cognition.plan import PlanNode, PlanningContext, PlanStatus, PlanTier, Planner
from cognition.population import Population
from cognition.reflect import ReflectionEngine
from cognition.retrieve import RetrievalScorer, ScoredMemory
from cognition.social import InteractionEvent, Relationship, SocialMemory
from cognition.world import Affordance, Detection, Observation, Perception

__all__ = [
    "Affordance",
    "AgentCognition",
    "CognitionConfig",
    "Detection",
    "InteractionEvent",
    "Memory",
    "MemoryKind",
    "MemoryStore",
    "Observation",
    "Perception",
    "PlanNode",
    "PlanStatus",
    "PlanTier",
    "Planner",
    "PlanningContext",
    "Population",
    "ReflectionEngine",
    "ReflectionNode",
    "Relationship",
    "RetrievalScorer",
    "ScoredMemory",
    "SocialMemory",
    "TickResult",
]
