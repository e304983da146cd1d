"""
Inputs pushed into an agent by the world collaborator.

The world (maze, items, other agents) lives outside the cognition engine.
Each tick it hands an agent one ``Perception``: where it is, what it can
interact with, which peers it can sense and what it just observed.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Affordance:
    """
    Something at the agent's location it can interact with.

    ``effects`` maps a need to how much interacting changes it, for example
    ``{"hunger": 30.0}`` for food that restores 30 points of hunger.
    """

    name: str
    action: str = ""
    location: str = ""
    effects: dict[str, float] = field(default_factory=dict)

    def describe(self) -> str:
        details = []
        if self.action:
            details.append(self.action)
        if self.effects:
            details.append(", ".join(f"{need} {amount:+g}" for need, amount in self.effects.items()))
        if details:
            return f"{self.name} ({'; '.join(details)})"
        return self.name


@dataclass(frozen=True)
class Detection:
    """A peer sensed by the world's spatial query."""

    peer_id: str
    distance: float
    has_line_of_sight: bool = True


@dataclass(frozen=True)
class Observation:
    """
    Something the agent noticed.

    When ``importance`` is None the agent rates it with the language model.
    """

    content: str
    importance: int | None = None


@dataclass
class Perception:
    """Everything the world tells an agent about one tick."""

    location: str = ""
    affordances: list[Affordance] = field(default_factory=list)
    detections: list[Detection] = field(default_factory=list)
    observations: list[Observation] = field(default_factory=list)
    crisis: str | None = None
