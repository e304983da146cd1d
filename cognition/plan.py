"""
Plan module - decides what the agent should do.

Plans have three tiers: a daily list of broad intentions, hourly steps of the
active daily intention, and short interval actions of the active hourly step.
Each tier has exactly one active node while the agent is running. A node is
completed when its window runs out; the next sibling takes over and the tier
below is planned again for it.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cognition.config import CognitionConfig
from cognition.errors import (
    InvalidInput,
    InvariantViolation,
    MalformedPlan,
    MalformedResponse,
    ServiceFailure,
)
from cognition.memory import MemoryKind, MemoryStore
from cognition.retrieve import RetrievalScorer
from services.llm import LanguageModel

logger = logging.getLogger(__name__)


class PlanTier(str, Enum):
    DAILY = "daily"
    HOURLY = "hourly"
    INTERVAL = "interval"


TIER_ORDER = (PlanTier.DAILY, PlanTier.HOURLY, PlanTier.INTERVAL)


class PlanStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


FINISHED = frozenset({PlanStatus.COMPLETED, PlanStatus.ABANDONED})


def coerce_tier(tier: Any) -> PlanTier:
    try:
        return PlanTier(tier)
    except ValueError:
        raise InvalidInput(f"Unknown plan tier: {tier!r}") from None


def tier_above(tier: PlanTier) -> PlanTier | None:
    index = TIER_ORDER.index(tier)
    return TIER_ORDER[index - 1] if index > 0 else None


def tier_below(tier: PlanTier) -> PlanTier | None:
    index = TIER_ORDER.index(tier)
    return TIER_ORDER[index + 1] if index + 1 < len(TIER_ORDER) else None


@dataclass
class PlanNode:
    """
    One step of a plan.

    Attributes:
        id: Unique identifier.
        tier: Planning granularity.
        start: First tick of the window.
        duration: Window length in ticks.
        description: What the agent intends to do.
        status: Lifecycle state; finished nodes never change again.
        parent_id: Node this one decomposes (None for daily nodes).
        child_ids: Every node ever generated under this one, in order.
    """

    id: str
    tier: PlanTier
    start: int
    duration: int
    description: str
    status: PlanStatus = PlanStatus.PENDING
    parent_id: str | None = None
    child_ids: list[str] = field(default_factory=list)

    @property
    def end(self) -> int:
        return self.start + self.duration

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED

    def covers(self, now: int) -> bool:
        return self.start <= now < self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tier": self.tier.value,
            "start": self.start,
            "duration": self.duration,
            "description": self.description,
            "status": self.status.value,
            "parent_id": self.parent_id,
            "child_ids": list(self.child_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlanNode":
        return cls(
            id=data["id"],
            tier=PlanTier(data["tier"]),
            start=int(data["start"]),
            duration=int(data["duration"]),
            description=data["description"],
            status=PlanStatus(data["status"]),
            parent_id=data.get("parent_id"),
            child_ids=list(data.get("child_ids", [])),
        )


@dataclass
class PlanningContext:
    """Everything a planning prompt is built from."""

    now: int
    parent: PlanNode | None = None
    memories: list[str] = field(default_factory=list)
    reflections: list[str] = field(default_factory=list)
    location: str = ""
    affordances: list[str] = field(default_factory=list)
    relationships: list[str] = field(default_factory=list)


ContextProvider = Callable[[PlanTier, PlanNode | None, int], Awaitable[PlanningContext]]


def _parse_schedule(text: str) -> list[tuple[str, int]]:
    """Parse a schedule from LLM response."""
    schedule: list[tuple[str, int]] = []

    # Match patterns like "- Activity (60)" or "Activity (60 minutes)"
    pattern = r"[-•]?\s*(.+?)\s*\((\d+)(?:\s*(?:min(?:ute)?s?))?\)"

    for match in re.finditer(pattern, text, re.IGNORECASE):
        activity = match.group(1).strip().strip("- ").strip()
        duration = int(match.group(2))
        if activity and duration > 0:
            schedule.append((activity, duration))

    return schedule


def parse_plan(text: str, available: int) -> list[tuple[str, int]]:
    """
    Parse (description, duration) steps that fit in ``available`` ticks.

    Raises:
        MalformedPlan: No steps, or steps that overflow the window.
    """
    steps = _parse_schedule(text)
    if not steps:
        raise MalformedPlan("Plan response contained no steps")
    total = sum(duration for _, duration in steps)
    if total > available:
        raise MalformedPlan(f"Plan needs {total} minutes but only {available} are available")
    return steps


def _default_schedule() -> list[tuple[str, int]]:
    """Return a default daily schedule for a 1440-minute day."""
    return [
        ("sleeping", 420),  # 7 hours
        ("waking up and morning routine", 60),
        ("breakfast", 30),
        ("working", 180),
        ("lunch break", 60),
        ("working", 180),
        ("relaxation", 90),
        ("dinner", 45),
        ("evening activities", 120),
        ("getting ready for bed", 30),
        ("sleeping", 225),  # Until midnight
    ]


class Planner:
    """Three-tier hierarchical planner for one agent."""

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

        self._nodes: dict[str, PlanNode] = {}
        self._plans: dict[PlanTier, list[str]] = {tier: [] for tier in TIER_ORDER}
        self._active: dict[PlanTier, str | None] = {tier: None for tier in TIER_ORDER}
        self._next_id = 1
        self._day: int | None = None
        self._last_review: int | None = None
        self._last_now: int | None = None

        self.failures = 0
        self.fallbacks = 0

    # Accessors

    def get(self, node_id: str) -> PlanNode | None:
        return self._nodes.get(node_id)

    def active(self, tier: PlanTier | str) -> PlanNode | None:
        """The active node at a tier, if any."""
        node_id = self._active[coerce_tier(tier)]
        return self._nodes[node_id] if node_id else None

    def current_plan(self, tier: PlanTier | str) -> list[PlanNode]:
        """The most recently generated sibling list at a tier."""
        return [self._nodes[node_id] for node_id in self._plans[coerce_tier(tier)]]

    def nodes(self, tier: PlanTier | str | None = None) -> list[PlanNode]:
        """All nodes ever generated, oldest first."""
        if tier is None:
            return list(self._nodes.values())
        tier = coerce_tier(tier)
        return [n for n in self._nodes.values() if n.tier is tier]

    def children(self, node: PlanNode | str) -> list[PlanNode]:
        node_id = node if isinstance(node, str) else node.id
        parent = self._nodes.get(node_id)
        if parent is None:
            return []
        return [self._nodes[child_id] for child_id in parent.child_ids]

    def current_action(self) -> str | None:
        """Description of the most specific active node."""
        for tier in reversed(TIER_ORDER):
            node = self.active(tier)
            if node is not None:
                return node.description
        return None

    def day_index(self, now: int) -> int:
        return now // self.config.day_length

    # Planning

    async def build_context(
        self,
        tier: PlanTier,
        parent: PlanNode | None,
        now: int,
        *,
        location: str = "",
        affordances: list[str] | None = None,
        relationships: list[str] | None = None,
    ) -> PlanningContext:
        """Gather memories and reflections relevant to planning this tier."""
        query = parent.description if parent else f"{self.agent_name}'s plans for today"
        memories: list[str] = []
        if len(self.store):
            scored = await self.scorer.retrieve(
                query,
                self.config.planning_retrieval_k,
                now,
                kinds=(MemoryKind.OBSERVATION, MemoryKind.DIALOGUE, MemoryKind.PLAN),
            )
            memories = [s.memory.content for s in scored]
        reflections = [m.content for m in self.store.recent(5, MemoryKind.REFLECTION)]
        return PlanningContext(
            now=now,
            parent=parent,
            memories=memories,
            reflections=reflections,
            location=location,
            affordances=list(affordances or []),
            relationships=list(relationships or []),
        )

    async def plan(self, tier: PlanTier | str, context: PlanningContext) -> list[PlanNode]:
        """
        Generate and install the plan for one tier.

        On a service failure or an unusable response the previous plan at the
        tier is returned unchanged if it is still in effect; otherwise a
        heuristic plan is installed.

        Returns:
            The sibling nodes now current at this tier.

        Raises:
            InvalidInput: The context's parent does not belong to the tier above.
        """
        tier = coerce_tier(tier)
        self.store.lifetime.ensure_open()
        self._check_parent(tier, context.parent)
        start, end = self._window(tier, context)
        if end <= start:
            raise InvalidInput(f"No time left to plan the {tier.value} tier at tick {context.now}")

        if tier in (PlanTier.DAILY, PlanTier.HOURLY):
            self._last_review = context.now

        prompt = self._prompt(tier, context, end - start)
        try:
            response = await self.store.lifetime.call(
                self.llm.complete(prompt, temperature=0.8, max_tokens=500)
            )
            steps = parse_plan(response, end - start)
        except (ServiceFailure, MalformedResponse) as e:
            self.failures += 1
            previous = self._retainable(tier, context)
            if previous:
                logger.warning(
                    f"{self.agent_name}: keeping previous {tier.value} plan at tick "
                    f"{context.now}: {e}"
                )
                return previous
            logger.warning(
                f"{self.agent_name}: using default {tier.value} plan at tick {context.now}: {e}"
            )
            self.fallbacks += 1
            steps = self._default_steps(tier, context.parent, start, end)

        nodes = self._install(tier, steps, start, end, context.parent)
        logger.info(
            f"{self.agent_name} planned {len(nodes)} {tier.value} steps "
            f"for ticks {start}-{end}"
        )

        if tier is PlanTier.DAILY:
            self._day = self.day_index(context.now)
            await self._remember_daily_plan(nodes, context.now)
        return nodes

    async def advance(
        self,
        now: int,
        context_provider: ContextProvider,
        *,
        crisis: str | None = None,
    ) -> list[PlanTier]:
        """
        Move the plan forward to ``now``, replanning where a trigger fires.

        Triggers, highest priority first: a survival crisis (new daily plan),
        a new day or the active node running out at any tier, and the
        periodic review of the hourly tier.

        Returns:
            The tiers that were replanned, in order.
        """
        self.store.lifetime.ensure_open()
        self._check_time(now)
        self._last_now = now

        replanned: list[PlanTier] = []
        self._complete_expired(now)

        if crisis:
            logger.warning(f"{self.agent_name} replanning day at tick {now}: crisis ({crisis})")
            await self._replan(PlanTier.DAILY, now, context_provider, replanned)
        elif self._day is None or self.day_index(now) != self._day:
            logger.info(f"{self.agent_name} starting day {self.day_index(now)}")
            await self._replan(PlanTier.DAILY, now, context_provider, replanned)

        await self._settle(now, context_provider, replanned)

        review_due = (
            self._last_review is not None
            and now - self._last_review >= self.config.review_interval
        )
        if review_due and PlanTier.HOURLY not in replanned and PlanTier.DAILY not in replanned:
            logger.debug(f"{self.agent_name} reviewing hourly plan at tick {now}")
            await self._replan(PlanTier.HOURLY, now, context_provider, replanned)
            await self._settle(now, context_provider, replanned)

        return replanned

    async def complete(
        self,
        tier: PlanTier | str,
        now: int,
        context_provider: ContextProvider,
    ) -> list[PlanTier]:
        """
        Mark the active node at ``tier`` as done before its window runs out.

        The node's unfinished descendants are abandoned. The next pending
        sibling is pulled forward to start at ``now``; without one the tier is
        planned again for what is left of its parent's window. Lower tiers are
        then planned for whatever became active.

        Returns:
            The tiers that were replanned, in order.

        Raises:
            InvalidInput: Unknown tier, no active node, or time running backwards.
        """
        tier = coerce_tier(tier)
        self.store.lifetime.ensure_open()
        self._check_time(now)
        node = self.active(tier)
        if node is None or now >= node.end:
            raise InvalidInput(f"No running {tier.value} plan to complete at tick {now}")

        self._set_status(node, PlanStatus.COMPLETED)
        self._abandon_descendants(node)
        logger.debug(f"{self.agent_name} finished {tier.value} step '{node.description}' early")

        siblings = self._plans[tier]
        if node.id in siblings:
            later = [self._nodes[i] for i in siblings[siblings.index(node.id) + 1:]]
            successor = next((n for n in later if n.status is PlanStatus.PENDING), None)
            if successor is not None and successor.start > now:
                successor.duration += successor.start - now
                successor.start = now

        return await self.advance(now, context_provider)

    async def _settle(
        self,
        now: int,
        context_provider: ContextProvider,
        replanned: list[PlanTier],
    ) -> None:
        """Top down, make sure every tier has an active node covering ``now``."""
        for tier in TIER_ORDER:
            if self.active(tier) is not None:
                continue

            successor = self._successor(tier, now)
            if successor is not None:
                self._set_status(successor, PlanStatus.ACTIVE)
                below = tier_below(tier)
                if below is not None:
                    # The old lower tier belonged to the previous sibling.
                    self._supersede(below)
            else:
                await self._replan(tier, now, context_provider, replanned)

    def _complete_expired(self, now: int) -> None:
        """Complete active nodes whose window has run out and drop their leftovers."""
        completed: list[PlanNode] = []
        for tier in reversed(TIER_ORDER):
            node = self.active(tier)
            if node is not None and now >= node.end:
                self._set_status(node, PlanStatus.COMPLETED)
                completed.append(node)
                logger.debug(f"{self.agent_name} completed {tier.value} step '{node.description}'")
        for node in completed:
            self._abandon_descendants(node)

    def _successor(self, tier: PlanTier, now: int) -> PlanNode | None:
        """Activate-able sibling covering ``now``; skipped siblings are abandoned."""
        above = tier_above(tier)
        parent = self.active(above) if above else None
        for node in self.current_plan(tier):
            if node.status is not PlanStatus.PENDING:
                continue
            if node.end <= now:
                self._set_status(node, PlanStatus.ABANDONED)
                continue
            if node.start > now:
                break
            if parent is None or node.parent_id == parent.id:
                return node
        return None

    async def _replan(
        self,
        tier: PlanTier,
        now: int,
        context_provider: ContextProvider,
        replanned: list[PlanTier],
    ) -> None:
        above = tier_above(tier)
        parent = self.active(above) if above else None
        if above is not None and (parent is None or now >= parent.end):
            return
        context = await context_provider(tier, parent, now)
        await self.plan(tier, context)
        replanned.append(tier)

    # Internals

    def _check_time(self, now: int) -> None:
        if isinstance(now, bool) or not isinstance(now, int) or now < 0:
            raise InvalidInput(f"Simulation time must be a non-negative integer, got {now!r}")
        if self._last_now is not None and now < self._last_now:
            raise InvalidInput(f"Simulation time went backwards: {now} < {self._last_now}")

    def _check_parent(self, tier: PlanTier, parent: PlanNode | None) -> None:
        above = tier_above(tier)
        if above is None:
            if parent is not None:
                raise InvalidInput("Daily plans have no parent")
            return
        if parent is None or parent.tier is not above:
            raise InvalidInput(f"{tier.value} plans need an active {above.value} parent")
        if self._nodes.get(parent.id) is not parent:
            raise InvalidInput(f"Unknown parent plan {parent.id}")
        if parent.is_finished:
            raise InvalidInput(f"Parent plan {parent.id} is {parent.status.value}")

    def _require_parent(self, tier: PlanTier, parent: PlanNode | None) -> PlanNode:
        if parent is None:
            raise InvalidInput(f"{tier.value} plans need a parent")
        return parent

    def _window(self, tier: PlanTier, context: PlanningContext) -> tuple[int, int]:
        if tier is PlanTier.DAILY:
            return context.now, (self.day_index(context.now) + 1) * self.config.day_length
        parent = self._require_parent(tier, context.parent)
        return max(parent.start, context.now), parent.end

    def _retainable(self, tier: PlanTier, context: PlanningContext) -> list[PlanNode] | None:
        node = self.active(tier)
        if node is None or context.now >= node.end:
            return None
        expected_parent = context.parent.id if context.parent else None
        if node.parent_id != expected_parent:
            return None
        return self.current_plan(tier)

    def _install(
        self,
        tier: PlanTier,
        steps: list[tuple[str, int]],
        start: int,
        end: int,
        parent: PlanNode | None,
    ) -> list[PlanNode]:
        """Lay steps out back to back from ``start`` and make the first one active."""
        total = sum(duration for _, duration in steps)
        if not steps or start + total > end:
            raise MalformedPlan(f"Plan of {total} ticks does not fit ticks {start}-{end}")
        self._supersede(tier)

        nodes: list[PlanNode] = []
        cursor = start
        for description, duration in steps:
            nodes.append(
                PlanNode(
                    id=f"plan_{self._next_id:06d}",
                    tier=tier,
                    start=cursor,
                    duration=duration,
                    description=description,
                    parent_id=parent.id if parent else None,
                )
            )
            self._next_id += 1
            cursor += duration

        if cursor < end:
            nodes[-1].duration += end - cursor

        for node in nodes:
            self._nodes[node.id] = node
        if parent is not None:
            parent.child_ids.extend(node.id for node in nodes)
        self._plans[tier] = [node.id for node in nodes]
        self._set_status(nodes[0], PlanStatus.ACTIVE)
        return nodes

    def _supersede(self, tier: PlanTier) -> None:
        """Abandon every unfinished node at ``tier`` and the tiers below it."""
        index = TIER_ORDER.index(tier)
        for lower in TIER_ORDER[index:]:
            for node in self.current_plan(lower):
                if not node.is_finished:
                    self._set_status(node, PlanStatus.ABANDONED)

    def _abandon_descendants(self, node: PlanNode) -> None:
        for child in self.children(node):
            if not child.is_finished:
                self._set_status(child, PlanStatus.ABANDONED)
            self._abandon_descendants(child)

    def _set_status(self, node: PlanNode, status: PlanStatus) -> None:
        if node.is_finished:
            raise InvariantViolation(
                f"Plan {node.id} is {node.status.value} and cannot become {status.value}"
            )
        if status is PlanStatus.ACTIVE:
            if node.status is not PlanStatus.PENDING:
                raise InvariantViolation(f"Plan {node.id} is {node.status.value}, not pending")
            current = self._active[node.tier]
            if current is not None and current != node.id:
                raise InvariantViolation(f"{node.tier.value} tier already has active plan {current}")
            self._active[node.tier] = node.id
        elif status in FINISHED and self._active[node.tier] == node.id:
            self._active[node.tier] = None
        node.status = status

    def _default_steps(
        self,
        tier: PlanTier,
        parent: PlanNode | None,
        start: int,
        end: int,
    ) -> list[tuple[str, int]]:
        """Heuristic plan used when nothing usable came back from the LLM."""
        if tier is PlanTier.DAILY:
            day_start = self.day_index(start) * self.config.day_length
            scale = self.config.day_length / 1440
            steps: list[tuple[str, int]] = []
            cursor = day_start
            for description, minutes in _default_schedule():
                step_end = cursor + max(round(minutes * scale), 1)
                overlap = min(step_end, end) - max(cursor, start)
                if overlap > 0:
                    steps.append((description, overlap))
                cursor = step_end
            return steps or [("resting", end - start)]

        parent = self._require_parent(tier, parent)
        if tier is PlanTier.INTERVAL:
            return [(f"carry on {parent.description}", end - start)]

        step = self.config.hourly_step
        count = max((end - start + step - 1) // step, 1)
        steps = []
        for i in range(count):
            duration = min(step, end - start - i * step)
            if i == 0:
                description = f"start {parent.description}"
            elif i == count - 1:
                description = f"finish {parent.description}"
            else:
                description = f"continue {parent.description}"
            steps.append((description, duration))
        return steps

    def _prompt(self, tier: PlanTier, context: PlanningContext, available: int) -> str:
        sections = [f"You are planning for {self.agent_name}."]
        if context.location:
            sections.append(f"Current location: {context.location}")
        for title, lines in (
            ("Things to interact with here", context.affordances),
            (f"People {self.agent_name} knows", context.relationships),
            ("Relevant memories", context.memories),
            ("Recent reflections", context.reflections),
        ):
            if lines:
                sections.append(f"{title}:\n" + "\n".join(f"- {line}" for line in lines))
        background = "\n\n".join(sections)

        if tier is PlanTier.DAILY:
            task = f"""What would {self.agent_name}'s schedule look like for the rest of today?
List broad activities in order with approximate durations."""
        elif tier is PlanTier.HOURLY:
            parent = self._require_parent(tier, context.parent)
            task = f"""{self.agent_name} is planning to: {parent.description}

Break this down into steps of about {self.config.hourly_step} minutes."""
        else:
            parent = self._require_parent(tier, context.parent)
            task = f"""{self.agent_name} is currently: {parent.description}

Break this down into short, concrete actions of about {self.config.interval_step} minutes."""

        return f"""{background}

{task}
Time available: {available} minutes. The durations must not add up to more than that.

Format each line as: - [Activity] (duration in minutes)"""

    async def _remember_daily_plan(self, nodes: list[PlanNode], now: int) -> None:
        summary = "; ".join(node.description for node in nodes)
        await self.store.append(
            f"{self.agent_name}'s plan for day {self.day_index(now)}: {summary}",
            MemoryKind.PLAN,
            self.config.plan_memory_importance,
            now=now,
        )

    # Persistence

    def statistics(self) -> dict[str, Any]:
        counts = {status.value: 0 for status in PlanStatus}
        for node in self._nodes.values():
            counts[node.status.value] += 1
        return {
            "nodes": len(self._nodes),
            "by_status": counts,
            "failures": self.failures,
            "fallbacks": self.fallbacks,
            "current_action": self.current_action(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self._nodes.values()],
            "plans": {tier.value: list(ids) for tier, ids in self._plans.items()},
            "next_id": self._next_id,
            "day": self._day,
            "last_review": self._last_review,
            "last_now": self._last_now,
            "failures": self.failures,
            "fallbacks": self.fallbacks,
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """
        Replace planner state with a serialized one.

        Raises:
            InvariantViolation: If the plan tree is inconsistent.
        """
        try:
            nodes = [PlanNode.from_dict(raw) for raw in data.get("nodes", [])]
            plans = {PlanTier(t): list(ids) for t, ids in data.get("plans", {}).items()}
        except (KeyError, ValueError, TypeError) as e:
            raise InvariantViolation(f"Invalid plan record: {e}") from e

        by_id: dict[str, PlanNode] = {}
        active: dict[PlanTier, str | None] = {tier: None for tier in TIER_ORDER}
        for node in nodes:
            if node.id in by_id:
                raise InvariantViolation(f"Duplicate plan id {node.id}")
            if node.duration < 1:
                raise InvariantViolation(f"Plan {node.id} has an empty window")
            by_id[node.id] = node
            if node.status is PlanStatus.ACTIVE:
                if active[node.tier] is not None:
                    raise InvariantViolation(f"More than one active {node.tier.value} plan")
                active[node.tier] = node.id

        for node in nodes:
            above = tier_above(node.tier)
            if above is None:
                if node.parent_id is not None:
                    raise InvariantViolation(f"Daily plan {node.id} has a parent")
            else:
                parent = by_id.get(node.parent_id or "")
                if parent is None or parent.tier is not above:
                    raise InvariantViolation(f"Plan {node.id} has an invalid parent")
                if node.id not in parent.child_ids:
                    raise InvariantViolation(f"Plan {node.id} is missing from its parent's children")
                if node.start < parent.start or node.end > parent.end:
                    raise InvariantViolation(f"Plan {node.id} lies outside its parent's window")
            for child_id in node.child_ids:
                child = by_id.get(child_id)
                if child is None or child.parent_id != node.id:
                    raise InvariantViolation(f"Plan {node.id} lists an invalid child {child_id}")

        for tier in TIER_ORDER:
            plans.setdefault(tier, [])
            for node_id in plans[tier]:
                node = by_id.get(node_id)
                if node is None or node.tier is not tier:
                    raise InvariantViolation(f"Current {tier.value} plan references {node_id}")

        highest = max(
            (int(node_id[5:]) for node_id in by_id if re.fullmatch(r"plan_\d+", node_id)),
            default=0,
        )
        try:
            next_id = int(data.get("next_id", highest + 1))
        except (TypeError, ValueError) as e:
            raise InvariantViolation(f"Invalid plan id counter: {e}") from e
        if next_id <= highest:
            raise InvariantViolation(
                f"Plan id counter {next_id} would reuse existing id plan_{highest:06d}"
            )

        self._nodes = by_id
        self._plans = plans
        self._active = active
        self._next_id = next_id
        self._day = data.get("day")
        self._last_review = data.get("last_review")
        self._last_now = data.get("last_now")
        self.failures = int(data.get("failures", 0))
        self.fallbacks = int(data.get("fallbacks", 0))
