"""
Memory system for generative agents.

This module implements the memory stream: an append-only log of observations,
reflections, plans and dialogue. Retrieval by recency, relevance and
importance lives in ``cognition.retrieve``.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cognition.errors import (
    InvalidImportance,
    InvalidInput,
    InvalidParent,
    InvariantViolation,
    ServiceFailure,
)
from cognition.lifecycle import AgentLifetime
from services.embeddings import Embedder, simple_embed

logger = logging.getLogger(__name__)

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10


class MemoryKind(str, Enum):
    """Kinds of memory records."""

    OBSERVATION = "observation"
    REFLECTION = "reflection"
    PLAN = "plan"
    DIALOGUE = "dialogue"


def coerce_kind(kind: Any) -> MemoryKind:
    """Return ``kind`` as a ``MemoryKind``, or raise ``InvalidInput``."""
    try:
        return MemoryKind(kind)
    except ValueError:
        raise InvalidInput(f"Unknown memory kind: {kind!r}") from None


# last_accessed is reinforced by retrieval; everything else is fixed at creation.
_MUTABLE_FIELDS = frozenset({"last_accessed"})


def validate_importance(importance: Any) -> int:
    """Return importance unchanged, or raise ``InvalidImportance``."""
    if isinstance(importance, bool) or not isinstance(importance, int):
        raise InvalidImportance(f"Importance must be an integer, got {importance!r}")
    if not MIN_IMPORTANCE <= importance <= MAX_IMPORTANCE:
        raise InvalidImportance(
            f"Importance must be in [{MIN_IMPORTANCE}, {MAX_IMPORTANCE}], got {importance}"
        )
    return importance


@dataclass(eq=False)
class Memory:
    """
    A single immutable memory record.

    Attributes:
        id: Unique identifier; ids sort in insertion order.
        created_at: Simulation tick at which the memory was created.
        content: Natural-language description.
        importance: Salience score, integer 1-10.
        kind: What produced the memory.
        embedding: Vector embedding of ``content``.
        parent_ids: Memories this one was derived from, oldest evidence first.
        last_accessed: Tick of the most recent retrieval, if any.
    """

    id: str
    created_at: int
    content: str
    importance: int
    kind: MemoryKind
    embedding: tuple[float, ...] = ()
    parent_ids: tuple[str, ...] = ()
    last_accessed: int | None = None

    def __post_init__(self) -> None:
        kind = coerce_kind(self.kind)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "embedding", tuple(float(x) for x in self.embedding))
        object.__setattr__(self, "parent_ids", tuple(self.parent_ids))

        validate_importance(self.importance)
        if not self.content or not self.content.strip():
            raise InvalidInput("Memory content must not be empty")

        is_reflection_node = isinstance(self, ReflectionNode)
        if (kind is MemoryKind.REFLECTION) != is_reflection_node:
            raise InvalidInput("Reflection memories must be ReflectionNode instances")

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.__dict__ and name not in _MUTABLE_FIELDS:
            raise InvariantViolation(f"Memory field {name!r} is immutable")
        object.__setattr__(self, name, value)

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Memory):
            return self.id == other.id
        return False

    @property
    def reference_time(self) -> int:
        """The later of creation and last access; recency is measured from here."""
        if self.last_accessed is None:
            return self.created_at
        return max(self.created_at, self.last_accessed)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "created_at": self.created_at,
            "content": self.content,
            "importance": self.importance,
            "kind": self.kind.value,
            "embedding": list(self.embedding),
            "parent_ids": list(self.parent_ids),
            "last_accessed": self.last_accessed,
        }


@dataclass(eq=False)
class ReflectionNode(Memory):
    """
    A reflection memory.

    ``level`` is 0 for insights drawn only from non-reflection memories and
    ``1 + max(parent levels)`` for meta-reflections.
    """

    level: int = 0
    question: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.level < 0:
            raise InvalidInput("Reflection level must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["level"] = self.level
        data["question"] = self.question
        return data


def memory_from_dict(data: dict[str, Any]) -> Memory:
    """Create a Memory or ReflectionNode from its dictionary form."""
    data = data.copy()
    data["embedding"] = tuple(data.get("embedding", ()))
    data["parent_ids"] = tuple(data.get("parent_ids", ()))
    if data.get("kind") == MemoryKind.REFLECTION.value:
        return ReflectionNode(**data)
    return Memory(**data)


@dataclass
class ImportanceAccumulator:
    """Running sum of importance since the last reflection pass."""

    value: float = 0.0
    total: float = 0.0
    resets: int = 0

    def add(self, importance: int) -> None:
        self.value += importance
        self.total += importance

    def reset(self) -> None:
        self.value = 0.0
        self.resets += 1

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "total": self.total, "resets": self.resets}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportanceAccumulator":
        return cls(**data)


class MemoryStore:
    """
    Append-only memory stream for one agent.

    Embeddings are computed at append time. Each append raises the store's
    importance accumulator by the memory's importance; the reflection engine
    reads and resets it.
    """

    def __init__(
        self,
        agent_id: str,
        embedder: Embedder,
        *,
        dimension: int = 256,
        lifetime: AgentLifetime | None = None,
    ):
        """
        Initialize the memory store.

        Args:
            agent_id: Identifier of the agent this memory belongs to.
            embedder: Embedding service used at append and query time.
            dimension: Embedding dimension for the whole session.
            lifetime: Tracks outstanding service calls for the agent.
        """
        self.agent_id = agent_id
        self.embedder = embedder
        self.dimension = dimension
        self.lifetime = lifetime or AgentLifetime(agent_id)
        self.accumulator = ImportanceAccumulator()

        self._memories: list[Memory] = []
        self._by_id: dict[str, Memory] = {}
        self._next_seq = 1
        self.fallback_embeddings = 0

    def __len__(self) -> int:
        return len(self._memories)

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._by_id

    @property
    def last_time(self) -> int | None:
        """Creation tick of the newest memory."""
        return self._memories[-1].created_at if self._memories else None

    async def embed(self, text: str) -> tuple[float, ...]:
        """
        Embed text, substituting a deterministic vector if the service fails.

        Returns:
            A vector of exactly ``self.dimension`` floats.
        """
        try:
            vector = await self.lifetime.call(self.embedder.embed(text))
        except ServiceFailure as e:
            logger.warning(f"{self.agent_id}: embedding failed, using fallback vector: {e}")
            self.fallback_embeddings += 1
            return tuple(simple_embed(text, self.dimension))

        if len(vector) != self.dimension:
            logger.warning(
                f"{self.agent_id}: embedding has dimension {len(vector)}, "
                f"expected {self.dimension}; using fallback vector"
            )
            self.fallback_embeddings += 1
            return tuple(simple_embed(text, self.dimension))

        return tuple(float(x) for x in vector)

    async def append(
        self,
        content: str,
        kind: MemoryKind | str,
        importance: int,
        parent_ids: tuple[str, ...] | list[str] = (),
        *,
        now: int,
        question: str = "",
    ) -> Memory:
        """
        Append a memory to the stream.

        Args:
            content: Natural-language description.
            kind: Memory kind.
            importance: Integer salience score 1-10.
            parent_ids: Evidence the memory was derived from.
            now: Current simulation tick.
            question: Originating question, for reflections only.

        Returns:
            The created memory (a ``ReflectionNode`` for reflections).

        Raises:
            InvalidImportance: Importance outside [1, 10].
            InvalidParent: Unknown parent, or a parent newer than ``now``.
            InvalidInput: Empty content, unknown kind, or time running backwards.
        """
        kind = coerce_kind(kind)
        validate_importance(importance)
        if not content or not content.strip():
            raise InvalidInput("Memory content must not be empty")
        if question and kind is not MemoryKind.REFLECTION:
            raise InvalidInput("Only reflections carry a question")
        self._check_time(now)

        parents = self._resolve_parents(parent_ids, now)

        embedding = await self.embed(content)

        # Another append may have landed while the embedding call was suspended.
        self._check_time(now)

        memory_id = f"mem_{self._next_seq:06d}"
        if kind is MemoryKind.REFLECTION:
            parent_levels = [p.level for p in parents if isinstance(p, ReflectionNode)]
            level = 1 + max(parent_levels) if parent_levels else 0
            memory: Memory = ReflectionNode(
                id=memory_id,
                created_at=now,
                content=content.strip(),
                importance=importance,
                kind=kind,
                embedding=embedding,
                parent_ids=tuple(p.id for p in parents),
                level=level,
                question=question,
            )
        else:
            memory = Memory(
                id=memory_id,
                created_at=now,
                content=content.strip(),
                importance=importance,
                kind=kind,
                embedding=embedding,
                parent_ids=tuple(p.id for p in parents),
            )

        self._next_seq += 1
        self._memories.append(memory)
        self._by_id[memory.id] = memory
        self.accumulator.add(importance)

        logger.debug(
            f"{self.agent_id}: appended {kind.value} {memory.id} "
            f"(importance={importance}, accumulator={self.accumulator.value})"
        )
        return memory

    async def add_reflection(
        self,
        content: str,
        importance: int,
        parent_ids: tuple[str, ...] | list[str],
        *,
        now: int,
        question: str = "",
    ) -> ReflectionNode:
        """Append a reflection derived from ``parent_ids``."""
        node = await self.append(
            content, MemoryKind.REFLECTION, importance, parent_ids, now=now, question=question
        )
        if not isinstance(node, ReflectionNode):
            raise InvariantViolation(f"Reflection {node.id} was stored without a level")
        return node

    def _check_time(self, now: int) -> None:
        if isinstance(now, bool) or not isinstance(now, int) or now < 0:
            raise InvalidInput(f"Simulation time must be a non-negative integer, got {now!r}")
        last = self.last_time
        if last is not None and now < last:
            raise InvalidInput(f"Simulation time went backwards: {now} < {last}")

    def _resolve_parents(self, parent_ids: tuple[str, ...] | list[str], now: int) -> list[Memory]:
        parents: list[Memory] = []
        seen: set[str] = set()
        for parent_id in parent_ids:
            if parent_id in seen:
                raise InvalidParent(f"Duplicate parent id {parent_id}")
            seen.add(parent_id)
            parent = self._by_id.get(parent_id)
            if parent is None:
                raise InvalidParent(f"Unknown parent id {parent_id}")
            if parent.created_at > now:
                raise InvalidParent(f"Parent {parent_id} was created after tick {now}")
            parents.append(parent)
        return parents

    def get(self, memory_id: str) -> Memory | None:
        """Get a memory by id."""
        return self._by_id.get(memory_id)

    def get_all(self) -> Iterator[Memory]:
        """Iterate over all memories in insertion order."""
        # Snapshot the length so appends during iteration are not visited.
        count = len(self._memories)
        for i in range(count):
            yield self._memories[i]

    def get_by_kind(self, kind: MemoryKind | str) -> Iterator[Memory]:
        """Iterate over memories of one kind in insertion order."""
        kind = coerce_kind(kind)
        return (m for m in self.get_all() if m.kind is kind)

    def reflections(self, level: int | None = None) -> list[ReflectionNode]:
        """Reflections in insertion order, optionally of a single level."""
        return [
            m
            for m in self.get_by_kind(MemoryKind.REFLECTION)
            if isinstance(m, ReflectionNode) and (level is None or m.level == level)
        ]

    def recent(self, count: int, kind: MemoryKind | str | None = None) -> list[Memory]:
        """The newest ``count`` memories, newest first."""
        if count <= 0:
            return []
        source = self._memories if kind is None else list(self.get_by_kind(kind))
        return list(reversed(source[-count:]))

    def statistics(self) -> dict[str, Any]:
        """Counts by kind and average importance."""
        by_kind = {k.value: 0 for k in MemoryKind}
        for memory in self._memories:
            by_kind[memory.kind.value] += 1
        avg = (
            sum(m.importance for m in self._memories) / len(self._memories)
            if self._memories
            else 0.0
        )
        return {
            "total": len(self._memories),
            "by_kind": by_kind,
            "avg_importance": round(avg, 1),
            "accumulator": self.accumulator.value,
            "fallback_embeddings": self.fallback_embeddings,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize the stream and accumulator."""
        return {
            "dimension": self.dimension,
            "next_seq": self._next_seq,
            "accumulator": self.accumulator.to_dict(),
            "memories": [m.to_dict() for m in self._memories],
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """
        Replace the stream with a serialized one, validating every invariant.

        Raises:
            InvariantViolation: If the data would corrupt the memory model.
        """
        if data.get("dimension") != self.dimension:
            raise InvariantViolation(
                f"Snapshot embedding dimension {data.get('dimension')} != {self.dimension}"
            )

        memories: list[Memory] = []
        by_id: dict[str, Memory] = {}
        last_time: int | None = None
        for raw in data.get("memories", []):
            try:
                memory = memory_from_dict(raw)
            except (InvalidInput, TypeError) as e:
                raise InvariantViolation(f"Invalid memory record: {e}") from e

            if memory.id in by_id:
                raise InvariantViolation(f"Duplicate memory id {memory.id}")
            if last_time is not None and memory.created_at < last_time:
                raise InvariantViolation(f"Memory {memory.id} is out of time order")
            if len(memory.embedding) != self.dimension:
                raise InvariantViolation(f"Memory {memory.id} has the wrong embedding dimension")

            parent_levels = []
            for parent_id in memory.parent_ids:
                parent = by_id.get(parent_id)
                if parent is None:
                    raise InvariantViolation(
                        f"Memory {memory.id} references missing or later parent {parent_id}"
                    )
                if isinstance(parent, ReflectionNode):
                    parent_levels.append(parent.level)

            if isinstance(memory, ReflectionNode):
                expected = 1 + max(parent_levels) if parent_levels else 0
                if memory.level != expected:
                    raise InvariantViolation(
                        f"Reflection {memory.id} has level {memory.level}, expected {expected}"
                    )

            memories.append(memory)
            by_id[memory.id] = memory
            last_time = memory.created_at

        next_seq = int(data.get("next_seq", len(memories) + 1))
        if next_seq <= len(memories):
            raise InvariantViolation("Snapshot sequence counter is behind its memories")

        self._memories = memories
        self._by_id = by_id
        self._next_seq = next_seq
        self.accumulator = ImportanceAccumulator.from_dict(data.get("accumulator", {}))
