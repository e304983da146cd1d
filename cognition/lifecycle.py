"""
Agent lifetime tracking for suspended service calls.

Every language model or embedding call an agent makes runs as a tracked
task. Closing the lifetime cancels whatever is still outstanding, and a
result that arrives after close is discarded by raising ``AgentClosed``
before the caller can apply it.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from cognition.errors import AgentClosed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AgentLifetime:
    """Owns the outstanding service calls of a single agent."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        self._closed = False
        self._pending: set[asyncio.Future] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_calls(self) -> int:
        return len(self._pending)

    def ensure_open(self) -> None:
        """Raise ``AgentClosed`` if the agent has been torn down."""
        if self._closed:
            raise AgentClosed(f"Agent {self.agent_id} is closed")

    async def call(self, awaitable: Awaitable[T]) -> T:
        """
        Await a service call on behalf of the agent.

        Raises:
            AgentClosed: If the agent is closed before the call starts, while
                it is outstanding, or before its result is handed back.
        """
        if self._closed:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise AgentClosed(f"Agent {self.agent_id} is closed")

        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._closed:
                raise AgentClosed(f"Agent {self.agent_id} closed during a service call") from None
            raise
        finally:
            self._pending.discard(task)

        if self._closed:
            logger.debug(f"Discarding late service result for closed agent {self.agent_id}")
            raise AgentClosed(f"Agent {self.agent_id} closed during a service call")
        return result

    def close(self) -> None:
        """Mark the agent closed and cancel outstanding calls."""
        if self._closed:
            return
        self._closed = True
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            logger.info(f"Cancelled {len(self._pending)} outstanding calls for {self.agent_id}")
