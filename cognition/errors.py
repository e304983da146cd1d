"""
Error taxonomy for the cognition engine.

Only ``InvalidInput``, ``InvariantViolation`` and ``AgentClosed`` reach the
caller. Service failures and malformed responses are recovered locally with
heuristic fallbacks.
"""

from services.errors import MalformedResponse, ServiceFailure, ServiceUnavailable


class CognitionError(Exception):
    """Base class for errors raised by the cognition engine."""


class InvalidInput(CognitionError, ValueError):
    """Malformed arguments supplied by the caller."""


class InvalidImportance(InvalidInput):
    """Importance outside the integer range 1-10."""


class InvalidParent(InvalidInput):
    """Parent memory unknown, or not created before its child."""


class InvariantViolation(CognitionError):
    """An operation would corrupt the data model."""


class AgentClosed(CognitionError):
    """The agent was torn down while a service call was outstanding."""


class MalformedQuestions(MalformedResponse):
    """Reflection questions could not be parsed into the expected shape."""


class MalformedPlan(MalformedResponse):
    """A plan response was empty or did not fit its time window."""


__all__ = [
    "AgentClosed",
    "CognitionError",
    "InvalidImportance",
    "InvalidInput",
    "InvalidParent",
    "InvariantViolation",
    "MalformedPlan",
    "MalformedQuestions",
    "MalformedResponse",
    "ServiceFailure",
    "ServiceUnavailable",
]
