"""livecell error hierarchy.

All livecell-specific errors inherit from CellError for easy catching.
"""


class CellError(Exception):
    """Base error for all livecell operations."""


class FrozenMutationError(CellError):
    """Attempted to mutate a STATIC cell."""


class InvalidExpressionError(CellError, TypeError):
    """An expression or condition was not callable."""


class ProtocolViolation(CellError, RuntimeError):
    """An immune block was executed outside the cell's own evaluation."""


class InvalidTransitionError(CellError, ValueError):
    """Illegal lifecycle transition, e.g. assigning INHERIT."""


class CascadeLimitError(CellError, RuntimeError):
    """A single cascade ran more listeners than the runtime allows."""
