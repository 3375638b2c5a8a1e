"""livecell: reactive cells with automatic dependency tracking."""

from importlib.metadata import version as _version

__version__ = _version("livecell")

from livecell._errors import (
    CascadeLimitError,
    CellError,
    FrozenMutationError,
    InvalidExpressionError,
    InvalidTransitionError,
    ProtocolViolation,
)
from livecell._types import INVALID, CellType
from livecell.config import RuntimeConfig
from livecell._tracking import Runtime, get_runtime, use_runtime, immune
from livecell.cell import Cell, derived
from livecell.combinators import Conditional, Switch
# textual is not auto-imported, it is opt-in only

__all__ = [
    "Cell",
    "CellType",
    "INVALID",
    "derived",
    "Conditional",
    "Switch",
    "Runtime",
    "RuntimeConfig",
    "get_runtime",
    "use_runtime",
    "immune",
    "CellError",
    "FrozenMutationError",
    "InvalidExpressionError",
    "ProtocolViolation",
    "InvalidTransitionError",
    "CascadeLimitError",
]
