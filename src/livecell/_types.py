"""Lifecycle types and the INVALID sentinel.

Effective types are totally ordered: STATIC < DYNAMIC < INVALID_PENDING.
INHERIT only marks a cell at construction; such a cell's effective type is
the maximum of the types it read during its last recomputation.
"""

from __future__ import annotations

from enum import IntEnum

from livecell._errors import FrozenMutationError, InvalidTransitionError


class CellType(IntEnum):
    STATIC = 0
    DYNAMIC = 1
    INVALID_PENDING = 2
    INHERIT = 3


class _Invalid:
    """Marks a value that is not currently valid."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "INVALID"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "INVALID"


INVALID = _Invalid()


def check_transition(old: CellType, new: CellType) -> None:
    """Raise if a cell of type ``old`` may not be retyped to ``new``."""
    if old is CellType.STATIC:
        raise FrozenMutationError("Cannot change the type of a STATIC cell.")
    if new is CellType.INHERIT:
        raise InvalidTransitionError(
            "INHERIT is computed during recomputation and cannot be assigned."
        )


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


# Default for optional arguments where None is a meaningful value.
MISSING = _Missing()
