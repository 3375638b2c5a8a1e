"""Derived-cell combinators built on the public Cell contract.

Every combinator is an INHERIT cell: its type follows the cells it reads,
so a combinator over an invalid cell is itself invalid, and a combinator
over a STATIC cell freezes after its first evaluation.

A frozen conditional can't be extended in place. Calling if_/else_/case/
default on one returns a *new* conditional with the extra branch; holders
of the old reference keep the old, frozen behavior.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from livecell._errors import InvalidExpressionError
from livecell._types import INVALID, MISSING, CellType
from livecell.cell import Cell

T = TypeVar("T")
R = TypeVar("R")

Condition = Callable[[Any], bool]


def resolve(obj: Any) -> Any:
    """The value of ``obj`` if it is a cell, else ``obj`` itself."""
    if isinstance(obj, Cell):
        return obj.value
    return obj


def _truthy(value: Any) -> bool:
    return bool(value)


def _falsy(value: Any) -> bool:
    return not value


def _check_condition(condition: Any) -> None:
    if not callable(condition):
        raise InvalidExpressionError(f"Condition must be callable, not {condition!r}.")


class _Branching(Cell):
    """Shared machinery: ordered (condition, then) branches plus a fallback."""

    __slots__ = ("_parent", "_branches", "_fallback")

    def __init__(
        self,
        parent: Cell,
        branches: list[tuple[Condition, Any]] | None = None,
        fallback: Any = None,
    ) -> None:
        self._parent = parent
        self._branches = list(branches) if branches else []
        self._fallback = fallback
        super().__init__(type=CellType.INHERIT, expression=self._evaluate, runtime=parent.runtime)

    @property
    def parent(self) -> Cell:
        return self._parent

    @property
    def branches(self) -> tuple[tuple[Condition, Any], ...]:
        return tuple(self._branches)

    @property
    def fallback(self) -> Any:
        return self._fallback

    def _evaluate(self) -> Any:
        value = self._parent.value
        if value is INVALID:
            return INVALID
        for condition, then in self._branches:
            if condition(value):
                return resolve(then)
        return resolve(self._fallback)

    def _add_branch(self, condition: Condition, then: Any):
        if self.is_static:
            return type(self)(self._parent, [*self._branches, (condition, then)], self._fallback)
        self._branches.append((condition, then))
        self.update()
        return self

    def _set_fallback(self, then: Any):
        if self.is_static:
            return type(self)(self._parent, self._branches, then)
        self._fallback = then
        self.update()
        return self


class Conditional(_Branching):
    """Evaluates to the ``then`` of the first condition matching the parent value.

    Usage:
        temperature = Cell(30)
        label = temperature.if_(lambda t: t > 25, "hot").ifnot(bool, "zero").else_("mild")

        label.value  # "hot"
        temperature.value = 12
        label.value  # "mild"
    """

    __slots__ = ()

    def if_(self, condition, then=MISSING) -> Conditional:
        """Add a branch. With one argument, it is the ``then`` of a truthiness test."""
        if then is MISSING:
            condition, then = _truthy, condition
        _check_condition(condition)
        return self._add_branch(condition, then)

    def ifnot(self, condition, then=MISSING) -> Conditional:
        """Add a branch taken when ``condition`` fails (falsiness with one argument)."""
        if then is MISSING:
            return self._add_branch(_falsy, condition)
        _check_condition(condition)
        return self._add_branch(lambda value: not condition(value), then)

    def else_(self, then: Any) -> Conditional:
        """Set the value used when no branch matches."""
        return self._set_fallback(then)


class Switch(_Branching):
    """Evaluates to the ``then`` of the first case equal to the parent value.

    Usage:
        mode = Cell("dark")
        colors = mode.switch().case("dark", "#000").case("light", "#fff").default("#888")
    """

    __slots__ = ()

    def case(self, match: Any, then: Any) -> Switch:
        """Add a case. ``match`` may be a cell, compared by its current value."""
        return self._add_branch(lambda value: value == resolve(match), then)

    def default(self, then: Any) -> Switch:
        return self._set_fallback(then)


def transform(parent: Cell[T], fn: Callable[[T], R]) -> Cell[R]:
    """Cell whose value is ``fn(parent.value)``."""

    def expression():
        value = parent.value
        if value is INVALID:
            return INVALID
        return fn(value)

    return Cell(type=CellType.INHERIT, expression=expression, runtime=parent.runtime)


def _call_member(member: Callable, args: tuple, kwargs: dict) -> Any:
    return member(
        *[resolve(arg) for arg in args],
        **{key: resolve(arg) for key, arg in kwargs.items()},
    )


def attr(parent: Cell, name, *args, **kwargs) -> Cell:
    """Cell reading attribute ``name`` off the parent value.

    Callable members are called with ``args``/``kwargs`` (cells among them
    are resolved at call time). A missing parent value or member is INVALID.
    """

    def expression():
        obj = parent.value
        if obj is None or obj is INVALID:
            return INVALID
        member = getattr(obj, resolve(name), INVALID)
        if member is INVALID or not callable(member):
            return member
        return _call_member(member, args, kwargs)

    return Cell(type=CellType.INHERIT, expression=expression, runtime=parent.runtime)


def func(parent: Cell, name, *args, **kwargs) -> Cell:
    """Cell calling method ``name`` of the parent value with the given arguments."""

    def expression():
        obj = parent.value
        if obj is None or obj is INVALID:
            return INVALID
        key = resolve(name)
        member = getattr(obj, key, INVALID)
        if member is INVALID:
            return INVALID
        if not callable(member):
            raise TypeError(f"{key!r} of {type(obj).__name__} is not callable")
        return _call_member(member, args, kwargs)

    return Cell(type=CellType.INHERIT, expression=expression, runtime=parent.runtime)


def item(parent: Cell, *keys) -> Cell:
    """Cell reading ``parent.value[k1][k2]...``. Missing keys yield INVALID."""

    def expression():
        obj = parent.value
        for key in keys:
            if obj is None or obj is INVALID:
                return INVALID
            try:
                obj = obj[resolve(key)]
            except (KeyError, IndexError):
                return INVALID
        return obj

    return Cell(type=CellType.INHERIT, expression=expression, runtime=parent.runtime)
