"""Cells: values that remember how they were derived.

A Cell holds either a constant or an expression. Reading another cell's
value inside an expression subscribes this cell to it; when that producer
changes, this cell recomputes, and so on through the graph.

Subscriptions are never removed eagerly. Each recomputation bumps the
cell's generation, which makes every subscription recorded by the previous
pass obsolete. Producers prune obsolete entries the next time they
dispatch. Subscriptions hold their consumer weakly, so a live producer
never keeps a dropped consumer alive.
"""

from __future__ import annotations

import functools
import logging
import weakref
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from livecell._errors import (
    FrozenMutationError,
    InvalidExpressionError,
    ProtocolViolation,
)
from livecell._tracking import Runtime, current_runtime, get_runtime
from livecell._types import INVALID, MISSING, CellType, check_transition

if TYPE_CHECKING:
    from livecell.combinators import Conditional, Switch

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger("livecell.cell")

PRE_UPDATE = "pre-update"
UPDATE = "update"
POST_UPDATE = "post-update"
FILTER = "filter"
TYPE_CHANGE = "type-change"

GROUPS = frozenset({PRE_UPDATE, UPDATE, POST_UPDATE, FILTER, TYPE_CHANGE})

STATIC = CellType.STATIC
DYNAMIC = CellType.DYNAMIC
INVALID_PENDING = CellType.INVALID_PENDING
INHERIT = CellType.INHERIT

# Update lists are compacted when they grow past this many entries (then
# past twice their live size), so obsolete subscriptions of a producer
# that never changes cannot accumulate without bound.
_PRUNE_MIN = 16


class _Listener:
    """A user callback stored in a listener group."""

    __slots__ = ("callback", "priority")

    def __init__(self, callback: Callable | None, priority: int = 0) -> None:
        self.callback = callback
        self.priority = priority

    @property
    def obsolete(self) -> bool:
        return False

    def __call__(self, arg: Any) -> Any:
        return self.callback(arg)


class _Subscription(_Listener):
    """Update handle: recompute ``consumer`` if it is still on ``generation``."""

    __slots__ = ("_consumer", "_generation")

    def __init__(self, consumer: Cell) -> None:
        super().__init__(None)
        self._consumer = weakref.ref(consumer)
        self._generation = consumer._generation

    @property
    def obsolete(self) -> bool:
        consumer = self._consumer()
        return consumer is None or consumer._generation != self._generation

    def __call__(self, _value: Any) -> None:
        consumer = self._consumer()
        if consumer is not None and consumer._generation == self._generation:
            consumer.update()


class Cell(Generic[T]):
    """A reactive value: a constant or a recomputable expression."""

    __slots__ = (
        "_runtime",
        "_type",
        "_inherits",
        "_pending_type",
        "_value",
        "_source",
        "_expression",
        "_listeners",
        "_generation",
        "_dependencies",
        "_prune_at",
        "__weakref__",
    )

    def __init__(
        self,
        initial: T | None = None,
        type: CellType = CellType.DYNAMIC,
        *,
        expression: Callable[[], T] | None = None,
        runtime: Runtime | None = None,
    ) -> None:
        type = CellType(type)
        self._runtime = runtime if runtime is not None else get_runtime()
        self._inherits = type is INHERIT
        self._type = DYNAMIC if type in (INHERIT, STATIC) else type
        self._pending_type = STATIC
        self._value = initial
        self._source = initial
        self._expression: Callable[[], T] | None = None
        self._listeners: dict[str, list[_Listener]] = {}
        self._generation = 0
        self._dependencies: set[Cell] = set()
        self._prune_at = _PRUNE_MIN

        if expression is not None:
            self.expression = expression
        if type is STATIC:
            self.finalize()

    # --- Value / expression ---

    @property
    def value(self) -> T:
        """The current value. Inside an expression, subscribes the evaluating cell."""
        top = self._runtime.stack.top
        if top is not None and top is not self:
            top._track(self)
        if self._type is INVALID_PENDING:
            return INVALID
        return self._value

    @value.setter
    def value(self, value: T) -> None:
        self._ensure_mutable("value")
        had_expression = self._expression is not None
        self._expression = None
        old = self._source
        if not had_expression and (old is value or old == value):
            return
        self._source = value
        self._drop_dependencies()
        self.update()

    def peek(self) -> T:
        """Read the value without subscribing to it."""
        if self._type is INVALID_PENDING:
            return INVALID
        return self._value

    @property
    def source(self) -> T | None:
        """The constant before filters. None for derived cells."""
        return self._source

    @property
    def expression(self) -> Callable[[], T] | None:
        return self._expression

    @expression.setter
    def expression(self, fn: Callable[[], T]) -> None:
        self._ensure_mutable("expression")
        if not callable(fn):
            raise InvalidExpressionError(f"Expression must be callable, not {fn!r}.")
        self._expression = fn
        self._source = None
        self.update()

    # --- Lifecycle ---

    @property
    def type(self) -> CellType:
        return self._type

    @type.setter
    def type(self, new: CellType) -> None:
        new = CellType(new)
        check_transition(self._type, new)
        self._inherits = False
        if new is self._type:
            return
        if new is STATIC:
            self.finalize()
            return
        old = self._type
        self._set_type(new)
        if old is INVALID_PENDING:
            self.update(force=True)

    @property
    def inherits(self) -> bool:
        """True if the type is recomputed from the cells read on each pass."""
        return self._inherits

    @property
    def is_static(self) -> bool:
        return self._type is STATIC

    @property
    def is_invalid(self) -> bool:
        return self._type is INVALID_PENDING or self._value is INVALID

    @property
    def dependencies(self) -> frozenset[Cell]:
        """Cells read during the last recomputation."""
        return frozenset(self._dependencies)

    @property
    def runtime(self) -> Runtime:
        return self._runtime

    def invalidate(self) -> Cell[T]:
        """Mark this cell INVALID_PENDING. Returns self for chaining."""
        self.type = INVALID_PENDING
        return self

    def finalize(self, value: T = MISSING) -> Cell[T]:
        """Freeze the cell at ``value`` (default: its current value), irrevocably.

        Dependents are notified once, so inheriting dependents freeze in turn.
        """
        self._ensure_mutable("value")
        if value is MISSING:
            value = self.peek()
        self._expression = None
        self._listeners.pop(FILTER, None)
        self._drop_dependencies()
        self._source = value
        self._inherits = False
        self._set_type(STATIC)
        logger.debug("Finalized %r", self)
        self.update(force=True)
        return self

    # --- Recomputation ---

    def update(self, force: bool = False) -> None:
        """Recompute the value and notify listeners.

        Update listeners fire only if the value changed, unless ``force``.
        """
        if self._type is INVALID_PENDING and not self._inherits:
            return

        self._call_listeners(PRE_UPDATE, self._value)

        if self._inherits:
            self._pending_type = STATIC

        candidate = self._source
        filters = self._listeners.get(FILTER)
        if self._expression is not None or filters:
            self._drop_dependencies()
            stack = self._runtime.stack
            stack.push(self)
            # Cells built or immune blocks entered here belong to this runtime.
            token = current_runtime.set(self._runtime)
            try:
                if self._expression is not None:
                    candidate = self._expression()
                for entry in list(filters or ()):
                    candidate = entry(candidate)
            finally:
                current_runtime.reset(token)
                stack.pop()

        if self._inherits:
            if self._type is INVALID_PENDING and self._pending_type is not INVALID_PENDING:
                force = True
            self._set_type(self._pending_type)

        old = self._value
        if force or (candidate is not old and candidate != old):
            self._value = candidate
            self._trigger(UPDATE, candidate)

        self._call_listeners(POST_UPDATE, self._value)

        if self._type is STATIC:
            self._release()

    def execute_immune(self, fn: Callable[..., R], *args, **kwargs) -> R:
        """Call fn from within this cell's expression without subscribing.

        Raises ProtocolViolation unless this cell is the one evaluating.
        """
        stack = self._runtime.stack
        if stack.top is not self:
            raise ProtocolViolation(
                "Immune blocks can only be executed from within the cell's own expression."
            )
        stack.push(None)
        try:
            return fn(*args, **kwargs)
        finally:
            stack.pop()

    def _track(self, producer: Cell) -> None:
        """Record that this (evaluating) cell read ``producer``."""
        if self._inherits and producer._type > self._pending_type:
            self._pending_type = producer._type
        if producer not in self._dependencies:
            self._dependencies.add(producer)
            if producer._type is not STATIC:
                producer._add_listener(UPDATE, _Subscription(self))

    def _drop_dependencies(self) -> None:
        self._generation += 1
        self._dependencies = set()

    def _set_type(self, new: CellType) -> None:
        if new is self._type:
            return
        logger.debug("Cell retyped %s -> %s", self._type.name, new.name)
        self._type = new
        self._trigger(TYPE_CHANGE, new)

    def _release(self) -> None:
        self._listeners = {}
        self._expression = None
        self._dependencies = set()
        self._source = self._value
        self._inherits = False

    def _ensure_mutable(self, what: str) -> None:
        if self._type is STATIC:
            raise FrozenMutationError(f"Cannot change the {what} of a STATIC cell.")

    # --- Listeners ---

    def _add_listener(self, group: str, entry: _Listener, first: bool = False) -> None:
        entries = self._listeners.get(group)
        if entries is None:
            entries = self._listeners[group] = []
        elif group == UPDATE and len(entries) >= self._prune_at:
            entries[:] = [other for other in entries if not other.obsolete]
            self._prune_at = max(_PRUNE_MIN, 2 * len(entries))
        if not first and (not entries or entries[-1].priority >= entry.priority):
            entries.append(entry)
            return
        # Descending priority; `first` goes to the front of its priority band.
        for i, other in enumerate(entries):
            if other.priority < entry.priority or (first and other.priority == entry.priority):
                entries.insert(i, entry)
                return
        entries.append(entry)

    def _call_listeners(self, group: str, arg: Any) -> None:
        entries = self._listeners.get(group)
        if entries:
            for entry in list(entries):
                entry(arg)

    def _trigger(self, group: str, arg: Any) -> None:
        """Queue the group's live listeners on the runtime dispatcher."""
        calls = []
        entries = self._listeners.get(group)
        if entries:
            live = [entry for entry in entries if not entry.obsolete]
            if live:
                entries[:] = live
                calls = [functools.partial(entry, arg) for entry in live]
            else:
                del self._listeners[group]
        self._runtime.dispatcher.dispatch(group, calls)

    def subscribe(
        self,
        group: str,
        handler: Callable,
        first: bool = False,
        priority: int = 0,
        immediate: bool = False,
    ) -> Cell[T]:
        """Add ``handler`` to a listener group. Returns self for chaining.

        Higher priorities run first; equal priorities run in subscription
        order unless ``first`` puts the handler ahead of its peers.
        ``immediate`` also calls the handler once right away.
        """
        if group not in GROUPS:
            raise ValueError(f"Unrecognized listener group {group!r}.")
        if group == FILTER and immediate:
            raise ValueError("Cannot use immediate with a filter.")

        current = self._type if group == TYPE_CHANGE else self.peek()
        if self._type is STATIC:
            if immediate:
                handler(current)
                return self
            if group == FILTER or self._runtime.config.strict_static:
                raise FrozenMutationError(f"Cannot add a {group} listener to a STATIC cell.")
            logger.warning("Subscription to a STATIC cell is unnecessary: %r", self)
            return self

        self._add_listener(group, _Listener(handler, priority), first)
        if group == FILTER:
            self.update()
        elif immediate:
            handler(current)
        return self

    def unsubscribe(self, group: str, handler: Callable) -> Cell[T]:
        """Remove the first entry equal to ``handler`` from a listener group."""
        if group not in GROUPS:
            raise ValueError(f"Unrecognized listener group {group!r}.")
        entries = self._listeners.get(group)
        if not entries:
            return self
        for i, entry in enumerate(entries):
            if entry.callback == handler:
                del entries[i]
                break
        else:
            return self
        if not entries:
            del self._listeners[group]
        if group == FILTER:
            self.update()
        return self

    def listener_count(self, group: str) -> int:
        """Stored entries in a group, including not-yet-pruned subscriptions."""
        return len(self._listeners.get(group, ()))

    def on_update(self, handler: Callable[[T], Any], first=False, priority=0, immediate=False) -> Cell[T]:
        return self.subscribe(UPDATE, handler, first, priority, immediate)

    def off_update(self, handler: Callable[[T], Any]) -> Cell[T]:
        return self.unsubscribe(UPDATE, handler)

    def on_pre_update(self, handler: Callable[[T], Any], first=False, priority=0, immediate=False) -> Cell[T]:
        return self.subscribe(PRE_UPDATE, handler, first, priority, immediate)

    def off_pre_update(self, handler: Callable[[T], Any]) -> Cell[T]:
        return self.unsubscribe(PRE_UPDATE, handler)

    def on_post_update(self, handler: Callable[[T], Any], first=False, priority=0, immediate=False) -> Cell[T]:
        return self.subscribe(POST_UPDATE, handler, first, priority, immediate)

    def off_post_update(self, handler: Callable[[T], Any]) -> Cell[T]:
        return self.unsubscribe(POST_UPDATE, handler)

    def on_type_change(self, handler: Callable[[CellType], Any], first=False, priority=0, immediate=False) -> Cell[T]:
        return self.subscribe(TYPE_CHANGE, handler, first, priority, immediate)

    def off_type_change(self, handler: Callable[[CellType], Any]) -> Cell[T]:
        return self.unsubscribe(TYPE_CHANGE, handler)

    def add_filter(self, fn: Callable[[Any], T], first=False, priority=0) -> Cell[T]:
        return self.subscribe(FILTER, fn, first, priority)

    def remove_filter(self, fn: Callable[[Any], T]) -> Cell[T]:
        return self.unsubscribe(FILTER, fn)

    # --- Combinators ---

    def if_(self, condition, then=MISSING) -> Conditional:
        """New conditional over this cell. See Conditional.if_."""
        from livecell.combinators import Conditional

        return Conditional(self).if_(condition, then)

    def ifnot(self, condition, then=MISSING) -> Conditional:
        """New conditional over this cell. See Conditional.ifnot."""
        from livecell.combinators import Conditional

        return Conditional(self).ifnot(condition, then)

    def switch(self) -> Switch:
        """New switch over this cell's value; add branches with .case()."""
        from livecell.combinators import Switch

        return Switch(self)

    def transform(self, fn: Callable[[T], R]) -> Cell[R]:
        from livecell.combinators import transform

        return transform(self, fn)

    def attr(self, name, *args, **kwargs) -> Cell:
        from livecell.combinators import attr

        return attr(self, name, *args, **kwargs)

    def func(self, name, *args, **kwargs) -> Cell:
        from livecell.combinators import func

        return func(self, name, *args, **kwargs)

    def item(self, *keys) -> Cell:
        from livecell.combinators import item

        return item(self, *keys)

    def __repr__(self) -> str:
        kind = "derived" if self._expression is not None else "constant"
        return f"Cell({self._value!r}, {self._type.name}, {kind})"


def derived(fn: Callable[[], T], type: CellType = CellType.DYNAMIC, *, runtime: Runtime | None = None) -> Cell[T]:
    """Decorator/factory to create a Cell from an expression.

    Usage:
        price = Cell(10)
        quantity = Cell(3)

        @derived
        def total():
            return price.value * quantity.value

        total.value  # 30
        quantity.value = 4
        total.value  # 40
    """
    return Cell(type=type, expression=fn, runtime=runtime)
