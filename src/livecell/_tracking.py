"""Dependency tracking engine, the heart of livecell.

Two pieces of shared state make dependency discovery implicit:

- the evaluation stack: the cells currently recomputing. Reading a cell's
  value while another cell is on top of the stack subscribes the reader.
  A ``None`` frame marks an immune block where reads subscribe nothing.
- the dispatch queue: listener calls fanned out from one mutation are
  queued and driven iteratively, so a cascade through a long chain of
  cells never grows the call stack.

Both live on a Runtime. The runtime bound to the current context is found
through a contextvar, so independent graphs (one per test, say) don't share
a stack or a queue.
"""

from __future__ import annotations

import contextvars
import logging
from collections import deque
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, TypeVar

from livecell._errors import CascadeLimitError
from livecell.config import RuntimeConfig

if TYPE_CHECKING:
    from livecell.cell import Cell

R = TypeVar("R")

logger = logging.getLogger("livecell.tracking")


class EvaluationStack:
    """LIFO of evaluating cells. ``None`` frames are immune regions."""

    __slots__ = ("_frames",)

    def __init__(self) -> None:
        self._frames: list[Cell | None] = []

    def push(self, cell: Cell | None) -> None:
        self._frames.append(cell)

    def pop(self) -> Cell | None:
        return self._frames.pop()

    @property
    def top(self) -> Cell | None:
        """The innermost frame, or None when the stack is empty."""
        return self._frames[-1] if self._frames else None

    def __len__(self) -> int:
        return len(self._frames)

    def __bool__(self) -> bool:
        return bool(self._frames)


class DispatchQueue:
    """FIFO listener dispatch, one queue and in-progress flag per group name.

    The first dispatch for a group becomes the driver and drains the queue.
    Dispatches that arrive while a driver is running (because a listener
    mutated another cell) only enqueue; the driver reaches their entries
    in order. A cascade is therefore processed breadth-first.
    """

    __slots__ = ("_queues", "_in_progress", "_max_cascade")

    def __init__(self, max_cascade: int | None = None) -> None:
        self._queues: dict[str, deque[Callable[[], object]]] = {}
        self._in_progress: set[str] = set()
        self._max_cascade = max_cascade

    def is_dispatching(self, group: str) -> bool:
        return group in self._in_progress

    def pending(self, group: str) -> int:
        """Number of queued calls for ``group``. Useful for testing."""
        queue = self._queues.get(group)
        return len(queue) if queue else 0

    def dispatch(self, group: str, calls: Iterable[Callable[[], object]]) -> None:
        queue = self._queues.get(group)
        if queue is None:
            queue = self._queues[group] = deque()
        queue.extend(calls)
        if group in self._in_progress:
            return

        self._in_progress.add(group)
        limit = self._max_cascade
        ran = 0
        try:
            while queue:
                if limit is not None and ran >= limit:
                    raise CascadeLimitError(
                        f"Cascade on {group!r} exceeded {limit} listener calls; "
                        "the cell graph probably contains a divergent cycle."
                    )
                call = queue.popleft()
                call()
                ran += 1
        finally:
            # A failing listener must not leave later cascades wedged.
            self._in_progress.discard(group)
            del self._queues[group]
        if ran > 1:
            logger.debug("Cascade on %r ran %d listeners", group, ran)


class Runtime:
    """Owner of one evaluation stack and one dispatch queue."""

    __slots__ = ("config", "stack", "dispatcher")

    def __init__(self, config: RuntimeConfig | None = None) -> None:
        self.config = config if config is not None else RuntimeConfig()
        self.stack = EvaluationStack()
        self.dispatcher = DispatchQueue(self.config.max_cascade)

    def __repr__(self) -> str:
        return f"Runtime(depth={len(self.stack)}, config={self.config!r})"


_default_runtime = Runtime()

# The runtime new cells attach to. None means the process-wide default.
current_runtime: contextvars.ContextVar[Runtime | None] = contextvars.ContextVar(
    "current_runtime", default=None
)


def get_runtime() -> Runtime:
    """Runtime bound to the current context, or the process-wide default."""
    runtime = current_runtime.get()
    return runtime if runtime is not None else _default_runtime


@contextmanager
def use_runtime(runtime: Runtime | None = None) -> Iterator[Runtime]:
    """Bind ``runtime`` (a fresh one if omitted) for cells created in the block.

    Usage:
        with use_runtime() as rt:
            a = Cell(1)
            b = derived(lambda: a.value + 1)
            # a and b share rt's stack and queue, isolated from other graphs
    """
    if runtime is None:
        runtime = Runtime()
    token = current_runtime.set(runtime)
    try:
        yield runtime
    finally:
        current_runtime.reset(token)


def immune(fn: Callable[..., R], *args, **kwargs) -> R:
    """Call fn without subscribing to any cell it reads.

    Unlike Cell.execute_immune this may be used anywhere, not only from
    within a cell's own expression. Inside an expression the bound runtime
    is the evaluating cell's, so the immune frame lands on its stack.
    """
    stack = get_runtime().stack
    stack.push(None)
    try:
        return fn(*args, **kwargs)
    finally:
        stack.pop()
