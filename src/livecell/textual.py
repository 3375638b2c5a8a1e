"""Textual integration for livecell. Opt-in, requires textual.

A Binding forwards a cell's updates to a widget effect. It drops updates
while the app cannot be queried, tolerates widgets that are not mounted yet,
and hops back to the app's thread when a cell changes elsewhere.
"""

import logging
import threading
from collections import Counter
from contextlib import contextmanager

from textual.css.query import NoMatches

from livecell.cell import Cell

logger = logging.getLogger("livecell.textual")

# id(app) -> number of active pause() blocks for that app.
_pauses: Counter = Counter()


@contextmanager
def pause(app):
    """Hold back bound effects, e.g. while widgets are being replaced.

    Pauses nest; effects resume once the outermost block exits.
    """
    key = id(app)
    _pauses[key] += 1
    try:
        yield
    finally:
        _pauses[key] -= 1
        if not _pauses[key]:
            del _pauses[key]


def is_safe(app) -> bool:
    """Can bound effects touch the app's widgets right now?"""
    return app.is_running and not _pauses[id(app)]


class Binding:
    """Disposable link from a cell's updates to a widget effect."""

    __slots__ = ("_app", "_cell", "_effect", "_thread", "_disposed")

    def __init__(self, app, cell: Cell, effect) -> None:
        self._app = app
        self._cell = cell
        self._effect = effect
        self._thread = threading.get_ident()
        self._disposed = False

    @property
    def cell(self) -> Cell:
        return self._cell

    @property
    def disposed(self) -> bool:
        return self._disposed

    def attach(self, immediate: bool = False) -> "Binding":
        self._cell.on_update(self._forward, immediate=immediate)
        return self

    def dispose(self) -> None:
        """Stop forwarding updates. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        self._cell.off_update(self._forward)

    def _forward(self, value) -> None:
        if not is_safe(self._app):
            return
        if threading.get_ident() == self._thread:
            self._apply(value)
        else:
            self._app.call_from_thread(self._apply, value)

    def _apply(self, value) -> None:
        try:
            self._effect(value)
        except NoMatches:
            logger.debug("Dropped update of %r: widget not mounted", self._cell)


def bind(app, cell: Cell, effect, *, immediate: bool = False) -> Binding:
    """Call ``effect(value)`` on every update of ``cell``, on the app's thread.

    The binding is created on the app's thread; updates raised from other
    threads are marshaled through ``app.call_from_thread``.
    """
    return Binding(app, cell, effect).attach(immediate)
