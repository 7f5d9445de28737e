"""Per-session FIFO mutation queue.

Harness calls and watcher notifications both mutate a session. Each caller
takes a ticket and runs only when every earlier ticket has finished, so
mutations apply strictly in arrival order. The owning thread may re-enter.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class SessionMutationQueue:
    def __init__(self, name: str = "") -> None:
        self.name = name
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self._owner: int | None = None
        self._depth = 0

    @contextmanager
    def turn(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._owner == me:
                self._depth += 1
                reentrant = True
            else:
                reentrant = False
                ticket = self._next_ticket
                self._next_ticket += 1
                while self._serving != ticket:
                    self._cond.wait()
                self._owner = me
                self._depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._depth -= 1
                if not reentrant:
                    self._owner = None
                    self._serving += 1
                    self._cond.notify_all()

    @property
    def pending(self) -> int:
        """Tickets issued but not yet finished."""
        with self._cond:
            return self._next_ticket - self._serving
