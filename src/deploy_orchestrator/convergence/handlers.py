"""
Deferred handler queue.

Assertions that report changed notify handlers. The queue holds handler
identities, role plus name, as resolved from the notifying task role. Notifications
are collected, not dispatched, and flushed once after every assertion of the node
has been processed.

Guarantees
- a handler is queued at most once, duplicates are dropped
- flush order is the order of first notification
- flush empties the queue, so a second flush runs nothing
"""

from __future__ import annotations

from typing import Callable, Iterable


class HandlerQueue:
    def __init__(self) -> None:
        self._pending: dict[str, None] = {}

    def notify(self, names: Iterable[str]) -> None:
        for name in names:
            self._pending.setdefault(name, None)

    def pending(self) -> list[str]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    def flush(self, run: Callable[[str], None]) -> list[str]:
        """
        Run every pending handler once and return their identities.

        The queue is emptied before running, so a failing handler does not
        leave the rest queued for a later flush.
        """
        names = list(self._pending)
        self._pending.clear()
        fired: list[str] = []
        for name in names:
            run(name)
            fired.append(name)
        return fired
