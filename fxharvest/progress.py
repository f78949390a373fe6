"""
Progress events sent from the controller to whatever is watching it.

Delivery is best-effort and at-most-once: a listener that raises is logged
and skipped, it never disturbs the session.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger("progress")


@runtime_checkable
class ProgressListener(Protocol):
    def on_status(self, text: str) -> None:
        ...

    def on_count(self, count: int) -> None:
        ...

    def on_finished(self) -> None:
        ...


class LoggingListener:
    """Writes every event to a logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logging.getLogger("fxharvest.progress")

    def on_status(self, text: str) -> None:
        self._log.info("status: %s", text)

    def on_count(self, count: int) -> None:
        self._log.info("count: %d", count)

    def on_finished(self) -> None:
        self._log.info("finished")


class ProgressBroadcaster:
    """Fans events out to any number of listeners."""

    def __init__(self, listeners: Optional[Iterable[ProgressListener]] = None):
        self._listeners: List[ProgressListener] = list(listeners or [])

    def add(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def _deliver(self, method: str, *args) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception as exc:
                logger.warning("Listener %s.%s failed: %s",
                               type(listener).__name__, method, exc)

    def status(self, text: str) -> None:
        self._deliver("on_status", text)

    def count(self, count: int) -> None:
        self._deliver("on_count", count)

    def finished(self) -> None:
        self._deliver("on_finished")
