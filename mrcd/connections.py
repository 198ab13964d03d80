"""Registry of connected clients, keyed by nickname."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from .errors import NicknameTaken

if TYPE_CHECKING:
    from .stats import StatsManager
    from .transport import LineSink


class ConnectionRegistry:
    """
    Process-wide mapping from nickname to outbound sink.

    The key set of the map is the set of active nicknames, so uniqueness
    and sink lookup can never disagree. All access goes through the
    registry's own lock; callers never see the underlying dict.
    """

    def __init__(self, stats: StatsManager | None = None) -> None:
        self.log = logging.getLogger("mrcd.connections")
        self.stats = stats
        self._lock = threading.Lock()
        self._sinks: dict[str, LineSink] = {}

    def register(self, nickname: str, sink: LineSink) -> None:
        """Claim a nickname. Raises NicknameTaken if it is in use."""
        with self._lock:
            if nickname in self._sinks:
                raise NicknameTaken(nickname)
            self._sinks[nickname] = sink
        if self.stats is not None:
            self.stats.inc("connections")
        self.log.debug("Registered nick=%r", nickname)

    def unregister(self, nickname: str) -> None:
        with self._lock:
            removed = self._sinks.pop(nickname, None)
        if removed is not None:
            self.log.debug("Unregistered nick=%r", nickname)

    def lookup(self, nickname: str) -> LineSink | None:
        with self._lock:
            return self._sinks.get(nickname)

    def list_nicknames(self) -> set[str]:
        with self._lock:
            return set(self._sinks)

    def clear_all(self) -> list[LineSink]:
        """Forget every client and return their sinks for teardown."""
        with self._lock:
            sinks = list(self._sinks.values())
            self._sinks.clear()
        return sinks

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {"total": len(self._sinks)}
