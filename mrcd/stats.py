"""Statistics tracking and reporting for the chat server."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import ChatService


class StatsManager:
    """
    Lifetime counters for the server.

    Tracks:
    - Connections and disconnects
    - Rooms created/deleted, joins and parts
    - Chat lines broadcast, whispers, invites
    - Failed sends and failed history writes
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "disconnects": 0,
            "rooms_created": 0,
            "rooms_deleted": 0,
            "joins": 0,
            "parts": 0,
            "msgs_broadcast": 0,
            "whispers": 0,
            "invites": 0,
            "send_errors": 0,
            "history_errors": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self, service: ChatService) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0

        clients = service.connections.get_stats()["total"]
        room_stats = service.rooms.get_stats()
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"mrcd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(f"clients={clients}")
        lines.append(
            f"rooms={room_stats['rooms_total']} memberships={room_stats['memberships']}"
        )
        if room_stats["top_rooms"]:
            lines.append(
                "top_rooms=" + ", ".join(f"{r}:{n}" for r, n in room_stats["top_rooms"])
            )
        lines.append(
            "sessions: connections={} disconnects={}".format(
                c.get("connections", 0), c.get("disconnects", 0)
            )
        )
        lines.append(
            "rooms: created={} deleted={} joins={} parts={}".format(
                c.get("rooms_created", 0),
                c.get("rooms_deleted", 0),
                c.get("joins", 0),
                c.get("parts", 0),
            )
        )
        lines.append(
            "events: msgs={} whispers={} invites={} send_errors={} history_errors={}".format(
                c.get("msgs_broadcast", 0),
                c.get("whispers", 0),
                c.get("invites", 0),
                c.get("send_errors", 0),
                c.get("history_errors", 0),
            )
        )
        return "\n".join(lines)
