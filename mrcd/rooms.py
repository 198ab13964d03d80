"""Room management for the mrcd server.

This module handles:
- Room membership and broadcast
- Room id allocation (monotonic, never reused)
- Deleting rooms as soon as their last member leaves
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from .errors import RoomNotFound

if TYPE_CHECKING:
    from .stats import StatsManager
    from .transport import LineSink


class Room:
    """A numbered set of members that receive each other's chat lines.

    Membership is guarded by the room's own lock. Once the last member
    leaves the room is closed for good: it unregisters itself and refuses
    further joins, so a session holding a stale reference cannot revive it.
    """

    def __init__(self, room_id: int, registry: RoomRegistry | None = None) -> None:
        self.room_id = room_id
        self.registry = registry
        self.log = logging.getLogger("mrcd.rooms")
        self._lock = threading.Lock()
        self._members: dict[str, LineSink] = {}
        self._closed = False

    def __repr__(self) -> str:
        return f"<Room {self.room_id} members={len(self)}>"

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def add_member(self, nickname: str, sink: LineSink) -> None:
        with self._lock:
            if self._closed:
                raise RoomNotFound(self.room_id)
            self._members[nickname] = sink

    def remove_member(self, nickname: str, sink: LineSink) -> bool:
        """Remove a member. Returns True if this emptied and closed the room.

        Only the entry holding ``sink`` is removed: a later client that took
        over the same nickname keeps its place.
        """
        with self._lock:
            if self._members.get(nickname) is not sink:
                return False
            del self._members[nickname]
            if self._members:
                return False
            self._closed = True

        if self.registry is not None:
            self.registry.remove_if_empty(self.room_id)
        self.log.info("Room %s deleted.", self.room_id)
        return True

    def members(self) -> list[str]:
        """Snapshot of member nicknames in join order."""
        with self._lock:
            return list(self._members)

    def broadcast(self, line: str) -> int:
        """Send a line to every member present at call time.

        Sends happen outside the room lock so a slow peer does not stall
        joins and parts. Returns the number of successful deliveries.
        """
        with self._lock:
            recipients = list(self._members.items())

        delivered = 0
        for nickname, sink in recipients:
            try:
                sink.send_line(line)
                delivered += 1
            except OSError as e:
                self.log.warning(
                    "Send failed room=%s nick=%r err=%s", self.room_id, nickname, e
                )
                if self.registry is not None and self.registry.stats is not None:
                    self.registry.stats.inc("send_errors")
        return delivered


class RoomRegistry:
    """Process-wide mapping from room id to Room."""

    def __init__(self, stats: StatsManager | None = None) -> None:
        self.log = logging.getLogger("mrcd.rooms")
        self.stats = stats
        self._lock = threading.Lock()
        self._rooms: dict[int, Room] = {}
        self._next_id = 1

    def create(self, nickname: str, sink: LineSink) -> int:
        """Allocate the next room id and register a room holding its founder.

        The founder is added before the room is published, so other sessions
        never see the new room empty.
        """
        with self._lock:
            room_id = self._next_id
            self._next_id += 1

        room = Room(room_id, self)
        room.add_member(nickname, sink)

        with self._lock:
            self._rooms[room_id] = room

        if self.stats is not None:
            self.stats.inc("rooms_created")
        self.log.info("Room %s created founder=%r", room_id, nickname)
        return room_id

    def get(self, room_id: int) -> Room | None:
        with self._lock:
            return self._rooms.get(room_id)

    def list_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._rooms)

    def remove_if_empty(self, room_id: int) -> bool:
        # A closed room stays closed, so checking outside the registry lock is
        # safe; the identity check below guards against a concurrent removal.
        room = self.get(room_id)
        if room is None or not room.closed:
            return False
        with self._lock:
            if self._rooms.get(room_id) is not room:
                return False
            del self._rooms[room_id]

        if self.stats is not None:
            self.stats.inc("rooms_deleted")
        return True

    def clear_all(self) -> None:
        with self._lock:
            self._rooms.clear()

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            rooms = list(self._rooms.values())
        sizes = [(r.room_id, len(r)) for r in rooms]
        top_rooms = sorted(sizes, key=lambda x: (-x[1], x[0]))[:5]
        return {
            "rooms_total": len(sizes),
            "memberships": sum(n for _, n in sizes),
            "top_rooms": top_rooms,
        }
