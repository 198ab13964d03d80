"""Append-only chat history, one text file per room."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from .constants import HISTORY_SUFFIX

if TYPE_CHECKING:
    from .stats import StatsManager


class HistoryWriter:
    """Appends chat lines to ``<directory>/<room_id>.txt``.

    Write failures are logged and swallowed: losing a history line must
    never stop the chat line from being delivered.
    """

    def __init__(self, directory: str | Path, stats: StatsManager | None = None) -> None:
        self.directory = Path(directory)
        self.stats = stats
        self.log = logging.getLogger("mrcd.history")
        # Serializes appends for every room.
        self._write_lock = threading.Lock()

    def ensure_directory(self) -> bool:
        """Create the history directory. Returns True if it was created."""
        if self.directory.is_dir():
            return False
        self.directory.mkdir(parents=True, exist_ok=True)
        self.log.info("Chat history directory created path=%s", self.directory)
        return True

    def path_for(self, room_id: int) -> Path:
        return self.directory / f"{int(room_id)}{HISTORY_SUFFIX}"

    def append(self, room_id: int, line: str) -> bool:
        path = self.path_for(room_id)
        try:
            with self._write_lock:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            self.log.warning("Error saving chat history room=%s path=%s err=%s", room_id, path, e)
            if self.stats is not None:
                self.stats.inc("history_errors")
            return False
        return True
