"""Errors raised by the chat core.

Each error's message is the reply line sent back to the client that caused
it, so handlers can simply reply ``str(exc)``.
"""

from __future__ import annotations

from .constants import (
    R_NICK_TAKEN,
    R_RECIPIENT_NOT_FOUND,
    R_ROOM_NOT_FOUND,
)


class ChatError(Exception):
    """Base class for failures reported to a client as a reply line."""


class NicknameTaken(ChatError):
    def __init__(self, nickname: str) -> None:
        super().__init__(R_NICK_TAKEN)
        self.nickname = nickname


class RoomNotFound(ChatError):
    def __init__(self, room_id: int | None = None) -> None:
        super().__init__(R_ROOM_NOT_FOUND)
        self.room_id = room_id


class RecipientNotFound(ChatError):
    def __init__(self, nickname: str) -> None:
        super().__init__(R_RECIPIENT_NOT_FOUND.format(nickname=nickname))
        self.nickname = nickname


class MalformedCommand(ChatError):
    """Missing or unparseable command arguments; the message is usage text."""
