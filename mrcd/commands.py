"""Classification of client input lines into session actions."""

from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    A_BROADCAST,
    A_DISCONNECT,
    A_REGISTRY_OP,
    A_REPLY,
    A_ROOM_OP,
    ARG_COMMANDS,
    CMD_BYE,
    CMD_CREATE,
    CMD_EXIT_ROOM,
    CMD_INVITE,
    CMD_JOIN,
    CMD_LIST,
    CMD_ROOM_USERS,
    CMD_USERS,
    CMD_WHISPER,
    NO_ARG_COMMANDS,
    R_INVITE_USAGE,
    R_NOT_IN_ROOM,
    R_ROOM_ID_MISSING,
    R_ROOM_ID_NOT_NUMBER,
    R_WHISPER_USAGE,
)
from .errors import MalformedCommand


@dataclass(frozen=True)
class SystemCommand:
    kind: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChatMessage:
    text: str


@dataclass(frozen=True)
class Action:
    kind: str
    command: SystemCommand | None = None
    text: str | None = None


def classify(line: str) -> SystemCommand | ChatMessage:
    """Split a line into a command or a chat message.

    Commands are matched on the first whitespace-separated token and are
    case-sensitive. Argument-less commands only match a bare token, so
    "/list please" is chat. /whisper keeps the message text intact as its
    last argument.
    """
    parts = line.split(None, 1)
    if not parts:
        return ChatMessage(line)

    token = parts[0]
    rest = parts[1].strip() if len(parts) > 1 else ""

    if token in NO_ARG_COMMANDS:
        if rest:
            return ChatMessage(line)
        return SystemCommand(token)

    if token in ARG_COMMANDS:
        if token == CMD_WHISPER:
            args = tuple(rest.split(None, 1)) if rest else ()
        else:
            args = tuple(rest.split())
        return SystemCommand(token, args)

    return ChatMessage(line)


def parse_room_id(args: tuple[str, ...]) -> int:
    if not args:
        raise MalformedCommand(R_ROOM_ID_MISSING)
    try:
        return int(args[0])
    except ValueError:
        raise MalformedCommand(R_ROOM_ID_NOT_NUMBER) from None


def _validate(cmd: SystemCommand) -> None:
    if cmd.kind == CMD_JOIN:
        parse_room_id(cmd.args)
    elif cmd.kind == CMD_WHISPER:
        if len(cmd.args) != 2 or not cmd.args[1].strip():
            raise MalformedCommand(R_WHISPER_USAGE)
    elif cmd.kind == CMD_INVITE:
        if len(cmd.args) != 1:
            raise MalformedCommand(R_INVITE_USAGE)


def dispatch(line: str, *, in_room: bool) -> Action:
    """Decide what a session should do with one input line.

    Pure: looks only at the line and whether the session is in a room.
    Anything that needs shared state (does the room exist, is the recipient
    online) is left to the session executing the returned action.
    """
    parsed = classify(line)

    if isinstance(parsed, ChatMessage):
        if in_room:
            return Action(A_BROADCAST, text=parsed.text)
        return Action(A_REPLY, text=R_NOT_IN_ROOM)

    try:
        _validate(parsed)
    except MalformedCommand as e:
        return Action(A_REPLY, command=parsed, text=str(e))

    kind = parsed.kind
    if kind == CMD_BYE:
        return Action(A_DISCONNECT, command=parsed)
    if kind in (CMD_USERS, CMD_WHISPER, CMD_LIST):
        return Action(A_REGISTRY_OP, command=parsed)
    if kind in (CMD_EXIT_ROOM, CMD_ROOM_USERS, CMD_INVITE):
        if not in_room:
            return Action(A_REPLY, command=parsed, text=R_NOT_IN_ROOM)
        return Action(A_ROOM_OP, command=parsed)
    if kind in (CMD_CREATE, CMD_JOIN):
        return Action(A_ROOM_OP, command=parsed)

    raise ValueError(f"unhandled command {kind!r}")
