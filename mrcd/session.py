from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .commands import SystemCommand, dispatch, parse_room_id
from .constants import (
    A_BROADCAST,
    A_DISCONNECT,
    A_REGISTRY_OP,
    A_REPLY,
    A_ROOM_OP,
    CHAT_LINE,
    CMD_BYE,
    CMD_CREATE,
    CMD_EXIT_ROOM,
    CMD_INVITE,
    CMD_JOIN,
    CMD_LIST,
    CMD_ROOM_USERS,
    CMD_USERS,
    CMD_WHISPER,
    INVITE_SENTINEL,
    R_ALREADY_IN_ROOM,
    R_INVITE_NOTICE,
    R_JOINED,
    R_MOVED_TO_LOBBY,
    R_NICK_INVALID,
    R_NICK_PROMPT,
    R_NOT_IN_ROOM,
    R_ROOM_CREATED,
    R_ROOM_LIST_HEADER,
    R_ROOM_LIST_ITEM,
    R_ROOM_USERS_HEADER,
    R_USERS_HEADER,
    R_WHISPER,
    S_DISCONNECTED,
    S_IN_ROOM,
    S_LOBBY,
    S_NEGOTIATING,
)
from .errors import ChatError, NicknameTaken, RecipientNotFound, RoomNotFound
from .util import anonymous_nick, normalize_nick

if TYPE_CHECKING:
    from .rooms import Room
    from .service import ChatService
    from .transport import LineReader, LineSink


class ClientSession:
    """
    Server-side state and control loop for one connected client.

    The session moves through negotiating -> lobby <-> in_room ->
    disconnected. It is driven by a single thread (the one running
    ``run``); other sessions only ever reach it through its sink.

    This class is responsible for:
    - Nickname negotiation against the ConnectionRegistry
    - Executing dispatcher actions against the registries and its room
    - Running disconnect cleanup exactly once
    """

    def __init__(
        self,
        service: ChatService,
        reader: LineReader,
        sink: LineSink,
        *,
        peer: str = "-",
    ) -> None:
        self.service = service
        self.reader = reader
        self.sink = sink
        self.peer = peer
        self.log = logging.getLogger("mrcd.session")

        self.nickname: str | None = None
        self.room: Room | None = None

        self._lifecycle_lock = threading.Lock()
        self._disconnected = False

    def __repr__(self) -> str:
        return f"<ClientSession nick={self.nickname!r} state={self.state} peer={self.peer}>"

    @property
    def state(self) -> str:
        if self._disconnected:
            return S_DISCONNECTED
        if self.nickname is None:
            return S_NEGOTIATING
        if self.room is not None:
            return S_IN_ROOM
        return S_LOBBY

    # Lifecycle

    def run(self) -> None:
        try:
            if self.negotiate():
                self.serve()
        except OSError as e:
            self.log.warning(
                "Client error peer=%s nick=%r err=%s", self.peer, self.nickname, e
            )
        finally:
            self.disconnect()

    def negotiate(self) -> bool:
        """Settle on a unique nickname. Returns False if the client went away."""
        cfg = self.service.config
        self.reply(R_NICK_PROMPT)

        while True:
            line = self.reader.read_line()
            if line is None or line.strip() == CMD_BYE:
                return False

            if not line.strip():
                nickname = self._register_anonymous()
                break

            nickname = normalize_nick(line, max_chars=cfg.nick_max_chars)
            if nickname is None:
                self.reply(R_NICK_INVALID)
                continue

            try:
                self.service.connections.register(nickname, self.sink)
            except NicknameTaken as e:
                self.log.debug("Nickname taken nick=%r peer=%s", nickname, self.peer)
                self.reply(str(e))
                continue
            break

        with self._lifecycle_lock:
            self.nickname = nickname
        self.log.info("%s connected. peer=%s", nickname, self.peer)

        if cfg.greeting:
            self.reply(*cfg.greeting.splitlines())
        return True

    def _register_anonymous(self) -> str:
        prefix = self.service.config.anonymous_prefix
        while True:
            nickname = anonymous_nick(prefix)
            try:
                self.service.connections.register(nickname, self.sink)
            except NicknameTaken:
                continue
            return nickname

    def serve(self) -> None:
        while True:
            line = self.reader.read_line()
            if line is None:
                return
            if not self.handle_line(line):
                return

    def disconnect(self) -> bool:
        """Release the nickname and room. Only the first call has any effect."""
        with self._lifecycle_lock:
            if self._disconnected:
                return False
            self._disconnected = True
            nickname = self.nickname

        if nickname is None:
            self.log.debug("Client left before choosing a nickname peer=%s", self.peer)
            return True

        # Leave the room while the nickname is still ours, so a client that
        # registers it next cannot be mistaken for this one.
        self._leave_room()
        self.service.connections.unregister(nickname)
        self.service.stats.inc("disconnects")
        self.log.info("%s disconnected. peer=%s", nickname, self.peer)
        return True

    # Dispatch

    def handle_line(self, line: str) -> bool:
        """Handle one input line. Returns False when the session should end."""
        action = dispatch(line, in_room=self.room is not None)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX nick=%r action=%s cmd=%s len=%s",
                self.nickname,
                action.kind,
                action.command.kind if action.command else None,
                len(line),
            )

        if action.kind == A_DISCONNECT:
            return False
        if action.kind == A_REPLY:
            self.reply(action.text or "")
        elif action.kind == A_BROADCAST:
            self.chat(action.text or "")
        elif action.kind in (A_REGISTRY_OP, A_ROOM_OP):
            try:
                self._run_command(action.command)
            except ChatError as e:
                self.reply(str(e))
        else:
            raise ValueError(f"unhandled action {action.kind!r}")
        return True

    def _run_command(self, cmd: SystemCommand | None) -> None:
        if cmd is None:
            raise ValueError("command action without a command")

        if cmd.kind == CMD_USERS:
            self.list_users()
        elif cmd.kind == CMD_LIST:
            self.list_rooms()
        elif cmd.kind == CMD_WHISPER:
            self.whisper(cmd.args[0], cmd.args[1])
        elif cmd.kind == CMD_CREATE:
            self.create_room()
        elif cmd.kind == CMD_JOIN:
            self.join_room(parse_room_id(cmd.args))
        elif cmd.kind == CMD_EXIT_ROOM:
            self.exit_room()
        elif cmd.kind == CMD_ROOM_USERS:
            self.list_room_users()
        elif cmd.kind == CMD_INVITE:
            self.invite(cmd.args[0])
        else:
            raise ValueError(f"unhandled command {cmd.kind!r}")

    # Output

    def reply(self, *lines: str) -> None:
        """Send lines to this client. Transport errors propagate and end the session."""
        for line in lines:
            self.sink.send_line(line)

    def _deliver(self, sink: LineSink, nickname: str, *lines: str) -> bool:
        """Send lines to another client; failures are that client's problem."""
        try:
            for line in lines:
                sink.send_line(line)
        except OSError as e:
            self.log.warning("Send failed to nick=%r from=%r err=%s", nickname, self.nickname, e)
            self.service.stats.inc("send_errors")
            return False
        return True

    # Room commands

    def create_room(self) -> None:
        self._leave_room()
        rooms = self.service.rooms
        room_id = rooms.create(self.nickname, self.sink)
        room = rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        self.room = room
        self.service.stats.inc("joins")
        self.reply(R_ROOM_CREATED.format(room_id=room_id), R_JOINED)

    def join_room(self, room_id: int) -> None:
        room = self.service.rooms.get(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        if room is self.room:
            self.reply(R_ALREADY_IN_ROOM.format(room_id=room_id))
            return

        # Join first: if the target was deleted meanwhile we stay where we were.
        room.add_member(self.nickname, self.sink)
        self._leave_room()
        self.room = room
        self.service.stats.inc("joins")
        self.log.debug("Joined nick=%r room=%s", self.nickname, room_id)
        self.reply(R_JOINED)

    def exit_room(self) -> None:
        if self.room is None:
            self.reply(R_NOT_IN_ROOM)
            return
        self._leave_room()
        self.reply(R_MOVED_TO_LOBBY)

    def _leave_room(self) -> None:
        room = self.room
        if room is None:
            return
        self.room = None
        room.remove_member(self.nickname, self.sink)
        self.service.stats.inc("parts")
        self.log.debug("Left nick=%r room=%s", self.nickname, room.room_id)

    def list_rooms(self) -> None:
        ids = self.service.rooms.list_ids()
        self.reply(R_ROOM_LIST_HEADER, *(R_ROOM_LIST_ITEM.format(room_id=i) for i in ids))

    def list_room_users(self) -> None:
        room = self.room
        if room is None:
            self.reply(R_NOT_IN_ROOM)
            return
        self.reply(R_ROOM_USERS_HEADER, *room.members())

    def chat(self, text: str) -> None:
        room = self.room
        if room is None:
            self.reply(R_NOT_IN_ROOM)
            return
        line = CHAT_LINE.format(nickname=self.nickname, message=text)
        room.broadcast(line)
        self.service.stats.inc("msgs_broadcast")
        self.service.history.append(room.room_id, line)

    # Registry commands

    def list_users(self) -> None:
        self.reply(R_USERS_HEADER, *sorted(self.service.connections.list_nicknames()))

    def whisper(self, recipient: str, message: str) -> None:
        sink = self.service.connections.lookup(recipient)
        if sink is None:
            raise RecipientNotFound(recipient)
        if self._deliver(sink, recipient, R_WHISPER.format(sender=self.nickname, message=message)):
            self.service.stats.inc("whispers")

    def invite(self, invitee: str) -> None:
        room = self.room
        if room is None:
            self.reply(R_NOT_IN_ROOM)
            return
        sink = self.service.connections.lookup(invitee)
        if sink is None:
            raise RecipientNotFound(invitee)
        notice = R_INVITE_NOTICE.format(room_id=room.room_id, sender=self.nickname)
        if self._deliver(sink, invitee, notice, INVITE_SENTINEL):
            self.service.stats.inc("invites")
            self.log.debug("Invite nick=%r to=%r room=%s", self.nickname, invitee, room.room_id)
