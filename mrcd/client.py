"""Line-mode reference client for mrcd.

Besides relaying lines between the terminal and the server, the client
answers the server's ``invited`` sentinel by sending ``/join <room id>``,
taking the id from the invite notice that came just before it.
"""

from __future__ import annotations

import argparse
import logging
import re
import socket
import sys
import threading
from typing import Callable, TextIO

from .constants import CMD_BYE, CMD_JOIN, DEFAULT_PORT, INVITE_SENTINEL
from .transport import SocketLineReader, SocketLineSink

_INVITE_RE = re.compile(r"^You have been invited to join room (\d+) by ")

INVITED_MESSAGE = "You have been invited to join the room."


class ChatClient:
    def __init__(
        self,
        send: Callable[[str], None],
        *,
        output: Callable[[str], None] = print,
    ) -> None:
        self.send = send
        self.output = output
        self.log = logging.getLogger("mrcd.client")
        self._pending_room: int | None = None

    def handle_server_line(self, line: str) -> None:
        if line == INVITE_SENTINEL:
            self.output(INVITED_MESSAGE)
            room_id, self._pending_room = self._pending_room, None
            self.send(CMD_JOIN if room_id is None else f"{CMD_JOIN} {room_id}")
            return

        m = _INVITE_RE.match(line)
        if m:
            self._pending_room = int(m.group(1))
        self.output(line)

    def receive_loop(self, reader: SocketLineReader) -> None:
        try:
            while True:
                line = reader.read_line()
                if line is None:
                    break
                self.handle_server_line(line)
        except OSError as e:
            self.log.error("Error receiving messages from the server: %s", e)

    def input_loop(self, stdin: TextIO) -> None:
        for raw in stdin:
            line = raw.rstrip("\r\n")
            self.send(line)
            if line == CMD_BYE:
                break


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mrcd-client", description="Connect to an mrcd server")
    p.add_argument("--host", default="localhost", help="Server address")
    p.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server port")
    return p


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    try:
        sock = socket.create_connection((args.host, args.port))
    except OSError as e:
        print(f"Could not connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        raise SystemExit(1) from None

    with sock, sock.makefile("rb") as rfile, sock.makefile("wb") as wfile:
        print("Connected to the server.")
        sink = SocketLineSink(sock, wfile, peer=f"{args.host}:{args.port}")
        client = ChatClient(sink.send_line)

        receiver = threading.Thread(
            target=client.receive_loop,
            args=(SocketLineReader(rfile),),
            name="mrcd-client-recv",
            daemon=True,
        )
        receiver.start()
        try:
            client.input_loop(sys.stdin)
        except OSError as e:
            print(f"I/O error: {e}", file=sys.stderr)
        finally:
            sink.close()
        receiver.join(timeout=1.0)


if __name__ == "__main__":
    main()
