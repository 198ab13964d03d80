"""Newline-delimited UTF-8 framing over a stream socket."""

from __future__ import annotations

import socket
import threading
from typing import BinaryIO, Protocol


class LineSink(Protocol):
    def send_line(self, line: str) -> None: ...


class LineReader(Protocol):
    def read_line(self) -> str | None: ...


def encode_line(line: str) -> bytes:
    return line.encode("utf-8") + b"\n"


def decode_line(raw: bytes) -> str:
    return raw.rstrip(b"\r\n").decode("utf-8", errors="replace")


class SocketLineReader:
    """Reads whole lines; returns None at end of stream."""

    def __init__(self, rfile: BinaryIO) -> None:
        self._rfile = rfile

    def read_line(self) -> str | None:
        raw = self._rfile.readline()
        if not raw:
            return None
        return decode_line(raw)


class SocketLineSink:
    """Writes whole lines to one socket.

    The lock makes this the single writer for its socket: lines from
    concurrent senders never interleave, and lines from one sender arrive
    in the order they were sent.
    """

    def __init__(self, sock: socket.socket, wfile: BinaryIO, *, peer: str = "-") -> None:
        self.sock = sock
        self.peer = peer
        self._wfile = wfile
        self._lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return f"<SocketLineSink {self.peer}>"

    def send_line(self, line: str) -> None:
        data = encode_line(line)
        with self._lock:
            if self._closed:
                raise ConnectionError(f"sink for {self.peer} is closed")
            self._wfile.write(data)
            self._wfile.flush()

    def close(self) -> None:
        """Shut the socket down so the owning session's read returns EOF."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected by the peer.
            pass
