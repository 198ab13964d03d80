from __future__ import annotations

import logging
import signal
import socketserver
import threading
import time
from pathlib import Path

from .config import ServerRuntimeConfig
from .connections import ConnectionRegistry
from .history import HistoryWriter
from .paths import default_history_dir
from .rooms import RoomRegistry
from .session import ClientSession
from .stats import StatsManager
from .transport import LineReader, LineSink, SocketLineReader, SocketLineSink
from .util import expand_path


class _ClientHandler(socketserver.StreamRequestHandler):
    server: _ChatTCPServer

    def handle(self) -> None:
        host, port = self.client_address[:2]
        peer = f"{host}:{port}"
        threading.current_thread().name = f"mrcd-client-{peer}"

        self.server.service.run_session(
            SocketLineReader(self.rfile),
            SocketLineSink(self.request, self.wfile, peer=peer),
            peer=peer,
        )


class _ChatTCPServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True
    # Sessions are unblocked by closing their sockets; do not join on close.
    block_on_close = False

    def __init__(self, address: tuple[str, int], service: ChatService) -> None:
        self.service = service
        super().__init__(address, _ClientHandler)


class ChatService:
    def __init__(self, config: ServerRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("mrcd.service")

        self.stats = StatsManager()
        self.connections = ConnectionRegistry(self.stats)
        self.rooms = RoomRegistry(self.stats)

        history_dir = config.history_dir or str(default_history_dir())
        self.history = HistoryWriter(Path(expand_path(history_dir)), self.stats)

        self._shutdown = threading.Event()
        self._sessions_lock = threading.Lock()
        self._sessions: set[ClientSession] = set()

        self._server: _ChatTCPServer | None = None
        self._serve_thread: threading.Thread | None = None

    @property
    def server_address(self) -> tuple[str, int] | None:
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        self.stats.set_start_time()
        self.history.ensure_directory()

        self._server = _ChatTCPServer((self.config.host, int(self.config.port)), self)
        self._serve_thread = threading.Thread(
            target=self._server.serve_forever,
            name="mrcd-listener",
            daemon=True,
        )
        self._serve_thread.start()

        host, port = self.server_address or ("-", 0)
        self.log.info(
            "Server %s started on %s:%s history_dir=%s",
            self.config.server_name,
            host,
            port,
            self.history.directory,
        )
        self.log.info("Policy nick_max_chars=%s", self.config.nick_max_chars)

    def run_forever(self) -> None:
        if self._server is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self._shutdown.set())
        signal.signal(signal.SIGTERM, lambda *_: self._shutdown.set())

        while not self._shutdown.is_set():
            time.sleep(0.25)
        self.stop()

    def stop(self) -> None:
        self._shutdown.set()

        server = self._server
        self._server = None
        if server is not None:
            server.shutdown()

        # Closing the sinks makes every session's read hit EOF, so each one
        # runs its own disconnect cleanup on its own thread.
        with self._sessions_lock:
            sessions = list(self._sessions)
        for session in sessions:
            close = getattr(session.sink, "close", None)
            if close is not None:
                close()

        if server is not None:
            server.server_close()

        self.log.info("Server stopped\n%s", self.stats.format_stats(self))

    def run_session(
        self, reader: LineReader, sink: LineSink, *, peer: str = "-"
    ) -> ClientSession:
        session = ClientSession(self, reader, sink, peer=peer)
        with self._sessions_lock:
            self._sessions.add(session)
        self.log.info("A new client connected: %s", peer)
        try:
            session.run()
        finally:
            with self._sessions_lock:
                self._sessions.discard(session)
        return session

    def active_sessions(self) -> list[ClientSession]:
        with self._sessions_lock:
            return list(self._sessions)
