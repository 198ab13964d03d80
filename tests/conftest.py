from __future__ import annotations

from collections import deque

import pytest

from mrcd.config import ServerRuntimeConfig
from mrcd.service import ChatService
from mrcd.session import ClientSession


class RecordingSink:
    """In-memory sink; set ``fail`` to simulate a dead peer."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.fail = False

    def send_line(self, line: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.lines.append(line)

    def take(self) -> list[str]:
        lines, self.lines = self.lines, []
        return lines


class ScriptedReader:
    def __init__(self, lines=()) -> None:
        self.lines = deque(lines)

    def read_line(self) -> str | None:
        if not self.lines:
            return None
        item = self.lines.popleft()
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def service(tmp_path) -> ChatService:
    cfg = ServerRuntimeConfig(history_dir=str(tmp_path / "history"))
    svc = ChatService(cfg)
    svc.history.ensure_directory()
    return svc


@pytest.fixture
def connect(service):
    """Return a factory that creates a session already past nickname negotiation."""

    def _connect(nickname: str) -> ClientSession:
        session = ClientSession(
            service, ScriptedReader([nickname]), RecordingSink(), peer=nickname
        )
        assert session.negotiate()
        session.sink.take()
        return session

    return _connect
