from __future__ import annotations

from dataclasses import dataclass

from .constants import DEFAULT_HOST, DEFAULT_PORT, NICK_MAX_CHARS


@dataclass(frozen=True)
class ServerRuntimeConfig:
    config_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    history_dir: str | None = None
    server_name: str = "mrcd"
    greeting: str | None = None
    nick_max_chars: int = NICK_MAX_CHARS
    anonymous_prefix: str = "Anonymous"
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None
