"""Root logger setup for the mrcd server.

Log lines carry the thread name because every connected client runs on
its own ``mrcd-client-<host>:<port>`` thread.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import ServerRuntimeConfig

_FALLBACK_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"

_LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def parse_level(value: Any, default: int) -> int:
    """Accept a level name (any case, ``WARN`` included) or a number."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text in _LEVELS:
        return _LEVELS[text]
    try:
        return int(text)
    except ValueError:
        return default


def _non_blank(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _file_handler(path_text: str) -> logging.Handler:
    path = Path(os.path.expanduser(path_text))
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    try:
        # Chat logs name users and peers; keep them owner-only.
        os.chmod(path, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: ServerRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Point the root logger at the console and/or a log file.

    ``override_level`` and ``override_file`` come from the command line and
    win over the config file. Existing root handlers are dropped first.
    """
    level = parse_level(override_level or cfg.log_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())

    log_file = _non_blank(override_file) or _non_blank(cfg.log_file)
    if log_file:
        handlers.append(_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=_non_blank(cfg.log_format) or _FALLBACK_FORMAT,
        datefmt=_non_blank(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level)

    logging.captureWarnings(True)
