from __future__ import annotations

import os
import uuid

from .constants import NICK_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_nick(value, *, max_chars: int = NICK_MAX_CHARS) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        return None

    # Nicknames are whitespace-delimited command arguments (/whisper, /invite),
    # and a leading slash would read as a command.
    if any(ch.isspace() for ch in s) or s.startswith("/"):
        return None

    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in s):
        return None

    return s


def anonymous_nick(prefix: str = "Anonymous") -> str:
    return prefix + uuid.uuid4().hex[:8]
