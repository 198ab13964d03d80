from __future__ import annotations

import os
from pathlib import Path

from .constants import HISTORY_DIRNAME


def default_mrcd_dir() -> Path:
    override = os.environ.get("MRCD_HOME")
    if override:
        return Path(override)
    return Path.home() / ".mrcd"


def default_config_path() -> Path:
    return default_mrcd_dir() / "mrcd.toml"


def default_history_dir() -> Path:
    return default_mrcd_dir() / HISTORY_DIRNAME


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except OSError:
        pass
