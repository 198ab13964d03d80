from __future__ import annotations

import argparse
import logging
import os
import sys
import tomllib
from dataclasses import asdict, replace
from pathlib import Path

import tomlkit

from . import __version__
from .config import ServerRuntimeConfig
from .logging_config import configure_logging
from .paths import default_config_path, default_history_dir, ensure_private_dir
from .service import ChatService

_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

_OPTIONAL_STR_KEYS = ("history_dir", "greeting", "log_file", "log_datefmt")


def load_toml(path: str) -> dict:
    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: ServerRuntimeConfig, data: dict) -> ServerRuntimeConfig:
    server = data.get("server") if isinstance(data, dict) else None
    if isinstance(server, dict):
        data = {**data, **server}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped = {_LOGGING_KEYS[k]: v for k, v in log_table.items() if k in _LOGGING_KEYS}
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _OPTIONAL_STR_KEYS:
        if key in updates and updates[key] == "":
            updates[key] = None
    if "port" in updates:
        updates["port"] = int(updates["port"])
    if "nick_max_chars" in updates:
        updates["nick_max_chars"] = int(updates["nick_max_chars"])

    return replace(cfg, **updates) if updates else cfg


def render_default_config(history_dir: str) -> str:
    doc = tomlkit.document()
    doc.add(tomlkit.comment("mrcd configuration (TOML)"))
    doc.add(tomlkit.comment("This file was created on first run. Edit it and restart mrcd."))
    doc.add(tomlkit.nl())

    server = tomlkit.table()
    server.add(tomlkit.comment("Listening endpoint. There is no TLS and no authentication."))
    server.add("host", "0.0.0.0")
    server.add("port", 12345)
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("One append-only <room id>.txt file per room is written here."))
    server.add("history_dir", history_dir)
    server.add(tomlkit.nl())
    server.add("server_name", "mrcd")
    server.add(tomlkit.comment("Sent to each client right after its nickname is accepted."))
    server.add("greeting", "")
    server.add(tomlkit.nl())
    server.add(tomlkit.comment("Nickname policy. 0 disables length limiting."))
    server.add("nick_max_chars", 32)
    server.add(tomlkit.comment("Blank nicknames become <prefix> + 8 hex characters."))
    server.add("anonymous_prefix", "Anonymous")
    doc.add("server", server)

    log_table = tomlkit.table()
    log_table.add("level", "INFO")
    log_table.add("console", True)
    log_table.add(tomlkit.comment("Optional log file path (empty disables file logging)."))
    log_table.add("file", "")
    log_table.add("format", "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s")
    log_table.add("datefmt", "")
    doc.add("logging", log_table)

    return tomlkit.dumps(doc)


def ensure_default_config(config_path: str, history_dir: str) -> bool:
    """Write a default config if none exists. Returns True if one was written."""
    if os.path.exists(config_path):
        return False

    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(render_default_config(history_dir))
    return True


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mrcd", description="Run a multi-room chat server")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Address to listen on (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Port to listen on (default: 12345)")
    p.add_argument(
        "--history-dir",
        default=None,
        help="Directory for per-room chat history files",
    )
    p.add_argument("--server-name", default=None, help="Server name used in logs")
    p.add_argument(
        "--greeting",
        default=None,
        help="Greeting sent after a nickname is accepted",
    )
    p.add_argument(
        "--nick-max-chars",
        type=int,
        default=None,
        help="Maximum nickname length (0 disables the limit)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )
    return p


def resolve_config(args: argparse.Namespace) -> tuple[ServerRuntimeConfig, bool]:
    config_path = str(args.config)
    history_dir = str(args.history_dir) if args.history_dir else str(default_history_dir())

    created = ensure_default_config(config_path, history_dir)

    cfg = ServerRuntimeConfig(config_path=config_path, history_dir=history_dir)
    cfg = apply_config_data(cfg, load_toml(config_path))

    if args.host is not None:
        cfg = replace(cfg, host=args.host)
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.history_dir is not None:
        cfg = replace(cfg, history_dir=str(args.history_dir) or None)
    if args.server_name is not None:
        cfg = replace(cfg, server_name=args.server_name)
    if args.greeting is not None:
        cfg = replace(cfg, greeting=args.greeting or None)
    if args.nick_max_chars is not None:
        cfg = replace(cfg, nick_max_chars=int(args.nick_max_chars))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) or None)

    return cfg, created


def main(argv: list[str] | None = None) -> None:
    args = build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg, created = resolve_config(args)
    except (OSError, tomllib.TOMLDecodeError, ValueError, TypeError) as e:
        print(f"mrcd: cannot load config {args.config}: {e}", file=sys.stderr)
        raise SystemExit(2) from None

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)
    log = logging.getLogger("mrcd.cli")
    if created:
        log.info("Created default config at %s", cfg.config_path)

    svc = ChatService(cfg)
    try:
        svc.start()
    except OSError as e:
        log.error("Server error: %s", e)
        raise SystemExit(1) from None
    svc.run_forever()


if __name__ == "__main__":
    main()
