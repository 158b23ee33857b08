from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace

import tomlkit

from .config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from .logging_config import configure_logging
from .paths import default_config_path, default_store_path, ensure_private_dir
from .service import RelayService


def _default_config_document(store_path: str) -> tomlkit.TOMLDocument:
    defaults = RelayRuntimeConfig()

    doc = tomlkit.document()
    doc.add(tomlkit.comment("sigrelay configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run."))
    doc.add(tomlkit.comment("Edit it, then start sigrelay again."))
    doc.add(tomlkit.nl())

    relay = tomlkit.table()

    relay.add(tomlkit.comment("Address the WebSocket listener binds to."))
    relay.add("listen_host", defaults.listen_host)
    relay.add("listen_port", defaults.listen_port)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Persistent state: host passwords, permission lists, mailboxes."))
    relay.add(tomlkit.comment('store_backend = "memory" keeps nothing across restarts.'))
    relay.add("store_backend", defaults.store_backend)
    relay.add("store_path", store_path)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Largest accepted inbound frame in bytes."))
    relay.add("max_message_bytes", defaults.max_message_bytes)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("WebSocket keepalive (0 disables)."))
    relay.add("ping_interval_s", defaults.ping_interval_s)
    relay.add("ping_timeout_s", defaults.ping_timeout_s)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Which guest connection hears about allowGuest/rejectGuest:"))
    relay.add(tomlkit.comment('  "any"       - the first connected guest other than the host'))
    relay.add(tomlkit.comment('  "addressed" - only the guest whose id is in the request'))
    relay.add("guest_notify_policy", defaults.guest_notify_policy)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Answer messages from unapproved guests with an error"))
    relay.add(tomlkit.comment("instead of dropping them silently."))
    relay.add("notify_denied", defaults.notify_denied)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Cap on buffered messages per offline host (0 = unlimited)."))
    relay.add(tomlkit.comment("When full, the oldest messages are dropped."))
    relay.add("mailbox_max_messages", defaults.mailbox_max_messages)

    doc.add("relay", relay)
    doc.add(tomlkit.nl())

    logging_tbl = tomlkit.table()
    logging_tbl.add(tomlkit.comment("Log level for sigrelay itself."))
    logging_tbl.add("level", defaults.log_level)
    logging_tbl.add(tomlkit.comment("Log level for the websockets library."))
    logging_tbl.add("ws_level", defaults.log_ws_level)
    logging_tbl.add(tomlkit.comment("Log to stderr (systemd/journald friendly)."))
    logging_tbl.add("console", defaults.log_console)
    logging_tbl.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    logging_tbl.add("file", "")
    logging_tbl.add(tomlkit.comment("Log format and optional date format."))
    logging_tbl.add("format", defaults.log_format)
    logging_tbl.add("datefmt", "")
    doc.add("logging", logging_tbl)

    return doc


def _write_default_config(config_path: str, store_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(cfg_dir)

    storage_dir = os.path.dirname(store_path)
    if storage_dir:
        ensure_private_dir(storage_dir)

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(_default_config_document(store_path)))
    try:
        os.chmod(config_path, 0o600)
    except OSError:
        pass


def _ensure_first_run_files(config_path: str, store_path: str) -> bool:
    if os.path.exists(config_path):
        return False
    _write_default_config(config_path, store_path)
    return True


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sigrelay", description="Run a host/guest WebSocket signaling relay"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument(
        "--store",
        default=None,
        help="Path to the persistent store file (default comes from config)",
    )
    p.add_argument(
        "--memory-store",
        action="store_true",
        help="Keep state in memory only (nothing survives a restart)",
    )

    p.add_argument("--host", default=None, help="Listen address")
    p.add_argument("--port", type=int, default=None, help="Listen port")

    p.add_argument(
        "--guest-notify-policy",
        choices=("any", "addressed"),
        default=None,
        help="Which guest is told about allow/reject decisions",
    )
    p.add_argument(
        "--notify-denied",
        action="store_true",
        help="Send an error to guests whose messages are not permitted",
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


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    config_path = str(args.config)

    cfg = RelayRuntimeConfig(
        config_path=config_path, store_path=str(default_store_path())
    )
    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    if args.store is not None:
        cfg = replace(cfg, store_path=str(args.store), store_backend="file")
    if args.memory_store:
        cfg = replace(cfg, store_backend="memory")

    if args.host is not None:
        cfg = replace(cfg, listen_host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, listen_port=int(args.port))

    if args.guest_notify_policy is not None:
        cfg = replace(cfg, guest_notify_policy=str(args.guest_notify_policy))
    if args.notify_denied:
        cfg = replace(cfg, notify_denied=True)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    validate_config(cfg)
    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    store_path = str(args.store) if args.store else str(default_store_path())

    if _ensure_first_run_files(config_path, store_path):
        print(
            "Created default sigrelay config. Edit it before starting:\n"
            f"- Config: {config_path}\n"
            f"- Store:  {store_path}\n"
            "\nThen re-run sigrelay.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    try:
        cfg = build_config(args)
    except ValueError as e:
        print(f"sigrelay: invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    svc.run_forever()


if __name__ == "__main__":
    main()
