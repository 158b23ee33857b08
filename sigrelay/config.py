from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import NOTIFY_ADDRESSED, NOTIFY_ANY

STORE_BACKENDS = ("file", "memory")
NOTIFY_POLICIES = (NOTIFY_ANY, NOTIFY_ADDRESSED)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    store_path: str | None = None
    store_backend: str = "file"
    listen_host: str = "0.0.0.0"
    listen_port: int = 8787
    max_message_bytes: int = 1024 * 1024  # 1 MiB default
    ping_interval_s: float = 20.0
    ping_timeout_s: float = 20.0
    guest_notify_policy: str = NOTIFY_ANY
    notify_denied: bool = False
    mailbox_max_messages: int = 0
    log_level: str = "INFO"
    log_ws_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_datefmt: str | None = None


# Fields that only take effect when the listener is (re)started.
RESTART_FIELDS = (
    "listen_host",
    "listen_port",
    "max_message_bytes",
    "ping_interval_s",
    "ping_timeout_s",
    "store_backend",
    "store_path",
)

_LOGGING_KEYS = {
    "level": "log_level",
    "ws_level": "log_ws_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key, field_name in _LOGGING_KEYS.items():
            if key in log_table:
                mapped[field_name] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where to reload from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    for key in ("store_path", "log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None

    cfg = replace(base, **updates) if updates else base
    validate_config(cfg)
    return cfg


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if cfg.store_backend not in STORE_BACKENDS:
        raise ValueError(
            f"store_backend must be one of {', '.join(STORE_BACKENDS)}: {cfg.store_backend!r}"
        )
    if cfg.guest_notify_policy not in NOTIFY_POLICIES:
        raise ValueError(
            f"guest_notify_policy must be one of {', '.join(NOTIFY_POLICIES)}: "
            f"{cfg.guest_notify_policy!r}"
        )
    if not isinstance(cfg.listen_port, int) or not 0 <= cfg.listen_port <= 65535:
        raise ValueError(f"listen_port out of range: {cfg.listen_port!r}")
    if int(cfg.mailbox_max_messages) < 0:
        raise ValueError("mailbox_max_messages must not be negative")
    if cfg.store_backend == "file" and not cfg.store_path:
        raise ValueError("store_path is required for the file store backend")


def _format_value(v: Any) -> str:
    if v is None:
        return "(none)"
    if isinstance(v, (bool, int, float)):
        return str(v)
    s = " ".join(str(v).split())
    if len(s) > 80:
        s = s[:77] + "..."
    return s


def diff_config_summary(old: RelayRuntimeConfig, new: RelayRuntimeConfig) -> list[str]:
    old_d = asdict(old)
    new_d = asdict(new)
    old_d.pop("config_path", None)
    new_d.pop("config_path", None)

    changed: list[str] = []
    for k in sorted(new_d.keys()):
        if old_d.get(k) == new_d.get(k):
            continue
        line = f"{k}: {_format_value(old_d.get(k))} -> {_format_value(new_d.get(k))}"
        if k in RESTART_FIELDS:
            line += " (restart required)"
        changed.append(line)
    return changed
