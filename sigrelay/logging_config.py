from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Third-party loggers whose level follows [logging].ws_level
LIBRARY_LOGGERS = ("websockets", "websockets.server", "websockets.client")


def level_from(value: Any, default: int) -> int:
    """Turn a config value ("debug", "WARN", 10, "") into a logging level."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value

    text = str(value).strip().upper() if value is not None else ""
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    named = logging.getLevelNamesMapping().get(text)
    if named is not None:
        return named
    return int(text) if text.isdigit() else default


def _blank_to_none(value: Any) -> str | None:
    s = "" if value is None else str(value)
    return s if s.strip() else None


def _file_handler(path_text: str) -> logging.Handler:
    path = Path(os.path.expanduser(path_text))
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install sigrelay's root handlers, replacing any already present.

    Called at startup and again on every SIGHUP reload. ``override_file``
    of ``""`` means "no file" even when the config names one.
    """
    if override_file is not None:
        log_file = _blank_to_none(override_file)
    else:
        log_file = _blank_to_none(cfg.log_file)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=_blank_to_none(cfg.log_format) or DEFAULT_FORMAT,
        datefmt=_blank_to_none(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level_from(override_level or cfg.log_level, logging.INFO))

    ws_level = level_from(cfg.log_ws_level, logging.WARNING)
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(ws_level)

    logging.captureWarnings(True)
