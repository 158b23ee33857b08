"""Where sigrelay keeps its files when no path is given."""

from __future__ import annotations

import os
from pathlib import Path

from .util import expand_path

HOME_ENV = "SIGRELAY_HOME"
CONFIG_NAME = "sigrelay.toml"
STORE_NAME = "store.cbor"


def relay_home() -> Path:
    """``$SIGRELAY_HOME`` (``~`` and ``$VARS`` expanded), else ``~/.sigrelay``."""
    override = os.environ.get(HOME_ENV, "").strip()
    if override:
        return Path(expand_path(override))
    return Path.home() / ".sigrelay"


def default_config_path() -> Path:
    return relay_home() / CONFIG_NAME


def default_store_path() -> Path:
    return relay_home() / STORE_NAME


def ensure_private_dir(path: str | os.PathLike, mode: int = 0o700) -> Path:
    """Create ``path`` with its parents.

    Only a directory created here is restricted to ``mode``; existing
    directories keep their permissions.
    """
    p = Path(path)
    if p.is_dir():
        return p

    p.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(p, mode)
    except OSError:
        pass
    return p
