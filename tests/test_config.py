import logging
import os
import tomllib

import pytest
import tomlkit

from sigrelay.cli import (
    _build_arg_parser,
    _default_config_document,
    build_config,
    main,
)
from sigrelay.config import RelayRuntimeConfig, apply_config_data, diff_config_summary
from sigrelay.logging_config import configure_logging, level_from


def test_apply_relay_and_logging_tables() -> None:
    base = RelayRuntimeConfig(store_path="/tmp/s.cbor")
    cfg = apply_config_data(
        base,
        {
            "relay": {
                "listen_port": 9000,
                "guest_notify_policy": "addressed",
                "notify_denied": True,
                "mailbox_max_messages": 50,
                "config_path": "/elsewhere.toml",
            },
            "logging": {"level": "DEBUG", "ws_level": "INFO", "file": ""},
        },
    )
    assert cfg.listen_port == 9000
    assert cfg.guest_notify_policy == "addressed"
    assert cfg.notify_denied is True
    assert cfg.mailbox_max_messages == 50
    assert cfg.log_level == "DEBUG"
    assert cfg.log_ws_level == "INFO"
    assert cfg.log_file is None
    assert cfg.config_path is None


def test_empty_store_path_with_memory_backend() -> None:
    cfg = apply_config_data(
        RelayRuntimeConfig(), {"relay": {"store_backend": "memory", "store_path": ""}}
    )
    assert cfg.store_path is None


@pytest.mark.parametrize(
    "relay",
    [
        {"guest_notify_policy": "everyone", "store_backend": "memory"},
        {"store_backend": "sqlite"},
        {"store_backend": "file", "store_path": ""},
        {"store_backend": "memory", "listen_port": 70000},
        {"store_backend": "memory", "mailbox_max_messages": -1},
    ],
)
def test_invalid_values_are_rejected(relay) -> None:
    with pytest.raises(ValueError):
        apply_config_data(RelayRuntimeConfig(), {"relay": relay})


def test_diff_marks_restart_fields() -> None:
    old = RelayRuntimeConfig(store_backend="memory")
    new = RelayRuntimeConfig(
        store_backend="memory", listen_port=9999, notify_denied=True
    )
    assert diff_config_summary(old, new) == [
        "listen_port: 8787 -> 9999 (restart required)",
        "notify_denied: False -> True",
    ]
    assert diff_config_summary(old, old) == []


def test_default_document_round_trips_through_loader() -> None:
    text = tomlkit.dumps(_default_config_document("/var/lib/sigrelay/store.cbor"))
    data = tomllib.loads(text)
    cfg = apply_config_data(RelayRuntimeConfig(), data)
    assert cfg.store_path == "/var/lib/sigrelay/store.cbor"
    assert cfg.store_backend == "file"
    assert cfg.log_file is None
    assert cfg.log_datefmt is None
    assert cfg.guest_notify_policy == "any"


def test_first_run_writes_config_and_exits(tmp_path) -> None:
    cfg_path = tmp_path / "conf" / "sigrelay.toml"
    store_path = tmp_path / "data" / "store.cbor"

    with pytest.raises(SystemExit) as exc:
        main(["--config", str(cfg_path), "--store", str(store_path)])

    assert exc.value.code == 0
    assert cfg_path.exists()
    assert oct(os.stat(cfg_path).st_mode & 0o777) == oct(0o600)
    data = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    assert data["relay"]["store_path"] == str(store_path)


def test_invalid_config_exits_with_usage_code(tmp_path) -> None:
    cfg_path = tmp_path / "sigrelay.toml"
    cfg_path.write_text('[relay]\nguest_notify_policy = "nope"\n', encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        main(["--config", str(cfg_path)])
    assert exc.value.code == 2


def test_flags_override_file(tmp_path) -> None:
    cfg_path = tmp_path / "sigrelay.toml"
    cfg_path.write_text(
        '[relay]\nlisten_port = 9000\nstore_path = "/tmp/x.cbor"\n', encoding="utf-8"
    )
    args = _build_arg_parser().parse_args(
        [
            "--config",
            str(cfg_path),
            "--memory-store",
            "--port",
            "9100",
            "--guest-notify-policy",
            "addressed",
            "--notify-denied",
            "--log-file",
            "",
        ]
    )
    cfg = build_config(args)
    assert cfg.listen_port == 9100
    assert cfg.store_backend == "memory"
    assert cfg.guest_notify_policy == "addressed"
    assert cfg.notify_denied is True
    assert cfg.log_file is None
    assert cfg.config_path == str(cfg_path)


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield root
    for h in list(root.handlers):
        root.removeHandler(h)
        if h not in saved_handlers:
            h.close()
    for h in saved_handlers:
        root.addHandler(h)
    root.setLevel(saved_level)


def test_configure_logging_file_and_library_level(tmp_path, restore_root_logging) -> None:
    root = restore_root_logging
    log_path = tmp_path / "logs" / "sigrelay.log"
    cfg = RelayRuntimeConfig(
        store_backend="memory",
        log_console=False,
        log_file=str(log_path),
        log_ws_level="ERROR",
    )
    configure_logging(cfg, override_level="DEBUG")
    logging.getLogger("sigrelay.test").debug("hello file")
    for h in root.handlers:
        h.flush()

    assert root.level == logging.DEBUG
    assert logging.getLogger("websockets").level == logging.ERROR
    assert "hello file" in log_path.read_text(encoding="utf-8")


def test_reload_applies_policy_and_flags_restart_fields(
    tmp_path, relay_factory, restore_root_logging
) -> None:
    cfg_path = tmp_path / "sigrelay.toml"
    cfg_path.write_text(
        "[relay]\n"
        'store_backend = "memory"\n'
        "listen_port = 9001\n"
        'guest_notify_policy = "addressed"\n'
        "\n[logging]\nconsole = false\n",
        encoding="utf-8",
    )
    relay = relay_factory(config_path=str(cfg_path))

    changes = relay.reload_config()

    assert relay.config.guest_notify_policy == "addressed"
    assert "listen_port: 8787 -> 9001 (restart required)" in changes
    assert "guest_notify_policy: any -> addressed" in changes


def test_reload_keeps_old_config_on_error(tmp_path, relay_factory) -> None:
    cfg_path = tmp_path / "sigrelay.toml"
    cfg_path.write_text('[relay]\nguest_notify_policy = "nope"\n', encoding="utf-8")
    relay = relay_factory(config_path=str(cfg_path))
    before = relay.config

    assert relay.reload_config() == []
    assert relay.config is before


@pytest.mark.parametrize(
    "value,expected",
    [
        ("debug", logging.DEBUG),
        ("WARN", logging.WARNING),
        (" error ", logging.ERROR),
        (15, 15),
        ("25", 25),
        ("", logging.INFO),
        (None, logging.INFO),
        ("loud", logging.INFO),
    ],
)
def test_level_from(value, expected) -> None:
    assert level_from(value, logging.INFO) == expected
