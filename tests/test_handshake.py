import pytest
from websockets.datastructures import Headers
from websockets.http11 import Request

from sigrelay.errors import ValidationError
from sigrelay.handshake import is_upgrade_request, parse_handshake


def test_parse_host_with_password() -> None:
    hs = parse_handshake("/?id=alice&role=host&pwd=s3cret")
    assert (hs.user_id, hs.role, hs.password) == ("alice", "host", "s3cret")
    assert "s3cret" not in repr(hs)


def test_parse_legacy_host_role() -> None:
    assert parse_handshake("/ws?id=alice&role=i").role == "host"


def test_parse_guest_without_password() -> None:
    hs = parse_handshake("/?id=bob&role=guest")
    assert (hs.user_id, hs.role, hs.password) == ("bob", "guest", None)


def test_blank_password_counts_as_none() -> None:
    assert parse_handshake("/?id=alice&role=host&pwd=").password is None


def test_percent_encoded_values() -> None:
    hs = parse_handshake("/?id=%E5%B0%8F%E6%98%8E&role=guest")
    assert hs.user_id == "小明"


@pytest.mark.parametrize(
    "path",
    ["/", "/?role=host", "/?id=alice", "/?id=&role=host", "/?id=%20&role=guest"],
)
def test_missing_id_or_role(path: str) -> None:
    with pytest.raises(ValidationError) as exc:
        parse_handshake(path)
    assert str(exc.value) == "缺少ID或角色参数"


def test_unknown_role() -> None:
    with pytest.raises(ValidationError) as exc:
        parse_handshake("/?id=alice&role=admin")
    assert str(exc.value) == "未知角色"


def test_overlong_id_is_refused() -> None:
    with pytest.raises(ValidationError):
        parse_handshake("/?id=" + "x" * 200 + "&role=guest")


def test_is_upgrade_request() -> None:
    assert is_upgrade_request(Headers({"Upgrade": "WebSocket"}))
    assert not is_upgrade_request(Headers({"Accept": "*/*"}))


def _upgrade(path: str) -> Request:
    return Request(path, Headers({"Upgrade": "websocket", "Connection": "Upgrade"}))


def test_process_request_plain_http_gets_status_text(relay, make_conn) -> None:
    resp = relay.process_request(make_conn("c"), Request("/", Headers()))
    assert resp == (200, "信令服务器运行中\n")


@pytest.mark.parametrize("path", ["/?role=guest", "/?id=alice", "/"])
def test_process_request_refuses_upgrade_without_params(relay, make_conn, path) -> None:
    resp = relay.process_request(make_conn("c"), _upgrade(path))
    assert resp == (400, "缺少ID或角色参数\n")
    assert relay.stats_manager.get("handshakes_rejected") == 1


def test_process_request_lets_valid_upgrade_through(relay, make_conn) -> None:
    assert relay.process_request(make_conn("c"), _upgrade("/?id=a&role=guest")) is None
