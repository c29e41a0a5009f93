# tests/test_api.py
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from fetchrelay.api import create_app
from fetchrelay.config.settings import RelaySettings
from fetchrelay.http.client import FetchErrorKind, UpstreamError, UpstreamResponse
from fetchrelay.relay import codec


@pytest.fixture
def transport():
    t = MagicMock()
    t.fetch.return_value = UpstreamResponse(
        status=200, headers={"Content-Type": ["text/plain"]}, body=b"hello"
    )
    return t


@pytest.fixture
def client(transport):
    settings = RelaySettings(PASSWORD="", RETRY_SLEEP=0, UNKNOWN_SLEEP=0)
    return TestClient(create_app(settings, transport=transport))


def _relay_body(**fields):
    base = {"method": "GET", "url": "http://example.com/", "headers": "", "payload": b""}
    base.update(fields)
    return codec.encode_request_body(base)


def _assert_envelope(r):
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/gif"
    assert "x-correlation-id" not in r.headers


def test_post_relays_inside_gif_envelope(client, transport):
    r = client.post("/fetch.py", content=_relay_body())
    _assert_envelope(r)
    status, _, content = codec.unframe_response(r.content)
    assert status == 200
    assert content == b"hello"
    transport.fetch.assert_called_once()


def test_upstream_failure_keeps_envelope(client, transport):
    transport.fetch.side_effect = UpstreamError(FetchErrorKind.INVALID_URL, "bad")
    r = client.post("/fetch.py", content=_relay_body())
    _assert_envelope(r)
    assert codec.unframe_response(r.content)[0] == 501


def test_garbage_body_keeps_envelope(client, transport):
    r = client.post("/fetch.py", content=b"\x00garbage")
    _assert_envelope(r)
    assert codec.unframe_response(r.content)[0] == 400
    transport.fetch.assert_not_called()


def test_handler_crash_becomes_500_notification(client, monkeypatch):
    def boom(body):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(client.app.state.relay_handler, "handle", boom)
    r = client.post("/fetch.py", content=_relay_body())
    _assert_envelope(r)
    status, _, content = codec.unframe_response(r.content)
    assert status == 500
    assert b"kaboom" in content


def test_get_shows_landing_page(client):
    r = client.get("/fetch.py")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/html")
    assert "Fetch Relay 1.7.0 is running" in r.text


def test_custom_fetch_path(transport):
    settings = RelaySettings(PASSWORD="", FETCH_PATH="/relay")
    c = TestClient(create_app(settings, transport=transport))
    _assert_envelope(c.post("/relay", content=_relay_body()))
    assert c.post("/fetch.py", content=_relay_body()).status_code == 404


def test_health_and_version(client):
    assert client.get("/health").text == "ok"
    assert client.get("/api/version").text == "1.7.0"
