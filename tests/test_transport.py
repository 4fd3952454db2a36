"""Tests for the REST and websocket middleware transports."""
import errno
import json
from unittest import mock

import pytest
import requests

from services.errors import RemoteError, is_already_exists, is_not_found
from services.middleware_client import MiddlewareClient
from utils.zfs import TrueNASMiddlewareClient


def response(status=200, body=None, text=""):
    r = mock.Mock(status_code=status, text=text)
    if body is None:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = body
    return r


class TestMiddlewareClient:

    def setup_method(self):
        self.session = mock.Mock()
        self.client = MiddlewareClient(
            base_url="https://nas.local/", api_key="1-abc", timeout=5, verify=True, session=self.session,
        )

    def test_call_posts_method_and_params(self):
        self.session.post.return_value = response(body=[{"id": "tank"}])

        assert self.client.call("pool.dataset.query", ([["id", "=", "tank"]], {})) == [{"id": "tank"}]

        self.session.post.assert_called_once_with(
            "https://nas.local/api/v2.0/core/call",
            headers={"Authorization": "Bearer 1-abc"},
            json={"method": "pool.dataset.query", "params": [[["id", "=", "tank"]], {}]},
            timeout=5,
            verify=True,
        )

    def test_non_json_body_returned_as_text(self):
        self.session.post.return_value = response(text="OK")
        assert self.client.call("core.ping") == "OK"

    def test_error_body_keeps_errno(self):
        self.session.post.return_value = response(
            status=422, body={"errno": errno.EEXIST, "message": "[EEXIST] pool.dataset.create.name: already exists"},
        )

        with pytest.raises(RemoteError) as exc:
            self.client.call("pool.dataset.create", [{"name": "tank/a"}])

        assert exc.value.errno == errno.EEXIST
        assert is_already_exists(exc.value)

    def test_error_without_json(self):
        self.session.post.return_value = response(status=500, text="Internal Server Error")
        with pytest.raises(RemoteError, match="500"):
            self.client.call("system.info")

    def test_request_exception_wrapped(self):
        self.session.post.side_effect = requests.ConnectionError("connection refused")
        with pytest.raises(RemoteError, match="connection refused"):
            self.client.call("system.info")

    def test_requires_configuration(self, monkeypatch):
        import services.middleware_client as mc
        from config import Settings

        monkeypatch.setattr(mc, "settings", Settings(TRUENAS_URL=None, TRUENAS_API_KEY=""))
        with pytest.raises(RuntimeError):
            MiddlewareClient()


class FakeSocket:
    def __init__(self, replies):
        self.replies = [json.dumps(r) for r in replies]
        self.sent = []
        self.closed = False

    def send(self, data):
        self.sent.append(json.loads(data))

    def recv(self):
        return self.replies.pop(0)

    def close(self):
        self.closed = True


CONNECTED = {"msg": "connected", "session": "s1"}
LOGGED_IN = {"msg": "result", "id": "1", "result": True}


class TestTrueNASMiddlewareClient:

    def connect(self, replies):
        sock = FakeSocket(replies)
        client = TrueNASMiddlewareClient(url="wss://nas.local/websocket", api_key="1-abc", verify_tls=True, timeout=5)
        with mock.patch("utils.zfs.websocket.create_connection", return_value=sock) as create:
            client.connect()
        create.assert_called_once_with("wss://nas.local/websocket", timeout=5, sslopt=None)
        return client, sock

    def test_handshake_and_login(self):
        client, sock = self.connect([CONNECTED, LOGGED_IN])

        assert sock.sent[0] == {"msg": "connect", "version": "1", "support": ["1"]}
        assert sock.sent[1]["method"] == "auth.login_with_api_key"
        assert sock.sent[1]["params"] == ["1-abc"]

    def test_result_matched_by_id(self):
        client, sock = self.connect([
            CONNECTED,
            LOGGED_IN,
            {"msg": "added", "collection": "core.get_jobs"},
            {"msg": "result", "id": "1", "result": "stale"},
            {"msg": "result", "id": "2", "result": "TrueNAS-SCALE-25.04.0"},
        ])

        assert client.call("system.version") == "TrueNAS-SCALE-25.04.0"
        assert sock.sent[2] == {"id": "2", "msg": "method", "method": "system.version", "params": []}

    def test_error_reply_becomes_remote_error(self):
        client, _ = self.connect([
            CONNECTED,
            LOGGED_IN,
            {"msg": "result", "id": "2", "error": {"error": errno.ENOENT, "reason": "[ENOENT] tank/a not found"}},
        ])

        with pytest.raises(RemoteError) as exc:
            client.call("pool.dataset.delete", ["tank/a", {}])

        assert exc.value.errno == errno.ENOENT
        assert is_not_found(exc.value)

    def test_rejected_login_closes(self):
        sock = FakeSocket([CONNECTED, {"msg": "result", "id": "1", "result": False}])
        client = TrueNASMiddlewareClient(url="wss://nas.local/websocket", api_key="bad", verify_tls=True)

        with mock.patch("utils.zfs.websocket.create_connection", return_value=sock):
            with pytest.raises(RemoteError, match="auth rejected"):
                client.connect()

        assert sock.closed
        assert client.ws is None

    def test_failed_handshake(self):
        sock = FakeSocket([{"msg": "failed", "version": "1"}])
        client = TrueNASMiddlewareClient(url="wss://nas.local/websocket", api_key="1-abc", verify_tls=True)

        with mock.patch("utils.zfs.websocket.create_connection", return_value=sock):
            with pytest.raises(RemoteError, match="handshake"):
                client.connect()

    def test_connection_error_wrapped(self):
        client = TrueNASMiddlewareClient(url="wss://nas.local/websocket", api_key="1-abc", verify_tls=True)

        with mock.patch("utils.zfs.websocket.create_connection", side_effect=OSError("no route to host")):
            with pytest.raises(RemoteError, match="no route to host"):
                client.connect()

    def test_call_before_connect(self):
        client = TrueNASMiddlewareClient(url="wss://nas.local/websocket", api_key="1-abc")
        with pytest.raises(RemoteError, match="not connected"):
            client.call("system.version")

    def test_context_manager_closes(self):
        sock = FakeSocket([CONNECTED, LOGGED_IN])
        with mock.patch("utils.zfs.websocket.create_connection", return_value=sock):
            with TrueNASMiddlewareClient(url="wss://nas.local/websocket", api_key="1-abc", verify_tls=True) as client:
                assert client.ws is sock
        assert sock.closed
