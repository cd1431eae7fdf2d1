"""
Tests for the neptune-cli JSON-RPC client against a local HTTP server.
"""

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from nsup.rpc_client import NodeRpcClient, RpcError, RpcUnavailableError

COOKIE = "cd" * 32


class Handler(BaseHTTPRequestHandler):
    def do_POST(self):
        body = json.loads(self.rfile.read(int(self.headers["Content-Length"])))
        self.server.requests.append((dict(self.headers), body))
        if self.headers.get("Cookie") != f"neptune-cli={COOKIE}":
            reply = {"jsonrpc": "2.0", "id": body["id"], "error": {"code": 401, "message": "bad cookie"}}
        elif body["method"] == "dashboard_overview_data":
            reply = {"jsonrpc": "2.0", "id": body["id"], "result": {"tip_height": 7}}
        else:
            reply = {"jsonrpc": "2.0", "id": body["id"]}
        data = json.dumps(reply).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    srv.requests = []
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    yield srv
    srv.shutdown()
    srv.server_close()


@pytest.fixture
def client(server):
    return NodeRpcClient(port=server.server_address[1])


class TestNodeRpcClient:

    def test_no_cookie_fails_fast(self, client, server):
        assert not client.connected
        with pytest.raises(RpcUnavailableError):
            client.dashboard_overview()
        assert server.requests == []

    def test_dashboard_overview(self, client, server):
        client.set_cookie(COOKIE)

        assert client.dashboard_overview() == {"tip_height": 7}

        headers, body = server.requests[0]
        assert body["method"] == "dashboard_overview_data"
        assert body["jsonrpc"] == "2.0"
        assert headers["Cookie"] == f"neptune-cli={COOKIE}"

    def test_request_ids_increase(self, client, server):
        client.set_cookie(COOKIE)
        client.dashboard_overview()
        client.dashboard_overview()
        assert [b["id"] for _, b in server.requests] == [1, 2]

    def test_error_object_raised(self, client):
        client.set_cookie("ef" * 32)
        with pytest.raises(RpcError, match="bad cookie") as exc_info:
            client.dashboard_overview()
        assert exc_info.value.code == 401

    def test_missing_result(self, client):
        client.set_cookie(COOKIE)
        with pytest.raises(RpcError, match="missing result"):
            client.call("wallet_status")

    def test_disconnect(self, client):
        client.set_cookie(COOKIE)
        client.disconnect()
        assert not client.connected
        with pytest.raises(RpcUnavailableError):
            client.dashboard_overview()
