"""JSON-RPC client for the neptune-cli RPC server (authenticated with the node cookie)."""

from __future__ import annotations

import itertools
import json
import logging
import threading
import urllib.error
import urllib.request
from typing import Any

log = logging.getLogger("nsup.rpc")

_TIMEOUT = 10  # seconds, default per call


class RpcError(RuntimeError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code


class RpcUnavailableError(ConnectionError):
    """No cookie (not connected yet, or disconnected for shutdown)."""


class NodeRpcClient:
    """Serialized JSON-RPC 2.0 calls to http://127.0.0.1:<port>."""

    def __init__(self, port: int = 9801, host: str = "127.0.0.1") -> None:
        self.url = f"http://{host}:{port}"
        self._cookie: str | None = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._cookie is not None

    def set_cookie(self, cookie: str) -> None:
        self._cookie = cookie
        log.info("rpc cookie set (%s…), connected to %s", cookie[:16], self.url)

    def disconnect(self) -> None:
        """Drop the cookie; calls made from now on fail fast."""
        if self._cookie is not None:
            log.info("rpc client disconnected")
        self._cookie = None

    def call(self, method: str, params: dict[str, Any] | list[Any] | None = None,
             timeout: float = _TIMEOUT) -> Any:
        with self._lock:
            cookie = self._cookie
            if cookie is None:
                msg = "RPC connection not available (neptune-cli not ready or shutting down)"
                raise RpcUnavailableError(msg)
            body = {"jsonrpc": "2.0", "method": method, "params": params or {}, "id": next(self._ids)}
            req = urllib.request.Request(  # noqa: S310
                self.url,
                data=json.dumps(body).encode(),
                headers={
                    "Content-Type": "application/json",
                    "Cookie": f"neptune-cli={cookie}",
                    "Connection": "close",
                },
                method="POST",
            )
            try:
                with urllib.request.urlopen(req, timeout=timeout) as resp:  # noqa: S310
                    data = json.loads(resp.read())
            except (ConnectionRefusedError, urllib.error.URLError) as exc:
                if self._cookie is None:
                    msg = "RPC connection lost (neptune-cli shutting down)"
                    raise RpcUnavailableError(msg) from exc
                raise

        if data.get("error"):
            err = data["error"]
            raise RpcError(int(err.get("code", -1)), str(err.get("message", "")))
        if "result" not in data:
            msg = "RPC response missing result"
            raise RpcError(-1, msg)
        return data["result"]

    def dashboard_overview(self) -> dict[str, Any]:
        """Balances, tip height, peer count, sync and mining status in one call."""
        return self.call("dashboard_overview_data")
