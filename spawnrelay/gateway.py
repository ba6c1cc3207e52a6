"""
Gateway RPC client.

Every orchestration step talks to the gateway through ``GatewayClient.call``.
The HTTP client posts {"method", "params"} to <url>/rpc and unwraps
{"ok": true, "result": ...} or raises GatewayError for {"ok": false, ...}.
"""

from __future__ import annotations

import json
import socket
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

_USER_AGENT = "spawnrelay/0.1"


class GatewayError(Exception):
    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class GatewayClient(Protocol):
    def call(self, method: str, params: dict[str, Any], *, timeout_ms: int) -> Any: ...


class HttpGatewayClient:
    def __init__(self, url: str, *, token: str | None = None) -> None:
        self.url = url.rstrip("/")
        self.token = token

    def call(self, method: str, params: dict[str, Any], *, timeout_ms: int) -> Any:
        body = json.dumps({"method": method, "params": params}, ensure_ascii=False).encode("utf-8")
        headers = {"Content-Type": "application/json", "User-Agent": _USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = Request(f"{self.url}/rpc", data=body, headers=headers, method="POST")
        timeout_s = max(0.001, timeout_ms / 1000.0)
        try:
            with urlopen(req, timeout=timeout_s) as resp:
                raw = resp.read()
        except HTTPError as exc:
            raise GatewayError(f"gateway HTTP {exc.code} for {method}: {exc.reason}") from exc
        except URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise GatewayError(f"gateway timeout after {timeout_ms}ms ({method})") from exc
            raise GatewayError(f"gateway unreachable for {method}: {exc.reason}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise GatewayError(f"gateway timeout after {timeout_ms}ms ({method})") from exc

        try:
            payload = json.loads(raw.decode("utf-8", errors="replace") or "{}")
        except json.JSONDecodeError as exc:
            raise GatewayError(f"gateway returned invalid JSON for {method}: {exc}") from exc
        if not isinstance(payload, dict):
            raise GatewayError(f"gateway returned unexpected payload for {method}")
        if payload.get("ok") is False:
            error = payload.get("error")
            if isinstance(error, dict):
                message = str(error.get("message") or "gateway error")
                code = str(error["code"]) if error.get("code") else None
            else:
                message = str(error or "gateway error")
                code = None
            raise GatewayError(message, code=code)
        return payload.get("result")
