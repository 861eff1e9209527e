"""
JSON-RPC client for the SPDK target's Unix socket.

Every call opens its own connection, writes one request line, waits for the
response carrying the same id and closes the socket again. There is no
pooling, multiplexing or retrying at this layer.
"""

import itertools
import json
import logging
import os
import socket
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from spdk_manager.config import Settings
from spdk_manager.errors import (
    EngineError,
    ProtocolError,
    RpcTimeout,
    TransportUnavailable,
    UnexpectedResponse,
)

logger = logging.getLogger(__name__)

_RECV_CHUNK = 4096


@dataclass(frozen=True)
class RpcRequest:
    id: int
    method: str
    params: Any = None

    def to_wire(self) -> bytes:
        """Serialise as one newline-terminated JSON object."""
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": self.id, "method": self.method}
        # params is omitted entirely when absent or an empty object;
        # arrays and bare primitives are sent as-is.
        if self.params is not None and self.params != {}:
            payload["params"] = self.params
        return (json.dumps(payload) + "\n").encode("utf-8")


def _parse_lines(buffer: bytes) -> List[Dict[str, Any]]:
    """
    Return the JSON objects that can be decoded from the buffer so far.

    Lines that are not JSON (log noise, or a partial tail still arriving)
    are skipped. The unterminated tail counts as soon as it parses on its
    own, because SPDK does not always terminate its last line. A line that
    parses to anything but an object raises ProtocolError.
    """
    *complete, tail = buffer.split(b"\n")
    candidates = complete + ([tail] if tail.strip() else [])

    parsed: List[Dict[str, Any]] = []
    for line in candidates:
        if not line.strip():
            continue
        try:
            obj = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            continue
        if isinstance(obj, dict):
            parsed.append(obj)
        else:
            raise ProtocolError(f"Response is not a JSON object: {obj!r}")
    return parsed


class SpdkRpcClient:
    """Transport for SPDK JSON-RPC calls over a local Unix socket."""

    def __init__(self, settings: Settings) -> None:
        self.socket_path = settings.spdk_socket_path
        self.timeout_seconds = settings.rpc_timeout_seconds
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def _ensure_socket(self, method: Optional[str]) -> None:
        if not os.path.exists(self.socket_path):
            raise TransportUnavailable(
                f"SPDK socket not found: {self.socket_path}",
                method=method,
            )

    def _connect(self, method: Optional[str], timeout: float) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect(self.socket_path)
        except socket.timeout:
            sock.close()
            raise RpcTimeout(method or "<connect>", timeout)
        except OSError as exc:
            sock.close()
            raise TransportUnavailable(
                f"RPC connection failed: {exc}",
                method=method,
            ) from exc
        return sock

    def check_connection(self) -> bool:
        """Connect and disconnect once; raises TransportUnavailable on failure."""
        self._ensure_socket(None)
        sock = self._connect(None, min(self.timeout_seconds, 5.0))
        sock.close()
        return True

    def call(self, method: str, params: Any = None, timeout: Optional[float] = None) -> Any:
        """
        Send one request and return its ``result``.

        Raises:
            TransportUnavailable: socket missing or connection refused
            RpcTimeout: no matching response within ``timeout`` seconds
            ProtocolError: malformed response or connection closed early
            UnexpectedResponse: a response for another request id arrived
            EngineError: SPDK answered with an ``error`` object
        """
        timeout_seconds = timeout or self.timeout_seconds
        request = RpcRequest(id=self._next_id(), method=method, params=params)

        self._ensure_socket(method)
        deadline = time.monotonic() + timeout_seconds
        sock = self._connect(method, timeout_seconds)
        try:
            logger.debug("Sending RPC request: %s (id=%s) params=%r", method, request.id, params)
            try:
                sock.sendall(request.to_wire())
                response = self._await_response(sock, request, deadline, timeout_seconds)
            except socket.timeout:
                raise RpcTimeout(method, timeout_seconds)
            except OSError as exc:
                raise TransportUnavailable(
                    f"RPC connection failed: {exc}",
                    method=method,
                ) from exc
        finally:
            sock.close()

        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                code = error.get("code")
                message = str(error.get("message", ""))
            else:
                code, message = None, str(error)
            raise EngineError(code, message, method=method)

        return response.get("result")

    def _await_response(
        self,
        sock: socket.socket,
        request: RpcRequest,
        deadline: float,
        timeout_seconds: float,
    ) -> Dict[str, Any]:
        buffer = b""
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RpcTimeout(request.method, timeout_seconds)
            sock.settimeout(remaining)

            chunk = sock.recv(_RECV_CHUNK)
            buffer += chunk

            for obj in _parse_lines(buffer):
                if obj.get("id") != request.id:
                    raise UnexpectedResponse(request.method, request.id, obj.get("id"))
                return obj

            if not chunk:
                if buffer.strip():
                    raise ProtocolError(
                        f"Malformed response to {request.method}: {buffer[:200]!r}",
                        method=request.method,
                    )
                raise ProtocolError(
                    f"Connection closed before a response to {request.method} arrived",
                    method=request.method,
                )
