from typing import Any, Optional


class SpdkManagerError(RuntimeError):
    """Base error for everything raised by this package."""


class TransportError(SpdkManagerError):
    """A single RPC call failed at the transport layer."""

    def __init__(self, message: str, method: Optional[str] = None) -> None:
        super().__init__(message)
        self.method = method


class TransportUnavailable(TransportError):
    """The SPDK socket is missing or refused the connection."""


class RpcTimeout(TransportError):
    """No response arrived before the call deadline."""

    def __init__(self, method: str, timeout_seconds: float) -> None:
        super().__init__(
            f"RPC request timeout for method: {method} (timeout: {timeout_seconds}s)",
            method=method,
        )
        self.timeout_seconds = timeout_seconds


class ProtocolError(TransportError):
    """The engine answered with something that is not a valid response."""


class UnexpectedResponse(ProtocolError):
    """A response arrived for a different request id."""

    def __init__(self, method: str, expected_id: int, received_id: Any) -> None:
        super().__init__(
            f"Response id {received_id!r} does not match request id {expected_id} "
            f"for method: {method}",
            method=method,
        )
        self.expected_id = expected_id
        self.received_id = received_id


class EngineError(TransportError):
    """SPDK reported an application-level error; code and message are verbatim."""

    def __init__(self, code: Any, message: str, method: Optional[str] = None) -> None:
        super().__init__(f"SPDK RPC Error: {message}", method=method)
        self.code = code
        self.message = message


class CollectorError(SpdkManagerError):
    """One inventory source could not be read."""


class DeviceNotFound(SpdkManagerError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Disk '{name}' not found")
        self.name = name
