"""Error taxonomy for the gateway session."""

from __future__ import annotations

from typing import Any, Optional

from shared.protocol.frames import DecodeError


class GatewayError(RuntimeError):
    """Base class for gateway session failures."""


class AuthError(GatewayError):
    """Raised when the gateway rejects the connect handshake."""

    def __init__(self, message: str, *, code: Optional[str | int] = None) -> None:
        super().__init__(message)
        self.code = code


class ConnectTimeout(GatewayError, TimeoutError):
    """Raised when no successful handshake completes within the connect window."""


class RequestTimeout(GatewayError, TimeoutError):
    """Raised when a request gets no response before its deadline."""


class Unauthenticated(GatewayError):
    """Raised when a request is attempted without an authenticated session."""


class TransportError(GatewayError):
    """Raised when the underlying socket fails."""


class ConnectionClosedError(TransportError):
    """Raised for requests still outstanding when the socket closes."""


class RequestCancelled(GatewayError):
    """Raised when a pending request is cancelled locally."""


class HandlerError(GatewayError):
    """Raised when an inbound invocation handler fails."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(message)
        self.action = action


class RemoteError(GatewayError):
    """Raised when the gateway answers a request with a failure."""

    def __init__(self, message: str, *, code: Optional[str | int] = None, details: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


__all__ = [
    "GatewayError",
    "DecodeError",
    "AuthError",
    "ConnectTimeout",
    "RequestTimeout",
    "Unauthenticated",
    "TransportError",
    "ConnectionClosedError",
    "RequestCancelled",
    "HandlerError",
    "RemoteError",
]
