"""Network stack (transport/session/client) for the gateway connection."""

from bridge.network.client import GatewayClient
from bridge.network.pending import PendingRequestTable
from bridge.network.reconnect import ReconnectSupervisor
from bridge.network.session import GatewaySession
from bridge.network.session_state import SessionState, SessionTracker
from bridge.network.transport.base import BaseTransport, TransportClosed
from bridge.network.transport.dummy import DummyTransport
from bridge.network.transport.websocket import WebSocketTransport

__all__ = [
    "GatewayClient",
    "GatewaySession",
    "PendingRequestTable",
    "ReconnectSupervisor",
    "SessionState",
    "SessionTracker",
    "BaseTransport",
    "TransportClosed",
    "DummyTransport",
    "WebSocketTransport",
]
