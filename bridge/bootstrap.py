"""Bridge bootstrap entrypoint for gateway client wiring."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Type

from shared.models.gateway import EventFrame

from bridge.config import BridgeSettings, get_settings
from bridge.errors import GatewayError
from bridge.handlers.invoke_handler import ActionHandler
from bridge.network.client import ALL_EVENTS, GatewayClient
from bridge.network.transport.base import BaseTransport
from bridge.network.transport.dummy import DummyTransport
from bridge.network.transport.websocket import WebSocketTransport

LOGGER = logging.getLogger(__name__)


async def _ping(params: dict[str, Any]) -> dict[str, Any]:
    return {"pong": True}


def _log_event(frame: EventFrame) -> None:
    LOGGER.info("Gateway event %s", frame.event)


def _log_status(status: str) -> None:
    LOGGER.info("Gateway status: %s", status)


def build_client(
    settings: Optional[BridgeSettings] = None,
    *,
    action_handler: Optional[ActionHandler] = None,
) -> GatewayClient:
    """Construct a gateway client with the configured transport and built-in actions."""

    settings = settings or get_settings()
    resolved_cls: Type[BaseTransport]
    resolved_cls = WebSocketTransport if settings.transport == "websocket" else DummyTransport
    LOGGER.debug("Initialising gateway client via %s", resolved_cls.__name__)
    client = GatewayClient(
        settings=settings,
        transport_factory=lambda s: resolved_cls(s),
        action_handler=action_handler,
        on_status=_log_status,
    )
    client.register_action("ping", _ping)
    client.register_event_handler(ALL_EVENTS, _log_event)
    return client


async def serve_forever(settings: Optional[BridgeSettings] = None) -> None:
    """Connect to the gateway and keep the process alive."""

    client = build_client(settings)
    try:
        await client.start()
    except GatewayError as exc:
        # Reconnection (when enabled) was already scheduled by the session.
        LOGGER.warning("Initial gateway connection failed: %s", exc)
    try:
        await asyncio.Future()  # block until cancelled
    except asyncio.CancelledError:
        LOGGER.info("Bridge shutdown requested")
        raise
    finally:
        await client.stop()
