"""WebSocket transport implementation."""

from __future__ import annotations

import logging
from typing import Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from bridge.config import BridgeSettings
from bridge.network.transport.base import BaseTransport, TransportClosed

LOGGER = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """Gateway transport over the ``websockets`` asyncio client."""

    def __init__(self, settings: BridgeSettings) -> None:
        self._settings = settings
        self._ws: Optional[ClientConnection] = None

    async def connect(self) -> None:
        url = str(self._settings.gateway_url)
        LOGGER.info("Connecting to gateway WebSocket at %s", url)
        self._ws = await connect(url, open_timeout=self._settings.connect_timeout_seconds)

    async def send(self, data: bytes) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        # The gateway expects text frames.
        await self._ws.send(data.decode("utf-8"))

    async def receive(self) -> bytes | str:
        if not self._ws:
            raise RuntimeError("WebSocket transport not connected")
        try:
            return await self._ws.recv()
        except ConnectionClosed as exc:
            close = exc.rcvd
            raise TransportClosed(close.code if close else None, close.reason if close else "") from exc

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        if ws:
            LOGGER.info("Closing WebSocket transport")
            await ws.close()
