import asyncio
import json
from typing import Any, Callable, List, Optional

import pytest
import pytest_asyncio

from bridge.config import BridgeSettings
from bridge.network.session import GatewaySession
from bridge.network.transport.base import TransportClosed
from bridge.network.transport.dummy import DummyTransport


class ScriptedTransport(DummyTransport):
    """In-memory socket: tests push inbound frames and inspect what was sent."""

    def __init__(self, settings=None) -> None:
        super().__init__(settings)
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: List[dict[str, Any]] = []
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(json.loads(data))

    async def receive(self) -> bytes | str:
        item = await self.inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, frame: dict[str, Any]) -> None:
        self.inbound.put_nowait(json.dumps(frame))

    def push_raw(self, data: bytes | str) -> None:
        self.inbound.put_nowait(data)

    def close_from_server(self, code: int = 1006, reason: str = "abnormal closure") -> None:
        self.inbound.put_nowait(TransportClosed(code, reason))


async def wait_until(predicate: Callable[[], bool], *, timeout: float = 1.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


class FakeGateway:
    """Hands out scripted transports and plays the server side of the handshake."""

    def __init__(self) -> None:
        self.transports: List[ScriptedTransport] = []

    def factory(self, settings: BridgeSettings) -> ScriptedTransport:
        transport = ScriptedTransport(settings)
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> Optional[ScriptedTransport]:
        return self.transports[-1] if self.transports else None

    async def wait_until(self, predicate: Callable[[], bool], *, timeout: float = 1.0) -> bool:
        return await wait_until(predicate, timeout=timeout)

    async def challenge(self, nonce: str = "nonce-1") -> dict[str, Any]:
        """Send the challenge on the newest socket and return the connect request it triggers."""

        assert await self.wait_until(lambda: self.current is not None and self.current.connected)
        transport = self.current
        before = len(transport.sent)
        transport.push({"type": "event", "event": "connect.challenge", "payload": {"nonce": nonce}})
        assert await self.wait_until(lambda: len(transport.sent) > before)
        return transport.sent[-1]

    async def handshake(self, session: GatewaySession, *, hello: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        connect_task = asyncio.create_task(session.connect())
        connect_req = await self.challenge()
        self.current.push(
            {
                "type": "res",
                "id": connect_req["id"],
                "ok": True,
                "payload": hello or {"type": "hello-ok", "protocol": 3},
            }
        )
        return await asyncio.wait_for(connect_task, timeout=1.0)


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings(
        gateway_url="ws://127.0.0.1:18789",
        gateway_token="test-token",
        transport="dummy",
        reconnect_delay_seconds=0.05,
        connect_timeout_seconds=1.0,
        request_timeout_seconds=1.0,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def session(settings: BridgeSettings, gateway: FakeGateway):
    session = GatewaySession(settings=settings, transport_factory=gateway.factory)
    yield session
    await session.disconnect()
