"""Transport abstractions for the gateway socket."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class TransportClosed(ConnectionError):
    """Raised by ``receive`` once the peer has closed the socket."""

    def __init__(self, code: Optional[int] = None, reason: str = "") -> None:
        super().__init__(f"socket closed ({code}): {reason}" if code is not None else f"socket closed: {reason}")
        self.code = code
        self.reason = reason


class BaseTransport(ABC):
    """Abstract message-oriented socket owned by a single gateway session."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def send(self, data: bytes) -> None:
        ...

    @abstractmethod
    async def receive(self) -> bytes | str:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
