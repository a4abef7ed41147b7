"""Gateway client facade (session + event routing + gateway methods)."""

from __future__ import annotations

import inspect
import logging
import time
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.models.gateway import EventFrame, Frame

from bridge.config import BridgeSettings
from bridge.handlers.invoke_handler import ActionFn, ActionHandler, InvocationDispatcher
from bridge.network.session import GatewaySession
from bridge.network.transport.base import BaseTransport

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[EventFrame], Awaitable[None] | None]
ALL_EVENTS = "*"
STATE_EVENT = "vscode.state"


def _idempotency_key() -> str:
    return f"msg-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass
class GatewayClient:
    """Wires a gateway session, routes events by name, and exposes gateway methods."""

    settings: BridgeSettings
    transport_factory: Callable[[BridgeSettings], BaseTransport]
    action_handler: Optional[ActionHandler] = None
    on_status: Optional[Callable[[str], Awaitable[None] | None]] = None

    session: Optional[GatewaySession] = field(default=None, init=False, repr=False)
    dispatcher: Optional[InvocationDispatcher] = field(default=None, init=False, repr=False)
    _handlers: Dict[str, List[EventHandler]] = field(default_factory=lambda: defaultdict(list), init=False, repr=False)
    _unrecognized_hooks: List[Callable[[Frame], Awaitable[None] | None]] = field(
        default_factory=list, init=False, repr=False
    )

    def _ensure_session(self) -> GatewaySession:
        if self.dispatcher is None:
            self.dispatcher = InvocationDispatcher(
                handler=self.action_handler,
                timeout=float(self.settings.invoke_timeout_seconds),
            )
        if self.session is None:
            self.session = GatewaySession(
                settings=self.settings,
                transport_factory=self.transport_factory,
                dispatcher=self.dispatcher,
                on_event=self._dispatch_event,
                on_unrecognized=self._dispatch_unrecognized,
                on_status=self._on_session_status,
            )
        return self.session

    async def start(self) -> dict[str, Any]:
        """Connect and authenticate; returns the gateway's hello payload."""

        return await self._ensure_session().connect()

    async def stop(self) -> None:
        if self.session is not None:
            await self.session.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.session is not None and self.session.is_connected

    def register_event_handler(self, event: str, handler: EventHandler) -> None:
        """Register a handler for a gateway event name (``"*"`` for all events)."""
        LOGGER.debug("Registering handler for %s: %s", event, handler)
        self._handlers[event].append(handler)

    def unregister_event_handler(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def add_unrecognized_hook(self, hook: Callable[[Frame], Awaitable[None] | None]) -> None:
        self._unrecognized_hooks.append(hook)

    def register_action(self, action: str, fn: ActionFn) -> None:
        """Expose a local action to server-initiated ``vscode.invoke`` calls."""
        self._ensure_session()
        assert self.dispatcher is not None
        self.dispatcher.register_action(action, fn)

    async def request(self, method: str, params: Optional[dict[str, Any]] = None, *, timeout: Optional[float] = None) -> Any:
        return await self._ensure_session().request(method, params, timeout=timeout)

    async def chat_send(self, text: str, agent_id: str = "main") -> Any:
        """Send a chat message to an agent's main session."""

        return await self.request(
            "chat.send",
            {
                "message": text,
                "sessionKey": f"agent:{agent_id}:main",
                "idempotencyKey": _idempotency_key(),
            },
        )

    async def list_agents(self) -> Any:
        return await self.request("agents.list", {})

    async def get_status(self) -> Any:
        return await self.request("status", {})

    async def chat_history(self, agent_id: str = "main", limit: int = 10) -> Any:
        return await self.request("chat.history", {"agentId": agent_id, "limit": limit})

    async def list_sessions(self) -> Any:
        return await self.request("sessions.list", {})

    async def report_state(self, state: dict[str, Any]) -> None:
        """Publish the editor state snapshot as a ``vscode.state`` event."""

        await self._ensure_session().emit_event(STATE_EVENT, state)

    async def _dispatch_event(self, frame: EventFrame) -> None:
        handlers = list(self._handlers.get(frame.event, [])) + list(self._handlers.get(ALL_EVENTS, []))
        if not handlers:
            LOGGER.debug("No handler registered for event %s", frame.event)
            return
        for handler in handlers:
            try:
                result = handler(frame)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Event handler failed for %s", frame.event)

    async def _dispatch_unrecognized(self, frame: Frame) -> None:
        for hook in list(self._unrecognized_hooks):
            try:
                result = hook(frame)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("Unrecognized-frame hook failed: %s", hook)

    async def _on_session_status(self, status: str) -> None:
        LOGGER.debug("Gateway status: %s", status)
        if self.on_status is None:
            return
        result = self.on_status(status)
        if inspect.isawaitable(result):
            await result
