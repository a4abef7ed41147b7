"""Authenticated RPC session over a single gateway socket.

This layer is responsible for:
- Socket lifecycle (one transport at a time, replaced wholesale on reconnect)
- The connect.challenge -> connect -> hello-ok handshake
- Correlating responses with outstanding requests
- Handing server-initiated invocations and events to their consumers

All state transitions happen on the receive loop or in the public coroutines,
on one event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Optional

from shared.models.gateway import (
    ChallengeFrame,
    ErrorShape,
    EventFrame,
    Frame,
    InvocationFrame,
    ReplyFrame,
    RequestFrame,
    ResponseFrame,
    UnknownFrame,
)
from shared.protocol.frames import (
    DecodeError,
    build_event,
    build_request,
    decode,
    encode,
    error_shape,
    make_connect_params,
)

from bridge.config import BridgeSettings
from bridge.errors import (
    AuthError,
    ConnectionClosedError,
    ConnectTimeout,
    GatewayError,
    RemoteError,
    TransportError,
    Unauthenticated,
)
from bridge.handlers.invoke_handler import InvocationDispatcher
from bridge.network.pending import PendingRequestTable
from bridge.network.reconnect import ReconnectSupervisor
from bridge.network.session_state import SessionState, SessionTracker
from bridge.network.transport.base import BaseTransport, TransportClosed

LOGGER = logging.getLogger(__name__)

PAIRING_REQUIRED_CODE = 1008

Callback = Callable[..., Awaitable[None] | None]


def _consume_outcome(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


def _remote_error(error: Optional[ErrorShape], fallback: str) -> RemoteError:
    if error is None:
        return RemoteError(fallback)
    return RemoteError(error.message or fallback, code=error.code, details=error.details)


@dataclass
class GatewaySession:
    """Client-side session for the OpenClaw gateway."""

    settings: BridgeSettings
    transport_factory: Callable[[BridgeSettings], BaseTransport]
    dispatcher: Optional[InvocationDispatcher] = None
    on_event: Optional[Callback] = None
    on_unrecognized: Optional[Callback] = None
    on_status: Optional[Callback] = None
    tracker: SessionTracker = field(default_factory=SessionTracker)
    pending: PendingRequestTable = field(default_factory=PendingRequestTable)

    _transport: Optional[BaseTransport] = field(default=None, init=False, repr=False)
    _receive_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _connect_waiter: Optional[asyncio.Future] = field(default=None, init=False, repr=False)
    _connect_request_id: Optional[str] = field(default=None, init=False, repr=False)
    _message_counter: Iterator[int] = field(default_factory=lambda: count(1), init=False, repr=False)
    _socket_released: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)
    _background: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)
    _reconnect: ReconnectSupervisor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.dispatcher is None:
            self.dispatcher = InvocationDispatcher(timeout=float(self.settings.invoke_timeout_seconds))
        self._reconnect = ReconnectSupervisor(
            attempt=self.connect,
            delay=float(self.settings.reconnect_delay_seconds),
            enabled=self.settings.auto_reconnect,
        )
        self._socket_released.set()

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> SessionState:
        return self.tracker.state

    @property
    def authenticated(self) -> bool:
        return self.tracker.authenticated

    @property
    def server_info(self) -> Optional[dict[str, Any]]:
        return self.tracker.server_info

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self.tracker.authenticated

    @property
    def reconnect(self) -> ReconnectSupervisor:
        return self._reconnect

    def _try_transition(self, state: SessionState) -> None:
        try:
            self.tracker.transition(state)
        except ValueError:
            LOGGER.debug(
                "Ignoring invalid session transition %s -> %s",
                self.tracker.state.value,
                state.value,
            )

    # -------------------------------------------------------------- lifecycle

    async def connect(self) -> dict[str, Any]:
        """Open the socket and complete the handshake.

        Returns the server's hello payload. Calls made while a connect is
        already in flight wait for that attempt; calls made while ready
        return immediately.
        """

        await self._socket_released.wait()
        if self.tracker.state is SessionState.READY and self.tracker.authenticated:
            return self.tracker.server_info or {}
        waiter = self._connect_waiter
        if waiter is not None and not waiter.done():
            return await asyncio.shield(waiter)

        self._reconnect.enabled = self.settings.auto_reconnect
        self._reconnect.cancel()
        waiter = asyncio.get_running_loop().create_future()
        waiter.add_done_callback(_consume_outcome)
        self._connect_waiter = waiter
        self.tracker.pairing_required = False
        self._try_transition(SessionState.CONNECTING)
        self._notify_status("connecting")

        timeout = float(self.settings.connect_timeout_seconds)
        try:
            return await asyncio.wait_for(self._establish(waiter), timeout=timeout)
        except asyncio.TimeoutError as exc:
            if waiter.done():
                raise
            error = ConnectTimeout(f"Connection timeout after {timeout:.0f}s")
            LOGGER.warning("Gateway handshake did not complete within %.1fs", timeout)
            await self._fail_connect(error)
            raise error from exc
        except asyncio.CancelledError:
            if not waiter.done():
                await self._fail_connect(ConnectionClosedError("Connect cancelled"), reconnect=False)
            raise

    async def _establish(self, waiter: asyncio.Future) -> dict[str, Any]:
        url = str(self.settings.gateway_url)
        transport = self.transport_factory(self.settings)
        try:
            await transport.connect()
        except (asyncio.CancelledError, asyncio.TimeoutError):
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Gateway connect to %s failed: %s", url, exc)
            error = TransportError(f"Failed to connect to {url}: {exc}")
            await self._fail_connect(error)
            raise error from exc
        if waiter.done():
            # disconnect() won the race while the socket was opening
            with contextlib.suppress(Exception):
                await transport.close()
            return waiter.result()
        self._open(transport)
        LOGGER.info("Gateway socket open at %s; waiting for challenge", url)
        return await asyncio.shield(waiter)

    def _open(self, transport: BaseTransport) -> None:
        self._transport = transport
        self._message_counter = count(1)
        self.pending.clear_aborted()
        self._try_transition(SessionState.AWAITING_CHALLENGE)
        self._receive_task = asyncio.create_task(self._receive_loop(transport), name="gateway-receive")

    async def disconnect(self) -> None:
        """Close the socket and stop automatic reconnection until the next connect()."""

        self._reconnect.disable()
        error = ConnectionClosedError("Connection closed by client")
        self._reject_connect(error)
        await self._teardown(error, state=SessionState.CLOSED)
        await self._cancel_background()
        if self.on_status is not None:
            await self._safe_call(self.on_status, "disconnected")

    async def _cancel_background(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in self._background if task is not current and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _fail_connect(self, exc: GatewayError, *, reconnect: bool = True) -> None:
        self._reject_connect(exc)
        await self._teardown(
            ConnectionClosedError(f"Connection closed: {exc}"),
            state=SessionState.ERROR,
        )
        self._notify_status("error")
        if reconnect:
            self._schedule_reconnect()

    async def _teardown(self, exc: BaseException, *, state: SessionState) -> None:
        """Discard the current socket and fail everything waiting on it."""

        self._socket_released.clear()
        try:
            transport = self._transport
            self._transport = None
            self._connect_request_id = None
            self.tracker.reset()
            task = self._receive_task
            self._receive_task = None
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            if transport is not None:
                try:
                    await transport.close()
                except Exception:  # noqa: BLE001
                    LOGGER.debug("Suppress transport close error", exc_info=True)
            self.pending.fail_all(exc)
            self._try_transition(state)
        finally:
            self._socket_released.set()

    def _reject_connect(self, exc: BaseException) -> None:
        waiter = self._connect_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(exc)

    def _schedule_reconnect(self) -> None:
        if self._reconnect.enabled:
            self._reconnect.schedule()

    # --------------------------------------------------------------- outbound

    async def begin_request(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> tuple[str, asyncio.Future]:
        """Send a request and return its id with the future that will carry the result."""

        if not self.tracker.authenticated or self._transport is None:
            raise Unauthenticated("Not authenticated - call connect() first")
        request_id = str(next(self._message_counter))
        deadline = float(self.settings.request_timeout_seconds) if timeout is None else timeout
        future = self.pending.register(request_id, deadline, method=method)
        try:
            await self._send_frame(build_request(request_id, method, params))
        except (TransportError, TypeError, ValueError) as exc:
            self.pending.reject(request_id, exc)
            raise
        return request_id, future

    async def request(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a request and wait for its response payload.

        Cancelling the caller leaves the pending entry in place until it is
        answered, expires or the socket closes; use ``cancel_request`` with the
        id from ``begin_request`` to drop it early.
        """

        _, future = await self.begin_request(method, params, timeout=timeout)
        return await asyncio.shield(future)

    def cancel_request(self, request_id: str) -> bool:
        return self.pending.cancel(request_id)

    async def emit_event(self, event: str, payload: Any = None) -> None:
        """Send a fire-and-forget event to the gateway."""

        if not self.tracker.authenticated or self._transport is None:
            raise Unauthenticated("Not authenticated - call connect() first")
        await self._send_frame(build_event(event, payload))

    async def _send_frame(self, frame: Frame) -> None:
        transport = self._transport
        if transport is None:
            raise TransportError("Gateway socket is not open")
        data = encode(frame)
        LOGGER.debug("Gateway send %s id=%s", type(frame).__name__, getattr(frame, "id", None))
        try:
            await transport.send(data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise TransportError(f"Failed to send frame: {exc}") from exc

    # ---------------------------------------------------------------- inbound

    async def _receive_loop(self, transport: BaseTransport) -> None:
        try:
            while self._transport is transport:
                try:
                    data = await transport.receive()
                except asyncio.CancelledError:
                    raise
                except TransportClosed as exc:
                    LOGGER.info("Gateway socket closed: %s", exc)
                    await self._handle_socket_closed(transport, exc)
                    return
                except Exception as exc:  # noqa: BLE001
                    LOGGER.warning("Gateway socket error: %s", exc)
                    await self._handle_socket_closed(transport, exc)
                    return
                await self._handle_data(data, transport)
        except asyncio.CancelledError:
            LOGGER.debug("Gateway receive loop cancelled")
            raise

    async def _handle_socket_closed(self, transport: BaseTransport, exc: BaseException) -> None:
        if self._transport is not transport:
            return
        error = ConnectionClosedError(f"Connection closed: {exc}")
        self._reject_connect(error)
        await self._teardown(error, state=SessionState.CLOSED)
        self._notify_status("disconnected")
        self._schedule_reconnect()

    async def _handle_data(self, data: bytes | str, transport: BaseTransport) -> None:
        try:
            frame = decode(data)
        except DecodeError as exc:
            LOGGER.warning("Dropping malformed gateway frame: %s", exc)
            return
        try:
            await self._handle_frame(frame, transport)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to process gateway frame %s", type(frame).__name__)

    async def _handle_frame(self, frame: Frame, transport: BaseTransport) -> None:
        if isinstance(frame, ChallengeFrame):
            await self._on_challenge(frame)
        elif isinstance(frame, ResponseFrame):
            await self._on_response(frame)
        elif isinstance(frame, ReplyFrame):
            self._on_reply(frame)
        elif isinstance(frame, EventFrame):
            LOGGER.debug("Gateway event %s", frame.event)
            if self.on_event is not None:
                self._spawn(self._safe_call(self.on_event, frame), name=f"gateway-event-{frame.event}")
        elif isinstance(frame, (InvocationFrame, RequestFrame)):
            self._spawn(self._answer_invocation(frame, transport), name=f"gateway-invoke-{frame.id}")
        else:
            self._on_unrecognized(frame)

    async def _on_challenge(self, frame: ChallengeFrame) -> None:
        if self.tracker.state is not SessionState.AWAITING_CHALLENGE:
            LOGGER.warning("Ignoring connect.challenge in state %s", self.tracker.state.value)
            return
        self.tracker.nonce = frame.payload.nonce
        self._try_transition(SessionState.AUTHENTICATING)
        token = self.settings.gateway_token
        if not token:
            LOGGER.warning("No gateway token configured; sending connect without auth")
        params = make_connect_params(
            token=token,
            min_protocol=self.settings.protocol_min,
            max_protocol=self.settings.protocol_max,
            client_id=self.settings.client_id,
            client_version=self.settings.client_version,
            platform=self.settings.client_platform,
            mode=self.settings.client_mode,
            role=self.settings.role,
            scopes=self.settings.scopes,
            caps=self.settings.caps,
            locale=self.settings.locale,
            user_agent=self.settings.user_agent,
        )
        request_id = f"connect-{next(self._message_counter)}"
        self._connect_request_id = request_id
        LOGGER.info("Got challenge; authenticating as %s", self.settings.role)
        await self._send_frame(build_request(request_id, "connect", params))

    async def _on_response(self, frame: ResponseFrame) -> None:
        request_id = str(frame.id)
        if request_id == self._connect_request_id:
            self._connect_request_id = None
            if frame.ok:
                self._on_authenticated(frame.payload)
            else:
                await self._on_auth_rejected(frame.error)
            return
        if (
            not frame.ok
            and self.tracker.state is SessionState.AUTHENTICATING
            and request_id not in self.pending
        ):
            await self._on_auth_rejected(frame.error)
            return
        if frame.ok:
            matched = self.pending.resolve(request_id, frame.payload)
        else:
            matched = self.pending.reject(request_id, _remote_error(frame.error, "Request failed"))
        if not matched:
            self._log_unmatched(request_id)

    def _on_reply(self, frame: ReplyFrame) -> None:
        request_id = str(frame.id)
        if frame.error is not None:
            matched = self.pending.reject(request_id, _remote_error(frame.error, "Unknown error"))
        else:
            matched = self.pending.resolve(request_id, frame.result)
        if not matched:
            self._log_unmatched(request_id)

    def _log_unmatched(self, request_id: str) -> None:
        if self.pending.was_aborted(request_id):
            LOGGER.debug("Ignored late response for expired request %s", request_id)
        else:
            LOGGER.warning("Received response with no pending request id=%s", request_id)

    def _on_authenticated(self, payload: Any) -> None:
        info = payload if isinstance(payload, dict) else {"payload": payload}
        if info.get("type") not in (None, "hello-ok"):
            LOGGER.warning("Unexpected connect response type %s", info.get("type"))
        self.tracker.server_info = info
        self.tracker.authenticated = True
        self.tracker.pairing_required = False
        self._try_transition(SessionState.READY)
        LOGGER.info("Authenticated with gateway %s", self.settings.gateway_url)
        self._notify_status("connected")
        waiter = self._connect_waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(info)

    async def _on_auth_rejected(self, error: Optional[ErrorShape]) -> None:
        message = error.message if error is not None and error.message else "Connection failed"
        LOGGER.error("Gateway rejected connect: %s", message)
        await self._fail_connect(
            AuthError(message, code=error.code if error is not None else None),
            reconnect=False,
        )

    def _on_unrecognized(self, frame: Frame) -> None:
        if (
            isinstance(frame, UnknownFrame)
            and frame.type == "error"
            and frame.raw.get("code") == PAIRING_REQUIRED_CODE
        ):
            LOGGER.warning("Gateway requires pairing; approve this client in the gateway")
            self.tracker.pairing_required = True
            self._notify_status("pairing")
            return
        LOGGER.debug("Unrecognized gateway frame: %s", frame)
        if self.on_unrecognized is not None:
            self._spawn(self._safe_call(self.on_unrecognized, frame), name="gateway-unrecognized")

    async def _answer_invocation(self, frame: InvocationFrame | RequestFrame, transport: BaseTransport) -> None:
        assert self.dispatcher is not None
        reply = await self.dispatcher.dispatch(frame)
        if reply is None:
            return
        try:
            await self._send_reply(frame, reply, transport)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Reply for invocation %s is not serialisable: %s", frame.id, exc)
            fallback = self.dispatcher.reply_for(frame, error=error_shape(f"Unserialisable result: {exc}"))
            await self._send_reply(frame, fallback, transport)

    async def _send_reply(self, frame: InvocationFrame | RequestFrame, reply: Frame, transport: BaseTransport) -> None:
        # Invocation ids belong to the socket they arrived on.
        if self._transport is not transport:
            LOGGER.debug("Dropping reply to invocation %s; its socket is gone", frame.id)
            return
        try:
            await self._send_frame(reply)
        except TransportError as exc:
            LOGGER.warning("Failed to reply to invocation %s: %s", frame.id, exc)

    # -------------------------------------------------------------- callbacks

    def _notify_status(self, status: str) -> None:
        if self.on_status is not None:
            self._spawn(self._safe_call(self.on_status, status), name=f"gateway-status-{status}")

    def _spawn(self, coro: Awaitable[None], *, name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _safe_call(self, fn: Callback, *args: Any) -> None:
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            LOGGER.exception("Gateway callback failed: %s", fn)
