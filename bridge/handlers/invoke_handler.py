"""Answers server-initiated invocations with exactly one reply each."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from pydantic import ValidationError

from shared.models.gateway import (
    INVOKE_METHOD,
    ErrorShape,
    InvocationFrame,
    InvokeParams,
    ReplyFrame,
    RequestFrame,
    ResponseFrame,
)
from shared.protocol.frames import build_reply, build_response, error_shape

from bridge.errors import HandlerError

LOGGER = logging.getLogger(__name__)

ActionHandler = Callable[[str, Dict[str, Any]], Union[Awaitable[Any], Any]]
ActionFn = Callable[[Dict[str, Any]], Union[Awaitable[Any], Any]]
Invocation = Union[InvocationFrame, RequestFrame]


@dataclass
class InvocationDispatcher:
    """Routes ``(action, params)`` calls to registered actions or a fallback handler."""

    handler: Optional[ActionHandler] = None
    timeout: float = 0

    _actions: Dict[str, ActionFn] = field(default_factory=dict, init=False, repr=False)
    _inflight: Set[str] = field(default_factory=set, init=False, repr=False)

    def register_action(self, action: str, fn: ActionFn) -> None:
        LOGGER.debug("Registering action %s: %s", action, fn)
        self._actions[action] = fn

    def unregister_action(self, action: str) -> None:
        self._actions.pop(action, None)

    async def dispatch(self, frame: Invocation) -> Optional[Union[ReplyFrame, ResponseFrame]]:
        """Run the handler for ``frame`` and build its reply.

        Returns ``None`` only when the same id is already being handled.
        """

        key = str(frame.id)
        if key in self._inflight:
            LOGGER.warning("Dropping duplicate invocation id=%s method=%s", key, frame.method)
            return None
        self._inflight.add(key)
        try:
            action, params = self._unpack(frame)
            result = await self._invoke(action, params)
        except HandlerError as exc:
            LOGGER.warning("Invocation %s (%s) failed: %s", key, exc.action, exc)
            reply = self.reply_for(frame, error=error_shape(str(exc)))
        else:
            reply = self.reply_for(frame, result=result)
        finally:
            self._inflight.discard(key)
        return reply

    @staticmethod
    def reply_for(
        frame: Invocation,
        *,
        result: Any = None,
        error: Optional[ErrorShape] = None,
    ) -> Union[ReplyFrame, ResponseFrame]:
        # Typed requests get typed responses; untyped invocations get the untyped reply shape.
        if isinstance(frame, RequestFrame):
            return build_response(frame.id, result=result, error=error)
        return build_reply(frame.id, result=result, error=error)

    @staticmethod
    def _unpack(frame: Invocation) -> tuple[str, Dict[str, Any]]:
        if frame.method != INVOKE_METHOD:
            return frame.method, dict(frame.params or {})
        try:
            invoke = InvokeParams.model_validate(frame.params or {})
        except ValidationError as exc:
            raise HandlerError(INVOKE_METHOD, f"Invalid {INVOKE_METHOD} params: missing action") from exc
        return invoke.action, dict(invoke.params or {})

    async def _invoke(self, action: str, params: Dict[str, Any]) -> Any:
        fn = self._actions.get(action)
        try:
            if fn is not None:
                result = fn(params)
            elif self.handler is not None:
                result = self.handler(action, params)
            else:
                raise HandlerError(action, f"Unknown action: {action}")
            if inspect.isawaitable(result):
                if self.timeout > 0:
                    result = await asyncio.wait_for(result, timeout=self.timeout)
                else:
                    result = await result
        except (HandlerError, asyncio.CancelledError):
            raise
        except asyncio.TimeoutError as exc:
            raise HandlerError(action, f"Action {action} timed out after {self.timeout}s") from exc
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Action %s raised", action)
            raise HandlerError(action, str(exc) or type(exc).__name__) from exc
        return result
