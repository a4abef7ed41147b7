"""Correlation-id table for requests awaiting a gateway response."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Set

from bridge.errors import RequestCancelled, RequestTimeout

LOGGER = logging.getLogger(__name__)

_ABORTED_MAX = 512


@dataclass
class PendingRequest:
    request_id: str
    method: str
    future: asyncio.Future
    timer: Optional[asyncio.TimerHandle] = None


def _consume_outcome(future: asyncio.Future) -> None:
    # Callers may have stopped waiting; retrieve the exception so asyncio does not warn.
    if not future.cancelled():
        future.exception()


@dataclass
class PendingRequestTable:
    """Maps request ids to waiting futures with at-most-once completion.

    Every completion path (response, expiry, cancellation, teardown) pops the
    entry before touching its future, so whichever runs first wins and the
    rest are no-ops returning ``False``.
    """

    _entries: Dict[str, PendingRequest] = field(default_factory=dict)
    _aborted: Deque[str] = field(default_factory=deque)
    _aborted_index: Set[str] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def register(self, request_id: str, timeout: Optional[float], *, method: str = "") -> asyncio.Future:
        if request_id in self._entries:
            raise ValueError(f"Request id {request_id} is already outstanding")
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        future.add_done_callback(_consume_outcome)
        entry = PendingRequest(request_id=request_id, method=method, future=future)
        if timeout and timeout > 0:
            entry.timer = loop.call_later(timeout, self.expire, request_id)
        self._entries[request_id] = entry
        return future

    def resolve(self, request_id: str, payload: Any) -> bool:
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_result(payload)
        return True

    def reject(self, request_id: str, exc: BaseException) -> bool:
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_exception(exc)
        return True

    def expire(self, request_id: str) -> bool:
        entry = self._entries.get(request_id)
        if entry is None:
            return False
        LOGGER.warning("Request %s (%s) timed out", request_id, entry.method or "?")
        self._track_aborted(request_id)
        return self.reject(request_id, RequestTimeout(f"Request timeout: {entry.method or request_id}"))

    def cancel(self, request_id: str) -> bool:
        if request_id not in self._entries:
            return False
        self._track_aborted(request_id)
        return self.reject(request_id, RequestCancelled(f"Request {request_id} cancelled"))

    def fail_all(self, exc: BaseException) -> int:
        request_ids = list(self._entries)
        if request_ids:
            LOGGER.debug("Failing %s pending requests: %s", len(request_ids), exc)
        failed = 0
        for request_id in request_ids:
            if self.reject(request_id, exc):
                failed += 1
        return failed

    def was_aborted(self, request_id: str) -> bool:
        """True once for an id that expired or was cancelled locally."""

        if request_id not in self._aborted_index:
            return False
        self._aborted_index.discard(request_id)
        try:
            self._aborted.remove(request_id)
        except ValueError:
            pass
        return True

    def clear_aborted(self) -> None:
        self._aborted.clear()
        self._aborted_index.clear()

    def _pop(self, request_id: str) -> Optional[PendingRequest]:
        entry = self._entries.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _track_aborted(self, request_id: str) -> None:
        if request_id in self._aborted_index:
            return
        self._aborted.append(request_id)
        self._aborted_index.add(request_id)
        if len(self._aborted) > _ABORTED_MAX:
            oldest = self._aborted.popleft()
            self._aborted_index.discard(oldest)
