"""Single-timer reconnection scheduling for the gateway session."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from bridge.errors import AuthError

LOGGER = logging.getLogger(__name__)


@dataclass
class ReconnectSupervisor:
    """Schedules one reconnection attempt at a time after a flat delay.

    The delay does not grow between attempts. Failed attempts are rescheduled
    by the session's own failure handling, so the supervisor never loops on
    its own.
    """

    attempt: Callable[[], Awaitable[Any]]
    delay: float = 5.0
    enabled: bool = True
    attempts: int = field(default=0, init=False)
    _task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> bool:
        """Arm the timer, replacing any timer already pending."""

        if not self.enabled:
            LOGGER.debug("Reconnect disabled; not scheduling")
            return False
        self.cancel()
        LOGGER.info("Reconnecting to gateway in %.1fs", self.delay)
        self._task = asyncio.create_task(self._run(), name="gateway-reconnect")
        return True

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        # The running attempt may reschedule itself through the session.
        if task is asyncio.current_task():
            return
        task.cancel()

    def disable(self) -> None:
        self.enabled = False
        self.cancel()

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        if not self.enabled:
            return
        self.attempts += 1
        LOGGER.info("Attempting gateway reconnect (attempt %s)", self.attempts)
        try:
            await self.attempt()
        except asyncio.CancelledError:
            raise
        except AuthError as exc:
            LOGGER.error("Gateway rejected reconnect: %s; automatic reconnect stopped", exc)
            self.enabled = False
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Gateway reconnect attempt %s failed: %s", self.attempts, exc)
        else:
            self.attempts = 0
