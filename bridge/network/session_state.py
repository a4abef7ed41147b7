"""State tracking for the gateway session."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


class SessionState(enum.Enum):
    """Client-side connection state machine."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CHALLENGE = "awaiting-challenge"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSED = "closed"
    ERROR = "error"


_ALLOWED: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.AWAITING_CHALLENGE, SessionState.ERROR, SessionState.CLOSED},
    SessionState.AWAITING_CHALLENGE: {SessionState.AUTHENTICATING, SessionState.ERROR, SessionState.CLOSED},
    SessionState.AUTHENTICATING: {SessionState.READY, SessionState.ERROR, SessionState.CLOSED},
    SessionState.READY: {SessionState.CLOSED, SessionState.ERROR},
    SessionState.CLOSED: {SessionState.CONNECTING},
    SessionState.ERROR: {SessionState.CONNECTING, SessionState.CLOSED},
}


@dataclass
class SessionTracker:
    """In-memory session metadata."""

    state: SessionState = SessionState.IDLE
    authenticated: bool = False
    server_info: Optional[dict[str, Any]] = None
    nonce: Optional[str] = None
    pairing_required: bool = False
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def transition(self, next_state: SessionState) -> None:
        """Move the session into a new state, validating allowed transitions."""

        if next_state not in _ALLOWED.get(self.state, set()):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)

    @property
    def connecting(self) -> bool:
        return self.state in {
            SessionState.CONNECTING,
            SessionState.AWAITING_CHALLENGE,
            SessionState.AUTHENTICATING,
        }

    def reset(self) -> None:
        self.authenticated = False
        self.nonce = None
