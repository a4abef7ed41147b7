"""Frame models for the OpenClaw gateway wire protocol."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

CHALLENGE_EVENT = "connect.challenge"
INVOKE_METHOD = "vscode.invoke"

FrameId = Union[str, int]


class ErrorShape(BaseModel):
    """Error block carried by failed responses and replies."""

    model_config = ConfigDict(extra="allow")

    message: Optional[str] = None
    code: Optional[Union[str, int]] = None
    details: Optional[Any] = None


def _coerce_error(value: Any) -> Any:
    # Some gateway builds send the error as a bare message string.
    if isinstance(value, str):
        return {"message": value}
    return value


class ChallengePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    nonce: Optional[str] = None


class ChallengeFrame(BaseModel):
    """Server-issued challenge opening the handshake."""

    model_config = ConfigDict(extra="allow")

    type: Literal["event"] = "event"
    event: Literal["connect.challenge"] = CHALLENGE_EVENT
    payload: ChallengePayload = Field(default_factory=ChallengePayload)


class EventFrame(BaseModel):
    """Fire-and-forget notification; never answered."""

    model_config = ConfigDict(extra="allow")

    type: Literal["event"] = "event"
    event: str
    payload: Optional[Any] = None


class RequestFrame(BaseModel):
    """Typed request. Outbound from the client, or server-initiated when inbound."""

    model_config = ConfigDict(extra="allow")

    type: Literal["req"] = "req"
    id: FrameId
    method: str
    params: Dict[str, Any] = Field(default_factory=dict)


class ResponseFrame(BaseModel):
    """Typed response echoing the id of the request it answers."""

    model_config = ConfigDict(extra="allow")

    type: Literal["res"] = "res"
    id: FrameId
    ok: bool
    payload: Optional[Any] = None
    error: Optional[ErrorShape] = None

    @field_validator("error", mode="before")
    @classmethod
    def _error_from_text(cls, value: Any) -> Any:
        return _coerce_error(value)


class InvocationFrame(BaseModel):
    """Untyped server-initiated call, e.g. ``{"id", "method": "vscode.invoke", "params"}``."""

    model_config = ConfigDict(extra="allow")

    id: FrameId
    method: str
    params: Optional[Dict[str, Any]] = None


class ReplyFrame(BaseModel):
    """Untyped reply ``{"id", "result"}`` or ``{"id", "error"}``."""

    model_config = ConfigDict(extra="allow")

    id: FrameId
    result: Optional[Any] = None
    error: Optional[ErrorShape] = None

    @field_validator("error", mode="before")
    @classmethod
    def _error_from_text(cls, value: Any) -> Any:
        return _coerce_error(value)


class UnknownFrame(BaseModel):
    """Frame with a declared type this client does not recognise."""

    raw: Dict[str, Any]

    @property
    def type(self) -> Optional[str]:
        value = self.raw.get("type")
        return value if isinstance(value, str) else None


Frame = Union[
    ChallengeFrame,
    EventFrame,
    RequestFrame,
    ResponseFrame,
    InvocationFrame,
    ReplyFrame,
    UnknownFrame,
]


class InvokeParams(BaseModel):
    """Params block of a ``vscode.invoke`` call."""

    model_config = ConfigDict(extra="allow")

    action: str
    params: Optional[Dict[str, Any]] = None


class ClientInfo(BaseModel):
    id: str
    version: str
    platform: str
    mode: str


class ConnectAuth(BaseModel):
    token: str


class ConnectParams(BaseModel):
    """Params of the ``connect`` request sent in answer to the challenge."""

    model_config = ConfigDict(populate_by_name=True)

    min_protocol: int = Field(alias="minProtocol")
    max_protocol: int = Field(alias="maxProtocol")
    client: ClientInfo
    role: str
    scopes: List[str] = Field(default_factory=list)
    caps: List[str] = Field(default_factory=list)
    commands: List[str] = Field(default_factory=list)
    permissions: Dict[str, Any] = Field(default_factory=dict)
    auth: Optional[ConnectAuth] = None
    locale: str = "en-US"
    user_agent: str = Field(alias="userAgent")


__all__ = [
    "CHALLENGE_EVENT",
    "INVOKE_METHOD",
    "FrameId",
    "ErrorShape",
    "ChallengePayload",
    "ChallengeFrame",
    "EventFrame",
    "RequestFrame",
    "ResponseFrame",
    "InvocationFrame",
    "ReplyFrame",
    "UnknownFrame",
    "Frame",
    "InvokeParams",
    "ClientInfo",
    "ConnectAuth",
    "ConnectParams",
]
