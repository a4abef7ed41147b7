"""Encoding, decoding and builders for gateway frames."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError

from shared.models.gateway import (
    CHALLENGE_EVENT,
    ChallengeFrame,
    ClientInfo,
    ConnectAuth,
    ConnectParams,
    ErrorShape,
    EventFrame,
    Frame,
    FrameId,
    InvocationFrame,
    ReplyFrame,
    RequestFrame,
    ResponseFrame,
    UnknownFrame,
)


class DecodeError(ValueError):
    """Raised when an inbound payload is not a well-formed frame."""


def _frame_dict(frame: Frame) -> Dict[str, Any]:
    if isinstance(frame, UnknownFrame):
        return dict(frame.raw)
    data = frame.model_dump(by_alias=True)
    # Only top-level optionals are dropped; payload contents pass through untouched.
    cleaned = {key: value for key, value in data.items() if value is not None}
    error = getattr(frame, "error", None)
    if isinstance(error, ErrorShape):
        cleaned["error"] = error.model_dump(by_alias=True, exclude_none=True)
    if isinstance(frame, ReplyFrame) and frame.error is None:
        cleaned["result"] = data.get("result")
    return cleaned


def encode(frame: Frame) -> bytes:
    """Serialise a frame to UTF-8 JSON bytes."""

    return json.dumps(jsonable_encoder(_frame_dict(frame)), separators=(",", ":")).encode("utf-8")


def classify(raw: Dict[str, Any]) -> Frame:
    """Build the frame model for an already-parsed JSON object."""

    kind = raw.get("type")
    if kind is None:
        if "method" in raw:
            return InvocationFrame.model_validate(raw)
        if "id" in raw and ("result" in raw or "error" in raw):
            return ReplyFrame.model_validate(raw)
        raise DecodeError("Frame has no type discriminator")
    if kind == "event":
        if raw.get("event") == CHALLENGE_EVENT:
            return ChallengeFrame.model_validate(raw)
        return EventFrame.model_validate(raw)
    if kind == "req":
        return RequestFrame.model_validate(raw)
    if kind == "res":
        return ResponseFrame.model_validate(raw)
    return UnknownFrame(raw=raw)


def decode(data: bytes | str) -> Frame:
    """Parse raw socket data into a frame, raising DecodeError when malformed."""

    try:
        raw = json.loads(data)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"Invalid frame JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise DecodeError(f"Frame must be a JSON object, got {type(raw).__name__}")
    try:
        return classify(raw)
    except ValidationError as exc:
        raise DecodeError(f"Invalid {raw.get('type') or 'untyped'} frame: {exc}") from exc


def error_shape(message: str, *, code: Optional[str | int] = None) -> ErrorShape:
    return ErrorShape(message=message, code=code)


def build_request(request_id: str, method: str, params: Optional[Dict[str, Any] | BaseModel] = None) -> RequestFrame:
    if isinstance(params, BaseModel):
        params = params.model_dump(by_alias=True, exclude_none=True)
    return RequestFrame(id=request_id, method=method, params=params or {})


def build_event(event: str, payload: Any = None) -> EventFrame | ChallengeFrame:
    """Build an event frame; ``connect.challenge`` is reserved and yields a ChallengeFrame."""

    if event == CHALLENGE_EVENT:
        return ChallengeFrame.model_validate({"payload": payload or {}})
    return EventFrame(event=event, payload=payload)


def build_response(
    frame_id: FrameId,
    *,
    result: Any = None,
    error: Optional[ErrorShape] = None,
) -> ResponseFrame:
    """Answer a typed request."""

    if error is not None:
        return ResponseFrame(id=frame_id, ok=False, error=error)
    return ResponseFrame(id=frame_id, ok=True, payload=result)


def build_reply(
    frame_id: FrameId,
    *,
    result: Any = None,
    error: Optional[ErrorShape] = None,
) -> ReplyFrame:
    """Answer an untyped invocation."""

    if error is not None:
        return ReplyFrame(id=frame_id, error=error)
    return ReplyFrame(id=frame_id, result=result)


def make_connect_params(
    *,
    token: Optional[str],
    min_protocol: int,
    max_protocol: int,
    client_id: str,
    client_version: str,
    platform: str,
    mode: str,
    role: str,
    scopes: Iterable[str],
    caps: Iterable[str],
    locale: str,
    user_agent: str,
) -> ConnectParams:
    """Helper to construct the ``connect`` request params."""

    return ConnectParams(
        minProtocol=min_protocol,
        maxProtocol=max_protocol,
        client=ClientInfo(id=client_id, version=client_version, platform=platform, mode=mode),
        role=role,
        scopes=list(scopes),
        caps=list(caps),
        auth=ConnectAuth(token=token) if token else None,
        locale=locale,
        userAgent=user_agent,
    )


__all__ = [
    "DecodeError",
    "encode",
    "decode",
    "classify",
    "error_shape",
    "build_request",
    "build_event",
    "build_response",
    "build_reply",
    "make_connect_params",
]
