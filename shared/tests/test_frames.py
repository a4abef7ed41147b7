import json

import pytest

from shared.models.gateway import (
    ChallengeFrame,
    EventFrame,
    InvocationFrame,
    ReplyFrame,
    RequestFrame,
    ResponseFrame,
    UnknownFrame,
)
from shared.protocol.frames import (
    DecodeError,
    build_event,
    build_reply,
    build_request,
    build_response,
    decode,
    encode,
    error_shape,
    make_connect_params,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ({"type": "event", "event": "connect.challenge", "payload": {"nonce": "n"}}, ChallengeFrame),
        ({"type": "event", "event": "chat", "payload": {"text": "hi"}}, EventFrame),
        ({"type": "req", "id": "1", "method": "ping", "params": {}}, RequestFrame),
        ({"type": "res", "id": "1", "ok": True, "payload": {}}, ResponseFrame),
        ({"id": "x", "method": "vscode.invoke", "params": {"action": "ping"}}, InvocationFrame),
        ({"id": "x", "result": None}, ReplyFrame),
        ({"id": "x", "error": {"message": "nope"}}, ReplyFrame),
        ({"type": "error", "code": 1008}, UnknownFrame),
    ],
)
def test_decode_classifies_frames(raw, expected):
    assert isinstance(decode(json.dumps(raw)), expected)


def test_decode_accepts_bytes():
    frame = decode(b'{"type":"res","id":7,"ok":false,"error":{"message":"denied","code":"AUTH"}}')

    assert isinstance(frame, ResponseFrame)
    assert frame.id == 7
    assert not frame.ok
    assert frame.error.message == "denied"
    assert frame.error.code == "AUTH"


def test_challenge_nonce_is_exposed():
    frame = decode('{"type":"event","event":"connect.challenge","payload":{"nonce":"abc","ts":1}}')

    assert frame.payload.nonce == "abc"


@pytest.mark.parametrize(
    "data",
    [
        "not json",
        "[1, 2]",
        '"text"',
        '{"foo": "bar"}',
        '{"type": "res", "id": "1"}',
        '{"type": "req", "method": "ping"}',
        '{"type": "event"}',
    ],
)
def test_decode_rejects_malformed(data):
    with pytest.raises(DecodeError):
        decode(data)


def test_unknown_frame_round_trips_raw_object():
    raw = {"type": "metrics", "value": 3}
    frame = decode(json.dumps(raw))

    assert frame.type == "metrics"
    assert json.loads(encode(frame)) == raw


def test_encode_request_and_event():
    assert json.loads(encode(build_request("5", "status"))) == {
        "type": "req",
        "id": "5",
        "method": "status",
        "params": {},
    }
    assert json.loads(encode(build_event("vscode.state", {"file": "a.py"}))) == {
        "type": "event",
        "event": "vscode.state",
        "payload": {"file": "a.py"},
    }


def test_encode_replies():
    assert json.loads(encode(build_reply("x", result={"pong": True}))) == {"id": "x", "result": {"pong": True}}
    assert json.loads(encode(build_reply("x"))) == {"id": "x", "result": None}
    assert json.loads(encode(build_reply("x", error=error_shape("boom")))) == {"id": "x", "error": {"message": "boom"}}
    assert json.loads(encode(build_response("s1", result=[1]))) == {"type": "res", "id": "s1", "ok": True, "payload": [1]}
    assert json.loads(encode(build_response("s1", error=error_shape("bad", code=4)))) == {
        "type": "res",
        "id": "s1",
        "ok": False,
        "error": {"message": "bad", "code": 4},
    }


def test_connect_params_use_wire_names():
    params = make_connect_params(
        token="tok",
        min_protocol=3,
        max_protocol=3,
        client_id="cli",
        client_version="0.1.0",
        platform="linux",
        mode="cli",
        role="operator",
        scopes=["operator.read"],
        caps=[],
        locale="en-US",
        user_agent="openclaw-bridge/0.1.0",
    )
    frame = json.loads(encode(build_request("connect-1", "connect", params)))

    assert frame["params"]["minProtocol"] == 3
    assert frame["params"]["maxProtocol"] == 3
    assert frame["params"]["userAgent"] == "openclaw-bridge/0.1.0"
    assert frame["params"]["auth"] == {"token": "tok"}
    assert frame["params"]["client"] == {"id": "cli", "version": "0.1.0", "platform": "linux", "mode": "cli"}


def test_connect_params_without_token_have_no_auth():
    params = make_connect_params(
        token=None,
        min_protocol=3,
        max_protocol=3,
        client_id="cli",
        client_version="0.1.0",
        platform="linux",
        mode="cli",
        role="operator",
        scopes=[],
        caps=[],
        locale="en-US",
        user_agent="ua",
    )

    assert "auth" not in build_request("connect-1", "connect", params).params


@pytest.mark.parametrize(
    "frame",
    [
        ChallengeFrame.model_validate({"payload": {"nonce": "abc"}}),
        EventFrame(event="chat", payload={"text": "hi", "tags": ["a"]}),
        RequestFrame(id="3", method="chat.send", params={"message": "hi"}),
        ResponseFrame(id="3", ok=True, payload={"runId": "r1"}),
        ResponseFrame(id="4", ok=False, error=error_shape("bad", code="E1")),
        InvocationFrame(id="x", method="vscode.invoke", params={"action": "ping"}),
        ReplyFrame(id="x", result={"pong": True}),
    ],
)
def test_decode_inverts_encode(frame):
    assert decode(encode(frame)) == frame


def test_text_error_becomes_error_shape():
    response = decode('{"type":"res","id":"1","ok":false,"error":"bad token"}')
    reply = decode('{"id":"2","error":"no such action"}')

    assert isinstance(response, ResponseFrame)
    assert response.error.message == "bad token"
    assert isinstance(reply, ReplyFrame)
    assert reply.error.message == "no such action"


def test_challenge_event_name_is_reserved():
    frame = build_event("connect.challenge", {"nonce": "abc"})

    assert isinstance(frame, ChallengeFrame)
    assert frame.payload.nonce == "abc"
    assert decode(encode(frame)) == frame
