from .frames import (
    DecodeError,
    build_event,
    build_reply,
    build_request,
    build_response,
    classify,
    decode,
    encode,
    error_shape,
    make_connect_params,
)

__all__ = [
    "DecodeError",
    "build_event",
    "build_reply",
    "build_request",
    "build_response",
    "classify",
    "decode",
    "encode",
    "error_shape",
    "make_connect_params",
]
