"""Wire protocol: endpoint paths, relay messages and envelopes."""

from crowbar.protocol.messages import (
    CONTENT_TYPE,
    ENDPOINT_AUTH,
    ENDPOINT_CONNECT,
    ENDPOINT_SYNC,
    Command,
    DataCommand,
    DataResponse,
    Envelope,
    EnvelopeKind,
    QuitResponse,
    Response,
    data_envelope,
    decode_b64,
    encode_b64,
    error_envelope,
    ok_envelope,
    parse_envelope,
    quit_envelope,
    response_envelope,
)

__all__ = [
    "CONTENT_TYPE",
    "ENDPOINT_AUTH",
    "ENDPOINT_CONNECT",
    "ENDPOINT_SYNC",
    "Command",
    "DataCommand",
    "DataResponse",
    "Envelope",
    "EnvelopeKind",
    "QuitResponse",
    "Response",
    "data_envelope",
    "decode_b64",
    "encode_b64",
    "error_envelope",
    "ok_envelope",
    "parse_envelope",
    "quit_envelope",
    "response_envelope",
]
