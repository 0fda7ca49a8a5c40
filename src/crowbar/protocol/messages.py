"""Relay message types and the HTTP envelope codec.

Every endpoint answers with a ``text/plain`` body made of a kind prefix and a
payload, e.g. ``DATA:aGVsbG8=`` or ``ERROR:No such UUID``.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from enum import Enum

from crowbar.core.exceptions import MalformedEncodingError

ENDPOINT_AUTH = "/auth"
ENDPOINT_CONNECT = "/connect/"
ENDPOINT_SYNC = "/sync"

CONTENT_TYPE = "text/plain"


class EnvelopeKind(Enum):
    """Envelope prefixes."""

    OK = "OK"
    ERROR = "ERROR"
    DATA = "DATA"
    QUIT = "QUIT"


@dataclass(frozen=True)
class DataCommand:
    """Bytes a client wants written to the remote socket."""

    payload: bytes


# Only one command kind exists today; the alias keeps call sites stable.
Command = DataCommand


@dataclass(frozen=True)
class DataResponse:
    """Bytes read from the remote socket."""

    payload: bytes


@dataclass(frozen=True)
class QuitResponse:
    """Terminal event emitted once when the remote socket closes or fails."""

    reason: str


Response = DataResponse | QuitResponse


@dataclass(frozen=True)
class Envelope:
    """A decoded response body."""

    kind: EnvelopeKind
    text: str

    @property
    def data(self) -> bytes:
        """Payload of a DATA envelope."""
        return decode_b64(self.text)


def encode_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_b64(text: str) -> bytes:
    """Decode standard base64, rejecting anything malformed."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEncodingError() from e


def ok_envelope(text: str) -> str:
    return f"{EnvelopeKind.OK.value}:{text}"


def error_envelope(message: str) -> str:
    return f"{EnvelopeKind.ERROR.value}:{message}"


def data_envelope(data: bytes) -> str:
    return f"{EnvelopeKind.DATA.value}:{encode_b64(data)}"


def quit_envelope(reason: str) -> str:
    return f"{EnvelopeKind.QUIT.value}:{reason}"


def response_envelope(response: Response) -> str:
    """Render a relay response as the body of a pull."""
    match response:
        case DataResponse(payload=payload):
            return data_envelope(payload)
        case QuitResponse(reason=reason):
            return quit_envelope(reason)
    raise TypeError(f"Unsupported response: {response!r}")


def parse_envelope(body: str) -> Envelope:
    """Split a response body into its kind and payload.

    Raises:
        MalformedEncodingError: If the body has no known prefix
    """
    prefix, sep, text = body.partition(":")
    if not sep:
        raise MalformedEncodingError(f"Malformed envelope: {body[:32]!r}")
    try:
        kind = EnvelopeKind(prefix)
    except ValueError as e:
        raise MalformedEncodingError(f"Unknown envelope kind: {prefix!r}") from e
    return Envelope(kind=kind, text=text)
