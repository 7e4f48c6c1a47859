"""
MessagePack codec for the Kyutai streaming protocol.

Wire format:
- One binary websocket message per application message
- A msgpack map keyed by short field names, `type` always first
- Audio `pcm` and Step `prs` packed as 32-bit floats; other floats as 64-bit

Decoding is two-phase so the inbound workers can demultiplex without
parsing twice:

    raw = decode_header(payload)      # unpack once, validate `type`
    if raw.kind is MessageType.MARKER:
        marker = decode_body(raw)     # build the variant from raw.fields

decode(payload) is the one-shot composition of both.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import msgpack
from msgpack.exceptions import UnpackException
import numpy as np

from protocol.messages import (
    Audio,
    EndOfStream,
    Marker,
    Message,
    MessageType,
    Ready,
    Step,
    Text,
    Word,
    WordEnd,
)


# -------------------------
# Exceptions
# -------------------------

class ProtocolError(Exception):
    """Base class for protocol errors. Always fatal for the connection."""


class EncodeError(ProtocolError):
    """Raised when an outbound message cannot be serialized."""


class DecodeError(ProtocolError):
    """
    Raised when an inbound payload is not a valid message.

    Covers non-msgpack bytes, trailing bytes after the map, a missing
    discriminator, and fields that do not match the variant's shape.
    """


class UnknownMessageType(DecodeError):
    """Raised when the `type` discriminator is not a known variant."""


class UnexpectedMessageError(ProtocolError):
    """
    Raised when a well-formed message is not valid where it was received
    (a text websocket frame, or a variant the endpoint never sends).
    """


# -------------------------
# Packers
# -------------------------

_TYPE_KEY = "type"

_ENCODABLE = (Ready, Text, Audio, Word, WordEnd, Step, Marker, EndOfStream)

_PACK_F64 = msgpack.Packer(use_bin_type=True)
_PACK_F32 = msgpack.Packer(use_bin_type=True, use_single_float=True)


@dataclass(frozen=True)
class RawMessage:
    """
    Result of header decoding: the discriminator plus the still-untyped
    fields of the unpacked map.
    """
    kind: MessageType
    fields: Mapping[Any, Any]


# -------------------------
# Encoding
# -------------------------

def encode(message: Message) -> bytes:
    """
    Serialize a message to its binary wire form.

    Raises:
        EncodeError if a field value cannot be packed.
    """
    if not isinstance(message, _ENCODABLE):
        raise EncodeError(f"Cannot encode {type(message).__name__}")

    body: dict[str, Any] = {_TYPE_KEY: message.kind.value}
    packer = _PACK_F64

    if isinstance(message, Text):
        body["text"] = message.text
    elif isinstance(message, Audio):
        body["pcm"] = np.asarray(message.pcm, dtype=np.float32).tolist()
        packer = _PACK_F32
    elif isinstance(message, Word):
        body["text"] = message.text
        body["start_time"] = float(message.start_time)
    elif isinstance(message, WordEnd):
        body["stop_time"] = float(message.stop_time)
    elif isinstance(message, Step):
        # prs are f32 server-side
        body["step_idx"] = message.step_idx
        body["prs"] = [float(p) for p in message.prs]
        body["buffered_pcm"] = message.buffered_pcm
        packer = _PACK_F32
    elif isinstance(message, Marker):
        body["id"] = message.id
    # Ready / EndOfStream carry the discriminator only

    try:
        return packer.pack(body)
    except (TypeError, ValueError, OverflowError) as e:
        raise EncodeError(f"Failed to pack {message.kind.value} message: {e}") from e


# -------------------------
# Decoding: phase 1 (header)
# -------------------------

def decode_header(payload: bytes) -> RawMessage:
    """
    Unpack a payload and identify its variant.

    Does not validate variant fields; that is decode_body's job.

    Raises:
        DecodeError on malformed msgpack, trailing bytes, a non-map payload
        or a missing discriminator.
        UnknownMessageType if the discriminator is not recognized.
    """
    try:
        unpacked = msgpack.unpackb(payload, raw=False, strict_map_key=False)
    except (UnpackException, ValueError, TypeError) as e:
        raise DecodeError(f"Failed to unpack message: {e}") from e

    if not isinstance(unpacked, dict):
        raise DecodeError(
            f"Expected a msgpack map, got {type(unpacked).__name__}"
        )

    discriminator = unpacked.get(_TYPE_KEY)
    if not isinstance(discriminator, str):
        raise DecodeError(f"Missing or invalid `{_TYPE_KEY}` field: {discriminator!r}")

    try:
        kind = MessageType(discriminator)
    except ValueError:
        raise UnknownMessageType(
            f"Unexpected message type identifier: {discriminator}"
        ) from None

    return RawMessage(kind=kind, fields=unpacked)


# -------------------------
# Decoding: phase 2 (body)
# -------------------------

def decode_body(raw: RawMessage) -> Message:
    """
    Build the typed variant for an already header-decoded message.

    Raises:
        DecodeError if a required field is missing or mistyped.
    """
    kind = raw.kind
    fields = raw.fields

    if kind is MessageType.READY:
        return Ready()
    if kind is MessageType.TEXT:
        return Text(text=_require_str(fields, "text", kind))
    if kind is MessageType.AUDIO:
        return Audio(pcm=_require_samples(fields, "pcm", kind))
    if kind is MessageType.WORD:
        return Word(
            text=_require_str(fields, "text", kind),
            start_time=_require_number(fields, "start_time", kind),
        )
    if kind is MessageType.END_WORD:
        return WordEnd(stop_time=_require_number(fields, "stop_time", kind))
    if kind is MessageType.STEP:
        prs = fields.get("prs", ())
        return Step(
            step_idx=_require_int(fields, "step_idx", kind),
            buffered_pcm=_require_int(fields, "buffered_pcm", kind),
            prs=tuple(float(p) for p in _require_samples({"prs": prs}, "prs", kind)),
        )
    if kind is MessageType.MARKER:
        return Marker(id=_require_int(fields, "id", kind))
    if kind is MessageType.EOS:
        return EndOfStream()

    raise UnknownMessageType(f"Unexpected message type identifier: {kind.value}")


def decode(payload: bytes) -> Message:
    """
    Decode a binary payload into a typed message (header then body).
    """
    return decode_body(decode_header(payload))


# -------------------------
# Field validation helpers
# -------------------------

def _field(fields: Mapping[Any, Any], name: str, kind: MessageType) -> Any:
    if name not in fields:
        raise DecodeError(f"{kind.value} message is missing `{name}`")
    return fields[name]


def _require_str(fields: Mapping[Any, Any], name: str, kind: MessageType) -> str:
    value = _field(fields, name, kind)
    if not isinstance(value, str):
        raise DecodeError(
            f"{kind.value}.{name} must be a string, got {type(value).__name__}"
        )
    return value


def _require_int(fields: Mapping[Any, Any], name: str, kind: MessageType) -> int:
    value = _field(fields, name, kind)
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(
            f"{kind.value}.{name} must be an integer, got {type(value).__name__}"
        )
    return value


def _require_number(fields: Mapping[Any, Any], name: str, kind: MessageType) -> float:
    value = _field(fields, name, kind)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(
            f"{kind.value}.{name} must be a number, got {type(value).__name__}"
        )
    return float(value)


def _require_samples(
    fields: Mapping[Any, Any],
    name: str,
    kind: MessageType,
) -> np.ndarray:
    value = _field(fields, name, kind)
    if not isinstance(value, (list, tuple)):
        raise DecodeError(
            f"{kind.value}.{name} must be an array, got {type(value).__name__}"
        )

    # Let numpy infer first so strings / bools / nested arrays are rejected
    # instead of silently coerced.
    try:
        probe = np.asarray(value)
    except ValueError as e:
        raise DecodeError(f"{kind.value}.{name} is not a flat array: {e}") from e

    if probe.ndim != 1 or (probe.size and probe.dtype.kind not in "fiu"):
        raise DecodeError(f"{kind.value}.{name} must be a flat array of numbers")

    return probe.astype(np.float32)
