"""Encoding and decoding of the bencode format used by BitTorrent.

Values map onto Python types as follows:

* byte strings -> ``bytes``
* integers     -> ``int`` (decoding accepts the signed 64-bit range)
* lists        -> ``list``
* dictionaries -> ``dict`` with ``str`` keys

Dictionary keys are decoded as UTF-8 with ``surrogateescape``, so keys
holding arbitrary bytes survive a decode/encode round trip unchanged.
Encoding also accepts ``bytes`` keys, ``str`` values (written as UTF-8)
and tuples.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_INT_RE = re.compile(rb"[+-]?[0-9]+")
_KEY_ENCODING = ("utf-8", "surrogateescape")

BytesLike = Union[bytes, bytearray, memoryview]


class BencodeError(ValueError):
    """Base class for malformed bencoded input."""


class UnexpectedEndError(BencodeError):
    """The input ended before a value was complete."""


class InvalidFormatError(BencodeError):
    """The input is not valid bencode."""


@dataclass(frozen=True)
class RawValue:
    """A decoded value together with the exact bytes it was decoded from."""

    value: Any
    raw: bytes


# --- Encoding ---


def encode(value: Any) -> bytes:
    """Serialize a value to bencode; dictionary keys are written sorted."""
    out = bytearray()
    _encode_into(out, value)
    return bytes(out)


def _key_bytes(key: Any) -> bytes:
    if isinstance(key, str):
        return key.encode(*_KEY_ENCODING)
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    raise TypeError(f"bencode dictionary keys must be str or bytes, not {type(key).__name__}")


def _encode_into(out: bytearray, value: Any) -> None:
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        out += b"%d:" % len(data)
        out += data
    elif isinstance(value, str):
        _encode_into(out, value.encode("utf-8"))
    elif isinstance(value, bool):
        raise TypeError("bencode has no boolean type")
    elif isinstance(value, int):
        out += b"i%de" % value
    elif isinstance(value, (list, tuple)):
        out += b"l"
        for item in value:
            _encode_into(out, item)
        out += b"e"
    elif isinstance(value, Mapping):
        entries = sorted((_key_bytes(k), v) for k, v in value.items())
        out += b"d"
        previous = None
        for key, item in entries:
            if key == previous:
                raise ValueError(f"duplicate dictionary key {key!r}")
            previous = key
            _encode_into(out, key)
            _encode_into(out, item)
        out += b"e"
    else:
        raise TypeError(f"cannot bencode value of type {type(value).__name__}")


# --- Decoding ---


def decode(data: BytesLike) -> Any:
    """Decode exactly one bencoded value; trailing bytes are an error."""
    data = bytes(data)
    value, end = _decode_value(data, 0)
    if end != len(data):
        raise InvalidFormatError("invalid format: trailing data after value")
    return value


def decode_first(data: BytesLike) -> tuple[Any, int]:
    """Decode the first value in ``data``; return it and the bytes consumed."""
    data = bytes(data)
    value, end = _decode_value(data, 0)
    return value, end


def decode_raw(data: BytesLike) -> RawValue:
    """Decode the first value in ``data`` along with its raw encoding."""
    data = bytes(data)
    value, end = _decode_value(data, 0)
    return RawValue(value, data[:end])


def decode_dict_raw(data: BytesLike) -> dict[str, RawValue]:
    """Decode a dictionary, keeping the raw bytes of every entry's value."""
    data = bytes(data)
    if not data or data[0] != ord("d"):
        raise InvalidFormatError("invalid format: expected dict")
    entries, _ = _scan_dict(data, 0)
    return {
        key.decode(*_KEY_ENCODING): RawValue(value, data[start:end])
        for key, value, start, end in entries
    }


def _decode_value(data: bytes, pos: int) -> tuple[Any, int]:
    if pos >= len(data):
        raise UnexpectedEndError("unexpected end of input")
    lead = data[pos]
    if lead == ord("i"):
        return _decode_int(data, pos)
    if lead == ord("l"):
        return _decode_list(data, pos)
    if lead == ord("d"):
        return _decode_dict(data, pos)
    if ord("0") <= lead <= ord("9"):
        return _decode_string(data, pos)
    raise InvalidFormatError(f"invalid format: unexpected byte {bytes([lead])!r}")


def _decode_string(data: bytes, pos: int) -> tuple[bytes, int]:
    colon = data.find(b":", pos)
    length_text = data[pos:colon] if colon != -1 else data[pos:]
    if length_text and not length_text.isdigit():
        raise InvalidFormatError("invalid format: non-digit in string length")
    if colon == -1:
        raise InvalidFormatError("invalid format: missing colon in string")
    if not length_text:
        raise InvalidFormatError("invalid format: bad string length: empty")
    length = int(length_text)
    if length > _INT64_MAX:
        raise InvalidFormatError(f"invalid format: bad string length: {length} out of range")
    start = colon + 1
    end = start + length
    if end > len(data):
        raise UnexpectedEndError(
            f"unexpected end of input: string length {length} exceeds available data"
        )
    return data[start:end], end


def _decode_int(data: bytes, pos: int) -> tuple[int, int]:
    if len(data) - pos < 3:
        raise UnexpectedEndError("unexpected end of input")
    end = data.find(b"e", pos + 1)
    if end == -1:
        raise InvalidFormatError("invalid format: missing 'e' in integer")
    text = data[pos + 1 : end]
    if len(text) > 1 and text[:1] == b"0":
        raise InvalidFormatError("invalid format: leading zero in integer")
    if text == b"-0":
        raise InvalidFormatError("invalid format: negative zero in integer")
    if not _INT_RE.fullmatch(text):
        raise InvalidFormatError(f"invalid format: bad integer {text!r}")
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise InvalidFormatError(f"invalid format: bad integer {text!r} out of range")
    return number, end + 1


def _decode_list(data: bytes, pos: int) -> tuple[list, int]:
    pos += 1
    items = []
    while True:
        if pos >= len(data):
            raise UnexpectedEndError("unexpected end of input: missing 'e' in list")
        if data[pos] == ord("e"):
            return items, pos + 1
        item, pos = _decode_value(data, pos)
        items.append(item)


def _scan_dict(data: bytes, pos: int) -> tuple[list[tuple[bytes, Any, int, int]], int]:
    """Read dictionary entries as (key, value, value_start, value_end)."""
    pos += 1
    entries: list[tuple[bytes, Any, int, int]] = []
    previous: bytes | None = None
    while True:
        if pos >= len(data):
            raise UnexpectedEndError("unexpected end of input: missing 'e' in dict")
        if data[pos] == ord("e"):
            return entries, pos + 1
        try:
            key, pos = _decode_string(data, pos)
        except BencodeError as exc:
            raise type(exc)(f"dict key: {exc}") from exc
        if previous is not None and key <= previous:
            raise InvalidFormatError(
                f"invalid format: dict keys not sorted: {key!r} after {previous!r}"
            )
        previous = key
        start = pos
        value, pos = _decode_value(data, pos)
        entries.append((key, value, start, pos))


def _decode_dict(data: bytes, pos: int) -> tuple[dict[str, Any], int]:
    entries, end = _scan_dict(data, pos)
    return {key.decode(*_KEY_ENCODING): value for key, value, _, _ in entries}, end