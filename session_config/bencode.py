"""Bencode encoding and decoding, plus a streaming reader for top-level dicts.

Strings decode to ``bytes``; integers to ``int``; lists to ``list``; dicts to
``dict`` with ``bytes`` keys, kept in the order they appear in the input so
that callers can validate key ordering themselves.
"""

from __future__ import annotations

import re
from typing import Any

INT_MIN = -(2**63)
INT_MAX = 2**64 - 1

_INT_RE = re.compile(rb"0|-?[1-9][0-9]*")
_LEN_RE = re.compile(rb"0|[1-9][0-9]*")


class BencodeError(ValueError):
    """Raised for malformed bencoded data."""


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"cannot bencode {type(value).__name__} as a string")


def _encode_into(out: bytearray, value: Any) -> None:
    if isinstance(value, int):
        if not INT_MIN <= value <= INT_MAX:
            raise ValueError(f"integer {value} is out of the encodable range")
        out += b"i%de" % value
    elif isinstance(value, (bytes, bytearray, memoryview, str)):
        raw = _as_bytes(value)
        out += b"%d:" % len(raw)
        out += raw
    elif isinstance(value, (list, tuple)):
        out += b"l"
        for item in value:
            _encode_into(out, item)
        out += b"e"
    elif isinstance(value, dict):
        items: dict[bytes, Any] = {}
        for key, item in value.items():
            raw_key = _as_bytes(key)
            if raw_key in items:
                raise ValueError(f"duplicate dict key {raw_key!r}")
            items[raw_key] = item
        out += b"d"
        for raw_key in sorted(items):
            _encode_into(out, raw_key)
            _encode_into(out, items[raw_key])
        out += b"e"
    else:
        raise TypeError(f"cannot bencode value of type {type(value).__name__}")


def encode(value: Any) -> bytes:
    """Bencodes a value built from ints, strings/bytes, lists and dicts.

    Dict keys are written in sorted byte order.
    """
    out = bytearray()
    _encode_into(out, value)
    return bytes(out)


def _decode_int(data: bytes, pos: int) -> tuple[int, int]:
    end = data.find(b"e", pos + 1)
    if end < 0:
        raise BencodeError("truncated integer")
    digits = data[pos + 1 : end]
    if not _INT_RE.fullmatch(digits):
        raise BencodeError(f"invalid integer {digits!r}")
    value = int(digits)
    if not INT_MIN <= value <= INT_MAX:
        raise BencodeError(f"integer {value} is out of range")
    return value, end + 1


def _decode_string(data: bytes, pos: int) -> tuple[bytes, int]:
    colon = data.find(b":", pos)
    if colon < 0:
        raise BencodeError("truncated string length")
    digits = data[pos:colon]
    if not _LEN_RE.fullmatch(digits):
        raise BencodeError(f"invalid string length {digits!r}")
    start = colon + 1
    end = start + int(digits)
    if end > len(data):
        raise BencodeError("truncated string")
    return data[start:end], end


def _peek(data: bytes, pos: int) -> bytes:
    if pos >= len(data):
        raise BencodeError("unexpected end of data")
    return data[pos : pos + 1]


def _decode_at(data: bytes, pos: int) -> tuple[Any, int]:
    token = _peek(data, pos)
    if token == b"i":
        return _decode_int(data, pos)
    if token.isdigit():
        return _decode_string(data, pos)
    if token == b"l":
        items = []
        pos += 1
        while _peek(data, pos) != b"e":
            item, pos = _decode_at(data, pos)
            items.append(item)
        return items, pos + 1
    if token == b"d":
        result: dict[bytes, Any] = {}
        pos += 1
        while _peek(data, pos) != b"e":
            if not _peek(data, pos).isdigit():
                raise BencodeError("dict key is not a string")
            key, pos = _decode_string(data, pos)
            if key in result:
                raise BencodeError(f"duplicate dict key {key!r}")
            result[key], pos = _decode_at(data, pos)
        return result, pos + 1
    raise BencodeError(f"invalid bencoded value type {token!r}")


def decode(data: bytes) -> Any:
    """Decodes a complete bencoded value; trailing bytes are an error."""
    raw = bytes(data)
    value, end = _decode_at(raw, 0)
    if end != len(raw):
        raise BencodeError("trailing data after bencoded value")
    return value


class DictConsumer:
    """Reads the pairs of a bencoded dict one at a time, tracking byte offsets."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        if not self._data.startswith(b"d"):
            raise BencodeError("bencoded value is not a dict")
        self._pos = 1
        self._pending: tuple[bytes, int] | None = None

    def is_finished(self) -> bool:
        """True once the closing ``e`` of the dict has been reached."""
        return _peek(self._data, self._pos) == b"e"

    def _next_key(self) -> tuple[bytes, int]:
        if self._pending is None:
            if self.is_finished():
                raise BencodeError("no more keys in dict")
            if not _peek(self._data, self._pos).isdigit():
                raise BencodeError("dict key is not a string")
            self._pending = _decode_string(self._data, self._pos)
        return self._pending

    def key(self) -> bytes:
        """The next key, without consuming it."""
        return self._next_key()[0]

    def key_offset(self) -> int:
        """Byte offset at which the next key's encoding (its length prefix) starts."""
        self._next_key()
        return self._pos

    def consume(self) -> tuple[bytes, Any]:
        """Consumes and returns the next ``(key, value)`` pair."""
        key, value_pos = self._next_key()
        value, end = _decode_at(self._data, value_pos)
        self._pos = end
        self._pending = None
        return key, value