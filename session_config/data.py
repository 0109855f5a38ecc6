"""Config data values: pruning, diffing, validation, serialization and diff replay.

Config data is a ``dict`` with ``bytes`` keys whose values are scalars
(``int`` or ``bytes``), sets of scalars, or nested dicts of the same shape.
Sets order integers before strings, each sorted naturally.

A diff is a dict of the same keys whose values are ``b""`` (scalar
assigned), ``b"-"`` (value removed), ``[added, removed]`` (set change) or a
nested diff dict (changes inside a sub-dict).
"""

from __future__ import annotations

import enum
from typing import Any, Iterable

from session_config.bencode import BencodeError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

ASSIGNED = b""
REMOVED = b"-"


class ConfigError(RuntimeError):
    """Base type for all errors that can happen during config parsing."""


class SignatureError(ConfigError):
    """Raised for a bad or missing signature."""


class MissingSignature(SignatureError):
    """Raised when a required signature is missing."""


class ConfigParseError(ConfigError):
    """Raised for an unparseable config."""


class _Kind(enum.Enum):
    DICT = "dict"
    SET = "set"
    SCALAR = "scalar"


def _kind(value: Any) -> _Kind:
    if isinstance(value, dict):
        return _Kind.DICT
    if isinstance(value, (set, frozenset)):
        return _Kind.SET
    if isinstance(value, (int, bytes, str)):
        return _Kind.SCALAR
    raise TypeError(f"invalid config value of type {type(value).__name__}")


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (int, bytes, str))


def scalar_sort_key(value: Any) -> tuple[int, Any]:
    """Sort key putting integers before strings, each in natural order."""
    if isinstance(value, int):
        return (0, value)
    if isinstance(value, str):
        return (1, value.encode())
    if isinstance(value, (bytes, bytearray)):
        return (1, bytes(value))
    raise TypeError(f"not a config scalar: {type(value).__name__}")


def _prune(value: Any) -> tuple[bool, bool]:
    """Returns (value should be removed, something underneath was removed)."""
    kind = _kind(value)
    if kind is _Kind.DICT:
        removed_subkeys = False
        for key in list(value):
            remove_key, removed_below = _prune(value[key])
            if remove_key or removed_below:
                removed_subkeys = True
            if remove_key:
                del value[key]
        return (not value, removed_subkeys)
    if kind is _Kind.SET:
        return (not value, False)
    return (False, False)


def prune(data: dict) -> bool:
    """Removes empty dicts and sets, in place; True if anything was removed."""
    return _prune(data)[1]


def _set_diff(old: Iterable[Any], new: Iterable[Any]) -> list | None:
    old_set, new_set = set(old), set(new)
    added = sorted(new_set - old_set, key=scalar_sort_key)
    removed = sorted(old_set - new_set, key=scalar_sort_key)
    if not added and not removed:
        return None
    return [added, removed]


def _as_new(value: Any) -> Any:
    kind = _kind(value)
    if kind is _Kind.DICT:
        return _dict_diff({}, value)
    if kind is _Kind.SET:
        return _set_diff((), value) or [[], []]
    return ASSIGNED


def _as_removed(value: Any) -> Any:
    kind = _kind(value)
    if kind is _Kind.DICT:
        return _dict_diff(value, {})
    if kind is _Kind.SET:
        return _set_diff(value, ()) or [[], []]
    return REMOVED


def _dict_diff(old: dict, new: dict) -> dict:
    result: dict = {}
    for key in sorted(old.keys() | new.keys()):
        if key not in new:
            result[key] = _as_removed(old[key])
            continue
        new_value = new[key]
        if key in old and _kind(old[key]) is _kind(new_value):
            old_value = old[key]
            kind = _kind(new_value)
            if kind is _Kind.SCALAR:
                if type(old_value) is not type(new_value) or old_value != new_value:
                    result[key] = ASSIGNED
            elif kind is _Kind.DICT:
                sub = _dict_diff(old_value, new_value)
                if sub:
                    result[key] = sub
            else:
                sub = _set_diff(old_value, new_value)
                if sub is not None:
                    result[key] = sub
            continue
        # A new key, or a key whose fundamental type changed: treat it as new.
        result[key] = _as_new(new_value)
    return result


def diff(old: dict, new: dict) -> dict:
    """Computes the diff turning ``old`` into ``new``; empty if they match."""
    return _dict_diff(old, new)


def _check_scalar_order(a: Any, b: Any) -> None:
    if not (_is_scalar(a) and _is_scalar(b)):
        raise ConfigParseError("invalid config set elements: only ints/strings permitted")
    a_int, b_int = isinstance(a, int), isinstance(b, int)
    if a_int and not b_int:
        return
    if not a_int and b_int:
        raise ConfigParseError("invalid config set elements: string before int")
    if a_int:
        if a >= b:
            raise ConfigParseError("invalid config set elements: unsorted integers")
    elif scalar_sort_key(a) >= scalar_sort_key(b):
        raise ConfigParseError("invalid config set elements: unsorted strings")


def _key_text(key: bytes) -> str:
    return key.decode(errors="replace")


def load_diff(raw: dict) -> dict:
    """Validates a decoded diff dict and returns it as a fresh dict."""
    if not isinstance(raw, dict):
        raise BencodeError("diff is not a dict")
    result: dict = {}
    previous: bytes | None = None
    for key, value in raw.items():
        if previous is not None and key <= previous:
            raise BencodeError("Diff keys are not correctly ordered")
        previous = key
        if isinstance(value, bytes):
            if value not in (ASSIGNED, REMOVED):
                raise ConfigParseError(
                    f"config diff contains invalid dict pair {_key_text(key)}={_key_text(value)}"
                )
            result[key] = value
        elif isinstance(value, list):
            if len(value) != 2:
                raise ConfigParseError(
                    f"config diff contains invalid set at {_key_text(key)}: expected 2 elements"
                )
            for sublist in value:
                if not isinstance(sublist, list):
                    raise ConfigParseError(
                        f"config diff contains invalid set at {_key_text(key)}: "
                        "expected 2 sub-lists"
                    )
                for a, b in zip(sublist, sublist[1:]):
                    _check_scalar_order(a, b)
            result[key] = [list(sublist) for sublist in value]
        elif isinstance(value, dict):
            result[key] = load_diff(value)
        else:
            raise ConfigParseError(
                f"config diff contains invalid value type at {_key_text(key)}"
            )
    return result


def _parse_int(value: int) -> int:
    if not INT64_MIN <= value <= INT64_MAX:
        raise BencodeError(f"integer {value} does not fit in a signed 64-bit value")
    return value


def _parse_set(raw: list) -> set:
    if not raw:
        raise BencodeError("Data contains an unpruned, empty set")
    result: set = set()
    last: Any = None
    for item in raw:
        if isinstance(item, int):
            value: Any = _parse_int(item)
        elif isinstance(item, bytes):
            value = item
        else:
            raise ConfigParseError("Data contains a set with a non-scalar value")
        if result:
            if scalar_sort_key(value) == scalar_sort_key(last):
                raise ConfigParseError("Data contains a set with duplicates")
            if scalar_sort_key(value) < scalar_sort_key(last):
                raise ConfigParseError("Data contains an unsorted set")
        result.add(value)
        last = value
    return result


def parse_data(raw: dict, top_level: bool = False) -> dict:
    """Validates decoded config data and converts lists to sets.

    Only the top-level dict may be empty.
    """
    if not isinstance(raw, dict):
        raise BencodeError("Data is not a dict")
    if not top_level and not raw:
        raise BencodeError("Data contains an unpruned, empty dict")
    result: dict = {}
    previous: bytes | None = None
    for key, value in raw.items():
        if previous is not None and key <= previous:
            raise BencodeError("Data keys are not correctly ordered")
        previous = key
        if isinstance(value, bytes):
            result[key] = value
        elif isinstance(value, int):
            result[key] = _parse_int(value)
        elif isinstance(value, dict):
            result[key] = parse_data(value)
        elif isinstance(value, list):
            result[key] = _parse_set(value)
        else:
            raise BencodeError("Data contains invalid bencoded value type")
    return result


def _serialize_value(value: Any) -> Any:
    kind = _kind(value)
    if kind is _Kind.DICT:
        return serialize_data(value)
    if kind is _Kind.SET:
        return sorted(value, key=scalar_sort_key)
    return value


def serialize_data(data: dict) -> dict:
    """Converts config data to a bencodable value: sets become sorted lists."""
    return {key: _serialize_value(data[key]) for key in sorted(data)}


def _diff_scalar(value: Any, what: str) -> Any:
    if not _is_scalar(value):
        raise ConfigError(f"Invalid set diff {what} value: expected int or scalar")
    return value


def apply_diff(data: dict, diff: dict, source: dict) -> None:
    """Replays ``diff`` onto ``data`` in place, taking values from ``source``.

    Empty sets and dicts are left behind; prune afterwards.
    """
    for key, change in diff.items():
        present = key in source
        source_kind = _kind(source[key]) if present else None
        is_scalar_diff = isinstance(change, (bytes, str))
        is_set_diff = isinstance(change, list)
        is_dict_diff = isinstance(change, dict)

        if (
            not present
            or (is_scalar_diff and source_kind is not _Kind.SCALAR)
            or (is_set_diff and source_kind is not _Kind.SET)
            or (is_dict_diff and source_kind is not _Kind.DICT)
        ):
            # The value is gone from the source or changed type: a later diff
            # removes or replaces it, so drop it now.
            data.pop(key, None)
            continue

        source_value = source[key]
        if is_scalar_diff:
            mode = change.encode() if isinstance(change, str) else change
            if mode == REMOVED:
                data.pop(key, None)
            elif mode == ASSIGNED:
                data[key] = source_value
            else:
                raise ConfigError(
                    f"Invalid diff value to apply at key {_key_text(key)}: expected '' or '-'"
                )
        elif is_dict_diff:
            sub = data.get(key)
            if not isinstance(sub, dict):
                sub = {}
                data[key] = sub
            apply_diff(sub, change, source_value)
        elif is_set_diff:
            if len(change) != 2 or not all(isinstance(part, list) for part in change):
                raise ConfigError(
                    f"Invalid set diff at key {_key_text(key)}: expected 2 sub-lists"
                )
            subset = data.get(key)
            if not isinstance(subset, set):
                subset = set()
                data[key] = subset
            added, removed = change
            for value in added:
                subset.add(_diff_scalar(value, "added"))
            for value in removed:
                subset.discard(_diff_scalar(value, "removed"))
        else:
            raise ConfigError(f"Invalid diff value type to apply at key {_key_text(key)}")