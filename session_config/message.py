"""Config messages: parsing, merging, diffing, signing and serialization.

A serialized config message is a bencoded dict with these top-level keys:

``#``  the message seqno;
``&``  the config data;
``<``  lagged diffs of earlier messages, as ``[seqno, hash, diff]`` rows;
``=``  the diff introduced by this message;
``~``  an optional 64-byte signature over everything before it.

Unknown top-level keys are preserved in their place when re-serializing.
"""

from __future__ import annotations

import copy
import hashlib
from typing import Any, Callable, Optional, Sequence

from session_config.bencode import BencodeError, DictConsumer, encode
from session_config.data import (
    ConfigError,
    ConfigParseError,
    MissingSignature,
    SignatureError,
    apply_diff,
    load_diff,
    parse_data,
    serialize_data,
)
from session_config.data import diff as _diff_data
from session_config.data import prune as _prune_data

DEFAULT_DIFF_LAGS = 5
MAX_MESSAGE_SIZE = 76800
HASH_SIZE = 32
SIGNATURE_SIZE = 64

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

Verifier = Callable[[bytes, bytes], bool]
Signer = Callable[[bytes], bytes]
ErrorHandler = Callable[[int, ConfigError], None]
SeqnoHash = tuple[int, bytes]


def _hash_message(serialized: bytes) -> bytes:
    return hashlib.blake2b(serialized, digest_size=HASH_SIZE).digest()


def _int64(value: Any, what: str) -> int:
    if not isinstance(value, int):
        raise BencodeError(f"{what} is not an integer")
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise BencodeError(f"{what} does not fit in a signed 64-bit value")
    return value


def _next_pair(reader: DictConsumer) -> tuple[bytes, Any]:
    if reader.is_finished():
        raise BencodeError("unexpected end of dict")
    return reader.consume()


def _load_unknowns(
    unknown: dict, reader: DictConsumer, previous: bytes, until: bytes
) -> None:
    """Moves top-level keys strictly between ``previous`` and ``until`` into ``unknown``."""
    while not reader.is_finished() and reader.key() < until:
        key = reader.key()
        if key <= previous or (unknown and key <= next(reversed(unknown))):
            raise BencodeError("top-level keys are out of order")
        key, value = reader.consume()
        unknown[key] = value


def _parse_lagged_diffs(raw: Any, curr_seqno: int, lag: int) -> dict:
    if not isinstance(raw, list):
        raise BencodeError("lagged diffs are not a list")
    lagged: dict = {}
    for row in raw:
        if not isinstance(row, list):
            raise BencodeError("lagged diff row is not a list")
        if not row:
            raise BencodeError("lagged diff row is missing its seqno")
        seqno = _int64(row[0], "lagged diff seqno")
        if seqno >= curr_seqno:
            raise ConfigParseError("Data contains lagged seqno >= current seqno")
        if seqno <= curr_seqno - lag:
            continue  # too old: drop it
        if len(row) < 2 or not isinstance(row[1], bytes):
            raise BencodeError("lagged diff row is missing its hash")
        msg_hash = row[1]
        if len(msg_hash) != HASH_SIZE:
            raise ConfigParseError(
                "Data contains invalid lagged diff data: hash must be 32 bytes"
            )
        key = (seqno, msg_hash)
        if lagged and key <= next(reversed(lagged)):
            raise ConfigParseError("Data contained unsorted or duplicate lagged diff rows")
        if len(row) < 3:
            raise BencodeError("lagged diff row is missing its diff")
        diff = load_diff(row[2])
        if len(row) != 3:
            raise ConfigParseError(
                "Data contains invalid lagged diff tuple: expected 3 elements"
            )
        lagged[key] = diff
    return lagged


def _pair(key: bytes, value: Any) -> bytes:
    return encode(key) + encode(value)


class ConfigMessage:
    """A parsed, read-only config message.

    Build one with :meth:`parse` or :meth:`from_configs`; ``ConfigMessage()``
    gives an empty message with seqno 0.
    """

    def __init__(self) -> None:
        self._reset()
        self._hash = _hash_message(self._serialize_impl(self._diff))

    def _reset(
        self,
        verifier: Optional[Verifier] = None,
        signer: Optional[Signer] = None,
        lag: int = DEFAULT_DIFF_LAGS,
    ) -> None:
        self._data: dict = {}
        self._diff: dict = {}
        self._lagged_diffs: dict = {}
        self._unknown: dict = {}
        self._seqno = 0
        self._hash = bytes(HASH_SIZE)
        self._verified_signature = False
        self._unmerged = -1
        self.verifier = verifier
        self.signer = signer
        self.lag = lag

    @property
    def _seqno_hash(self) -> SeqnoHash:
        return (self._seqno, self._hash)

    def _adopt(self, other: ConfigMessage) -> None:
        """Takes over the message state of ``other`` (deep-copied)."""
        self._data = copy.deepcopy(other._data)
        self._diff = copy.deepcopy(other._diff)
        self._lagged_diffs = copy.deepcopy(other._lagged_diffs)
        self._unknown = copy.deepcopy(other._unknown)
        self._seqno = other._seqno
        self._hash = other._hash
        self._verified_signature = other._verified_signature
        self.verifier = other.verifier
        self.signer = other.signer
        self.lag = other.lag

    @classmethod
    def parse(
        cls,
        serialized: bytes,
        verifier: Optional[Verifier] = None,
        signer: Optional[Signer] = None,
        lag: int = DEFAULT_DIFF_LAGS,
        signature_optional: bool = False,
    ) -> ConfigMessage:
        """Parses a single serialized message into a read-only ConfigMessage.

        Raises a ConfigError subclass on any parse or signature failure.
        """
        msg = ConfigMessage.__new__(ConfigMessage)
        msg._reset(verifier, signer, lag)
        msg._load_serialized(bytes(serialized), signature_optional)
        msg._unmerged = 0
        return msg

    def _load_serialized(self, serialized: bytes, signature_optional: bool) -> None:
        to_verify = b""
        signature = b""
        try:
            self._hash = _hash_message(serialized)
            reader = DictConsumer(serialized)

            key, seqno = _next_pair(reader)
            if key != b"#":
                raise ConfigParseError('Invalid config: first key must be "#"')
            self._seqno = _int64(seqno, "seqno")

            _load_unknowns(self._unknown, reader, b"#", b"&")
            key, raw_data = _next_pair(reader)
            if key != b"&":
                raise ConfigParseError('Invalid config: "&" data dict not found')
            self._data = parse_data(raw_data, top_level=True)

            _load_unknowns(self._unknown, reader, b"&", b"<")
            if not reader.is_finished() and reader.key() == b"<":
                _, raw_lags = reader.consume()
                self._lagged_diffs = _parse_lagged_diffs(raw_lags, self._seqno, self.lag)

            _load_unknowns(self._unknown, reader, b"<", b"=")
            if not reader.is_finished() and reader.key() == b"=":
                _, raw_diff = reader.consume()
                self._diff = load_diff(raw_diff)

            _load_unknowns(self._unknown, reader, b"=", b"~")
            if not reader.is_finished() and reader.key() == b"~":
                to_verify = serialized[: reader.key_offset()]
                _, signature = reader.consume()
                if not isinstance(signature, bytes):
                    raise BencodeError("signature is not a string")

            if not reader.is_finished():
                raise ConfigParseError('Invalid config: dict has invalid key(s) after "~"')
        except BencodeError as err:
            raise ConfigParseError(f"Failed to parse config file: {err}") from err

        if self.verifier is not None:
            if not signature:
                if not signature_optional:
                    raise MissingSignature("Config signature is missing")
            else:
                self._verified_signature = bool(self.verifier(to_verify, signature))
                if not self._verified_signature:
                    raise SignatureError("Config signature failed verification")

    @classmethod
    def from_configs(
        cls,
        configs: Sequence[bytes],
        verifier: Optional[Verifier] = None,
        signer: Optional[Signer] = None,
        lag: int = DEFAULT_DIFF_LAGS,
        signature_optional: bool = False,
        error_handler: Optional[ErrorHandler] = None,
    ) -> ConfigMessage:
        """Loads several serialized messages, merging them if they conflict.

        Messages that fail to parse are passed to ``error_handler`` (with their
        index) and skipped; a ConfigError is raised if none are usable.
        """
        msg = cls.__new__(cls)
        msg._reset(verifier, signer, lag)
        msg._load_configs(configs, signature_optional, error_handler)
        return msg

    def _load_configs(
        self,
        configs: Sequence[bytes],
        signature_optional: bool,
        error_handler: Optional[ErrorHandler],
    ) -> None:
        parsed: list[ConfigMessage] = []
        for index, serialized in enumerate(configs):
            try:
                parsed.append(
                    ConfigMessage.parse(
                        serialized, self.verifier, self.signer, self.lag, signature_optional
                    )
                )
            except ConfigError as err:
                if error_handler is not None:
                    error_handler(index, err)
        if not parsed:
            raise ConfigError("Config initialization failed: no valid config messages given")

        max_seqno = max(conf._seqno for conf in parsed)
        redundant = [False] * len(parsed)
        for i, conf in enumerate(parsed):
            key = conf._seqno_hash
            for j, other in enumerate(parsed):
                if i == j:
                    continue
                # Included in another message's lagged diffs, or a later duplicate.
                if key in other._lagged_diffs or (j < i and other._seqno_hash == key):
                    redundant[i] = True
                    break
            if conf._seqno + self.lag <= max_seqno:
                redundant[i] = True

        remaining = [(i, conf) for i, conf in enumerate(parsed) if not redundant[i]]
        if len(remaining) == 1:
            index, chosen = remaining[0]
            self._adopt(chosen)
            self._unmerged = index
            return

        self._unmerged = -1
        survivors = sorted(
            (conf for _, conf in remaining), key=lambda c: c._seqno_hash, reverse=True
        )
        self._seqno = max_seqno + 1
        self._data = copy.deepcopy(survivors[0]._data)

        # Higher seqno/hash messages come first, so their entries take precedence.
        replay: dict = {}
        for conf in survivors:
            replay.setdefault(conf._seqno_hash, (conf._data, conf._diff))
            for seqno_hash, lagged in conf._lagged_diffs.items():
                replay.setdefault(seqno_hash, (conf._data, lagged))

        for seqno_hash in sorted(replay):
            source, change = replay[seqno_hash]
            apply_diff(self._data, change, source)
            self._lagged_diffs[seqno_hash] = copy.deepcopy(change)

        _prune_data(self._data)
        self._hash = _hash_message(self._serialize_impl(self._diff))

    @property
    def data(self) -> dict:
        """The config data; treat it as read-only on a ConfigMessage."""
        return self._data

    @property
    def seqno(self) -> int:
        """The message's sequence number."""
        return self._seqno

    def hash(self) -> bytes:
        """The 32-byte hash of the message, computed when it was loaded."""
        return self._hash

    @property
    def merged(self) -> bool:
        """True if loading had to produce a new, merged message."""
        return self._unmerged == -1

    @property
    def unmerged_index(self) -> int:
        """Index (among the messages that parsed) of the message used as-is, or -1."""
        return self._unmerged

    @property
    def verified_signature(self) -> bool:
        """True if the message carried a signature that the verifier accepted."""
        return self._verified_signature

    def diff(self) -> dict:
        """The diff carried by this message."""
        return self._diff

    def increment(self) -> MutableConfigMessage:
        """A mutable message with the next seqno, carrying this one as a lagged diff."""
        return MutableConfigMessage.from_message(self)

    def serialize(self, enable_signing: bool = True) -> bytes:
        """Serializes the message, signing it when a signer is set and signing is enabled."""
        return self._serialize_impl(self.diff(), enable_signing)

    def _unknown_between(self, lower: bytes, upper: bytes) -> bytes:
        return b"".join(
            _pair(key, value)
            for key, value in sorted(self._unknown.items())
            if lower < key < upper
        )

    def _serialize_impl(self, curr_diff: dict, enable_signing: bool = True) -> bytes:
        lags = [
            [seqno, msg_hash, lagged]
            for (seqno, msg_hash), lagged in sorted(self._lagged_diffs.items())
            if self._seqno - self.lag < seqno < self._seqno
        ]
        out = bytearray(b"d")
        out += _pair(b"#", self._seqno)
        out += self._unknown_between(b"#", b"&")
        out += _pair(b"&", serialize_data(self._data))
        out += self._unknown_between(b"&", b"<")
        out += _pair(b"<", lags)
        out += self._unknown_between(b"<", b"=")
        out += _pair(b"=", curr_diff)
        out += self._unknown_between(b"=", b"~")

        if self.signer is not None and enable_signing:
            signature = bytes(self.signer(bytes(out)))
            if len(signature) != SIGNATURE_SIZE:
                raise ValueError("Invalid signature: signing function did not return 64 bytes")
            out += _pair(b"~", signature)
        out += b"e"
        return bytes(out)


class MutableConfigMessage(ConfigMessage):
    """A config message whose data can be changed; its diff tracks those changes."""

    def __init__(
        self,
        seqno: int = 0,
        lag: int = DEFAULT_DIFF_LAGS,
        signer: Optional[Signer] = None,
    ) -> None:
        super().__init__()
        self.lag = lag
        self._seqno = seqno
        self.signer = signer

    def _reset(
        self,
        verifier: Optional[Verifier] = None,
        signer: Optional[Signer] = None,
        lag: int = DEFAULT_DIFF_LAGS,
    ) -> None:
        super()._reset(verifier, signer, lag)
        self._orig_data: dict = {}

    @classmethod
    def from_configs(
        cls,
        configs: Sequence[bytes],
        verifier: Optional[Verifier] = None,
        signer: Optional[Signer] = None,
        lag: int = DEFAULT_DIFF_LAGS,
        signature_optional: bool = False,
        error_handler: Optional[ErrorHandler] = None,
    ) -> MutableConfigMessage:
        """Loads like ConfigMessage.from_configs, always ending one seqno past the newest input.

        A merge already advances the seqno; otherwise the chosen message is incremented.
        """
        msg = cls.__new__(cls)
        msg._reset(verifier, signer, lag)
        msg._load_configs(configs, signature_optional, error_handler)
        if msg.merged:
            msg._orig_data = copy.deepcopy(msg._data)
        else:
            msg._increment_impl()
        return msg

    @classmethod
    def from_config(
        cls,
        config: bytes,
        verifier: Optional[Verifier] = None,
        signer: Optional[Signer] = None,
        lag: int = DEFAULT_DIFF_LAGS,
        signature_optional: bool = False,
    ) -> MutableConfigMessage:
        """Loads a single message and increments it; any parse error is raised."""

        def _raise(index: int, err: ConfigError) -> None:
            raise err

        return cls.from_configs([config], verifier, signer, lag, signature_optional, _raise)

    @classmethod
    def from_message(cls, message: ConfigMessage) -> MutableConfigMessage:
        """A new mutable message with the next seqno, derived from ``message``."""
        msg = cls.__new__(cls)
        msg._reset(message.verifier, message.signer, message.lag)
        msg._adopt(message)
        msg._unmerged = message._unmerged
        if isinstance(message, MutableConfigMessage):
            msg._orig_data = copy.deepcopy(message._orig_data)
            msg.hash()
        msg._increment_impl()
        return msg

    def _increment_impl(self) -> None:
        self._orig_data = copy.deepcopy(self._data)
        lagged = {
            key: value
            for key, value in sorted(self._lagged_diffs.items())
            if self._seqno - self.lag < key[0] < self._seqno
        }
        lagged[self._seqno_hash] = self._diff
        self._lagged_diffs = lagged
        self._seqno += 1
        self._hash = bytes(HASH_SIZE)
        self._diff = {}

    @property
    def seqno(self) -> int:
        """The message's sequence number; settable on mutable messages."""
        return self._seqno

    @seqno.setter
    def seqno(self, value: int) -> None:
        self._seqno = value

    def diff(self) -> dict:
        """Prunes the data and returns its diff against the original data."""
        self.prune()
        self._diff = _diff_data(self._orig_data, self._data)
        return self._diff

    def prune(self) -> bool:
        """Removes empty dicts and sets from the data; True if anything changed."""
        return _prune_data(self._data)

    def hash(self) -> bytes:
        """Serializes the current state and returns (and stores) its hash."""
        self._hash = _hash_message(self.serialize())
        return self._hash

    def increment(self) -> MutableConfigMessage:
        """A new message with the next seqno whose lagged diffs include this one's diff."""
        return MutableConfigMessage.from_message(self)