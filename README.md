# session-config

A library for versioned config messages. Each message carries a sequence
number (seqno), a 32-byte BLAKE2b hash, its data, and a diff of the changes
it made. It can also carry the diffs of a few earlier messages, called
"lagged" diffs. Clients can change a message independently. When two
messages conflict, the library merges them by replaying their diffs under
fixed rules. Messages are serialized in bencode.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

The package has no dependencies outside the standard library.

## Modules

### `session_config.bencode`

- `encode(value)` bencodes values built from ints, `bytes`/`str`, lists,
  tuples and dicts. Dict keys are written in sorted byte order.
- `decode(data)` decodes one complete value:
  - strings come back as `bytes`;
  - dict keys are kept in the order they appear in the input;
  - malformed input, duplicate keys and trailing bytes raise `BencodeError`,
    which is a `ValueError`.
- `DictConsumer` walks a bencoded dict one pair at a time. It has these
  methods:
  - `is_finished()`;
  - `key()`, which peeks at the next key;
  - `key_offset()`, which gives the byte offset where the next key starts;
  - `consume()`, which returns the next `(key, value)` pair.

### `session_config.bt_merge`

- `merge(a, b)` returns a new dict with its keys sorted. A key that is in
  both dicts takes its value from `a`.
- `merge_sorted(a, b, less, duplicates=False)` merges two sequences that are
  already sorted by the `less(x, y)` predicate.
  - By default, an element of `b` that compares equal to one of `a` is
    dropped.
  - With `duplicates=True`, both are kept, and the `b` element comes first.

### `session_config.padding`

- `padded_size(s, overhead=ENCRYPT_DATA_OVERHEAD)` gives the target size for
  a plaintext of `s` bytes. The overhead defaults to 40 bytes.
  - The step is 256 bytes while `s + overhead` is below 5120, 1024 bytes
    below 20480, 2048 bytes below 40960, and 5120 bytes above that.
  - The result is always at least `s`.
- `pad_message(data, overhead=ENCRYPT_DATA_OVERHEAD)` returns `data` with
  null bytes put in front until it reaches that size.

### `session_config.data`

Config data is a dict with `bytes` keys. Each value is one of:

- a scalar, which is an `int` or `bytes`;
- a `set` of scalars;
- a nested dict of the same shape.

When sets are serialized, integers come before strings, and each group is
sorted naturally.

Functions:

- `scalar_sort_key(value)` gives the sort key for that ordering.
- `prune(data)` removes empty sets and dicts in place. It returns `True` if
  anything was removed.
- `diff(old, new)` returns the diff that turns `old` into `new`. Each value
  in the diff is one of:
  - `b""` when a scalar was assigned;
  - `b"-"` when a value was removed;
  - `[added, removed]` for a change to a set;
  - a nested diff dict for changes inside a sub-dict.
- `load_diff(raw)` checks a decoded diff (key order, value forms, set
  ordering) and returns a copy of it.
- `parse_data(raw, top_level=False)` checks decoded config data and turns its
  lists into sets. It rejects:
  - keys that are out of order;
  - empty sub-dicts and empty sets;
  - duplicate or unsorted set members;
  - integers outside the signed 64-bit range.
- `serialize_data(data)` turns config data into a value that can be
  bencoded, with each set becoming a sorted list.
- `apply_diff(data, diff, source)` replays a diff onto `data` in place. It
  takes the values from `source`. Call `prune` afterwards.

Errors: `ConfigError` is the base class. `SignatureError` and
`ConfigParseError` derive from it, and `MissingSignature` derives from
`SignatureError`.

### `session_config.message`

A serialized message is a bencoded dict with these top-level keys:

| Key | Contents |
|-----|----------|
| `#` | the seqno |
| `&` | the data |
| `<` | lagged diffs, as `[seqno, hash, diff]` rows |
| `=` | this message's diff |
| `~` | an optional 64-byte signature |

Any other top-level keys are kept and written back in their place.

`ConfigMessage` is read-only.

- `ConfigMessage()` is an empty message with seqno 0.
- `ConfigMessage.parse(serialized, verifier=None, signer=None, lag=5, signature_optional=False)`
  parses a single message.
- `ConfigMessage.from_configs(configs, verifier=None, signer=None, lag=5, signature_optional=False, error_handler=None)`
  loads several messages.
  - It drops messages that another message's lagged diffs already include.
  - It drops duplicates.
  - It drops messages that are `lag` or more seqnos behind the newest one.
  - If exactly one message is left, it is used as it is (`merged` is
    `False`, and `unmerged_index` gives its position).
  - Otherwise the remaining messages are merged into a new message whose
    seqno is one past the highest. Diffs are replayed in (seqno, hash)
    order.
  - Each message that fails to parse is passed to `error_handler(index, error)`
    and then skipped.
  - If no message is usable, `ConfigError` is raised.
- Properties: `data`, `seqno`, `merged`, `unmerged_index` and
  `verified_signature`.
- Methods: `hash()`, `diff()`, `increment()` and
  `serialize(enable_signing=True)`.

`MutableConfigMessage` is a subclass whose `data` you can change.

- `MutableConfigMessage(seqno=0, lag=5, signer=None)` makes a new, empty
  message.
- `MutableConfigMessage.from_configs(...)` takes the same arguments as the
  base class version. It always ends one seqno past the newest input.
- `MutableConfigMessage.from_config(config, ...)` loads a single message and
  raises any parse error.
- `MutableConfigMessage.from_message(message)` builds a mutable message from
  `message` with the next seqno. It is the same as `message.increment()`.
- `seqno` can be set.
- `diff()` prunes the data and returns its diff against the data the message
  started from.
- `prune()` removes empty sets and dicts from the data.
- `hash()` serializes the current state and hashes it.
- `increment()` returns the next message, which carries this message's diff
  as a lagged diff.

## Example

```python
from session_config.message import ConfigMessage, MutableConfigMessage

msg = MutableConfigMessage()
msg.data[b"n"] = b"Alice"
blob = msg.serialize()

loaded = ConfigMessage.parse(blob)
print(loaded.seqno, loaded.data)        # 0 {b'n': b'Alice'}

nxt = loaded.increment()
nxt.data[b"n"] = b"Bob"
blob2 = nxt.serialize()

combined = ConfigMessage.from_configs([blob, blob2])
print(combined.merged, combined.unmerged_index, combined.data)
# False 1 {b'n': b'Bob'}
```

### Signing

- `signer(data)` is given the serialized message up to the point where the
  `~` key would go. It must return exactly 64 bytes; any other length raises
  `ValueError`.
- `verifier(data, signature)` is given the same range of bytes and the
  signature. It returns whether the signature is valid.

When a verifier is set, parsing raises:

- `MissingSignature` if there is no signature and `signature_optional` is
  false;
- `SignatureError` if the verifier rejects the signature.

Malformed input raises `ConfigParseError`.

## What this package does not do

- **Encryption:** the package does not encrypt or decrypt messages. It only
  works out padding sizes, using an assumed 40-byte encryption overhead.
- **Compression:** it does not compress messages.
- **Signing keys:** it does not create signing keys. You supply signing and
  verification as callables.
- **Storage and networking:** it does not store, push or fetch messages.
- **Command-line tool:** there is none.