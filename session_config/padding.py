"""Message padding sizes used before encrypting config messages."""

from __future__ import annotations

ENCRYPT_DATA_OVERHEAD = 40
"""Bytes appended by encryption: authentication tag plus nonce."""


def padded_size(s: int, overhead: int = ENCRYPT_DATA_OVERHEAD) -> int:
    """Target size for a plaintext of ``s`` bytes, given ``overhead`` extra bytes.

    Padding steps: 256 bytes below 5120, 1024 below 20480, 2048 below 40960,
    then 5120.  The result is always at least ``s``.
    """
    total = s + overhead
    if total < 5120:
        chunk = 256
    elif total < 20480:
        chunk = 1024
    elif total < 40960:
        chunk = 2048
    else:
        chunk = 5120
    return (total + chunk - 1) // chunk * chunk - overhead


def pad_message(data: bytes, overhead: int = ENCRYPT_DATA_OVERHEAD) -> bytes:
    """Returns ``data`` with null bytes prepended to reach ``padded_size``."""
    target = padded_size(len(data), overhead)
    return bytes(target - len(data)) + bytes(data)