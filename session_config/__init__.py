"""Versioned, mergeable config messages with bencoded data and diffs."""

__version__ = "0.1.0"
__all__ = ["bencode", "bt_merge", "padding", "data", "message"]