"""Merging of bencoded dicts and sorted lists."""

from __future__ import annotations

from typing import Any, Callable, Iterable

_END = object()


def merge(a: dict, b: dict) -> dict:
    """Merges two dicts into a new key-sorted dict.

    Keys present in both take their value from ``a``.
    """
    combined = dict(b)
    combined.update(a)
    return dict(sorted(combined.items()))


def merge_sorted(
    a: Iterable[Any],
    b: Iterable[Any],
    less: Callable[[Any, Any], bool],
    duplicates: bool = False,
) -> list:
    """Merges two lists already sorted by ``less``.

    By default an element of ``b`` comparing equal to the current element of
    ``a`` is dropped; with ``duplicates`` both are kept (the ``b`` one first).
    """
    result: list = []
    iter_a, iter_b = iter(a), iter(b)
    x = next(iter_a, _END)
    y = next(iter_b, _END)
    while x is not _END and y is not _END:
        if duplicates:
            if not less(x, y):
                result.append(y)
                y = next(iter_b, _END)
            else:
                result.append(x)
                x = next(iter_a, _END)
        elif less(y, x):
            result.append(y)
            y = next(iter_b, _END)
        elif less(x, y):
            result.append(x)
            x = next(iter_a, _END)
        else:
            y = next(iter_b, _END)

    if x is not _END:
        result.append(x)
        result.extend(iter_a)
    elif y is not _END:
        result.append(y)
        result.extend(iter_b)
    return result