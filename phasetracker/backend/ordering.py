"""Fractional order keys for inserting participants into a phase.

Order values are plain floats. Inserting between two neighbours takes the
midpoint, so existing members never get renumbered. Repeated insertions at
the same spot halve the gap each time; after roughly fifty of them the
neighbours become indistinguishable in double precision and the new value
collapses onto one of them. Nothing here renumbers to recover from that.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar

T = TypeVar("T")

EMPTY_PHASE_ORDER = 1000.0
TAIL_GAP = 2000.0


def insertion_order(orders: Sequence[float], index: int) -> float:
    """Return the order value for a member dropped at ``index``.

    ``orders`` are the current order values of the target phase, ascending.
    Index 0 inserts before every member, ``len(orders)`` after the last one.
    Out-of-range indexes are clamped.
    """
    if not orders:
        return EMPTY_PHASE_ORDER

    index = max(0, min(index, len(orders)))
    prev_order = float(orders[index - 1]) if index > 0 else 0.0
    next_order = float(orders[index]) if index < len(orders) else prev_order + TAIL_GAP
    return (prev_order + next_order) / 2


def sort_by_order(entries: Iterable[tuple[float, T]]) -> list[T]:
    """Sort ``(order, item)`` pairs ascending, keeping input order on ties."""
    return [item for _, item in sorted(entries, key=lambda entry: entry[0])]


def sort_by_roll(entries: Iterable[tuple[float | None, T]]) -> list[T]:
    """Sort ``(roll, item)`` pairs highest roll first; missing rolls count as 0."""
    return [item for _, item in sorted(entries, key=lambda entry: -(entry[0] or 0))]
