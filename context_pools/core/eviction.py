"""Recency-based toolcall eviction as a pure function of toolcall history."""

from __future__ import annotations

from typing import AbstractSet, Iterable, Sequence

from ..types import ToolcallRecord


def retained_toolcalls(
    history: Sequence[ToolcallRecord],
    current_turn: int,
    recent_toolcalls: int = 5,
    recent_turns: int = 3,
) -> set[str]:
    """Ids the recency policy keeps active at ``current_turn``.

    A toolcall is kept when it belongs to the in-progress turn and is among
    the last ``recent_toolcalls`` toolcalls overall, or when it belongs to one
    of the ``recent_turns`` completed turns preceding the current one.
    """
    latest = {rec.id for rec in history[-recent_toolcalls:]} if recent_toolcalls > 0 else set()
    kept: set[str] = set()
    for rec in history:
        if rec.turn_index == current_turn and rec.id in latest:
            kept.add(rec.id)
        elif current_turn - recent_turns <= rec.turn_index < current_turn:
            kept.add(rec.id)
    return kept


def compute_evictions(
    history: Sequence[ToolcallRecord],
    current_turn: int,
    active: Iterable[str],
    pinned: AbstractSet[str] = frozenset(),
    exempt: AbstractSet[str] = frozenset(),
    recent_toolcalls: int = 5,
    recent_turns: int = 3,
) -> list[str]:
    """Active toolcall ids to auto-deactivate, in history order.

    Only toolcalls present in ``history`` are candidates; files and other
    objects are never evicted. The sweep never activates anything.
    """
    active_ids = set(active)
    kept = retained_toolcalls(history, current_turn, recent_toolcalls, recent_turns)
    evicted: list[str] = []
    for rec in history:
        if rec.id not in active_ids or rec.id in evicted:
            continue
        if rec.id in pinned or rec.id in exempt or rec.id in kept:
            continue
        evicted.append(rec.id)
    return evicted
