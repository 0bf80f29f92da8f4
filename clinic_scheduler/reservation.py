"""
Walk-in Reservation Calculator.

Each session keeps the tail of its *future* slots free of advance bookings so
that patients who turn up at the desk always have somewhere to go. The set is
recomputed on every call because 'now' keeps moving slots into the past.
"""

import math
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from clinic_models import Slot
from .config import get_settings

SlotKey = Tuple[int, int]


def reserve_count(future_slot_count: int, ratio: float) -> int:
    """
    ceil(F x ratio), computed in decimal so that e.g. 100 x 0.15 is exactly 15.
    """
    if future_slot_count <= 0:
        return 0
    return math.ceil(Decimal(future_slot_count) * Decimal(str(ratio)))


def future_slots_by_session(slots: Iterable[Slot], now: datetime) -> Dict[int, List[Slot]]:
    """Slots with time >= now, grouped per session in chronological order."""
    grouped: Dict[int, List[Slot]] = defaultdict(list)
    for slot in slots:
        if slot.time >= now:
            grouped[slot.session_index].append(slot)
    for session_slots in grouped.values():
        session_slots.sort(key=lambda s: (s.time, s.slot_index))
    return dict(grouped)


def reserved_walk_in_slots(
    slots: Iterable[Slot],
    now: datetime,
    ratio: Optional[float] = None
) -> Set[SlotKey]:
    """
    Keys (session_index, slot_index) held back for walk-ins.

    Per session: take the F future slots, reserve the last ceil(F x ratio) of
    them. Sessions are handled independently, so a flat list spanning several
    sessions never leaks one session's reservation into another.
    """
    if ratio is None:
        ratio = get_settings().walk_in_reserve_ratio

    reserved: Set[SlotKey] = set()
    for future in future_slots_by_session(slots, now).values():
        count = reserve_count(len(future), ratio)
        if count == 0:
            continue
        for slot in future[len(future) - count:]:
            reserved.add(slot.key)
    return reserved


def session_capacity(total_slots: int, advance_ratio: Optional[float] = None) -> Tuple[int, int]:
    """
    Split a session into (advance_capacity, walk_in_capacity).

    Picks whichever of floor/ceil lands closest to the target ratio, but never
    leaves walk-ins with zero slots in a non-empty session.
    """
    if advance_ratio is None:
        advance_ratio = get_settings().advance_capacity_ratio
    if total_slots <= 0:
        return 0, 0

    ideal = Decimal(total_slots) * Decimal(str(advance_ratio))
    floor_adv, ceil_adv = math.floor(ideal), math.ceil(ideal)
    walk_floor, walk_ceil = total_slots - floor_adv, total_slots - ceil_adv

    floor_diff = abs(Decimal(floor_adv) / total_slots - Decimal(str(advance_ratio)))
    ceil_diff = abs(Decimal(ceil_adv) / total_slots - Decimal(str(advance_ratio)))

    if walk_floor == 0:
        advance, walk_in = max(0, total_slots - 1), 1
    elif walk_ceil == 0 or floor_diff <= ceil_diff:
        advance, walk_in = floor_adv, walk_floor
    else:
        advance, walk_in = ceil_adv, walk_ceil

    if walk_in == 0:
        walk_in, advance = 1, total_slots - 1
    return advance, walk_in
