"""
Hard Constraint Validation Logic.

This module answers the binary question: "Can an advance booking take slot X now?"
It enforces the lead-time cutoff, the walk-in reservation and occupancy.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set, Tuple

from clinic_models import Slot
from .config import get_settings


@dataclass
class ConstraintViolation:
    """Detailed reason for rejection."""
    constraint_type: str  # "Past", "Occupied", "Reserved", "Cutoff"
    reason: str
    session_index: int
    slot_index: int
    slot_time: datetime


class BookingConstraintChecker:
    """
    Validates hard constraints for advance bookings.
    """

    def __init__(self, cutoff_minutes: Optional[int] = None):
        if cutoff_minutes is None:
            cutoff_minutes = get_settings().advance_cutoff_minutes
        self.cutoff = timedelta(minutes=cutoff_minutes)

    def passes_cutoff(self, slot_time: datetime, now: datetime) -> bool:
        """Strictly later than now + cutoff. A slot exactly at the boundary fails."""
        return slot_time > now + self.cutoff

    def check_advance_slot(
        self,
        slot: Slot,
        now: datetime,
        occupied: Set[Tuple[int, int]],
        reserved: Set[Tuple[int, int]]
    ) -> Optional[ConstraintViolation]:
        """
        Master validation function. Returns None if Valid, Violation object if Invalid.
        """
        if slot.time < now:
            return self._violation("Past", "Slot has already started", slot)

        if slot.key in occupied:
            return self._violation("Occupied", "Slot is already booked", slot)

        if slot.key in reserved:
            return self._violation("Reserved", "Slot is held for walk-ins", slot)

        # Evaluated against the current instant, not when the screen was opened
        if not self.passes_cutoff(slot.time, now):
            return self._violation(
                "Cutoff",
                f"Advance bookings must start more than {int(self.cutoff.total_seconds() // 60)} minutes from now",
                slot
            )

        return None  # All clear!

    def filter_advance_candidates(
        self,
        slots: Iterable[Slot],
        now: datetime,
        occupied: Set[Tuple[int, int]],
        reserved: Set[Tuple[int, int]]
    ) -> Tuple[List[Slot], List[ConstraintViolation]]:
        """Split slots into bookable candidates and the reasons the rest were rejected."""
        candidates, violations = [], []
        for slot in slots:
            violation = self.check_advance_slot(slot, now, occupied, reserved)
            if violation is None:
                candidates.append(slot)
            else:
                violations.append(violation)
        return candidates, violations

    @staticmethod
    def _violation(kind: str, reason: str, slot: Slot) -> ConstraintViolation:
        return ConstraintViolation(kind, reason, slot.session_index, slot.slot_index, slot.time)
