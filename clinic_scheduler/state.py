"""
Day State.

This module acts as the 'Memory' of one allocation attempt. It indexes a
consistent snapshot of a doctor's appointments for one date so that:
1. Slot occupancy checks are O(1).
2. The next token per channel is derived from committed data, never from
   an in-process counter.
3. Day reports can be produced from the same index.
"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from clinic_models import (
    Appointment,
    AppointmentStatus,
    BookingChannel,
    Slot,
    Token,
)
from .reservation import session_capacity, reserved_walk_in_slots


class DayState:
    """
    Read-only index over one (doctor, date) snapshot.
    """

    def __init__(self, appointments: Iterable[Appointment], rebook_cancelled_slots: bool = False):
        self.rebook_cancelled_slots = rebook_cancelled_slots

        self.appointments: List[Appointment] = []
        self.occupied: Set[Tuple[int, int]] = set()
        self.session_appointments: Dict[int, List[Appointment]] = defaultdict(list)
        self.last_token: Dict[BookingChannel, int] = defaultdict(int)

        for appointment in appointments:
            self.add_booking(appointment)

    def holds_slot(self, appointment: Appointment) -> bool:
        """
        Whether an appointment keeps its slot out of circulation.
        No-show always does. Cancelled does unless re-booking is enabled.
        """
        if appointment.status == AppointmentStatus.CANCELLED:
            return not self.rebook_cancelled_slots
        return True

    def add_booking(self, appointment: Appointment) -> None:
        self.appointments.append(appointment)

        # Tokens of cancelled appointments are never handed out again
        if appointment.token is not None:
            channel = appointment.token.channel
            self.last_token[channel] = max(self.last_token[channel], appointment.token.number)

        if self.holds_slot(appointment):
            self.occupied.add((appointment.session_index, appointment.slot_index))
            self.session_appointments[appointment.session_index].append(appointment)

    # --- Query Methods ---

    def is_occupied(self, session_index: int, slot_index: int) -> bool:
        return (session_index, slot_index) in self.occupied

    def next_token(self, channel: BookingChannel) -> Token:
        return Token(channel=channel, number=self.last_token[channel] + 1)

    def last_slot_index(self, session_index: int) -> Optional[int]:
        """Highest slot index held in a session, or None when it is empty."""
        held = self.session_appointments.get(session_index)
        if not held:
            return None
        return max(a.slot_index for a in held)

    def completed_count(self, session_index: Optional[int] = None, exclude_break_placeholders: bool = True) -> int:
        count = 0
        for appointment in self.appointments:
            if appointment.status != AppointmentStatus.COMPLETED:
                continue
            if session_index is not None and appointment.session_index != session_index:
                continue
            if exclude_break_placeholders and appointment.is_break_placeholder:
                continue
            count += 1
        return count

    def find(self, appointment_id: str) -> Optional[Appointment]:
        for appointment in self.appointments:
            if appointment.id == appointment_id:
                return appointment
        return None

    # --- Reporting Methods ---

    def get_statistics(self, slots: List[Slot], now: datetime) -> Dict[str, Any]:
        """
        Day summary for dashboards: volumes, token high-water marks, and per
        session fill against the advance/walk-in split.
        """
        status_counts: Dict[str, int] = defaultdict(int)
        channel_counts: Dict[str, int] = defaultdict(int)
        for appointment in self.appointments:
            status_counts[appointment.status.value] += 1
            channel_counts[appointment.booked_via.value] += 1

        reserved = reserved_walk_in_slots(slots, now)
        slots_per_session: Dict[int, int] = defaultdict(int)
        for slot in slots:
            slots_per_session[slot.session_index] += 1

        sessions = {}
        for session_index in sorted(slots_per_session):
            total = slots_per_session[session_index]
            advance_cap, walk_in_cap = session_capacity(total)
            held = self.session_appointments.get(session_index, [])
            advance_booked = sum(1 for a in held if a.booked_via == BookingChannel.ADVANCE)
            walk_in_booked = sum(1 for a in held if a.booked_via == BookingChannel.WALK_IN)
            sessions[f"S{session_index}"] = {
                "total_slots": total,
                "advance": f"{advance_booked}/{advance_cap}",
                "walk_in": f"{walk_in_booked}/{walk_in_cap}",
                "reserved_now": sum(1 for key in reserved if key[0] == session_index),
                "overflow": sum(1 for a in held if a.slot_index >= total),
            }

        return {
            "total_appointments": len(self.appointments),
            "occupied_slots": len(self.occupied),
            "by_status": dict(status_counts),
            "by_channel": dict(channel_counts),
            "last_tokens": {
                channel.prefix: number for channel, number in self.last_token.items()
            },
            "completed_consultations": self.completed_count(),
            "sessions": sessions,
        }
