"""
Desk Queue.

Derives the lines at the reception desk for one doctor session from
committed appointments:
1. Priority: arrived patients staff flagged as urgent, first flagged first.
2. Arrived: checked-in (Confirmed) patients in calling order.
3. Buffer: the arrived patients already seated by the consulting room.
4. Skipped: patients who were called and did not answer.

Nothing here writes; staff actions go through TokenAllocator.update_status.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from clinic_models import (
    Appointment,
    AppointmentStatus,
    BookingChannel,
    BreakPeriod,
    ConsultationStatus,
    Doctor,
)
from .breaks import known_breaks, merge_adjacent_breaks
from .config import SchedulerSettings, get_settings
from .store import AppointmentStore

logger = logging.getLogger(__name__)

_CHANNEL_ORDER = {BookingChannel.ADVANCE: 0, BookingChannel.WALK_IN: 1}


def queue_order_key(appointment: Appointment) -> Tuple:
    """
    Calling order: appointment time, then patients skipped earlier, then
    token number. A7 goes before W7 when everything else ties.
    """
    number = appointment.token.number if appointment.token is not None else 0
    return (
        appointment.time,
        appointment.skipped_at is None,
        number,
        _CHANNEL_ORDER.get(appointment.booked_via, len(_CHANNEL_ORDER)),
    )


def _priority_key(appointment: Appointment) -> Tuple:
    # Unstamped priority sorts first
    stamp = appointment.priority_at.timestamp() if appointment.priority_at is not None else 0.0
    return (stamp, queue_order_key(appointment))


def next_to_call(buffer: Sequence[Appointment], arrived: Sequence[Appointment]) -> Optional[Appointment]:
    """Top of the buffer, or the top arrived patient when nobody is seated."""
    if buffer:
        return buffer[0]
    if arrived:
        return arrived[0]
    return None


def break_remaining_minutes(breaks: Iterable[BreakPeriod], now: datetime) -> Optional[int]:
    """Minutes left of the break running at `now`, touching breaks counted as one."""
    for block in merge_adjacent_breaks(breaks):
        if block.start_time <= now < block.end_time:
            return max(0, math.ceil((block.end_time - now).total_seconds() / 60))
    return None


@dataclass
class QueueState:
    session_index: int
    arrived: List[Appointment] = field(default_factory=list)
    buffer: List[Appointment] = field(default_factory=list)
    priority: List[Appointment] = field(default_factory=list)
    skipped: List[Appointment] = field(default_factory=list)
    current: Optional[Appointment] = None
    consultation_count: int = 0
    break_remaining_minutes: Optional[int] = None

    @property
    def next_up(self) -> Optional[Appointment]:
        return next_to_call(self.buffer, self.arrived)


def compute_queues(
    appointments: Iterable[Appointment],
    session_index: int,
    now: datetime,
    consultation_status: ConsultationStatus = ConsultationStatus.OUT,
    breaks: Iterable[BreakPeriod] = (),
    exclude_break_placeholders: bool = True
) -> QueueState:
    """
    Builds every line for one session.

    The patient in consultation is the top priority patient, else the top of
    the buffer. A running break is only reported while the doctor is out;
    a doctor who is back In has ended it early.
    """
    relevant = [a for a in appointments if a.session_index == session_index]
    confirmed = [a for a in relevant if a.status == AppointmentStatus.CONFIRMED]

    state = QueueState(session_index=session_index)
    state.priority = sorted((a for a in confirmed if a.is_priority), key=_priority_key)
    state.arrived = sorted((a for a in confirmed if not a.is_priority), key=queue_order_key)
    state.buffer = [a for a in state.arrived if a.is_in_buffer]
    state.skipped = sorted(
        (a for a in relevant if a.status == AppointmentStatus.SKIPPED), key=queue_order_key
    )

    if state.priority:
        state.current = state.priority[0]
    elif state.buffer:
        state.current = state.buffer[0]

    state.consultation_count = sum(
        1 for a in relevant
        if a.status == AppointmentStatus.COMPLETED
        and not (exclude_break_placeholders and a.is_break_placeholder)
    )

    if consultation_status != ConsultationStatus.IN:
        state.break_remaining_minutes = break_remaining_minutes(
            [b for b in breaks if b.session_index == session_index], now
        )
    return state


class QueueManager:
    """Reads a doctor's day from the store and lays out the desk queue."""

    def __init__(self, store: AppointmentStore, settings: Optional[SchedulerSettings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def queue_state(self, doctor: Doctor, day: date_type, session_index: int, now: datetime) -> QueueState:
        snapshot = self.store.snapshot(doctor.id, day)
        breaks = known_breaks(doctor, day, self.store.list_breaks(doctor.id, day), session_index)
        state = compute_queues(
            snapshot.appointments,
            session_index,
            now,
            consultation_status=doctor.consultation_status,
            breaks=breaks,
            exclude_break_placeholders=self.settings.exclude_break_placeholders,
        )
        logger.debug(
            f"Queue for {doctor.id} session {session_index}: {len(state.priority)} priority, "
            f"{len(state.arrived)} arrived, {len(state.skipped)} skipped, "
            f"{state.consultation_count} seen"
        )
        return state
