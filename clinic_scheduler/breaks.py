"""
Break-Aware Schedule Adjuster.

A break declared mid-session pushes waiting patients later. This module works
out by how much, which appointments move, and which in-break slots must be
blocked so that nobody is booked into them.
"""

import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from clinic_models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentStatus,
    BookingChannel,
    BreakPeriod,
    Doctor,
    SessionExtensionRecord,
)
from .calendar import SlotCalendar
from .config import SchedulerSettings, get_settings
from .errors import BreakSessionMismatch, InvalidBreak, SlotConflict, WriteConflict
from .notifications import LoggingNotificationDispatcher, NotificationDispatcher, safe_notify
from .store import AppointmentStore

logger = logging.getLogger(__name__)


@dataclass
class SessionExtension:
    total_break_minutes: int
    actual_extension_needed: int
    new_session_end: datetime

    def to_record(self, session_index: int) -> SessionExtensionRecord:
        """Record to store on the doctor if staff choose to extend the session."""
        return SessionExtensionRecord(
            session_index=session_index,
            total_extended_by=self.actual_extension_needed,
            new_end_time=self.new_session_end,
        )


@dataclass
class BreakShiftPlan:
    """Appointment writes caused by one break."""
    slot_shift: int
    shifted: List[Appointment] = field(default_factory=list)
    placeholders: List[Appointment] = field(default_factory=list)


@dataclass
class BreakDeclaration:
    break_period: BreakPeriod
    extension: SessionExtension
    plan: BreakShiftPlan


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60


def break_slot_range(break_period: BreakPeriod, session_start: datetime, duration_minutes: int) -> range:
    """Session-local slot indices a break covers, partially covered slots included."""
    offset_start = _minutes(break_period.start_time - session_start)
    offset_end = _minutes(break_period.end_time - session_start)
    start_idx = max(0, math.floor(offset_start / duration_minutes))
    end_idx = math.ceil(offset_end / duration_minutes) - 1
    return range(start_idx, end_idx + 1)


def calculate_session_extension(
    session_index: int,
    breaks: Sequence[BreakPeriod],
    original_end: datetime,
    average_consulting_time: int,
    appointments: Optional[Iterable[Appointment]] = None,
    session_start: Optional[datetime] = None
) -> SessionExtension:
    """
    How far the session end moves because of `breaks`.

    Without appointments (simple mode) the full break time is added. With
    them (precise mode) only slots that actually hold a patient count, so a
    break over empty slots does not lengthen the session at all.
    """
    for break_period in breaks:
        if break_period.session_index != session_index:
            raise BreakSessionMismatch(
                f"Break {break_period.id} belongs to session {break_period.session_index}",
                session_index=session_index, break_id=break_period.id
            )

    total = sum(b.duration for b in breaks)
    if appointments is None:
        return SessionExtension(total, total, original_end + timedelta(minutes=total))

    if session_start is None:
        raise ValueError("session_start is required when appointments are given")

    occupied = {
        a.slot_index for a in appointments
        if a.session_index == session_index
        and a.status in ACTIVE_STATUSES
        and not a.is_break_placeholder
    }
    displaced = set()
    for break_period in breaks:
        displaced.update(occupied.intersection(
            break_slot_range(break_period, session_start, average_consulting_time)
        ))

    needed = len(displaced) * average_consulting_time
    return SessionExtension(total, needed, original_end + timedelta(minutes=needed))


def accumulate_session_extension(
    session_index: int,
    breaks: Sequence[BreakPeriod],
    original_end: datetime,
    average_consulting_time: int,
    appointments: Iterable[Appointment],
    session_start: datetime
) -> SessionExtension:
    """
    Session extension across breaks declared one after another.

    Once a break is applied its patients have moved out and its slots hold
    only placeholders, so recounting it would report nothing. Each break
    therefore contributes the minutes it displaced when it was declared.
    Breaks with no such record (entered straight on the doctor) are counted
    against the current appointments.
    """
    for break_period in breaks:
        if break_period.session_index != session_index:
            raise BreakSessionMismatch(
                f"Break {break_period.id} belongs to session {break_period.session_index}",
                session_index=session_index, break_id=break_period.id
            )

    needed = sum(b.displaced_minutes for b in breaks if b.displaced_minutes is not None)
    unrecorded = [b for b in breaks if b.displaced_minutes is None]
    if unrecorded:
        needed += calculate_session_extension(
            session_index, unrecorded, original_end, average_consulting_time,
            appointments=appointments, session_start=session_start
        ).actual_extension_needed

    total = sum(b.duration for b in breaks)
    return SessionExtension(total, needed, original_end + timedelta(minutes=needed))


def create_break_period(slot_times: Sequence[datetime], session_index: int, duration_minutes: int) -> BreakPeriod:
    """Break spanning the selected slots, ending one slot after the last of them."""
    if not slot_times:
        raise InvalidBreak("No slots selected for break", session_index=session_index)
    ordered = sorted(slot_times)
    start = ordered[0]
    end = ordered[-1] + timedelta(minutes=duration_minutes)
    return BreakPeriod(
        id=f"break-{int(start.timestamp() * 1000)}",
        session_index=session_index,
        start_time=start,
        end_time=end,
        slots=ordered,
    )


def merge_adjacent_breaks(breaks: Iterable[BreakPeriod]) -> List[BreakPeriod]:
    """[9:15-9:30, 9:30-9:45] -> [9:15-9:45]. Only exact touches are merged."""
    ordered = sorted(breaks, key=lambda b: b.start_time)
    if len(ordered) <= 1:
        return ordered

    merged = []
    current = ordered[0]
    for nxt in ordered[1:]:
        if current.end_time == nxt.start_time:
            displaced = None
            if current.displaced_minutes is not None and nxt.displaced_minutes is not None:
                displaced = current.displaced_minutes + nxt.displaced_minutes
            current = current.model_copy(update={
                "id": f"{current.id}_merged_{nxt.id}",
                "end_time": nxt.end_time,
                "slots": [*current.slots, *nxt.slots],
                "displaced_minutes": displaced,
            })
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def validate_break(
    new_break: BreakPeriod,
    existing: Sequence[BreakPeriod],
    session_start: datetime,
    session_end: datetime,
    max_breaks: Optional[int] = None
) -> None:
    """Raises InvalidBreak when the new break cannot be added to the session."""
    if max_breaks is None:
        max_breaks = get_settings().max_breaks_per_session

    context = {"session_index": new_break.session_index, "break_id": new_break.id}
    if new_break.duration <= 0:
        raise InvalidBreak("Break has no duration", **context)
    if len(existing) >= max_breaks:
        raise InvalidBreak(f"Maximum {max_breaks} breaks per session allowed", **context)
    if new_break.start_time < session_start or new_break.end_time > session_end:
        raise InvalidBreak("Break must lie within the session", **context)
    for other in existing:
        if new_break.overlaps(other):
            raise InvalidBreak(f"Break overlaps existing break {other.id}", **context)


def known_breaks(
    doctor: Doctor,
    day: date_type,
    stored: Iterable[BreakPeriod],
    session_index: Optional[int] = None
) -> List[BreakPeriod]:
    """Doctor-record breaks plus stored ones, de-duplicated by id, in start order."""
    seen = {}
    for break_period in [*doctor.breaks_on(day), *stored]:
        if session_index is None or break_period.session_index == session_index:
            seen.setdefault(break_period.id, break_period)
    return sorted(seen.values(), key=lambda b: b.start_time)


def apply_break_offsets(original: datetime, breaks: Iterable[BreakPeriod]) -> datetime:
    """Push a time later by every break that starts at or before it."""
    result = original
    for break_period in sorted(breaks, key=lambda b: b.start_time):
        if result >= break_period.start_time:
            result = result + timedelta(minutes=break_period.duration)
    return result


def plan_break_shift(
    break_period: BreakPeriod,
    appointments: Iterable[Appointment],
    doctor_id: str,
    day: date_type,
    session_start: datetime,
    average_consulting_time: int
) -> BreakShiftPlan:
    """
    Patients still waiting at or after the break start move back by the
    break length. Slots inside the break that end up empty get a Completed
    BreakBlock placeholder so the allocator will not hand them out.

    Rows that stay put (done, no-show, placeholders of an earlier break) keep
    their slot. A patient whose shifted slot is one of those cascades to the
    next free slot, one consultation later per slot skipped, so queue order
    is kept and no slot ends up held twice.
    """
    session_index = break_period.session_index
    slot_shift = math.ceil(break_period.duration / average_consulting_time)
    plan = BreakShiftPlan(slot_shift=slot_shift)

    held = set()
    moving = []
    for appointment in appointments:
        if appointment.session_index != session_index:
            continue
        if appointment.is_waiting and appointment.time >= break_period.start_time:
            moving.append(appointment)
        elif appointment.status != AppointmentStatus.CANCELLED:
            held.add(appointment.slot_index)

    next_free = 0
    for appointment in sorted(moving, key=lambda a: (a.slot_index, a.id)):
        target = max(appointment.slot_index + slot_shift, next_free)
        while target in held:
            target += 1
        extra = target - (appointment.slot_index + slot_shift)
        plan.shifted.append(appointment.model_copy(update={
            "slot_index": target,
            "time": appointment.time + timedelta(minutes=break_period.duration + extra * average_consulting_time),
        }))
        held.add(target)
        next_free = target + 1

    for slot_index in break_slot_range(break_period, session_start, average_consulting_time):
        if slot_index in held:
            continue
        plan.placeholders.append(Appointment(
            id=f"brk_{uuid.uuid4().hex[:12]}",
            doctor_id=doctor_id,
            date=day,
            session_index=session_index,
            slot_index=slot_index,
            time=session_start + timedelta(minutes=slot_index * average_consulting_time),
            status=AppointmentStatus.COMPLETED,
            booked_via=BookingChannel.BREAK_BLOCK,
            cancelled_by_break=True,
        ))
    return plan


class BreakAdjuster:
    """
    Declares a break against a doctor's day and writes the fallout.
    """

    def __init__(
        self,
        store: AppointmentStore,
        calendar: Optional[SlotCalendar] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[SchedulerSettings] = None
    ):
        self.store = store
        self.calendar = calendar or SlotCalendar()
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.settings = settings or get_settings()

    def session_breaks(
        self, doctor: Doctor, day: date_type, session_index: Optional[int] = None
    ) -> List[BreakPeriod]:
        """Breaks already on the doctor record plus those recorded in the store."""
        return known_breaks(doctor, day, self.store.list_breaks(doctor.id, day), session_index)

    def declare_break(
        self,
        doctor: Doctor,
        day: date_type,
        session_index: int,
        slot_times: Sequence[datetime]
    ) -> BreakDeclaration:
        start, end = self.calendar.session_bounds(doctor, day, session_index)
        _, original_end = self.calendar.session_bounds(doctor, day, session_index, include_extension=False)
        avg = doctor.average_consulting_time

        new_break = create_break_period(
            [self.calendar.clock.to_local(t) for t in slot_times], session_index, avg
        )

        max_attempts = self.settings.max_transaction_attempts
        for attempt in range(max_attempts):
            snapshot = self.store.snapshot(doctor.id, day)
            existing = self.session_breaks(doctor, day, session_index)
            validate_break(new_break, existing, start, end, self.settings.max_breaks_per_session)

            # Displacement is counted before the shift empties the break's slots
            displaced = calculate_session_extension(
                session_index, [new_break], original_end, avg,
                appointments=snapshot.appointments, session_start=start
            ).actual_extension_needed
            recorded = new_break.model_copy(update={"displaced_minutes": displaced})
            extension = accumulate_session_extension(
                session_index, [*existing, recorded], original_end, avg,
                appointments=snapshot.appointments, session_start=start
            )
            plan = plan_break_shift(recorded, snapshot.appointments, doctor.id, day, start, avg)
            try:
                self.store.apply_break(
                    doctor.id, day, snapshot.version, recorded, plan.shifted, plan.placeholders
                )
            except WriteConflict as e:
                logger.info(
                    f"Break write for {doctor.id} on {day} lost a race (attempt {attempt + 1}/{max_attempts}): {e}"
                )
                if attempt + 1 < max_attempts and self.settings.retry_backoff_seconds > 0:
                    time.sleep(self.settings.retry_backoff_seconds * (attempt + 1))
                continue
            new_break = recorded
            break
        else:
            raise SlotConflict(
                f"Could not record break after {max_attempts} attempts",
                doctor_id=doctor.id, date=day, session_index=session_index
            )

        logger.info(
            f"Break {self.calendar.clock.format_time(new_break.start_time)}-"
            f"{self.calendar.clock.format_time(new_break.end_time)} for {doctor.name}: "
            f"{len(plan.shifted)} shifted, {len(plan.placeholders)} blocked, "
            f"session end +{extension.actual_extension_needed} min"
        )
        for appointment in plan.shifted:
            safe_notify(self.dispatcher, appointment.id, appointment.patient_id, "break_rescheduled")

        return BreakDeclaration(break_period=new_break, extension=extension, plan=plan)
