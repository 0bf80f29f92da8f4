"""
The Token & Slot Allocator.

This module implements the transactional core of the scheduler.
Every booking runs as one optimistic read-modify-write:
1. Snapshot - read the doctor's day and its version from the store.
2. Choose   - derive occupancy, tokens and candidate slots from that snapshot.
3. Commit   - write only if the day is still at the version that was read.
A lost race is retried from step 1, a bounded number of times.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date as date_type, datetime
from typing import List, Optional

from clinic_models import Appointment, AppointmentStatus, BookingChannel, Doctor, Slot, Token
from .calendar import SlotCalendar
from .clock import ClinicClock
from .config import SchedulerSettings, get_settings
from .constraints import BookingConstraintChecker
from .errors import CutoffViolation, NoSlotAvailable, SlotConflict, WriteConflict
from .notifications import LoggingNotificationDispatcher, NotificationDispatcher, safe_notify
from .reservation import reserved_walk_in_slots
from .state import DayState
from .store import AppointmentStore

logger = logging.getLogger(__name__)

TEMPLATE_BY_CHANNEL = {
    BookingChannel.ADVANCE: "appointment_booked",
    BookingChannel.WALK_IN: "walk_in_registered",
}


@dataclass
class Allocation:
    """Result of a successful booking."""
    token: Token
    session_index: int
    slot_index: int
    time: datetime
    appointment: Appointment
    attempts: int = 1


class TokenAllocator:
    """
    Main booking engine.
    Ingests a booking request, outputs a committed Appointment with its token.
    """

    def __init__(
        self,
        store: AppointmentStore,
        calendar: Optional[SlotCalendar] = None,
        clock: Optional[ClinicClock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[SchedulerSettings] = None
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or (calendar.clock if calendar else ClinicClock(self.settings.timezone))
        self.calendar = calendar or SlotCalendar(self.clock)
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.checker = BookingConstraintChecker(self.settings.advance_cutoff_minutes)

    def allocate(
        self,
        doctor: Doctor,
        day: date_type,
        channel: BookingChannel,
        preferred_session_index: Optional[int] = None,
        patient_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Allocation:
        """
        Book the next slot and token for `channel`.

        Raises NoSlotAvailable, CutoffViolation or InvalidSession straight
        away; SlotConflict only once every attempt lost to another writer.
        StorageError from the store is not retried.
        """
        if channel.prefix is None:
            raise ValueError(f"Channel {channel.value} cannot be booked")

        max_attempts = self.settings.max_transaction_attempts
        for attempt in range(max_attempts):
            # 'now' is re-read on every attempt so the cutoff stays current
            current = self.clock.to_local(now) if now is not None else self.clock.now()
            snapshot = self.store.snapshot(doctor.id, day)
            state = DayState(snapshot.appointments, self.settings.rebook_cancelled_slots)

            slot = self._choose_slot(doctor, day, channel, preferred_session_index, state, current)
            token = state.next_token(channel)
            appointment = Appointment(
                id=f"appt_{uuid.uuid4().hex[:12]}",
                doctor_id=doctor.id,
                patient_id=patient_id,
                date=day,
                session_index=slot.session_index,
                slot_index=slot.slot_index,
                time=slot.time,
                token=token,
                status=AppointmentStatus.PENDING,
                booked_via=channel,
                created_at=current,
            )

            try:
                self.store.commit(doctor.id, day, snapshot.version, appointment)
            except WriteConflict as e:
                logger.info(
                    f"Commit conflict for {doctor.id} on {day} (attempt {attempt + 1}/{max_attempts}): {e}"
                )
                if attempt + 1 < max_attempts and self.settings.retry_backoff_seconds > 0:
                    time.sleep(self.settings.retry_backoff_seconds * (attempt + 1))
                continue

            logger.info(
                f"Booked {token} for {doctor.name} at {self.clock.format_time(slot.time)} "
                f"(session {slot.session_index}, slot {slot.slot_index})"
            )
            safe_notify(self.dispatcher, appointment.id, patient_id, TEMPLATE_BY_CHANNEL[channel])
            return Allocation(
                token=token,
                session_index=slot.session_index,
                slot_index=slot.slot_index,
                time=slot.time,
                appointment=appointment,
                attempts=attempt + 1,
            )

        logger.warning(f"Giving up on {channel.value} booking for {doctor.id} on {day} after {max_attempts} attempts")
        raise SlotConflict(
            f"Could not commit after {max_attempts} attempts",
            doctor_id=doctor.id, date=day, session_index=preferred_session_index,
            channel=channel.value, attempts=max_attempts
        )

    def preview_advance_slots(
        self,
        doctor: Doctor,
        day: date_type,
        now: Optional[datetime] = None,
        session_index: Optional[int] = None
    ) -> List[Slot]:
        """Slots an advance booking could take right now. Read-only."""
        current = self.clock.to_local(now) if now is not None else self.clock.now()
        state = DayState(self.store.snapshot(doctor.id, day).appointments, self.settings.rebook_cancelled_slots)
        candidates, _ = self._advance_candidates(doctor, day, session_index, state, current)
        return candidates

    def update_status(
        self,
        doctor: Doctor,
        day: date_type,
        appointment_id: str,
        status: AppointmentStatus
    ) -> Appointment:
        """Staff status transition (complete, cancel, no-show...) followed by a notification."""
        updated = self.store.update_status(doctor.id, day, appointment_id, status, changed_at=self.clock.now())
        logger.info(f"{updated.token or 'placeholder'} for {doctor.name} is now {status.value}")
        safe_notify(self.dispatcher, updated.id, updated.patient_id, "appointment_status_changed")
        return updated

    # --- Candidate Selection ---

    def _choose_slot(
        self,
        doctor: Doctor,
        day: date_type,
        channel: BookingChannel,
        preferred_session_index: Optional[int],
        state: DayState,
        now: datetime
    ) -> Slot:
        if channel == BookingChannel.WALK_IN:
            return self._walk_in_slot(doctor, day, preferred_session_index, state, now)

        candidates, violations = self._advance_candidates(doctor, day, preferred_session_index, state, now)
        if candidates:
            return min(candidates, key=lambda s: (s.time, s.session_index, s.slot_index))

        if any(v.constraint_type == "Cutoff" for v in violations):
            raise CutoffViolation(
                "Remaining free slots start within the advance booking cutoff",
                doctor_id=doctor.id, date=day, session_index=preferred_session_index,
                channel=BookingChannel.ADVANCE.value
            )
        raise NoSlotAvailable(
            "No advance slots left" + (" in the requested session" if preferred_session_index is not None else ""),
            doctor_id=doctor.id, date=day, session_index=preferred_session_index,
            channel=BookingChannel.ADVANCE.value
        )

    def _advance_candidates(self, doctor, day, session_index, state, now):
        if session_index is not None:
            slots = self.calendar.session_slots(doctor, day, session_index)
        else:
            slots = self.calendar.for_day(doctor, day)
        reserved = reserved_walk_in_slots(slots, now, self.settings.walk_in_reserve_ratio)
        return self.checker.filter_advance_candidates(slots, now, state.occupied, reserved)

    def _walk_in_slot(
        self,
        doctor: Doctor,
        day: date_type,
        preferred_session_index: Optional[int],
        state: DayState,
        now: datetime
    ) -> Slot:
        session_index = preferred_session_index
        if session_index is None:
            session_index = self.calendar.active_session(doctor, day, now)
        if session_index is None:
            raise NoSlotAvailable(
                "No session is open for walk-ins", doctor_id=doctor.id, date=day,
                channel=BookingChannel.WALK_IN.value
            )

        # Join the end of the line, even past the nominal session end
        last_index = state.last_slot_index(session_index)
        if last_index is not None:
            next_index = last_index + 1
            return Slot(
                session_index=session_index,
                slot_index=next_index,
                time=self.calendar.slot_time(doctor, day, session_index, next_index),
            )

        for slot in self.calendar.session_slots(doctor, day, session_index):
            if slot.time >= now and not state.is_occupied(*slot.key):
                return slot

        raise NoSlotAvailable(
            "Session has no future slots left", doctor_id=doctor.id, date=day,
            session_index=session_index, channel=BookingChannel.WALK_IN.value
        )
