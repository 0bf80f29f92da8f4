"""
Slot Calendar Builder.

Turns a doctor's weekly availability into the discrete, indexed slots of one
civil date. Slots are derived data: they are rebuilt on every call and never
persisted.
"""

import logging
from datetime import date as date_type, datetime, timedelta
from typing import List, Optional, Tuple

from clinic_models import Doctor, Session, Slot
from .clock import ClinicClock
from .config import get_settings
from .errors import InvalidSession

logger = logging.getLogger(__name__)


def build_session_slots(
    session_index: int,
    session: Session,
    day: date_type,
    duration_minutes: int,
    clock: ClinicClock,
    end_override: Optional[datetime] = None
) -> List[Slot]:
    """
    Walk [from, to) in `duration_minutes` steps.

    A session whose end is not after its start yields no slots. A session
    whose times cannot be parsed also yields no slots; the problem is logged
    rather than raised so one bad row cannot break booking for the whole day.
    """
    try:
        start = clock.parse_time(session.from_, day)
        end = clock.parse_time(session.to, day)
    except ValueError as e:
        logger.warning(f"Session {session_index} on {day} is unreadable, treating as unavailable: {e}")
        return []

    if end_override is not None and end_override > end:
        end = end_override

    if end <= start:
        return []

    slots = []
    index = 0
    current = start
    while current < end:
        slots.append(Slot(session_index=session_index, slot_index=index, time=current))
        index += 1
        current = start + timedelta(minutes=index * duration_minutes)
    return slots


class SlotCalendar:
    """
    Day-level view over a doctor's availability.
    """

    def __init__(self, clock: Optional[ClinicClock] = None):
        self.clock = clock or ClinicClock()
        self.settings = get_settings()

    def for_day(self, doctor: Doctor, day: date_type) -> List[Slot]:
        """All slots of the day, session by session, each session chronological."""
        slots: List[Slot] = []
        for index, session in enumerate(doctor.sessions_for(day)):
            slots.extend(build_session_slots(
                index, session, day, doctor.average_consulting_time, self.clock,
                end_override=self._extended_end(doctor, day, index)
            ))
        return slots

    def session_slots(self, doctor: Doctor, day: date_type, session_index: int) -> List[Slot]:
        session = self._require_session(doctor, day, session_index)
        return build_session_slots(
            session_index, session, day, doctor.average_consulting_time, self.clock,
            end_override=self._extended_end(doctor, day, session_index)
        )

    def session_bounds(
        self,
        doctor: Doctor,
        day: date_type,
        session_index: int,
        include_extension: bool = True
    ) -> Tuple[datetime, datetime]:
        """(start, end) of a session. Raises InvalidSession if missing or unreadable."""
        session = self._require_session(doctor, day, session_index)
        try:
            start = self.clock.parse_time(session.from_, day)
            end = self.clock.parse_time(session.to, day)
        except ValueError as e:
            raise InvalidSession(
                f"Session times are unreadable: {e}",
                doctor_id=doctor.id, date=day, session_index=session_index
            ) from e

        if include_extension:
            extended = self._extended_end(doctor, day, session_index)
            if extended is not None and extended > end:
                end = extended
        return start, end

    def slot_time(self, doctor: Doctor, day: date_type, session_index: int, slot_index: int) -> datetime:
        """Start instant of any slot index, including overflow past the session end."""
        start, _ = self.session_bounds(doctor, day, session_index)
        return start + timedelta(minutes=slot_index * doctor.average_consulting_time)

    def active_session(self, doctor: Doctor, day: date_type, now: datetime) -> Optional[int]:
        """
        Session a walk-in arriving at `now` joins.

        A session accepts walk-ins from 30 minutes before its start until 15
        minutes before its (possibly extended) end. Outside every window the
        next upcoming session is used; None when the day is over.
        """
        open_before = timedelta(minutes=self.settings.walk_in_open_before_minutes)
        close_before = timedelta(minutes=self.settings.walk_in_close_before_minutes)

        bounds = []
        for index in range(len(doctor.sessions_for(day))):
            try:
                bounds.append((index, *self.session_bounds(doctor, day, index)))
            except InvalidSession:
                continue

        for index, start, end in bounds:
            if start - open_before <= now <= end - close_before:
                return index

        for index, start, _ in bounds:
            if start > now:
                return index
        return None

    def is_within_closing_window(
        self,
        doctor: Doctor,
        day: date_type,
        now: datetime,
        minutes: Optional[int] = None
    ) -> bool:
        """True in the last minutes before the day's final session ends (today only)."""
        if self.clock.civil_date(now) != day:
            return False
        sessions = doctor.sessions_for(day)
        if not sessions:
            return False
        try:
            _, last_end = self.session_bounds(doctor, day, len(sessions) - 1, include_extension=False)
        except InvalidSession:
            return False
        window = timedelta(minutes=minutes if minutes is not None else self.settings.walk_in_close_before_minutes)
        return last_end - window < now < last_end

    def _require_session(self, doctor: Doctor, day: date_type, session_index: int) -> Session:
        sessions = doctor.sessions_for(day)
        if not sessions:
            raise InvalidSession(
                f"{doctor.name} has no availability on {self.clock.day_of_week(day).value}",
                doctor_id=doctor.id, date=day, session_index=session_index
            )
        if not 0 <= session_index < len(sessions):
            raise InvalidSession(
                f"Session {session_index} does not exist ({len(sessions)} sessions that day)",
                doctor_id=doctor.id, date=day, session_index=session_index
            )
        return sessions[session_index]

    def _extended_end(self, doctor: Doctor, day: date_type, session_index: int) -> Optional[datetime]:
        """End instant from a stored extension, if staff chose to extend."""
        record = doctor.extension_for(day, session_index)
        if record is None or record.total_extended_by <= 0:
            return None
        if record.new_end_time is not None:
            return self.clock.to_local(record.new_end_time)

        session = doctor.sessions_for(day)[session_index]
        try:
            end = self.clock.parse_time(session.to, day)
        except ValueError:
            return None
        return end + timedelta(minutes=record.total_extended_by)
