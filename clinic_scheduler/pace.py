"""
Pace/Delay Estimator.

Read-only queries over committed appointments:
1. How late is the doctor running right now?
2. Is the change big enough to tell patients about?
3. Roughly when will each waiting patient be seen?
"""

import logging
from dataclasses import dataclass
from datetime import date as date_type, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from clinic_models import Appointment, AppointmentStatus, BreakPeriod, ConsultationStatus, Doctor
from .calendar import SlotCalendar
from .config import SchedulerSettings, get_settings
from .errors import InvalidSession
from .notifications import NotificationDispatcher, safe_notify

logger = logging.getLogger(__name__)

# A session may start late because a break was declared right on its start
START_BREAK_TOLERANCE = timedelta(minutes=1)
# Gaps between sessions up to this size are treated as spill-over
SPILLOVER_GAP_MINUTES = 60
JUMP_WHEN_WITHIN_MINUTES = 15


def _whole_minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


@dataclass
class DelayEstimate:
    delay_minutes: int
    effective_session_start: datetime
    completed_count: int = 0
    passed_break_minutes: int = 0
    expected_work_minutes: int = 0


@dataclass
class QueueEstimate:
    appointment_id: str
    estimated_time: datetime
    is_first: bool
    session_index: Optional[int]


def effective_session_start(session_start: datetime, breaks: Iterable[BreakPeriod]) -> datetime:
    """Session start pushed past any break that begins at (or just after) it."""
    effective = session_start
    for break_period in breaks:
        if break_period.start_time <= session_start + START_BREAK_TOLERANCE and break_period.end_time > effective:
            effective = break_period.end_time
    return effective


def passed_break_minutes(breaks: Iterable[BreakPeriod], since: datetime, now: datetime) -> int:
    """Break time elapsed between `since` and `now`; a running break counts up to now."""
    total = timedelta()
    for break_period in breaks:
        if since <= break_period.start_time < now:
            total += min(break_period.end_time, now) - break_period.start_time
    return _whole_minutes(total)


def should_publish_delay(previous: Optional[int], current: int, threshold: Optional[int] = None) -> bool:
    """Avoid spamming patients: only a first value or a real change is published."""
    if threshold is None:
        threshold = get_settings().delay_publish_threshold_minutes
    if previous is None:
        return True
    return abs(current - previous) >= threshold


class PaceEstimator:
    """
    Estimates running delay and queue times for one doctor.
    """

    def __init__(self, calendar: Optional[SlotCalendar] = None, settings: Optional[SchedulerSettings] = None):
        self.calendar = calendar or SlotCalendar()
        self.settings = settings or get_settings()

    def completed_count(self, appointments: Iterable[Appointment], session_index: Optional[int] = None) -> int:
        count = 0
        for appointment in appointments:
            if appointment.status != AppointmentStatus.COMPLETED:
                continue
            if session_index is not None and appointment.session_index != session_index:
                continue
            if self.settings.exclude_break_placeholders and appointment.is_break_placeholder:
                continue
            count += 1
        return count

    def estimate(
        self,
        doctor: Doctor,
        session_start: datetime,
        appointments: Iterable[Appointment],
        breaks: Sequence[BreakPeriod],
        now: datetime,
        session_index: Optional[int] = None
    ) -> DelayEstimate:
        start = effective_session_start(session_start, breaks)
        if now < start:
            return DelayEstimate(delay_minutes=0, effective_session_start=start)

        elapsed = _whole_minutes(now - start)
        if doctor.consultation_status != ConsultationStatus.IN:
            # Not started yet: every minute past the start is delay
            return DelayEstimate(delay_minutes=elapsed, effective_session_start=start)

        completed = self.completed_count(appointments, session_index)
        expected = completed * doctor.average_consulting_time
        passed = passed_break_minutes(breaks, start, now)
        return DelayEstimate(
            delay_minutes=max(0, elapsed - expected - passed),
            effective_session_start=start,
            completed_count=completed,
            passed_break_minutes=passed,
            expected_work_minutes=expected,
        )

    def estimate_session(
        self,
        doctor: Doctor,
        day: date_type,
        session_index: int,
        appointments: Iterable[Appointment],
        now: datetime,
        breaks: Optional[Sequence[BreakPeriod]] = None
    ) -> DelayEstimate:
        """Same as estimate(), resolving the session start and breaks from the doctor record."""
        start, _ = self.calendar.session_bounds(doctor, day, session_index, include_extension=False)
        if breaks is None:
            breaks = doctor.breaks_on(day, session_index)
        return self.estimate(doctor, start, appointments, breaks, now, session_index=session_index)

    def publish_delay(
        self,
        dispatcher: NotificationDispatcher,
        estimate: DelayEstimate,
        previous: Optional[int],
        waiting: Iterable[Appointment]
    ) -> bool:
        """Tell waiting patients about a changed delay. Returns whether anything was sent."""
        if not should_publish_delay(previous, estimate.delay_minutes, self.settings.delay_publish_threshold_minutes):
            return False
        logger.info(f"Publishing delay of {estimate.delay_minutes} min (was {previous})")
        for appointment in waiting:
            if appointment.is_waiting:
                safe_notify(dispatcher, appointment.id, appointment.patient_id, "doctor_running_late")
        return True

    # --- Queue Times ---

    def estimate_queue_times(
        self,
        appointments: Sequence[Appointment],
        doctor: Doctor,
        day: date_type,
        now: datetime,
        breaks: Optional[Sequence[BreakPeriod]] = None
    ) -> List[QueueEstimate]:
        """
        Walk the queue in order, one consultation length per patient, hopping
        over breaks and waiting for a later session to open when needed.

        `breaks` defaults to the doctor record. Pass BreakAdjuster.session_breaks()
        to include breaks declared through the store.
        """
        if not appointments:
            return []

        sessions = self._session_windows(doctor, day)
        if breaks is None:
            breaks = doctor.breaks_on(day)
        breaks = sorted(breaks, key=lambda b: b.start_time)
        doctor_in = doctor.consultation_status == ConsultationStatus.IN
        step = timedelta(minutes=doctor.average_consulting_time)
        session_starts = {index: start for index, start, _ in sessions}

        running = self._reference_time(appointments, doctor, day, now, sessions, doctor_in)
        running = running.replace(second=0, microsecond=0)

        results = []
        for position, appointment in enumerate(appointments):
            running = self._hop_breaks(running, breaks, now, doctor_in)
            running, session_index, in_session = self._place_in_session(running, sessions)

            # Never show a later session's patient before that session opens
            target_start = session_starts.get(appointment.session_index)
            if target_start is not None and running < target_start:
                running = target_start
                session_index = appointment.session_index

            if in_session and running < now:
                running = now

            results.append(QueueEstimate(
                appointment_id=appointment.id,
                estimated_time=running,
                is_first=position == 0,
                session_index=session_index,
            ))
            running = running + step
        return results

    def _session_windows(self, doctor: Doctor, day: date_type) -> List[Tuple[int, datetime, datetime]]:
        windows = []
        for index in range(len(doctor.sessions_for(day))):
            try:
                start, end = self.calendar.session_bounds(doctor, day, index, include_extension=False)
            except InvalidSession:
                continue
            windows.append((index, start, end))
        windows.sort(key=lambda w: w[1])
        return windows

    def _reference_time(self, appointments, doctor, day, now, sessions, doctor_in) -> datetime:
        first_waiting = next((a for a in appointments if a.is_waiting), None)
        starts = {index: start for index, start, _ in sessions}
        # Backlog from a session that already started: estimates run from now
        backlog = first_waiting is not None and first_waiting.session_index in starts \
            and starts[first_waiting.session_index] < now
        if doctor_in or backlog:
            return now

        active = self.calendar.active_session(doctor, day, now)
        if active is not None and active in starts:
            return starts[active]
        return now

    @staticmethod
    def _hop_breaks(running: datetime, breaks: Sequence[BreakPeriod], now: datetime, doctor_in: bool) -> datetime:
        moved = True
        while moved:
            moved = False
            for break_period in breaks:
                # Doctor came back early from the current break
                if doctor_in and break_period.start_time <= now < break_period.end_time:
                    continue
                if break_period.start_time <= running < break_period.end_time:
                    running = break_period.end_time.replace(second=0, microsecond=0)
                    moved = True
                    break
        return running

    @staticmethod
    def _place_in_session(running: datetime, sessions) -> Tuple[datetime, Optional[int], bool]:
        """Returns (time, session_index, in_session) after any jump to a later session."""
        detected = sessions[0][0] if sessions else None
        for position, (index, start, end) in enumerate(sessions):
            if start <= running < end:
                return running, index, True
            if running < start:
                if position == 0:
                    return start, index, True
                prev_index, _, prev_end = sessions[position - 1]
                total_gap = (start - prev_end).total_seconds() / 60
                remaining = (start - running).total_seconds() / 60
                if total_gap <= SPILLOVER_GAP_MINUTES or remaining <= JUMP_WHEN_WITHIN_MINUTES:
                    return start, index, True
                # Overtime absorbed by a long gap
                return running, prev_index, True
            detected = index
        return running, detected, False
