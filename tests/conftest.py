import itertools
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from clinic_models import (
    Appointment,
    AppointmentStatus,
    BookingChannel,
    Doctor,
    Session,
    Token,
)
from clinic_scheduler.allocator import TokenAllocator
from clinic_scheduler.calendar import SlotCalendar
from clinic_scheduler.clock import FixedClock
from clinic_scheduler.config import SchedulerSettings
from clinic_scheduler.notifications import NotificationDispatcher
from clinic_scheduler.store import InMemoryAppointmentStore

TZ = ZoneInfo("Asia/Kolkata")
DAY = date(2025, 1, 6)  # Monday
SUNDAY = date(2025, 1, 5)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=TZ)


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.sent = []

    def notify(self, appointment_id, recipient_id, template_key):
        self.sent.append((appointment_id, recipient_id, template_key))


class FailingDispatcher(NotificationDispatcher):
    def notify(self, appointment_id, recipient_id, template_key):
        raise RuntimeError("gateway down")


@pytest.fixture
def settings():
    return SchedulerSettings(timezone="Asia/Kolkata", retry_backoff_seconds=0.0)


@pytest.fixture
def doctor():
    """Mondays: 09:00-13:00 (16 slots) and 17:00-20:00 (12 slots), 15 min each."""
    return Doctor(
        id="doc_1",
        name="Dr. Test",
        average_consulting_time=15,
        availability={
            "Monday": [
                Session(from_="09:00 AM", to="01:00 PM", label="Morning"),
                Session(from_="17:00", to="20:00", label="Evening"),
            ]
        },
    )


@pytest.fixture
def clock():
    # Evening before the clinic day
    return FixedClock(at(20, 0, day=SUNDAY), timezone="Asia/Kolkata")


@pytest.fixture
def calendar(clock):
    return SlotCalendar(clock)


@pytest.fixture
def store():
    return InMemoryAppointmentStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def allocator(store, calendar, clock, dispatcher, settings):
    return TokenAllocator(store, calendar=calendar, clock=clock, dispatcher=dispatcher, settings=settings)


@pytest.fixture
def make_appointment(doctor, calendar):
    """Builds appointments on DAY positioned by (session, slot) with running tokens."""
    counters = {
        BookingChannel.ADVANCE: itertools.count(1),
        BookingChannel.WALK_IN: itertools.count(1),
    }
    ids = itertools.count(1)

    def _make(session_index, slot_index, status=AppointmentStatus.PENDING,
              channel=BookingChannel.ADVANCE, cancelled_by_break=False, patient_id="pat"):
        token = None
        if channel != BookingChannel.BREAK_BLOCK:
            token = Token(channel=channel, number=next(counters[channel]))
        return Appointment(
            id=f"seed_{next(ids)}",
            doctor_id=doctor.id,
            patient_id=patient_id if channel != BookingChannel.BREAK_BLOCK else None,
            date=DAY,
            session_index=session_index,
            slot_index=slot_index,
            time=calendar.slot_time(doctor, DAY, session_index, slot_index),
            token=token,
            status=status,
            booked_via=channel,
            cancelled_by_break=cancelled_by_break,
        )

    return _make


def seed(store, appointments, doctor_id="doc_1", day=DAY):
    for appointment in appointments:
        version = store.snapshot(doctor_id, day).version
        store.commit(doctor_id, day, version, appointment)
