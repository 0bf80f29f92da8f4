"""
Clinic Clock.

All scheduling happens in the clinic's own civil time. The server may run in
UTC or anywhere else; nothing in the engine calls datetime.now() directly.
"""

import re
from datetime import date as date_type, datetime, time as time_type, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from clinic_models import DayOfWeek
from .config import get_settings

_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])?\s*$")


def parse_clock_time(text: str) -> time_type:
    """
    Parse '09:15 AM', '9:15pm' or '21:15' into a time.
    Raises ValueError on anything else.
    """
    if not isinstance(text, str):
        raise ValueError(f"Invalid time string: {text!r}")
    match = _CLOCK_RE.match(text)
    if not match:
        raise ValueError(f"Invalid time string: {text!r}")

    hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    if minute > 59:
        raise ValueError(f"Invalid minutes in {text!r}")

    if meridiem:
        if not 1 <= hour <= 12:
            raise ValueError(f"Invalid 12-hour value in {text!r}")
        hour = hour % 12
        if meridiem.lower() == "pm":
            hour += 12
    elif hour > 23:
        raise ValueError(f"Invalid 24-hour value in {text!r}")

    return time_type(hour, minute)


class ClinicClock:
    """Converts instants to and from clinic-local civil time."""

    def __init__(
        self,
        timezone: Optional[str] = None,
        now_provider: Optional[Callable[[], datetime]] = None
    ):
        self.tz = ZoneInfo(timezone or get_settings().timezone)
        self._now_provider = now_provider

    def now(self) -> datetime:
        if self._now_provider is not None:
            return self.to_local(self._now_provider())
        return datetime.now(self.tz)

    def today(self) -> date_type:
        return self.now().date()

    def to_local(self, dt: datetime) -> datetime:
        """Naive datetimes are taken to already be clinic-local."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=self.tz)
        return dt.astimezone(self.tz)

    def civil_date(self, dt: datetime) -> date_type:
        return self.to_local(dt).date()

    def day_of_week(self, day: date_type) -> DayOfWeek:
        return DayOfWeek.from_date(day)

    def combine(self, day: date_type, t: time_type) -> datetime:
        return datetime.combine(day, t, tzinfo=self.tz)

    def parse_time(self, text: str, day: date_type) -> datetime:
        """Clock text on a given civil date → aware instant. Raises ValueError."""
        return self.combine(day, parse_clock_time(text))

    @staticmethod
    def date_key(day: date_type) -> str:
        """Display key used on slips and messages, e.g. '5 January 2025'."""
        return f"{day.day} {day.strftime('%B')} {day.year}"

    def format_time(self, dt: datetime) -> str:
        return self.to_local(dt).strftime("%I:%M %p")


class FixedClock(ClinicClock):
    """A clock whose 'now' only moves when told to. Used by tests and the demo."""

    def __init__(self, now: datetime, timezone: Optional[str] = None):
        super().__init__(timezone=timezone)
        self.current = self.to_local(now)

    def now(self) -> datetime:
        return self.current

    def set(self, now: datetime) -> None:
        self.current = self.to_local(now)

    def advance(self, minutes: int = 0, seconds: int = 0) -> datetime:
        self.current = self.current + timedelta(minutes=minutes, seconds=seconds)
        return self.current
