from datetime import date, datetime, time, timezone

import pytest

from clinic_models import DayOfWeek
from clinic_scheduler.clock import ClinicClock, FixedClock, parse_clock_time

from conftest import TZ, at


class TestParseClockTime:
    @pytest.mark.parametrize("text,expected", [
        ("09:15 AM", time(9, 15)),
        ("9:15pm", time(21, 15)),
        ("21:15", time(21, 15)),
        ("12:00 AM", time(0, 0)),
        ("12:30 PM", time(12, 30)),
        (" 07:05 am ", time(7, 5)),
    ])
    def test_accepts_12_and_24_hour_forms(self, text, expected):
        assert parse_clock_time(text) == expected

    @pytest.mark.parametrize("text", ["", "abc", "25:00", "13:00 PM", "09:75", "0:30 AM", None])
    def test_rejects_garbage(self, text):
        with pytest.raises(ValueError):
            parse_clock_time(text)

    def test_both_forms_agree(self):
        assert parse_clock_time("05:00 PM") == parse_clock_time("17:00")


class TestClinicClock:
    def test_now_is_clinic_local_regardless_of_server_zone(self):
        utc_now = datetime(2025, 1, 5, 20, 0, tzinfo=timezone.utc)
        clock = ClinicClock(timezone="Asia/Kolkata", now_provider=lambda: utc_now)

        now = clock.now()
        assert now.utcoffset().total_seconds() == 5.5 * 3600
        assert (now.hour, now.minute) == (1, 30)
        # Already the next civil date in the clinic
        assert clock.today() == date(2025, 1, 6)

    def test_naive_datetimes_are_treated_as_local(self):
        clock = ClinicClock(timezone="Asia/Kolkata")
        local = clock.to_local(datetime(2025, 1, 6, 9, 0))
        assert local == at(9, 0)

    def test_day_of_week_and_date_key(self):
        clock = ClinicClock(timezone="Asia/Kolkata")
        assert clock.day_of_week(date(2025, 1, 6)) == DayOfWeek.MONDAY
        assert ClinicClock.date_key(date(2025, 1, 5)) == "5 January 2025"

    def test_format_time(self):
        clock = ClinicClock(timezone="Asia/Kolkata")
        assert clock.format_time(at(17, 5)) == "05:05 PM"

    def test_parse_time_combines_with_day(self):
        clock = ClinicClock(timezone="Asia/Kolkata")
        assert clock.parse_time("01:00 PM", date(2025, 1, 6)) == at(13, 0)


class TestFixedClock:
    def test_advance_and_set(self):
        clock = FixedClock(at(9, 0), timezone="Asia/Kolkata")
        assert clock.now() == at(9, 0)
        clock.advance(minutes=30)
        assert clock.now() == at(9, 30)
        clock.set(datetime(2025, 1, 6, 10, 0))
        assert clock.now() == at(10, 0)
        assert clock.now().tzinfo == TZ
