from clinic_models import AppointmentStatus, BookingChannel
from clinic_scheduler.state import DayState

from conftest import DAY, at


class TestDayState:
    def test_tokens_follow_highest_issued_including_cancelled(self, make_appointment):
        state = DayState([
            make_appointment(0, 0),
            make_appointment(0, 1, status=AppointmentStatus.CANCELLED),
            make_appointment(0, 2, channel=BookingChannel.WALK_IN),
        ])
        assert str(state.next_token(BookingChannel.ADVANCE)) == "A3"
        assert str(state.next_token(BookingChannel.WALK_IN)) == "W2"

    def test_cancelled_holds_slot_unless_rebooking(self, make_appointment):
        appointments = [
            make_appointment(0, 1, status=AppointmentStatus.CANCELLED),
            make_appointment(0, 2, status=AppointmentStatus.NO_SHOW),
        ]
        strict = DayState(appointments)
        assert strict.is_occupied(0, 1) and strict.is_occupied(0, 2)

        relaxed = DayState(appointments, rebook_cancelled_slots=True)
        assert not relaxed.is_occupied(0, 1)
        assert relaxed.is_occupied(0, 2)

    def test_last_slot_index(self, make_appointment):
        state = DayState([make_appointment(0, 3), make_appointment(0, 7), make_appointment(1, 2)])
        assert state.last_slot_index(0) == 7
        assert state.last_slot_index(1) == 2
        assert DayState([]).last_slot_index(0) is None

    def test_completed_count_skips_break_placeholders(self, make_appointment):
        state = DayState([
            make_appointment(0, 0, status=AppointmentStatus.COMPLETED),
            make_appointment(0, 1, status=AppointmentStatus.COMPLETED,
                             channel=BookingChannel.BREAK_BLOCK, cancelled_by_break=True),
            make_appointment(1, 0, status=AppointmentStatus.COMPLETED),
        ])
        assert state.completed_count() == 2
        assert state.completed_count(session_index=0) == 1
        assert state.completed_count(exclude_break_placeholders=False) == 3

    def test_statistics(self, make_appointment, calendar, doctor):
        state = DayState([
            make_appointment(0, 0),
            make_appointment(0, 16, channel=BookingChannel.WALK_IN),
        ])
        stats = state.get_statistics(calendar.for_day(doctor, DAY), at(8, 0))
        assert stats["total_appointments"] == 2
        assert stats["last_tokens"] == {"A": 1, "W": 1}
        morning = stats["sessions"]["S0"]
        assert morning["total_slots"] == 16
        assert morning["reserved_now"] == 3
        assert morning["overflow"] == 1
        assert morning["advance"] == "1/14"
