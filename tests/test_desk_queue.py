from clinic_models import AppointmentStatus, BookingChannel, BreakPeriod, ConsultationStatus
from clinic_scheduler.breaks import BreakAdjuster
from clinic_scheduler.desk_queue import QueueManager, compute_queues, next_to_call, queue_order_key

from conftest import DAY, at

CONFIRMED = AppointmentStatus.CONFIRMED


def brk(start, end, session_index=0, id=None):
    return BreakPeriod(id=id or f"b{start.hour}{start.minute}", session_index=session_index,
                       start_time=start, end_time=end)


class TestOrdering:
    def test_arrived_in_time_order(self, make_appointment):
        late = make_appointment(0, 3, status=CONFIRMED)
        early = make_appointment(0, 1, status=CONFIRMED)
        not_arrived = make_appointment(0, 0)
        state = compute_queues([late, early, not_arrived], 0, at(9, 0))
        assert state.arrived == [early, late]

    def test_previously_skipped_goes_first_at_same_time(self, make_appointment):
        first = make_appointment(0, 2, status=CONFIRMED)
        returning = make_appointment(0, 2, status=CONFIRMED).model_copy(update={"skipped_at": at(9, 10)})
        assert sorted([first, returning], key=queue_order_key) == [returning, first]

    def test_advance_before_walk_in_on_tie(self, make_appointment):
        walk_in = make_appointment(0, 2, status=CONFIRMED, channel=BookingChannel.WALK_IN)
        advance = make_appointment(0, 2, status=CONFIRMED)
        assert sorted([walk_in, advance], key=queue_order_key) == [advance, walk_in]

    def test_session_filter(self, make_appointment):
        morning = make_appointment(0, 1, status=CONFIRMED)
        evening = make_appointment(1, 0, status=CONFIRMED)
        assert compute_queues([morning, evening], 1, at(17, 0)).arrived == [evening]


class TestCalling:
    def test_priority_patients_are_called_first(self, make_appointment):
        seated = make_appointment(0, 0, status=CONFIRMED).model_copy(update={"is_in_buffer": True})
        flagged_second = make_appointment(0, 5, status=CONFIRMED).model_copy(
            update={"is_priority": True, "priority_at": at(9, 20)}
        )
        flagged_first = make_appointment(0, 8, status=CONFIRMED).model_copy(
            update={"is_priority": True, "priority_at": at(9, 10)}
        )
        state = compute_queues([seated, flagged_second, flagged_first], 0, at(9, 30))

        assert state.priority == [flagged_first, flagged_second]
        assert state.arrived == [seated]
        assert state.current == flagged_first

    def test_buffer_top_is_in_consultation(self, make_appointment):
        standing = make_appointment(0, 0, status=CONFIRMED)
        seated = make_appointment(0, 1, status=CONFIRMED).model_copy(update={"is_in_buffer": True})
        state = compute_queues([standing, seated], 0, at(9, 0))

        assert state.buffer == [seated]
        assert state.current == seated
        assert state.next_up == seated

    def test_next_falls_back_to_arrived(self, make_appointment):
        standing = make_appointment(0, 0, status=CONFIRMED)
        state = compute_queues([standing], 0, at(9, 0))
        assert state.current is None
        assert state.next_up == standing
        assert next_to_call([], []) is None

    def test_skipped_and_seen(self, make_appointment):
        skipped_late = make_appointment(0, 4, status=AppointmentStatus.SKIPPED)
        skipped_early = make_appointment(0, 1, status=AppointmentStatus.SKIPPED)
        seen = make_appointment(0, 0, status=AppointmentStatus.COMPLETED)
        placeholder = make_appointment(0, 6, status=AppointmentStatus.COMPLETED,
                                       channel=BookingChannel.BREAK_BLOCK, cancelled_by_break=True)
        evening = make_appointment(1, 0, status=AppointmentStatus.COMPLETED)
        appointments = [skipped_late, skipped_early, seen, placeholder, evening]

        state = compute_queues(appointments, 0, at(10, 0))
        assert state.skipped == [skipped_early, skipped_late]
        assert state.consultation_count == 1
        assert compute_queues(appointments, 0, at(10, 0), exclude_break_placeholders=False).consultation_count == 2


class TestBreakCountdown:
    breaks = [brk(at(10, 0), at(10, 15), id="a"), brk(at(10, 15), at(10, 30), id="b")]

    def test_touching_breaks_count_as_one(self):
        assert compute_queues([], 0, at(10, 5), breaks=self.breaks).break_remaining_minutes == 25

    def test_doctor_back_in_ends_break(self):
        state = compute_queues([], 0, at(10, 5), ConsultationStatus.IN, breaks=self.breaks)
        assert state.break_remaining_minutes is None

    def test_no_break_running(self):
        assert compute_queues([], 0, at(11, 0), breaks=self.breaks).break_remaining_minutes is None

    def test_other_sessions_break_ignored(self):
        evening = [brk(at(10, 0), at(10, 30), session_index=1)]
        assert compute_queues([], 0, at(10, 5), breaks=evening).break_remaining_minutes is None


class TestQueueManager:
    def test_reads_store_and_declared_breaks(self, allocator, store, calendar, clock, doctor, settings):
        booked = [
            allocator.allocate(doctor, DAY, BookingChannel.ADVANCE, patient_id=f"p{i}").appointment
            for i in range(3)
        ]
        clock.set(at(9, 0))
        allocator.update_status(doctor, DAY, booked[0].id, AppointmentStatus.SKIPPED)
        allocator.update_status(doctor, DAY, booked[1].id, CONFIRMED)
        allocator.update_status(doctor, DAY, booked[2].id, CONFIRMED)
        BreakAdjuster(store, calendar=calendar, settings=settings).declare_break(doctor, DAY, 0, [at(10, 0)])

        state = QueueManager(store, settings).queue_state(doctor, DAY, 0, at(10, 10))

        assert [a.id for a in state.arrived] == [booked[1].id, booked[2].id]
        assert state.next_up.id == booked[1].id
        assert [(a.id, a.skipped_at) for a in state.skipped] == [(booked[0].id, at(9, 0))]
        assert state.break_remaining_minutes == 5
