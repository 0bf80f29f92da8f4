import pytest

from clinic_models import AppointmentStatus, BreakPeriod
from clinic_scheduler.errors import AppointmentNotFound, WriteConflict

from conftest import DAY, at, seed


class TestInMemoryStore:
    def test_commit_bumps_version(self, store, make_appointment):
        assert store.snapshot("doc_1", DAY).version == 0
        assert store.commit("doc_1", DAY, 0, make_appointment(0, 0)) == 1
        snapshot = store.snapshot("doc_1", DAY)
        assert snapshot.version == 1
        assert len(snapshot.appointments) == 1

    def test_stale_version_conflicts(self, store, make_appointment):
        store.commit("doc_1", DAY, 0, make_appointment(0, 0))
        with pytest.raises(WriteConflict):
            store.commit("doc_1", DAY, 0, make_appointment(0, 1))

    def test_duplicate_slot_conflicts_even_at_current_version(self, store, make_appointment):
        store.commit("doc_1", DAY, 0, make_appointment(0, 3))
        with pytest.raises(WriteConflict):
            store.commit("doc_1", DAY, 1, make_appointment(0, 3))

    def test_cancelled_slot_can_be_written_again(self, store, make_appointment):
        seed(store, [make_appointment(0, 3, status=AppointmentStatus.CANCELLED)])
        store.commit("doc_1", DAY, 1, make_appointment(0, 3))
        assert len(store.snapshot("doc_1", DAY).appointments) == 2

    def test_days_are_isolated(self, store, make_appointment):
        seed(store, [make_appointment(0, 0)])
        assert store.snapshot("doc_2", DAY).version == 0
        assert store.snapshot("doc_1", DAY).appointments[0].doctor_id == "doc_1"

    def test_update_status(self, store, make_appointment):
        appointment = make_appointment(0, 0)
        seed(store, [appointment])
        updated = store.update_status("doc_1", DAY, appointment.id, AppointmentStatus.COMPLETED)
        assert updated.status == AppointmentStatus.COMPLETED
        assert store.snapshot("doc_1", DAY).version == 2
        with pytest.raises(AppointmentNotFound):
            store.update_status("doc_1", DAY, "nope", AppointmentStatus.CANCELLED)

    def test_skip_stamps_skipped_at(self, store, make_appointment):
        appointment = make_appointment(0, 0)
        seed(store, [appointment])
        skipped = store.update_status("doc_1", DAY, appointment.id, AppointmentStatus.SKIPPED, changed_at=at(9, 5))
        assert skipped.skipped_at == at(9, 5)
        completed = store.update_status("doc_1", DAY, appointment.id, AppointmentStatus.COMPLETED, changed_at=at(9, 30))
        assert completed.skipped_at == at(9, 5)

    def test_apply_break_replaces_and_appends(self, store, make_appointment):
        moving = make_appointment(0, 4)
        seed(store, [moving])
        brk = BreakPeriod(id="b", session_index=0, start_time=at(10, 0), end_time=at(10, 15))
        shifted = moving.model_copy(update={"slot_index": 5, "time": at(10, 15)})
        assert store.apply_break("doc_1", DAY, 1, brk, [shifted], []) == 2

        snapshot = store.snapshot("doc_1", DAY)
        assert [a.slot_index for a in snapshot.appointments] == [5]
        assert store.list_breaks("doc_1", DAY) == [brk]

    def test_apply_break_on_stale_version_is_a_conflict(self, store, make_appointment):
        seed(store, [make_appointment(0, 0)])
        brk = BreakPeriod(id="b", session_index=0, start_time=at(9, 0), end_time=at(9, 15))
        with pytest.raises(WriteConflict):
            store.apply_break("doc_1", DAY, 0, brk, [], [])
        assert store.list_breaks("doc_1", DAY) == []
        assert store.snapshot("doc_1", DAY).version == 1

    def test_apply_break_rejects_unknown_appointments(self, store, make_appointment):
        brk = BreakPeriod(id="b", session_index=0, start_time=at(10, 0), end_time=at(10, 15))
        with pytest.raises(AppointmentNotFound):
            store.apply_break("doc_1", DAY, 0, brk, [make_appointment(0, 4)], [])
        assert store.list_breaks("doc_1", DAY) == []
