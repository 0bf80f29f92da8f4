import threading

from clinic_models import BookingChannel
from clinic_scheduler.errors import NoSlotAvailable

from conftest import DAY, at, seed


def run_concurrently(count, fn):
    """Start `count` threads behind a barrier; collect results or exceptions."""
    barrier = threading.Barrier(count)
    results = []

    def worker():
        barrier.wait()
        try:
            results.append(fn())
        except Exception as e:
            results.append(e)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return results


class TestConcurrentAllocation:
    def test_tokens_are_dense_and_unique(self, allocator, doctor, store):
        results = run_concurrently(5, lambda: allocator.allocate(doctor, DAY, BookingChannel.ADVANCE))

        assert all(not isinstance(r, Exception) for r in results)
        assert sorted(r.token.number for r in results) == [1, 2, 3, 4, 5]
        assert len({(r.session_index, r.slot_index) for r in results}) == 5

        committed = store.snapshot(doctor.id, DAY).appointments
        assert sorted(a.token.number for a in committed) == [1, 2, 3, 4, 5]

    def test_walk_ins_never_share_a_slot(self, allocator, doctor, clock, store):
        clock.set(at(8, 45))
        results = run_concurrently(5, lambda: allocator.allocate(doctor, DAY, BookingChannel.WALK_IN))

        assert sorted(r.token.number for r in results) == [1, 2, 3, 4, 5]
        assert sorted(r.slot_index for r in results) == [0, 1, 2, 3, 4]

    def test_exactly_one_wins_the_last_slot(self, allocator, doctor, store, make_appointment):
        # Evening session: slots 10-11 are reserved, 0-8 taken, only 9 is left
        seed(store, [make_appointment(1, i) for i in range(9)])

        results = run_concurrently(2, lambda: allocator.allocate(
            doctor, DAY, BookingChannel.ADVANCE, preferred_session_index=1
        ))

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert winners[0].slot_index == 9
        assert len(losers) == 1 and isinstance(losers[0], NoSlotAvailable)

        evening = [a for a in store.snapshot(doctor.id, DAY).appointments if a.session_index == 1]
        assert len({a.slot_index for a in evening}) == len(evening) == 10
