"""
Main Execution Script for the Clinic Token Scheduler.
Simulates one clinic day: advance bookings, walk-ins, a mid-session break,
consultations and a delay estimate, then prints the day report.
"""

import os
import sys
import json
import logging
from datetime import date, datetime, time, timedelta

# Add current directory to path so imports work
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from clinic_generators.data_factory import DataGenerator
from clinic_models import AppointmentStatus, BookingChannel, ConsultationStatus, DayOfWeek, Doctor, Session
from clinic_scheduler.allocator import TokenAllocator
from clinic_scheduler.breaks import BreakAdjuster
from clinic_scheduler.calendar import SlotCalendar
from clinic_scheduler.clock import FixedClock
from clinic_scheduler.config import get_settings
from clinic_scheduler.desk_queue import QueueManager
from clinic_scheduler.errors import SchedulingError
from clinic_scheduler.pace import PaceEstimator
from clinic_scheduler.redis_store import RedisAppointmentStore
from clinic_scheduler.state import DayState
from clinic_scheduler.store import InMemoryAppointmentStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("Main")

# --- CONFIGURATION ---
CACHE_FILENAME = "roster_cache.json"
USE_CACHE = True  # Set to False to force new AI generation
ADVANCE_BOOKINGS = 12
WALK_INS = 6
# ---------------------


def save_roster(doctors, filename: str):
    with open(filename, 'w') as f:
        json.dump([d.model_dump(mode='json', by_alias=True) for d in doctors], f, indent=2)
    logger.info(f"Saved roster to {filename}")


def load_roster(filename: str):
    try:
        with open(filename, 'r') as f:
            data = json.load(f)
        doctors = [Doctor(**item) for item in data]
        logger.info(f"Roster loaded from {filename}: {len(doctors)} doctors")
        return doctors
    except (FileNotFoundError, json.JSONDecodeError):
        logger.warning(f"Cache file {filename} not found or invalid.")
        return []


def default_doctor(day: date) -> Doctor:
    """Fallback roster entry when neither cache nor API key is available."""
    return Doctor(
        id="doc_demo_01",
        name="Dr. Demo",
        average_consulting_time=15,
        availability={DayOfWeek.from_date(day): [
            Session(from_="09:00 AM", to="01:00 PM", label="Morning"),
            Session(from_="05:00 PM", to="08:00 PM", label="Evening"),
        ]},
    )


def get_doctors(day: date):
    doctors = load_roster(CACHE_FILENAME) if USE_CACHE else []
    if doctors:
        return doctors
    if os.environ.get("GOOGLE_API_KEY"):
        doctors, cost = DataGenerator().generate_doctors(count=3, start_date=day)
        logger.info(f"Total Estimated LLM Cost: ${cost:.4f}")
        if doctors:
            save_roster(doctors, CACHE_FILENAME)
            return doctors
    logger.info("Using built-in demo doctor.")
    return [default_doctor(day)]


def main():
    settings = get_settings()
    day = date.today() + timedelta(days=1)
    doctors = [d for d in get_doctors(day) if d.sessions_for(day)]
    if not doctors:
        logger.error(f"Nobody works on {day}. Exiting.")
        return
    doctor = doctors[0]

    clock = FixedClock(datetime.combine(day - timedelta(days=1), time(20, 0)))
    calendar = SlotCalendar(clock)
    store = RedisAppointmentStore.from_url(settings.redis_url) if settings.redis_url else InMemoryAppointmentStore()
    allocator = TokenAllocator(store, calendar=calendar, clock=clock)

    # --- PHASE 1: ADVANCE BOOKINGS (the evening before) ---
    logger.info(f"--- Phase 1: Advance bookings for {doctor.name} on {clock.date_key(day)} ---")
    for i in range(ADVANCE_BOOKINGS):
        try:
            allocator.allocate(doctor, day, BookingChannel.ADVANCE, patient_id=f"pat_a{i:02d}")
        except SchedulingError as e:
            logger.warning(f"Advance booking refused: {e}")
            break

    # --- PHASE 2: CLINIC OPENS ---
    first_start, _ = calendar.session_bounds(doctor, day, 0)
    clock.set(first_start - timedelta(minutes=10))
    logger.info("--- Phase 2: Walk-ins at the desk ---")
    for i in range(WALK_INS):
        try:
            allocator.allocate(doctor, day, BookingChannel.WALK_IN, patient_id=f"pat_w{i:02d}")
        except SchedulingError as e:
            logger.warning(f"Walk-in refused: {e}")

    # --- PHASE 3: CONSULTATIONS AND A BREAK ---
    doctor = doctor.model_copy(update={"consultation_status": ConsultationStatus.IN})
    clock.set(first_start + timedelta(minutes=40))
    queue = sorted(store.snapshot(doctor.id, day).appointments, key=lambda a: (a.session_index, a.slot_index))
    for appointment in queue[:2]:
        allocator.update_status(doctor, day, appointment.id, AppointmentStatus.COMPLETED)
    for appointment in queue[2:5]:
        allocator.update_status(doctor, day, appointment.id, AppointmentStatus.CONFIRMED)
    if len(queue) > 5:
        allocator.update_status(doctor, day, queue[5].id, AppointmentStatus.SKIPPED)

    avg = doctor.average_consulting_time
    break_start = first_start + timedelta(minutes=avg * 4)
    adjuster = BreakAdjuster(store, calendar=calendar)
    declaration = adjuster.declare_break(
        doctor, day, 0, [break_start, break_start + timedelta(minutes=avg)]
    )
    logger.info(
        f"Session 0 would end at {clock.format_time(declaration.extension.new_session_end)} "
        f"if extended by {declaration.extension.actual_extension_needed} min"
    )

    # --- PHASE 4: REPORTING ---
    snapshot = store.snapshot(doctor.id, day)
    breaks = adjuster.session_breaks(doctor, day)
    pace = PaceEstimator(calendar)
    delay = pace.estimate_session(
        doctor, day, 0, snapshot.appointments, clock.now(), breaks=adjuster.session_breaks(doctor, day, 0)
    )

    stats = DayState(snapshot.appointments, settings.rebook_cancelled_slots).get_statistics(
        calendar.for_day(doctor, day), clock.now()
    )
    stats["delay_minutes"] = delay.delay_minutes

    print("\n" + "=" * 50)
    print("DAY REPORT")
    print("=" * 50)
    print(json.dumps(stats, indent=2))

    print("\nQUEUE")
    waiting = [a for a in snapshot.appointments if a.is_waiting]
    waiting.sort(key=lambda a: (a.session_index, a.slot_index))
    for estimate, appointment in zip(pace.estimate_queue_times(waiting, doctor, day, clock.now(), breaks=breaks), waiting):
        print(f"{appointment.token.session_label(appointment.session_index)}  ~{clock.format_time(estimate.estimated_time)}")

    desk = QueueManager(store, settings).queue_state(doctor, day, 0, clock.now())
    print("\nDESK")
    print(f"In consultation: {desk.current.token if desk.current else '-'}")
    print(f"Next to call:    {desk.next_up.token if desk.next_up else '-'}")
    print(f"Arrived:         {', '.join(str(a.token) for a in desk.arrived) or '-'}")
    print(f"Skipped:         {', '.join(str(a.token) for a in desk.skipped) or '-'}")
    print(f"Seen so far:     {desk.consultation_count}")


if __name__ == "__main__":
    main()
