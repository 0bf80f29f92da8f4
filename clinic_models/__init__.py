"""
Data models package for the Clinic Token Scheduler.

This package exports the three pillars of the data architecture:
1. Supply (Doctor, Session, BreakPeriod)
2. Derived schedule (Slot)
3. Output (Appointment, Token)
"""

from .breaks import BreakPeriod

from .doctor import (
    Doctor,
    DayOfWeek,
    ConsultationStatus,
    Session,
    SessionExtensionRecord,
    DEFAULT_CONSULTING_MINUTES
)

from .schedule import Slot

from .appointment import (
    Appointment,
    AppointmentStatus,
    BookingChannel,
    Token,
    ACTIVE_STATUSES,
    WAITING_STATUSES
)

__all__ = [
    # --- Supply Models ---
    "Doctor",
    "DayOfWeek",
    "ConsultationStatus",
    "Session",
    "SessionExtensionRecord",
    "BreakPeriod",
    "DEFAULT_CONSULTING_MINUTES",

    # --- Derived Models ---
    "Slot",

    # --- Output Models ---
    "Appointment",
    "AppointmentStatus",
    "BookingChannel",
    "Token",
    "ACTIVE_STATUSES",
    "WAITING_STATUSES",
]
