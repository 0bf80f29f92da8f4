"""
Scheduling outcomes that are surfaced to callers.

Everything derived from SchedulingError is a per-request business outcome
(offer the patient another slot), never a crash. StorageError is kept outside
that tree: it is an infrastructure failure and is not retried here.
"""

from datetime import date as date_type
from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """Base class. `context` names the doctor, date, session and channel involved."""

    def __init__(
        self,
        message: str,
        doctor_id: Optional[str] = None,
        date: Optional[date_type] = None,
        session_index: Optional[int] = None,
        channel: Optional[str] = None,
        **extra: Any
    ):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {
            "doctor_id": doctor_id,
            "date": date.isoformat() if date else None,
            "session_index": session_index,
            "channel": channel,
            **extra,
        }

    def __str__(self) -> str:
        details = ", ".join(f"{k}={v}" for k, v in self.context.items() if v is not None)
        return f"{self.message} ({details})" if details else self.message


class NoSlotAvailable(SchedulingError):
    """No candidate slot for the requested channel/session."""


class SlotConflict(SchedulingError):
    """Concurrent writers kept winning until the retry budget ran out."""


class InvalidSession(SchedulingError):
    """The day has no such session, or its times cannot be read."""


class BreakSessionMismatch(SchedulingError):
    """A break was supplied for a different session than the one being adjusted."""


class CutoffViolation(SchedulingError):
    """Advance booking inside the minimum lead time."""


class InvalidBreak(SchedulingError):
    """Break declaration rejected (empty, overlapping, out of bounds, or over the limit)."""


class WriteConflict(Exception):
    """
    Raised by a store when a conditional commit loses to another writer.
    The allocator catches this and retries; callers never see it.
    """


class StorageError(Exception):
    """Store unreachable, timed out, or otherwise failed. Not retried by the allocator."""


class AppointmentNotFound(SchedulingError):
    """Status change or shift addressed an appointment the store does not hold."""
