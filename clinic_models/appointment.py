"""
Appointment and Token data models for the Clinic Token Scheduler.

This module defines the 'Output' of the allocator: committed appointments,
each holding one slot of one session and one channel-prefixed token.
"""

import re
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date as date_type, datetime


class AppointmentStatus(str, Enum):
    """Lifecycle of an appointment. Appointments are never deleted."""
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    SKIPPED = "Skipped"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No-show"


# Statuses whose slot counts as taken
ACTIVE_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.SKIPPED,
    AppointmentStatus.COMPLETED,
})

# Patients still expected to be seen
WAITING_STATUSES = frozenset({
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.SKIPPED,
})


class BookingChannel(str, Enum):
    """How the appointment entered the queue."""
    ADVANCE = "Advance"
    WALK_IN = "Walk-in"
    BREAK_BLOCK = "BreakBlock"  # placeholder holding a slot inside a break

    @property
    def prefix(self) -> Optional[str]:
        return {BookingChannel.ADVANCE: "A", BookingChannel.WALK_IN: "W"}.get(self)


_TOKEN_RE = re.compile(r"^([AW])(\d+)$")


class Token(BaseModel):
    """
    Per-day, per-doctor, per-channel queue number. A7 and W7 may coexist.
    """
    model_config = ConfigDict(frozen=True)

    channel: BookingChannel
    number: int = Field(ge=1)

    @model_validator(mode="after")
    def validate_channel(self):
        if self.channel.prefix is None:
            raise ValueError(f"Channel {self.channel.value} does not issue tokens")
        return self

    @classmethod
    def parse(cls, text: str) -> "Token":
        match = _TOKEN_RE.match(text.strip().upper())
        if not match:
            raise ValueError(f"Not a token: {text!r}")
        channel = BookingChannel.ADVANCE if match.group(1) == "A" else BookingChannel.WALK_IN
        return cls(channel=channel, number=int(match.group(2)))

    def session_label(self, session_index: int) -> str:
        """Long display form used on printed slips, e.g. A1-012."""
        return f"{self.channel.prefix}{session_index + 1}-{self.number:03d}"

    def __str__(self) -> str:
        return f"{self.channel.prefix}{self.number}"


class Appointment(BaseModel):
    """
    One patient's claim on one slot.
    """

    # --- Identity ---
    id: str = Field(description="Unique identifier")
    doctor_id: str
    patient_id: Optional[str] = Field(default=None, description="None for break placeholders")
    date: date_type = Field(description="Clinic-local civil date")

    # --- Position ---
    session_index: int = Field(ge=0)
    slot_index: int = Field(ge=0, description="Session-local, zero-based")
    time: datetime = Field(description="Slot start instant (tz-aware)")

    # --- Queue ---
    token: Optional[Token] = Field(default=None)
    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING)
    booked_via: BookingChannel
    cancelled_by_break: bool = Field(default=False)

    # --- Desk flags ---
    is_priority: bool = Field(default=False, description="Called ahead of everyone else")
    priority_at: Optional[datetime] = Field(default=None, description="When priority was granted")
    is_in_buffer: bool = Field(default=False, description="Seated in the waiting buffer by the door")
    skipped_at: Optional[datetime] = Field(default=None, description="Last time the patient was skipped")

    created_at: Optional[datetime] = Field(default=None)

    @model_validator(mode="after")
    def validate_token_channel(self):
        if self.booked_via == BookingChannel.BREAK_BLOCK:
            if self.token is not None:
                raise ValueError("Break placeholders do not carry tokens")
        elif self.token is None:
            raise ValueError("Patient appointments require a token")
        elif self.token.channel != self.booked_via:
            raise ValueError("Token channel must match booking channel")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_waiting(self) -> bool:
        return self.status in WAITING_STATUSES

    @property
    def is_break_placeholder(self) -> bool:
        """Completed only to block a break slot; no consultation happened."""
        return self.cancelled_by_break and self.status == AppointmentStatus.COMPLETED

    @property
    def time_display(self) -> str:
        return self.time.strftime("%I:%M %p")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "appt_01",
            "doctor_id": "doc_ortho_01",
            "patient_id": "pat_778",
            "date": "2025-01-15",
            "session_index": 0,
            "slot_index": 4,
            "time": "2025-01-15T10:00:00+05:30",
            "token": {"channel": "Advance", "number": 5},
            "status": "Confirmed",
            "booked_via": "Advance",
            "cancelled_by_break": False
        }
    })
