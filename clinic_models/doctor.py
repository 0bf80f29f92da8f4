"""
Doctor and availability data models for the Clinic Token Scheduler.

This module defines the 'Supply' side of the scheduler:
1. Doctors (consulting pace and In/Out status)
2. Sessions (named weekly windows a doctor is bookable in)
3. Per-date overlays (breaks and session extensions declared by staff)
"""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict
from datetime import date, datetime

from .breaks import BreakPeriod

DEFAULT_CONSULTING_MINUTES = 15


class DayOfWeek(str, Enum):
    """Weekday keys used by weekly availability."""
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def from_date(cls, day: date) -> "DayOfWeek":
        return list(cls)[day.weekday()]


class ConsultationStatus(str, Enum):
    """Whether the doctor has started consulting."""
    IN = "In"
    OUT = "Out"


class Session(BaseModel):
    """
    A bookable window within one day, e.g. 09:00 AM to 01:00 PM.

    Times are kept as the raw clinic-local text staff entered. Parsing happens
    in the calendar builder, which treats an unparseable session as having no
    slots instead of failing the whole doctor record.
    """
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from", description="Session start, 'hh:mm AM' or 'HH:mm'")
    to: str = Field(description="Session end, 'hh:mm AM' or 'HH:mm'")
    label: Optional[str] = Field(default=None, description="Display name, e.g. 'Morning'")


class SessionExtensionRecord(BaseModel):
    """Staff decision to push a session's end later on a specific date."""
    session_index: int = Field(ge=0)
    total_extended_by: int = Field(default=0, ge=0, description="Minutes added to the session end")
    new_end_time: Optional[datetime] = Field(default=None, description="Resulting end instant")


class Doctor(BaseModel):
    """
    A doctor with weekly availability and the day overlays that modify it.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1, description="Display name")

    average_consulting_time: int = Field(
        default=DEFAULT_CONSULTING_MINUTES,
        ge=1,
        le=240,
        description="Minutes per patient; also the slot length"
    )
    consultation_status: ConsultationStatus = Field(default=ConsultationStatus.OUT)

    availability: Dict[DayOfWeek, List[Session]] = Field(
        default_factory=dict,
        description="Ordered sessions per weekday. Order defines sessionIndex."
    )

    # Date-keyed overlays. A missing date means "nothing declared".
    break_periods: Dict[date, List[BreakPeriod]] = Field(default_factory=dict)
    session_extensions: Dict[date, List[SessionExtensionRecord]] = Field(default_factory=dict)

    @field_validator("average_consulting_time", mode="before")
    @classmethod
    def default_when_unset(cls, v):
        # Staff records frequently carry null or 0 here
        if v in (None, 0, ""):
            return DEFAULT_CONSULTING_MINUTES
        return v

    def sessions_for(self, day: date) -> List[Session]:
        """Sessions for the weekday of `day`; empty when the doctor does not work."""
        return self.availability.get(DayOfWeek.from_date(day), [])

    def breaks_on(self, day: date, session_index: Optional[int] = None) -> List[BreakPeriod]:
        breaks = self.break_periods.get(day, [])
        if session_index is None:
            return list(breaks)
        return [b for b in breaks if b.session_index == session_index]

    def extension_for(self, day: date, session_index: int) -> Optional[SessionExtensionRecord]:
        for record in self.session_extensions.get(day, []):
            if record.session_index == session_index:
                return record
        return None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "doc_ortho_01",
            "name": "Dr. Anjali Menon",
            "average_consulting_time": 15,
            "consultation_status": "Out",
            "availability": {
                "Monday": [
                    {"from": "09:00 AM", "to": "01:00 PM", "label": "Morning"},
                    {"from": "17:00", "to": "20:00", "label": "Evening"}
                ]
            }
        }
    })
