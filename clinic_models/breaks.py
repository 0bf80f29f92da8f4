"""
Break data model for the Clinic Token Scheduler.
"""

from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, computed_field, model_validator


class BreakPeriod(BaseModel):
    """
    A staff-declared interval inside a session during which the doctor is away.
    Breaks are never edited in place; a changed break is a new BreakPeriod.
    """
    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {
            "id": "break-1736917200000",
            "session_index": 0,
            "start_time": "2025-01-15T10:00:00+05:30",
            "end_time": "2025-01-15T10:30:00+05:30",
            "slots": ["2025-01-15T10:00:00+05:30", "2025-01-15T10:15:00+05:30"]
        }
    })

    id: str = Field(description="Unique identifier")
    session_index: int = Field(ge=0, description="Session the break belongs to")
    start_time: datetime = Field(description="Break start (clinic-local, tz-aware)")
    end_time: datetime = Field(description="Break end (clinic-local, tz-aware)")

    slots: List[datetime] = Field(
        default_factory=list,
        description="Slot start instants the break was created from"
    )
    displaced_minutes: Optional[int] = Field(
        default=None,
        ge=0,
        description="Session extension this break caused when it was declared"
    )

    @computed_field
    @property
    def duration(self) -> int:
        """Minutes between start and end."""
        return int((self.end_time - self.start_time).total_seconds() // 60)

    @model_validator(mode="after")
    def validate_interval(self):
        if self.end_time < self.start_time:
            raise ValueError("Break end cannot be before break start")
        return self

    def overlaps(self, other: "BreakPeriod") -> bool:
        return self.start_time < other.end_time and other.start_time < self.end_time
