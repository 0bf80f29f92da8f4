"""
Derived schedule models: slots are computed from availability, never stored.
"""

from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict


class Slot(BaseModel):
    """One fixed-length bookable unit within a session."""
    model_config = ConfigDict(frozen=True)

    session_index: int = Field(ge=0)
    slot_index: int = Field(ge=0, description="Session-local, zero-based, chronological")
    time: datetime = Field(description="Slot start instant (tz-aware)")

    @property
    def key(self) -> tuple:
        """(session_index, slot_index): the double-booking identity."""
        return (self.session_index, self.slot_index)
