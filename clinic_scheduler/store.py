"""
Transactional storage contract.

The engine needs exactly one guarantee from storage: read a consistent
snapshot of a (doctor, date), then commit a write only if nothing in that
snapshot changed in between (first committer wins). Any engine that can offer
that fits behind AppointmentStore.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from typing import Any, Dict, List, Optional, Tuple

from clinic_models import Appointment, AppointmentStatus, BreakPeriod
from .errors import AppointmentNotFound, WriteConflict

logger = logging.getLogger(__name__)

DayKey = Tuple[str, date_type]


def status_changes(status: AppointmentStatus, changed_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Fields written by a status transition. A skip also stamps skipped_at."""
    changes: Dict[str, Any] = {"status": status}
    if status == AppointmentStatus.SKIPPED and changed_at is not None:
        changes["skipped_at"] = changed_at
    return changes


@dataclass(frozen=True)
class DaySnapshot:
    """Consistent read of one doctor's day. `version` changes on every write."""
    doctor_id: str
    date: date_type
    version: int
    appointments: List[Appointment] = field(default_factory=list)


class AppointmentStore(ABC):
    """Storage collaborator used by the allocator and the break adjuster."""

    @abstractmethod
    def snapshot(self, doctor_id: str, day: date_type) -> DaySnapshot:
        """Read every appointment of the day plus its version."""

    @abstractmethod
    def commit(self, doctor_id: str, day: date_type, expected_version: int, appointment: Appointment) -> int:
        """
        Insert `appointment` only if the day is still at `expected_version`.
        Returns the new version. Raises WriteConflict when another writer got
        there first, StorageError when the store itself fails.
        """

    @abstractmethod
    def update_status(
        self,
        doctor_id: str,
        day: date_type,
        appointment_id: str,
        status: AppointmentStatus,
        changed_at: Optional[datetime] = None
    ) -> Appointment:
        """Transition one appointment's status. Appointments are never deleted."""

    @abstractmethod
    def apply_break(
        self,
        doctor_id: str,
        day: date_type,
        expected_version: int,
        break_period: BreakPeriod,
        updated: List[Appointment],
        created: List[Appointment]
    ) -> int:
        """
        Record a break together with the appointment changes it causes, only
        if the day is still at `expected_version`. Returns the new version.
        """

    @abstractmethod
    def list_breaks(self, doctor_id: str, day: date_type) -> List[BreakPeriod]:
        """Breaks declared for the day, in declaration order."""


class InMemoryAppointmentStore(AppointmentStore):
    """
    Process-local store with versioned days.

    Reads are lock-free copies; only the compare-and-commit step is serialised.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._appointments: Dict[DayKey, List[Appointment]] = defaultdict(list)
        self._versions: Dict[DayKey, int] = defaultdict(int)
        self._breaks: Dict[DayKey, List[BreakPeriod]] = defaultdict(list)

    def snapshot(self, doctor_id: str, day: date_type) -> DaySnapshot:
        key = (doctor_id, day)
        with self._lock:
            return DaySnapshot(
                doctor_id=doctor_id,
                date=day,
                version=self._versions[key],
                appointments=list(self._appointments[key]),
            )

    def commit(self, doctor_id: str, day: date_type, expected_version: int, appointment: Appointment) -> int:
        key = (doctor_id, day)
        with self._lock:
            current = self._versions[key]
            if current != expected_version:
                raise WriteConflict(
                    f"{doctor_id}/{day} moved from version {expected_version} to {current}"
                )
            self._check_unique(key, appointment)
            self._appointments[key].append(appointment)
            self._versions[key] = current + 1
            return current + 1

    def update_status(
        self,
        doctor_id: str,
        day: date_type,
        appointment_id: str,
        status: AppointmentStatus,
        changed_at: Optional[datetime] = None
    ) -> Appointment:
        key = (doctor_id, day)
        with self._lock:
            for i, existing in enumerate(self._appointments[key]):
                if existing.id == appointment_id:
                    updated = existing.model_copy(update=status_changes(status, changed_at))
                    self._appointments[key][i] = updated
                    self._versions[key] += 1
                    return updated
        raise AppointmentNotFound(
            f"Appointment {appointment_id} not found", doctor_id=doctor_id, date=day
        )

    def apply_break(
        self,
        doctor_id: str,
        day: date_type,
        expected_version: int,
        break_period: BreakPeriod,
        updated: List[Appointment],
        created: List[Appointment]
    ) -> int:
        key = (doctor_id, day)
        with self._lock:
            current = self._versions[key]
            if current != expected_version:
                raise WriteConflict(
                    f"{doctor_id}/{day} moved from version {expected_version} to {current}"
                )
            positions = {a.id: i for i, a in enumerate(self._appointments[key])}
            missing = [a.id for a in updated if a.id not in positions]
            if missing:
                raise AppointmentNotFound(
                    f"Cannot shift unknown appointments {missing}", doctor_id=doctor_id, date=day
                )
            for appointment in updated:
                self._appointments[key][positions[appointment.id]] = appointment
            self._appointments[key].extend(created)
            self._breaks[key].append(break_period)
            self._versions[key] = current + 1
        logger.debug(f"Break {break_period.id} stored for {doctor_id}/{day}: {len(updated)} shifted, {len(created)} created")
        return current + 1

    def list_breaks(self, doctor_id: str, day: date_type) -> List[BreakPeriod]:
        with self._lock:
            return list(self._breaks[(doctor_id, day)])

    def _check_unique(self, key: DayKey, appointment: Appointment) -> None:
        """Second line of defence behind the version check."""
        for existing in self._appointments[key]:
            if existing.status == AppointmentStatus.CANCELLED:
                continue
            if (existing.session_index, existing.slot_index) == (appointment.session_index, appointment.slot_index):
                raise WriteConflict(f"Slot {appointment.session_index}/{appointment.slot_index} already taken")
            if appointment.token is not None and existing.token == appointment.token:
                raise WriteConflict(f"Token {appointment.token} already issued")
