"""
Redis storage for appointments using optimistic transactions.

Key format:
    appt:day:{doctor_id}:{date}     Hash, field = appointment id, value = JSON
    appt:ver:{doctor_id}:{date}     Integer version, bumped on every write
    appt:breaks:{doctor_id}:{date}  List of BreakPeriod JSON

Commits and break writes WATCH the version key, re-check it against the
version the caller read, then write inside MULTI/EXEC. If anything touched
the key in between, EXEC fails with WatchError, which is surfaced as
WriteConflict for the caller to retry.
"""

import logging
from datetime import date as date_type, datetime
from typing import List, Optional

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError, WatchError

from clinic_models import Appointment, AppointmentStatus, BreakPeriod
from .errors import AppointmentNotFound, StorageError, WriteConflict
from .store import AppointmentStore, DaySnapshot, status_changes

logger = logging.getLogger(__name__)


def _decode(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisAppointmentStore(AppointmentStore):
    """Redis-backed AppointmentStore."""

    KEY_PREFIX = "appt"

    def __init__(self, redis: Redis):
        self.redis = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisAppointmentStore":
        return cls(Redis.from_url(url))

    def _day_key(self, doctor_id: str, day: date_type) -> str:
        return f"{self.KEY_PREFIX}:day:{doctor_id}:{day.isoformat()}"

    def _version_key(self, doctor_id: str, day: date_type) -> str:
        return f"{self.KEY_PREFIX}:ver:{doctor_id}:{day.isoformat()}"

    def _breaks_key(self, doctor_id: str, day: date_type) -> str:
        return f"{self.KEY_PREFIX}:breaks:{doctor_id}:{day.isoformat()}"

    # ── Read ─────────────────────────────────────────────────────────────

    def snapshot(self, doctor_id: str, day: date_type) -> DaySnapshot:
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.get(self._version_key(doctor_id, day))
            pipe.hgetall(self._day_key(doctor_id, day))
            raw_version, raw_appointments = pipe.execute()
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageError(f"Redis unavailable while reading {doctor_id}/{day}: {e}") from e
        except RedisError as e:
            raise StorageError(f"Redis rejected read of {doctor_id}/{day}: {e}") from e

        appointments = [
            Appointment.model_validate_json(_decode(value))
            for value in raw_appointments.values()
        ]
        appointments.sort(key=lambda a: (a.session_index, a.slot_index, a.id))
        return DaySnapshot(
            doctor_id=doctor_id,
            date=day,
            version=int(_decode(raw_version)) if raw_version is not None else 0,
            appointments=appointments,
        )

    def list_breaks(self, doctor_id: str, day: date_type) -> List[BreakPeriod]:
        try:
            raw = self.redis.lrange(self._breaks_key(doctor_id, day), 0, -1)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageError(f"Redis unavailable while reading breaks: {e}") from e
        except RedisError as e:
            raise StorageError(f"Redis rejected break read: {e}") from e
        return [BreakPeriod.model_validate_json(_decode(item)) for item in raw]

    # ── Write ────────────────────────────────────────────────────────────

    def _check_version(self, pipe, doctor_id: str, day: date_type, expected_version: int) -> None:
        """Called between WATCH and MULTI, while the pipeline runs commands immediately."""
        raw = pipe.get(self._version_key(doctor_id, day))
        current = int(_decode(raw)) if raw is not None else 0
        if current != expected_version:
            raise WriteConflict(f"{doctor_id}/{day} moved from version {expected_version} to {current}")

    def commit(self, doctor_id: str, day: date_type, expected_version: int, appointment: Appointment) -> int:
        version_key = self._version_key(doctor_id, day)
        day_key = self._day_key(doctor_id, day)

        try:
            with self.redis.pipeline() as pipe:
                pipe.watch(version_key)
                self._check_version(pipe, doctor_id, day, expected_version)
                pipe.multi()
                pipe.hset(day_key, appointment.id, appointment.model_dump_json())
                pipe.incr(version_key)
                _, new_version = pipe.execute()
                return int(new_version)
        except WatchError as e:
            raise WriteConflict(f"Concurrent write on {doctor_id}/{day}") from e
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageError(f"Redis unavailable while committing {appointment.id}: {e}") from e
        except RedisError as e:
            raise StorageError(f"Redis rejected commit of {appointment.id}: {e}") from e

    def update_status(
        self,
        doctor_id: str,
        day: date_type,
        appointment_id: str,
        status: AppointmentStatus,
        changed_at: Optional[datetime] = None
    ) -> Appointment:
        day_key = self._day_key(doctor_id, day)
        try:
            with self.redis.pipeline() as pipe:
                pipe.watch(day_key)
                raw = pipe.hget(day_key, appointment_id)
                if raw is None:
                    raise AppointmentNotFound(
                        f"Appointment {appointment_id} not found", doctor_id=doctor_id, date=day
                    )
                updated = Appointment.model_validate_json(_decode(raw)).model_copy(
                    update=status_changes(status, changed_at)
                )
                pipe.multi()
                pipe.hset(day_key, appointment_id, updated.model_dump_json())
                pipe.incr(self._version_key(doctor_id, day))
                pipe.execute()
                return updated
        except WatchError as e:
            raise WriteConflict(f"Appointment {appointment_id} changed during status update") from e
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageError(f"Redis unavailable while updating {appointment_id}: {e}") from e
        except RedisError as e:
            raise StorageError(f"Redis rejected status update of {appointment_id}: {e}") from e

    def apply_break(
        self,
        doctor_id: str,
        day: date_type,
        expected_version: int,
        break_period: BreakPeriod,
        updated: List[Appointment],
        created: List[Appointment]
    ) -> int:
        version_key = self._version_key(doctor_id, day)
        day_key = self._day_key(doctor_id, day)
        try:
            with self.redis.pipeline() as pipe:
                pipe.watch(version_key, day_key)
                self._check_version(pipe, doctor_id, day, expected_version)
                missing = [a.id for a in updated if not pipe.hexists(day_key, a.id)]
                if missing:
                    raise AppointmentNotFound(
                        f"Cannot shift unknown appointments {missing}", doctor_id=doctor_id, date=day
                    )
                pipe.multi()
                for appointment in [*updated, *created]:
                    pipe.hset(day_key, appointment.id, appointment.model_dump_json())
                pipe.rpush(self._breaks_key(doctor_id, day), break_period.model_dump_json())
                pipe.incr(version_key)
                *_, new_version = pipe.execute()
        except WatchError as e:
            raise WriteConflict(f"Day {doctor_id}/{day} changed while applying break") from e
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageError(f"Redis unavailable while applying break: {e}") from e
        except RedisError as e:
            raise StorageError(f"Redis rejected break write: {e}") from e
        logger.debug(f"Break {break_period.id} stored for {doctor_id}/{day}")
        return int(new_version)
