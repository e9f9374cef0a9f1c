"""
Transactional persistence for booking.

``BookingStore.transaction()`` opens one database transaction and yields a
``BookingTransaction`` whose reads and writes all run inside it. Leaving the
context normally commits; an exception rolls everything back.

The asyncpg implementation locks the hold row (``FOR UPDATE``) and runs at
SERIALIZABLE isolation by default, so two concurrent conversions of the same
hold, or two bookings of the same slot, cannot both pass the conflict re-check.

Expected column types (PostgreSQL):

    appointment_holds  id, organization_id, staff_id, room_id UUID;
                       date DATE; start_time, end_time TIME;
                       expires_at, released_at TIMESTAMPTZ;
                       converted_to_session_id UUID
    sessions           id, schedule_id, therapist_id, patient_id, room_id UUID;
                       date DATE; start_time, end_time TIME;
                       status, booked_via TEXT
    schedules          id, organization_id, created_by_id UUID;
                       week_start_date DATE; status TEXT; version INTEGER
    users              id, organization_id UUID; role TEXT; created_at TIMESTAMPTZ

Models carry times as ``HH:MM`` strings; they are bound as ``datetime.time``
and read back through ``_format_time``. Dates are bound as ``datetime.date`` and
hold timestamps as timezone-aware ``datetime``.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from typing import AsyncIterator, Optional, Protocol

import asyncpg

from therapy_scheduling import config
from therapy_scheduling.exceptions import InvalidSchedulingRequestError
from therapy_scheduling.models.scheduling import (
    AppointmentHold,
    BookingSource,
    ScheduleStatus,
    SessionCreate,
    SessionStatus,
)

logger = logging.getLogger(__name__)

ISOLATION_LEVELS = ("serializable", "repeatable_read")


class BookingTransaction(Protocol):
    """Operations available inside one booking transaction."""

    async def get_active_hold(
        self, hold_id: str, organization_id: str, now: datetime
    ) -> Optional[AppointmentHold]:
        """Hold that is unexpired, unreleased and unconverted, locked for update."""
        ...

    async def find_conflicting_session(
        self,
        organization_id: str,
        session_date: date,
        start_time: str,
        end_time: str,
        staff_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        room_id: Optional[str] = None,
    ) -> Optional[str]:
        """Id of an active session overlapping the interval for any given resource."""
        ...

    async def find_or_create_schedule(
        self, organization_id: str, week_start: date, created_by_user_id: Optional[str] = None
    ) -> str:
        ...

    async def create_session(
        self,
        session: SessionCreate,
        booked_via: BookingSource,
        booked_by_contact_id: Optional[str] = None,
    ) -> str:
        ...

    async def mark_hold_converted(self, hold_id: str, session_id: str) -> None:
        ...

    async def mark_hold_released(self, hold_id: str, released_at: datetime) -> None:
        ...


class BookingStore(Protocol):
    def transaction(self) -> "AsyncIterator[BookingTransaction]":
        ...


def _to_time(value: str) -> time:
    return datetime.strptime(value, "%H:%M").time()


def _format_time(value) -> str:
    if isinstance(value, time):
        return value.strftime("%H:%M")
    return str(value)[:5]


def _hold_from_record(record: asyncpg.Record) -> AppointmentHold:
    data = dict(record)
    for key in ("id", "organization_id", "staff_id", "room_id", "converted_to_session_id",
                "created_by_user_id", "created_by_contact_id"):
        if data.get(key) is not None:
            data[key] = str(data[key])
    data["start_time"] = _format_time(data["start_time"])
    data["end_time"] = _format_time(data["end_time"])
    return AppointmentHold.model_validate(data)


class AsyncpgBookingTransaction:
    """BookingTransaction over an asyncpg connection with an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def get_active_hold(self, hold_id, organization_id, now):
        record = await self.conn.fetchrow(
            """
            SELECT id, organization_id, staff_id, room_id, date, start_time, end_time,
                   expires_at, released_at, converted_to_session_id,
                   created_by_user_id, created_by_contact_id
            FROM appointment_holds
            WHERE id = $1
            AND organization_id = $2
            AND expires_at > $3
            AND released_at IS NULL
            AND converted_to_session_id IS NULL
            FOR UPDATE
            """,
            hold_id,
            organization_id,
            now,
        )
        return _hold_from_record(record) if record else None

    async def find_conflicting_session(
        self,
        organization_id,
        session_date,
        start_time,
        end_time,
        staff_id=None,
        patient_id=None,
        room_id=None,
    ):
        # Exclusive boundaries: start1 < end2 AND start2 < end1
        record = await self.conn.fetchrow(
            """
            SELECT s.id
            FROM sessions s
            JOIN schedules sc ON sc.id = s.schedule_id
            WHERE sc.organization_id = $1
            AND s.date = $2
            AND s.status NOT IN ('cancelled', 'late_cancel')
            AND s.start_time < $4
            AND s.end_time > $3
            AND (
                ($5::text IS NOT NULL AND s.therapist_id::text = $5)
                OR ($6::text IS NOT NULL AND s.patient_id::text = $6)
                OR ($7::text IS NOT NULL AND s.room_id::text = $7)
            )
            LIMIT 1
            """,
            organization_id,
            session_date,
            _to_time(start_time),
            _to_time(end_time),
            staff_id,
            patient_id,
            room_id,
        )
        return str(record["id"]) if record else None

    async def _resolve_schedule_creator(self, organization_id, created_by_user_id):
        if created_by_user_id:
            user = await self.conn.fetchrow(
                "SELECT id FROM users WHERE id::text = $1 AND organization_id = $2",
                created_by_user_id,
                organization_id,
            )
            if user:
                return user["id"]

        # Prefer admins, then assistants, then anyone; oldest first
        user = await self.conn.fetchrow(
            """
            SELECT id FROM users
            WHERE organization_id = $1
            ORDER BY CASE role
                WHEN 'admin' THEN 0
                WHEN 'super_admin' THEN 0
                WHEN 'admin_assistant' THEN 1
                ELSE 2
            END, created_at ASC
            LIMIT 1
            """,
            organization_id,
        )
        if not user:
            raise InvalidSchedulingRequestError(
                "Cannot create schedule: no users exist for this organization"
            )
        return user["id"]

    async def find_or_create_schedule(self, organization_id, week_start, created_by_user_id=None):
        existing = await self.conn.fetchrow(
            """
            SELECT id FROM schedules
            WHERE organization_id = $1 AND week_start_date = $2
            ORDER BY version DESC
            LIMIT 1
            """,
            organization_id,
            week_start,
        )
        if existing:
            return str(existing["id"])

        created_by = await self._resolve_schedule_creator(organization_id, created_by_user_id)
        schedule_id = str(uuid.uuid4())
        await self.conn.execute(
            """
            INSERT INTO schedules (id, organization_id, week_start_date, status, created_by_id, version)
            VALUES ($1, $2, $3, $4, $5, 1)
            """,
            schedule_id,
            organization_id,
            week_start,
            ScheduleStatus.DRAFT.value,
            created_by,
        )
        logger.info(f"Created draft schedule {schedule_id} for week {week_start}")
        return schedule_id

    async def create_session(self, session, booked_via, booked_by_contact_id=None):
        session_id = str(uuid.uuid4())
        await self.conn.execute(
            """
            INSERT INTO sessions (
                id, schedule_id, therapist_id, patient_id, room_id, date,
                start_time, end_time, notes, status, booked_via, booked_by_contact_id
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            """,
            session_id,
            session.schedule_id,
            session.therapist_id,
            session.patient_id,
            session.room_id,
            session.date,
            _to_time(session.start_time),
            _to_time(session.end_time),
            session.notes,
            SessionStatus.SCHEDULED.value,
            booked_via.value,
            booked_by_contact_id,
        )
        return session_id

    async def mark_hold_converted(self, hold_id, session_id):
        await self.conn.execute(
            "UPDATE appointment_holds SET converted_to_session_id = $2 WHERE id = $1",
            hold_id,
            session_id,
        )

    async def mark_hold_released(self, hold_id, released_at):
        await self.conn.execute(
            "UPDATE appointment_holds SET released_at = $2 WHERE id = $1",
            hold_id,
            released_at,
        )


class AsyncpgBookingStore:
    """BookingStore backed by an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool, isolation: str = None):
        isolation = isolation or config.BOOKING_ISOLATION_LEVEL
        if isolation not in ISOLATION_LEVELS:
            raise ValueError(
                f"Booking isolation must be one of {ISOLATION_LEVELS}, got {isolation!r}"
            )
        self.pool = pool
        self.isolation = isolation

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncpgBookingTransaction]:
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation=self.isolation):
                yield AsyncpgBookingTransaction(conn)
