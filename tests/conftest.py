"""
Shared fixtures: scheduling rosters and an in-memory transactional booking store.
"""

import copy
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone

import pytest

from therapy_scheduling.models.scheduling import (
    AppointmentHold,
    PatientForScheduling,
    RoomForScheduling,
    Session,
    SessionWithDetails,
    StaffForScheduling,
    WorkingHours,
)
from therapy_scheduling.utils.time_intervals import intervals_overlap

ORG_ID = "org-1"
MONDAY = date(2025, 1, 6)
NOW = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)


class StoreFailure(RuntimeError):
    """Injected persistence failure."""


class InMemoryBookingTransaction:
    """BookingTransaction over plain dicts; the owning store handles rollback."""

    def __init__(self, store: "InMemoryBookingStore"):
        self.store = store

    def _maybe_fail(self, operation: str):
        if self.store.fail_on == operation:
            raise StoreFailure(f"{operation} failed")

    async def get_active_hold(self, hold_id, organization_id, now):
        hold = self.store.holds.get(hold_id)
        if hold is None or hold.organization_id != organization_id or not hold.is_active(now):
            return None
        return hold.model_copy()

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
        for session in self.store.sessions.values():
            schedule = self.store.schedules.get(session.schedule_id)
            if schedule is None or schedule["organization_id"] != organization_id:
                continue
            if not session.is_active or session.date != session_date:
                continue
            if not intervals_overlap(session.start_time, session.end_time, start_time, end_time):
                continue
            if (
                (staff_id and session.therapist_id == staff_id)
                or (patient_id and session.patient_id == patient_id)
                or (room_id and session.room_id == room_id)
            ):
                return session.id
        return None

    async def find_or_create_schedule(self, organization_id, week_start, created_by_user_id=None):
        for schedule_id, schedule in self.store.schedules.items():
            if schedule["organization_id"] == organization_id and schedule["week_start_date"] == week_start:
                return schedule_id
        schedule_id = f"schedule-{len(self.store.schedules) + 1}"
        self.store.schedules[schedule_id] = {
            "organization_id": organization_id,
            "week_start_date": week_start,
            "status": "draft",
        }
        return schedule_id

    async def create_session(self, session, booked_via, booked_by_contact_id=None):
        self._maybe_fail("create_session")
        session_id = f"session-{len(self.store.sessions) + 1}"
        self.store.sessions[session_id] = Session(
            id=session_id,
            booked_via=booked_via,
            booked_by_contact_id=booked_by_contact_id,
            **session.model_dump(),
        )
        return session_id

    async def mark_hold_converted(self, hold_id, session_id):
        self._maybe_fail("mark_hold_converted")
        hold = self.store.holds[hold_id]
        self.store.holds[hold_id] = hold.model_copy(update={"converted_to_session_id": session_id})

    async def mark_hold_released(self, hold_id, released_at):
        self._maybe_fail("mark_hold_released")
        hold = self.store.holds[hold_id]
        self.store.holds[hold_id] = hold.model_copy(update={"released_at": released_at})


class InMemoryBookingStore:
    """
    BookingStore fake with snapshot rollback.

    Set ``fail_on`` to an operation name to make it raise inside the
    transaction; all writes made before the failure are discarded.
    """

    def __init__(self):
        self.holds = {}
        self.sessions = {}
        self.schedules = {}
        self.fail_on = None
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy((self.holds, self.sessions, self.schedules))
        try:
            yield InMemoryBookingTransaction(self)
        except BaseException:
            self.holds, self.sessions, self.schedules = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    def add_hold(self, **overrides) -> AppointmentHold:
        data = {
            "id": f"hold-{len(self.holds) + 1}",
            "organization_id": ORG_ID,
            "staff_id": "t1",
            "room_id": None,
            "date": MONDAY,
            "start_time": "10:00",
            "end_time": "11:00",
            "expires_at": NOW + timedelta(minutes=5),
        }
        data.update(overrides)
        hold = AppointmentHold(**data)
        self.holds[hold.id] = hold
        return hold

    def add_session(self, schedule_id="schedule-existing", organization_id=ORG_ID, **overrides) -> Session:
        if schedule_id not in self.schedules:
            self.schedules[schedule_id] = {
                "organization_id": organization_id,
                "week_start_date": MONDAY,
                "status": "draft",
            }
        data = {
            "id": f"existing-{len(self.sessions) + 1}",
            "schedule_id": schedule_id,
            "therapist_id": "t1",
            "patient_id": "p9",
            "date": MONDAY,
            "start_time": "10:00",
            "end_time": "11:00",
        }
        data.update(overrides)
        session = Session(**data)
        self.sessions[session.id] = session
        return session


@pytest.fixture
def booking_store():
    return InMemoryBookingStore()


@pytest.fixture
def staff():
    """Sarah works weekdays with ABA; Michael only works Mondays."""
    weekday_hours = WorkingHours(start="09:00", end="17:00")
    return [
        StaffForScheduling(
            id="t1",
            name="Sarah Johnson",
            gender="female",
            certifications=["ABA", "PECS"],
            default_hours={
                "monday": weekday_hours,
                "tuesday": weekday_hours,
                "wednesday": weekday_hours,
                "thursday": weekday_hours,
                "friday": weekday_hours,
            },
        ),
        StaffForScheduling(
            id="t2",
            name="Michael Chen",
            gender="male",
            certifications=[],
            default_hours={"monday": WorkingHours(start="12:00", end="18:00"), "tuesday": None},
        ),
    ]


@pytest.fixture
def patients():
    return [
        PatientForScheduling(
            id="p1",
            name="Emma Wilson",
            identifier="P-001",
            session_frequency=2,
            required_certifications=["ABA"],
        ),
        PatientForScheduling(id="p2", name="Liam Brown", session_frequency=1),
    ]


@pytest.fixture
def rooms():
    return [
        RoomForScheduling(id="r1", name="Sensory Room", capabilities=["sensory", "swing"]),
        RoomForScheduling(id="r2", name="Room B"),
    ]


def make_session(**overrides) -> SessionWithDetails:
    data = {
        "id": "s1",
        "schedule_id": "sched-1",
        "therapist_id": "t1",
        "patient_id": "p1",
        "date": MONDAY,
        "start_time": "09:00",
        "end_time": "10:00",
        "therapist_name": "Sarah Johnson",
        "patient_name": "Emma Wilson",
    }
    data.update(overrides)
    return SessionWithDetails(**data)


@pytest.fixture
def week_sessions():
    """A small draft week: Sarah on Monday and Friday, Michael on Monday."""
    return [
        make_session(id="s1"),
        make_session(id="s2", date=date(2025, 1, 10), start_time="14:00", end_time="15:00"),
        make_session(
            id="s3",
            therapist_id="t2",
            therapist_name="Michael Chen",
            patient_id="p2",
            patient_name="Liam Brown",
            start_time="13:00",
            end_time="14:00",
        ),
        make_session(
            id="s4",
            therapist_id="t3",
            therapist_name="Sarah Miller",
            patient_id="p3",
            patient_name="Noah Davis",
            date=date(2025, 1, 7),
            start_time="09:00",
            end_time="10:00",
        ),
    ]
