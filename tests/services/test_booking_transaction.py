"""
Tests for hold-to-session booking
"""

from datetime import date, timedelta

import pytest

from therapy_scheduling.models.scheduling import BookingSource
from therapy_scheduling.services.booking_transaction import (
    SLOT_UNAVAILABLE_MESSAGE,
    BookingTransactionManager,
)
from tests.conftest import MONDAY, NOW, ORG_ID


@pytest.fixture
def manager(booking_store):
    return BookingTransactionManager(booking_store, clock=lambda: NOW)


class TestBookFromHold:
    """Converting holds into sessions"""

    @pytest.mark.asyncio
    async def test_clean_hold_creates_one_session_and_converts_hold(self, manager, booking_store):
        hold = booking_store.add_hold(room_id="r1")

        result = await manager.book_from_hold(
            hold.id, ORG_ID, "p1", BookingSource.PORTAL, booked_by_contact_id="contact-1"
        )

        assert result.success is True
        assert result.error is None
        assert list(booking_store.sessions) == [result.session_id]

        session = booking_store.sessions[result.session_id]
        assert session.therapist_id == "t1"
        assert session.patient_id == "p1"
        assert session.room_id == "r1"
        assert (session.date, session.start_time, session.end_time) == (MONDAY, "10:00", "11:00")
        assert session.booked_via == BookingSource.PORTAL
        assert session.booked_by_contact_id == "contact-1"
        assert booking_store.holds[hold.id].converted_to_session_id == result.session_id
        assert booking_store.commits == 1

    @pytest.mark.asyncio
    async def test_creates_draft_schedule_for_hold_week(self, manager, booking_store):
        hold = booking_store.add_hold(date=date(2025, 1, 9))

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        session = booking_store.sessions[result.session_id]
        schedule = booking_store.schedules[session.schedule_id]
        assert schedule["week_start_date"] == MONDAY
        assert schedule["status"] == "draft"

    @pytest.mark.asyncio
    async def test_uses_given_schedule(self, manager, booking_store):
        hold = booking_store.add_hold()

        result = await manager.book_from_hold(
            hold.id, ORG_ID, "p1", BookingSource.STAFF, schedule_id="sched-42", notes="intake"
        )

        session = booking_store.sessions[result.session_id]
        assert session.schedule_id == "sched-42"
        assert session.notes == "intake"
        assert booking_store.schedules == {}

    @pytest.mark.asyncio
    async def test_conflicting_session_fails_without_mutating_hold(self, manager, booking_store):
        booking_store.add_session(therapist_id="t1", start_time="10:30", end_time="11:30")
        hold = booking_store.add_hold()
        sessions_before = dict(booking_store.sessions)

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.success is False
        assert result.error == SLOT_UNAVAILABLE_MESSAGE == "Time slot is no longer available"
        assert booking_store.holds[hold.id] == hold
        assert booking_store.sessions == sessions_before

    @pytest.mark.asyncio
    async def test_room_conflict(self, manager, booking_store):
        booking_store.add_session(therapist_id="t7", patient_id="p7", room_id="r1")
        hold = booking_store.add_hold(room_id="r1")

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.error == SLOT_UNAVAILABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_patient_conflict(self, manager, booking_store):
        booking_store.add_session(therapist_id="t7", patient_id="p1")
        hold = booking_store.add_hold()

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.error == SLOT_UNAVAILABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_cancelled_and_adjacent_sessions_do_not_conflict(self, manager, booking_store):
        booking_store.add_session(status="cancelled")
        booking_store.add_session(status="late_cancel")
        booking_store.add_session(start_time="11:00", end_time="12:00")
        hold = booking_store.add_hold()

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_other_organization_sessions_do_not_conflict(self, manager, booking_store):
        booking_store.add_session(schedule_id="other-sched", organization_id="org-2")
        hold = booking_store.add_hold()

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_failure_after_session_creation_rolls_back_both_writes(self, manager, booking_store):
        hold = booking_store.add_hold()
        booking_store.fail_on = "mark_hold_converted"

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.success is False
        assert result.error == "Failed to complete booking"
        assert booking_store.sessions == {}
        assert booking_store.schedules == {}
        assert booking_store.holds[hold.id].converted_to_session_id is None
        assert booking_store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_hold_available_for_retry_after_rollback(self, manager, booking_store):
        hold = booking_store.add_hold()
        booking_store.fail_on = "create_session"

        first = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)
        booking_store.fail_on = None
        second = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert first.success is False
        assert second.success is True
        assert len(booking_store.sessions) == 1

    @pytest.mark.asyncio
    async def test_hold_converted_at_most_once(self, manager, booking_store):
        hold = booking_store.add_hold()

        first = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)
        second = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert first.success is True
        assert second.success is False
        assert second.error == "Hold has expired or is no longer valid"
        assert len(booking_store.sessions) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"expires_at": NOW - timedelta(seconds=1)},
        {"expires_at": NOW},
        {"released_at": NOW - timedelta(minutes=1)},
        {"organization_id": "org-2"},
    ])
    async def test_inactive_hold_rejected(self, manager, booking_store, overrides):
        hold = booking_store.add_hold(**overrides)

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.success is False
        assert result.error == "Hold has expired or is no longer valid"
        assert booking_store.sessions == {}

    @pytest.mark.asyncio
    async def test_unknown_hold(self, manager):
        result = await manager.book_from_hold("nope", ORG_ID, "p1", BookingSource.PORTAL)

        assert result.error == "Hold has expired or is no longer valid"

    @pytest.mark.asyncio
    async def test_hold_without_staff(self, manager, booking_store):
        hold = booking_store.add_hold(staff_id=None)

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.error == "Hold does not have a staff member assigned"


class TestBookDirect:
    """Booking without a hold"""

    @pytest.mark.asyncio
    async def test_direct_booking(self, manager, booking_store):
        result = await manager.book_direct(
            ORG_ID, "t1", "p1", MONDAY, "13:00", "14:00", BookingSource.ADMIN, room_id="r2"
        )

        assert result.success is True
        session = booking_store.sessions[result.session_id]
        assert session.booked_via == BookingSource.ADMIN
        assert session.room_id == "r2"

    @pytest.mark.asyncio
    async def test_direct_booking_conflict(self, manager, booking_store):
        booking_store.add_session(start_time="13:30", end_time="14:30")

        result = await manager.book_direct(ORG_ID, "t1", "p1", MONDAY, "13:00", "14:00", BookingSource.STAFF)

        assert result.success is False
        assert result.error == SLOT_UNAVAILABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_direct_booking_rejects_inverted_times(self, manager, booking_store):
        result = await manager.book_direct(ORG_ID, "t1", "p1", MONDAY, "14:00", "13:00", BookingSource.STAFF)

        assert result.error == "End time must be after start time"
        assert booking_store.commits == 0

    @pytest.mark.asyncio
    async def test_direct_booking_store_failure(self, manager, booking_store):
        booking_store.fail_on = "create_session"

        result = await manager.book_direct(ORG_ID, "t1", "p1", MONDAY, "13:00", "14:00", BookingSource.STAFF)

        assert result.error == "Failed to create booking"
        assert booking_store.schedules == {}


class TestReleaseHold:
    @pytest.mark.asyncio
    async def test_release_active_hold(self, manager, booking_store):
        hold = booking_store.add_hold()

        assert await manager.release_hold(hold.id, ORG_ID) is True
        assert booking_store.holds[hold.id].released_at == NOW

    @pytest.mark.asyncio
    async def test_released_hold_cannot_be_booked(self, manager, booking_store):
        hold = booking_store.add_hold()
        await manager.release_hold(hold.id, ORG_ID)

        result = await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert result.success is False

    @pytest.mark.asyncio
    async def test_release_of_converted_hold_fails(self, manager, booking_store):
        hold = booking_store.add_hold()
        await manager.book_from_hold(hold.id, ORG_ID, "p1", BookingSource.PORTAL)

        assert await manager.release_hold(hold.id, ORG_ID) is False
        assert booking_store.holds[hold.id].released_at is None

    @pytest.mark.asyncio
    async def test_release_store_failure(self, manager, booking_store):
        hold = booking_store.add_hold()
        booking_store.fail_on = "mark_hold_released"

        assert await manager.release_hold(hold.id, ORG_ID) is False
        assert booking_store.holds[hold.id].released_at is None
