"""
Booking transaction manager.

Converts appointment holds into committed sessions. Every step (hold lookup,
conflict re-check, session insert, hold update) runs inside a single
``BookingStore.transaction()``, so either both writes commit or neither does and
the hold stays available for a retry.

Usage:
    manager = BookingTransactionManager(AsyncpgBookingStore(pool))

    result = await manager.book_from_hold(
        hold_id="...",
        organization_id="...",
        patient_id="...",
        booked_via=BookingSource.PORTAL,
    )

    if result.success:
        session_id = result.session_id
    else:
        error = result.error
"""
import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional

from therapy_scheduling.exceptions import (
    HoldExpiredError,
    InvalidSchedulingRequestError,
    SchedulingError,
    SlotNotAvailableError,
)
from therapy_scheduling.models.scheduling import BookingResult, BookingSource, SessionCreate
from therapy_scheduling.services.booking_store import BookingStore
from therapy_scheduling.utils.time_intervals import time_to_minutes, week_start_date

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_MESSAGE = "Time slot is no longer available"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingTransactionManager:
    """
    The only place holds are converted to sessions.

    No retries happen here: a conflict or store failure is returned as
    ``BookingResult(success=False)`` and retrying is the caller's decision.
    """

    def __init__(self, store: BookingStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.clock = clock

    async def book_from_hold(
        self,
        hold_id: str,
        organization_id: str,
        patient_id: str,
        booked_via: BookingSource,
        booked_by_contact_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BookingResult:
        """
        Convert a hold into a committed session.

        Args:
            hold_id: Hold to convert
            organization_id: Organization the hold must belong to
            patient_id: Patient being booked
            booked_via: Booking channel
            booked_by_contact_id: Portal contact who booked, if any
            schedule_id: Target schedule; defaults to the hold week's schedule
                (created as a draft when missing)
            notes: Optional session notes

        Returns:
            BookingResult with session_id on success or error on failure
        """
        try:
            async with self.store.transaction() as tx:
                hold = await tx.get_active_hold(hold_id, organization_id, self.clock())
                if hold is None:
                    raise HoldExpiredError(hold_id)

                if not hold.staff_id:
                    raise InvalidSchedulingRequestError("Hold does not have a staff member assigned")

                conflict_id = await tx.find_conflicting_session(
                    organization_id,
                    hold.date,
                    hold.start_time,
                    hold.end_time,
                    staff_id=hold.staff_id,
                    patient_id=patient_id,
                    room_id=hold.room_id,
                )
                if conflict_id:
                    raise SlotNotAvailableError(SLOT_UNAVAILABLE_MESSAGE, conflicting_session_id=conflict_id)

                effective_schedule_id = schedule_id or await tx.find_or_create_schedule(
                    organization_id,
                    week_start_date(hold.date),
                    hold.created_by_user_id,
                )

                session_id = await tx.create_session(
                    SessionCreate(
                        schedule_id=effective_schedule_id,
                        therapist_id=hold.staff_id,
                        patient_id=patient_id,
                        room_id=hold.room_id,
                        date=hold.date,
                        start_time=hold.start_time,
                        end_time=hold.end_time,
                        notes=notes,
                    ),
                    booked_via,
                    booked_by_contact_id,
                )
                await tx.mark_hold_converted(hold_id, session_id)

        except SchedulingError as e:
            logger.info(f"Booking from hold {hold_id} rejected: {e}")
            return BookingResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Error booking from hold {hold_id}: {e}")
            return BookingResult(success=False, error="Failed to complete booking")

        logger.info(f"Hold {hold_id} converted → session {session_id}")
        return BookingResult(success=True, session_id=session_id)

    async def book_direct(
        self,
        organization_id: str,
        staff_id: str,
        patient_id: str,
        session_date: date,
        start_time: str,
        end_time: str,
        booked_via: BookingSource,
        room_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        notes: Optional[str] = None,
        booked_by_contact_id: Optional[str] = None,
        created_by_user_id: Optional[str] = None,
    ) -> BookingResult:
        """
        Book without a hold (staff/admin flows), with the same conflict re-check
        and transaction discipline as ``book_from_hold``.
        """
        if time_to_minutes(end_time) <= time_to_minutes(start_time):
            return BookingResult(success=False, error="End time must be after start time")

        try:
            async with self.store.transaction() as tx:
                conflict_id = await tx.find_conflicting_session(
                    organization_id,
                    session_date,
                    start_time,
                    end_time,
                    staff_id=staff_id,
                    patient_id=patient_id,
                    room_id=room_id,
                )
                if conflict_id:
                    raise SlotNotAvailableError(SLOT_UNAVAILABLE_MESSAGE, conflicting_session_id=conflict_id)

                effective_schedule_id = schedule_id or await tx.find_or_create_schedule(
                    organization_id,
                    week_start_date(session_date),
                    created_by_user_id,
                )

                session_id = await tx.create_session(
                    SessionCreate(
                        schedule_id=effective_schedule_id,
                        therapist_id=staff_id,
                        patient_id=patient_id,
                        room_id=room_id,
                        date=session_date,
                        start_time=start_time,
                        end_time=end_time,
                        notes=notes,
                    ),
                    booked_via,
                    booked_by_contact_id,
                )

        except SchedulingError as e:
            logger.info(f"Direct booking for staff {staff_id} on {session_date} rejected: {e}")
            return BookingResult(success=False, error=str(e))
        except Exception as e:
            logger.exception(f"Error in direct booking: {e}")
            return BookingResult(success=False, error="Failed to create booking")

        logger.info(f"Direct booking created session {session_id}")
        return BookingResult(success=True, session_id=session_id)

    async def release_hold(self, hold_id: str, organization_id: str) -> bool:
        """
        Release an active hold without booking it.

        Returns:
            True if the hold was released, False if it was missing, expired or
            already released/converted
        """
        try:
            async with self.store.transaction() as tx:
                now = self.clock()
                hold = await tx.get_active_hold(hold_id, organization_id, now)
                if hold is None:
                    return False
                await tx.mark_hold_released(hold_id, now)
        except Exception as e:
            logger.exception(f"Error releasing hold {hold_id}: {e}")
            return False

        logger.info(f"Hold {hold_id} released")
        return True
