"""
Voice-driven schedule modifications.

Takes a command already extracted from speech (action plus fuzzy descriptors),
resolves it to a single session of a draft schedule, checks the change for
conflicts and applies it through the schedule repository.
"""

import logging
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel

from therapy_scheduling import config
from therapy_scheduling.exceptions import (
    InvalidSchedulingRequestError,
    ScheduleNotFoundError,
    SessionConflictError,
    SessionNotFoundError,
)
from therapy_scheduling.models.scheduling import Schedule, SessionWithDetails
from therapy_scheduling.services.schedule_repository import SupabaseScheduleRepository
from therapy_scheduling.services.scheduling.session_lookup import (
    SessionDescriptor,
    check_for_conflicts,
    ensure_schedule_editable,
    find_matching_sessions,
)
from therapy_scheduling.utils.time_intervals import (
    calculate_new_end_time,
    get_date_for_day_of_week,
    time_to_minutes,
)

logger = logging.getLogger(__name__)


class VoiceModificationCommand(BaseModel):
    """Structured command from the natural-language layer."""
    action: Literal["cancel", "move", "swap", "create"]
    therapist_name: Optional[str] = None
    patient_name: Optional[str] = None
    current_day_of_week: Optional[str] = None
    current_start_time: Optional[str] = None
    new_day_of_week: Optional[str] = None
    new_date: Optional[date] = None
    new_start_time: Optional[str] = None
    new_end_time: Optional[str] = None

    def descriptor(self) -> SessionDescriptor:
        return SessionDescriptor(
            therapist_name=self.therapist_name,
            patient_name=self.patient_name,
            day_of_week=self.current_day_of_week,
            start_time=self.current_start_time,
        )


class SessionTimeRef(BaseModel):
    date: date
    start_time: str


class VoiceModificationResult(BaseModel):
    action: Literal["cancelled", "moved"]
    session: SessionWithDetails
    message: str
    moved_from: Optional[SessionTimeRef] = None
    moved_to: Optional[SessionTimeRef] = None


class VoiceModificationService:
    """Applies voice commands to draft schedules"""

    def __init__(self, repository: SupabaseScheduleRepository, default_duration_minutes: int = None):
        self.repository = repository
        self.default_duration_minutes = default_duration_minutes or config.DEFAULT_SESSION_MINUTES

    async def modify(
        self,
        organization_id: str,
        schedule_id: str,
        command: VoiceModificationCommand,
    ) -> VoiceModificationResult:
        """
        Resolve and apply a voice modification.

        Raises:
            ScheduleNotFoundError: Schedule missing or in another organization
            ScheduleNotEditableError: Schedule is not a draft
            SessionNotFoundError: Nothing matches the command's descriptors
            SessionConflictError: The move collides with another session
            InvalidSchedulingRequestError: Unsupported action or bad times
        """
        schedule = await self.repository.get_schedule_with_sessions(schedule_id, organization_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)

        ensure_schedule_editable(schedule)

        if command.action == "swap":
            raise InvalidSchedulingRequestError(
                "Session swap is not supported. Please use move to reschedule sessions individually."
            )
        if command.action == "create":
            raise InvalidSchedulingRequestError(
                "To create a new session, use the regular add session endpoint."
            )

        descriptor = command.descriptor()
        matches = find_matching_sessions(schedule.sessions, descriptor)
        if not matches:
            raise SessionNotFoundError(
                f"Could not find a session matching: {', '.join(descriptor.criteria())}"
            )

        session = matches[0].session
        logger.info(
            f"Voice {command.action} resolved to session {session.id} "
            f"(score {matches[0].match_score}: {'; '.join(matches[0].match_details)})"
        )

        if command.action == "cancel":
            return await self._cancel(schedule.id, session)
        return await self._move(schedule, session, command)

    async def _cancel(self, schedule_id: str, session: SessionWithDetails) -> VoiceModificationResult:
        deleted = await self.repository.delete_session(session.id, schedule_id)
        if not deleted:
            raise SessionNotFoundError(f"Failed to cancel session {session.id}")

        return VoiceModificationResult(
            action="cancelled",
            session=session,
            message=(
                f"Cancelled {session.therapist_name or 'therapist'}'s session with "
                f"{session.patient_name or 'patient'} at {session.start_time}"
            ),
        )

    async def _move(self, schedule: Schedule, session: SessionWithDetails, command: VoiceModificationCommand) -> VoiceModificationResult:
        if command.new_day_of_week:
            try:
                new_date = get_date_for_day_of_week(schedule.week_start_date, command.new_day_of_week)
            except ValueError as e:
                raise InvalidSchedulingRequestError(str(e))
        else:
            new_date = command.new_date or session.date

        new_start = command.new_start_time or session.start_time
        try:
            new_end = command.new_end_time or calculate_new_end_time(new_start, self.default_duration_minutes)
            if time_to_minutes(new_end) <= time_to_minutes(new_start):
                raise InvalidSchedulingRequestError(f"End time {new_end} must be after start time {new_start}")
        except ValueError as e:
            raise InvalidSchedulingRequestError(str(e))

        conflicts = check_for_conflicts(schedule.sessions, session, new_start, new_end, new_date)
        if conflicts:
            conflict = conflicts[0]
            raise SessionConflictError(
                f"Time conflict: {conflict.therapist_name or 'Therapist'} already has a session with "
                f"{conflict.patient_name or 'patient'} at {conflict.start_time}",
                conflicts=conflicts,
            )

        updated = await self.repository.update_session(session.id, schedule.id, {
            "date": new_date,
            "start_time": new_start,
            "end_time": new_end,
        })
        if updated is None:
            raise SessionNotFoundError(f"Failed to move session {session.id}")

        updated = updated.model_copy(update={
            "therapist_name": session.therapist_name,
            "patient_name": session.patient_name,
        })

        return VoiceModificationResult(
            action="moved",
            session=updated,
            message=(
                f"Moved {session.therapist_name or 'therapist'}'s session from "
                f"{session.start_time} to {new_start}"
            ),
            moved_from=SessionTimeRef(date=session.date, start_time=session.start_time),
            moved_to=SessionTimeRef(date=new_date, start_time=new_start),
        )
