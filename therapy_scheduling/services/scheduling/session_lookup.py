"""
Session lookup for voice-driven schedule modifications.

Resolves fuzzy descriptors ("Sarah's Friday session") to concrete sessions and
checks proposed moves for conflicts. Inputs come from an already-parsed command;
nothing here talks to the database.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from therapy_scheduling import config
from therapy_scheduling.exceptions import ScheduleNotEditableError
from therapy_scheduling.models.scheduling import Schedule, SessionWithDetails
from therapy_scheduling.utils.time_intervals import day_of_week, intervals_overlap, time_to_minutes

logger = logging.getLogger(__name__)

# Name scores: an exact full name must always outrank a partial match
EXACT_NAME_SCORE = 40
CONTAINED_NAME_SCORE = 30
PARTIAL_NAME_SCORE = 20
DAY_MATCH_SCORE = 30
TIME_MATCH_SCORE = 30


class SessionDescriptor(BaseModel):
    """Structured output of the natural-language command parser."""
    therapist_name: Optional[str] = None
    patient_name: Optional[str] = None
    day_of_week: Optional[str] = None
    start_time: Optional[str] = None

    def criteria(self) -> List[str]:
        """Human-readable search criteria, for not-found messages."""
        parts = []
        if self.therapist_name:
            parts.append(f'therapist "{self.therapist_name}"')
        if self.patient_name:
            parts.append(f'patient "{self.patient_name}"')
        if self.day_of_week:
            parts.append(f"on {self.day_of_week}")
        if self.start_time:
            parts.append(f"at {self.start_time}")
        return parts


class SessionMatch(BaseModel):
    session: SessionWithDetails
    match_score: int
    match_details: List[str] = Field(default_factory=list)


def normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


def name_match_score(search_name: str, actual_name: str) -> int:
    """
    Score how well a spoken name matches a stored one.

    40 for an exact (case/whitespace-insensitive) match, 30 when the search is
    contained in the stored name, 20 when first or last names agree, else 0.
    """
    search = normalize_name(search_name)
    actual = normalize_name(actual_name)
    if not search or not actual:
        return 0

    if search == actual:
        return EXACT_NAME_SCORE

    if search in actual:
        return CONTAINED_NAME_SCORE

    search_parts = search.split(" ")
    actual_parts = actual.split(" ")

    if search_parts[0] == actual_parts[0]:
        return PARTIAL_NAME_SCORE

    if len(search_parts) > 1 and len(actual_parts) > 1 and search_parts[-1] == actual_parts[-1]:
        return PARTIAL_NAME_SCORE

    return 0


def fuzzy_name_match(search_name: str, actual_name: str) -> bool:
    return name_match_score(search_name, actual_name) > 0


def _spoken_time_minutes(value: str) -> Optional[int]:
    """Minutes for a parsed spoken time; "9:00" and "09:00" are the same time."""
    try:
        return time_to_minutes(value.strip().zfill(5))
    except ValueError:
        logger.debug(f"Ignoring unparseable descriptor time: {value!r}")
        return None


def find_matching_sessions(
    sessions: Iterable[SessionWithDetails],
    descriptor: SessionDescriptor,
) -> List[SessionMatch]:
    """
    Rank sessions against a descriptor.

    Only sessions matching at least one criterion are returned, highest score
    first; ties keep chronological order. An empty list means nothing matched.
    """
    ordered = sorted(sessions, key=lambda s: (s.date, s.start_time))
    wanted_day = descriptor.day_of_week.lower().strip() if descriptor.day_of_week else None
    wanted_minutes = _spoken_time_minutes(descriptor.start_time) if descriptor.start_time else None

    results: List[SessionMatch] = []
    for session in ordered:
        score = 0
        details: List[str] = []

        if descriptor.therapist_name and session.therapist_name:
            therapist_score = name_match_score(descriptor.therapist_name, session.therapist_name)
            if therapist_score:
                score += therapist_score
                details.append(f"Therapist: {session.therapist_name}")

        if descriptor.patient_name and session.patient_name:
            patient_score = name_match_score(descriptor.patient_name, session.patient_name)
            if patient_score:
                score += patient_score
                details.append(f"Patient: {session.patient_name}")

        if wanted_day:
            session_day = day_of_week(session.date).value
            if session_day == wanted_day:
                score += DAY_MATCH_SCORE
                details.append(f"Day: {session_day}")

        if wanted_minutes is not None and time_to_minutes(session.start_time) == wanted_minutes:
            score += TIME_MATCH_SCORE
            details.append(f"Time: {session.start_time}")

        if score > 0:
            results.append(SessionMatch(session=session, match_score=score, match_details=details))

    results.sort(key=lambda match: match.match_score, reverse=True)
    return results


def find_best_matching_session(
    sessions: Iterable[SessionWithDetails],
    descriptor: SessionDescriptor,
    threshold: Optional[int] = None,
) -> Optional[SessionWithDetails]:
    """Highest-ranked session if its score reaches ``threshold``."""
    threshold = config.VOICE_MATCH_THRESHOLD if threshold is None else threshold
    matches = find_matching_sessions(sessions, descriptor)
    if matches and matches[0].match_score >= threshold:
        return matches[0].session
    return None


def check_for_conflicts(
    sessions: Iterable[SessionWithDetails],
    candidate: SessionWithDetails,
    new_start: str,
    new_end: str,
    new_date: Optional[date] = None,
) -> List[SessionWithDetails]:
    """
    Sessions that would collide with ``candidate`` moved to ``new_start``-``new_end``.

    Considers every other active session on the target date that shares the
    candidate's therapist or patient. The candidate itself is excluded.
    """
    target_date = new_date or candidate.date
    conflicts = []

    for session in sessions:
        if session.id == candidate.id or not session.is_active:
            continue
        if session.date != target_date:
            continue
        if session.therapist_id != candidate.therapist_id and session.patient_id != candidate.patient_id:
            continue
        if intervals_overlap(new_start, new_end, session.start_time, session.end_time):
            conflicts.append(session)

    if conflicts:
        logger.debug(
            f"Moving session {candidate.id} to {target_date} {new_start}-{new_end} "
            f"conflicts with {len(conflicts)} sessions"
        )
    return conflicts


def ensure_schedule_editable(schedule: Schedule) -> None:
    """
    Raises:
        ScheduleNotEditableError: Unless the schedule is still a draft
    """
    if not schedule.is_editable:
        raise ScheduleNotEditableError(schedule.id, schedule.status.value)
