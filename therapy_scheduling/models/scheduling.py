"""
Pydantic models for scheduling rosters, sessions, schedules and holds.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class SessionStatus(str, Enum):
    """Lifecycle status of a committed session."""
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    LATE_CANCEL = "late_cancel"
    NO_SHOW = "no_show"


# Sessions in these states free their slot and never count as conflicts
INACTIVE_SESSION_STATUSES = frozenset({SessionStatus.CANCELLED, SessionStatus.LATE_CANCEL})


class ScheduleStatus(str, Enum):
    """Schedule state machine: draft -> published -> archived."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class BookingSource(str, Enum):
    """Channel a booking came through."""
    PORTAL = "portal"
    STAFF = "staff"
    ADMIN = "admin"
    VOICE = "voice"


class WorkingHours(BaseModel):
    """Daily working window in HH:MM."""
    start: str = Field(..., pattern=TIME_PATTERN)
    end: str = Field(..., pattern=TIME_PATTERN)


class StaffForScheduling(BaseModel):
    """Staff member as seen by the validator."""
    id: str
    name: str
    gender: Gender = Gender.OTHER
    certifications: List[str] = Field(default_factory=list)
    default_hours: Dict[str, Optional[WorkingHours]] = Field(
        default_factory=dict,
        description="Lowercase day name -> working hours (missing or null = not working)"
    )


class PatientForScheduling(BaseModel):
    """Patient as seen by the validator."""
    id: str
    name: str
    identifier: Optional[str] = None
    gender: Gender = Gender.OTHER
    session_frequency: int = Field(0, ge=0, description="Requested sessions per schedule")
    required_certifications: List[str] = Field(default_factory=list)
    preferred_times: Optional[List[str]] = None
    required_room_capabilities: List[str] = Field(default_factory=list)


class RoomForScheduling(BaseModel):
    id: str
    name: str
    capabilities: List[str] = Field(default_factory=list)


class GeneratedSession(BaseModel):
    """Candidate session produced by a generator, not yet validated."""
    therapist_id: str
    patient_id: str
    room_id: Optional[str] = None
    date: date
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    notes: Optional[str] = None


class SessionCreate(BaseModel):
    """Validated session ready to be persisted; schedule_id is set by the caller."""
    schedule_id: str = ""
    therapist_id: str
    patient_id: str
    room_id: Optional[str] = None
    date: date
    start_time: str
    end_time: str
    notes: Optional[str] = None


class Session(BaseModel):
    """Committed session."""
    id: str
    schedule_id: Optional[str] = None
    therapist_id: str
    patient_id: str
    room_id: Optional[str] = None
    date: date
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    status: SessionStatus = SessionStatus.SCHEDULED
    notes: Optional[str] = None
    booked_via: Optional[BookingSource] = None
    booked_by_contact_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_SESSION_STATUSES


class SessionWithDetails(Session):
    """Session joined with display names for lookup and messages."""
    therapist_name: Optional[str] = None
    patient_name: Optional[str] = None


class Schedule(BaseModel):
    id: str
    organization_id: str
    week_start_date: date
    status: ScheduleStatus = ScheduleStatus.DRAFT
    version: int = 1
    sessions: List[SessionWithDetails] = Field(default_factory=list)

    @property
    def is_editable(self) -> bool:
        return self.status == ScheduleStatus.DRAFT


class AppointmentHold(BaseModel):
    """
    Short-lived reservation of a staff/room/time slot.

    released_at and converted_to_session_id are mutually exclusive terminal
    states; a hold is never reused after either is set.
    """
    id: str
    organization_id: str
    staff_id: Optional[str] = None
    room_id: Optional[str] = None
    date: date
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    expires_at: datetime
    released_at: Optional[datetime] = None
    converted_to_session_id: Optional[str] = None
    created_by_user_id: Optional[str] = None
    created_by_contact_id: Optional[str] = None

    def is_active(self, now: datetime) -> bool:
        return (
            self.expires_at > now
            and self.released_at is None
            and self.converted_to_session_id is None
        )


class BookingResult(BaseModel):
    """Outcome of a booking attempt."""
    success: bool
    session_id: Optional[str] = None
    error: Optional[str] = None


class SessionValidationError(BaseModel):
    """A rejected candidate with every reason it was rejected."""
    session: GeneratedSession
    errors: List[str]


class ValidationOutcome(BaseModel):
    """Partition of generator candidates into accepted and rejected sessions."""
    valid: List[SessionCreate] = Field(default_factory=list)
    errors: List[SessionValidationError] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
