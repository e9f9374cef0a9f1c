"""Data models for the scheduling core."""
from therapy_scheduling.models.scheduling import (
    AppointmentHold,
    BookingResult,
    GeneratedSession,
    PatientForScheduling,
    Schedule,
    Session,
    SessionWithDetails,
    StaffForScheduling,
)
from therapy_scheduling.models.repair import RepairRequest, RepairResponse

__all__ = [
    "AppointmentHold",
    "BookingResult",
    "GeneratedSession",
    "PatientForScheduling",
    "Schedule",
    "Session",
    "SessionWithDetails",
    "StaffForScheduling",
    "RepairRequest",
    "RepairResponse",
]
