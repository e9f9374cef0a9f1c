"""
Custom exceptions for the therapy scheduling core.
"""


class SchedulingError(Exception):
    """Base class for expected scheduling failures."""


class HoldExpiredError(SchedulingError):
    """Raised when attempting to convert an expired or finished hold."""

    def __init__(self, hold_id: str = None):
        self.hold_id = hold_id
        super().__init__("Hold has expired or is no longer valid")


class HoldNotFoundError(SchedulingError):
    """Raised when a hold is not found."""

    def __init__(self, hold_id: str):
        self.hold_id = hold_id
        super().__init__(f"Hold {hold_id} not found")


class SlotNotAvailableError(SchedulingError):
    """Raised when attempting to hold or book an unavailable slot."""

    def __init__(self, message: str = "Time slot is no longer available", conflicting_session_id: str = None):
        self.conflicting_session_id = conflicting_session_id
        self.message = message
        super().__init__(self.message)


class ScheduleNotFoundError(SchedulingError):
    """Raised when a schedule does not exist in the organization."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule {schedule_id} not found")


class ScheduleNotEditableError(SchedulingError):
    """Raised when modifying a schedule that is not a draft."""

    def __init__(self, schedule_id: str, status: str):
        self.schedule_id = schedule_id
        self.status = status
        super().__init__("Cannot modify a published schedule. Please unpublish it first.")


class SessionNotFoundError(SchedulingError):
    """Raised when no session matches a lookup."""

    def __init__(self, message: str):
        super().__init__(message)


class SessionConflictError(SchedulingError):
    """Raised when a proposed session time collides with existing sessions."""

    def __init__(self, message: str, conflicts=None):
        self.conflicts = conflicts or []
        super().__init__(message)


class InvalidSchedulingRequestError(SchedulingError):
    """Raised when a scheduling request is invalid."""

    def __init__(self, message: str):
        super().__init__(message)


class RepairPlannerError(SchedulingError):
    """Raised when the repair planner returns something that cannot be parsed."""

    def __init__(self, message: str, raw_content: str = None):
        self.raw_content = raw_content
        super().__init__(message)
