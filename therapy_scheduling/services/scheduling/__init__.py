"""Scheduling services: candidate validation, repair protocol and session lookup."""

from .session_validator import SessionValidator, validate_sessions
from .schedule_repair import build_repair_prompt, validate_repair_response
from .session_lookup import check_for_conflicts, find_matching_sessions

__all__ = [
    "SessionValidator",
    "validate_sessions",
    "build_repair_prompt",
    "validate_repair_response",
    "check_for_conflicts",
    "find_matching_sessions",
]
