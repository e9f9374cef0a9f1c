"""
Supabase-backed schedule repository.

Loads a schedule with its sessions (joined with therapist and patient names) and
applies single-session edits for voice modifications. Every query is scoped by
organization or schedule so a session id from another tenant never matches.
"""

import logging
from typing import Any, Dict, Optional

from supabase import Client

from therapy_scheduling.models.scheduling import Schedule, SessionWithDetails

logger = logging.getLogger(__name__)

SESSION_SELECT = "*, therapist:therapist_id(name), patient:patient_id(name)"


def _session_from_row(row: Dict[str, Any]) -> SessionWithDetails:
    data = dict(row)
    therapist = data.pop("therapist", None) or {}
    patient = data.pop("patient", None) or {}
    data["therapist_name"] = therapist.get("name")
    data["patient_name"] = patient.get("name")
    data["start_time"] = str(data["start_time"])[:5]
    data["end_time"] = str(data["end_time"])[:5]
    return SessionWithDetails.model_validate(data)


class SupabaseScheduleRepository:
    """Schedule reads and session edits through the Supabase REST API"""

    def __init__(self, supabase_client: Client):
        self.supabase = supabase_client

    async def get_schedule_with_sessions(
        self, schedule_id: str, organization_id: str
    ) -> Optional[Schedule]:
        result = self.supabase.table("schedules").select(
            "id, organization_id, week_start_date, status, version"
        ).eq("id", schedule_id).eq("organization_id", organization_id).limit(1).execute()

        if not result.data:
            return None

        sessions = self.supabase.table("sessions").select(SESSION_SELECT).eq(
            "schedule_id", schedule_id
        ).order("date").order("start_time").execute()

        schedule = Schedule.model_validate(result.data[0])
        schedule.sessions = [_session_from_row(row) for row in sessions.data or []]
        return schedule

    async def delete_session(self, session_id: str, schedule_id: str) -> bool:
        result = self.supabase.table("sessions").delete().eq(
            "id", session_id
        ).eq("schedule_id", schedule_id).execute()

        if result.data:
            logger.info(f"Deleted session {session_id} from schedule {schedule_id}")
            return True
        logger.warning(f"Session {session_id} not found in schedule {schedule_id}")
        return False

    async def update_session(
        self, session_id: str, schedule_id: str, changes: Dict[str, Any]
    ) -> Optional[SessionWithDetails]:
        payload = {
            key: value.isoformat() if hasattr(value, "isoformat") else value
            for key, value in changes.items()
        }
        result = self.supabase.table("sessions").update(payload).eq(
            "id", session_id
        ).eq("schedule_id", schedule_id).execute()

        if not result.data:
            logger.warning(f"Failed to update session {session_id} in schedule {schedule_id}")
            return None

        logger.info(f"Updated session {session_id}: {', '.join(sorted(payload))}")
        return _session_from_row(result.data[0])
