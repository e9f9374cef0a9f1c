"""
Session Validator for generated schedules.

Checks candidate sessions from a generator (rule-based or AI) against hard
constraints before they are persisted:
- Staff/patient/room resolution
- Certification coverage
- Staff working hours
- Therapist, patient and room overlaps against already accepted candidates

Frequency mismatches and days without configured hours are advisory warnings.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from therapy_scheduling.models.scheduling import (
    GeneratedSession,
    PatientForScheduling,
    RoomForScheduling,
    SessionCreate,
    SessionValidationError,
    StaffForScheduling,
    ValidationOutcome,
)
from therapy_scheduling.utils.time_intervals import (
    day_of_week,
    interval_contains,
    intervals_overlap,
    time_to_minutes,
)

logger = logging.getLogger(__name__)

# (date, start minutes, end minutes)
_Booked = Tuple[date, int, int]


def _has_overlap(booked: List[_Booked], session_date: date, start: int, end: int) -> bool:
    return any(
        booked_date == session_date and intervals_overlap(booked_start, booked_end, start, end)
        for booked_date, booked_start, booked_end in booked
    )


class SessionValidator:
    """
    Validates generator output against rosters.

    Stateless: every call to ``validate`` works only on its arguments, so a
    single instance can be shared between concurrent requests.
    """

    def validate(
        self,
        candidates: Sequence[GeneratedSession],
        staff: Iterable[StaffForScheduling],
        patients: Iterable[PatientForScheduling],
        rooms: Iterable[RoomForScheduling] = (),
    ) -> ValidationOutcome:
        """
        Partition candidates into accepted sessions and rejections.

        Args:
            candidates: Generator output, processed in order
            staff: Staff roster
            patients: Patient roster
            rooms: Room roster (only consulted for candidates with a room)

        Returns:
            ValidationOutcome with valid sessions in input order, one error entry
            per rejected candidate and advisory warnings
        """
        patients = list(patients)
        staff_by_id = {s.id: s for s in staff}
        patients_by_id = {p.id: p for p in patients}
        rooms_by_id = {r.id: r for r in rooms}

        outcome = ValidationOutcome()

        therapist_booked: Dict[str, List[_Booked]] = defaultdict(list)
        patient_booked: Dict[str, List[_Booked]] = defaultdict(list)
        room_booked: Dict[str, List[_Booked]] = defaultdict(list)

        for candidate in candidates:
            therapist = staff_by_id.get(candidate.therapist_id)
            patient = patients_by_id.get(candidate.patient_id)

            if therapist is None or patient is None:
                errors = []
                if therapist is None:
                    errors.append(f"Therapist {candidate.therapist_id} not found")
                if patient is None:
                    errors.append(f"Patient {candidate.patient_id} not found")
                outcome.errors.append(SessionValidationError(session=candidate, errors=errors))
                continue

            start = time_to_minutes(candidate.start_time)
            end = time_to_minutes(candidate.end_time)
            errors: List[str] = []

            if end <= start:
                errors.append(
                    f"Session time {candidate.start_time}-{candidate.end_time} ends before it starts"
                )

            missing_certs = [
                cert for cert in patient.required_certifications
                if cert not in therapist.certifications
            ]
            if missing_certs:
                errors.append(
                    f"Therapist {therapist.name} missing certifications: {', '.join(missing_certs)}"
                )

            day = day_of_week(candidate.date).value
            hours = therapist.default_hours.get(day)
            if hours:
                if not interval_contains(hours.start, hours.end, start, end):
                    errors.append(
                        f"Session time {candidate.start_time}-{candidate.end_time} outside "
                        f"{therapist.name}'s hours ({hours.start}-{hours.end})"
                    )
            else:
                outcome.warnings.append(
                    f"{therapist.name} doesn't have scheduled hours on {day}, but was assigned a session"
                )

            if _has_overlap(therapist_booked[therapist.id], candidate.date, start, end):
                errors.append(
                    f"Therapist {therapist.name} has overlapping sessions on {candidate.date.isoformat()}"
                )

            if _has_overlap(patient_booked[patient.id], candidate.date, start, end):
                errors.append(
                    f"Patient {patient.name} has overlapping sessions on {candidate.date.isoformat()}"
                )

            errors.extend(
                self._check_room(candidate, patient, rooms_by_id, room_booked, start, end, outcome.warnings)
            )

            if errors:
                outcome.errors.append(SessionValidationError(session=candidate, errors=errors))
                continue

            booked = (candidate.date, start, end)
            therapist_booked[therapist.id].append(booked)
            patient_booked[patient.id].append(booked)
            if candidate.room_id:
                room_booked[candidate.room_id].append(booked)

            outcome.valid.append(SessionCreate(
                therapist_id=candidate.therapist_id,
                patient_id=candidate.patient_id,
                room_id=candidate.room_id,
                date=candidate.date,
                start_time=candidate.start_time,
                end_time=candidate.end_time,
                notes=candidate.notes,
            ))

        for patient in patients:
            scheduled = len(patient_booked.get(patient.id, []))
            if scheduled != patient.session_frequency:
                display_id = patient.identifier or patient.id
                outcome.warnings.append(
                    f"Patient {patient.name} (ID: {display_id}) is scheduled for {scheduled} "
                    f"sessions instead of the requested {patient.session_frequency}."
                )

        logger.debug(
            f"Validated {len(candidates)} candidate sessions: {len(outcome.valid)} valid, "
            f"{len(outcome.errors)} rejected, {len(outcome.warnings)} warnings"
        )
        return outcome

    @staticmethod
    def _check_room(
        candidate: GeneratedSession,
        patient: PatientForScheduling,
        rooms_by_id: Dict[str, RoomForScheduling],
        room_booked: Dict[str, List[_Booked]],
        start: int,
        end: int,
        warnings: List[str],
    ) -> List[str]:
        errors = []
        required = patient.required_room_capabilities

        if not candidate.room_id:
            if required:
                warnings.append(
                    f"Patient {patient.name} requires room capabilities ({', '.join(required)}) "
                    f"but no room was assigned to this session"
                )
            return errors

        room: Optional[RoomForScheduling] = rooms_by_id.get(candidate.room_id)
        if room is None:
            errors.append(f"Room {candidate.room_id} not found")
            return errors

        if _has_overlap(room_booked[room.id], candidate.date, start, end):
            errors.append(f"Room {room.name} has overlapping sessions on {candidate.date.isoformat()}")

        missing = [cap for cap in required if cap not in room.capabilities]
        if missing:
            errors.append(f"Room {room.name} missing required capabilities: {', '.join(missing)}")

        return errors


def validate_sessions(
    candidates: Sequence[GeneratedSession],
    staff: Iterable[StaffForScheduling],
    patients: Iterable[PatientForScheduling],
    rooms: Iterable[RoomForScheduling] = (),
) -> ValidationOutcome:
    """Module-level shortcut for ``SessionValidator().validate``."""
    return SessionValidator().validate(candidates, staff, patients, rooms)
