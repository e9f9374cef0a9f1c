"""
Schedule Repair Protocol.

Builds the prompt for an external repair planner and validates the patch it
returns. Planner output is untrusted: every referenced id must come from the
request's declared slots, sessions and search space, and a patch with any error
is rejected as a whole.
"""

import json
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from therapy_scheduling.models.repair import (
    AddOp,
    DeleteOp,
    MoveOp,
    PatchOp,
    RepairPrompt,
    RepairRequest,
    RepairResponse,
    ValidateRepairResult,
)

logger = logging.getLogger(__name__)

SUPPORTED_OPS = ("move", "add", "delete")

_patch_op_adapter = TypeAdapter(PatchOp)


def build_repair_system_prompt() -> str:
    return """You are a schedule repair assistant.

You will receive a JSON object describing:
- The current schedule (sessions with IDs and slot IDs)
- Deterministic violations to fix
- Rules to respect (already resolved to IDs)
- A bounded search space that lists the only allowed changes

You must return ONLY valid JSON with this exact shape:
{
  "patch": [ ...operations... ],
  "expectedImpact": { "violationsResolved": [], "violationsIntroducedRisk": [] },
  "notes": []
}

Each operation is one of:
- {"op": "move", "sid": "...", "toSlotId": "...", "toTherapistId": "...", "toRoomId": "...", "because": "...", "fixes": ["<vid>"]}
- {"op": "add", "requirementId": "...", "therapistId": "...", "patientId": "...", "sessionSpecId": "...", "slotId": "...", "roomId": "...", "because": "...", "fixes": ["<vid>"]}
- {"op": "delete", "sid": "...", "because": "...", "fixes": ["<vid>"]}

CRITICAL:
- Use ONLY IDs and slotIds provided in the request.
- Choose ONLY from allowedSlotIds/allowedTherapistIds/allowedRoomIds in searchSpace.
- Touch each session or requirement at most once.
- Prefer the smallest number of operations.
- Do not add commentary outside JSON."""


def serialize_repair_request(request: RepairRequest) -> str:
    """Compact JSON with camelCase keys in declaration order."""
    return json.dumps(
        request.model_dump(mode="json", by_alias=True, exclude_none=True),
        separators=(",", ":"),
        ensure_ascii=False,
    )


def build_repair_user_prompt(request: RepairRequest) -> str:
    return (
        "Repair this schedule by proposing a patch to reduce violations.\n\n"
        "Return JSON only. Here is the repair request:\n\n"
        f"{serialize_repair_request(request)}"
    )


def build_repair_prompt(request: RepairRequest) -> RepairPrompt:
    """Deterministic system/user prompt pair for a repair request."""
    return RepairPrompt(
        system_prompt=build_repair_system_prompt(),
        user_prompt=build_repair_user_prompt(request),
    )


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item["loc"] if not isinstance(loc, int))
        parts.append(f"{location or 'value'}: {item['msg']}")
    return "; ".join(parts)


# (kind, id) of the session or requirement an op modifies
_Target = Tuple[str, str]


def _op_target(op: Any) -> _Target:
    if isinstance(op, AddOp):
        return ("Requirement", op.requirement_id)
    return ("Session", op.sid)


def _raw_target(raw_op: Dict[str, Any]) -> Optional[_Target]:
    """Target of an unparsed op, so malformed ops still count as touching it."""
    if raw_op.get("op") == "add":
        requirement_id = raw_op.get("requirementId", raw_op.get("requirement_id"))
        return ("Requirement", requirement_id) if isinstance(requirement_id, str) else None
    if raw_op.get("op") in ("move", "delete"):
        sid = raw_op.get("sid")
        return ("Session", sid) if isinstance(sid, str) else None
    return None


def _coerce_patch(
    response: Union[RepairResponse, Dict[str, Any], str], errors: List[str]
) -> List[Tuple[Any, Optional[_Target]]]:
    """
    Turn planner output into ``(op, target)`` pairs.

    ``op`` is None for unusable entries; ``target`` is still filled in when the
    raw entry names a sid or requirementId. Shape problems are appended to
    ``errors`` instead of raised.
    """
    if isinstance(response, RepairResponse):
        return [(op, _op_target(op)) for op in response.patch]

    if isinstance(response, str):
        try:
            response = json.loads(response)
        except json.JSONDecodeError as e:
            errors.append(f"Response is not valid JSON: {e.msg}")
            return []

    if not isinstance(response, dict):
        errors.append("Response must be an object")
        return []

    raw_patch = response.get("patch")
    if not isinstance(raw_patch, list):
        errors.append("Response.patch must be an array")
        return []

    ops = []
    for index, raw_op in enumerate(raw_patch):
        if not isinstance(raw_op, dict) or "op" not in raw_op:
            errors.append(f'patch[{index}] must be an operation object with "op"')
            ops.append((None, None))
            continue

        if raw_op["op"] not in SUPPORTED_OPS:
            errors.append(f"patch[{index}].op is unsupported: {raw_op['op']}")
            ops.append((None, None))
            continue

        try:
            op = _patch_op_adapter.validate_python(raw_op)
        except ValidationError as e:
            errors.append(f"patch[{index}] is malformed: {_describe_validation_error(e)}")
            ops.append((None, _raw_target(raw_op)))
            continue
        ops.append((op, _op_target(op)))

    return ops


def validate_repair_response(
    request: RepairRequest,
    response: Union[RepairResponse, Dict[str, Any], str],
) -> ValidateRepairResult:
    """
    Validate a planner patch against the request it answers.

    Every failure is collected so the planner (or caller) sees the full set of
    reasons; ``ok`` is True only when there are none.

    Args:
        request: The request the planner was given
        response: Parsed RepairResponse, raw JSON dict, or raw JSON string

    Returns:
        ValidateRepairResult(ok, errors)
    """
    errors: List[str] = []
    ops = _coerce_patch(response, errors)

    max_ops = request.meta.max_patch_ops
    if len(ops) > max_ops:
        errors.append(f"Patch exceeds maxPatchOps ({len(ops)} > {max_ops})")

    session_ids = {s.sid for s in request.schedule.sessions}
    slot_ids = {s.slot_id for s in request.slots}
    movable_by_sid = {m.sid: m for m in request.search_space.movable_sessions}
    addable_by_id = {r.requirement_id: r for r in request.search_space.addable_requirements}

    touched = [target for _, target in ops if target is not None]

    for index, (op, _) in enumerate(ops):
        if op is None:
            continue

        prefix = f"patch[{index}]"

        if isinstance(op, MoveOp):
            if op.sid not in session_ids:
                errors.append(f"{prefix}.sid is unknown: {op.sid}")
            if op.to_slot_id not in slot_ids:
                errors.append(f"{prefix}.toSlotId is unknown: {op.to_slot_id}")

            movable = movable_by_sid.get(op.sid)
            if movable is None:
                errors.append(f"{prefix} moves sid {op.sid} but it is not in searchSpace.movableSessions")
            else:
                if movable.lock:
                    errors.append(f"{prefix} moves locked sid {op.sid}")
                if op.to_slot_id not in movable.allowed_slot_ids:
                    errors.append(f"{prefix} moves sid {op.sid} to unknown or disallowed slotId {op.to_slot_id}")
                if (
                    op.to_therapist_id
                    and movable.allowed_therapist_ids is not None
                    and op.to_therapist_id not in movable.allowed_therapist_ids
                ):
                    errors.append(f"{prefix} moves sid {op.sid} to disallowed therapistId {op.to_therapist_id}")
                if (
                    op.to_room_id
                    and movable.allowed_room_ids is not None
                    and op.to_room_id not in movable.allowed_room_ids
                ):
                    errors.append(f"{prefix} moves sid {op.sid} to disallowed roomId {op.to_room_id}")

        elif isinstance(op, AddOp):
            if op.slot_id not in slot_ids:
                errors.append(f"{prefix}.slotId is unknown: {op.slot_id}")

            addable = addable_by_id.get(op.requirement_id)
            if addable is None:
                errors.append(
                    f"{prefix}.requirementId is unknown: {op.requirement_id} "
                    f"(not in searchSpace.addableRequirements)"
                )
            else:
                if op.patient_id != addable.patient_id:
                    errors.append(f"{prefix} add patientId mismatch ({op.patient_id} != {addable.patient_id})")
                if op.session_spec_id != addable.session_spec_id:
                    errors.append(
                        f"{prefix} add sessionSpecId mismatch ({op.session_spec_id} != {addable.session_spec_id})"
                    )
                if op.slot_id not in addable.allowed_slot_ids:
                    errors.append(f"{prefix} add uses disallowed slotId {op.slot_id}")
                if op.therapist_id not in addable.allowed_therapist_ids:
                    errors.append(f"{prefix} add uses disallowed therapistId {op.therapist_id}")
                if (
                    op.room_id
                    and addable.allowed_room_ids is not None
                    and op.room_id not in addable.allowed_room_ids
                ):
                    errors.append(f"{prefix} add uses disallowed roomId {op.room_id}")

        elif isinstance(op, DeleteOp):
            if op.sid not in session_ids:
                errors.append(f"{prefix}.sid is unknown: {op.sid}")
            movable = movable_by_sid.get(op.sid)
            if movable is not None and movable.lock:
                errors.append(f"{prefix} deletes locked sid {op.sid}")

        if not op.because or not op.because.strip():
            errors.append(f"{prefix}.because must be a non-empty string")

    for (kind, target), count in Counter(touched).items():
        if count > 1:
            errors.append(f"{kind} {target} is modified multiple times in one patch")

    ok = not errors
    if ok:
        logger.info(f"Repair patch accepted for request {request.meta.request_id} ({len(ops)} ops)")
    else:
        logger.info(
            f"Repair patch rejected for request {request.meta.request_id}: {len(errors)} errors"
        )
    return ValidateRepairResult(ok=ok, errors=errors)
