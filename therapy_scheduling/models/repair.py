"""
Pydantic models for the schedule repair protocol.

Wire format is camelCase (``requestId``, ``allowedSlotIds``) because the request is
serialised verbatim into the planner prompt and the planner answers in the same
shape. Python code uses the snake_case attribute names.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RepairModel(BaseModel):
    """Base config: camelCase aliases, population by field name allowed."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RepairMode(str, Enum):
    TEMPLATE = "template"
    REAL = "real"


class ViolationSeverity(str, Enum):
    BLOCKER = "blocker"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ViolationType(str, Enum):
    UNSCHEDULED_REQUIRED_SESSION = "unscheduled_required_session"
    RULE_VIOLATION = "rule_violation"
    SOFT_RULE_MISSED = "soft_rule_missed"
    OVERBOOKED_STAFF = "overbooked_staff"
    OVERBOOKED_ROOM = "overbooked_room"
    UNMET_PREFERENCE = "unmet_preference"


class RepairMeta(RepairModel):
    request_id: str
    mode: RepairMode = RepairMode.TEMPLATE
    timezone: Optional[str] = None
    iteration: int = 1
    max_patch_ops: int = Field(10, ge=0)


class TimeSlot(RepairModel):
    """Named bookable interval; the planner references slots only by slot_id."""
    slot_id: str
    day: str
    start: str
    end: str


class RepairSession(RepairModel):
    """Committed session as referenced by the planner."""
    sid: str
    therapist_id: str
    patient_id: str
    session_spec_id: str
    room_id: Optional[str] = None
    slot_id: str


class RepairScheduleState(RepairModel):
    sessions: List[RepairSession] = Field(default_factory=list)


class Violation(RepairModel):
    vid: str
    type: ViolationType
    severity: ViolationSeverity
    message: str
    related_session_ids: List[str] = Field(default_factory=list)
    related_rule_ids: List[str] = Field(default_factory=list)
    related_entities: List[str] = Field(default_factory=list)


class RepairRule(RepairModel):
    rule_id: str
    kind: Literal["hard", "soft", "complex"]
    logic: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
    priority: Optional[int] = None


class MovableSessionConstraint(RepairModel):
    sid: str
    allowed_slot_ids: List[str]
    allowed_therapist_ids: Optional[List[str]] = None
    allowed_room_ids: Optional[List[str]] = None
    lock: bool = False


class AddableRequirementConstraint(RepairModel):
    requirement_id: str
    patient_id: str
    session_spec_id: str
    count_missing: int = 1
    allowed_therapist_ids: List[str]
    allowed_slot_ids: List[str]
    allowed_room_ids: Optional[List[str]] = None


class SearchSpace(RepairModel):
    """The only destinations and resources the planner may reference."""
    movable_sessions: List[MovableSessionConstraint] = Field(default_factory=list)
    addable_requirements: List[AddableRequirementConstraint] = Field(default_factory=list)


class ScoringHints(RepairModel):
    prefer_fewer_moves: Optional[bool] = None
    avoid_moving_locked: Optional[bool] = None
    keep_existing_assignments_when_possible: Optional[bool] = None


class RepairObjective(RepairModel):
    primary: Literal["fix_blockers", "maximize_fulfillment"] = "fix_blockers"
    scoring_hints: Optional[ScoringHints] = None


class RepairRequest(RepairModel):
    """Immutable snapshot handed to a repair planner."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    meta: RepairMeta
    slots: List[TimeSlot] = Field(default_factory=list)
    schedule: RepairScheduleState = Field(default_factory=RepairScheduleState)
    violations: List[Violation] = Field(default_factory=list)
    rules: List[RepairRule] = Field(default_factory=list)
    search_space: SearchSpace = Field(default_factory=SearchSpace)
    objective: RepairObjective = Field(default_factory=RepairObjective)


class MoveOp(RepairModel):
    op: Literal["move"] = "move"
    sid: str
    to_slot_id: str
    to_therapist_id: Optional[str] = None
    to_room_id: Optional[str] = None
    because: str = ""
    fixes: List[str] = Field(default_factory=list)


class AddOp(RepairModel):
    op: Literal["add"] = "add"
    requirement_id: str
    therapist_id: str
    patient_id: str
    session_spec_id: str
    slot_id: str
    room_id: Optional[str] = None
    because: str = ""
    fixes: List[str] = Field(default_factory=list)


class DeleteOp(RepairModel):
    op: Literal["delete"] = "delete"
    sid: str
    because: str = ""
    fixes: List[str] = Field(default_factory=list)


PatchOp = Annotated[Union[MoveOp, AddOp, DeleteOp], Field(discriminator="op")]


class ExpectedImpact(RepairModel):
    violations_resolved: List[str] = Field(default_factory=list)
    violations_introduced_risk: List[str] = Field(default_factory=list)


class RepairResponse(RepairModel):
    """Planner output. Untrusted until validate_repair_response says ok."""
    patch: List[PatchOp] = Field(default_factory=list)
    expected_impact: Optional[ExpectedImpact] = None
    notes: List[str] = Field(default_factory=list)


class RepairPrompt(BaseModel):
    system_prompt: str
    user_prompt: str


class ValidateRepairResult(BaseModel):
    ok: bool
    errors: List[str] = Field(default_factory=list)
