"""Domain entities and static tables for TRO packet workflows."""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


class PacketType(str, Enum):
    INITIATING_NO_CHILDREN = "initiating_no_children"
    INITIATING_WITH_CHILDREN = "initiating_with_children"
    RESPONSE = "response"
    MODIFICATION = "modification"


class WorkflowState(str, Enum):
    NOT_STARTED = "not_started"
    PACKET_TYPE_SELECTION = "packet_type"

    DV100_IN_PROGRESS = "dv100_progress"
    DV100_COMPLETE = "dv100_complete"
    CLETS_IN_PROGRESS = "clets_progress"
    CLETS_COMPLETE = "clets_complete"
    DV105_IN_PROGRESS = "dv105_progress"
    DV105_COMPLETE = "dv105_complete"
    FL150_IN_PROGRESS = "fl150_progress"
    FL150_COMPLETE = "fl150_complete"
    DV101_IN_PROGRESS = "dv101_progress"
    DV101_COMPLETE = "dv101_complete"
    DV120_IN_PROGRESS = "dv120_progress"
    DV120_COMPLETE = "dv120_complete"
    FL320_IN_PROGRESS = "fl320_progress"
    FL320_COMPLETE = "fl320_complete"

    REVIEW_IN_PROGRESS = "review_progress"
    READY_TO_FILE = "ready_to_file"
    FILED = "filed"


class FormStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    VALIDATED = "validated"
    SKIPPED = "skipped"
    ERROR = "error"


class FormType(str, Enum):
    DV100 = "DV-100"
    DV101 = "DV-101"
    DV105 = "DV-105"
    DV109 = "DV-109"  # court-issued notice of hearing
    DV110 = "DV-110"  # court-issued temporary order
    DV120 = "DV-120"
    CLETS001 = "CLETS-001"
    FL150 = "FL-150"
    FL320 = "FL-320"


DONE_STATUSES = frozenset({FormStatus.COMPLETE, FormStatus.VALIDATED})


def is_done(status: FormStatus | None) -> bool:
    return status in DONE_STATUSES


# ----------------------------------------------------------------------
# static tables
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class FormRequirements:
    required: tuple[FormType, ...]
    optional: tuple[FormType, ...]

    @property
    def all_forms(self) -> tuple[FormType, ...]:
        return self.required + self.optional


FORM_REQUIREMENTS: dict[PacketType, FormRequirements] = {
    PacketType.INITIATING_NO_CHILDREN: FormRequirements(
        required=(FormType.DV100, FormType.CLETS001),
        optional=(FormType.FL150, FormType.DV101),
    ),
    PacketType.INITIATING_WITH_CHILDREN: FormRequirements(
        required=(FormType.DV100, FormType.CLETS001, FormType.DV105),
        optional=(FormType.FL150, FormType.DV101),
    ),
    PacketType.RESPONSE: FormRequirements(
        required=(FormType.DV120,),
        optional=(FormType.FL150, FormType.FL320),
    ),
    PacketType.MODIFICATION: FormRequirements(
        required=(FormType.FL320,),
        optional=(FormType.FL150,),
    ),
}

FORM_ORDER: dict[PacketType, tuple[FormType, ...]] = {
    PacketType.INITIATING_NO_CHILDREN: (
        FormType.DV100,
        FormType.CLETS001,
        FormType.FL150,
        FormType.DV101,
    ),
    PacketType.INITIATING_WITH_CHILDREN: (
        FormType.DV100,
        FormType.CLETS001,
        FormType.DV105,
        FormType.FL150,
        FormType.DV101,
    ),
    PacketType.RESPONSE: (FormType.DV120, FormType.FL150, FormType.FL320),
    PacketType.MODIFICATION: (FormType.FL320, FormType.FL150),
}

# minutes an average filer spends on each form
FORM_ESTIMATED_MINUTES: dict[FormType, int] = {
    FormType.DV100: 30,
    FormType.DV101: 15,
    FormType.DV105: 20,
    FormType.DV109: 5,
    FormType.DV110: 5,
    FormType.DV120: 25,
    FormType.CLETS001: 10,
    FormType.FL150: 45,
    FormType.FL320: 30,
}

FORM_TITLES: dict[FormType, str] = {
    FormType.DV100: "Request for Domestic Violence Restraining Order",
    FormType.DV101: "Description of Abuse",
    FormType.DV105: "Request for Child Custody and Visitation Orders",
    FormType.DV109: "Notice of Court Hearing",
    FormType.DV110: "Temporary Restraining Order",
    FormType.DV120: "Response to Request for Domestic Violence Restraining Order",
    FormType.CLETS001: "Confidential CLETS Information",
    FormType.FL150: "Income and Expense Declaration",
    FormType.FL320: "Responsive Declaration to Request for Order",
}

# (in progress, complete) state pair for every user-filled form
FORM_STATES: dict[FormType, tuple[WorkflowState, WorkflowState]] = {
    FormType.DV100: (WorkflowState.DV100_IN_PROGRESS, WorkflowState.DV100_COMPLETE),
    FormType.CLETS001: (WorkflowState.CLETS_IN_PROGRESS, WorkflowState.CLETS_COMPLETE),
    FormType.DV105: (WorkflowState.DV105_IN_PROGRESS, WorkflowState.DV105_COMPLETE),
    FormType.FL150: (WorkflowState.FL150_IN_PROGRESS, WorkflowState.FL150_COMPLETE),
    FormType.DV101: (WorkflowState.DV101_IN_PROGRESS, WorkflowState.DV101_COMPLETE),
    FormType.DV120: (WorkflowState.DV120_IN_PROGRESS, WorkflowState.DV120_COMPLETE),
    FormType.FL320: (WorkflowState.FL320_IN_PROGRESS, WorkflowState.FL320_COMPLETE),
}

STATE_FORMS: dict[WorkflowState, FormType] = {
    state: form_type for form_type, pair in FORM_STATES.items() for state in pair
}

_S = WorkflowState

STATE_TRANSITIONS: dict[WorkflowState, tuple[WorkflowState, ...]] = {
    _S.NOT_STARTED: (_S.PACKET_TYPE_SELECTION,),
    _S.PACKET_TYPE_SELECTION: (_S.DV100_IN_PROGRESS, _S.DV120_IN_PROGRESS, _S.FL320_IN_PROGRESS),
    _S.DV100_IN_PROGRESS: (_S.DV100_COMPLETE, _S.PACKET_TYPE_SELECTION),
    _S.DV100_COMPLETE: (_S.CLETS_IN_PROGRESS, _S.DV100_IN_PROGRESS),
    _S.CLETS_IN_PROGRESS: (_S.CLETS_COMPLETE, _S.DV100_COMPLETE),
    _S.CLETS_COMPLETE: (
        _S.DV105_IN_PROGRESS,
        _S.FL150_IN_PROGRESS,
        _S.DV101_IN_PROGRESS,
        _S.REVIEW_IN_PROGRESS,
        _S.CLETS_IN_PROGRESS,
    ),
    _S.DV105_IN_PROGRESS: (_S.DV105_COMPLETE, _S.CLETS_COMPLETE),
    _S.DV105_COMPLETE: (
        _S.FL150_IN_PROGRESS,
        _S.DV101_IN_PROGRESS,
        _S.REVIEW_IN_PROGRESS,
        _S.DV105_IN_PROGRESS,
    ),
    _S.FL150_IN_PROGRESS: (_S.FL150_COMPLETE, _S.DV105_COMPLETE, _S.CLETS_COMPLETE),
    _S.FL150_COMPLETE: (
        _S.DV101_IN_PROGRESS,
        _S.FL320_IN_PROGRESS,
        _S.REVIEW_IN_PROGRESS,
        _S.FL150_IN_PROGRESS,
    ),
    _S.DV101_IN_PROGRESS: (_S.DV101_COMPLETE, _S.FL150_COMPLETE, _S.DV105_COMPLETE),
    _S.DV101_COMPLETE: (_S.REVIEW_IN_PROGRESS, _S.DV101_IN_PROGRESS),
    _S.DV120_IN_PROGRESS: (_S.DV120_COMPLETE, _S.PACKET_TYPE_SELECTION),
    _S.DV120_COMPLETE: (_S.FL320_IN_PROGRESS, _S.FL150_IN_PROGRESS, _S.REVIEW_IN_PROGRESS),
    _S.FL320_IN_PROGRESS: (_S.FL320_COMPLETE, _S.DV120_COMPLETE),
    _S.FL320_COMPLETE: (_S.FL150_IN_PROGRESS, _S.REVIEW_IN_PROGRESS, _S.FL320_IN_PROGRESS),
    _S.REVIEW_IN_PROGRESS: (
        _S.READY_TO_FILE,
        _S.DV100_IN_PROGRESS,
        _S.DV120_IN_PROGRESS,
        _S.FL320_IN_PROGRESS,
    ),
    _S.READY_TO_FILE: (_S.FILED, _S.REVIEW_IN_PROGRESS),
    _S.FILED: (),
}


def is_valid_transition(from_state: WorkflowState, to_state: WorkflowState) -> bool:
    return to_state in STATE_TRANSITIONS.get(from_state, ())


def form_for_state(state: WorkflowState) -> FormType | None:
    return STATE_FORMS.get(state)


def state_for_form(form_type: FormType, *, in_progress: bool = True) -> WorkflowState:
    """Return the workflow state that represents working on ``form_type``.

    Court-issued forms are never filled by the user, so they map to review.
    """

    pair = FORM_STATES.get(form_type)
    if pair is None:
        return WorkflowState.REVIEW_IN_PROGRESS
    return pair[0] if in_progress else pair[1]


def entry_state(packet_type: PacketType) -> WorkflowState:
    return state_for_form(FORM_ORDER[packet_type][0])


# ----------------------------------------------------------------------
# aggregate
# ----------------------------------------------------------------------
@dataclass(slots=True)
class PacketConfig:
    has_children: bool = False
    requesting_child_support: bool = False
    requesting_spousal_support: bool = False
    need_more_space: bool = False
    has_existing_case_number: bool = False
    number_of_children: int | None = None
    number_of_protected_persons: int | None = None
    number_of_restrained_persons: int | None = None

    @property
    def requesting_support(self) -> bool:
        return self.requesting_child_support or self.requesting_spousal_support

    def merged(self, changes: Mapping[str, Any]) -> "PacketConfig":
        known = {item.name for item in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown packet config keys: {', '.join(sorted(unknown))}")
        values = asdict(self)
        values.update(changes)
        return PacketConfig(**values)

    def enables(self, form_type: FormType) -> bool:
        """Whether this configuration opts the optional ``form_type`` into the packet."""

        if form_type is FormType.DV105:
            return self.has_children
        if form_type is FormType.FL150:
            return self.requesting_support
        if form_type is FormType.DV101:
            return self.need_more_space
        return False


# packet config flag -> optional form it governs
CONFIG_FORM_FLAGS: dict[str, FormType] = {
    "has_children": FormType.DV105,
    "requesting_child_support": FormType.FL150,
    "requesting_spousal_support": FormType.FL150,
    "need_more_space": FormType.DV101,
}


@dataclass(slots=True)
class WorkflowMetadata:
    completion_percentage: int = 0
    estimated_time_remaining: int | None = None
    validation_errors: list[dict[str, Any]] = field(default_factory=list)
    last_edited_form: FormType | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Workflow:
    """One user's filing session for a single packet."""

    id: str
    user_id: str
    packet_type: PacketType
    current_state: WorkflowState
    form_statuses: dict[FormType, FormStatus] = field(default_factory=dict)
    packet_config: PacketConfig = field(default_factory=PacketConfig)
    form_data_refs: dict[FormType, str] = field(default_factory=dict)
    metadata: WorkflowMetadata = field(default_factory=WorkflowMetadata)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def requirements(self) -> FormRequirements:
        return FORM_REQUIREMENTS[self.packet_type]

    @property
    def form_order(self) -> tuple[FormType, ...]:
        return FORM_ORDER[self.packet_type]

    def status_of(self, form_type: FormType) -> FormStatus | None:
        return self.form_statuses.get(form_type)

    def to_record(self) -> dict[str, Any]:
        """Serialise to the JSON-compatible row layout used by workflow stores."""

        metadata = asdict(self.metadata)
        if self.metadata.last_edited_form is not None:
            metadata["last_edited_form"] = self.metadata.last_edited_form.value
        return {
            "id": self.id,
            "user_id": self.user_id,
            "packet_type": self.packet_type.value,
            "current_state": self.current_state.value,
            "form_statuses": {form.value: status.value for form, status in self.form_statuses.items()},
            "packet_config": asdict(self.packet_config),
            "form_data_refs": {form.value: ref for form, ref in self.form_data_refs.items()},
            "metadata": metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Workflow":
        metadata_raw = dict(record.get("metadata") or {})
        last_edited = metadata_raw.get("last_edited_form")
        metadata = WorkflowMetadata(
            completion_percentage=int(metadata_raw.get("completion_percentage") or 0),
            estimated_time_remaining=metadata_raw.get("estimated_time_remaining"),
            validation_errors=list(metadata_raw.get("validation_errors") or []),
            last_edited_form=FormType(last_edited) if last_edited else None,
        )
        return cls(
            id=str(record["id"]),
            user_id=str(record["user_id"]),
            packet_type=PacketType(record["packet_type"]),
            current_state=WorkflowState(record["current_state"]),
            form_statuses={
                FormType(form): FormStatus(status)
                for form, status in (record.get("form_statuses") or {}).items()
            },
            packet_config=PacketConfig(**(record.get("packet_config") or {})),
            form_data_refs={
                FormType(form): str(ref) for form, ref in (record.get("form_data_refs") or {}).items()
            },
            metadata=metadata,
            created_at=_parse_timestamp(record.get("created_at")),
            updated_at=_parse_timestamp(record.get("updated_at")),
        )


# the database trims trailing zeros from fractional seconds
_FRACTION = re.compile(r"\.(\d+)")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return _utcnow()
    text = str(value).replace("Z", "+00:00")
    text = _FRACTION.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


def estimate_minutes(packet_type: PacketType, config: PacketConfig) -> int:
    """Estimated minutes for a fresh packet: required forms plus opted-in extras."""

    requirements = FORM_REQUIREMENTS[packet_type]
    total = sum(FORM_ESTIMATED_MINUTES[form] for form in requirements.required)
    for form_type in requirements.optional:
        if config.enables(form_type):
            total += FORM_ESTIMATED_MINUTES[form_type]
    return total
