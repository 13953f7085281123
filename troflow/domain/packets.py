"""Assembler-facing packet entities."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .workflow import FormType


class FilingPacketType(str, Enum):
    DV_INITIAL_REQUEST = "dv_initial_request"
    DV_RESPONSE = "dv_response"
    ORDER_MODIFICATION = "order_modification"
    GENERAL_FAMILY_LAW = "general_family_law"


class FormCategory(str, Enum):
    PRIMARY = "primary"
    ATTACHMENT = "attachment"
    SUPPORTING = "supporting"
    CONFIDENTIAL = "confidential"
    COURT_ISSUED = "court_issued"
    RESPONSE = "response"


class AssemblyStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationStatus(str, Enum):
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"
    NOT_VALIDATED = "not_validated"


class FilingMethod(str, Enum):
    E_FILE = "e_file"
    IN_PERSON = "in_person"
    MAIL = "mail"
    UNDECIDED = "undecided"


@dataclass(frozen=True, slots=True)
class FormOrder:
    form_type: FormType
    position: int
    required: bool


# canonical position of each form inside a filed packet
PACKET_FORM_ORDERS: dict[FilingPacketType, tuple[FormOrder, ...]] = {
    FilingPacketType.DV_INITIAL_REQUEST: (
        FormOrder(FormType.DV100, 1, True),
        FormOrder(FormType.DV105, 2, False),
        FormOrder(FormType.FL150, 3, False),
        FormOrder(FormType.CLETS001, 4, True),
    ),
    FilingPacketType.DV_RESPONSE: (
        FormOrder(FormType.FL320, 1, True),
        FormOrder(FormType.FL150, 2, False),
    ),
    FilingPacketType.ORDER_MODIFICATION: (
        FormOrder(FormType.FL320, 1, True),
        FormOrder(FormType.FL150, 2, False),
    ),
}

# forms that are not present in a canonical order sort after every known form
UNORDERED_POSITION = 999

FORM_CATEGORIES: dict[FormType, FormCategory] = {
    FormType.DV100: FormCategory.PRIMARY,
    FormType.DV101: FormCategory.ATTACHMENT,
    FormType.DV105: FormCategory.ATTACHMENT,
    FormType.DV109: FormCategory.COURT_ISSUED,
    FormType.DV110: FormCategory.COURT_ISSUED,
    FormType.DV120: FormCategory.RESPONSE,
    FormType.CLETS001: FormCategory.CONFIDENTIAL,
    FormType.FL150: FormCategory.SUPPORTING,
    FormType.FL320: FormCategory.RESPONSE,
}


@dataclass(slots=True)
class PacketForm:
    """One form inside a packet, with its rendered artifact."""

    form_type: FormType
    category: FormCategory
    display_name: str
    is_required: bool = False
    is_complete: bool = False
    pdf_data: bytes | None = None
    page_count: int | None = None
    start_page: int | None = None
    end_page: int | None = None
    form_data: dict[str, object] | None = None
    completion_percentage: float | None = None
    validation_errors: list[str] = field(default_factory=list)
    last_modified: datetime | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PacketMetadata:
    packet_id: str
    packet_type: FilingPacketType
    case_number: str | None = None
    petitioner: str | None = None
    respondent: str | None = None
    county: str | None = None
    user_id: str | None = None
    version: int = 1
    filing_method: FilingMethod | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_modified: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class AssemblyOptions:
    include_page_numbers: bool = True
    include_table_of_contents: bool = False
    include_bookmarks: bool = True
    compress: bool = False
    pdfa_compliance: bool = False
    watermark: str | None = None
    output_format: str = "pdf"


@dataclass(slots=True)
class AssemblyResult:
    status: AssemblyStatus
    total_pages: int
    file_size_bytes: int
    assembled_at: datetime
    duration_ms: int
    pdf: bytes | None = None
    # true when no binary renderer was available and nothing was actually combined
    simulated: bool = False
    forms: list[PacketForm] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TROPacket:
    metadata: PacketMetadata
    forms: list[PacketForm]
    assembly_status: AssemblyStatus
    validation_status: ValidationStatus
    total_pages: int
    completion_percentage: int
    assembled_pdf: bytes | None = None
    assembled_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class CourtRequirements:
    court_name: str
    county: str
    page_width_in: float
    page_height_in: float
    margins_in: tuple[float, float, float, float]  # top, right, bottom, left
    max_file_size_bytes: int
    require_text_searchable: bool = True
    require_bookmarks: bool = False


LA_SUPERIOR_COURT_REQUIREMENTS = CourtRequirements(
    court_name="Los Angeles Superior Court",
    county="Los Angeles",
    page_width_in=8.5,
    page_height_in=11.0,
    margins_in=(1.0, 0.5, 1.0, 1.0),
    max_file_size_bytes=25 * 1024 * 1024,
)
