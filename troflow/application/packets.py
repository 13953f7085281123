"""Turn a workflow and its saved form data into assembler inputs."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from troflow.core.autofill import extract_common_values
from troflow.core.validation import form_completion_percentage
from troflow.domain.packets import FORM_CATEGORIES, FilingPacketType, FormCategory, PacketForm, PacketMetadata
from troflow.domain.workflow import FORM_TITLES, FormStatus, FormType, PacketType, Workflow, is_done

_FILING_TYPES: dict[PacketType, FilingPacketType] = {
    PacketType.INITIATING_NO_CHILDREN: FilingPacketType.DV_INITIAL_REQUEST,
    PacketType.INITIATING_WITH_CHILDREN: FilingPacketType.DV_INITIAL_REQUEST,
    PacketType.RESPONSE: FilingPacketType.DV_RESPONSE,
    PacketType.MODIFICATION: FilingPacketType.ORDER_MODIFICATION,
}


@dataclass(slots=True)
class PacketArtifact:
    """A rendered single-form PDF."""

    pdf_data: bytes
    page_count: int


def filing_packet_type(packet_type: PacketType | str) -> FilingPacketType:
    return _FILING_TYPES[PacketType(packet_type)]


def _first(values: Mapping[str, list[str]], *names: str) -> str | None:
    for name in names:
        if values.get(name):
            return values[name][0]
    return None


def packet_metadata_for(workflow: Workflow, form_data: Mapping[FormType, Mapping[str, Any]]) -> PacketMetadata:
    common = extract_common_values(form_data)
    dv100 = form_data.get(FormType.DV100) or {}
    return PacketMetadata(
        packet_id=workflow.id,
        packet_type=filing_packet_type(workflow.packet_type),
        case_number=_first(common, "caseNumber"),
        petitioner=_first(common, "petitionerName") or dv100.get("protectedPersonName") or None,
        respondent=_first(common, "respondentName") or dv100.get("restrainedPersonName") or None,
        county=_first(common, "county"),
        user_id=workflow.user_id,
    )


def packet_forms_for(
    workflow: Workflow,
    form_data: Mapping[FormType, Mapping[str, Any]],
    artifacts: Mapping[FormType, PacketArtifact] | None = None,
) -> list[PacketForm]:
    """One :class:`PacketForm` per non-skipped form, in workflow order."""

    artifacts = artifacts or {}
    required = set(workflow.requirements.required)
    forms: list[PacketForm] = []
    for form_type in workflow.form_order:
        status = workflow.status_of(form_type)
        if status is FormStatus.SKIPPED:
            continue
        data = dict(form_data.get(form_type) or {})
        artifact = artifacts.get(form_type)
        forms.append(
            PacketForm(
                form_type=form_type,
                category=FORM_CATEGORIES.get(form_type, FormCategory.SUPPORTING),
                display_name=FORM_TITLES[form_type],
                is_required=form_type in required,
                is_complete=is_done(status),
                pdf_data=artifact.pdf_data if artifact else None,
                page_count=artifact.page_count if artifact else None,
                form_data=data,
                completion_percentage=form_completion_percentage(form_type, data) if data else 0,
            )
        )
    return forms
