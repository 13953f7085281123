from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query

from troflow.application import create_placeholder_packet, create_workflow_engine, estimate_assembly_time
from troflow.application.assembler import PacketAssemblyError, generate_packet_filename
from troflow.application.packets import filing_packet_type, packet_forms_for, packet_metadata_for
from troflow.domain.packets import FilingPacketType, PacketMetadata
from troflow.domain.workflow import FormStatus, FormType

router = APIRouter(prefix="/packets", tags=["packet"])


@router.post("/preview")
async def preview_packet(payload: dict, user_id: str = Query(...)) -> dict:
    workflow_id = payload.get("workflow_id")
    if not workflow_id:
        raise HTTPException(status_code=400, detail="workflow_id is required")
    engine = create_workflow_engine(user_id)
    workflow = await engine.load_workflow(workflow_id)

    form_data: dict[FormType, dict[str, Any]] = {}
    for form_type in workflow.form_order:
        if workflow.status_of(form_type) is FormStatus.SKIPPED:
            continue
        data = await engine.get_form_data(form_type)
        if data:
            form_data[form_type] = data

    metadata = packet_metadata_for(workflow, form_data)
    try:
        packet = create_placeholder_packet(packet_forms_for(workflow, form_data), metadata)
    except PacketAssemblyError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return {
        "packet_id": metadata.packet_id,
        "packet_type": metadata.packet_type.value,
        "case_number": metadata.case_number,
        "assembly_status": packet.assembly_status.value,
        "validation_status": packet.validation_status.value,
        "total_pages": packet.total_pages,
        "completion_percentage": packet.completion_percentage,
        "estimated_assembly_ms": estimate_assembly_time(len(packet.forms)),
        "filename": generate_packet_filename(metadata),
        "forms": [
            {
                "form_type": form.form_type.value,
                "category": form.category.value,
                "display_name": form.display_name,
                "is_required": form.is_required,
                "is_complete": form.is_complete,
                "completion_percentage": form.completion_percentage,
                "start_page": form.start_page,
                "end_page": form.end_page,
            }
            for form in packet.forms
        ],
    }


@router.post("/filename")
async def packet_filename(payload: dict) -> dict:
    raw_type = payload.get("packet_type")
    if not raw_type:
        raise HTTPException(status_code=400, detail="packet_type is required")
    try:
        packet_type = FilingPacketType(raw_type)
    except ValueError:
        try:
            packet_type = filing_packet_type(raw_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"unknown packet type: {raw_type}") from exc
    metadata = PacketMetadata(packet_id="", packet_type=packet_type, case_number=payload.get("case_number"))
    return {"filename": generate_packet_filename(metadata)}
