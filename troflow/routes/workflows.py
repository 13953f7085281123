from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query

from troflow.application import TROWorkflowEngine, create_workflow_engine
from troflow.core.validation import validate_form_schema
from troflow.domain.workflow import FormStatus, FormType, PacketConfig, PacketType

router = APIRouter(prefix="/workflows", tags=["workflow"])


def _form_type(value: str) -> FormType:
    try:
        return FormType(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"unknown form type: {value}") from exc


async def _load(workflow_id: str, user_id: str) -> TROWorkflowEngine:
    engine = create_workflow_engine(user_id)
    await engine.load_workflow(workflow_id)
    return engine


def _progress(engine: TROWorkflowEngine) -> dict[str, Any]:
    if engine.workflow is None:
        raise HTTPException(status_code=404, detail="workflow not loaded")
    current = engine.get_current_form()
    next_form = engine.get_next_form()
    previous = engine.get_previous_form()
    return {
        "workflow": engine.workflow.to_record(),
        "current_form": current.value if current else None,
        "next_form": next_form.value if next_form else None,
        "previous_form": previous.value if previous else None,
        "can_go_next": engine.can_transition_to_next_form(),
        "can_go_previous": engine.can_transition_to_previous_form(),
        "completion_percentage": engine.get_packet_completion_percentage(),
        "estimated_time_remaining": engine.get_estimated_time_remaining(),
        "steps": [step.to_dict() for step in engine.get_form_steps()],
    }


@router.post("")
async def start_workflow(payload: dict, user_id: str = Query(...)) -> dict:
    packet_type = payload.get("packet_type")
    if not packet_type:
        raise HTTPException(status_code=400, detail="packet_type is required")
    try:
        packet_type = PacketType(packet_type)
        config = PacketConfig().merged(payload.get("config") or {})
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    engine = create_workflow_engine(user_id)
    await engine.start_workflow(packet_type, config)
    return _progress(engine)


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: str, user_id: str = Query(...)) -> dict:
    engine = await _load(workflow_id, user_id)
    return _progress(engine)


@router.post("/{workflow_id}/forms/{form_type}/status")
async def update_form_status(workflow_id: str, form_type: str, payload: dict, user_id: str = Query(...)) -> dict:
    target = _form_type(form_type)
    try:
        status = FormStatus(payload.get("status"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="status must be a known form status") from exc
    engine = await _load(workflow_id, user_id)
    await engine.update_form_status(target, status)
    return _progress(engine)


@router.patch("/{workflow_id}/config")
async def update_packet_config(workflow_id: str, payload: dict, user_id: str = Query(...)) -> dict:
    engine = await _load(workflow_id, user_id)
    await engine.update_packet_config(payload)
    return _progress(engine)


@router.post("/{workflow_id}/transitions")
async def transition(workflow_id: str, payload: dict, user_id: str = Query(...)) -> dict:
    action = payload.get("action")
    engine = await _load(workflow_id, user_id)
    if action == "next":
        await engine.transition_to_next_form()
    elif action == "previous":
        await engine.transition_to_previous_form()
    elif action == "jump":
        if not payload.get("form_type"):
            raise HTTPException(status_code=400, detail="form_type is required for jump")
        await engine.jump_to_form(_form_type(payload["form_type"]))
    elif action == "complete":
        await engine.complete_workflow()
    elif action == "reset":
        await engine.reset_workflow()
    elif action == "file":
        await engine.mark_filed()
    else:
        raise HTTPException(
            status_code=400,
            detail="action must be one of next, previous, jump, complete, reset, file",
        )
    return _progress(engine)


@router.get("/{workflow_id}/forms/{form_type}")
async def get_form_data(workflow_id: str, form_type: str, user_id: str = Query(...)) -> dict:
    target = _form_type(form_type)
    engine = await _load(workflow_id, user_id)
    data = await engine.get_form_data(target)
    if data is None:
        raise HTTPException(status_code=404, detail="form data not found")
    return {"form_type": target.value, "data": data}


@router.put("/{workflow_id}/forms/{form_type}")
async def save_form_data(workflow_id: str, form_type: str, payload: dict, user_id: str = Query(...)) -> dict:
    target = _form_type(form_type)
    data = payload.get("data")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="data must be an object")
    validation = validate_form_schema(target, data)
    if not validation.valid:
        raise HTTPException(status_code=422, detail=validation.to_dict())
    engine = await _load(workflow_id, user_id)
    document_id = await engine.save_form_data(target, data)
    return {"form_type": target.value, "document_id": document_id}


@router.post("/{workflow_id}/forms/{form_type}/autofill")
async def autofill_form(workflow_id: str, form_type: str, payload: dict, user_id: str = Query(...)) -> dict:
    target = _form_type(form_type)
    source = str(payload.get("source") or "both")
    engine = await _load(workflow_id, user_id)
    if source == "previous":
        result = await engine.autofill_form_from_previous(target)
    elif source == "vault":
        result = await engine.autofill_form_from_vault(target)
    elif source == "both":
        result = await engine.autofill_form(target)
    else:
        raise HTTPException(status_code=400, detail="source must be previous, vault or both")
    return result.to_dict()


@router.get("/{workflow_id}/validation")
async def validate_workflow(workflow_id: str, user_id: str = Query(...)) -> dict:
    engine = await _load(workflow_id, user_id)
    packet = await engine.validate_packet()
    current = await engine.validate_current_form()
    return {"packet": packet.to_dict(), "current_form": current.to_dict()}
