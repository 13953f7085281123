from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from troflow.application import get_stores
from troflow.core.schema import PersonalInfo

router = APIRouter(prefix="/vault", tags=["vault"])


@router.get("/{user_id}")
async def get_personal_info(user_id: str) -> dict:
    record = await get_stores().vault.get(user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="no personal info stored")
    return record


@router.put("/{user_id}")
async def put_personal_info(user_id: str, payload: dict) -> dict:
    try:
        info = PersonalInfo.model_validate(payload)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise HTTPException(status_code=422, detail=errors) from exc
    return await get_stores().vault.put(user_id, info.model_dump(exclude_none=True))
