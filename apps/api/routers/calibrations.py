"""Calibration endpoints: derive parameter ranges from quiz answers and read them back."""

from __future__ import annotations

import logging
from typing import List, Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.audit_log import AuditEventType
from services.calibration import get_calibration_for_user, save_calibration, serialize_calibration
from services.schemas import CalibrationAnswer

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateCalibrationRequest(BaseModel):
    mode: Literal["quick", "deep"] = "quick"
    answers: List[CalibrationAnswer] = Field(min_length=1)


@router.post("")
async def create_calibration(
    payload: CreateCalibrationRequest,
    request: Request,
    _rate_limit: None = Depends(rate_limit("calibration_create", limit=30, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    calibration = await save_calibration(auth.user_id, db, mode=payload.mode, answers=payload.answers)
    await request.app.state.generation_pipeline.audit.log_event(
        AuditEventType.CALIBRATION_COMPLETED,
        {
            "calibration_id": calibration.id,
            "mode": calibration.mode,
            "answer_count": len(payload.answers),
        },
        user_id=auth.user_id,
    )
    return serialize_calibration(calibration)


@router.get("/latest")
async def latest_calibration(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    calibration = await get_calibration_for_user(auth.user_id, db)
    if calibration is None:
        raise HTTPException(status_code=404, detail="No calibration found. Please complete calibration first.")
    return serialize_calibration(calibration)
