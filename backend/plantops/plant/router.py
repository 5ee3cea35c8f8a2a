from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from plantops.audit.service import log_audit
from plantops.auth.roles import USER_ADMIN_ROLES
from plantops.auth.schemas import UserProfile
from plantops.db import get_session
from plantops.dependencies import AuditRequestContext, get_request_audit_context, require_roles
from plantops.plant.models import PlantUnit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plant-units", tags=["plant-units"])

require_user_admin = require_roles(*USER_ADMIN_ROLES)


class PlantUnitRead(BaseModel):
    id: int
    category: str
    unit: str
    description: Optional[str] = None


class CreatePlantUnitRequest(BaseModel):
    category: str = Field(min_length=1, max_length=128)
    unit: str = Field(min_length=1, max_length=128)
    description: Optional[str] = Field(default=None, max_length=256)

    @field_validator("category", "unit")
    @classmethod
    def strip_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("must not be blank")
        return trimmed


def _read(row: PlantUnit) -> PlantUnitRead:
    return PlantUnitRead(id=row.id, category=row.category, unit=row.unit, description=row.description)


@router.get("/", response_model=List[PlantUnitRead], dependencies=[Depends(require_user_admin)])
def list_plant_units(session: Session = Depends(get_session)):
    rows = session.exec(select(PlantUnit).order_by(PlantUnit.category, PlantUnit.unit)).all()
    return [_read(row) for row in rows]


@router.post("/", response_model=PlantUnitRead, status_code=status.HTTP_201_CREATED)
def create_plant_unit(
    payload: CreatePlantUnitRequest,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    """Register a plant unit. New users and role resets spread plant-wide defaults over these."""
    duplicate = session.exec(
        select(PlantUnit).where(PlantUnit.category == payload.category, PlantUnit.unit == payload.unit)
    ).first()
    if duplicate is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="plant unit already exists")

    row = PlantUnit(category=payload.category, unit=payload.unit, description=payload.description)
    try:
        session.add(row)
        session.flush()
        log_audit(
            session,
            actor=current_user,
            action="plant_units.create",
            target_type="plant_unit",
            target_id=row.id,
            meta={"category": row.category, "unit": row.unit},
            ip=audit_ctx.ip,
            ua=audit_ctx.user_agent,
            corr=audit_ctx.correlation_id,
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="plant unit already exists")
    session.refresh(row)
    logger.info("Plant unit %s/%s registered by %s", row.category, row.unit, current_user.username)
    return _read(row)
