from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlmodel import Session

from plantops.auth.roles import USER_ADMIN_ROLES, UserRole, is_super_admin
from plantops.auth.schemas import UserProfile
from plantops.auth.user_model import User
from plantops.db import get_session
from plantops.dependencies import (
    AuditRequestContext,
    get_current_user,
    get_request_audit_context,
    require_roles,
)
from plantops.permissions.checker import PermissionChecker
from plantops.permissions.defaults import default_matrix_for_role
from plantops.permissions.matrix import PermissionMatrix, PlantScope
from plantops.permissions.models import PermissionLevel, PermissionModule
from plantops.permissions.service import (
    UnknownPermissionError,
    assign_permissions,
    create_permission,
    fetch_user_permissions,
    get_all_default_permissions_from_db,
    list_permission_catalog,
    resolve_default_matrix,
    reset_user_permissions_to_default,
    save_default_permissions_to_db,
    save_user_permissions,
)
from plantops.plant.models import list_plant_unit_pairs

router = APIRouter(prefix="/api/permissions", tags=["permissions"])

require_user_admin = require_roles(*USER_ADMIN_ROLES)


class PlantUnitIn(BaseModel):
    category: str = Field(min_length=1, max_length=128)
    unit: str = Field(min_length=1, max_length=128)


class PermissionRead(BaseModel):
    id: int
    module_name: str
    permission_level: str
    plant_units: Optional[List[Dict[str, str]]] = None
    description: Optional[str] = None


class CreatePermissionRequest(BaseModel):
    module_name: PermissionModule
    permission_level: PermissionLevel
    plant_units: Optional[List[PlantUnitIn]] = None
    description: Optional[str] = Field(default=None, max_length=256)

    @model_validator(mode="after")
    def plant_units_only_for_plant_operations(self) -> "CreatePermissionRequest":
        if self.module_name is PermissionModule.PLANT_OPERATIONS and not self.plant_units:
            raise ValueError("plant_operations permissions need at least one plant unit")
        if self.module_name is not PermissionModule.PLANT_OPERATIONS and self.plant_units:
            raise ValueError("plant_units only apply to plant_operations")
        return self


class UserPermissionsResponse(BaseModel):
    user_id: int
    role: str
    permissions: PermissionMatrix


class AssignPermissionsRequest(BaseModel):
    permission_ids: List[int] = []

    @field_validator("permission_ids")
    @classmethod
    def ensure_unique_ids(cls, permission_ids: List[int]) -> List[int]:
        if len(set(permission_ids)) != len(permission_ids):
            raise ValueError("duplicate permission id")
        return permission_ids


class PermissionCheckRequest(BaseModel):
    module: str
    required_level: str = PermissionLevel.READ.value
    category: Optional[str] = None
    unit: Optional[str] = None


class PermissionCheckResponse(BaseModel):
    allowed: bool
    level: PermissionLevel


def _get_user_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
    return user


def _parse_role_or_404(role: str) -> UserRole:
    parsed = UserRole.parse(role)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown role: {role}")
    return parsed


@router.get("/", response_model=List[PermissionRead], dependencies=[Depends(require_user_admin)])
def list_permissions(session: Session = Depends(get_session)):
    return [
        PermissionRead(
            id=perm.id,
            module_name=perm.module_name,
            permission_level=perm.permission_level,
            plant_units=perm.plant_units,
            description=perm.description,
        )
        for perm in list_permission_catalog(session)
    ]


@router.post("/", response_model=PermissionRead, status_code=status.HTTP_201_CREATED)
def create_catalog_permission(
    payload: CreatePermissionRequest,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    perm = create_permission(
        session,
        module=payload.module_name,
        level=payload.permission_level,
        plant_units=[unit.model_dump() for unit in payload.plant_units] if payload.plant_units else None,
        description=payload.description,
        changed_by=current_user,
        audit_ctx=audit_ctx,
    )
    return PermissionRead(
        id=perm.id,
        module_name=perm.module_name,
        permission_level=perm.permission_level,
        plant_units=perm.plant_units,
        description=perm.description,
    )


@router.post("/check", response_model=PermissionCheckResponse)
def check_permission(
    payload: PermissionCheckRequest,
    current_user: UserProfile = Depends(get_current_user),
):
    checker = PermissionChecker(current_user)
    scope = None
    if payload.category and payload.unit:
        scope = PlantScope(category=payload.category, unit=payload.unit)
    allowed = checker.has_permission(payload.module, payload.required_level, scope)

    level = checker.get_permission_level(payload.module)
    scoped = scope is not None and PermissionModule.parse(payload.module) is PermissionModule.PLANT_OPERATIONS
    if scoped and level is not PermissionLevel.NONE and not is_super_admin(current_user.role):
        level = current_user.permissions.level_for(PermissionModule.PLANT_OPERATIONS, scope)
    return PermissionCheckResponse(allowed=allowed, level=level)


@router.get("/users/{user_id}", response_model=UserPermissionsResponse, dependencies=[Depends(require_user_admin)])
def get_user_permissions(user_id: int, session: Session = Depends(get_session)):
    user = _get_user_or_404(session, user_id)
    return UserPermissionsResponse(
        user_id=user.id,
        role=user.role,
        permissions=fetch_user_permissions(session, user.id),
    )


@router.put("/users/{user_id}", response_model=UserPermissionsResponse)
def update_user_permissions(
    user_id: int,
    payload: PermissionMatrix,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    user = _get_user_or_404(session, user_id)
    matrix = save_user_permissions(session, user, payload, changed_by=current_user, audit_ctx=audit_ctx)
    return UserPermissionsResponse(user_id=user.id, role=user.role, permissions=matrix)


@router.post("/users/{user_id}/reset", response_model=UserPermissionsResponse)
def reset_user_permissions(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    user = _get_user_or_404(session, user_id)
    matrix = reset_user_permissions_to_default(session, user, changed_by=current_user, audit_ctx=audit_ctx)
    return UserPermissionsResponse(user_id=user.id, role=user.role, permissions=matrix)


@router.put("/users/{user_id}/assignments", response_model=UserPermissionsResponse)
def update_user_assignments(
    user_id: int,
    payload: AssignPermissionsRequest,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    user = _get_user_or_404(session, user_id)
    try:
        matrix = assign_permissions(
            session,
            user,
            payload.permission_ids,
            changed_by=current_user,
            audit_ctx=audit_ctx,
        )
    except UnknownPermissionError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"unknown permission ids: {exc.missing}",
        )
    return UserPermissionsResponse(user_id=user.id, role=user.role, permissions=matrix)


@router.get("/defaults", response_model=Dict[str, PermissionMatrix], dependencies=[Depends(require_user_admin)])
def list_default_permissions(session: Session = Depends(get_session)):
    """Effective default matrix per role: stored override, else built-in."""
    stored = get_all_default_permissions_from_db(session)
    plant_units = list_plant_unit_pairs(session)
    return {
        role.value: stored.get(role.value) or default_matrix_for_role(role, plant_units)
        for role in UserRole
    }


@router.get("/defaults/{role}", response_model=PermissionMatrix, dependencies=[Depends(require_user_admin)])
def get_default_permissions(role: str, session: Session = Depends(get_session)):
    parsed = _parse_role_or_404(role)
    return resolve_default_matrix(session, parsed.value)


@router.put("/defaults/{role}", response_model=PermissionMatrix)
def update_default_permissions(
    role: str,
    payload: PermissionMatrix,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_roles(UserRole.SUPER_ADMIN)),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    parsed = _parse_role_or_404(role)
    return save_default_permissions_to_db(
        session,
        parsed.value,
        payload,
        changed_by=current_user,
        audit_ctx=audit_ctx,
    )
