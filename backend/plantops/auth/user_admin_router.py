from __future__ import annotations

import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from passlib.hash import bcrypt
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session, select

from plantops.audit.service import log_audit
from plantops.auth.password_policy import check_password_policy
from plantops.auth.roles import USER_ADMIN_ROLES, UserRole
from plantops.auth.schemas import UserProfile, build_user_profile
from plantops.auth.user_model import User
from plantops.db import get_session
from plantops.dependencies import AuditRequestContext, get_request_audit_context, require_roles
from plantops.permissions.service import (
    delete_user_permissions,
    fetch_user_permissions,
    initialize_user_permissions,
    notify_user_permissions_changed,
    notify_user_permissions_deleted,
    reset_user_permissions_to_default,
)
from plantops.settings import settings

router = APIRouter(prefix="/api/users", tags=["users"])

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")

require_user_admin = require_roles(*USER_ADMIN_ROLES)


class CreateUserRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=1, max_length=256)
    full_name: Optional[str] = Field(default=None, max_length=128)
    role: UserRole = UserRole.GUEST
    is_active: bool = True

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        trimmed = value.strip()
        if not _USERNAME_RE.match(trimmed):
            raise ValueError("invalid username")
        return trimmed


class UpdateUserRequest(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=128)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=1, max_length=256)


class UserSummary(BaseModel):
    id: int
    username: str
    full_name: Optional[str] = None
    role: str
    is_active: bool


def _summary(user: User) -> UserSummary:
    return UserSummary(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=user.role,
        is_active=user.is_active,
    )


def _enforce_password_policy(password: str) -> None:
    policy_errors = check_password_policy(
        password,
        min_length=settings.password_min_length,
        require_classes=settings.password_require_classes,
    )
    if policy_errors:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "password_policy", "messages": policy_errors},
        )


def _count_active_super_admins(session: Session) -> int:
    rows = session.exec(
        select(User).where(User.role == UserRole.SUPER_ADMIN.value, User.is_active == True)  # noqa: E712
    ).all()
    return len(rows)


def _guard_last_super_admin(session: Session, user: User) -> None:
    if user.role == UserRole.SUPER_ADMIN.value and user.is_active and _count_active_super_admins(session) <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The system must keep at least one active Super Admin.",
        )


def _get_user_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
    return user


@router.get("/", response_model=List[UserSummary], dependencies=[Depends(require_user_admin)])
def list_users(session: Session = Depends(get_session)):
    users = session.exec(select(User).order_by(User.created_at.desc(), User.id.desc())).all()
    return [_summary(u) for u in users]


@router.get("/{user_id}", response_model=UserProfile, dependencies=[Depends(require_user_admin)])
def get_user(user_id: int, session: Session = Depends(get_session)):
    user = _get_user_or_404(session, user_id)
    return build_user_profile(user, fetch_user_permissions(session, user.id))


@router.post("/", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: CreateUserRequest,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    if payload.role is UserRole.SUPER_ADMIN and UserRole.parse(current_user.role) is not UserRole.SUPER_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only a Super Admin can create Super Admins")

    _enforce_password_policy(payload.password)

    existing = session.exec(select(User).where(User.username == payload.username)).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username already exists")

    new_user = User(
        username=payload.username,
        full_name=payload.full_name,
        hashed_password=bcrypt.hash(payload.password),
        role=payload.role.value,
        is_active=payload.is_active,
    )
    session.add(new_user)
    session.flush()
    log_audit(
        session,
        actor=current_user,
        action="users.create",
        target_type="user",
        target_id=new_user.id,
        meta={"username": new_user.username, "role": new_user.role},
        ip=audit_ctx.ip,
        ua=audit_ctx.user_agent,
        corr=audit_ctx.correlation_id,
    )
    # committed together with the permission row
    matrix = initialize_user_permissions(session, new_user, changed_by=current_user, audit_ctx=audit_ctx)
    session.refresh(new_user)
    return build_user_profile(new_user, matrix)


@router.patch("/{user_id}", response_model=UserProfile)
def update_user(
    user_id: int,
    payload: UpdateUserRequest,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    user = _get_user_or_404(session, user_id)
    changes = {}

    role_changed = payload.role is not None and payload.role.value != user.role
    deactivating = payload.is_active is False and user.is_active
    if role_changed or deactivating:
        _guard_last_super_admin(session, user)
    if payload.role is UserRole.SUPER_ADMIN and UserRole.parse(current_user.role) is not UserRole.SUPER_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only a Super Admin can grant Super Admin")

    if payload.password is not None:
        _enforce_password_policy(payload.password)
        user.hashed_password = bcrypt.hash(payload.password)
        changes["password"] = "changed"
    if payload.full_name is not None and payload.full_name != user.full_name:
        changes["full_name"] = {"from": user.full_name, "to": payload.full_name}
        user.full_name = payload.full_name
    if role_changed:
        changes["role"] = {"from": user.role, "to": payload.role.value}
        user.role = payload.role.value
    if payload.is_active is not None and payload.is_active != user.is_active:
        changes["is_active"] = {"from": user.is_active, "to": payload.is_active}
        user.is_active = payload.is_active

    user.touch()
    session.add(user)
    log_audit(
        session,
        actor=current_user,
        action="users.update",
        target_type="user",
        target_id=user.id,
        meta={"username": user.username, "changes": changes},
        ip=audit_ctx.ip,
        ua=audit_ctx.user_agent,
        corr=audit_ctx.correlation_id,
    )
    session.commit()
    session.refresh(user)

    if role_changed:
        # a role change moves the user onto the new role's defaults
        matrix = reset_user_permissions_to_default(session, user, changed_by=current_user, audit_ctx=audit_ctx)
    else:
        if deactivating:
            # open sessions refetch, find the user inactive and close
            notify_user_permissions_changed(user.id)
        matrix = fetch_user_permissions(session, user.id)
    return build_user_profile(user, matrix)


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: UserProfile = Depends(require_user_admin),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    user = _get_user_or_404(session, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own account")
    _guard_last_super_admin(session, user)

    target_username = user.username
    removed_rows = delete_user_permissions(session, user.id)
    session.delete(user)
    log_audit(
        session,
        actor=current_user,
        action="users.delete",
        target_type="user",
        target_id=user_id,
        meta={"username": target_username, "permission_rows": removed_rows},
        ip=audit_ctx.ip,
        ua=audit_ctx.user_agent,
        corr=audit_ctx.correlation_id,
    )
    session.commit()
    notify_user_permissions_deleted(user_id)

    return {"ok": True}
