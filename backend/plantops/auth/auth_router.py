import logging

from fastapi import APIRouter, Depends, HTTPException, status
from passlib.hash import bcrypt
from pydantic import BaseModel
from sqlmodel import Session, select

from plantops.audit.service import log_audit
from plantops.auth.jwt_handler import create_access_token
from plantops.auth.schemas import UserProfile
from plantops.auth.user_model import User
from plantops.dependencies import (
    AuditRequestContext,
    get_current_user,
    get_request_audit_context,
    get_session,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/login", response_model=TokenResponse)
def login(
    request: LoginRequest,
    session: Session = Depends(get_session),
    audit_ctx: AuditRequestContext = Depends(get_request_audit_context),
):
    """
    1. Look the user up by username.
    2. Verify the password against the stored bcrypt hash.
    3. Reject inactive accounts.
    4. Issue a JWT whose ``sub`` is the username.
    """
    user = session.exec(select(User).where(User.username == request.username)).first()

    logger.info("Login attempt for user '%s'", request.username)

    if not user or not bcrypt.verify(request.password, user.hashed_password):
        logger.warning("Login failed for user '%s'", request.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )
    if not user.is_active:
        logger.warning("Login refused for inactive user '%s'", request.username)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    user.mark_active()
    session.add(user)
    log_audit(
        session,
        actor=user,
        action="auth.login",
        target_type="user",
        target_id=user.id,
        ip=audit_ctx.ip,
        ua=audit_ctx.user_agent,
        corr=audit_ctx.correlation_id,
    )
    session.commit()

    logger.info("Login succeeded for user '%s'", request.username)
    return {"access_token": create_access_token({"sub": user.username})}


@router.get("/me", response_model=UserProfile)
def me(current_user: UserProfile = Depends(get_current_user)):
    return current_user
