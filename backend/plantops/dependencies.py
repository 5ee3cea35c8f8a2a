import logging
from typing import Callable, Optional, Union

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError
from sqlmodel import Session, select

from plantops.audit.service import AuditRequestContext
from plantops.auth.jwt_handler import decode_access_token
from plantops.auth.roles import UserRole
from plantops.auth.schemas import UserProfile, build_user_profile
from plantops.auth.user_model import User
from plantops.db import get_session
from plantops.permissions.checker import PermissionChecker
from plantops.permissions.models import PermissionLevel, PermissionModule
from plantops.permissions.service import fetch_user_permissions

security = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)

__all__ = [
    "AuditRequestContext",
    "get_current_db_user",
    "get_current_user",
    "get_request_audit_context",
    "get_session",
    "require_permission",
    "require_roles",
    "resolve_user_from_token",
]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_user_from_token(token: str, session: Session) -> User:
    """
    1. Decode and verify the JWT (signature and expiry).
    2. Read the ``sub`` claim (username).
    3. Load the matching active user.
    Raises 401 for anything that does not resolve to an active user.
    """
    try:
        payload = decode_access_token(token)
    except ExpiredSignatureError:
        logger.info("Expired JWT received")
        raise _unauthorized("Token expired")
    except JWTError:
        logger.warning("Invalid JWT received")
        raise _unauthorized("Invalid token")

    username = payload.get("sub")
    if not username:
        logger.warning("JWT token lacking 'sub' claim")
        raise _unauthorized("Invalid token (missing 'sub')")

    user = session.exec(select(User).where(User.username == username)).first()
    if user is None or not user.is_active:
        logger.warning("Token for unknown or inactive user '%s'", username)
        raise _unauthorized("User not found or inactive")
    return user


def get_current_db_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: Session = Depends(get_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    return resolve_user_from_token(credentials.credentials, session)


def get_current_user(
    user: User = Depends(get_current_db_user),
    session: Session = Depends(get_session),
) -> UserProfile:
    """The authenticated user with its permission matrix attached."""
    return build_user_profile(user, fetch_user_permissions(session, user.id))


def get_request_audit_context(request: Request) -> AuditRequestContext:
    client_ip = request.client.host if request.client else None
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip() or client_ip
    return AuditRequestContext(
        ip=client_ip,
        user_agent=request.headers.get("User-Agent"),
        correlation_id=getattr(request.state, "correlation_id", None),
    )


def require_permission(
    module: Union[str, PermissionModule],
    level: Union[str, PermissionLevel] = PermissionLevel.READ,
) -> Callable[..., UserProfile]:
    """
    Dependency factory gating a route on a module permission.

    For plant_operations the optional ``category``/``unit`` query parameters
    narrow the check to one scope.
    """

    def dependency(
        request: Request,
        current_user: UserProfile = Depends(get_current_user),
    ) -> UserProfile:
        scope = None
        category = request.query_params.get("category")
        unit = request.query_params.get("unit")
        if category and unit:
            scope = (category, unit)
        if not PermissionChecker(current_user).has_permission(module, level, scope):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def require_roles(*roles: UserRole) -> Callable[..., UserProfile]:
    allowed = frozenset(roles)

    def dependency(current_user: UserProfile = Depends(get_current_user)) -> UserProfile:
        if UserRole.parse(current_user.role) not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Role not allowed")
        return current_user

    return dependency
