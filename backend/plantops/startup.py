"""Application startup helpers (validation + resource bootstrap)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from fastapi import FastAPI
from passlib.hash import bcrypt
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from plantops.auth.password_policy import check_password_policy
from plantops.auth.roles import UserRole
from plantops.auth.user_model import User
from plantops.db import engine as default_engine, init_db
from plantops.permissions.service import (
    clear_permission_cache,
    ensure_default_permissions,
    initialize_user_permissions,
)
from plantops.plant.models import ensure_plant_units
from plantops.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class StartupDiagnostics:
    """Diagnostics captured during application startup for health/observability."""

    env_issues: List[str] = field(default_factory=list)
    db_initialized: bool = False
    permissions_seeded: int = 0
    plant_units_seeded: int = 0
    bootstrap_admin_created: bool = False
    errors: List[str] = field(default_factory=list)


def _collect_env_issues() -> List[str]:
    issues: List[str] = []
    if not settings.secret_key:
        issues.append("Environment variable 'SECRET_KEY' is not set")
    if bool(settings.bootstrap_admin_username) != bool(settings.bootstrap_admin_password):
        issues.append("BOOTSTRAP_ADMIN_USERNAME and BOOTSTRAP_ADMIN_PASSWORD must be set together")
    return issues


def bootstrap_super_admin(session: Session, username: str, password: str) -> Optional[User]:
    """Create the first Super Admin when no active one exists. Returns the new user, if any."""
    existing = session.exec(
        select(User).where(User.role == UserRole.SUPER_ADMIN.value, User.is_active == True)  # noqa: E712
    ).first()
    if existing is not None:
        return None

    policy_errors = check_password_policy(
        password,
        min_length=settings.password_min_length,
        require_classes=settings.password_require_classes,
    )
    if policy_errors:
        raise ValueError("; ".join(policy_errors))

    user = User(
        username=username,
        full_name="Super Admin",
        hashed_password=bcrypt.hash(password),
        role=UserRole.SUPER_ADMIN.value,
    )
    session.add(user)
    session.flush()
    initialize_user_permissions(session, user)
    session.refresh(user)
    logger.info("Bootstrap Super Admin '%s' created", username)
    return user


def run_startup(
    bind: Optional[Engine] = None,
    plant_units: Optional[Iterable[Tuple[str, str]]] = None,
) -> StartupDiagnostics:
    diagnostics = StartupDiagnostics()

    diagnostics.env_issues = _collect_env_issues()
    if diagnostics.env_issues:
        logger.error("Configuration issues detected: %s", diagnostics.env_issues)
    else:
        logger.info("Environment variables validated successfully")

    target = bind or default_engine
    try:
        init_db(bind=target)
        diagnostics.db_initialized = True
        logger.info("Database metadata ensured")
    except SQLAlchemyError as exc:
        diagnostics.errors.append(f"Database init failed: {exc}")
        logger.exception("Database initialization failed")
        return diagnostics

    clear_permission_cache()

    with Session(target) as session:
        try:
            diagnostics.permissions_seeded = ensure_default_permissions(session)
            if diagnostics.permissions_seeded:
                logger.info("Seeded %d catalog permissions", diagnostics.permissions_seeded)
        except SQLAlchemyError as exc:
            diagnostics.errors.append(f"Permission seed failed: {exc}")
            logger.exception("Permission catalog seed failed")

        try:
            diagnostics.plant_units_seeded = ensure_plant_units(
                session, settings.plant_units if plant_units is None else plant_units
            )
            if diagnostics.plant_units_seeded:
                logger.info("Seeded %d plant units", diagnostics.plant_units_seeded)
        except SQLAlchemyError as exc:
            session.rollback()
            diagnostics.errors.append(f"Plant unit seed failed: {exc}")
            logger.exception("Plant unit seed failed")

        if settings.bootstrap_admin_username and settings.bootstrap_admin_password:
            try:
                created = bootstrap_super_admin(
                    session,
                    settings.bootstrap_admin_username,
                    settings.bootstrap_admin_password,
                )
                diagnostics.bootstrap_admin_created = created is not None
            except (ValueError, SQLAlchemyError) as exc:
                diagnostics.errors.append(f"Bootstrap admin failed: {exc}")
                logger.exception("Bootstrap Super Admin creation failed")

    return diagnostics


def register_startup_events(app: FastAPI) -> None:
    """Attach startup hooks that validate configuration and seed the permission catalog."""

    @app.on_event("startup")
    async def on_startup() -> None:
        app.state.startup_diagnostics = run_startup()
