from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_DB_PATH = (BASE_DIR / "plantops.db").resolve()


def _as_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid int for %r, using default=%s", value, default)
        return default


def _ensure_min(name: str, value: int, minimum: int) -> int:
    if value < minimum:
        logger.warning(
            "%s (%s) is lower than minimum %s; using %s",
            name,
            value,
            minimum,
            minimum,
        )
        return minimum
    return value


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    items = []
    for raw in value.replace(";", ",").split(","):
        cleaned = raw.strip()
        if cleaned:
            items.append(cleaned)
    return items


def _split_pairs(value: Optional[str]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for item in _split_list(value):
        category, sep, unit = item.partition("/")
        if not sep or not category.strip() or not unit.strip():
            logger.warning("Ignoring plant unit %r; expected Category/Unit", item)
            continue
        pairs.append((category.strip(), unit.strip()))
    return pairs


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    test_mode: bool
    database_url: str
    secret_key: Optional[str]
    jwt_algorithm: str
    access_token_expire_minutes: int
    password_min_length: int
    password_require_classes: int
    permission_cache_ttl_seconds: int
    cors_allow_origins: List[str]
    security_headers_enabled: bool
    audit_log_path: Optional[str]
    bootstrap_admin_username: Optional[str]
    bootstrap_admin_password: Optional[str]
    plant_units: List[Tuple[str, str]]


def _build_settings() -> Settings:
    app_env = os.getenv("APP_ENV", "dev").strip().lower() or "dev"
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    test_mode = _as_bool(os.getenv("TEST_MODE")) or os.getenv("PYTEST_RUNNING") == "1"

    database_url = (os.getenv("DATABASE_URL") or "").strip() or f"sqlite:///{DEFAULT_DB_PATH.as_posix()}"

    secret_key = os.getenv("SECRET_KEY")
    if not secret_key and (test_mode or app_env in {"dev", "test"}):
        secret_key = "plantops-dev-secret"

    raw_security_headers = os.getenv("SECURITY_HEADERS_ENABLED")
    security_headers_enabled = _as_bool(raw_security_headers) if raw_security_headers is not None else True

    return Settings(
        app_env=app_env,
        log_level=log_level,
        test_mode=test_mode,
        database_url=database_url,
        secret_key=secret_key,
        jwt_algorithm=(os.getenv("JWT_ALGORITHM") or "HS256").strip() or "HS256",
        access_token_expire_minutes=_ensure_min(
            "ACCESS_TOKEN_EXPIRE_MINUTES",
            _as_int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES"), 60),
            1,
        ),
        password_min_length=_ensure_min(
            "PASSWORD_MIN_LENGTH",
            _as_int(os.getenv("PASSWORD_MIN_LENGTH"), 8),
            1,
        ),
        password_require_classes=_as_int(os.getenv("PASSWORD_REQUIRE_CLASSES"), 2),
        permission_cache_ttl_seconds=_ensure_min(
            "PERMISSION_CACHE_TTL_SECONDS",
            _as_int(os.getenv("PERMISSION_CACHE_TTL_SECONDS"), 300),
            0,
        ),
        cors_allow_origins=_split_list(os.getenv("CORS_ALLOW_ORIGINS")),
        security_headers_enabled=security_headers_enabled,
        audit_log_path=(os.getenv("AUDIT_LOG_PATH") or "").strip() or None,
        bootstrap_admin_username=(os.getenv("BOOTSTRAP_ADMIN_USERNAME") or "").strip() or None,
        bootstrap_admin_password=os.getenv("BOOTSTRAP_ADMIN_PASSWORD") or None,
        plant_units=_split_pairs(os.getenv("PLANT_UNITS")),
    )


settings = _build_settings()
