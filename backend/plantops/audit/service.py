from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from plantops.audit.models import AuditLog
from plantops.settings import settings

PERMISSION_CHANGE_ACTION = "permission_change"

_audit_logger = logging.getLogger("plantops.audit")
_audit_logger_lock = threading.Lock()
_audit_logger_ready = False


@dataclass(frozen=True)
class AuditRequestContext:
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None


@dataclass(slots=True)
class AuditActor:
    id: Optional[int]
    username: Optional[str]


SYSTEM_ACTOR = AuditActor(id=None, username="system")


def _resolve_actor(actor: Any) -> AuditActor:
    if actor is None:
        return SYSTEM_ACTOR
    if isinstance(actor, AuditActor):
        return actor
    if isinstance(actor, str):
        return AuditActor(id=None, username=actor)
    if isinstance(actor, Mapping):
        return AuditActor(id=actor.get("id"), username=actor.get("username"))
    return AuditActor(id=getattr(actor, "id", None), username=getattr(actor, "username", None))


def _normalize_meta(value: Any) -> Optional[MutableMapping[str, Any]]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return dict(value)
    return {"value": value}


def _truncate_error(value: Exception | str, max_len: int = 200) -> str:
    msg = str(value).strip()
    if not msg:
        return "unknown error"
    if len(msg) > max_len:
        return f"{msg[:max_len]}..."
    return msg


def get_audit_logger() -> logging.Logger:
    global _audit_logger_ready
    if _audit_logger_ready and _audit_logger.handlers:
        return _audit_logger
    with _audit_logger_lock:
        if _audit_logger_ready and _audit_logger.handlers:
            return _audit_logger

        handler: logging.Handler
        if settings.audit_log_path:
            path = Path(settings.audit_log_path).expanduser().resolve()
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                handler = logging.FileHandler(path, encoding="utf-8")
            except OSError as exc:
                print(
                    f"Audit log file disabled; falling back to stdout. Reason: {_truncate_error(exc)}",
                    file=sys.stderr,
                )
                handler = logging.StreamHandler(stream=sys.stdout)
        else:
            handler = logging.StreamHandler(stream=sys.stdout)

        handler.setFormatter(logging.Formatter("%(message)s"))
        handler.setLevel(logging.INFO)
        _audit_logger.addHandler(handler)
        _audit_logger.setLevel(logging.INFO)
        _audit_logger.propagate = False
        _audit_logger_ready = True
    return _audit_logger


def log_audit(
    session: Session,
    *,
    actor: Any,
    action: str,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    meta: Any = None,
    ip: Optional[str] = None,
    ua: Optional[str] = None,
    corr: Optional[str] = None,
) -> AuditLog:
    """
    Persist an audit record and emit the same payload to the audit logger.

    The record is flushed inside a savepoint but not committed; the caller owns
    the transaction. A failed write is reported in the log line instead of
    raised.
    """
    actor_info = _resolve_actor(actor)
    meta_dict = _normalize_meta(meta)
    when = datetime.now(timezone.utc)

    entry = AuditLog(
        when=when,
        actor_id=actor_info.id,
        actor_username=actor_info.username,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta=meta_dict,
        ip=ip,
        user_agent=ua,
        correlation_id=corr,
    )

    db_write = "ok"
    db_error = None
    try:
        with session.begin_nested():
            session.add(entry)
            session.flush()
    except SQLAlchemyError as exc:
        db_write = "failed"
        db_error = _truncate_error(exc)
        if entry in session:
            session.expunge(entry)

    payload = {
        "id": entry.id,
        "when": when.isoformat(),
        "actor": asdict(actor_info),
        "action": action,
        "target_type": target_type,
        "target_id": entry.target_id,
        "meta": meta_dict,
        "ip": ip,
        "user_agent": ua,
        "correlation_id": corr,
        "db_write": db_write,
        "db_error": db_error,
    }
    get_audit_logger().info(json.dumps(payload, ensure_ascii=False, default=str))

    return entry


def log_permission_change(
    session: Session,
    *,
    user_id: int,
    change: str,
    old_permissions: Optional[Mapping[str, Any]],
    new_permissions: Optional[Mapping[str, Any]],
    changed_by: Any = None,
    audit_ctx: Optional[AuditRequestContext] = None,
) -> AuditLog:
    """Record a change to a user's permission matrix (created, updated, reset_to_default...)."""
    ctx = audit_ctx or AuditRequestContext()
    return log_audit(
        session,
        actor=changed_by,
        action=PERMISSION_CHANGE_ACTION,
        target_type="user",
        target_id=user_id,
        meta={
            "change": change,
            "old_permissions": dict(old_permissions) if old_permissions is not None else None,
            "new_permissions": dict(new_permissions) if new_permissions is not None else None,
        },
        ip=ctx.ip,
        ua=ctx.user_agent,
        corr=ctx.correlation_id,
    )
