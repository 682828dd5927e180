from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from flask import g, has_app_context
from sqlalchemy.orm import Session

from app.edms.errors import DocumentControlError
from app.edms.models import AuditEvent

if TYPE_CHECKING:
    from app.edms.rbac import Actor


def _current_request_id() -> str | None:
    if not has_app_context():
        return None
    return getattr(g, "request_id", None)


def record_event(
    s: Session,
    *,
    actor: Actor | None,
    action: str,
    level: str = "INFO",
    message: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    ev = AuditEvent(
        request_id=request_id or _current_request_id(),
        level=level,
        action=action,
        message=message,
        actor_user_id=actor.user_id if actor else None,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def serialize_error(exc: BaseException) -> dict[str, Any]:
    out: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, DocumentControlError):
        out["code"] = exc.code
        if exc.details:
            out["details"] = exc.details
    cause = exc.__cause__
    if cause is not None:
        out["cause"] = {"type": type(cause).__name__, "message": str(cause)}
    return out
