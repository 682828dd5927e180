"""
Operation boundary shared by every module service.

An operation runs as one transaction on the caller's session:
permission check -> body -> flush/commit. Any failure rolls the whole
transaction back, appends an ERROR audit event in a fresh transaction, and
raises a typed DocumentControlError (never a raw storage-layer error).
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, NoResultFound
from sqlalchemy.orm import Session

from app.edms.audit import record_event, serialize_error
from app.edms.errors import ConflictError, DocumentControlError, InternalError, NotFoundError
from app.edms.rbac import Actor, require_permission

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    return "foreign key" in str(exc.orig).lower()


def translate_error(exc: Exception, messages: dict[str, str]) -> DocumentControlError:
    if isinstance(exc, DocumentControlError):
        return exc
    if isinstance(exc, IntegrityError):
        if _is_foreign_key_violation(exc):
            return ConflictError(messages.get("foreign_key_constraint") or "A referenced resource does not exist.")
        return ConflictError(messages.get("unique_constraint") or ConflictError.default_message)
    if isinstance(exc, NoResultFound):
        return NotFoundError(messages.get("not_found"))
    return InternalError(messages.get("default"))


def _record_failure(s: Session, action: str, actor: Actor | None, exc: Exception, err: DocumentControlError) -> None:
    try:
        record_event(
            s,
            actor=actor,
            action=action,
            level="ERROR",
            message=err.message,
            metadata=serialize_error(exc),
        )
        s.commit()
    except Exception:
        s.rollback()
        logger.exception("Could not write failure audit event (action=%s)", action)


def operation(
    action: str,
    *,
    permission: str,
    messages: dict[str, str] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    msgs = messages or {}

    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        @wraps(fn)
        def wrapped(s: Session, *args: Any, actor: Actor, **kwargs: Any) -> T:
            try:
                require_permission(actor, permission)
                result = fn(s, *args, actor=actor, **kwargs)
                s.flush()
                s.commit()
                return result
            except Exception as exc:
                s.rollback()
                err = translate_error(exc, msgs)
                if isinstance(err, InternalError):
                    logger.exception("%s failed unexpectedly (user_id=%s)", action, getattr(actor, "user_id", None))
                else:
                    logger.info("%s rejected: %s %s", action, err.code, err.message)
                _record_failure(s, action, actor, exc, err)
                if err is exc:
                    raise
                raise err from exc

        return wrapped

    return decorator
