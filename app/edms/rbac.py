from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from app.edms.errors import ForbiddenError, UnauthenticatedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Caller identity as resolved by the authorization service."""

    user_id: int | None
    permissions: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, user_id: int, permissions: Iterable[str]) -> "Actor":
        return cls(user_id=user_id, permissions=frozenset(permissions))


def user_has_permission(actor: Actor | None, permission_key: str) -> bool:
    if not actor or not actor.user_id:
        return False
    return permission_key in actor.permissions


def require_permission(actor: Actor | None, permission_key: str) -> Actor:
    # Unauthenticated → 401-style error; authenticated but unauthorized → 403-style error.
    if actor is None or not isinstance(actor.user_id, int) or actor.user_id <= 0:
        raise UnauthenticatedError("A valid caller identity is required.")
    if not user_has_permission(actor, permission_key):
        logger.warning("Forbidden: user_id=%s missing_permission=%s", actor.user_id, permission_key)
        raise ForbiddenError("You are not authorized.", missing_permission=permission_key)
    return actor
