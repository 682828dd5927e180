"""
Typed errors raised at the operation boundary.

Every error carries a stable ``code`` so any transport can map it without
inspecting the class hierarchy.
"""
from __future__ import annotations

from typing import Any


class DocumentControlError(Exception):
    code = "INTERNAL_SERVER_ERROR"
    default_message = "An internal error occurred."

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class NotFoundError(DocumentControlError):
    code = "NOT_FOUND"
    default_message = "The resource does not exist."


class InvalidStateError(DocumentControlError):
    code = "INVALID_STATE"
    default_message = "The operation is not allowed in the current state."


class ConflictError(DocumentControlError):
    code = "CONFLICT"
    default_message = "A resource with that value already exists."


class ValidationError(DocumentControlError):
    code = "BAD_USER_INPUT"
    default_message = "The input is invalid."


class UnauthenticatedError(DocumentControlError):
    code = "UNAUTHENTICATED"
    default_message = "Authentication is required."


class ForbiddenError(DocumentControlError):
    code = "FORBIDDEN"
    default_message = "You are not authorized."


class InternalError(DocumentControlError):
    pass
