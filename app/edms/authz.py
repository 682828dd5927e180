"""
Client for the external authorization service.

A caller presents a ``Bearer`` JWT. The token is verified locally (HS256,
AUTH_JWT_SECRET) to read the user id and role ids; the admin API then answers
whether those roles grant the required permission codes.
"""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import jwt
from flask import current_app, request

from app.edms.errors import ForbiddenError, InternalError, UnauthenticatedError
from app.edms.rbac import Actor

logger = logging.getLogger(__name__)

HAS_PERMISSIONS_QUERY = """
query HasPermissions($roleIds: [Int!]!, $permissionCodes: [String!]!) {
  hasPermissions(roleIds: $roleIds, permissionCodes: $permissionCodes)
}
"""


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    role_ids: list[int] = field(default_factory=list)


def bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise UnauthenticatedError("A JWT token is required.")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        raise UnauthenticatedError("The token format is invalid.")
    return token.strip()


def decode_token(token: str, secret: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError as e:
        raise UnauthenticatedError("The token has expired.") from e
    except jwt.InvalidTokenError as e:
        raise UnauthenticatedError("The token is invalid.") from e

    raw_id = payload.get("id") or payload.get("sub")
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        user_id = 0
    if user_id <= 0:
        logger.warning("Valid token without a user id")
        raise UnauthenticatedError("You must sign in.")

    roles = payload.get("roles") or []
    try:
        role_ids = [int(r) for r in roles]
    except (TypeError, ValueError) as e:
        raise UnauthenticatedError("The token is invalid.") from e
    return TokenClaims(user_id=user_id, role_ids=role_ids)


@dataclass(frozen=True)
class PermissionClient:
    admin_api_url: str
    timeout_seconds: int = 10

    def request_json(self, payload: dict[str, Any], *, authorization: str) -> dict[str, Any]:
        req = urllib.request.Request(
            self.admin_api_url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
        )
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")
        # The admin API validates the token again.
        req.add_header("Authorization", authorization)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            logger.error("Admin API returned HTTP %s", e.code)
            raise InternalError("Error verifying permissions.") from e
        except urllib.error.URLError as e:
            logger.error("Admin API unreachable: %s", e.reason)
            raise InternalError("Error verifying permissions.") from e
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise InternalError("Invalid JSON from the admin API.") from e

    def has_permissions(self, role_ids: Iterable[int], permission_codes: Iterable[str], *, authorization: str) -> bool:
        body = self.request_json(
            {
                "query": HAS_PERMISSIONS_QUERY,
                "variables": {"roleIds": list(role_ids), "permissionCodes": list(permission_codes)},
            },
            authorization=authorization,
        )
        errors = body.get("errors") or []
        if errors:
            first = errors[0] if isinstance(errors[0], dict) else {}
            code = (first.get("extensions") or {}).get("code")
            message = first.get("message") or "Error verifying permissions."
            logger.error("Admin API error: %s", message)
            if code == UnauthenticatedError.code:
                raise UnauthenticatedError(message)
            if code == ForbiddenError.code:
                raise ForbiddenError(message)
            raise InternalError(message)
        return bool((body.get("data") or {}).get("hasPermissions"))


def resolve_actor(
    authorization: str | None,
    required_permissions: Iterable[str],
    *,
    secret: str,
    client: PermissionClient,
) -> Actor:
    """Verify the caller and return an Actor holding the permissions it was granted."""
    if not secret or not client.admin_api_url:
        logger.error("Authorization is not configured (AUTH_JWT_SECRET / ADMIN_API_URL)")
        raise InternalError("Server configuration error.")

    required = sorted(set(required_permissions))
    token = bearer_token(authorization)
    claims = decode_token(token, secret)
    if not client.has_permissions(claims.role_ids, required, authorization=f"Bearer {token}"):
        logger.warning("Forbidden: user_id=%s required=%s", claims.user_id, ",".join(required))
        raise ForbiddenError("You are not authorized.", required_permissions=required)
    return Actor.of(claims.user_id, required)


def actor_from_request(*required_permissions: str) -> Actor:
    """Resolve the Actor for the current Flask request."""
    return resolve_actor(
        request.headers.get("Authorization"),
        required_permissions,
        secret=current_app.config.get("AUTH_JWT_SECRET", ""),
        client=PermissionClient(current_app.config.get("ADMIN_API_URL", "")),
    )
