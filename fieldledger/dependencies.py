"""
FieldLedger - FastAPI Dependencies

Shared dependencies for database sessions and the acting user.

Users, roles and organizations live in the identity service. This API only
needs to know who is acting so it can stamp cleared_by / completed_by /
matched_by fields, so the current actor is taken straight from the token.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from fieldledger.utils.error_handling import AuthenticationException, ErrorCode
from fieldledger.utils.security import verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing a request."""
    id: uuid.UUID
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict, compare=False)


def _extract_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    # Bearer header first, then the access_token cookie
    if credentials:
        return credentials.credentials
    token = request.cookies.get("access_token")
    if token and token.startswith("Bearer "):
        token = token[7:]
    return token


async def get_optional_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Actor]:
    """
    Resolve the actor if a token was sent.

    A token that is present but invalid is still rejected.
    """
    token = _extract_token(request, credentials)
    if not token:
        return None

    payload = verify_access_token(token)
    if not payload:
        raise AuthenticationException(
            "Invalid or expired token", code=ErrorCode.TOKEN_INVALID,
        )

    subject = payload.get("sub")
    try:
        actor_id = uuid.UUID(str(subject))
    except (TypeError, ValueError):
        raise AuthenticationException(
            "Invalid user ID in token", code=ErrorCode.TOKEN_INVALID,
        )

    return Actor(id=actor_id, email=payload.get("email"), claims=payload)


async def get_current_actor(
    actor: Optional[Actor] = Depends(get_optional_actor),
) -> Actor:
    """Require an authenticated actor (all mutating endpoints)."""
    if actor is None:
        raise AuthenticationException("Not authenticated")
    return actor
