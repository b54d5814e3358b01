"""FastAPI dependency resolving the caller through the identity provider.

Accepts the Stack Auth access token either as `Authorization: Bearer <token>`
or in the `x-stack-access-token` header.
"""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.errors import InternalError, ProviderError, Unauthorized
from src.identity.client import AuthenticatedUser, identity_client

bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),  # noqa: B008
) -> AuthenticatedUser:
    """Return the authenticated caller, raising Unauthorized without a valid session."""
    token = credentials.credentials if credentials else request.headers.get("x-stack-access-token")
    if not token:
        raise Unauthorized()

    if not identity_client.is_configured:
        raise InternalError("Authentication service not configured")

    try:
        user = await identity_client.get_user(token)
    except ProviderError as exc:
        raise InternalError("Authentication service unavailable") from exc

    if user is None:
        raise Unauthorized()
    return user
