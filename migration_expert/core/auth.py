"""
Bearer-token identity gate.

Resolves the caller's user id exclusively from a token verified by the
identity provider. There is no header or body fallback: a request that
cannot prove who it is never reaches a handler.
"""
import logging
from typing import Optional

from fastapi import Request

from migration_expert.core.errors import UnauthenticatedError
from migration_expert.core.logging import get_request_id
from migration_expert.features.identity.provider import Identity, IdentityRejected

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an `Authorization: Bearer <token>` header, if any."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


async def require_identity(request: Request) -> Identity:
    """
    FastAPI dependency: verify the bearer token and return the caller's identity.

    Raises:
        UnauthenticatedError 401: token missing, malformed, invalid or expired
        UpstreamUnavailableError 500: identity provider unreachable
    """
    rid = getattr(request.state, "request_id", None) or get_request_id()
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise UnauthenticatedError("Sign-in required", request_id=rid)

    provider = request.app.state.services.identity
    try:
        identity = await provider.verify_token(token)
    except IdentityRejected as e:
        logger.debug(f"Token rejected: {e}")
        raise UnauthenticatedError("Session is invalid or has expired", request_id=rid)

    request.state.identity = identity
    return identity
