"""
Gatehouse Backend: Identity Resolution Stage
============================================

What:  Turns an `Authorization: Bearer <token>` header into an Identity on
       the request context.
How:   No header → anonymous (context unchanged).
       Valid token → context.with_identity(...).
       Any other Authorization value (wrong scheme, forged, expired,
       malformed) → 401, because a client that sends credentials expects
       them to be honoured, not silently dropped.

Routes that need a caller use the `require_identity` dependency, which
turns an anonymous context into a 401.
"""

import logging

from fastapi import Depends
from starlette.requests import Request

from gatehouse.exceptions import AuthenticationError
from gatehouse.middleware.pipeline import (
    Continue,
    Identity,
    RequestContext,
    StageResult,
    exception_response,
    get_request_context,
)
from gatehouse.services.credentials import CredentialService

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def create_identity_stage(credentials: CredentialService):
    """Build the stage that attaches the bearer token's identity."""

    def identity_stage(request: Request, context: RequestContext) -> StageResult:
        header = request.headers.get("Authorization")
        if header is None:
            return Continue(context)

        token = header[len(BEARER_PREFIX):].strip() if header.lower().startswith(BEARER_PREFIX) else ""
        claims = credentials.verify_token(token) if token else None
        if claims is None or not claims.get("sub"):
            logger.warning(
                "Rejected bearer token for %s %s from %s", request.method, request.url.path, context.client_ip
            )
            return exception_response(AuthenticationError("Invalid or expired token"))

        identity = Identity(subject_id=str(claims["sub"]), email=claims.get("email"), claims=claims)
        return Continue(context.with_identity(identity))

    return identity_stage


def require_identity(context: RequestContext = Depends(get_request_context)) -> Identity:
    """FastAPI dependency: the authenticated caller, or 401."""
    if context.identity is None:
        raise AuthenticationError("Authentication required")
    return context.identity
