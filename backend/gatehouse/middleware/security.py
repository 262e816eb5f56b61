"""
Gatehouse Backend: Security Pipeline Middleware
===============================================

What:  Hosts the composed security stages in front of the route handlers and
       finishes every outgoing response.
Who:   Registered once by create_app(); receives its stores and policies
       through constructor arguments.

Request flow:
    CORS preflight → API rate limit → auth rate limit → CSRF → identity
        → [route: body validation → handler]

    Any stage may answer on its own (204 preflight, 429, 403, 401). When all
    stages continue, the final RequestContext is placed on
    request.state.context and the route runs.

Response flow (every response, including short-circuits and 500s):
    CORS headers (API paths) → security headers

Unexpected errors:
    Exceptions escaping a route are logged with their traceback and replaced
    by a generic 500 body, so clients never see stack traces or file paths.
"""

import logging
from typing import Iterable, Sequence

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from gatehouse.middleware.auth import create_identity_stage
from gatehouse.middleware.cors import CorsPolicy
from gatehouse.middleware.csrf import DEFAULT_EXEMPT_PATHS, create_csrf_stage
from gatehouse.middleware.pipeline import RequestContext, Stage, client_ip, compose, error_response
from gatehouse.middleware.rate_limit import RateLimitStage
from gatehouse.middleware.request_id import request_id_var
from gatehouse.middleware.security_headers import SecurityHeaderPolicy
from gatehouse.services.credentials import CredentialService
from gatehouse.services.csrf_store import CsrfTokenStore

logger = logging.getLogger(__name__)


def build_security_pipeline(
    cors_policy: CorsPolicy,
    rate_limiters: Sequence[RateLimitStage],
    csrf_store: CsrfTokenStore,
    credentials: CredentialService,
    csrf_exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
) -> Stage:
    """
    Assemble the stages in their required order.

    Cheap rejections (preflight, floods, forged origins) come before token
    verification, which is the only stage doing cryptographic work.
    """
    return compose(
        cors_policy.preflight_stage,
        *rate_limiters,
        create_csrf_stage(csrf_store, csrf_exempt_paths),
        create_identity_stage(credentials),
    )


class SecurityPipelineMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        pipeline: Stage,
        cors_policy: CorsPolicy,
        header_policy: SecurityHeaderPolicy,
        trust_forwarded_for: bool = False,
    ):
        super().__init__(app)
        self.pipeline = pipeline
        self.cors_policy = cors_policy
        self.header_policy = header_policy
        self.trust_forwarded_for = trust_forwarded_for

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = RequestContext(
            request_id=request_id_var.get(""),
            client_ip=client_ip(request, self.trust_forwarded_for),
        )

        # Step 1: run the stages. A Response means one of them answered on its own
        try:
            outcome = self.pipeline(request, context)
        except Exception:
            logger.exception("[%s] Security pipeline failed", context.request_id)
            return self._finish(self._server_error(), request)

        if isinstance(outcome, Response):
            return self._finish(outcome, request)

        # Step 2: the route reads identity from this context (see require_identity)
        request.state.context = outcome.context
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "[%s] Unexpected error handling %s %s", context.request_id, request.method, request.url.path
            )
            response = self._server_error()
        # Step 3: short-circuits, route responses and 500s all leave through _finish
        return self._finish(response, request)

    def _finish(self, response: Response, request: Request) -> Response:
        # What: CORS first so security headers are the last word on shared names
        response = self.cors_policy.apply(response, request)
        return self.header_policy.apply(response, request)

    @staticmethod
    def _server_error() -> Response:
        return error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )
