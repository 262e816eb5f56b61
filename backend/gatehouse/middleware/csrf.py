"""
Gatehouse Backend: CSRF Protection Stage
========================================

What:  Rejects state-changing requests that lack a valid double-submit pair.
How:   For POST/PUT/PATCH/DELETE outside the exempt paths, the request must
       carry both
           X-CSRF-Token: <token>          (read by JS from the login response)
           Cookie: csrf-token=<cookie_key> (HttpOnly, set by the server)
       and the store must hold that token under that cookie key.
When:  After rate limiting, before identity resolution.

Exempt paths:
    /api/auth/login, /api/auth/register: no pair exists before these run
    /api/health:                         probes must never need a session
"""

import logging
from typing import Iterable, Optional

from starlette.requests import Request
from starlette.responses import Response

from gatehouse.exceptions import CsrfError
from gatehouse.middleware.pipeline import Continue, RequestContext, StageResult, exception_response
from gatehouse.services.csrf_store import CsrfTokenStore

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = "csrf-token"
CSRF_HEADER_NAME = "X-CSRF-Token"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
DEFAULT_EXEMPT_PATHS = frozenset({"/api/auth/login", "/api/auth/register", "/api/health"})


def requires_csrf_protection(request: Request, exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS) -> bool:
    if request.method.upper() not in MUTATING_METHODS:
        return False
    return request.url.path not in exempt_paths


def create_csrf_stage(store: CsrfTokenStore, exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS):
    """Build the CSRF stage backed by `store`."""
    exempt = frozenset(exempt_paths)

    def csrf_stage(request: Request, context: RequestContext) -> StageResult:
        if not requires_csrf_protection(request, exempt):
            return Continue(context)

        cookie_key = request.cookies.get(CSRF_COOKIE_NAME)
        token = request.headers.get(CSRF_HEADER_NAME)
        if store.validate(cookie_key, token):
            return Continue(context)

        logger.warning(
            "CSRF validation failed for %s %s from %s (cookie=%s, header=%s)",
            request.method,
            request.url.path,
            context.client_ip,
            "present" if cookie_key else "missing",
            "present" if token else "missing",
        )
        return exception_response(CsrfError())

    return csrf_stage


def set_csrf_cookie(response: Response, cookie_key: str, max_age: int, secure: bool = False) -> None:
    """Attach `csrf-token=<cookie_key>; HttpOnly; SameSite=Strict; Path=/; Max-Age=...`."""
    response.set_cookie(
        CSRF_COOKIE_NAME,
        cookie_key,
        max_age=max_age,
        path="/",
        secure=secure,
        httponly=True,
        samesite="Strict",
    )


def clear_csrf_cookie(response: Response, secure: bool = False) -> None:
    response.set_cookie(
        CSRF_COOKIE_NAME,
        "",
        max_age=0,
        path="/",
        secure=secure,
        httponly=True,
        samesite="Strict",
    )


def presented_cookie_key(request: Request) -> Optional[str]:
    return request.cookies.get(CSRF_COOKIE_NAME) or None
