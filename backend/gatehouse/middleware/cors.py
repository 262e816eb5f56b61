"""
Gatehouse Backend: CORS Policy
==============================

What:  Preflight answers and cross-origin response headers for API paths.
How:   OPTIONS on an API path is answered here with 204 (first stage of the
       pipeline). Every other API response gets Access-Control-* headers
       merged in on the way out. Non-API paths (static assets, SPA shell)
       never receive CORS headers.

Origin rules:
    production:  only origins listed in CORS_ORIGINS are echoed back
    otherwise:   any Origin is echoed back (local dev servers on any port)
    always:      Vary: Origin, so caches never mix responses across origins
"""

from typing import Iterable, Optional, Sequence

from starlette.requests import Request
from starlette.responses import Response

from gatehouse.middleware.pipeline import Continue, RequestContext, StageResult

DEFAULT_ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")
DEFAULT_ALLOWED_HEADERS = ("Content-Type", "Authorization", "X-CSRF-Token", "X-Request-ID")
DEFAULT_EXPOSED_HEADERS = (
    "X-Request-ID",
    "Retry-After",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
)
PREFLIGHT_MAX_AGE = 86_400


class CorsPolicy:
    def __init__(
        self,
        allowed_origins: Iterable[str],
        is_production: bool = False,
        allowed_methods: Sequence[str] = DEFAULT_ALLOWED_METHODS,
        allowed_headers: Sequence[str] = DEFAULT_ALLOWED_HEADERS,
        exposed_headers: Sequence[str] = DEFAULT_EXPOSED_HEADERS,
        max_age: int = PREFLIGHT_MAX_AGE,
        path_prefix: str = "/api",
    ):
        self.allowed_origins = frozenset(allowed_origins)
        self.is_production = is_production
        self.allowed_methods = tuple(allowed_methods)
        self.allowed_headers = tuple(allowed_headers)
        self.exposed_headers = tuple(exposed_headers)
        self.max_age = max_age
        self.path_prefix = path_prefix

    def applies_to(self, request: Request) -> bool:
        return request.url.path.startswith(self.path_prefix)

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        return origin in self.allowed_origins or not self.is_production

    def preflight(self, request: Request) -> Optional[Response]:
        """204 answer for OPTIONS on API paths; None for everything else."""
        if request.method != "OPTIONS" or not self.applies_to(request):
            return None

        origin = request.headers.get("Origin")
        response = Response(status_code=204)
        if self.is_origin_allowed(origin):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = ", ".join(self.allowed_methods)
        response.headers["Access-Control-Allow-Headers"] = ", ".join(self.allowed_headers)
        response.headers["Access-Control-Max-Age"] = str(self.max_age)
        response.headers["Vary"] = "Origin"
        return response

    def preflight_stage(self, request: Request, context: RequestContext) -> StageResult:
        response = self.preflight(request)
        return response if response is not None else Continue(context)

    def apply(self, response: Response, request: Request) -> Response:
        """Merge regular CORS headers into an outgoing API response."""
        if not self.applies_to(request):
            return response

        origin = request.headers.get("Origin")
        if self.is_origin_allowed(origin) and "access-control-allow-origin" not in response.headers:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Expose-Headers"] = ", ".join(self.exposed_headers)

        vary = response.headers.get("Vary")
        if not vary:
            response.headers["Vary"] = "Origin"
        elif "origin" not in vary.lower():
            response.headers["Vary"] = f"{vary}, Origin"
        return response
