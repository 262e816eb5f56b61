"""
Gatehouse Backend: Security Header Policy
=========================================

What:  Computes and applies hardening headers to every outgoing response.
How:   headers_for() derives the header set from (content type, environment,
       path); apply() writes it onto the response and strips headers that
       identify the server software.

Header matrix:
    all responses     nosniff, DENY framing, XSS filter, referrer and
                      permissions policies
    text/html         Content-Security-Policy (dev allows inline/eval
                      scripts for the bundler, production is 'self' only)
    production        Strict-Transport-Security
    /api/...          no-store caching (+ private on identity-scoped routes)
    static assets     one-year immutable public caching
    /manifest.json    one-hour public caching
"""

import re
from typing import Dict, Sequence

from starlette.requests import Request
from starlette.responses import Response

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}
SERVER_IDENTIFYING_HEADERS = ("X-Powered-By", "Server")
HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"
STATIC_ASSET_RE = re.compile(r"\.(js|css|png|jpg|jpeg|gif|ico|svg|woff|woff2|ttf|eot)$")
IDENTITY_SCOPED_PREFIXES = ("/api/users", "/api/admin")


class SecurityHeaderPolicy:
    def __init__(
        self,
        is_production: bool = False,
        api_prefix: str = "/api/",
        identity_scoped_prefixes: Sequence[str] = IDENTITY_SCOPED_PREFIXES,
    ):
        self.is_production = is_production
        self.api_prefix = api_prefix
        self.identity_scoped_prefixes = tuple(identity_scoped_prefixes)

    def content_security_policy(self) -> str:
        script_src = "script-src 'self'" if self.is_production else "script-src 'self' 'unsafe-inline' 'unsafe-eval'"
        style_src = "style-src 'self'" if self.is_production else "style-src 'self' 'unsafe-inline'"
        directives = [
            "default-src 'self'",
            script_src,
            style_src,
            "img-src 'self' data: https:",
            "font-src 'self'",
            "connect-src 'self'",
            "frame-ancestors 'none'",
            "base-uri 'self'",
            "form-action 'self'",
        ]
        return "; ".join(directives)

    def cache_headers(self, path: str) -> Dict[str, str]:
        if path.startswith(self.api_prefix):
            cache_control = "no-store, no-cache, must-revalidate"
            if path.startswith(self.identity_scoped_prefixes):
                cache_control += ", private"
            return {"Cache-Control": cache_control, "Pragma": "no-cache", "Expires": "0"}
        if STATIC_ASSET_RE.search(path):
            return {"Cache-Control": "public, max-age=31536000, immutable"}
        if path == "/manifest.json":
            return {"Cache-Control": "public, max-age=3600"}
        return {}

    def headers_for(self, content_type: str, path: str) -> Dict[str, str]:
        headers = dict(BASE_HEADERS)
        if "text/html" in (content_type or "").lower():
            headers["Content-Security-Policy"] = self.content_security_policy()
        if self.is_production:
            headers["Strict-Transport-Security"] = HSTS_VALUE
        headers.update(self.cache_headers(path))
        return headers

    def apply(self, response: Response, request: Request) -> Response:
        content_type = response.headers.get("Content-Type", "")
        for name, value in self.headers_for(content_type, request.url.path).items():
            response.headers[name] = value
        for name in SERVER_IDENTIFYING_HEADERS:
            if name in response.headers:
                del response.headers[name]
        return response
