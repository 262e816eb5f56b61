# Middleware package init
"""
Gatehouse Backend: Middleware Package
=====================================

What:  The request-security pipeline and the cross-cutting middleware around it.

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [Security Pipeline] → Route Handler

    Security Pipeline stages (see security.py):
        CORS preflight → rate limit → CSRF → identity → (route) body validation

    On the way out the security pipeline adds CORS and security headers to
    every response, then logging records the final status and the request
    ID middleware stamps X-Request-ID.

Modules:
    pipeline.py          stage contract, RequestContext, compose()
    rate_limit.py        fixed-window limiter and its stage
    csrf.py              double-submit CSRF stage and cookie helpers
    auth.py              bearer token → Identity stage, require_identity
    cors.py              CorsPolicy
    security_headers.py  SecurityHeaderPolicy
    security.py          SecurityPipelineMiddleware and pipeline assembly
    request_id.py        correlation IDs
    logging.py           access log
"""
