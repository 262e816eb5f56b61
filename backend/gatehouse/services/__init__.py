# Services package init
"""
Gatehouse Backend: Services Layer
=================================

What:  Stateful building blocks used by the security pipeline and routes.

Service Inventory:
    - CredentialService: password hashing and HS256 bearer tokens
    - CsrfTokenStore:    CSRF token/cookie pairs with TTL
    - UserStore:         in-memory credential lookup and user records
    - StoreJanitor:      periodic eviction of expired store entries

    The rate limiter lives in gatehouse.middleware.rate_limit because it is
    only ever used as a pipeline stage.

None of these are module-level singletons. The application factory builds
one of each and passes them to the middleware and to app.state.
"""
