"""
Gatehouse Backend: Application Package Initializer
==================================================

What: Marks the `gatehouse` directory as a Python package.
Why:  Enables module imports like `from gatehouse.config import settings`.
Who:  Used by uvicorn, pytest, and the `gatehouse` console script.

Architecture Note:
    Every request crosses the security pipeline before reaching a route:

    ┌─────────────────────────────────────┐
    │     Middleware (Security Layer)     │  ← CORS, rate limit, CSRF, identity
    ├─────────────────────────────────────┤
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Credentials, CSRF store, users
    ├─────────────────────────────────────┤
    │           Schemas (Contracts)       │  ← Pydantic request/response models
    └─────────────────────────────────────┘

    Stateful services (CSRF store, rate limiters, user store) are created by
    the application factory and injected, so each app instance owns its state.
"""

__version__ = "1.0.0"
