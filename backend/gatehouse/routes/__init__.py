# Routes package init
"""
Gatehouse Backend: API Routes Package
=====================================

Route Inventory:
    - auth.py:    POST /api/auth/register, /api/auth/login, /api/auth/logout
    - users.py:   GET/POST /api/users, GET/PUT/DELETE /api/users/{id}
    - health.py:  GET /api/health

Routes stay thin: the security pipeline has already rate limited, checked
CSRF and resolved the caller before any handler here runs.
"""
