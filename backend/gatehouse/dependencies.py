"""
Gatehouse Backend: FastAPI Dependencies
=======================================

What:  Accessors for the per-app services created by create_app().
How:   The factory stores each service on app.state; routes declare
       `Depends(get_...)` and receive the instance owned by their app.
       Tests can build several apps side by side without sharing state.
"""

from fastapi import Request

from gatehouse.config import Settings
from gatehouse.services.credentials import CredentialService
from gatehouse.services.csrf_store import CsrfTokenStore
from gatehouse.services.user_store import UserStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_credentials(request: Request) -> CredentialService:
    return request.app.state.credentials


def get_csrf_store(request: Request) -> CsrfTokenStore:
    return request.app.state.csrf_store


def get_user_store(request: Request) -> UserStore:
    return request.app.state.user_store
