"""
Gatehouse Backend: Auth Route Handlers
======================================

What:  POST /api/auth/register, POST /api/auth/login, POST /api/auth/logout.
How:   Register and login return {token, user, csrfToken} and set the
       csrf-token cookie that pairs with csrfToken. Logout drops the pair
       server-side and expires the cookie. Bearer tokens are not revoked:
       the client discards its copy.

Handlers are plain `def` functions: PBKDF2 is CPU-bound, so FastAPI runs
them in its threadpool instead of blocking the event loop.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from gatehouse.config import Settings
from gatehouse.dependencies import get_credentials, get_csrf_store, get_settings, get_user_store
from gatehouse.exceptions import AuthenticationError
from gatehouse.middleware.csrf import clear_csrf_cookie, presented_cookie_key, set_csrf_cookie
from gatehouse.schemas.auth import (
    AuthResponse,
    ErrorResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    UserResponse,
)
from gatehouse.services.credentials import CredentialService
from gatehouse.services.csrf_store import CsrfTokenStore
from gatehouse.services.user_store import User, UserStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _issue_session(
    user: User,
    request: Request,
    response: Response,
    credentials: CredentialService,
    csrf_store: CsrfTokenStore,
    settings: Settings,
) -> AuthResponse:
    """Bearer token + fresh CSRF pair; any pair the client still holds is dropped."""
    csrf_store.invalidate(presented_cookie_key(request))
    pair = csrf_store.generate()
    set_csrf_cookie(response, pair.cookie_key, max_age=settings.csrf_ttl_seconds, secure=settings.is_production)

    token = credentials.issue_token({"sub": user.id, "email": user.email}, ttl=settings.token_ttl_seconds)
    return AuthResponse(token=token, user=UserResponse.model_validate(user), csrf_token=pair.token)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    summary="Create an account and start a session",
)
def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    credentials: CredentialService = Depends(get_credentials),
    csrf_store: CsrfTokenStore = Depends(get_csrf_store),
    users: UserStore = Depends(get_user_store),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    password_hash = credentials.hash_password(body.password)
    user = users.create(name=body.name, email=body.email, password_hash=password_hash)
    logger.info("Registered user %s", user.id)
    return _issue_session(user, request, response, credentials, csrf_store, settings)


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    summary="Exchange email and password for a bearer token",
)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    credentials: CredentialService = Depends(get_credentials),
    csrf_store: CsrfTokenStore = Depends(get_csrf_store),
    users: UserStore = Depends(get_user_store),
    settings: Settings = Depends(get_settings),
) -> AuthResponse:
    credential = users.get_credential(body.email)
    if credential is None or not credentials.verify_password(body.password, credential.password_hash):
        logger.warning("Failed login attempt")
        raise AuthenticationError("Invalid credentials")

    # Deleted between lookup and verify: same answer as an unknown email
    user = users.find_by_email(credential.identifier)
    if user is None:
        logger.warning("Failed login attempt")
        raise AuthenticationError("Invalid credentials")

    logger.info("User %s logged in", user.id)
    return _issue_session(user, request, response, credentials, csrf_store, settings)


@router.post(
    "/logout",
    response_model=MessageResponse,
    responses={403: {"model": ErrorResponse}},
    summary="End the session and drop its CSRF pair",
)
def logout(
    request: Request,
    response: Response,
    csrf_store: CsrfTokenStore = Depends(get_csrf_store),
    settings: Settings = Depends(get_settings),
) -> MessageResponse:
    csrf_store.invalidate(presented_cookie_key(request))
    clear_csrf_cookie(response, secure=settings.is_production)
    return MessageResponse(message="Logged out successfully")
