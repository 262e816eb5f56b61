"""
Gatehouse Backend: User Route Handlers
======================================

What:  CRUD on /api/users for authenticated callers.
How:   Every handler depends on require_identity, so anonymous requests get
       401 after the pipeline has already enforced CSRF on the mutating ones.
       Passwords are hashed before storage and never serialized back.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response

from gatehouse.dependencies import get_credentials, get_user_store
from gatehouse.exceptions import NotFoundError
from gatehouse.middleware.auth import require_identity
from gatehouse.middleware.pipeline import Identity
from gatehouse.schemas.auth import CreateUserRequest, ErrorResponse, UpdateUserRequest, UserResponse
from gatehouse.services.credentials import CredentialService
from gatehouse.services.user_store import UserStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/users",
    tags=["Users"],
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)


@router.get("", response_model=List[UserResponse], summary="List users")
def list_users(
    identity: Identity = Depends(require_identity),
    users: UserStore = Depends(get_user_store),
) -> List[UserResponse]:
    return [UserResponse.model_validate(user) for user in users.list_all()]


@router.post("", response_model=UserResponse, status_code=201, summary="Create a user")
def create_user(
    body: CreateUserRequest,
    identity: Identity = Depends(require_identity),
    users: UserStore = Depends(get_user_store),
    credentials: CredentialService = Depends(get_credentials),
) -> UserResponse:
    password_hash = credentials.hash_password(body.password) if body.password else None
    user = users.create(name=body.name, email=body.email, password_hash=password_hash)
    logger.info("User %s created user %s", identity.subject_id, user.id)
    return UserResponse.model_validate(user)


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a user",
)
def get_user(
    user_id: str,
    identity: Identity = Depends(require_identity),
    users: UserStore = Depends(get_user_store),
) -> UserResponse:
    user = users.find_by_id(user_id)
    if user is None:
        raise NotFoundError(resource="user", resource_id=user_id)
    return UserResponse.model_validate(user)


@router.put(
    "/{user_id}",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Update a user",
)
def update_user(
    user_id: str,
    body: UpdateUserRequest,
    identity: Identity = Depends(require_identity),
    users: UserStore = Depends(get_user_store),
    credentials: CredentialService = Depends(get_credentials),
) -> UserResponse:
    password_hash = credentials.hash_password(body.password) if body.password else None
    user = users.update(user_id, name=body.name, email=body.email, password_hash=password_hash)
    if user is None:
        raise NotFoundError(resource="user", resource_id=user_id)
    logger.info("User %s updated user %s", identity.subject_id, user_id)
    return UserResponse.model_validate(user)


@router.delete(
    "/{user_id}",
    status_code=204,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a user",
)
def delete_user(
    user_id: str,
    identity: Identity = Depends(require_identity),
    users: UserStore = Depends(get_user_store),
) -> Response:
    if not users.delete(user_id):
        raise NotFoundError(resource="user", resource_id=user_id)
    logger.info("User %s deleted user %s", identity.subject_id, user_id)
    return Response(status_code=204)
