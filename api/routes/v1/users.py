"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  POST   /api/v1/users                 -- create a user (admin only)
  GET    /api/v1/users/{user_id}       -- fetch a user by id
  GET    /api/v1/users/email/{email}   -- fetch a user by email
  PUT    /api/v1/users/{user_id}       -- partial update (self or admin)
  PUT    /api/v1/users/email/{email}   -- partial update (self or admin)
  DELETE /api/v1/users/{user_id}       -- delete a user (admin or editor)
  DELETE /api/v1/users/email/{email}   -- delete a user (admin or editor)

There is no list endpoint.

Security:
  Changing role is admin-only even on your own account, so a user cannot
  promote themselves [H1].
  Deleting a user deletes every refresh token it owns. Access tokens already
  issued to it stop working on the next request because the user lookup fails.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.errors import raise_for_failure
from api.models import UserCreate, UserProfile, UserUpdate
from auth.dependencies import get_auth_service, get_current_user, require_admin, require_roles
from auth.errors import AuthFailure
from auth.models import NewUser, RegisterMethod, Role, User

logger = logging.getLogger("gatehouse.api.users")

# Auth policy:
# - POST   /users:            admin (require_admin)
# - GET    /users/...:        any authenticated user (get_current_user)
# - PUT    /users/...:        the user themselves, or admin
# - DELETE /users/...:        admin or editor (require_roles)
router = APIRouter()

require_admin_or_editor = require_roles(Role.admin, Role.editor)


def _resolve(request: Request, user_id: int | None = None, email: str | None = None) -> User:
    service = get_auth_service(request)
    user = service.get_user_by_id(user_id) if user_id is not None else service.get_user(email)
    if isinstance(user, AuthFailure):
        raise_for_failure(user)
    return user


def _apply_update(request: Request, target: User, body: UserUpdate, current_user: User) -> UserProfile:
    if current_user.role != Role.admin and current_user.id != target.id:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You can only update your own account."},
        )
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "role" in changes and current_user.role != Role.admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only admins can change roles."},
        )
    if "role" in changes:
        changes["role"] = Role(changes["role"])
    if not changes:
        return UserProfile.from_user(target)

    updated = get_auth_service(request).update_user(target.id, changes)
    if isinstance(updated, AuthFailure):
        raise_for_failure(updated)
    return UserProfile.from_user(updated)


def _delete(request: Request, target: User, current_user: User) -> UserProfile:
    deleted = get_auth_service(request).delete_user(target.id)
    if isinstance(deleted, AuthFailure):
        raise_for_failure(deleted)
    logger.info("User %s deleted by %s", target.id, current_user.id)
    return UserProfile.from_user(deleted)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserProfile, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserProfile:
    """Create a user with any role. The password, if given, is hashed before storage."""
    created = get_auth_service(request).register(
        NewUser(
            email=body.email,
            name=body.name,
            last_name=body.last_name,
            register_method=RegisterMethod(body.register_method.value),
            role=Role(body.role.value),
            password=body.password,
            profile_pic=body.profile_pic,
        )
    )
    if isinstance(created, AuthFailure):
        raise_for_failure(created)
    logger.info("User %s created by admin %s", created.id, current_user.id)
    return UserProfile.from_user(created)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@router.get("/users/email/{email}", response_model=UserProfile)
def get_user_by_email(
    request: Request,
    email: str,
    current_user: User = Depends(get_current_user),
) -> UserProfile:
    return UserProfile.from_user(_resolve(request, email=email))


@router.get("/users/{user_id}", response_model=UserProfile)
def get_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
) -> UserProfile:
    return UserProfile.from_user(_resolve(request, user_id=user_id))


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


@router.put("/users/email/{email}", response_model=UserProfile)
def update_user_by_email(
    request: Request,
    email: str,
    body: UserUpdate,
    current_user: User = Depends(get_current_user),
) -> UserProfile:
    return _apply_update(request, _resolve(request, email=email), body, current_user)


@router.put("/users/{user_id}", response_model=UserProfile)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    current_user: User = Depends(get_current_user),
) -> UserProfile:
    """Partially update a user. Unset fields are left alone."""
    return _apply_update(request, _resolve(request, user_id=user_id), body, current_user)


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


@router.delete("/users/email/{email}", response_model=UserProfile)
def delete_user_by_email(
    request: Request,
    email: str,
    current_user: User = Depends(require_admin_or_editor),
) -> UserProfile:
    return _delete(request, _resolve(request, email=email), current_user)


@router.delete("/users/{user_id}", response_model=UserProfile)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin_or_editor),
) -> UserProfile:
    """Delete a user and end all of their sessions. Returns the deleted record."""
    return _delete(request, _resolve(request, user_id=user_id), current_user)
