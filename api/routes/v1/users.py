"""
api/routes/v1/users.py -- Profile and account administration endpoints.

Routes:
  GET   /api/v1/users                    -- list all accounts (admin only)
  PATCH /api/v1/users/me                 -- update own name / avatar
  GET   /api/v1/users/{id}               -- public profile (self or admin)
  PATCH /api/v1/users/{id}/role          -- change role (admin only)
  POST  /api/v1/users/{id}/deactivate    -- deactivate and end sessions (admin only)

/users/me is registered before /users/{user_id} so the literal path is not
captured by the int converter.

[M4] Self-demotion, self-deactivation and last-admin guards are enforced in
AccountService, not here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import DeactivateResponse, ProfileUpdate, RoleUpdate, UserResponse
from auth.accounts import AccountService
from auth.dependencies import get_current_principal, require_admin
from auth.models import Principal

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, principal: Principal = Depends(require_admin)) -> list[UserResponse]:
    accounts: AccountService = request.app.state.accounts
    return [UserResponse(**profile) for profile in accounts.list_users(principal)]


@router.patch("/users/me", response_model=UserResponse)
def update_me(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
) -> UserResponse:
    accounts: AccountService = request.app.state.accounts
    return UserResponse(**accounts.update_profile(principal, **body.model_dump(exclude_none=True)))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(get_current_principal),
) -> UserResponse:
    """Public profile of one account. Other users' profiles are admin-only."""
    if user_id != principal.id and not principal.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    accounts: AccountService = request.app.state.accounts
    return UserResponse(**accounts.get_profile(user_id))


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def change_role(
    request: Request,
    user_id: int,
    body: RoleUpdate,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    accounts: AccountService = request.app.state.accounts
    return UserResponse(**accounts.change_role(principal, user_id, body.role.value))


@router.post("/users/{user_id}/deactivate", response_model=DeactivateResponse)
def deactivate(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_admin),
) -> DeactivateResponse:
    """Deactivate an account. Its refresh tokens are revoked and its access tokens stop verifying."""
    accounts: AccountService = request.app.state.accounts
    return DeactivateResponse(**accounts.deactivate(principal, user_id))
