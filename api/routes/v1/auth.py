"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register     -- create a role=user account (public)
  POST /api/v1/auth/login        -- email + password -> token pair (public)
  POST /api/v1/auth/refresh      -- rotate a refresh token (public)
  POST /api/v1/auth/logout       -- revoke one refresh token (auth optional)
  POST /api/v1/auth/logout-all   -- revoke every session (requires auth)
  GET  /api/v1/auth/me           -- current profile (requires auth)
  GET  /api/v1/auth/sessions     -- outstanding refresh records (requires auth)

Security:
  [H2] register, login and refresh share the LOGIN_RATE_LIMIT per-IP limit.
  [C1] Login failures are indistinguishable; see auth/flows.py.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import credential_limit, limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    LogoutRequest,
    LogoutResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    TokenPairResponse,
    UserResponse,
)
from auth.dependencies import get_current_principal, try_get_current_principal
from auth.flows import CredentialFlows, TokenPair
from auth.models import Principal
from core.database import to_iso

router = APIRouter()


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _pair(tokens: TokenPair) -> dict:
    return TokenPairResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
    ).model_dump()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(credential_limit)  # [H2]
@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an account. Weak passwords return 422 with every failed rule in reasons."""
    flows: CredentialFlows = request.app.state.flows
    profile = flows.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        avatar=body.avatar,
    )
    return UserResponse(**profile)


@limiter.limit(credential_limit)  # [H2]
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a token pair and the profile."""
    flows: CredentialFlows = request.app.state.flows
    result = flows.login(
        email=body.email,
        password=body.password,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    return _no_store(
        LoginResponse(**_pair(result.tokens), user=UserResponse(**result.user)).model_dump()
    )


@limiter.limit(credential_limit)  # [H2]
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is revoked."""
    flows: CredentialFlows = request.app.state.flows
    return _no_store(_pair(flows.refresh(body.refresh_token)))


@router.post("/auth/logout", response_model=LogoutResponse)
def logout(request: Request, body: LogoutRequest | None = None) -> LogoutResponse:
    """Revoke the given refresh token and drop the caller's cached profile.

    Both inputs are optional; logout always succeeds.
    """
    flows: CredentialFlows = request.app.state.flows
    principal = try_get_current_principal(request)
    flows.logout(
        refresh_token=body.refresh_token if body else None,
        user_id=principal.id if principal else None,
    )
    return LogoutResponse()


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(request: Request, principal: Principal = Depends(get_current_principal)) -> LogoutAllResponse:
    """Revoke every refresh token for the current user.

    Outstanding access tokens stay valid until they expire.
    """
    flows: CredentialFlows = request.app.state.flows
    return LogoutAllResponse(tokens_revoked=flows.logout_all(principal.id))


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> UserResponse:
    """Return the profile of the currently authenticated user."""
    return UserResponse(**request.app.state.accounts.get_profile(principal.id))


@router.get("/auth/sessions", response_model=list[SessionResponse])
def sessions(request: Request, principal: Principal = Depends(get_current_principal)) -> list[SessionResponse]:
    """List unrevoked, unexpired refresh records. Token hashes are never returned."""
    flows: CredentialFlows = request.app.state.flows
    return [
        SessionResponse(
            id=record.id,
            issued_at=to_iso(record.issued_at),
            expires_at=to_iso(record.expires_at),
            ip=record.ip,
            user_agent=record.user_agent,
        )
        for record in flows.sessions(principal.id)
    ]
