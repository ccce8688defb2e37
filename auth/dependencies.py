"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected endpoints accept one credential: an access token sent as
"Authorization: Bearer <token>". Every route converges on
CredentialFlows.verify(), which decodes the token and loads the Principal
through the profile cache.

try_get_current_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_principal() and raises HTTP 403 if not admin.

Layer rule: no imports from api/ or projects/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Principal
from core.errors import AuthenticationFailure


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_principal(request: Request) -> Principal | None:
    """Authenticate the request from its Bearer header.

    Returns the Principal on success, None when the header is missing or the
    token fails verification. Infrastructure errors propagate.
    """
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        return request.app.state.flows.verify(token)
    except AuthenticationFailure:
        return None


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_current_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_admin(request: Request) -> Principal:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    principal = get_current_principal(request)
    if not principal.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return principal
