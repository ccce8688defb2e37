"""
auth/tokens.py -- Access/refresh token codec.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds, each signed with its own
       secret and carrying an explicit "kind" claim:
         access  -- {sub, user_id, email, role, kind, iat, exp, jti}, short TTL
         refresh -- {sub, user_id, email, kind, iat, exp, jti}, long TTL
       verify_access()/verify_refresh() check signature, expiry AND the kind
       tag. The kind check still applies if an operator configures the same
       secret twice, so an access token can never be replayed as a refresh
       token or the other way round.

  jti: a random nonce per token. Without it two logins in the same second
       would produce byte-identical refresh tokens and collide on the
       token_hash UNIQUE index.

  Handles: the refresh store is keyed by HMAC-SHA256(REFRESH_TOKEN_SECRET,
       token). Deterministic, so lookup is O(1); keyed, so a leaked DB alone
       cannot be matched against captured tokens. The bearer string itself is
       never stored or logged.

  Errors: verification raises a TokenError subclass -- TokenExpired,
       TokenMalformed, TokenWrongKind. The flows collapse all three into
       AuthenticationFailure; the distinction survives only in logs.

Layer rule: no imports from api/, projects/, or cache/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Principal
from core.config import Settings, parse_duration

logger = logging.getLogger("taskboard.auth")

_ALGORITHM = "HS256"

KIND_ACCESS = "access"
KIND_REFRESH = "refresh"


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpired(TokenError):
    pass


class TokenMalformed(TokenError):
    """Bad signature, bad encoding, or missing required claims."""


class TokenWrongKind(TokenError):
    pass


class TokenCodec:
    """Stateless signing and verification of access and refresh tokens.

    Usage:
        codec = TokenCodec(settings)
        token = codec.issue_access(principal)
        claims = codec.verify_access(token)
    """

    def __init__(self, settings: Settings) -> None:
        self._access_secret = settings.access_token_secret
        self._refresh_secret = settings.refresh_token_secret
        self._access_ttl = settings.access_token_ttl
        self._refresh_ttl = settings.refresh_token_ttl

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, principal: Principal, now: datetime | None = None) -> str:
        issued = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(principal.id),
            "user_id": principal.id,
            "email": principal.email,
            "role": principal.role,
            "kind": KIND_ACCESS,
            "iat": issued,
            "exp": issued + self._access_ttl,
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._access_secret, algorithm=_ALGORITHM)

    def issue_refresh(self, principal: Principal, now: datetime | None = None) -> str:
        issued = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(principal.id),
            "user_id": principal.id,
            "email": principal.email,
            "kind": KIND_REFRESH,
            "iat": issued,
            "exp": issued + self._refresh_ttl,
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._refresh_secret, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> dict:
        return self._verify(token, self._access_secret, KIND_ACCESS, required=("user_id", "email", "role"))

    def verify_refresh(self, token: str) -> dict:
        return self._verify(token, self._refresh_secret, KIND_REFRESH, required=("user_id", "email"))

    def _verify(self, token: str, secret: str, kind: str, required: tuple[str, ...]) -> dict:
        try:
            claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            logger.info("%s token rejected: expired", kind)
            raise TokenExpired(f"{kind.capitalize()} token expired") from exc
        except JWTError as exc:
            logger.info("%s token rejected: %s", kind, exc)
            raise TokenMalformed(f"Invalid {kind} token") from exc
        if claims.get("kind") != kind:
            logger.warning("%s token rejected: kind=%r", kind, claims.get("kind"))
            raise TokenWrongKind("Invalid token type")
        if any(name not in claims for name in required):
            raise TokenMalformed(f"Invalid {kind} token")
        return claims

    # ------------------------------------------------------------------
    # Handles and expiry
    # ------------------------------------------------------------------

    def hash(self, token: str) -> str:
        """Return the opaque store handle for a bearer token (HMAC-SHA256 hex)."""
        return hmac.new(self._refresh_secret.encode(), token.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def expiry_from(duration: str, now: datetime | None = None) -> datetime:
        """Return the absolute instant duration ("15m", "7d", ...) from now.

        Raises ConfigurationError for any other format.
        """
        return (now or datetime.now(timezone.utc)) + parse_duration(duration)

    def refresh_expiry(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(timezone.utc)) + self._refresh_ttl
