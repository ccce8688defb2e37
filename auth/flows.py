"""
auth/flows.py -- Credential lifecycle: register, login, refresh, logout, verify.

Session states per refresh secret: Anonymous -> Authenticated -> Revoked.
Revoked is terminal -- reached by logout, expiry, rotation, or account
deactivation -- and nothing moves a secret back out of it.

Security design decisions:
  [C1] Login never reveals whether an email exists. Unknown email, wrong
       password and deactivated account all raise the same
       AuthenticationFailure message, and an unknown email still pays for one
       bcrypt comparison so response time does not leak it either. The
       deactivation check runs only after the password matched, so the
       deactivated case is indistinguishable from a bad password.

  Rotation: refresh() revokes the presented record BEFORE issuing the
       successor. revoke() is a conditional UPDATE that reports whether this
       caller flipped the flag; a caller that lost the race (concurrent reuse
       of one secret) fails instead of minting a second live session. If the
       successor insert then fails the user is logged out -- acceptable; the
       reverse order could leave a stolen secret alive after rotation.

  Verify is the choke point for every protected endpoint: decode -> cached
       profile -> store fallback -> cache fill. The principal's role and
       active flag come from the profile, not the token, so a role change or
       deactivation takes effect as soon as the profile key is invalidated.

Layer rule: no imports from api/ or projects/. cache/ is injected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import ROLE_USER, Principal, RefreshToken, User
from auth.passwords import PasswordHasher
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec, TokenError
from cache import keys
from cache.store import ResourceCache
from core.config import Settings
from core.errors import AuthenticationFailure, ConflictFailure, ValidationFailure

logger = logging.getLogger("taskboard.auth")

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)

BAD_CREDENTIALS = "Invalid email or password"
BAD_TOKEN = "Invalid or expired token"
BAD_REFRESH = "Invalid or expired refresh token"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds
    token_type: str = "bearer"


@dataclass(frozen=True)
class LoginResult:
    user: dict
    tokens: TokenPair


class CredentialFlows:
    """Orchestrates hasher, codec, refresh store, user store and cache.

    Every collaborator is injected; nothing here opens connections or reads
    the environment.
    """

    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        cache: ResourceCache,
        settings: Settings,
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.hasher = hasher
        self.codec = codec
        self.cache = cache
        self.settings = settings

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        avatar: str | None = None,
    ) -> dict:
        """Create a role=user, active account and return its public profile."""
        email = (email or "").strip().lower()
        reasons = _validate_registration(email, password, first_name, last_name)
        if password:
            reasons.extend(self.hasher.validate_strength(password).reasons)
        if reasons:
            raise ValidationFailure("; ".join(reasons), reasons=reasons)

        if self.users.email_exists(email):
            raise ConflictFailure("Email already registered")

        user = User(
            email=email,
            hashed_password=self.hasher.hash(password),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            avatar=avatar,
            role=ROLE_USER,
            is_active=True,
        )
        try:
            user_id = self.users.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email.
            raise ConflictFailure("Email already registered") from exc

        self.cache.delete_prefix(keys.USER_LISTINGS)
        created = self.users.find_by_id(user_id)
        logger.info("User registered user_id=%s", user_id)
        return created.public_profile()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        if not email or not password:
            reasons = []
            if not email:
                reasons.append("Email is required")
            if not password:
                reasons.append("Password is required")
            raise ValidationFailure("; ".join(reasons), reasons=reasons)

        user = self.users.find_by_email(email.strip())
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.dummy_verify(password)
            logger.warning("Login failed: unknown email ip=%s", ip)
            raise AuthenticationFailure(BAD_CREDENTIALS)
        if not self.hasher.verify(password, user.hashed_password):
            logger.warning("Login failed: bad password user_id=%s ip=%s", user.id, ip)
            raise AuthenticationFailure(BAD_CREDENTIALS)
        if not user.is_active:
            logger.warning("Login failed: deactivated account user_id=%s ip=%s", user.id, ip)
            raise AuthenticationFailure(BAD_CREDENTIALS)

        tokens = self._issue_session(Principal.from_user(user), ip=ip, user_agent=user_agent)
        self.users.update_last_login(user.id)

        refreshed = self.users.find_by_id(user.id) or user
        profile = refreshed.public_profile()
        self.cache.fill(
            keys.user_profile(user.id),
            profile,
            self.settings.cache_ttl_profile,
            lambda: self._current_profile(user.id),
        )

        logger.info("User logged in user_id=%s", user.id)
        return LoginResult(user=profile, tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh (rotation)
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        if not refresh_token:
            raise ValidationFailure("Refresh token is required", reasons=["Refresh token is required"])

        try:
            claims = self.codec.verify_refresh(refresh_token)
        except TokenError as exc:
            logger.info("Refresh rejected: %s", type(exc).__name__)
            raise AuthenticationFailure(BAD_REFRESH) from exc

        token_hash = self.codec.hash(refresh_token)
        record = self.refresh_tokens.find_by_hash(token_hash)
        if record is None or record.user_id != claims["user_id"]:
            logger.warning("Refresh rejected: unknown handle user_id=%s", claims["user_id"])
            raise AuthenticationFailure(BAD_REFRESH)
        if not record.is_valid():
            logger.warning(
                "Refresh rejected: %s handle user_id=%s",
                "revoked" if record.revoked else "expired",
                record.user_id,
            )
            raise AuthenticationFailure(BAD_REFRESH)

        user = self.users.find_by_id(record.user_id)
        if user is None or not user.is_active:
            logger.warning("Refresh rejected: user missing or inactive user_id=%s", record.user_id)
            raise AuthenticationFailure(BAD_REFRESH)

        if not self.refresh_tokens.revoke(token_hash):
            # Another request rotated this secret between our read and write.
            logger.warning("Refresh rejected: concurrent reuse user_id=%s", record.user_id)
            raise AuthenticationFailure(BAD_REFRESH)

        tokens = self._issue_session(Principal.from_user(user), ip=record.ip, user_agent=record.user_agent)
        logger.info("Tokens rotated user_id=%s", user.id)
        return tokens

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str | None = None, user_id: int | None = None) -> dict:
        """Revoke the presented refresh handle and drop the profile cache.

        Both steps are independent and skipped when their input is absent. A
        store failure during the revoke is logged and does not stop the cache
        delete. Logout always reports success.
        """
        try:
            if refresh_token:
                revoked = self.refresh_tokens.revoke(self.codec.hash(refresh_token))
                logger.info("Logout user_id=%s revoked=%s", user_id, revoked)
        except SQLAlchemyError:
            logger.exception("Logout could not revoke refresh token user_id=%s", user_id)
        finally:
            if user_id is not None:
                self.cache.delete(keys.user_profile(user_id))
        return {"success": True}

    def logout_all(self, user_id: int) -> int:
        """Revoke every outstanding refresh record for user_id. Returns the count."""
        if user_id is None:
            raise ValidationFailure("User ID is required", reasons=["User ID is required"])
        count = self.refresh_tokens.revoke_all(user_id)
        self.cache.delete(keys.user_profile(user_id))
        logger.info("Logout everywhere user_id=%s revoked=%d", user_id, count)
        return count

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def sessions(self, user_id: int) -> list[RefreshToken]:
        """Outstanding refresh records for user_id, newest first."""
        return self.refresh_tokens.list_active(user_id)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, access_token: str) -> Principal:
        """Resolve a bearer access token to an active Principal."""
        if not access_token:
            raise AuthenticationFailure(BAD_TOKEN)
        try:
            claims = self.codec.verify_access(access_token)
        except TokenError as exc:
            logger.debug("Access token rejected: %s", type(exc).__name__)
            raise AuthenticationFailure(BAD_TOKEN) from exc

        user_id = claims["user_id"]
        cache_key = keys.user_profile(user_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            try:
                principal = Principal.from_profile(cached)
            except (KeyError, TypeError, ValueError):
                logger.warning("Discarding malformed cached profile %s", cache_key)
                self.cache.delete(cache_key)
            else:
                if not principal.is_active:
                    raise AuthenticationFailure(BAD_TOKEN)
                return principal

        user = self.users.find_by_id(user_id)
        if user is None or not user.is_active:
            logger.info("Access token rejected: user missing or inactive user_id=%s", user_id)
            raise AuthenticationFailure(BAD_TOKEN)
        self.cache.fill(
            cache_key,
            user.public_profile(),
            self.settings.cache_ttl_profile,
            lambda: self._current_profile(user_id),
        )
        return Principal.from_user(user)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _current_profile(self, user_id: int) -> dict | None:
        user = self.users.find_by_id(user_id)
        return user.public_profile() if user is not None else None

    def _issue_session(self, principal: Principal, ip: str | None, user_agent: str | None) -> TokenPair:
        now = datetime.now(timezone.utc)
        access_token = self.codec.issue_access(principal, now=now)
        refresh_token = self.codec.issue_refresh(principal, now=now)
        self.refresh_tokens.create(
            user_id=principal.id,
            token_hash=self.codec.hash(refresh_token),
            expires_at=self.codec.refresh_expiry(now),
            ip=ip,
            user_agent=user_agent,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.settings.access_token_ttl.total_seconds()),
        )


def _validate_registration(email: str, password: str, first_name: str, last_name: str) -> list[str]:
    reasons: list[str] = []
    if not email:
        reasons.append("Email is required")
    elif not _EMAIL_RE.match(email):
        reasons.append("Invalid email format")
    if not password:
        reasons.append("Password is required")
    if not first_name or not first_name.strip():
        reasons.append("First name is required")
    if not last_name or not last_name.strip():
        reasons.append("Last name is required")
    return reasons
