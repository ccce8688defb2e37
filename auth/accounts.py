"""
auth/accounts.py -- Profile and account administration use cases.

Every write deletes the affected cache keys rather than rewriting them:
the user's profile key (read by CredentialFlows.verify on every request) and
the cached admin user listing.

Admin guards [M4]:
  An admin cannot deactivate or demote their own account, and the last active
  admin cannot be deactivated or demoted -- there would be no recovery path
  short of editing the database.

Deactivation ends every session: all refresh records are revoked and the
profile key is dropped, so the next Verify with a still-unexpired access
token reloads the user, sees is_active=False and fails.
"""

from __future__ import annotations

import logging

from auth.models import ROLE_ADMIN, ROLES, Principal, User
from auth.store import RefreshTokenStore, UserStore
from cache import keys
from cache.store import ResourceCache
from core.config import Settings
from core.errors import AuthorizationFailure, NotFound, ValidationFailure

logger = logging.getLogger("taskboard.auth")

_PROFILE_FIELDS = ("first_name", "last_name", "avatar")


class AccountService:
    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        cache: ResourceCache,
        settings: Settings,
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.cache = cache
        self.settings = settings

    def get_profile(self, user_id: int) -> dict:
        cache_key = keys.user_profile(user_id)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        profile = self._load(user_id).public_profile()
        self.cache.fill(
            cache_key,
            profile,
            self.settings.cache_ttl_profile,
            lambda: self._load(user_id).public_profile(),
        )
        return profile

    def update_profile(self, principal: Principal, **changes) -> dict:
        """Update the caller's own first_name / last_name / avatar."""
        updates = {k: v for k, v in changes.items() if k in _PROFILE_FIELDS and v is not None}
        if not updates:
            raise ValidationFailure("No fields to update", reasons=["No fields to update"])
        for name in ("first_name", "last_name"):
            if name in updates:
                updates[name] = updates[name].strip()
                if not updates[name]:
                    raise ValidationFailure(f"{name} cannot be empty", reasons=[f"{name} cannot be empty"])
        self.users.update_user(principal.id, **updates)
        self._invalidate(principal.id)
        return self._load(principal.id).public_profile()

    def list_users(self, principal: Principal) -> list[dict]:
        _require_admin(principal)
        cache_key = keys.user_listing()
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        listing = self._listing()
        self.cache.fill(cache_key, listing, self.settings.cache_ttl_listing, self._listing)
        return listing

    def change_role(self, principal: Principal, user_id: int, role: str) -> dict:
        _require_admin(principal)
        if role not in ROLES:
            raise ValidationFailure(f"Unknown role {role!r}", reasons=[f"Role must be one of {', '.join(ROLES)}"])
        target = self._load(user_id)
        if target.role == ROLE_ADMIN and role != ROLE_ADMIN:
            if target.id == principal.id:
                raise ValidationFailure("You cannot demote your own account", reasons=["self_demotion"])
            if target.is_active and self.users.count_active_admins() <= 1:
                raise ValidationFailure("Cannot demote the last active admin account", reasons=["last_admin"])
        self.users.update_user(user_id, role=role)
        self._invalidate(user_id)
        logger.info("Role changed user_id=%s role=%s by=%s", user_id, role, principal.id)
        return self._load(user_id).public_profile()

    def deactivate(self, principal: Principal, user_id: int) -> dict:
        _require_admin(principal)
        target = self._load(user_id)
        if target.id == principal.id:
            raise ValidationFailure("You cannot deactivate your own account", reasons=["self_deactivation"])
        if not target.is_active:
            raise ValidationFailure("User is already deactivated", reasons=["already_deactivated"])
        if target.role == ROLE_ADMIN and self.users.count_active_admins() <= 1:
            raise ValidationFailure("Cannot deactivate the last active admin account", reasons=["last_admin"])

        self.users.update_user(user_id, is_active=False)
        revoked = self.refresh_tokens.revoke_all(user_id)
        self._invalidate(user_id)
        logger.info("User deactivated user_id=%s by=%s sessions_revoked=%d", user_id, principal.id, revoked)
        return {"id": user_id, "is_active": False, "sessions_revoked": revoked}

    def _listing(self) -> list[dict]:
        return [u.public_profile() for u in self.users.list_users()]

    def _load(self, user_id: int) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def _invalidate(self, user_id: int) -> None:
        # Project listings depend on role; a demoted admin must not keep theirs.
        self.cache.delete(keys.user_profile(user_id))
        self.cache.delete_prefix(keys.USER_LISTINGS)
        self.cache.delete_prefix(keys.project_listings_for(user_id))


def _require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise AuthorizationFailure("Admin access required.")
