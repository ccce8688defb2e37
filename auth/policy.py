"""
auth/policy.py -- Resource access-control policy.

One rule set for every protected resource. Projects carry the visibility
tuple {owner_id, members, visibility}; tasks are checked against their
project's tuple. Use cases get an AccessPolicy injected and call exactly one
require_* helper before touching storage -- no use case re-implements the
rules.

Two tiers:
  read    can_access(): admin, owner, public, or member of a team resource.
  modify  can_modify(): admin or owner only -- membership, visibility, delete,
          project details.

contribute=True is the read tier as applied to task-content writes: public
visibility by itself does not let a stranger edit tasks, so it falls away and
only admin, owner, or a member of a non-private resource pass. It never grants
more than plain can_access(), so can_modify => can_access holds in both modes.

Denials (require_*):
  The principal cannot see the resource -> NotFound, so existence is not
  confirmed. The principal can see it but not change it -> AuthorizationFailure.
  Messages are fixed per kind, so callers cannot tell "not a member" from
  "not the owner".

The can_* functions are pure and total: no I/O, no exceptions.
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Protocol

from auth.models import Principal
from core.errors import AuthorizationFailure, NotFound

VISIBILITY_PRIVATE = "private"
VISIBILITY_TEAM = "team"
VISIBILITY_PUBLIC = "public"
VISIBILITIES = (VISIBILITY_PRIVATE, VISIBILITY_TEAM, VISIBILITY_PUBLIC)

DENIED_MESSAGE = "You do not have permission to perform this action."


class Protected(Protocol):
    owner_id: int
    members: Collection[int]
    visibility: str


class AccessPolicy:
    def can_access(self, resource: Protected, principal: Principal, *, contribute: bool = False) -> bool:
        if principal.is_admin:
            return True
        if resource.owner_id == principal.id:
            return True
        if resource.visibility == VISIBILITY_PUBLIC and not contribute:
            return True
        is_member = principal.id in (resource.members or ())
        if resource.visibility == VISIBILITY_TEAM and is_member:
            return True
        if resource.visibility == VISIBILITY_PUBLIC and is_member:
            return True
        return False

    def can_modify(self, resource: Protected, principal: Principal) -> bool:
        return principal.is_admin or resource.owner_id == principal.id

    def require_access(
        self,
        resource: Protected,
        principal: Principal,
        *,
        contribute: bool = False,
        label: str = "Resource",
    ) -> None:
        if not self.can_access(resource, principal):
            raise NotFound(f"{label} not found")
        if not self.can_access(resource, principal, contribute=contribute):
            raise AuthorizationFailure(DENIED_MESSAGE)

    def require_modify(self, resource: Protected, principal: Principal, *, label: str = "Resource") -> None:
        if not self.can_access(resource, principal):
            raise NotFound(f"{label} not found")
        if not self.can_modify(resource, principal):
            raise AuthorizationFailure(DENIED_MESSAGE)
