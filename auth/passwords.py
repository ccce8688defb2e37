"""
auth/passwords.py -- Password hashing and strength validation.

bcrypt is used directly rather than through passlib. bcrypt only reads the
first 72 bytes of a password and bcrypt 5 raises on anything longer, so
longer passwords are rejected by validate_strength and never match in verify.
The cost factor comes from Settings.bcrypt_rounds and is fixed per deployment.

Failure policy: a bcrypt error (corrupt digest, backend failure) is an
infrastructure fault. It is logged and raised as InfrastructureFailure, never
folded into "password did not match" -- that would turn a broken user row
into a silent lock-out and hide the fault from operators.

Layer rule: no imports from api/, projects/, or cache/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import bcrypt

from core.errors import InfrastructureFailure

logger = logging.getLogger("taskboard.auth")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72

# (pattern, message) -- order is the order reasons are reported in.
_STRENGTH_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"\d"), "Password must contain at least one number"),
    (re.compile(r"[^A-Za-z0-9\s]"), "Password must contain at least one special character"),
]


@dataclass(frozen=True)
class StrengthResult:
    valid: bool
    reasons: list[str] = field(default_factory=list)


class PasswordHasher:
    """bcrypt wrapper with a deployment-fixed cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once so the first
        # login attempt for an unknown email is not measurably faster.
        self._dummy_hash = self.hash("taskboard_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt digest of plaintext.

        Callers validate strength first; an over-length password raises
        InfrastructureFailure here.
        """
        try:
            return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (ValueError, TypeError) as exc:
            logger.error("Password hashing failed: %s", exc)
            raise InfrastructureFailure("Failed to hash password") from exc

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest. Raises on a corrupt digest.

        A password over MAX_PASSWORD_BYTES can never have been stored, so it
        is a mismatch. A comparison still runs to keep the timing uniform [C1].
        """
        encoded = plaintext.encode("utf-8")
        too_long = len(encoded) > MAX_PASSWORD_BYTES
        try:
            matched = bcrypt.checkpw(encoded[:MAX_PASSWORD_BYTES], digest.encode("utf-8"))
        except (ValueError, TypeError) as exc:
            logger.error("Password verification failed: %s", exc)
            raise InfrastructureFailure("Failed to verify password") from exc
        return matched and not too_long

    def dummy_verify(self, plaintext: str) -> None:
        """Burn one bcrypt comparison so unknown emails cost as much as known ones [C1]."""
        self.verify(plaintext, self._dummy_hash)

    @staticmethod
    def validate_strength(plaintext: str) -> StrengthResult:
        """Check every strength rule and report all that fail, not just the first."""
        reasons: list[str] = []
        if len(plaintext) < MIN_PASSWORD_LENGTH:
            reasons.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if len(plaintext.encode("utf-8")) > MAX_PASSWORD_BYTES:
            reasons.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
        for pattern, message in _STRENGTH_RULES:
            if not pattern.search(plaintext):
                reasons.append(message)
        return StrengthResult(valid=not reasons, reasons=reasons)
