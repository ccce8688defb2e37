"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - hash/verify round trip and salting
  - corrupt digest raises InfrastructureFailure instead of returning False
  - validate_strength reports every failed rule
"""

from __future__ import annotations

import pytest

from auth.passwords import PasswordHasher
from core.errors import InfrastructureFailure


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


class TestHashAndVerify:
    def test_verify_matches_original(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("Str0ng!Pass")
        assert hasher.verify("Str0ng!Pass", digest) is True

    def test_verify_rejects_other_password(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("Str0ng!Pass")
        assert hasher.verify("Str0ng!Pas", digest) is False

    def test_same_password_hashes_differently(self, hasher: PasswordHasher) -> None:
        """bcrypt salts every digest."""
        assert hasher.hash("Str0ng!Pass") != hasher.hash("Str0ng!Pass")

    def test_digest_is_not_plaintext(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("Str0ng!Pass")
        assert "Str0ng!Pass" not in digest
        assert digest.startswith("$2")

    def test_cost_factor_is_embedded(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("Str0ng!Pass").split("$")[2] == "04"

    def test_corrupt_digest_raises(self, hasher: PasswordHasher) -> None:
        with pytest.raises(InfrastructureFailure):
            hasher.verify("Str0ng!Pass", "not-a-bcrypt-digest")

    def test_dummy_verify_does_not_raise(self, hasher: PasswordHasher) -> None:
        hasher.dummy_verify("anything")

    def test_over_length_password_never_matches(self, hasher: PasswordHasher) -> None:
        base = "Aa1!" + "x" * 68  # exactly 72 bytes
        digest = hasher.hash(base)
        assert hasher.verify(base, digest) is True
        assert hasher.verify(base + "tail", digest) is False

    def test_over_length_dummy_verify_does_not_raise(self, hasher: PasswordHasher) -> None:
        hasher.dummy_verify("Aa1!" + "x" * 80)


class TestValidateStrength:
    def test_strong_password_is_valid(self) -> None:
        result = PasswordHasher.validate_strength("Str0ng!Pass")
        assert result.valid is True
        assert result.reasons == []

    def test_every_failed_rule_is_reported(self) -> None:
        """'abc' is short, has no uppercase, no digit and no symbol -- four reasons."""
        result = PasswordHasher.validate_strength("abc")
        assert result.valid is False
        assert len(result.reasons) == 4
        joined = " ".join(result.reasons)
        assert "8 characters" in joined
        assert "uppercase" in joined
        assert "number" in joined
        assert "special" in joined

    def test_missing_lowercase(self) -> None:
        result = PasswordHasher.validate_strength("STR0NG!PASS")
        assert result.reasons == ["Password must contain at least one lowercase letter"]

    def test_whitespace_is_not_a_symbol(self) -> None:
        result = PasswordHasher.validate_strength("Str0ng Pass")
        assert result.reasons == ["Password must contain at least one special character"]

    def test_empty_password(self) -> None:
        result = PasswordHasher.validate_strength("")
        assert result.valid is False
        assert len(result.reasons) == 5

    def test_over_72_bytes_is_rejected(self) -> None:
        result = PasswordHasher.validate_strength("Aa1!" + "x" * 80)
        assert result.reasons == ["Password must be at most 72 bytes long"]

    def test_limit_counts_bytes_not_characters(self) -> None:
        # 30 two-byte characters plus the required classes: 64 bytes is fine, 84 is not.
        assert PasswordHasher.validate_strength("Aa1!" + "é" * 30).valid is True
        assert PasswordHasher.validate_strength("Aa1!" + "é" * 40).valid is False
