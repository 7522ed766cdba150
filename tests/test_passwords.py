"""
tests/test_passwords.py -- bcrypt hashing with an explicit stored salt.

Coverage:
  - hash_password returns a digest derived from the returned salt
  - same password + same salt reproduces the digest; a new salt does not
  - verify_password: match, mismatch, corrupt salt, oversized candidate
  - the 72-byte bcrypt input limit is a PasswordPolicyError, not truncation
"""

from __future__ import annotations

import pytest

from auth.errors import PasswordPolicyError
from auth.passwords import generate_salt, hash_password, verify_password


class TestHashPassword:
    def test_digest_is_derived_from_returned_salt(self) -> None:
        digest, salt = hash_password("pw123456", rounds=4)
        assert digest.startswith(salt[:29])
        assert hash_password("pw123456", salt)[0] == digest

    def test_fresh_salt_per_call(self) -> None:
        first, salt_a = hash_password("pw123456", rounds=4)
        second, salt_b = hash_password("pw123456", rounds=4)
        assert salt_a != salt_b
        assert first != second

    def test_explicit_salt_is_used(self) -> None:
        salt = generate_salt(4)
        _, used = hash_password("pw123456", salt)
        assert used == salt

    def test_empty_password_rejected(self) -> None:
        with pytest.raises(PasswordPolicyError):
            hash_password("", rounds=4)

    def test_password_over_72_bytes_rejected(self) -> None:
        with pytest.raises(PasswordPolicyError):
            hash_password("a" * 73, rounds=4)

    def test_multibyte_length_counts_bytes(self) -> None:
        """25 three-byte characters are 75 bytes -- over the limit."""
        with pytest.raises(PasswordPolicyError):
            hash_password("€" * 25, rounds=4)

    def test_exactly_72_bytes_accepted(self) -> None:
        digest, salt = hash_password("a" * 72, rounds=4)
        assert verify_password("a" * 72, digest, salt)


class TestVerifyPassword:
    def test_correct_password(self) -> None:
        digest, salt = hash_password("correct horse", rounds=4)
        assert verify_password("correct horse", digest, salt) is True

    def test_wrong_password(self) -> None:
        digest, salt = hash_password("correct horse", rounds=4)
        assert verify_password("battery staple", digest, salt) is False

    def test_prefix_of_password_does_not_match(self) -> None:
        digest, salt = hash_password("pw123456", rounds=4)
        assert verify_password("pw12345", digest, salt) is False

    def test_corrupt_salt_is_mismatch_not_exception(self) -> None:
        digest, _ = hash_password("pw123456", rounds=4)
        assert verify_password("pw123456", digest, "not-a-salt") is False

    def test_oversized_candidate_is_mismatch(self) -> None:
        digest, salt = hash_password("pw123456", rounds=4)
        assert verify_password("a" * 100, digest, salt) is False

    def test_empty_candidate_is_mismatch(self) -> None:
        digest, salt = hash_password("pw123456", rounds=4)
        assert verify_password("", digest, salt) is False
