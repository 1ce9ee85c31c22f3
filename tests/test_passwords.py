"""Unit tests for auth/passwords.py -- hashing and generated credentials."""

import pytest

from auth.errors import PasswordTooLong
from auth.passwords import (
    DUMMY_HASH,
    MAX_PASSWORD_BYTES,
    TEMPORARY_PASSWORD_ALPHABET,
    check_password_strength,
    generate_reset_token,
    generate_temporary_password,
    hash_password,
    password_too_long,
    verify_password,
)


class TestHashing:
    def test_hash_verifies_and_is_salted(self) -> None:
        first = hash_password("correct horse")
        second = hash_password("correct horse")
        assert first != second
        assert verify_password("correct horse", first)
        assert not verify_password("wrong horse", first)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_dummy_hash_is_a_real_bcrypt_hash(self) -> None:
        assert DUMMY_HASH.startswith("$2")
        assert verify_password("appgate_timing_dummy", DUMMY_HASH)

    def test_production_cost_factor(self) -> None:
        assert DUMMY_HASH.split("$")[2] == "12"


class TestBcryptByteLimit:
    def test_exactly_72_bytes_hashes(self) -> None:
        password = "x" * MAX_PASSWORD_BYTES
        assert not password_too_long(password)
        assert verify_password(password, hash_password(password))

    @pytest.mark.parametrize("password", ["x" * 73, "é" * 37])
    def test_longer_input_is_rejected_before_bcrypt(self, password: str) -> None:
        assert password_too_long(password)
        with pytest.raises(PasswordTooLong) as excinfo:
            hash_password(password)
        assert excinfo.value.max_bytes == 72

    def test_overlong_password_never_verifies(self) -> None:
        stored = hash_password("x" * 72)
        assert verify_password("x" * 73, stored) is False
        assert verify_password("é" * 37, DUMMY_HASH) is False


class TestTemporaryPassword:
    def test_default_length_and_alphabet(self) -> None:
        password = generate_temporary_password()
        assert len(password) == 16
        assert set(password) <= set(TEMPORARY_PASSWORD_ALPHABET)

    def test_alphabet_has_no_ambiguous_characters(self) -> None:
        assert not set("0O1lI") & set(TEMPORARY_PASSWORD_ALPHABET)

    def test_custom_length(self) -> None:
        assert len(generate_temporary_password(24)) == 24

    @pytest.mark.parametrize("length", [0, -5])
    def test_non_positive_length_rejected(self, length: int) -> None:
        with pytest.raises(ValueError):
            generate_temporary_password(length)

    def test_passwords_differ(self) -> None:
        assert len({generate_temporary_password() for _ in range(20)}) == 20


class TestResetTokenAndStrength:
    def test_reset_token_is_64_hex_chars(self) -> None:
        token = generate_reset_token()
        assert len(token) == 64
        int(token, 16)

    @pytest.mark.parametrize(
        ("password", "ok"),
        [(None, False), ("", False), ("short", False), ("1234567", False), ("12345678", True)],
    )
    def test_strength(self, password, ok: bool) -> None:
        assert check_password_strength(password) is ok
