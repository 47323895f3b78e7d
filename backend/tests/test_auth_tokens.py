from __future__ import annotations

import hashlib
import hmac

import pytest

from kidslearn.auth_tokens import (
    InvalidUsernameError,
    derive_token,
    describe_username_problem,
    is_valid_username,
    normalize_username,
    verify_token,
)
from kidslearn.config import get_settings


@pytest.mark.parametrize("username", ["abc", "Alice_123", "kid-learner", "a" * 20, "ABC-def_09"])
def test_valid_usernames_are_accepted(username: str) -> None:
    assert is_valid_username(username)
    assert normalize_username(username) == username.lower()


@pytest.mark.parametrize("username", ["AL", "a" * 21, "has space", "emoji😀x", "dot.name", "", "abc\n", None, 123])
def test_invalid_usernames_are_rejected(username: object) -> None:
    assert not is_valid_username(username)
    with pytest.raises(InvalidUsernameError):
        normalize_username(username)


def test_describe_username_problem_messages() -> None:
    assert describe_username_problem("   ") == "Please enter a username."
    assert describe_username_problem("ab") == "Username must be at least 3 characters."
    assert describe_username_problem("x" * 21) == "Username must be 20 characters or fewer."
    assert describe_username_problem("bad name") == "Only letters, numbers, hyphens, and underscores are allowed."
    assert describe_username_problem("good_name") is None


def test_token_is_hex_hmac_sha256_of_lowercased_username() -> None:
    assert get_settings().auth_secret == "test-secret"
    expected = hmac.new(get_settings().auth_secret.encode(), b"alice123", hashlib.sha256).hexdigest()
    assert derive_token("alice123") == expected
    assert derive_token("ALICE123") == expected
    assert len(expected) == 64


def test_token_uses_explicit_secret_when_given() -> None:
    assert derive_token("alice123", secret="other") != derive_token("alice123")
    assert verify_token("alice123", derive_token("alice123", secret="other"), secret="other")


def test_verify_accepts_own_token_and_rejects_other_users() -> None:
    users = ["alice123", "bob_the_kid", "carol-7"]
    for user in users:
        assert verify_token(user, derive_token(user))
        for other in users:
            if other != user:
                assert not verify_token(user, derive_token(other))


def test_verify_rejects_length_and_content_mismatches_without_raising() -> None:
    token = derive_token("alice123")
    assert not verify_token("alice123", token[:-1])
    assert not verify_token("alice123", token + "0")
    assert not verify_token("alice123", token[:-1] + ("0" if token[-1] != "0" else "1"))
    assert not verify_token("alice123", token.upper())
    assert not verify_token("alice123", "")
    assert not verify_token("alice123", None)
    assert not verify_token("alice123", 12345)
