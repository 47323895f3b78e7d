"""Username canonicalisation and HMAC write tokens.

A write token is the lowercase hex HMAC-SHA256 of the lowercased username,
keyed by the server secret. Nothing is stored server-side: the same username
always yields the same token, so anyone holding the secret can mint tokens.
The check only stops third parties who do not know the secret from
overwriting someone else's progress.
"""

from __future__ import annotations

import hashlib
import hmac
import re
from typing import Any, Optional

from .config import get_settings

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,20}$")
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20


class InvalidUsernameError(ValueError):
    """Raised when a username does not match the allowed pattern."""


def is_valid_username(value: Any) -> bool:
    return isinstance(value, str) and USERNAME_PATTERN.fullmatch(value) is not None


def normalize_username(value: Any) -> str:
    if not is_valid_username(value):
        raise InvalidUsernameError(f"Invalid username: {value!r}")
    return value.lower()


def describe_username_problem(value: str) -> Optional[str]:
    """Return a learner-facing explanation of why ``value`` is rejected, or ``None``."""
    trimmed = value.strip()
    if not trimmed:
        return "Please enter a username."
    if len(trimmed) < USERNAME_MIN_LENGTH:
        return f"Username must be at least {USERNAME_MIN_LENGTH} characters."
    if len(trimmed) > USERNAME_MAX_LENGTH:
        return f"Username must be {USERNAME_MAX_LENGTH} characters or fewer."
    if not USERNAME_PATTERN.fullmatch(trimmed):
        return "Only letters, numbers, hyphens, and underscores are allowed."
    return None


def _secret_bytes(secret: Optional[str]) -> bytes:
    value = secret if secret is not None else get_settings().auth_secret
    return value.encode("utf-8")


def derive_token(username: str, secret: Optional[str] = None) -> str:
    digest = hmac.new(_secret_bytes(secret), username.lower().encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def _constant_time_equals(supplied: str, expected: str) -> bool:
    if len(supplied) != len(expected):
        return False
    result = 0
    # Visit every character so timing does not reveal the first mismatch.
    for left, right in zip(supplied, expected):
        result |= ord(left) ^ ord(right)
    return result == 0


def verify_token(username: str, supplied: Any, secret: Optional[str] = None) -> bool:
    if not isinstance(supplied, str) or not isinstance(username, str):
        return False
    return _constant_time_equals(supplied, derive_token(username, secret))


__all__ = [
    "InvalidUsernameError",
    "USERNAME_PATTERN",
    "derive_token",
    "describe_username_problem",
    "is_valid_username",
    "normalize_username",
    "verify_token",
]
