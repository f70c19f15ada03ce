"""Security utilities for snow-auth.

Provides the OAuth error hierarchy, client secret validation,
constant-time comparison and redaction helpers for safe logging.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any

from snow_auth.logging_config import get_logger

logger = get_logger(__name__)

MIN_CLIENT_SECRET_LENGTH = 32

# Substrings that mark a client secret as hand-picked rather than generated
WEAK_SECRET_SUBSTRINGS = ("password", "admin", "secret", "client", "snow")


class OAuthError(Exception):
    """Raised when an OAuth operation fails."""


class TokenEndpointError(OAuthError):
    """Raised when the token endpoint call fails at the transport level.

    Attributes:
        status_code: HTTP status code, None if no response was received
        response_body: Raw response body, if any
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message


class ProviderError(OAuthError):
    """Raised when the authorization server reports an OAuth error."""

    def __init__(
        self,
        error: str,
        description: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.error = error
        self.description = description
        self.status_code = status_code
        message = f"OAuth error: {error}"
        if description:
            message = f"{message} - {description}"
        super().__init__(message)


class FlowInProgressError(OAuthError):
    """Raised when a second flow is started while one is still active."""


@dataclass(frozen=True)
class SecretValidation:
    """Outcome of client secret validation."""

    valid: bool
    reason: str | None = None


def validate_client_secret(secret: str | None) -> SecretValidation:
    """Check that a client secret looks machine-generated.

    Rejects empty values, values shorter than 32 characters and values
    containing common weak-password words (case-insensitive).

    Args:
        secret: The client secret to check

    Returns:
        SecretValidation with the rejection reason when invalid
    """
    if secret is None or secret.strip() == "":
        return SecretValidation(False, "Client secret is required")

    if len(secret) < MIN_CLIENT_SECRET_LENGTH:
        return SecretValidation(
            False,
            f"Client secret is too short (should be {MIN_CLIENT_SECRET_LENGTH}+ characters)",
        )

    lowered = secret.lower()
    for weak in WEAK_SECRET_SUBSTRINGS:
        if weak in lowered:
            return SecretValidation(
                False,
                "Client secret appears to be a common password - "
                "it should be the random string generated by the application registry",
            )

    return SecretValidation(True)


def redact(value: str | None) -> str:
    """Redact a potentially sensitive value for safe logging.

    Args:
        value: The value to redact

    Returns:
        "***" if value is non-empty, "<empty>" if empty/None
    """
    if value is None or value == "":
        return "<empty>"
    return "***"


def constant_time_equals(a: str | None, b: str | None) -> bool:
    """Compare two strings in constant time to prevent timing attacks.

    Args:
        a: First string to compare
        b: Second string to compare

    Returns:
        True if strings are equal, False otherwise
    """
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode(), b.encode())


def mask_sensitive_data(
    data: dict[str, Any], sensitive_keys: set[str] | None = None
) -> dict[str, Any]:
    """Mask sensitive data in a dictionary for logging.

    Args:
        data: Dictionary potentially containing sensitive data
        sensitive_keys: Set of keys to mask (uses defaults if not provided)

    Returns:
        Copy of dictionary with sensitive values masked
    """
    if sensitive_keys is None:
        sensitive_keys = {
            "access_token",
            "refresh_token",
            "token",
            "secret",
            "password",
            "code",
            "authorization",
        }

    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = mask_sensitive_data(value, sensitive_keys)
        elif any(sensitive in key.lower() for sensitive in sensitive_keys):
            result[key] = "***"
        else:
            result[key] = value

    return result
