"""PKCE (Proof Key for Code Exchange) and CSRF state generation.

Implements RFC 7636 for secure OAuth 2.0 Authorization Code flows.
Only the S256 challenge method is supported.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

CODE_CHALLENGE_METHOD = "S256"

STATE_NBYTES = 16
VERIFIER_NBYTES = 32


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    Attributes:
        code_verifier: Random string sent with token request
        code_challenge: SHA256 hash of verifier sent with auth request
    """

    code_verifier: str
    code_challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_state(nbytes: int = STATE_NBYTES) -> str:
    """Generate an unguessable CSRF state value.

    Args:
        nbytes: Number of random bytes (minimum 16)

    Returns:
        URL-safe base64 string without padding

    Raises:
        ValueError: If nbytes < 16
    """
    if nbytes < STATE_NBYTES:
        msg = f"nbytes must be at least {STATE_NBYTES} for sufficient entropy"
        raise ValueError(msg)

    return _b64url(secrets.token_bytes(nbytes))


def generate_code_verifier(nbytes: int = VERIFIER_NBYTES) -> str:
    """Generate a cryptographically random code verifier.

    Creates a code verifier string of 43-128 characters using
    URL-safe characters as specified in RFC 7636.

    Args:
        nbytes: Number of random bytes (minimum 32 for sufficient entropy)

    Returns:
        URL-safe code verifier string

    Raises:
        ValueError: If nbytes < 32
    """
    if nbytes < VERIFIER_NBYTES:
        msg = f"nbytes must be at least {VERIFIER_NBYTES} for sufficient entropy"
        raise ValueError(msg)

    return _b64url(secrets.token_bytes(nbytes))


def generate_code_challenge(verifier: str) -> str:
    """Generate a code challenge from a code verifier.

    Computes the S256 code challenge as specified in RFC 7636:
    BASE64URL(SHA256(code_verifier))

    Args:
        verifier: The code verifier string

    Returns:
        Base64url-encoded SHA256 hash (without padding)
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def create_pkce_pair(nbytes: int = VERIFIER_NBYTES) -> PKCEPair:
    """Create a new PKCE code verifier/challenge pair.

    Args:
        nbytes: Number of random bytes for verifier

    Returns:
        PKCEPair with verifier and challenge
    """
    verifier = generate_code_verifier(nbytes)
    challenge = generate_code_challenge(verifier)
    return PKCEPair(code_verifier=verifier, code_challenge=challenge)
