"""Tests for PKCE and state generation."""

from __future__ import annotations

import base64
import hashlib

import pytest

from snow_auth.oauth.pkce import (
    PKCEPair,
    create_pkce_pair,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)

URL_SAFE = set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")


def _decoded_length(value: str) -> int:
    padded = value + "=" * (-len(value) % 4)
    return len(base64.urlsafe_b64decode(padded))


class TestGenerateState:
    """Tests for generate_state function."""

    def test_sixteen_bytes_of_entropy(self) -> None:
        """Test that state encodes 16 random bytes without padding."""
        state = generate_state()
        assert _decoded_length(state) == 16
        assert "=" not in state

    def test_url_safe_characters(self) -> None:
        """Test that state uses URL-safe characters."""
        assert all(c in URL_SAFE for c in generate_state())

    def test_unique_values(self) -> None:
        """Test that states are never reused."""
        states = {generate_state() for _ in range(100)}
        assert len(states) == 100

    def test_rejects_low_entropy(self) -> None:
        """Test that low entropy values are rejected."""
        with pytest.raises(ValueError, match="at least 16"):
            generate_state(nbytes=8)


class TestGenerateCodeVerifier:
    """Tests for generate_code_verifier function."""

    def test_thirty_two_bytes_of_entropy(self) -> None:
        """Test that verifier encodes 32 random bytes."""
        verifier = generate_code_verifier()
        assert _decoded_length(verifier) == 32
        assert len(verifier) == 43

    def test_unique_values(self) -> None:
        """Test that verifiers are unique."""
        verifiers = {generate_code_verifier() for _ in range(100)}
        assert len(verifiers) == 100

    def test_url_safe_characters(self) -> None:
        """Test that verifier uses URL-safe characters."""
        assert all(c in URL_SAFE for c in generate_code_verifier())

    def test_rejects_low_entropy(self) -> None:
        """Test that low entropy values are rejected."""
        with pytest.raises(ValueError, match="at least 32"):
            generate_code_verifier(nbytes=16)


class TestGenerateCodeChallenge:
    """Tests for generate_code_challenge function."""

    def test_consistent_for_same_verifier(self) -> None:
        """Test that same verifier produces same challenge."""
        verifier = generate_code_verifier()
        assert generate_code_challenge(verifier) == generate_code_challenge(verifier)

    def test_s256_algorithm(self) -> None:
        """Test that S256 algorithm is correctly implemented."""
        verifier = "test_verifier_string"
        expected_hash = hashlib.sha256(verifier.encode("ascii")).digest()
        expected_challenge = base64.urlsafe_b64encode(expected_hash).rstrip(b"=").decode("ascii")

        assert generate_code_challenge(verifier) == expected_challenge

    def test_rfc7636_example(self) -> None:
        """Test the Appendix B example from RFC 7636."""
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


class TestPKCEPair:
    """Tests for PKCEPair dataclass."""

    def test_is_frozen(self) -> None:
        """Test that PKCEPair is immutable."""
        pair = PKCEPair(code_verifier="verifier", code_challenge="challenge")

        with pytest.raises(AttributeError):
            pair.code_verifier = "new"  # type: ignore[misc]


class TestCreatePKCEPair:
    """Tests for create_pkce_pair function."""

    def test_challenge_matches_verifier(self) -> None:
        """Test that the pair's challenge is derived from its verifier."""
        pair = create_pkce_pair()
        assert pair.code_challenge == generate_code_challenge(pair.code_verifier)

    def test_pairs_differ(self) -> None:
        """Test that successive pairs differ."""
        assert create_pkce_pair() != create_pkce_pair()
