"""Instance URL normalization and OAuth endpoint URLs."""

from __future__ import annotations

from urllib.parse import urlencode

from snow_auth.oauth.pkce import CODE_CHALLENGE_METHOD

DEFAULT_DOMAIN_SUFFIX = ".service-now.com"
AUTHORIZE_PATH = "/oauth_auth.do"
TOKEN_PATH = "/oauth_token.do"

# Hosts that are used as given, never expanded to a hosted instance
_LOCAL_HOSTS = ("localhost", "127.0.0.1")


def normalize_instance_url(instance: str) -> str:
    """Normalize a user-supplied instance into a base URL.

    ``dev12345`` becomes ``https://dev12345.service-now.com``;
    ``dev12345.service-now.com/`` becomes ``https://dev12345.service-now.com``.
    Explicit schemes and local hosts are kept as given.

    Args:
        instance: Instance name, host or URL

    Returns:
        Base URL without trailing slash
    """
    normalized = instance.strip().rstrip("/")

    if not normalized.startswith(("http://", "https://")):
        normalized = f"https://{normalized}"

    if DEFAULT_DOMAIN_SUFFIX not in normalized and not any(
        host in normalized for host in _LOCAL_HOSTS
    ):
        name = normalized.split("://", 1)[1]
        normalized = f"https://{name}{DEFAULT_DOMAIN_SUFFIX}"

    return normalized


def _base_url(instance: str) -> str:
    return instance if instance.startswith("http") else f"https://{instance}"


def authorization_endpoint(instance: str) -> str:
    """Authorization endpoint for an instance."""
    return f"{_base_url(instance)}{AUTHORIZE_PATH}"


def token_endpoint(instance: str) -> str:
    """Token endpoint for an instance."""
    return f"{_base_url(instance)}{TOKEN_PATH}"


def build_authorization_url(
    instance: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
) -> str:
    """Compose the authorization URL the user opens in a browser.

    Args:
        instance: Normalized instance base URL
        client_id: OAuth client identifier
        redirect_uri: Local callback URI, identical to the token request's
        state: CSRF state for this flow
        code_challenge: S256 PKCE challenge

    Returns:
        Fully qualified authorization URL
    """
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
    }
    return f"{authorization_endpoint(instance)}?{urlencode(params)}"
