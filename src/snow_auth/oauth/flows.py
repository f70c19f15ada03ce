"""OAuth 2.0 token endpoint client.

Exchanges authorization codes and refresh tokens at an instance's
token endpoint. Every call is gated by a rate limiter; nothing is
retried internally.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from snow_auth.logging_config import get_logger
from snow_auth.oauth.urls import token_endpoint
from snow_auth.rate_limit import RateLimiter, RateLimitError
from snow_auth.security import ProviderError, TokenEndpointError, mask_sensitive_data
from snow_auth.store import SERVICENOW_PROVIDER_ID, ServiceNowOAuthCredential

if TYPE_CHECKING:
    from snow_auth.store import CredentialStore

logger = get_logger(__name__)

# Default HTTP timeout for token requests
DEFAULT_TIMEOUT = 30.0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by the token endpoint.

    ``expires_at_ms`` is absolute, computed once when the response is
    received; it is None when the provider omits ``expires_in``.
    """

    access_token: str
    refresh_token: str | None
    expires_in: int | None
    expires_at_ms: int | None

    @classmethod
    def from_token_response(
        cls,
        response: dict[str, Any],
        fallback_refresh_token: str | None = None,
    ) -> TokenSet:
        """Create TokenSet from a token endpoint response.

        Args:
            response: Parsed JSON response body
            fallback_refresh_token: Used when the provider did not rotate it

        Returns:
            TokenSet instance

        Raises:
            TokenEndpointError: If expires_in is not an integer
        """
        raw_expires_in = response.get("expires_in")
        expires_in = None
        expires_at = None
        if raw_expires_in is not None:
            try:
                expires_in = int(raw_expires_in)
            except (TypeError, ValueError) as e:
                raise TokenEndpointError(
                    f"Token response has invalid expires_in: {raw_expires_in!r}"
                ) from e
            expires_at = now_ms() + expires_in * 1000

        return cls(
            access_token=response["access_token"],
            refresh_token=response.get("refresh_token") or fallback_refresh_token,
            expires_in=expires_in,
            expires_at_ms=expires_at,
        )


def _oauth_error_body(response: httpx.Response) -> dict[str, Any] | None:
    """Return the body of an error response if it is an OAuth error document."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("error"):
        return body
    return None


class TokenClient:
    """Client for an instance's OAuth token endpoint.

    One client owns one rate limiter, so independent clients do not
    throttle each other.
    """

    def __init__(
        self,
        redirect_uri: str,
        rate_limiter: RateLimiter | None = None,
        store: CredentialStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the token client.

        Args:
            redirect_uri: Redirect URI, identical to the authorization request's
            rate_limiter: Limiter consulted before each request
            store: Credential store updated after a refresh
            http_client: Optional custom HTTP client
            timeout: Request timeout when creating our own client
        """
        self.redirect_uri = redirect_uri
        self.rate_limiter = rate_limiter or RateLimiter()
        self.store = store
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _post_token_request(
        self, instance: str, data: dict[str, str], action: str
    ) -> dict[str, Any]:
        """POST a form to the token endpoint and return the parsed body.

        Raises:
            RateLimitError: If the rate limiter denies the call
            TokenEndpointError: On transport failure, or a non-2xx status
                without an OAuth error body
            ProviderError: If the body carries an OAuth ``error`` field
        """
        if not self.rate_limiter.allow():
            raise RateLimitError(
                "Rate limit exceeded. Please wait before retrying.",
                retry_after=self.rate_limiter.retry_after(),
            )

        client = await self._get_client()
        url = token_endpoint(instance)

        logger.debug("%s request to %s: %s", action, url, mask_sensitive_data(data))

        try:
            response = await client.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("%s error: %s", action, e)
            raise TokenEndpointError(f"{action} error: {e}") from e

        if not response.is_success:
            error_body = _oauth_error_body(response)
            if error_body is not None:
                logger.error(
                    "%s rejected by provider (%s): %s",
                    action,
                    response.status_code,
                    error_body["error"],
                )
                raise ProviderError(
                    str(error_body["error"]),
                    error_body.get("error_description"),
                    status_code=response.status_code,
                )
            logger.error(
                "%s failed: %s %s - %s",
                action,
                response.status_code,
                response.reason_phrase,
                response.text,
            )
            raise TokenEndpointError(
                f"{action} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            token_data = response.json()
        except ValueError as e:
            raise TokenEndpointError(
                f"{action} returned invalid JSON",
                status_code=response.status_code,
                response_body=response.text,
            ) from e

        if not isinstance(token_data, dict):
            raise TokenEndpointError(
                f"{action} returned unexpected payload",
                status_code=response.status_code,
                response_body=response.text,
            )

        if token_data.get("error"):
            logger.error("%s rejected by provider: %s", action, token_data.get("error"))
            raise ProviderError(
                str(token_data["error"]),
                token_data.get("error_description"),
            )

        if not token_data.get("access_token"):
            raise TokenEndpointError(
                f"{action} response has no access_token",
                status_code=response.status_code,
                response_body=response.text,
            )

        return token_data

    async def exchange(
        self,
        instance: str,
        client_id: str,
        client_secret: str,
        code: str,
        code_verifier: str,
    ) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            instance: Normalized instance base URL
            client_id: OAuth client identifier
            client_secret: OAuth client secret
            code: Authorization code from the callback
            code_verifier: PKCE verifier of the flow that produced the code

        Returns:
            TokenSet with access and refresh tokens

        Raises:
            RateLimitError: If the rate limiter denies the call
            TokenEndpointError: On transport failure or non-2xx status
            ProviderError: If the provider reports an OAuth error
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": client_id,
            "client_secret": client_secret,
            "code_verifier": code_verifier,
        }

        token_data = await self._post_token_request(instance, data, "Token exchange")
        tokens = TokenSet.from_token_response(token_data)

        logger.info("Exchanged authorization code for tokens (expires_in: %s)", tokens.expires_in)
        return tokens

    async def refresh(
        self,
        instance: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        provider_id: str = SERVICENOW_PROVIDER_ID,
    ) -> TokenSet:
        """Obtain a new access token with a refresh token.

        The prior refresh token is kept when the provider does not
        return a new one. If a store is attached, the provider's
        record is updated with the new tokens and absolute expiry.

        Args:
            instance: Normalized instance base URL
            client_id: OAuth client identifier
            client_secret: OAuth client secret
            refresh_token: Current refresh token
            provider_id: Store key of the record to update

        Returns:
            New TokenSet

        Raises:
            RateLimitError: If the rate limiter denies the call
            TokenEndpointError: On transport failure or non-2xx status
            ProviderError: If the provider reports an OAuth error
            CredentialStoreError: If the updated record cannot be saved
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
        }

        token_data = await self._post_token_request(instance, data, "Token refresh")
        tokens = TokenSet.from_token_response(token_data, fallback_refresh_token=refresh_token)

        if self.store is not None:
            await self.store.set(
                provider_id,
                ServiceNowOAuthCredential(
                    instance=instance,
                    client_id=client_id,
                    client_secret=client_secret,
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                    expires_at=tokens.expires_at_ms,
                ),
            )

        logger.info("Refreshed access token for %s", provider_id)
        return tokens
