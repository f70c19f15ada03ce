"""ServiceNow OAuth authorization flow.

Drives one Authorization Code + PKCE attempt from secret validation to
a persisted credential, and refreshes stored credentials.
"""

from __future__ import annotations

import re
import webbrowser
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit

from snow_auth.config import Config
from snow_auth.logging_config import get_logger
from snow_auth.oauth.callback import (
    CallbackListener,
    CallbackOutcome,
    ListenerStartupError,
)
from snow_auth.oauth.flows import TokenClient
from snow_auth.oauth.session import FlowSession
from snow_auth.oauth.urls import build_authorization_url, normalize_instance_url
from snow_auth.rate_limit import RateLimitError, create_rate_limiter
from snow_auth.security import (
    FlowInProgressError,
    OAuthError,
    constant_time_equals,
    redact,
    validate_client_secret,
)
from snow_auth.store import (
    SERVICENOW_PROVIDER_ID,
    CredentialStore,
    ServiceNowOAuthCredential,
)

if TYPE_CHECKING:
    from snow_auth.oauth.flows import TokenSet

logger = get_logger(__name__)

BrowserOpener = Callable[[str], object]
CodeProvider = Callable[[str], Awaitable[str | None]]
ListenerFactory = Callable[[FlowSession, TokenClient], CallbackListener]


class ErrorKind(str, Enum):
    """Failure categories reported to the caller."""

    VALIDATION = "validation"
    SECURITY = "security"
    PROVIDER_DENIED = "provider_denied"
    MISSING_CODE = "missing_code"
    EXCHANGE_FAILED = "exchange_failed"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    STARTUP = "startup"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


_OUTCOME_KINDS = {
    CallbackOutcome.SECURITY: ErrorKind.SECURITY,
    CallbackOutcome.PROVIDER_DENIED: ErrorKind.PROVIDER_DENIED,
    CallbackOutcome.MISSING_CODE: ErrorKind.MISSING_CODE,
    CallbackOutcome.EXCHANGE_FAILED: ErrorKind.EXCHANGE_FAILED,
    CallbackOutcome.RATE_LIMITED: ErrorKind.RATE_LIMITED,
    CallbackOutcome.TIMEOUT: ErrorKind.TIMEOUT,
}


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an authentication or refresh attempt."""

    success: bool
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def failure(cls, kind: ErrorKind, error: str) -> AuthResult:
        return cls(success=False, error=error, error_kind=kind)

    @classmethod
    def from_tokens(cls, tokens: TokenSet) -> AuthResult:
        return cls(
            success=True,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
        )


def extract_code(pasted: str) -> tuple[str, str | None]:
    """Pull the authorization code (and state) out of pasted text.

    Accepts either the bare code or the full redirect URL.

    Returns:
        Tuple of (code, state or None)
    """
    text = pasted.strip()
    if "code=" not in text:
        return text, None

    query = urlsplit(text).query or text
    params = parse_qs(query)
    if "code" in params:
        state = params.get("state", [None])[0]
        return params["code"][0], state

    match = re.search(r"code=([^&]+)", text)
    return (match.group(1) if match else text), None


class ServiceNowOAuth:
    """Authorization Code + PKCE flow against a ServiceNow instance.

    One instance runs at most one flow at a time and owns one rate
    limiter shared by its exchange and refresh calls.
    """

    def __init__(
        self,
        config: Config | None = None,
        store: CredentialStore | None = None,
        token_client: TokenClient | None = None,
        browser_opener: BrowserOpener | None = None,
        listener_factory: ListenerFactory | None = None,
        provider_id: str = SERVICENOW_PROVIDER_ID,
    ) -> None:
        """Initialize the flow controller.

        Args:
            config: Configuration (defaults to Config())
            store: Credential store (defaults to config.store_path)
            token_client: Token endpoint client
            browser_opener: Callable opening a URL (defaults to webbrowser.open)
            listener_factory: Builds the callback listener for a session
            provider_id: Store key for the resulting credential
        """
        self.config = config or Config()
        self.store = store or CredentialStore(self.config.store_path)
        self.token_client = token_client or TokenClient(
            redirect_uri=self.config.redirect_uri,
            rate_limiter=create_rate_limiter(self.config),
            store=self.store,
            timeout=self.config.http_timeout_seconds,
        )
        self._browser_opener = browser_opener or webbrowser.open
        self._listener_factory = listener_factory or self._default_listener
        self.provider_id = provider_id
        self._session: FlowSession | None = None

    def _default_listener(self, session: FlowSession, token_client: TokenClient) -> CallbackListener:
        return CallbackListener(
            session,
            token_client,
            host=self.config.callback_host,
            port=self.config.callback_port,
            path=self.config.callback_path,
            timeout=self.config.callback_timeout_seconds,
        )

    @property
    def active_session(self) -> FlowSession | None:
        """Session of the flow currently in progress, if any."""
        return self._session

    def _begin(
        self, instance: str, client_id: str, client_secret: str
    ) -> tuple[FlowSession, str] | AuthResult:
        """Validate input and create the session and authorization URL."""
        if self._session is not None:
            raise FlowInProgressError("An authorization flow is already in progress")

        normalized = normalize_instance_url(instance)

        validation = validate_client_secret(client_secret)
        if not validation.valid:
            logger.error("Invalid OAuth client secret: %s", validation.reason)
            return AuthResult.failure(ErrorKind.VALIDATION, validation.reason or "invalid secret")

        session = FlowSession(
            instance=normalized, client_id=client_id, client_secret=client_secret
        )
        auth_url = build_authorization_url(
            normalized,
            client_id,
            self.config.redirect_uri,
            session.state,
            session.code_challenge,
        )

        logger.info(
            "Starting OAuth flow (instance: %s, client: %s, secret: %s)",
            normalized,
            client_id,
            redact(client_secret),
        )
        return session, auth_url

    def _open_browser(self, auth_url: str) -> None:
        """Best-effort browser launch; the URL is logged either way."""
        logger.warning("Open this URL to authorize: %s", auth_url)
        if not self.config.open_browser:
            return
        try:
            self._browser_opener(auth_url)
        except Exception as e:
            logger.warning("Could not launch browser: %s", e)

    async def _persist(self, session: FlowSession, tokens: TokenSet) -> None:
        await self.store.set(
            self.provider_id,
            ServiceNowOAuthCredential(
                instance=session.instance,
                client_id=session.client_id,
                client_secret=session.client_secret,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=tokens.expires_at_ms,
            ),
        )
        logger.info("Saved OAuth credential for %s", self.provider_id)

    async def authenticate(
        self, instance: str, client_id: str, client_secret: str
    ) -> AuthResult:
        """Run the browser-based authorization flow.

        Args:
            instance: Instance name, host or URL
            client_id: OAuth client identifier
            client_secret: OAuth client secret

        Returns:
            AuthResult describing success or the failure reason

        Raises:
            FlowInProgressError: If this instance is already running a flow
            CredentialStoreError: If the obtained credential cannot be saved
        """
        begun = self._begin(instance, client_id, client_secret)
        if isinstance(begun, AuthResult):
            return begun
        session, auth_url = begun

        self._session = session
        try:
            listener = self._listener_factory(session, self.token_client)
            try:
                await listener.start()
            except ListenerStartupError as e:
                logger.error("%s", e)
                return AuthResult.failure(ErrorKind.STARTUP, str(e))

            self._open_browser(auth_url)
            result = await listener.wait()

            if not result.success or result.tokens is None:
                kind = _OUTCOME_KINDS.get(result.outcome, ErrorKind.EXCHANGE_FAILED)
                return AuthResult.failure(kind, result.error or result.outcome.value)

            await self._persist(session, result.tokens)
            return AuthResult.from_tokens(result.tokens)
        finally:
            self._session = None

    async def authenticate_with_code(
        self,
        instance: str,
        client_id: str,
        client_secret: str,
        code_provider: CodeProvider,
    ) -> AuthResult:
        """Run the flow with a pasted authorization code instead of a listener.

        Args:
            instance: Instance name, host or URL
            client_id: OAuth client identifier
            client_secret: OAuth client secret
            code_provider: Awaitable given the authorization URL, returning the
                pasted code or redirect URL, or None if the user cancelled

        Returns:
            AuthResult describing success or the failure reason

        Raises:
            FlowInProgressError: If this instance is already running a flow
            CredentialStoreError: If the obtained credential cannot be saved
        """
        begun = self._begin(instance, client_id, client_secret)
        if isinstance(begun, AuthResult):
            return begun
        session, auth_url = begun

        self._session = session
        try:
            self._open_browser(auth_url)
            pasted = await code_provider(auth_url)
            if pasted is None or not pasted.strip():
                return AuthResult.failure(ErrorKind.CANCELLED, "Authentication cancelled by user")

            code, state = extract_code(pasted)
            if state is not None and not constant_time_equals(state, session.state):
                return AuthResult.failure(
                    ErrorKind.SECURITY, "State parameter mismatch - possible CSRF attack"
                )

            try:
                tokens = await self.token_client.exchange(
                    session.instance,
                    session.client_id,
                    session.client_secret,
                    code,
                    session.code_verifier,
                )
            except RateLimitError as e:
                return AuthResult.failure(ErrorKind.RATE_LIMITED, str(e))
            except OAuthError as e:
                return AuthResult.failure(ErrorKind.EXCHANGE_FAILED, str(e))

            await self._persist(session, tokens)
            return AuthResult.from_tokens(tokens)
        finally:
            self._session = None

    async def refresh(self, provider_id: str | None = None) -> AuthResult:
        """Refresh the stored OAuth credential of a provider.

        Args:
            provider_id: Store key (defaults to this flow's provider)

        Returns:
            AuthResult with the new tokens or the failure reason

        Raises:
            CredentialStoreError: If the refreshed credential cannot be saved
        """
        provider_id = provider_id or self.provider_id
        credential = await self.store.get(provider_id)
        if not isinstance(credential, ServiceNowOAuthCredential):
            return AuthResult.failure(
                ErrorKind.NOT_FOUND, f"No OAuth credential stored for {provider_id}"
            )
        if not credential.refresh_token:
            return AuthResult.failure(
                ErrorKind.NOT_FOUND, f"Stored credential for {provider_id} has no refresh token"
            )

        try:
            tokens = await self.token_client.refresh(
                credential.instance,
                credential.client_id,
                credential.client_secret,
                credential.refresh_token,
                provider_id=provider_id,
            )
        except RateLimitError as e:
            return AuthResult.failure(ErrorKind.RATE_LIMITED, str(e))
        except OAuthError as e:
            return AuthResult.failure(ErrorKind.EXCHANGE_FAILED, str(e))

        # A client without a store leaves persistence to us
        if self.token_client.store is None:
            await self.store.set(
                provider_id,
                credential.model_copy(
                    update={
                        "access_token": tokens.access_token,
                        "refresh_token": tokens.refresh_token,
                        "expires_at": tokens.expires_at_ms,
                    }
                ),
            )

        return AuthResult.from_tokens(tokens)

    async def close(self) -> None:
        """Release the HTTP client."""
        await self.token_client.close()
