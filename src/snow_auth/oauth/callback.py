"""Single-shot local HTTP listener for the OAuth redirect.

The listener binds a fixed loopback port, accepts exactly one callback
for its flow session, exchanges the code and then shuts down. A callback
settles the flow from a background task, after its page has been sent.
The first of {callback, timeout} decides the outcome; the other becomes
a no-op.
"""

from __future__ import annotations

import asyncio
import html
import socket
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import uvicorn
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.responses import HTMLResponse, PlainTextResponse, Response
from starlette.routing import Route

from snow_auth.logging_config import get_logger
from snow_auth.rate_limit import RateLimitError
from snow_auth.security import OAuthError, constant_time_equals

if TYPE_CHECKING:
    from types import TracebackType

    from starlette.requests import Request

    from snow_auth.oauth.flows import TokenClient, TokenSet
    from snow_auth.oauth.session import FlowSession

logger = get_logger(__name__)

DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PORT = 3005
DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_CALLBACK_TIMEOUT = 300.0

# Upper bound on waiting for an in-flight response while shutting down
SHUTDOWN_GRACE_SECONDS = 5


class ListenerStartupError(OAuthError):
    """Raised when the callback listener cannot bind its port."""


class ListenerState(str, Enum):
    """Lifecycle of a callback listener."""

    IDLE = "idle"
    LISTENING = "listening"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"


class CallbackOutcome(str, Enum):
    """How a flow's callback wait ended."""

    SUCCESS = "success"
    SECURITY = "security"
    PROVIDER_DENIED = "provider_denied"
    MISSING_CODE = "missing_code"
    EXCHANGE_FAILED = "exchange_failed"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class CallbackResult:
    """Terminal result of a callback listener."""

    outcome: CallbackOutcome
    tokens: TokenSet | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome is CallbackOutcome.SUCCESS


_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 4em;">
<h1>{title}</h1>
<p>{message}</p>
</body>
</html>
"""


def render_page(
    title: str,
    message: str,
    status_code: int,
    background: BackgroundTask | None = None,
) -> HTMLResponse:
    """Render the terminal HTML page shown in the browser."""
    content = _PAGE.format(title=html.escape(title), message=html.escape(message))
    return HTMLResponse(content, status_code=status_code, background=background)


class CallbackListener:
    """Loopback HTTP listener that resolves one authorization callback.

    Example:
        listener = CallbackListener(session, token_client, port=3005)
        await listener.start()
        webbrowser.open(auth_url)
        result = await listener.wait()
    """

    def __init__(
        self,
        session: FlowSession,
        token_client: TokenClient,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
        path: str = DEFAULT_CALLBACK_PATH,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
    ) -> None:
        """Initialize the listener.

        Args:
            session: Flow whose state and verifier the callback must match
            token_client: Client used to exchange the received code
            host: Loopback address to bind
            port: Fixed port registered in the redirect URI
            path: Callback route path
            timeout: Seconds to wait for the callback
        """
        self._session = session
        self._token_client = token_client
        self._host = host
        self._port = port
        self._path = path
        self._timeout = timeout

        self._state = ListenerState.IDLE
        self._future: asyncio.Future[CallbackResult] | None = None
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._handled = False
        self._closed = False

    @property
    def state(self) -> ListenerState:
        """Current lifecycle state."""
        return self._state

    @property
    def callback_url(self) -> str:
        """URL the browser is redirected to."""
        return f"http://localhost:{self._port}{self._path}"

    def _build_app(self) -> Starlette:
        routes = [Route(self._path, self._handle_callback, methods=["GET"])]
        return Starlette(routes=routes)

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._port))
            sock.listen(8)
        except OSError as e:
            sock.close()
            msg = f"Cannot listen on {self._host}:{self._port} for the OAuth callback: {e}"
            raise ListenerStartupError(msg) from e
        return sock

    async def start(self) -> None:
        """Bind the port and begin serving.

        Raises:
            ListenerStartupError: If the port is already in use
            OAuthError: If the listener was already started
        """
        if self._state is not ListenerState.IDLE:
            raise OAuthError(f"Callback listener already {self._state.value}")

        self._socket = self._bind()
        self._future = asyncio.get_running_loop().create_future()

        config = uvicorn.Config(
            app=self._build_app(),
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=SHUTDOWN_GRACE_SECONDS,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))
        self._state = ListenerState.LISTENING

        logger.info("Waiting for OAuth callback on %s", self.callback_url)

    def _resolve(self, result: CallbackResult, state: ListenerState) -> None:
        """Settle the flow once; later attempts are ignored."""
        if self._future is None or self._future.done():
            return
        self._state = state
        self._future.set_result(result)
        logger.debug("Callback listener resolved: %s", result.outcome.value)

    def _respond(
        self, result: CallbackResult, title: str, message: str, status_code: int
    ) -> HTMLResponse:
        """Render the page and settle the flow once it has been sent."""
        self._handled = True
        return render_page(
            title, message, status_code, background=BackgroundTask(self._settle, result)
        )

    async def _settle(self, result: CallbackResult) -> None:
        self._resolve(result, ListenerState.RESOLVED)

    async def _handle_callback(self, request: Request) -> Response:
        if self._handled:
            return PlainTextResponse("Not Found", status_code=404)

        params = request.query_params
        state = params.get("state")

        if not constant_time_equals(state, self._session.state):
            logger.error("OAuth callback state mismatch - possible CSRF attempt")
            return self._respond(
                CallbackResult(
                    CallbackOutcome.SECURITY,
                    error="State parameter mismatch - possible CSRF attack",
                ),
                "Security check failed",
                "The state parameter did not match. Please restart the login.",
                400,
            )

        error = params.get("error")
        if error:
            description = params.get("error_description")
            message = f"{error} - {description}" if description else error
            logger.error("Authorization denied by provider: %s", message)
            return self._respond(
                CallbackResult(CallbackOutcome.PROVIDER_DENIED, error=message),
                "Authorization failed",
                message,
                400,
            )

        code = params.get("code")
        if not code:
            return self._respond(
                CallbackResult(
                    CallbackOutcome.MISSING_CODE, error="No authorization code received"
                ),
                "Authorization failed",
                "No authorization code received.",
                400,
            )

        # Claimed before the exchange so a reload cannot exchange the code twice
        self._handled = True
        try:
            tokens = await self._token_client.exchange(
                self._session.instance,
                self._session.client_id,
                self._session.client_secret,
                code,
                self._session.code_verifier,
            )
        except RateLimitError as e:
            return self._respond(
                CallbackResult(CallbackOutcome.RATE_LIMITED, error=str(e)),
                "Authentication failed",
                str(e),
                500,
            )
        except OAuthError as e:
            return self._respond(
                CallbackResult(CallbackOutcome.EXCHANGE_FAILED, error=str(e)),
                "Authentication failed",
                str(e),
                500,
            )
        except Exception as e:
            logger.exception("Unexpected error during token exchange")
            return self._respond(
                CallbackResult(
                    CallbackOutcome.EXCHANGE_FAILED, error=f"Token exchange error: {e}"
                ),
                "Authentication failed",
                "The token exchange failed unexpectedly. See the terminal for details.",
                500,
            )

        return self._respond(
            CallbackResult(CallbackOutcome.SUCCESS, tokens=tokens),
            "Authentication successful",
            "You can close this window and return to the terminal.",
            200,
        )

    async def wait(self) -> CallbackResult:
        """Wait for the callback or the timeout, then shut down.

        Returns:
            The single terminal CallbackResult of this flow

        Raises:
            OAuthError: If the listener was never started
        """
        if self._future is None:
            raise OAuthError("Callback listener is not started")

        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout=self._timeout)
        except TimeoutError:
            logger.warning("No OAuth callback received within %.0f seconds", self._timeout)
            self._resolve(
                CallbackResult(
                    CallbackOutcome.TIMEOUT,
                    error=f"Timed out after {self._timeout:.0f} seconds waiting for authorization",
                ),
                ListenerState.TIMED_OUT,
            )
            return self._future.result()
        finally:
            await self.close()

    async def run(self) -> CallbackResult:
        """Start the listener and wait for its result."""
        await self.start()
        return await self.wait()

    async def close(self) -> None:
        """Stop serving and release the port. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except (Exception, SystemExit) as e:
                logger.debug("Callback server stopped with error: %s", e)
        if self._socket is not None:
            self._socket.close()

        logger.debug("Callback listener on port %d closed", self._port)

    async def __aenter__(self) -> CallbackListener:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
