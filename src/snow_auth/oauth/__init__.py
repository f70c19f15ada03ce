"""OAuth 2.0 module for snow-auth.

Provides the Authorization Code flow with PKCE: secret generation,
authorization URL construction, the local callback listener, the
token endpoint client and the flow controller.
"""

from snow_auth.oauth.callback import (
    CallbackListener,
    CallbackOutcome,
    CallbackResult,
    ListenerStartupError,
    ListenerState,
)
from snow_auth.oauth.flows import TokenClient, TokenSet
from snow_auth.oauth.orchestrator import AuthResult, ErrorKind, ServiceNowOAuth
from snow_auth.oauth.pkce import (
    PKCEPair,
    create_pkce_pair,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from snow_auth.oauth.session import FlowSession
from snow_auth.oauth.urls import build_authorization_url, normalize_instance_url

__all__ = [
    "AuthResult",
    "CallbackListener",
    "CallbackOutcome",
    "CallbackResult",
    "ErrorKind",
    "FlowSession",
    "ListenerStartupError",
    "ListenerState",
    "PKCEPair",
    "ServiceNowOAuth",
    "TokenClient",
    "TokenSet",
    "build_authorization_url",
    "create_pkce_pair",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state",
    "normalize_instance_url",
]
