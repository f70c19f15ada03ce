"""snow-auth.

OAuth 2.0 (Authorization Code + PKCE) credential acquisition and local
credential storage for developer CLIs.
"""

__version__ = "0.1.0"

from snow_auth.config import Config, ConfigError, load_config
from snow_auth.oauth.orchestrator import AuthResult, ServiceNowOAuth
from snow_auth.store import CredentialStore, CredentialStoreError

__all__ = [
    "AuthResult",
    "Config",
    "ConfigError",
    "CredentialStore",
    "CredentialStoreError",
    "ServiceNowOAuth",
    "__version__",
    "load_config",
]
