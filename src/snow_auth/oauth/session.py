"""Per-attempt authorization flow state."""

from __future__ import annotations

from dataclasses import dataclass, field

from snow_auth.oauth.pkce import PKCEPair, create_pkce_pair, generate_state


@dataclass(frozen=True)
class FlowSession:
    """Secrets and target of one in-flight authorization attempt.

    Never persisted; discarded once the flow resolves.

    Attributes:
        instance: Normalized instance base URL
        client_id: OAuth client identifier
        client_secret: OAuth client secret
        state: CSRF state echoed back on the callback
        pkce: PKCE verifier/challenge pair
    """

    instance: str
    client_id: str
    client_secret: str = field(repr=False)
    state: str = field(default_factory=generate_state, repr=False)
    pkce: PKCEPair = field(default_factory=create_pkce_pair, repr=False)

    @property
    def code_verifier(self) -> str:
        return self.pkce.code_verifier

    @property
    def code_challenge(self) -> str:
        return self.pkce.code_challenge
