import logging
from typing import Any, Dict, Optional, Tuple

from notes_api.auth.nonce import NonceCache
from notes_api.auth.oidc import OIDCProvider
from notes_api.auth.state import LoginState
from notes_api.errors import AuthError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"
NONCE_TTL_SECONDS = 5 * 60
NONCE_CAPACITY = 100


class AuthGateway:
    """Drives the authorization-code login flow against the OIDC provider."""

    def __init__(self, provider: OIDCProvider, nonces: Optional[NonceCache] = None):
        self.provider = provider
        self.nonces = nonces or NonceCache(ttl=NONCE_TTL_SECONDS, capacity=NONCE_CAPACITY)

    def begin_login(self, came_from: Optional[str] = None) -> str:
        """Return the provider URL the browser should be sent to."""
        nonce = self.nonces.new_nonce()
        return self.provider.authorization_url(LoginState(came_from=came_from).encode(nonce))

    def complete_login(self, state_param: Optional[str], code: Optional[str]) -> Tuple[str, Optional[str]]:
        """
        Validate the callback and exchange its code.

        Returns the verified access token and the URL the user started from.
        """
        state, nonce = LoginState.decode(state_param)
        if not self.nonces.pop(nonce):
            raise AuthError("state is invalid: nonce not found in cache")
        token = self.provider.exchange_code(code or "")
        access_token = token["access_token"]
        claims = self.provider.verify_token(access_token)
        logger.info("Login completed for subject=%s", claims.get("sub"))
        return access_token, state.came_from

    def authenticate(self, access_token: Optional[str]) -> Dict[str, Any]:
        return self.provider.verify_token(access_token or "")
