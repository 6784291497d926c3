"""
Client for the external OpenID Connect provider.

The provider is authoritative for identities: this module only builds the
login redirect, exchanges authorization codes for tokens and verifies token
signatures and issuer against the provider's published key set.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt

from notes_api.config import Settings
from notes_api.errors import AuthError

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"
SCOPES = ("openid", "profile", "email")


def _has_key(jwks: Dict[str, Any], kid: Optional[str]) -> bool:
    if kid is None:
        return True
    return any(key.get("kid") == kid for key in jwks.get("keys", []))


class OIDCProvider:
    def __init__(
        self,
        provider_url: str,
        client_id: str,
        redirect_url: str,
        client_secret: Optional[str] = None,
        algorithms: Sequence[str] = ("RS256",),
        http: Optional[httpx.Client] = None,
        load_attempts: int = 5,
        retry_delay: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider_url = provider_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.algorithms = list(algorithms)
        self.http = http or httpx.Client(timeout=10.0)
        self.load_attempts = max(1, load_attempts)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._metadata: Optional[Dict[str, Any]] = None
        self._jwks: Optional[Dict[str, Any]] = None

    @classmethod
    def from_settings(cls, settings: Settings, http: Optional[httpx.Client] = None) -> "OIDCProvider":
        return cls(
            provider_url=settings.auth_provider_url,
            client_id=settings.client_id,
            redirect_url=settings.redirect_url,
            client_secret=settings.client_secret,
            algorithms=settings.token_algorithms,
            http=http,
            load_attempts=settings.oidc_load_attempts,
            retry_delay=settings.oidc_retry_delay_seconds,
        )

    def load(self) -> Dict[str, Any]:
        """Fetch the provider's discovery document, retrying a fixed number of times."""
        url = self.provider_url + DISCOVERY_PATH
        last_error: Optional[Exception] = None
        for attempt in range(1, self.load_attempts + 1):
            try:
                response = self.http.get(url)
                response.raise_for_status()
                self._metadata = response.json()
                return self._metadata
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                logger.warning("Could not load OIDC config attempt=%s url=%s err=%s", attempt, url, exc)
                if attempt < self.load_attempts:
                    self._sleep(self.retry_delay)
        raise AuthError(f"could not load OIDC configuration from {url}: {last_error}")

    @property
    def metadata(self) -> Dict[str, Any]:
        if self._metadata is None:
            return self.load()
        return self._metadata

    @property
    def issuer(self) -> str:
        return self.metadata.get("issuer") or self.provider_url

    def authorization_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "scope": " ".join(SCOPES),
            "state": state,
        }
        return f"{self.metadata['authorization_endpoint']}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for the provider's token response."""
        if not code:
            raise AuthError("authorization code is missing")
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_url,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        try:
            response = self.http.post(self.metadata["token_endpoint"], data=data)
            response.raise_for_status()
            token = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AuthError(f"code-token exchange failed: {exc}") from exc
        if not isinstance(token, dict) or not token.get("access_token"):
            raise AuthError("code-token exchange returned no access token")
        return token

    def _fetch_jwks(self) -> Dict[str, Any]:
        try:
            response = self.http.get(self.metadata["jwks_uri"])
            response.raise_for_status()
            self._jwks = response.json()
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            raise AuthError(f"could not fetch provider key set: {exc}") from exc
        return self._jwks

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Check a token's signature against the provider JWKS and its issuer. Returns the claims."""
        if not token:
            raise AuthError("access token is missing")
        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except JWTError as exc:
            raise AuthError(f"access token is invalid: {exc}") from exc
        jwks = self._jwks
        # Keys may have rotated since they were cached.
        if jwks is None or not _has_key(jwks, kid):
            jwks = self._fetch_jwks()
        try:
            return self._decode(token, jwks)
        except JWTError as exc:
            raise AuthError(f"access token is invalid: {exc}") from exc

    def _decode(self, token: str, jwks: Dict[str, Any]) -> Dict[str, Any]:
        return jwt.decode(
            token,
            jwks,
            algorithms=self.algorithms,
            issuer=self.issuer,
            options={"verify_aud": False},
        )
