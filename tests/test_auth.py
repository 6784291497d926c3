import base64
import time
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from pydantic import ValidationError

from notes_api.api.main import create_app
from notes_api.auth.gateway import AuthGateway
from notes_api.auth.nonce import NonceCache
from notes_api.auth.oidc import OIDCProvider
from notes_api.auth.state import LoginState, decode_came_from
from notes_api.config import Settings
from notes_api.errors import AuthError

PROVIDER_URL = "https://idp.example/realms/notes"
REDIRECT_URL = "http://testserver/auth/callback"
SECRET = b"test-signing-secret-that-is-long-enough"
JWKS = {
    "keys": [
        {
            "kty": "oct",
            "kid": "test",
            "alg": "HS256",
            "k": base64.urlsafe_b64encode(SECRET).decode("ascii").rstrip("="),
        }
    ]
}
DISCOVERY = {
    "issuer": PROVIDER_URL,
    "authorization_endpoint": f"{PROVIDER_URL}/protocol/openid-connect/auth",
    "token_endpoint": f"{PROVIDER_URL}/protocol/openid-connect/token",
    "jwks_uri": f"{PROVIDER_URL}/protocol/openid-connect/certs",
}


def make_token(issuer=PROVIDER_URL, secret=SECRET, kid="test", **claims):
    payload = {"sub": "user-1", "iss": issuer, "exp": int(time.time()) + 300}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256", headers={"kid": kid})


class FakeIdentityProvider:
    """Serves discovery, JWKS and token endpoints through httpx.MockTransport."""

    def __init__(self, discovery_failures=0):
        self.discovery_failures = discovery_failures
        self.requests = []
        self.issued_token = make_token()
        self.jwks = JWKS

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/.well-known/openid-configuration"):
            if self.discovery_failures > 0:
                self.discovery_failures -= 1
                return httpx.Response(503)
            return httpx.Response(200, json=DISCOVERY)
        if path.endswith("/certs"):
            return httpx.Response(200, json=self.jwks)
        if path.endswith("/token"):
            form = parse_qs(request.content.decode())
            if form.get("code") != ["good-code"]:
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": self.issued_token, "token_type": "Bearer"})
        return httpx.Response(404)


def _key_set_fetches(idp):
    return sum(1 for request in idp.requests if request.url.path.endswith("/certs"))


def make_provider(idp, **kwargs):
    kwargs.setdefault("sleep", lambda seconds: None)
    return OIDCProvider(
        provider_url=PROVIDER_URL,
        client_id="notes-api",
        redirect_url=REDIRECT_URL,
        algorithms=["HS256"],
        http=httpx.Client(transport=httpx.MockTransport(idp)),
        **kwargs,
    )


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestNonceCache:
    def test_nonce_is_single_use(self):
        cache = NonceCache()
        nonce = cache.new_nonce()
        assert cache.pop(nonce) is True
        assert cache.pop(nonce) is False

    def test_unknown_nonce(self):
        assert NonceCache().pop("never-issued") is False

    def test_nonce_expires(self):
        clock = FakeClock()
        cache = NonceCache(ttl=300, clock=clock)
        cache.add("n1")
        clock.now += 299
        cache.add("n2")
        clock.now += 2
        assert cache.pop("n1") is False
        assert cache.pop("n2") is True

    def test_capacity_drops_oldest(self):
        cache = NonceCache(capacity=2)
        cache.add("a")
        cache.add("b")
        cache.add("c")
        assert len(cache) == 2
        assert cache.pop("a") is False
        assert cache.pop("b") is True
        assert cache.pop("c") is True

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            NonceCache(capacity=0)


class TestLoginState:
    def test_round_trip(self):
        state, nonce = LoginState.decode(LoginState(came_from="/notes").encode("n0nce"))
        assert state.came_from == "/notes"
        assert nonce == "n0nce"

    @pytest.mark.parametrize("param", [None, "", "!!!", base64.urlsafe_b64encode(b'{"came_from": "/x"}').decode()])
    def test_invalid_state(self, param):
        with pytest.raises(AuthError):
            LoginState.decode(param)

    def test_decode_came_from(self):
        assert decode_came_from(base64.urlsafe_b64encode(b"/notes/1").decode()) == "/notes/1"
        assert decode_came_from("%%%") is None
        assert decode_came_from(None) is None


class TestOIDCProvider:
    def test_load_retries(self):
        idp = FakeIdentityProvider(discovery_failures=2)
        sleeps = []
        provider = make_provider(idp, load_attempts=3, sleep=sleeps.append, retry_delay=10.0)

        assert provider.load()["issuer"] == PROVIDER_URL
        assert sleeps == [10.0, 10.0]

    def test_load_gives_up(self):
        provider = make_provider(FakeIdentityProvider(discovery_failures=5), load_attempts=2)
        with pytest.raises(AuthError):
            provider.load()

    def test_authorization_url(self):
        provider = make_provider(FakeIdentityProvider())
        url = urlsplit(provider.authorization_url("st4te"))
        params = parse_qs(url.query)

        assert f"{url.scheme}://{url.netloc}{url.path}" == DISCOVERY["authorization_endpoint"]
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["notes-api"]
        assert params["redirect_uri"] == [REDIRECT_URL]
        assert params["state"] == ["st4te"]
        assert set(params["scope"][0].split()) == {"openid", "profile", "email"}

    def test_exchange_code(self):
        idp = FakeIdentityProvider()
        provider = make_provider(idp)
        assert provider.exchange_code("good-code")["access_token"] == idp.issued_token
        with pytest.raises(AuthError):
            provider.exchange_code("bad-code")

    def test_verify_token(self):
        provider = make_provider(FakeIdentityProvider())
        assert provider.verify_token(make_token())["sub"] == "user-1"

    @pytest.mark.parametrize(
        "token",
        [
            make_token(issuer="https://evil.example"),
            make_token(secret=b"some-other-secret-entirely-different"),
            "not-a-jwt",
            "",
        ],
    )
    def test_verify_rejects(self, token):
        provider = make_provider(FakeIdentityProvider())
        with pytest.raises(AuthError):
            provider.verify_token(token)

    def test_key_set_is_fetched_once_for_known_keys(self):
        idp = FakeIdentityProvider()
        provider = make_provider(idp)

        provider.verify_token(make_token())
        rejected = [
            make_token(exp=int(time.time()) - 60),
            make_token(secret=b"forged-secret-forged-secret"),
            "garbage",
        ]
        for token in rejected:
            with pytest.raises(AuthError):
                provider.verify_token(token)

        assert _key_set_fetches(idp) == 1

    def test_unknown_key_id_refetches_key_set(self):
        idp = FakeIdentityProvider()
        provider = make_provider(idp)
        provider.verify_token(make_token())
        idp.jwks = {"keys": [dict(JWKS["keys"][0], kid="rotated")]}

        assert provider.verify_token(make_token(kid="rotated"))["sub"] == "user-1"

        assert _key_set_fetches(idp) == 2


class TestAuthGateway:
    def test_replayed_callback_is_rejected(self):
        idp = FakeIdentityProvider()
        gateway = AuthGateway(make_provider(idp))
        state = parse_qs(urlsplit(gateway.begin_login("/back")).query)["state"][0]

        token, came_from = gateway.complete_login(state, "good-code")
        assert token == idp.issued_token
        assert came_from == "/back"

        with pytest.raises(AuthError, match="nonce"):
            gateway.complete_login(state, "good-code")

    def test_forged_nonce_is_rejected(self):
        gateway = AuthGateway(make_provider(FakeIdentityProvider()))
        with pytest.raises(AuthError):
            gateway.complete_login(LoginState().encode("made-up"), "good-code")


def test_settings_require_provider_urls():
    with pytest.raises(ValidationError):
        Settings(disable_auth=False, auth_provider_url=None, redirect_url=None)


@pytest.fixture
def idp():
    return FakeIdentityProvider()


@pytest.fixture
def auth_client(tmp_path, idp):
    settings = Settings(
        storage_backend="sql",
        db_dir=tmp_path,
        auth_provider_url=PROVIDER_URL,
        redirect_url=REDIRECT_URL,
        token_algorithms=["HS256"],
    )
    with TestClient(create_app(settings, oidc_provider=make_provider(idp))) as client:
        yield client


class TestProtectedApi:
    def test_notes_require_token(self, auth_client):
        assert auth_client.get("/notes").status_code == 401
        assert auth_client.get("/notes", headers={"Authorization": "Basic abc"}).status_code == 401
        assert auth_client.get("/notes", headers={"Authorization": "Bearer garbage"}).status_code == 401

    def test_bearer_token(self, auth_client):
        headers = {"Authorization": f"Bearer {make_token()}"}
        assert auth_client.post("/notes", json={"title": "t"}, headers=headers).status_code == 201
        assert auth_client.get("/notes", headers=headers).status_code == 200

    def test_cookie_token(self, auth_client):
        auth_client.cookies.set("access_token", make_token())
        assert auth_client.get("/notes").status_code == 200

    def test_login_flow(self, auth_client, idp):
        came_from = base64.urlsafe_b64encode(b"/notes").decode()
        login = auth_client.get("/auth/login", params={"came_from": came_from}, follow_redirects=False)
        assert login.status_code == 303
        location = login.headers["location"]
        assert location.startswith(DISCOVERY["authorization_endpoint"])
        state = parse_qs(urlsplit(location).query)["state"][0]

        callback = auth_client.get(
            "/auth/callback",
            params={"state": state, "code": "good-code"},
            follow_redirects=False,
        )
        assert callback.status_code == 303
        assert callback.headers["location"] == "/notes"
        assert "access_token=" in callback.headers["set-cookie"]
        assert idp.issued_token in callback.headers["set-cookie"]

        replay = auth_client.get("/auth/callback", params={"state": state, "code": "good-code"})
        assert replay.status_code == 401

    def test_callback_without_came_from(self, auth_client):
        login = auth_client.get("/auth/login", follow_redirects=False)
        state = parse_qs(urlsplit(login.headers["location"]).query)["state"][0]

        callback = auth_client.get("/auth/callback", params={"state": state, "code": "good-code"})

        assert callback.status_code == 200
        assert callback.text == "Login successful"

    def test_callback_with_bad_code(self, auth_client):
        login = auth_client.get("/auth/login", follow_redirects=False)
        state = parse_qs(urlsplit(login.headers["location"]).query)["state"][0]
        callback = auth_client.get("/auth/callback", params={"state": state, "code": "bad-code"})
        assert callback.status_code == 401

    def test_callback_with_bad_state(self, auth_client):
        assert auth_client.get("/auth/callback", params={"state": "junk", "code": "good-code"}).status_code == 401

    def test_logout_clears_cookie(self, auth_client):
        response = auth_client.get("/auth/logout")
        assert response.status_code == 200
        assert response.text == "Logout successful"
        assert response.headers["set-cookie"].startswith("access_token=")
