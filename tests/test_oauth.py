from urllib.parse import parse_qs, urlparse

import pytest
import requests

import oauth
from oauth import GoogleOAuthClient, OAuthError


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


GOOD_CLAIMS = {
    "aud": "client-1",
    "iss": "https://accounts.google.com",
    "sub": "g-1",
    "email": "g@example.com",
    "email_verified": "true",
    "name": "G",
}


@pytest.fixture
def google():
    return GoogleOAuthClient("client-1", "shh", "http://localhost:5000/api/auth/google/callback")


def stub_google(monkeypatch, token_response, tokeninfo_response):
    monkeypatch.setattr(oauth.requests, "post", lambda *a, **kw: token_response)
    monkeypatch.setattr(oauth.requests, "get", lambda *a, **kw: tokeninfo_response)


def test_authorization_url(google):
    params = parse_qs(urlparse(google.authorization_url()).query)
    assert params["client_id"] == ["client-1"]
    assert params["response_type"] == ["code"]
    assert params["scope"] == ["openid profile email"]


def test_exchange_code(google, monkeypatch):
    stub_google(monkeypatch, FakeResponse(200, {"id_token": "tok"}), FakeResponse(200, GOOD_CLAIMS))
    assert google.exchange_code("abc") == {"sub": "g-1", "email": "g@example.com", "name": "G"}


@pytest.mark.parametrize("token_response,tokeninfo_response", [
    (FakeResponse(400, {"error": "invalid_grant"}), FakeResponse(200, GOOD_CLAIMS)),
    (FakeResponse(200, {}), FakeResponse(200, GOOD_CLAIMS)),
    (FakeResponse(200, {"id_token": "tok"}), FakeResponse(400, {})),
    (FakeResponse(200, {"id_token": "tok"}), FakeResponse(200, {**GOOD_CLAIMS, "aud": "someone-else"})),
    (FakeResponse(200, {"id_token": "tok"}), FakeResponse(200, {**GOOD_CLAIMS, "iss": "evil.example.com"})),
    (FakeResponse(200, {"id_token": "tok"}), FakeResponse(200, {**GOOD_CLAIMS, "email": None})),
    (FakeResponse(200, {"id_token": "tok"}), FakeResponse(200, {**GOOD_CLAIMS, "email_verified": "false"})),
    (FakeResponse(200, {"id_token": "tok"}), FakeResponse(200, {k: v for k, v in GOOD_CLAIMS.items() if k != "email_verified"})),
])
def test_exchange_code_failures(google, monkeypatch, token_response, tokeninfo_response):
    stub_google(monkeypatch, token_response, tokeninfo_response)
    with pytest.raises(OAuthError):
        google.exchange_code("abc")


def test_network_errors_become_oauth_errors(google, monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(oauth.requests, "post", boom)
    with pytest.raises(OAuthError):
        google.exchange_code("abc")
