"""
Google OAuth 2.0 authorization-code flow.
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
VALID_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class OAuthError(Exception):
    pass


class GoogleOAuthClient:
    def __init__(self, client_id: str, client_secret: Optional[str], redirect_uri: str, timeout: float = 10.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def authorization_url(self) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid profile email",
            "access_type": "offline",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for a verified identity: {sub, email, name}."""
        try:
            r = requests.post(GOOGLE_TOKEN_URL, data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            }, timeout=self.timeout)
        except requests.RequestException as exc:
            raise OAuthError(f"Token exchange failed: {exc}")
        if r.status_code != 200:
            raise OAuthError(f"Token exchange failed: HTTP {r.status_code}")
        id_token = r.json().get("id_token")
        if not id_token:
            raise OAuthError("Token response carried no id_token")
        return self.verify_id_token(id_token)

    def verify_id_token(self, id_token: str) -> Dict[str, Any]:
        try:
            r = requests.get(GOOGLE_TOKENINFO_URL, params={"id_token": id_token}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise OAuthError(f"Token verification failed: {exc}")
        if r.status_code != 200:
            raise OAuthError(f"Token verification failed: HTTP {r.status_code}")
        claims = r.json()
        if claims.get("aud") != self.client_id:
            raise OAuthError("id_token audience mismatch")
        if claims.get("iss") not in VALID_ISSUERS:
            raise OAuthError("id_token issuer mismatch")
        if not claims.get("sub") or not claims.get("email"):
            raise OAuthError("id_token is missing subject or email")
        # accounts are linked by email, so it must be one Google has verified
        if claims.get("email_verified") not in ("true", True):
            raise OAuthError("id_token email is not verified")
        return {"sub": claims["sub"], "email": claims["email"], "name": claims.get("name")}
