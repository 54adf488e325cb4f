"""OpenID Connect provider client: token grants, logout and access-token verification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import httpx
import jwt

if TYPE_CHECKING:
    from usermgmt.core.config import Settings

logger = logging.getLogger(__name__)

# Upstream response bodies are truncated to this many characters in logs.
LOG_BODY_LIMIT = 500


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by the provider's token endpoint."""

    access_token: str
    refresh_token: str | None
    refresh_expires_in: int


def log_upstream_failure(action: str, resp: httpx.Response) -> None:
    """Log a non-success provider response with its status and truncated body."""
    logger.warning(
        "Identity provider %s failed",
        action,
        extra={
            "upstream_status": resp.status_code,
            "upstream_body": (resp.text or "")[:LOG_BODY_LIMIT],
        },
    )


def principal_from_claims(claims: dict[str, Any]) -> tuple[str, str]:
    """Return (preferred_username, sub) from token claims, blank strings when absent."""
    preferred = str(claims.get("preferred_username") or "").strip()
    subject = str(claims.get("sub") or "").strip()
    return preferred, subject


def unverified_claims(token: str | None) -> dict[str, Any] | None:
    """
    Read claims from a token received directly from the provider's token endpoint.
    Returns None when the token is not a decodable JWT.
    """
    if not token:
        return None
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None


class OidcClient:
    """Talks to the realm's token and logout endpoints with the confidential client's credentials."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.realm_url = settings.oidc_realm_url
        self.client_id = settings.OIDC_CLIENT_ID or ""
        self.client_secret = (
            settings.OIDC_CLIENT_SECRET.get_secret_value()
            if settings.OIDC_CLIENT_SECRET is not None
            else ""
        )
        self.timeout = settings.OIDC_REQUEST_TIMEOUT_SEC
        self.transport = transport

    @property
    def token_endpoint(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/token"

    @property
    def logout_endpoint(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/logout"

    @property
    def jwks_url(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/certs"

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.transport)

    def _post_form(self, url: str, form: dict[str, str]) -> httpx.Response | None:
        body = {"client_id": self.client_id, "client_secret": self.client_secret, **form}
        try:
            with self._client() as client:
                return client.post(url, data=body)
        except httpx.HTTPError as e:
            logger.warning("Identity provider unreachable: %s", e)
            return None

    def exchange(self, form: dict[str, str]) -> TokenSet | None:
        """POST a grant to the token endpoint; None on any non-200 or malformed response."""
        resp = self._post_form(self.token_endpoint, form)
        if resp is None:
            return None
        if resp.status_code != 200:
            log_upstream_failure(f"token grant ({form.get('grant_type')})", resp)
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.warning("Identity provider returned a non-JSON token response")
            return None
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            logger.warning("Identity provider token response has no access_token")
            return None
        try:
            refresh_expires_in = int(data.get("refresh_expires_in") or 0)
        except (TypeError, ValueError):
            refresh_expires_in = 0
        return TokenSet(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            refresh_expires_in=max(refresh_expires_in, 0),
        )

    def password_grant(self, username: str, password: str) -> TokenSet | None:
        return self.exchange(
            {"grant_type": "password", "username": username, "password": password}
        )

    def refresh_grant(self, refresh_token: str) -> TokenSet | None:
        return self.exchange({"grant_type": "refresh_token", "refresh_token": refresh_token})

    def client_credentials_token(self) -> str | None:
        """Service-account access token for the admin API, or None."""
        token_set = self.exchange({"grant_type": "client_credentials"})
        return token_set.access_token if token_set else None

    def logout(self, refresh_token: str) -> bool:
        """Ask the provider to end the session behind refresh_token."""
        resp = self._post_form(self.logout_endpoint, {"refresh_token": refresh_token})
        if resp is None:
            return False
        if resp.status_code >= 300:
            log_upstream_failure("logout", resp)
            return False
        return True


class OidcTokenVerifier:
    """Verify provider-issued access tokens against the realm JWKS."""

    algorithms = ["RS256"]

    def __init__(self, jwks_url: str, issuer: str) -> None:
        self.issuer = issuer
        self.jwk_client = jwt.PyJWKClient(jwks_url)

    def verify(self, token: str) -> dict[str, Any]:
        """Return verified claims. Raises jwt.PyJWTError on any failure."""
        signing_key = self.jwk_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=self.algorithms,
            issuer=self.issuer,
            options={"verify_aud": False, "require": ["exp", "sub"]},
        )


@lru_cache
def get_oidc_token_verifier(jwks_url: str, issuer: str) -> OidcTokenVerifier:
    """One verifier (and JWKS key cache) per realm for the process."""
    return OidcTokenVerifier(jwks_url, issuer)
