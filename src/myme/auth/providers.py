# OAuth2 providers - authorization URL, code exchange, refresh, profile.
# Created: 2026-09-05
#
# One class per provider behind the OAuthProvider interface. Both GitHub
# and Google get a PKCE (RFC 7636, S256) challenge.

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
import urllib.parse
from abc import ABC
from typing import Any

from myme.auth.token_store import TokenSet
from myme.errors import AuthFailure, PermanentError
from myme.net.retry import (
    RequestExecutor,
    RetryDecision,
    classify_status,
    decode_json,
    raise_for_outcome,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def generate_pkce_pair() -> tuple[str, str]:
    """Return (code_verifier, code_challenge) using S256."""
    verifier = secrets.token_urlsafe(64)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


class OAuthProvider(ABC):
    """Capability interface for an OAuth2 authorization-code provider."""

    service_id: str = ""
    auth_url: str = ""
    token_url: str = ""
    default_scopes: tuple[str, ...] = ()
    supports_pkce: bool = True
    default_expires_in: int = DEFAULT_EXPIRES_IN

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        scopes: list[str] | None = None,
        executor: RequestExecutor | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = list(scopes) if scopes is not None else list(self.default_scopes)
        self.executor = executor or RequestExecutor()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _extra_auth_params(self) -> dict[str, str]:
        return {}

    def authorization_url(
        self,
        state: str,
        redirect_uri: str,
        code_challenge: str | None = None,
    ) -> str:
        """Build the URL the user's browser is sent to."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        if code_challenge and self.supports_pkce:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        params.update(self._extra_auth_params())
        return f"{self.auth_url}?{urllib.parse.urlencode(params)}"

    async def exchange(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenSet:
        """Exchange an authorization code for a token set."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
        }
        if code_verifier and self.supports_pkce:
            data["code_verifier"] = code_verifier

        payload = await self._token_request(data, "token exchange")
        tokens = self._token_set_from(payload)
        logger.info("Exchanged authorization code for %s", self.service_id)
        return tokens

    async def refresh(self, tokens: TokenSet) -> TokenSet:
        """Exchange the refresh token for a new access token."""
        if not tokens.refresh_token:
            raise AuthFailure(f"No refresh token for {self.service_id}")
        payload = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": tokens.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            "token refresh",
        )
        refreshed = self._token_set_from(payload, previous=tokens)
        logger.info("Refreshed OAuth token for %s", self.service_id)
        return refreshed

    async def fetch_profile(self, tokens: TokenSet) -> dict[str, Any]:
        """Fetch account details to store alongside the token. Optional."""
        return {}

    async def _token_request(self, data: dict[str, str], what: str) -> dict[str, Any]:
        response = await self.executor.request(
            "POST",
            self.token_url,
            data=data,
            headers={"Accept": "application/json"},
            check=False,
            context=f"{self.service_id} {what}",
        )
        if response.status_code >= 400:
            if classify_status(response.status_code) is RetryDecision.RETRY:
                raise_for_outcome(response, f"{self.service_id} {what}")
            raise AuthFailure(
                f"{self.service_id} {what} rejected (HTTP {response.status_code})",
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthFailure(f"{self.service_id} {what}: invalid JSON response") from e

        # GitHub reports errors with a 200 and an "error" field.
        if "error" in payload:
            description = payload.get("error_description") or payload["error"]
            raise AuthFailure(f"{self.service_id} {what} failed: {description}")
        if not payload.get("access_token"):
            raise AuthFailure(f"{self.service_id} {what}: no access token in response")
        return payload

    def _token_set_from(
        self, payload: dict[str, Any], previous: TokenSet | None = None
    ) -> TokenSet:
        expires_in = payload.get("expires_in") or self.default_expires_in
        scope_str = payload.get("scope") or ""
        scopes = [s for s in scope_str.replace(",", " ").split() if s]
        if not scopes:
            scopes = list(previous.scopes) if previous else list(self.scopes)

        refresh_token = payload.get("refresh_token")
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token

        return TokenSet(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            expires_at=int(time.time()) + int(expires_in),
            scopes=scopes,
            token_type=payload.get("token_type", "Bearer"),
            extra=dict(previous.extra) if previous else {},
        )


class GitHubProvider(OAuthProvider):
    service_id = "github"
    auth_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    default_scopes = ("repo", "read:user", "user:email")
    # OAuth app tokens do not expire and carry no expires_in.
    default_expires_in = 365 * 24 * 3600


class GoogleProvider(OAuthProvider):
    service_id = "google"
    auth_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    userinfo_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    default_scopes = (
        "https://www.googleapis.com/auth/gmail.modify",
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/userinfo.email",
    )

    def _extra_auth_params(self) -> dict[str, str]:
        # offline + consent so Google always returns a refresh token
        return {"access_type": "offline", "prompt": "consent"}

    async def fetch_profile(self, tokens: TokenSet) -> dict[str, Any]:
        response = await self.executor.request(
            "GET",
            self.userinfo_url,
            headers={"Authorization": f"Bearer {tokens.access_token}"},
            context="google userinfo",
        )
        data = decode_json(response, "google userinfo", default={})
        if not isinstance(data, dict):
            raise PermanentError("google userinfo: expected a JSON object")
        return {"email": data.get("email", ""), "verified_email": data.get("verified_email")}


PROVIDERS: dict[str, type[OAuthProvider]] = {
    GitHubProvider.service_id: GitHubProvider,
    GoogleProvider.service_id: GoogleProvider,
}


def create_provider(
    service: str,
    client_id: str,
    client_secret: str,
    executor: RequestExecutor | None = None,
) -> OAuthProvider:
    provider_cls = PROVIDERS.get(service)
    if provider_cls is None:
        raise ValueError(f"Unknown OAuth provider: {service}")
    return provider_cls(client_id, client_secret, executor=executor)
