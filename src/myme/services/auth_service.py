# Auth service - sign in / sign out for GitHub and Google through the dispatcher.
# Created: 2026-09-13
#
# One flow per service at a time (resource "auth:<service>"). Sign-in
# first tries to reuse or silently refresh stored credentials and only
# opens the browser when that fails.

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from myme.auth.flow import OAuthFlow
from myme.auth.token_store import TokenSet
from myme.dispatch.cancel import CancellationToken
from myme.errors import MymeError, TokenNotFound
from myme.services.base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    service: str
    interactive: bool
    email: str | None = None
    expires_at: int = 0


def _result(service: str, tokens: TokenSet, interactive: bool) -> AuthResult:
    return AuthResult(
        service=service,
        interactive=interactive,
        email=tokens.extra.get("email"),
        expires_at=tokens.expires_at,
    )


class AuthService(BaseService):
    channel = "auth"

    @staticmethod
    def resource(service: str) -> str:
        return f"auth:{service}"

    def authenticate(self, service: str, force: bool = False) -> bool:
        """Sign in to *service*. With *force*, always run the browser flow."""
        oauth = self.ctx.oauth

        async def work(_token: CancellationToken | None) -> AuthResult:
            provider = oauth.provider(service)

            if not force:
                silent = await self._try_silent(service)
                if silent is not None:
                    return _result(service, silent, interactive=False)

            settings = self.ctx.settings
            flow = OAuthFlow(
                provider,
                oauth.store,
                callback_port=settings.oauth_callback_port,
                port_range=settings.oauth_port_range,
                timeout=settings.oauth_callback_timeout,
                open_browser=self.ctx.open_browser,
                listener_factory=self.ctx.listener_factory,
            )
            tokens = await flow.run()
            return _result(service, tokens, interactive=True)

        return self._request(self.resource(service), "authenticate", work, target=service)

    async def _try_silent(self, service: str) -> TokenSet | None:
        oauth = self.ctx.oauth
        try:
            tokens = await asyncio.to_thread(oauth.store.retrieve, service)
        except TokenNotFound:
            return None
        if not tokens.needs_refresh():
            logger.info("Stored %s credentials are still valid", service)
            return tokens
        try:
            return await oauth.refresh(service, tokens)
        except MymeError as e:
            logger.info("Silent refresh for %s failed, falling back to browser: %s", service, e)
            return None

    def sign_out(self, service: str) -> bool:
        async def work(_token: CancellationToken | None) -> str:
            await self.ctx.dispatcher.run_blocking(self.ctx.oauth.sign_out, service)
            return service

        return self._request(self.resource(service), "sign_out", work, target=service)

    def status(self) -> dict[str, dict[str, Any]]:
        """Sign-in state per known service, read straight from the token store."""
        now = time.time()
        out: dict[str, dict[str, Any]] = {}
        for service, provider in self.ctx.oauth.providers.items():
            info: dict[str, Any] = {
                "configured": provider.configured,
                "authenticated": False,
                "busy": self.is_busy(self.resource(service)),
            }
            try:
                tokens = self.ctx.oauth.store.retrieve(service)
            except TokenNotFound:
                out[service] = info
                continue
            info.update(
                authenticated=True,
                expired=tokens.is_expired(now),
                needs_refresh=tokens.needs_refresh(now),
                expires_at=tokens.expires_at,
                email=tokens.extra.get("email"),
            )
            out[service] = info
        return out
