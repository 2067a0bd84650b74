# OAuth token manager - valid-token access, refresh policy, sign-out.
# Created: 2026-09-06
#
# Tokens are refreshed when within REFRESH_MARGIN of expiry. A request
# that still comes back 401 forces one refresh and is retried once.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from myme.auth.providers import PROVIDERS, OAuthProvider
from myme.auth.token_store import TokenSet, TokenStore
from myme.errors import AuthFailure, ConfigError, MymeError
from myme.net.retry import RequestExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OAuthManager:
    """Hands out valid access tokens for configured providers."""

    def __init__(self, store: TokenStore, providers: dict[str, OAuthProvider]):
        self.store = store
        self.providers = providers
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        store: TokenStore | None = None,
        executor: RequestExecutor | None = None,
    ) -> OAuthManager:
        providers = {}
        for service, provider_cls in PROVIDERS.items():
            client_id, client_secret = settings.oauth_client(service)
            providers[service] = provider_cls(client_id, client_secret, executor=executor)
        return cls(store or TokenStore(), providers)

    def provider(self, service: str) -> OAuthProvider:
        """Return the provider for *service*; raises ConfigError if unusable."""
        provider = self.providers.get(service)
        if provider is None:
            raise ConfigError(f"Unknown service: {service}")
        if not provider.configured:
            raise ConfigError(f"OAuth client id/secret not configured for {service}")
        return provider

    def is_authenticated(self, service: str) -> bool:
        return self.store.has(service)

    async def has_tokens(self, service: str) -> bool:
        """Like is_authenticated, with the file check off the event loop."""
        return await asyncio.to_thread(self.store.has, service)

    def _lock(self, service: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(service)
        if lock is None:
            lock = self._refresh_locks[service] = asyncio.Lock()
        return lock

    async def refresh(self, service: str, tokens: TokenSet | None = None) -> TokenSet:
        """Refresh and persist the token set for *service*."""
        async with self._lock(service):
            current = await asyncio.to_thread(self.store.retrieve, service)
            # Another caller refreshed while we waited for the lock.
            if tokens is not None and current.access_token != tokens.access_token:
                return current
            refreshed = await self.provider(service).refresh(current)
            await asyncio.to_thread(self.store.store, service, refreshed)
            return refreshed

    async def get_valid_token(self, service: str) -> str:
        """Return an access token, refreshing it first if it is close to expiry.

        Raises TokenNotFound when the user never signed in, and AuthFailure
        when the token is expired and cannot be refreshed.
        """
        tokens = await asyncio.to_thread(self.store.retrieve, service)
        if not tokens.needs_refresh():
            return tokens.access_token

        try:
            tokens = await self.refresh(service, tokens)
        except MymeError as e:
            if tokens.is_expired():
                raise AuthFailure(f"Token for {service} expired and refresh failed: {e}") from e
            logger.warning("Token refresh failed for %s, using current token: %s", service, e)
        return tokens.access_token

    async def call_with_token(
        self,
        service: str,
        fn: Callable[[str], Awaitable[T]],
    ) -> T:
        """Run ``fn(access_token)``; on a 401 refresh once and retry once."""
        token = await self.get_valid_token(service)
        try:
            return await fn(token)
        except AuthFailure as e:
            if e.status != 401:
                raise
            logger.info("Got 401 from %s, refreshing token and retrying once", service)

        current = await asyncio.to_thread(self.store.retrieve, service)
        refreshed = await self.refresh(service, current)
        return await fn(refreshed.access_token)

    def sign_out(self, service: str) -> None:
        self.store.delete(service)
        logger.info("Signed out of %s", service)
