# OAuth2 flow engine - browser authorization-code flow with CSRF + PKCE.
# Created: 2026-09-06
#
# START -> AWAITING_CALLBACK -> EXCHANGING -> COMPLETE, FAILED from any
# state. The authorization code is only exchanged after the returned
# state matches the CSRF token generated at START.

from __future__ import annotations

import asyncio
import hmac
import logging
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from myme.auth.callback import CallbackListener
from myme.auth.providers import OAuthProvider, generate_csrf_token, generate_pkce_pair
from myme.auth.token_store import TokenSet, TokenStore
from myme.errors import AuthFailure, CsrfMismatch, MymeError

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_TIMEOUT = 300.0


class FlowState(str, Enum):
    START = "start"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class OAuthSession:
    """Ephemeral state of one in-progress authorization."""

    service: str
    csrf_token: str
    pkce_verifier: str | None = None
    redirect_port: int = 0
    state: FlowState = FlowState.START

    def __repr__(self) -> str:
        return (
            f"OAuthSession(service={self.service!r}, port={self.redirect_port}, "
            f"state={self.state.value})"
        )


class OAuthFlow:
    """Runs one interactive authorization for a provider and stores the result."""

    def __init__(
        self,
        provider: OAuthProvider,
        store: TokenStore,
        *,
        callback_port: int = 8080,
        port_range: int = 10,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        open_browser: Callable[[str], bool] = webbrowser.open,
        listener_factory: Callable[[int, int], CallbackListener] = CallbackListener.bind,
    ):
        self.provider = provider
        self.store = store
        self.callback_port = callback_port
        self.port_range = port_range
        self.timeout = timeout
        self._open_browser = open_browser
        self._listener_factory = listener_factory
        self.session: OAuthSession | None = None

    def _transition(self, session: OAuthSession, state: FlowState) -> None:
        logger.debug("OAuth %s: %s -> %s", session.service, session.state.value, state.value)
        session.state = state

    async def run(self) -> TokenSet:
        """Run the flow to completion. Raises AuthFailure (or a subclass) on failure."""
        service = self.provider.service_id
        verifier, challenge = generate_pkce_pair() if self.provider.supports_pkce else (None, None)
        session = self.session = OAuthSession(
            service=service,
            csrf_token=generate_csrf_token(),
            pkce_verifier=verifier,
        )
        try:
            return await self._run(session, challenge)
        except MymeError:
            self._transition(session, FlowState.FAILED)
            raise
        except Exception as e:
            self._transition(session, FlowState.FAILED)
            raise AuthFailure(f"OAuth flow for {service} failed: {e}") from e

    async def _run(self, session: OAuthSession, challenge: str | None) -> TokenSet:

        listener = self._listener_factory(self.callback_port, self.port_range)
        session.redirect_port = listener.port
        redirect_uri = listener.redirect_uri
        try:
            await listener.start()
            auth_url = self.provider.authorization_url(session.csrf_token, redirect_uri, challenge)
            self._transition(session, FlowState.AWAITING_CALLBACK)
            logger.info("Opening browser for %s authorization", session.service)
            if not self._open_browser(auth_url):
                logger.warning("Could not open a browser. Visit this URL to continue: %s", auth_url)
            result = await listener.wait(self.timeout)
        finally:
            await listener.close()

        if result.error:
            raise AuthFailure(f"Authorization denied by {session.service}: {result.error}")
        if not result.state or not hmac.compare_digest(result.state, session.csrf_token):
            logger.warning(
                "OAuth state mismatch for %s; discarding authorization code", session.service
            )
            raise CsrfMismatch()
        if not result.code:
            raise AuthFailure(f"No authorization code returned by {session.service}")

        self._transition(session, FlowState.EXCHANGING)
        tokens = await self.provider.exchange(result.code, redirect_uri, session.pkce_verifier)

        try:
            profile = await self.provider.fetch_profile(tokens)
        except MymeError as e:
            logger.warning("Could not fetch %s profile: %s", session.service, e)
        else:
            tokens.extra.update({k: v for k, v in profile.items() if v is not None})

        await asyncio.to_thread(self.store.store, session.service, tokens)
        self._transition(session, FlowState.COMPLETE)
        logger.info("OAuth flow complete for %s", session.service)
        return tokens
