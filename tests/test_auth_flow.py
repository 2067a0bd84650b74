# Tests for auth/callback.py and auth/flow.py - redirect listener and flow engine.
# Created: 2026-09-06

import asyncio
import socket
import threading
import time
import urllib.parse

import httpx
import pytest
from fastapi.testclient import TestClient

from myme.auth.callback import (
    CallbackListener,
    CallbackResult,
    bind_callback_socket,
    create_callback_app,
)
from myme.auth.flow import FlowState, OAuthFlow, OAuthSession
from myme.auth.providers import GitHubProvider, GoogleProvider
from myme.errors import AuthFailure, CsrfMismatch, PortInUseError, TransientError

# ---------------------------------------------------------------------------
# Callback app
# ---------------------------------------------------------------------------


class TestCallbackApp:
    def test_captures_code_and_state(self):
        results = []
        client = TestClient(create_callback_app(results.append))
        resp = client.get("/callback", params={"code": "abc", "state": "xyz"})
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert results == [CallbackResult(code="abc", state="xyz", error=None)]

    def test_error_still_returns_200(self):
        results = []
        client = TestClient(create_callback_app(results.append))
        resp = client.get("/callback", params={"error": "access_denied", "state": "xyz"})
        assert resp.status_code == 200
        assert results[0].error == "access_denied"
        assert results[0].code is None

    def test_page_does_not_echo_parameters(self):
        client = TestClient(create_callback_app(lambda r: None))
        resp = client.get("/callback", params={"code": "secret-code", "state": "s"})
        assert "secret-code" not in resp.text

    def test_no_docs_routes(self):
        client = TestClient(create_callback_app(lambda r: None))
        assert client.get("/docs").status_code == 404
        assert client.get("/openapi.json").status_code == 404


# ---------------------------------------------------------------------------
# Port selection
# ---------------------------------------------------------------------------


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestBindCallbackSocket:
    def test_binds_preferred_port(self):
        port = _free_port()
        sock = bind_callback_socket(port, 3)
        try:
            assert sock.getsockname() == ("127.0.0.1", port)
        finally:
            sock.close()

    def test_skips_busy_port(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        busy = blocker.getsockname()[1]
        try:
            try:
                sock = bind_callback_socket(busy, 10)
            except PortInUseError:
                pytest.skip("no free port next to the blocker")
            try:
                assert sock.getsockname()[1] != busy
                assert busy < sock.getsockname()[1] < busy + 10
            finally:
                sock.close()
        finally:
            blocker.close()

    def test_all_busy_raises(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        busy = blocker.getsockname()[1]
        try:
            with pytest.raises(PortInUseError) as info:
                bind_callback_socket(busy, 1)
            assert info.value.first_port == busy
            assert info.value.last_port == busy
            assert "port" in info.value.user_message().lower()
        finally:
            blocker.close()


class TestCallbackListener:
    async def test_real_redirect_resolves_result(self):
        listener = CallbackListener.bind(_free_port(), 5)
        assert listener.redirect_uri == f"http://localhost:{listener.port}/callback"
        await listener.start()
        try:
            url = f"http://127.0.0.1:{listener.port}/callback"
            async with httpx.AsyncClient() as client:
                for _ in range(50):
                    try:
                        resp = await client.get(url, params={"code": "c1", "state": "s1"})
                        break
                    except httpx.ConnectError:
                        await asyncio.sleep(0.05)
                else:
                    pytest.fail("callback server never came up")
            assert resp.status_code == 200
            result = await listener.wait(5)
            assert result.code == "c1"
            assert result.state == "s1"
        finally:
            await listener.close()

    async def test_wait_times_out(self):
        listener = CallbackListener.bind(_free_port(), 5)
        await listener.start()
        try:
            with pytest.raises(AuthFailure, match="timed out"):
                await listener.wait(0.05)
        finally:
            await listener.close()


# ---------------------------------------------------------------------------
# Flow engine
# ---------------------------------------------------------------------------


class FakeListener:
    """Stands in for CallbackListener; replies with whatever *respond* builds."""

    def __init__(self, respond, port=8080):
        self.port = port
        self.respond = respond
        self.auth_url = None
        self.started = False
        self.closed = False

    @property
    def redirect_uri(self):
        return f"http://localhost:{self.port}/callback"

    async def start(self):
        self.started = True

    async def wait(self, timeout):
        state = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(self.auth_url).query))["state"]
        result = self.respond(state)
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self):
        self.closed = True


def _token_handler(exchanges):
    def handler(request):
        if request.url.path.endswith("userinfo"):
            return httpx.Response(200, json={"email": "me@example.com"})
        exchanges.append(dict(urllib.parse.parse_qsl(request.content.decode())))
        return httpx.Response(
            200, json={"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600}
        )

    return handler


def _flow(provider, token_store, respond):
    listener = FakeListener(respond)

    def open_browser(url):
        listener.auth_url = url
        return True

    flow = OAuthFlow(
        provider,
        token_store,
        timeout=1,
        open_browser=open_browser,
        listener_factory=lambda port, port_range: listener,
    )
    return flow, listener


class TestOAuthFlow:
    async def test_success_stores_tokens_and_email(self, token_store, make_executor):
        exchanges = []
        provider = GoogleProvider("id", "secret", executor=make_executor(_token_handler(exchanges)))
        flow, listener = _flow(
            provider, token_store, lambda state: CallbackResult(code="the-code", state=state)
        )

        tokens = await flow.run()

        assert tokens.access_token == "at-1"
        assert flow.session.state is FlowState.COMPLETE
        assert flow.session.redirect_port == 8080
        assert listener.started and listener.closed
        stored = token_store.retrieve("google")
        assert stored.refresh_token == "rt-1"
        assert stored.extra["email"] == "me@example.com"
        assert exchanges[0]["code"] == "the-code"
        assert exchanges[0]["code_verifier"] == flow.session.pkce_verifier
        assert exchanges[0]["redirect_uri"] == "http://localhost:8080/callback"

    async def test_auth_url_carries_state_and_challenge(self, token_store, make_executor):
        provider = GitHubProvider("id", "secret", executor=make_executor(_token_handler([])))
        flow, listener = _flow(
            provider, token_store, lambda state: CallbackResult(code="c", state=state)
        )
        await flow.run()
        params = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(listener.auth_url).query))
        assert params["state"] == flow.session.csrf_token
        assert params["code_challenge_method"] == "S256"
        assert params["redirect_uri"] == "http://localhost:8080/callback"

    async def test_state_mismatch_never_exchanges(self, token_store, make_executor):
        exchanges = []
        provider = GitHubProvider("id", "secret", executor=make_executor(_token_handler(exchanges)))
        flow, listener = _flow(
            provider, token_store, lambda state: CallbackResult(code="c", state="forged")
        )

        with pytest.raises(CsrfMismatch):
            await flow.run()
        assert exchanges == []
        assert flow.session.state is FlowState.FAILED
        assert token_store.has("github") is False
        assert listener.closed

    async def test_missing_state_is_mismatch(self, token_store, make_executor):
        provider = GitHubProvider("id", "secret", executor=make_executor(_token_handler([])))
        flow, _ = _flow(provider, token_store, lambda state: CallbackResult(code="c"))
        with pytest.raises(CsrfMismatch):
            await flow.run()

    async def test_denied_consent(self, token_store, make_executor):
        exchanges = []
        provider = GitHubProvider("id", "secret", executor=make_executor(_token_handler(exchanges)))
        flow, _ = _flow(
            provider,
            token_store,
            lambda state: CallbackResult(error="access_denied", state=state),
        )
        with pytest.raises(AuthFailure, match="access_denied"):
            await flow.run()
        assert exchanges == []
        assert flow.session.state is FlowState.FAILED

    async def test_missing_code(self, token_store, make_executor):
        provider = GitHubProvider("id", "secret", executor=make_executor(_token_handler([])))
        flow, _ = _flow(provider, token_store, lambda state: CallbackResult(state=state))
        with pytest.raises(AuthFailure, match="No authorization code"):
            await flow.run()

    async def test_timeout_fails_and_closes(self, token_store, make_executor):
        provider = GitHubProvider("id", "secret", executor=make_executor(_token_handler([])))
        flow, listener = _flow(
            provider, token_store, lambda state: AuthFailure("OAuth callback timed out after 1s")
        )
        with pytest.raises(AuthFailure, match="timed out"):
            await flow.run()
        assert listener.closed
        assert flow.session.state is FlowState.FAILED

    async def test_exchange_failure_is_not_wrapped(self, token_store, make_executor):
        def handler(request):
            return httpx.Response(503)

        provider = GitHubProvider("id", "secret", executor=make_executor(handler, max_retries=0))
        flow, _ = _flow(provider, token_store, lambda state: CallbackResult(code="c", state=state))
        with pytest.raises(TransientError):
            await flow.run()
        assert flow.session.state is FlowState.FAILED

    async def test_profile_failure_is_not_fatal(self, token_store, make_executor):
        def handler(request):
            if request.url.path.endswith("userinfo"):
                return httpx.Response(500)
            return httpx.Response(200, json={"access_token": "at", "expires_in": 60})

        provider = GoogleProvider("id", "secret", executor=make_executor(handler, max_retries=0))
        flow, _ = _flow(provider, token_store, lambda state: CallbackResult(code="c", state=state))
        tokens = await flow.run()
        assert tokens.access_token == "at"
        assert "email" not in token_store.retrieve("google").extra
        assert token_store.retrieve("google").expires_at <= int(time.time()) + 60

    async def test_html_profile_page_is_not_fatal(self, token_store, make_executor):
        def handler(request):
            if request.url.path.endswith("userinfo"):
                return httpx.Response(
                    200, text="<html>sign in to wifi</html>", headers={"content-type": "text/html"}
                )
            return httpx.Response(200, json={"access_token": "at", "refresh_token": "rt"})

        provider = GoogleProvider("id", "secret", executor=make_executor(handler, max_retries=0))
        flow, _ = _flow(provider, token_store, lambda state: CallbackResult(code="c", state=state))
        tokens = await flow.run()

        assert flow.session.state is FlowState.COMPLETE
        stored = token_store.retrieve("google")
        assert stored.access_token == tokens.access_token == "at"
        assert stored.refresh_token == "rt"
        assert "email" not in stored.extra

    async def test_tokens_are_written_off_the_event_loop(
        self, token_store, make_executor, monkeypatch
    ):
        writers = []
        original_store = token_store.store

        def spy(service, tokens):
            writers.append(threading.current_thread())
            return original_store(service, tokens)

        monkeypatch.setattr(token_store, "store", spy)
        provider = GitHubProvider("id", "secret", executor=make_executor(_token_handler([])))
        flow, _ = _flow(provider, token_store, lambda state: CallbackResult(code="c", state=state))
        await flow.run()

        assert len(writers) == 1
        assert writers[0] is not threading.main_thread()

    async def test_unexpected_error_becomes_auth_failure(self, token_store):
        provider = GitHubProvider("id", "secret")

        def broken_factory(port, port_range):
            raise RuntimeError("socket exploded")

        flow = OAuthFlow(provider, token_store, listener_factory=broken_factory)
        with pytest.raises(AuthFailure, match="socket exploded"):
            await flow.run()
        assert flow.session.state is FlowState.FAILED

    def test_session_repr_hides_secrets(self):
        session = OAuthSession(service="github", csrf_token="csrf-secret", pkce_verifier="pkce")
        assert "csrf-secret" not in repr(session)
        assert "pkce" not in repr(session)
