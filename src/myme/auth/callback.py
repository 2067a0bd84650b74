# OAuth callback listener - one-shot local HTTP server for the redirect.
# Created: 2026-09-05
#
# Binds 127.0.0.1 on the preferred port or the next free one in range,
# serves GET /callback with a static page and hands (code, state, error)
# back to the flow engine through a future. The browser always gets a
# 200; success or failure travels on the future only.

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse

from myme.errors import AuthFailure, PortInUseError

logger = logging.getLogger(__name__)

CALLBACK_HOST = "127.0.0.1"
CALLBACK_PATH = "/callback"

_CALLBACK_PAGE = (
    "<!DOCTYPE html><html><head><title>MyMe</title></head><body>"
    "<h3>Authorization received. You can close this window and return to MyMe.</h3>"
    "<script>window.close()</script>"
    "</body></html>"
)


@dataclass
class CallbackResult:
    """Query parameters captured from the provider redirect."""

    code: str | None = None
    state: str | None = None
    error: str | None = None


def bind_callback_socket(preferred_port: int, port_range: int = 10) -> socket.socket:
    """Bind a loopback socket on the preferred port or the next free one.

    Tries preferred_port first, then increments up to *port_range* ports.
    The returned socket is bound but not listening.
    """
    last_port = preferred_port + port_range - 1
    for port in range(preferred_port, last_port + 1):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((CALLBACK_HOST, port))
        except OSError:
            sock.close()
            continue
        if port != preferred_port:
            logger.info("Port %d busy, using port %d for OAuth callback", preferred_port, port)
        return sock
    raise PortInUseError(preferred_port, last_port)


def create_callback_app(on_result: Callable[[CallbackResult], None]) -> FastAPI:
    """FastAPI app with the single redirect route."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(CALLBACK_PATH, response_class=HTMLResponse)
    async def oauth_callback(
        code: str = Query(""),
        state: str = Query(""),
        error: str = Query(""),
    ):
        on_result(CallbackResult(code=code or None, state=state or None, error=error or None))
        return HTMLResponse(_CALLBACK_PAGE)

    return app


class CallbackListener:
    """One-shot callback server. Use ``start()``, ``wait()``, then ``close()``.

    The first request to /callback resolves the result; later requests
    still get the page but are ignored.
    """

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self.port: int = sock.getsockname()[1]
        self._future: asyncio.Future[CallbackResult] | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @classmethod
    def bind(cls, preferred_port: int, port_range: int = 10) -> CallbackListener:
        return cls(bind_callback_socket(preferred_port, port_range))

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.port}{CALLBACK_PATH}"

    def _on_result(self, result: CallbackResult) -> None:
        if self._future is not None and not self._future.done():
            self._future.set_result(result)
        else:
            logger.debug("Ignoring extra OAuth callback on port %d", self.port)

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        config = uvicorn.Config(
            create_callback_app(self._on_result),
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[self._sock]))
        logger.info("OAuth callback listener on %s:%d", CALLBACK_HOST, self.port)

    async def wait(self, timeout: float) -> CallbackResult:
        """Wait for the redirect. Raises AuthFailure on timeout."""
        if self._future is None:
            raise RuntimeError("Listener not started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError as e:
            raise AuthFailure(f"OAuth callback timed out after {timeout:.0f}s") from e

    async def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None
        self._sock.close()
        if self._future is not None and not self._future.done():
            self._future.cancel()
