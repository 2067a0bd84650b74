# Operation dispatcher - async work off the caller's thread, results by polling.
# Created: 2026-09-10
#
# The caller (GUI timer or CLI loop) never blocks: request() checks the
# resource's guard, schedules the work on the runtime thread's event
# loop and returns at once. The result arrives as a Message on a named
# channel which the caller drains with try_recv().
#
# Ordering: messages on one channel are FIFO. The guard for a resource
# is released before that operation's Message is posted, so a caller
# that sees the Message can immediately start the next operation.

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import queue
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from myme.dispatch.cancel import CancellationToken
from myme.dispatch.guard import OperationGuard
from myme.errors import OperationCancelled, user_message_for

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[CancellationToken | None], Awaitable[Any]]

DEFAULT_WORKERS = 4
SHUTDOWN_TIMEOUT = 5.0


class Outcome(str, Enum):
    OK = "ok"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class Message:
    """Result of one dispatched operation."""

    channel: str
    kind: str
    outcome: Outcome
    resource: str
    target: str | None = None
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def user_message(self) -> str | None:
        if self.outcome is Outcome.CANCELLED:
            return user_message_for(OperationCancelled())
        if self.error is not None:
            return user_message_for(self.error)
        return None


class Dispatcher:
    """Owns the runtime thread, the per-resource guards and the channels.

    Usage::

        dispatcher = Dispatcher()
        dispatcher.start()
        dispatcher.request("repos", "repos", "refresh", work)
        ...
        msg = dispatcher.try_recv("repos")   # from a UI timer
        ...
        dispatcher.shutdown()
    """

    def __init__(self, max_workers: int = DEFAULT_WORKERS, name: str = "myme-runtime"):
        self._name = name
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=f"{name}-worker"
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._closed = False

        self._guards: dict[str, OperationGuard] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._channels: dict[str, queue.SimpleQueue[Message]] = {}
        self._inflight: set[concurrent.futures.Future] = set()
        self._periodic: dict[str, concurrent.futures.Future] = {}

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("Dispatcher has been shut down")
            if self._thread is not None:
                return
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(target=self._run_loop, name=self._name, daemon=True)
            self._thread.start()
        self._ready.wait()
        logger.debug("Dispatcher runtime started")

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("Dispatcher runtime is not started")
        return self._loop

    def _run_loop(self) -> None:
        loop = self._require_loop()
        asyncio.set_event_loop(loop)
        loop.set_default_executor(self._executor)
        self._ready.set()
        self._loop.run_forever()

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._closed

    def __enter__(self) -> Dispatcher:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def open_channel(self, channel: str) -> None:
        with self._lock:
            if not self._closed:
                self._channels.setdefault(channel, queue.SimpleQueue())

    def try_recv(self, channel: str) -> Message | None:
        """Next Message on *channel*, or None. Never blocks."""
        with self._lock:
            q = self._channels.get(channel)
        if q is None:
            return None
        try:
            return q.get_nowait()
        except queue.Empty:
            return None

    def _post(self, message: Message) -> None:
        with self._lock:
            q = self._channels.get(message.channel)
        if q is None:
            logger.debug("Dropping %s result: channel %s closed", message.kind, message.channel)
            return
        q.put(message)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def is_busy(self, resource: str) -> bool:
        with self._lock:
            guard = self._guards.get(resource)
            return guard is not None and not guard.is_idle

    def request(
        self,
        channel: str,
        resource: str,
        kind: str,
        work: Work,
        *,
        target: str | None = None,
        cancellable: bool = False,
    ) -> bool:
        """Start *work* for *resource* unless it is already busy.

        Returns True when the work was scheduled; its Message will appear
        on *channel*. Returns False, and schedules nothing, when the
        resource is busy or the dispatcher is shut down.
        """
        if self._thread is None and not self._closed:
            self.start()

        with self._lock:
            if self._closed:
                return False
            guard = self._guards.setdefault(resource, OperationGuard())
            if not guard.start(kind, target):
                logger.debug("Rejected %s on %s: busy with %r", kind, resource, guard)
                return False
            token = CancellationToken() if cancellable else None
            if token is not None:
                self._tokens[resource] = token
            self._channels.setdefault(channel, queue.SimpleQueue())

        future = asyncio.run_coroutine_threadsafe(
            self._run(channel, resource, kind, target, work, token), self._require_loop()
        )
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)
        return True

    def _forget(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def _release(self, resource: str) -> None:
        with self._lock:
            guard = self._guards.get(resource)
            if guard is not None:
                guard.on_done()
            self._tokens.pop(resource, None)

    async def _run(
        self,
        channel: str,
        resource: str,
        kind: str,
        target: str | None,
        work: Work,
        token: CancellationToken | None,
    ) -> None:
        message = Message(
            channel=channel, kind=kind, outcome=Outcome.OK, resource=resource, target=target
        )
        try:
            message.value = await work(token)
        except OperationCancelled:
            message.outcome = Outcome.CANCELLED
            logger.info("%s on %s cancelled", kind, resource)
        except asyncio.CancelledError:
            self._release(resource)
            raise
        except Exception as e:
            message.outcome = Outcome.ERROR
            message.error = e
            logger.warning("%s on %s failed: %s", kind, resource, e)

        self._release(resource)
        self._post(message)

    def cancel(self, resource: str) -> bool:
        """Trigger the cancellation token of *resource*'s running operation."""
        with self._lock:
            token = self._tokens.get(resource)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancellation requested for %s", resource)
        return True

    async def run_blocking(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking callable in the worker pool. Call from work only."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def schedule_periodic(
        self,
        name: str,
        interval: float,
        factory: Callable[[], Any],
    ) -> bool:
        """Call *factory* every *interval* seconds (awaiting it if async)."""
        if self._thread is None and not self._closed:
            self.start()
        with self._lock:
            if self._closed or name in self._periodic:
                return False
            self._periodic[name] = asyncio.run_coroutine_threadsafe(
                self._tick(name, interval, factory), self._require_loop()
            )
        logger.debug("Scheduled %s every %.1fs", name, interval)
        return True

    def cancel_periodic(self, name: str) -> bool:
        with self._lock:
            future = self._periodic.pop(name, None)
        if future is None:
            return False
        future.cancel()
        return True

    async def _tick(self, name: str, interval: float, factory: Callable[[], Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                result = factory()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Periodic task %s failed", name, exc_info=True)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Close channels, cancel live operations and stop the runtime.

        Results of operations still running are dropped. Safe to call twice.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._channels.clear()
            tokens = list(self._tokens.values())
            periodic = list(self._periodic.values())
            self._periodic.clear()
            inflight = list(self._inflight)

        for token in tokens:
            token.cancel()
        for future in periodic:
            future.cancel()

        if self._loop is not None and self._thread is not None:
            if inflight:
                _, pending = concurrent.futures.wait(inflight, timeout=timeout)
                for future in pending:
                    future.cancel()
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout)
            if not self._thread.is_alive():
                self._loop.close()
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("Dispatcher shut down")
