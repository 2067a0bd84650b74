# Retry executor - failure classification + exponential backoff for HTTP calls.
# Created: 2026-09-04
#
# Retries transient failures only: timeouts, connection errors, 5xx, 429
# and 408. 4xx (including 401/403) is never retried here; a 401 is handled
# by the caller's refresh-then-retry-once policy (see auth.oauth).

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

import httpx

from myme.errors import (
    AuthFailure,
    MymeError,
    NotFoundError,
    PermanentError,
    TransientError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 0.1  # seconds
DEFAULT_MAX_DELAY = 5.0
DEFAULT_TIMEOUT = 15.0

_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


class RetryDecision(str, Enum):
    RETRY = "retry"
    NO_RETRY = "no_retry"


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy. Delays are in seconds."""

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def delay_for_attempt(self, attempt: int) -> float:
        """Delay for the 0-based retry index *attempt*, capped at max_delay."""
        return min(self.initial_delay * (2**attempt), self.max_delay)

    @classmethod
    def from_settings(cls, settings: Any) -> RetryConfig:
        return cls(
            max_retries=settings.retry_max_retries,
            initial_delay=settings.retry_initial_delay_ms / 1000,
            max_delay=settings.retry_max_delay_ms / 1000,
        )


def classify_status(status: int) -> RetryDecision:
    if status >= 500 or status in _RETRYABLE_CLIENT_STATUSES:
        return RetryDecision.RETRY
    return RetryDecision.NO_RETRY


def classify_exception(exc: BaseException) -> RetryDecision:
    # Transport failures (timeouts, refused or reset connections, a server
    # hanging up mid-response) are transient. Unsupported URLs and other
    # request-building errors are not.
    if isinstance(exc, httpx.UnsupportedProtocol):
        return RetryDecision.NO_RETRY
    if isinstance(exc, httpx.TransportError):
        return RetryDecision.RETRY
    if isinstance(exc, TransientError):
        return RetryDecision.RETRY
    return RetryDecision.NO_RETRY


def classify(outcome: httpx.Response | BaseException | int) -> RetryDecision:
    """Classify a response, a status code or a raised exception."""
    if isinstance(outcome, BaseException):
        return classify_exception(outcome)
    if isinstance(outcome, httpx.Response):
        return classify_status(outcome.status_code)
    return classify_status(outcome)


def retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP date)."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


async def with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    config: RetryConfig | None = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> httpx.Response:
    """Run *send* with retries.

    Makes up to ``max_retries + 1`` attempts and returns the last response,
    or re-raises the last exception once retries are exhausted.
    """
    config = config or RetryConfig()
    attempts = config.max_retries + 1
    response: httpx.Response | None = None
    last_exc: BaseException | None = None

    for attempt in range(attempts):
        if attempt > 0:
            delay = config.delay_for_attempt(attempt - 1)
            if response is not None:
                hinted = retry_after_seconds(response)
                if hinted is not None:
                    delay = max(delay, min(hinted, config.max_delay))
            logger.info("Retry attempt %d of %d in %.2fs", attempt, config.max_retries, delay)
            await sleep(delay)

        try:
            response = await send()
        except Exception as exc:
            if classify_exception(exc) is RetryDecision.NO_RETRY:
                logger.debug("Non-retryable error: %s", exc)
                raise
            logger.warning("Retryable error on attempt %d of %d: %s", attempt + 1, attempts, exc)
            last_exc = exc
            response = None
            continue

        last_exc = None
        status = response.status_code
        if classify_status(status) is RetryDecision.RETRY and attempt < config.max_retries:
            logger.warning(
                "Retryable status %d on attempt %d of %d", status, attempt + 1, attempts
            )
            continue
        if attempt > 0:
            logger.info("Request finished after %d retries (status %d)", attempt, status)
        return response

    logger.error("All %d attempts exhausted", attempts)
    if response is None:
        raise last_exc or RuntimeError("with_retry made no attempts")
    return response


def raise_for_outcome(response: httpx.Response, context: str = "") -> httpx.Response:
    """Map a final response onto the error taxonomy; return it if successful."""
    status = response.status_code
    if status < 400:
        return response

    prefix = f"{context}: " if context else ""
    detail = response.text[:200] if response.content else ""
    message = f"{prefix}HTTP {status} {detail}".rstrip()

    if status in (401, 403):
        raise AuthFailure(message, status=status)
    if classify_status(status) is RetryDecision.RETRY:
        raise TransientError(message, status=status)
    if status == 404:
        raise NotFoundError(message, status=status)
    raise PermanentError(message, status=status)


def error_from_exception(exc: BaseException, context: str = "") -> MymeError:
    """Wrap a transport-level exception into the taxonomy."""
    if isinstance(exc, MymeError):
        return exc
    prefix = f"{context}: " if context else ""
    message = f"{prefix}{exc.__class__.__name__}: {exc}"
    if classify_exception(exc) is RetryDecision.RETRY:
        return TransientError(message)
    return PermanentError(message)


def decode_json(response: httpx.Response, context: str = "", default: Any = None) -> Any:
    """Parse a response body as JSON; an empty body yields *default*.

    A body that is not JSON (a proxy or captive-portal page served with
    a 200) raises PermanentError.
    """
    if not response.content:
        return default
    try:
        return response.json()
    except ValueError as e:
        prefix = f"{context}: " if context else ""
        content_type = response.headers.get("content-type", "unknown")
        raise PermanentError(
            f"{prefix}malformed JSON in HTTP {response.status_code} response ({content_type})",
            status=response.status_code,
        ) from e


class RequestExecutor:
    """Sends HTTP requests with a fixed timeout and the retry policy.

    Args:
        config: Backoff policy.
        timeout: Per-request timeout in seconds, independent of backoff.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        sleep: Awaitable sleep used between attempts.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    async def request(
        self,
        method: str,
        url: str,
        *,
        check: bool = True,
        context: str = "",
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request. With *check*, failures raise taxonomy errors."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await with_retry(
                    lambda: client.request(method, url, **kwargs),
                    self.config,
                    sleep=self._sleep,
                )
            except httpx.HTTPError as exc:
                raise error_from_exception(exc, context or f"{method} {url}") from exc
            # Read the body while the client is still open.
            await response.aread()
        if check:
            raise_for_outcome(response, context or f"{method} {url}")
        return response
