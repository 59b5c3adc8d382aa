"""Bounded retry with a per-attempt timeout for outbound HTTP calls.

Shared by the token exchange and the health-data fetchers.  Attempts run
strictly one after another; each is wrapped in :func:`asyncio.wait_for`
so an attempt that exceeds ``timeout`` is cancelled mid-flight.  Only
transport failures are retried: any HTTP response, whatever its status,
is handed back to the caller untouched.
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)
from tenacity.wait import wait_base

from healthbot.config import Settings, get_settings
from healthbot.errors import TransportError, TransportErrorKind

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_RETRYABLE = (httpx.TransportError, asyncio.TimeoutError, OSError)

_DNS_MARKERS = ("getaddrinfo", "name or service not known", "nodename nor servname", "enotfound", "name resolution")
_REFUSED_MARKERS = ("econnrefused", "connection refused")
_TIMEOUT_MARKERS = ("etimedout", "timed out", "timeout")


def _chain(exc: BaseException) -> list[BaseException]:
    """The exception followed by its causes / contexts."""
    seen: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in seen:
        seen.append(current)
        current = current.__cause__ or current.__context__
    return seen


def classify_transport_error(exc: BaseException) -> TransportErrorKind:
    """Map a low-level failure to a user-facing transport error kind."""
    chain = _chain(exc)

    for err in chain:
        if isinstance(err, (asyncio.TimeoutError, httpx.TimeoutException, socket.timeout)):
            return TransportErrorKind.TIMEOUT
        if isinstance(err, socket.gaierror):
            return TransportErrorKind.DNS
        if isinstance(err, ConnectionRefusedError):
            return TransportErrorKind.CONNECTION_REFUSED

    text = " ".join(str(err) for err in chain).lower()
    if any(marker in text for marker in _DNS_MARKERS):
        return TransportErrorKind.DNS
    if any(marker in text for marker in _REFUSED_MARKERS):
        return TransportErrorKind.CONNECTION_REFUSED
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return TransportErrorKind.TIMEOUT
    return TransportErrorKind.NETWORK


@dataclass
class RetryPolicy:
    """Retry parameters; ``sleep`` is injectable so tests can record backoff."""

    max_attempts: int = 3
    timeout: float = 15.0
    backoff_seconds: float = 1.0
    backoff: Literal["exponential", "fixed"] = "exponential"
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, timeout: float | None = None) -> RetryPolicy:
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.oauth_max_attempts,
            timeout=timeout if timeout is not None else settings.oauth_request_timeout,
            backoff_seconds=settings.oauth_backoff_seconds,
            backoff=settings.oauth_backoff,
        )

    def wait_strategy(self) -> wait_base:
        """Backoff after a failed attempt (1s, 2s, 4s… by default)."""
        if self.backoff == "fixed":
            return wait_fixed(self.backoff_seconds)
        return wait_exponential(multiplier=self.backoff_seconds)

    async def run(self, fn: Callable[[], Awaitable[T]], *, operation: str = "request") -> T:
        """Call *fn* until it returns, retrying transport failures.

        Raises
        ------
        TransportError
            Classified failure once every attempt has failed.
        """
        attempts = max(1, self.max_attempts)

        def _log_failure(state: RetryCallState) -> None:
            logger.warning(
                "retry.attempt_failed",
                operation=operation,
                attempt=state.attempt_number,
                max_attempts=attempts,
                error=repr(state.outcome.exception()),
            )

        async def _attempt() -> T:
            return await asyncio.wait_for(fn(), timeout=self.timeout)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=self.wait_strategy(),
            retry=retry_if_exception_type(_RETRYABLE),
            sleep=self.sleep,
            after=_log_failure,
        )
        try:
            return await retrying(_attempt)
        except RetryError as exc:
            last_exc = exc.last_attempt.exception()
            kind = classify_transport_error(last_exc)
            logger.error("retry.exhausted", operation=operation, attempts=attempts, kind=kind.value)
            raise TransportError(kind, attempts=attempts) from last_exc
