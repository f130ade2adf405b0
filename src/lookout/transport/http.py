"""HTTP transport - POSTs envelopes to the ingestion endpoint."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

import httpx
from pydantic import ValidationError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_any,
)

from ..config import ClientConfig
from ..dsn import Dsn
from ..envelope import Envelope, EnvelopeItem
from ..errors import (
    ConfigError,
    EncodeError,
    LookoutError,
    NetworkError,
    RateLimitedError,
    RequestFailure,
    TransportError,
)
from ..events import DataCategory, DiscardReason
from ..governance.rate_limiter import (
    DEFAULT_RETRY_AFTER_SECONDS,
    RateLimiter,
    parse_retry_after,
)
from ..models import IngestResponse
from ..reports.aggregator import ClientReportAggregator
from ..version import CLIENT_NAME
from .result import SendResult, SendStatus


logger = logging.getLogger(__name__)

RATE_LIMITS_HEADER = "X-Sentry-Rate-Limits"
RETRY_AFTER_HEADER = "Retry-After"
ERROR_HEADER = "X-Sentry-Error"

ENVELOPE_CONTENT_TYPE = "application/x-sentry-envelope"

DEADLINE_MESSAGE = "Deadline elapsed before the envelope could be sent"


def _is_transient(error: BaseException) -> bool:
    """Network errors and 5xx responses are worth another attempt."""
    if isinstance(error, RequestFailure):
        return error.status >= 500
    return isinstance(error, NetworkError)


@dataclass
class HttpTransport:
    """
    Sends envelopes with rate limiting, retries and discard accounting.

    For each envelope:
    1. Items whose category is currently rate limited are dropped
       (`rate_limiting` discards); nothing left means no request at all.
    2. The rest is POSTed; rate-limit headers are applied from every
       response, including successful ones.
    3. A rate-limit signal (429, `Retry-After`, `X-Sentry-Rate-Limits`)
       stops retrying and counts the items as `rate_limiting` discards.
    4. Network errors and 5xx responses are retried after each delay of
       `retry_backoff`, up to `max_attempts`; then `network_error` discards.

    `send` never raises; failures come back as a `SendResult`.
    """
    dsn: Dsn
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    reports: ClientReportAggregator | None = None

    # Retry configuration
    retry_backoff: Sequence[float] = (1.0, 2.0, 4.0, 8.0)
    max_attempts: int | None = None
    timeout: float = 5.0

    legacy_store: bool = False

    # Injectable for tests
    client: httpx.Client | None = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    # Internal state
    _owns_client: bool = field(default=False, init=False)
    _stats: dict = field(default_factory=dict, init=False)
    _stats_lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self):
        if self.attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.attempts > len(self.retry_backoff) + 1:
            raise ConfigError(
                f"max_attempts={self.attempts} needs {self.attempts - 1} backoff delays, "
                f"retry_backoff has {len(self.retry_backoff)}"
            )
        if self.client is None:
            self.client = httpx.Client(timeout=self.timeout)
            self._owns_client = True
        self._stats = {
            "sent": 0,
            "failed": 0,
            "rate_limited": 0,
            "skipped": 0,
            "retries": 0,
        }

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        rate_limiter: RateLimiter | None = None,
        reports: ClientReportAggregator | None = None,
        **kwargs,
    ) -> HttpTransport:
        """Build a transport from client configuration (requires a DSN)."""
        return cls(
            dsn=Dsn.parse(config.dsn),
            rate_limiter=rate_limiter or RateLimiter(),
            reports=reports,
            retry_backoff=tuple(config.transport.retry_backoff),
            max_attempts=config.transport.attempts,
            timeout=config.transport.timeout,
            legacy_store=config.transport.legacy_store,
            **kwargs,
        )

    @property
    def attempts(self) -> int:
        if self.max_attempts is not None:
            return self.max_attempts
        return len(self.retry_backoff) + 1

    def send(self, envelope: Envelope, deadline: float | None = None) -> SendResult:
        """
        Deliver an envelope.

        Args:
            envelope: The envelope to send
            deadline: Optional `clock()` instant after which no attempt
                (or backoff sleep) is started
        """
        kept, limited = self._partition(envelope)
        if limited:
            self._record(DiscardReason.RATE_LIMITING, limited)
        if not kept:
            self._count("skipped")
            logger.debug(f"Envelope {envelope.event_id} dropped: all items rate limited")
            return SendResult(SendStatus.SKIPPED, event_id=envelope.event_id, reason="rate_limited")

        try:
            url, body, headers = self._build_request(envelope.with_items(kept))
        except EncodeError as e:
            logger.warning(f"Unable to encode envelope {envelope.event_id}: {e}")
            self._count("failed")
            return SendResult(SendStatus.FAILED, event_id=envelope.event_id, error=e)

        if deadline is not None and self.clock() >= deadline:
            return self._fail(envelope, kept, 0, NetworkError(DEADLINE_MESSAGE))

        attempts = 0
        try:
            for attempt in Retrying(
                stop=stop_any(stop_after_attempt(self.attempts), self._stop_at(deadline)),
                wait=self._wait,
                retry=retry_if_exception(_is_transient),
                before_sleep=self._before_retry,
                sleep=self.sleep,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return self._attempt(envelope, kept, url, body, headers, attempts, deadline)
        except TransportError as e:
            return self._fail(envelope, kept, attempts, e)

        # Retrying always returns or raises
        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def close(self) -> None:
        if self._owns_client and self.client is not None:
            self.client.close()

    def _attempt(
        self,
        envelope: Envelope,
        kept: list[EnvelopeItem],
        url: str,
        body: bytes,
        headers: dict[str, str],
        attempts: int,
        deadline: float | None,
    ) -> SendResult:
        """
        One POST. Returns the final result or raises a transient error.

        Raises:
            NetworkError: connection failure, or the deadline has passed
            RequestFailure: 5xx response
        """
        timeout = self.timeout
        if deadline is not None:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise NetworkError(DEADLINE_MESSAGE)
            timeout = min(timeout, remaining)

        try:
            response = self.client.post(url, content=body, headers=headers, timeout=timeout)
        except httpx.HTTPError as e:
            raise NetworkError(f"{type(e).__name__}: {e}") from e
        except Exception as e:
            logger.debug("Unexpected error from HTTP client", exc_info=True)
            raise NetworkError(f"Unexpected {type(e).__name__}: {e}") from e

        rate_limited = self._update_rate_limits(response)

        if response.is_success:
            self._count("sent")
            return SendResult(
                SendStatus.SENT,
                event_id=self._response_id(response, envelope),
                attempts=attempts,
            )

        if rate_limited:
            error = RateLimitedError(
                f"Rate limited by ingestion endpoint (status {response.status_code})",
                categories=tuple(item.category for item in kept),
            )
            self._record(DiscardReason.RATE_LIMITING, kept)
            self._count("rate_limited")
            logger.warning(f"Envelope {envelope.event_id} rejected: {error}")
            return SendResult(
                SendStatus.FAILED, event_id=envelope.event_id, attempts=attempts, error=error
            )

        failure = RequestFailure(
            response.status_code,
            body=response.text,
            error_header=response.headers.get(ERROR_HEADER),
        )
        if response.status_code >= 500:
            raise failure

        # Definitive rejection, retrying would not help
        return self._fail(envelope, kept, attempts, failure)

    def _wait(self, retry_state: RetryCallState) -> float:
        """Backoff before the next attempt: the schedule entry for this retry."""
        index = retry_state.attempt_number - 1
        # Also evaluated after the final attempt, when no sleep follows
        if index >= len(self.retry_backoff):
            return 0.0
        return self.retry_backoff[index]

    def _stop_at(self, deadline: float | None) -> Callable[[RetryCallState], bool]:
        """Stop condition: the next backoff sleep would end at or past the deadline."""
        def stop(retry_state: RetryCallState) -> bool:
            return deadline is not None and self.clock() + self._wait(retry_state) >= deadline
        return stop

    def _before_retry(self, retry_state: RetryCallState) -> None:
        self._count("retries")
        logger.debug(
            f"Retrying envelope in {retry_state.next_action.sleep}s "
            f"(attempt {retry_state.attempt_number} failed: {retry_state.outcome.exception()})"
        )

    def _partition(self, envelope: Envelope) -> tuple[list[EnvelopeItem], list[EnvelopeItem]]:
        kept: list[EnvelopeItem] = []
        limited: list[EnvelopeItem] = []
        for item in envelope.items:
            if self.rate_limiter.is_limited(item.category):
                limited.append(item)
            else:
                kept.append(item)
        return kept, limited

    def _build_request(self, envelope: Envelope) -> tuple[str, bytes, dict[str, str]]:
        headers = {
            "User-Agent": CLIENT_NAME,
            "X-Sentry-Auth": self.dsn.auth_header(CLIENT_NAME),
        }

        if self.legacy_store and len(envelope.items) == 1 and envelope.items[0].type == "event":
            headers["Content-Type"] = "application/json"
            return self.dsn.store_url, envelope.items[0].payload, headers

        headers["Content-Type"] = ENVELOPE_CONTENT_TYPE
        return self.dsn.envelope_url, envelope.encode(), headers

    def _update_rate_limits(self, response: httpx.Response) -> bool:
        """Apply rate-limit headers. Returns True if the response carried a rate-limit signal."""
        rate_limits = response.headers.get(RATE_LIMITS_HEADER)
        if rate_limits:
            self.rate_limiter.update_from_header(rate_limits)
            return True

        retry_after = response.headers.get(RETRY_AFTER_HEADER)
        if retry_after is not None:
            self.rate_limiter.update_global(parse_retry_after(retry_after))
            return True

        if response.status_code == 429:
            self.rate_limiter.update_global(DEFAULT_RETRY_AFTER_SECONDS)
            return True

        return False

    def _response_id(self, response: httpx.Response, envelope: Envelope) -> str | None:
        """Server-assigned ID from the response body, else the client-generated one."""
        try:
            server_id = IngestResponse.model_validate_json(response.content).id
        except (ValidationError, ValueError):
            logger.debug(f"Unparseable ingestion response body: {response.text[:200]!r}")
            server_id = None
        return server_id or envelope.event_id

    def _fail(
        self,
        envelope: Envelope,
        items: list[EnvelopeItem],
        attempts: int,
        error: LookoutError,
    ) -> SendResult:
        self._record(DiscardReason.NETWORK_ERROR, items)
        self._count("failed")
        logger.warning(f"Failed to send envelope {envelope.event_id} after {attempts} attempt(s): {error}")
        return SendResult(SendStatus.FAILED, event_id=envelope.event_id, attempts=attempts, error=error)

    def _record(self, reason: DiscardReason, items: list[EnvelopeItem]) -> None:
        """Count discarded items. Client reports are never counted themselves."""
        if self.reports is None:
            return
        categories = [
            item.category
            for item in items if item.category != DataCategory.INTERNAL.value
            for _ in range(item.quantity)
        ]
        if categories:
            self.reports.record_discarded(reason, categories)

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            stats = dict(self._stats)
        return {
            **stats,
            "endpoint": self.dsn.envelope_url,
            "rate_limits": self.rate_limiter.stats["active_limits"],
        }
