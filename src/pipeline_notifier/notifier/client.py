"""Delivery client for the resolved Slack target.

The client serializes messages for the bot API or an incoming webhook,
spaces send attempts with a global rate limiter and retries transient
failures with exponential backoff. ``deliver`` never raises: every
outcome ends in a log line and a boolean.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import TYPE_CHECKING, Any

import httpx

from pipeline_notifier.notifier.composer import MAX_MESSAGE_BYTES, fit_message
from pipeline_notifier.notifier.errors import FatalFailure, RetryableFailure
from pipeline_notifier.notifier.models import DeliveryAttempt, Message, payload_size
from pipeline_notifier.notifier.targets import BotTarget, DeliveryTarget

if TYPE_CHECKING:
    from pipeline_notifier.config import NotificationConfig

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_RATE_LIMIT_PER_SECOND = 1.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_MAX_RETRY_DELAY = 10.0
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 5.0
MAX_RETRY_AFTER = 60.0

# Bot API error codes worth retrying; any other code is permanent
RETRYABLE_API_ERRORS = frozenset(
    {
        "rate_limited",
        "ratelimited",
        "internal_error",
        "fatal_error",
        "service_unavailable",
        "request_timeout",
    }
)


class RateLimiter:
    """Enforces a minimum interval between requests."""

    def __init__(self, max_requests_per_second: float = DEFAULT_RATE_LIMIT_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        """Minimum spacing between requests in seconds."""
        return self._min_interval

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            if self._last_request_time is not None:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self._min_interval:
                    wait_time = self._min_interval - elapsed
                    logger.debug("Rate limit hit, waiting %.2fs", wait_time)
                    await asyncio.sleep(wait_time)
            self._last_request_time = time.monotonic()


class ErrorLog:
    """Logs each distinct error message at most once per process.

    A permanently broken target makes every event fail the same way;
    only the first occurrence is logged.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def log(self, level: int, message: str) -> bool:
        """Log a message unless it was logged before.

        Returns:
            True if the message was logged.
        """
        with self._lock:
            if message in self._seen:
                return False
            self._seen.add(message)
        logger.log(level, message)
        return True


class DeliveryClient:
    """Sends messages to the resolved delivery target.

    Safe to call concurrently: the rate limiter and the error log are
    the only shared mutable state and both are lock-protected.
    """

    def __init__(
        self,
        target: DeliveryTarget,
        *,
        username: str | None = None,
        icon_emoji: str | None = None,
        rate_limit_per_second: float = DEFAULT_RATE_LIMIT_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        dry_run: bool = False,
    ) -> None:
        """Initialize the delivery client.

        Args:
            target: The resolved bot or webhook target.
            username: Optional display name override.
            icon_emoji: Optional icon override (e.g. ``:rocket:``).
            rate_limit_per_second: Maximum send attempts per second.
            max_retries: Retries after the first attempt.
            retry_delay: Base delay between retries (exponential backoff).
            max_retry_delay: Cap of the computed backoff delay.
            connect_timeout: HTTP connect timeout in seconds.
            read_timeout: HTTP read timeout in seconds.
            dry_run: Log payloads instead of sending them.
        """
        self.target = target
        self.username = username
        self.icon_emoji = icon_emoji
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self.dry_run = dry_run

        self._rate_limiter = RateLimiter(rate_limit_per_second)
        self._errors = ErrorLog()

    @classmethod
    def from_config(
        cls,
        target: DeliveryTarget,
        config: NotificationConfig,
        *,
        dry_run: bool = False,
    ) -> DeliveryClient:
        """Create a client tuned by the notification configuration."""
        delivery = config.delivery
        return cls(
            target,
            username=config.username,
            icon_emoji=config.icon_emoji,
            rate_limit_per_second=delivery.rate_limit_per_second,
            max_retries=delivery.max_retries,
            retry_delay=delivery.retry_delay,
            max_retry_delay=delivery.max_retry_delay,
            connect_timeout=delivery.connect_timeout,
            read_timeout=delivery.read_timeout,
            dry_run=dry_run,
        )

    @property
    def name(self) -> str:
        """Short name of the target variant."""
        return "bot" if isinstance(self.target, BotTarget) else "webhook"

    def build_payload(self, message: Message) -> dict[str, Any]:
        """Serialize a message into the JSON body for the target.

        The message is trimmed until the complete body, target metadata
        included, fits the API size limit.
        """
        message = fit_message(
            message, lambda m: payload_size(self._serialize(m)), MAX_MESSAGE_BYTES
        )
        return self._serialize(message)

    def _serialize(self, message: Message) -> dict[str, Any]:
        payload = message.to_payload()

        if self.username:
            payload["username"] = self.username
        if self.icon_emoji:
            payload["icon_emoji"] = self.icon_emoji
        if isinstance(self.target, BotTarget):
            payload["channel"] = self.target.destination
        return payload

    def _headers(self) -> dict[str, str]:
        """Build request headers for the target."""
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if isinstance(self.target, BotTarget):
            headers["Authorization"] = f"Bearer {self.target.token}"
        return headers

    async def deliver(self, message: Message) -> bool:
        """Deliver a message, retrying transient failures.

        Args:
            message: Composed message to send.

        Returns:
            True if the message was delivered, False otherwise. Never raises.
        """
        try:
            return await self._deliver(message)
        except Exception as e:
            self._errors.log(logging.ERROR, f"Unexpected error delivering notification: {e}")
            return False

    async def _deliver(self, message: Message) -> bool:
        payload = self.build_payload(message)

        if self.dry_run:
            logger.info("Dry run, notification not sent: %s", json.dumps(payload))
            return True

        attempt = DeliveryAttempt(message=message)
        while True:
            try:
                await self._rate_limiter.acquire()
                await self._send(payload)
            except FatalFailure as e:
                self._errors.log(logging.ERROR, f"Notification delivery via {self.name} failed: {e}")
                return False
            except RetryableFailure as e:
                if attempt.attempt_number > self.max_retries:
                    self._errors.log(
                        logging.WARNING,
                        f"Notification delivery via {self.name} failed after "
                        f"{attempt.attempt_number} attempts: {e}",
                    )
                    return False
                attempt.next_delay = self._compute_delay(attempt.attempt_number, e.retry_after)
                logger.debug(
                    "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                    attempt.attempt_number,
                    self.max_retries + 1,
                    e,
                    attempt.next_delay,
                )
                await self._sleep(attempt.next_delay)
                attempt.attempt_number += 1
            else:
                logger.info(
                    "Notification delivered via %s (attempt %d)",
                    self.name,
                    attempt.attempt_number,
                )
                return True

    async def _send(self, payload: dict[str, Any]) -> None:
        """Make one HTTP attempt and classify its outcome.

        Raises:
            RetryableFailure: On timeouts, connection errors, 429 and 5xx.
            FatalFailure: On any other error response.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.target.endpoint,
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.TimeoutException as e:
            raise RetryableFailure(f"request timed out ({type(e).__name__})") from e
        except httpx.TransportError as e:
            raise RetryableFailure(f"connection error ({type(e).__name__}: {e})") from e

        self._classify(response)

    def _classify(self, response: httpx.Response) -> None:
        """Raise the failure matching an HTTP response, if any."""
        status = response.status_code
        if status == 429 or status >= 500:
            raise RetryableFailure(f"HTTP {status}", retry_after=_parse_retry_after(response))
        if not 200 <= status < 300:
            raise FatalFailure(f"HTTP {status}: {response.text[:200]}")

        if not isinstance(self.target, BotTarget):
            return

        try:
            body = response.json()
        except ValueError as e:
            raise FatalFailure("malformed API response") from e
        if not isinstance(body, dict):
            raise FatalFailure("malformed API response")
        if body.get("ok") is True:
            return

        error = str(body.get("error") or "unknown_error")
        if error in RETRYABLE_API_ERRORS:
            raise RetryableFailure(f"API error: {error}", retry_after=_parse_retry_after(response))
        raise FatalFailure(f"API error: {error}")

    def _compute_delay(self, attempt_number: int, retry_after: float | None) -> float:
        """Get the delay before the next attempt."""
        if retry_after is not None:
            return min(retry_after, MAX_RETRY_AFTER)
        return min(self.retry_delay * (2 ** (attempt_number - 1)), self.max_retry_delay)

    async def _sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


def _parse_retry_after(response: httpx.Response) -> float | None:
    """Read the Retry-After header in seconds, if present."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
