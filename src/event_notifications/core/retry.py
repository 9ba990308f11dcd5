"""Retry execution with exponential backoff and jitter.

The delay before attempt ``n + 1`` is::

    min(initial_delay * backoff_factor ** (n - 1) * (1 + jitter), max_delay)

with ``jitter`` drawn uniformly from ``[0, policy.jitter]``. Waiting between
attempts suspends only the calling task.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Final, Self

from event_notifications.types.aliases import NotificationOperation, RetryOperation
from event_notifications.types.models import DeliveryStatus, NotificationResult, utc_now
from event_notifications.utils.logging import log_with_context
from event_notifications.utils.sanitization import sanitize_exception

if TYPE_CHECKING:
    from event_notifications.config.models import RetryPolicyConfig

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({408, 429, 500, 502, 503, 504})

_RETRYABLE_MESSAGE_MARKERS: Final[tuple[str, ...]] = (
    "econnreset",
    "econnrefused",
    "enotfound",
    "timeout",
    "timed out",
    "socket hang up",
    "network error",
    "connection reset",
    "connection refused",
    "rate limit",
    "throttled",
    "quota exceeded",
    "too many requests",
    "service unavailable",
)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Backoff parameters; all durations in seconds."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.1

    @classmethod
    def from_config(cls, config: RetryPolicyConfig) -> Self:
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay,
            backoff_factor=config.backoff_factor,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )


DEFAULT_RETRY_POLICY: Final[RetryPolicy] = RetryPolicy()


class DeliveryError(Exception):
    """A channel provider failed to deliver.

    Carries the failed :class:`NotificationResult`. Raised only inside the
    retry executor and router; callers always receive the result as data.
    """

    def __init__(self, result: NotificationResult) -> None:
        super().__init__(result.error or f"Delivery to channel '{result.channel}' failed")
        self.result: NotificationResult = result


def compute_delay(
    attempt: int,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    jitter_sample: float | None = None,
) -> float:
    """Return the delay in seconds to wait after failed attempt ``attempt``.

    Args:
        attempt: 1-based number of the attempt that just failed
        policy: Backoff parameters
        jitter_sample: Jitter fraction to apply; drawn from ``[0, policy.jitter]`` when omitted

    Examples:
        >>> compute_delay(1, RetryPolicy(), jitter_sample=0.0)
        1.0
        >>> compute_delay(3, RetryPolicy(), jitter_sample=0.0)
        4.0
        >>> compute_delay(10, RetryPolicy(), jitter_sample=0.1)
        30.0
    """
    if attempt < 1:
        msg = f"attempt must be >= 1, got {attempt}"
        raise ValueError(msg)

    if jitter_sample is None:
        jitter_sample = random.uniform(0.0, policy.jitter)

    # Exponent is capped so huge attempt numbers cannot overflow a float
    exponent = min(attempt - 1, 1024)
    try:
        base = policy.initial_delay * policy.backoff_factor**exponent
    except OverflowError:
        return policy.max_delay
    return min(base * (1.0 + jitter_sample), policy.max_delay)


def calculate_total_delay(max_attempts: int, policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> float:
    """Return the total backoff, without jitter, spent across ``max_attempts`` attempts."""
    return sum(compute_delay(attempt, policy, jitter_sample=0.0) for attempt in range(1, max_attempts))


def validate_retry_policy(policy: RetryPolicy) -> list[str]:
    """Return human readable problems with ``policy``; empty when valid."""
    errors: list[str] = []
    if not 1 <= policy.max_attempts <= 10:
        errors.append("max_attempts must be between 1 and 10")
    if not 0.1 <= policy.initial_delay <= 60.0:
        errors.append("initial_delay must be between 0.1s and 60s")
    if not 1.0 <= policy.backoff_factor <= 5.0:
        errors.append("backoff_factor must be between 1 and 5")
    if not 1.0 <= policy.max_delay <= 300.0:
        errors.append("max_delay must be between 1s and 5m")
    if not 0.0 <= policy.jitter <= 1.0:
        errors.append("jitter must be between 0 and 1")
    if policy.initial_delay > policy.max_delay:
        errors.append("initial_delay cannot be greater than max_delay")
    return errors


def is_retryable_error(error: BaseException | str | None) -> bool:
    """Classify an error as transient.

    Timeouts, connection failures, HTTP 408/429/5xx responses and explicit
    rate limit signals are retryable. The executor does not consult this
    function itself; callers decide whether to skip retrying.

    Examples:
        >>> is_retryable_error(TimeoutError())
        True
        >>> is_retryable_error(ValueError("invalid recipient"))
        False
        >>> is_retryable_error("HTTP 503 Service Unavailable")
        True
    """
    if error is None:
        return False

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    if isinstance(error, BaseException):
        status: object = getattr(error, "status", None) or getattr(error, "status_code", None)
        if isinstance(status, int) and status in RETRYABLE_STATUS_CODES:
            return True
        text = str(error)
    else:
        text = error

    lowered = text.lower()
    if any(marker in lowered for marker in _RETRYABLE_MESSAGE_MARKERS):
        return True
    return any(str(code) in lowered.split() for code in RETRYABLE_STATUS_CODES)


type Sleeper = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """Runs async operations up to a bounded number of attempts.

    Args:
        policy: Default backoff policy
        sleep: Coroutine used to wait between attempts (injectable for tests)
        rng: Random source for jitter (injectable for tests)
    """

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        *,
        sleep: Sleeper = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy: RetryPolicy = policy
        self._sleep: Sleeper = sleep
        self._rng: random.Random = rng or random.Random()

    def _delay(self, attempt: int, policy: RetryPolicy) -> float:
        return compute_delay(attempt, policy, jitter_sample=self._rng.uniform(0.0, policy.jitter))

    async def execute[T](
        self,
        operation: RetryOperation[T],
        max_attempts: int | None = None,
        policy: RetryPolicy | None = None,
    ) -> T:
        """Run ``operation`` until it returns, raising the last error once attempts run out."""
        effective = policy or self.policy
        attempts = max(1, max_attempts if max_attempts is not None else effective.max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if attempt >= attempts:
                    log_with_context(
                        logger,
                        logging.WARNING,
                        "Operation failed after all attempts",
                        extra={"attempts": attempts, "error": sanitize_exception(exc)},
                    )
                    raise
                delay = self._delay(attempt, effective)
                log_with_context(
                    logger,
                    logging.INFO,
                    "Attempt failed, retrying",
                    extra={
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "delay_seconds": round(delay, 3),
                        "error": sanitize_exception(exc),
                    },
                )
                await self._sleep(delay)

        msg = "unreachable: retry loop exited without a result"
        raise AssertionError(msg)

    async def execute_with_result(
        self,
        operation: NotificationOperation,
        max_attempts: int | None = None,
        policy: RetryPolicy | None = None,
        *,
        channel: str,
        provider: str,
    ) -> NotificationResult:
        """Run a delivery operation, retrying on exceptions and on non-``sent`` results.

        ``operation`` receives the 1-based attempt number. The returned result
        carries the number of attempts made. When every attempt fails, the last
        observed result is returned tagged ``failed`` instead of raising.
        """
        effective = policy or self.policy
        attempts = max(1, max_attempts if max_attempts is not None else effective.max_attempts)
        last: NotificationResult | None = None

        for attempt in range(1, attempts + 1):
            try:
                result = await operation(attempt)
                if result.status is not DeliveryStatus.SENT:
                    raise DeliveryError(result)
            except DeliveryError as exc:
                last = exc.result
            except Exception as exc:
                last = NotificationResult(
                    channel=channel,
                    provider=provider,
                    status=DeliveryStatus.FAILED,
                    error=sanitize_exception(exc),
                    metadata={"retryable": is_retryable_error(exc)},
                )
            else:
                result.attempts = attempt
                result.next_retry_at = None
                return result

            last.attempts = attempt
            if attempt >= attempts:
                break

            delay = self._delay(attempt, effective)
            last.status = DeliveryStatus.RETRYING
            last.next_retry_at = utc_now() + timedelta(seconds=delay)
            log_with_context(
                logger,
                logging.INFO,
                "Channel delivery failed, retrying",
                extra={
                    "channel": channel,
                    "provider": provider,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "delay_seconds": round(delay, 3),
                    "error": last.error,
                },
            )
            await self._sleep(delay)

        assert last is not None
        last.status = DeliveryStatus.FAILED
        last.next_retry_at = None
        log_with_context(
            logger,
            logging.WARNING,
            "Channel delivery failed after all attempts",
            extra={"channel": channel, "provider": provider, "attempts": attempts, "error": last.error},
        )
        return last
