"""
Retry utilities for outbound calls.

Wraps a single asynchronous operation with bounded retries and exponential
backoff. Error classification is advisory: it is logged with every failed
attempt, but every failure is retried up to the attempt cap.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

T = TypeVar("T")


# Signatures of transient failures (network, throttling, upstream 5xx)
RETRYABLE_PATTERNS = [
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"timed out", re.IGNORECASE),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"connection", re.IGNORECASE),
    re.compile(r"rate.?limit", re.IGNORECASE),
    re.compile(r"too.?many.?requests", re.IGNORECASE),
    re.compile(r"service.?unavailable", re.IGNORECASE),
    re.compile(r"bad.?gateway", re.IGNORECASE),
    re.compile(r"gateway.?timeout", re.IGNORECASE),
    re.compile(r"internal.?server.?error", re.IGNORECASE),
    re.compile(r"\b(429|50[0-4])\b"),
]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration shared by all operations of one client."""
    max_attempts: int = 3
    base_delay: float = 1.0   # seconds
    max_delay: float = 10.0   # seconds
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        """Validate retry configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")


class RetryExhausted(Exception):
    """Raised when an operation failed on every allowed attempt."""

    def __init__(
        self,
        original_error: BaseException,
        attempt: int,
        max_attempts: int,
        context: Optional[str] = None
    ):
        self.original_error = original_error
        self.attempt = attempt
        self.max_attempts = max_attempts
        self.context = context

        label = f" ({context})" if context else ""
        super().__init__(f"Failed after {max_attempts} attempts{label}: {original_error}")


def is_retryable_error(error: BaseException) -> bool:
    """
    Check whether an error looks transient.

    Args:
        error: The exception raised by an attempt

    Returns:
        True if the error text matches a known transient-failure signature
    """
    message = str(error) or type(error).__name__
    return any(pattern.search(message) for pattern in RETRYABLE_PATTERNS)


class RetryExecutor:
    """Executes async operations with exponential backoff."""

    def __init__(self, policy: Optional[RetryPolicy] = None):
        self.policy = policy or RetryPolicy()

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds to wait after the given failed attempt."""
        delay = self.policy.base_delay * (self.policy.backoff_multiplier ** (attempt - 1))
        return min(delay, self.policy.max_delay)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[str] = None
    ) -> T:
        """
        Run an operation, retrying failures with exponential backoff.

        Args:
            operation: Zero-argument callable returning an awaitable
            context: Label used in logs and in the exhaustion error

        Returns:
            The operation's result

        Raises:
            RetryExhausted: If every attempt failed
        """
        max_attempts = self.policy.max_attempts
        label = f" ({context})" if context else ""

        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()

            except Exception as e:
                final = attempt >= max_attempts
                delay = 0.0 if final else self.calculate_delay(attempt)
                retryable = is_retryable_error(e)
                next_step = "no attempts left" if final else f"retrying in {delay:.2f}s"

                # bind() keeps the error text out of str.format
                logger.bind(
                    attempt=attempt,
                    context=context,
                    delay=delay,
                    retryable=retryable
                ).warning(
                    f"Attempt {attempt}/{max_attempts} failed{label}, "
                    f"{next_step} ({'transient' if retryable else 'non-transient'}): {e}"
                )

                if final:
                    logger.bind(context=context).error(f"Giving up after {attempt} attempts{label}: {e}")
                    raise RetryExhausted(e, attempt, max_attempts, context) from e

                await asyncio.sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without a result")
