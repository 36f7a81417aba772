"""
Tests for the retry executor.
"""

import pytest
from loguru import logger

from evm_toolkit.utils.retry import RetryExecutor, RetryExhausted, RetryPolicy, is_retryable_error


def fast_policy(max_attempts=3):
    return RetryPolicy(max_attempts=max_attempts, base_delay=0, max_delay=0)


async def test_returns_first_success_without_retry():
    calls = []

    async def operation():
        calls.append(1)
        return "ok"

    result = await RetryExecutor(fast_policy()).execute_with_retry(operation, "single")

    assert result == "ok"
    assert len(calls) == 1


async def test_retries_until_success():
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("connection reset")
        return 42

    result = await RetryExecutor(fast_policy()).execute_with_retry(operation)

    assert result == 42
    assert len(calls) == 3


async def test_exhaustion_carries_last_error_and_attempt_count():
    calls = []

    async def operation():
        calls.append(1)
        raise ValueError(f"bad input {len(calls)}")

    with pytest.raises(RetryExhausted) as exc_info:
        await RetryExecutor(fast_policy(max_attempts=4)).execute_with_retry(operation, "lookup")

    error = exc_info.value
    assert len(calls) == 4
    assert error.attempt == 4
    assert error.max_attempts == 4
    assert error.context == "lookup"
    assert str(error.original_error) == "bad input 4"


async def test_non_transient_errors_are_still_retried():
    calls = []

    async def operation():
        calls.append(1)
        raise RuntimeError("execution reverted")

    assert not is_retryable_error(RuntimeError("execution reverted"))

    with pytest.raises(RetryExhausted):
        await RetryExecutor(fast_policy(max_attempts=2)).execute_with_retry(operation)

    assert len(calls) == 2


async def test_error_text_with_braces_is_logged_safely():
    async def operation():
        raise RuntimeError("{'code': -32000, 'message': 'nonce too low'}")

    with pytest.raises(RetryExhausted):
        await RetryExecutor(fast_policy(max_attempts=2)).execute_with_retry(operation)


def test_delay_grows_exponentially_and_is_capped():
    executor = RetryExecutor(RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=5.0, backoff_multiplier=2.0))

    assert executor.calculate_delay(1) == 1.0
    assert executor.calculate_delay(2) == 2.0
    assert executor.calculate_delay(3) == 4.0
    assert executor.calculate_delay(4) == 5.0


@pytest.mark.parametrize("message", [
    "Request timed out",
    "429 Too Many Requests",
    "Max rate limit reached",
    "502 Bad Gateway",
    "Connection aborted",
])
def test_transient_errors_are_classified(message):
    assert is_retryable_error(Exception(message))


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=-1)
    with pytest.raises(ValueError):
        RetryPolicy(backoff_multiplier=0.5)


async def test_every_failed_attempt_logs_a_warning():
    levels = []
    handler_id = logger.add(lambda message: levels.append(message.record["level"].name), level="DEBUG")

    async def operation():
        raise ConnectionError("connection reset")

    try:
        with pytest.raises(RetryExhausted):
            await RetryExecutor(fast_policy(max_attempts=3)).execute_with_retry(operation, "lookup")
    finally:
        logger.remove(handler_id)

    assert levels.count("WARNING") == 3
    assert levels.count("ERROR") == 1
