"""
Tests for rate limit detection.
"""

import pytest

from evm_toolkit.utils.rate_limit_utils import is_rate_limit_error


@pytest.mark.parametrize("message", [
    "429 Client Error: Too Many Requests for url: https://polygon-rpc.com",
    "Max rate limit reached",
    "Max calls per sec rate limit reached (5/sec)",
    "Explorer returned 429: slow down",
    "HTTP 429",
    "status code: 429",
    "request throttled by provider",
])
def test_throttling_messages_are_detected(message):
    assert is_rate_limit_error(message)


@pytest.mark.parametrize("message", [
    "Receipt wait failed: Transaction 0x" + "ab" * 30 + "a429 reverted in block 54290001",
    "Transaction 0x4290000000000000000000000000000000000000000000000000000000000001 not mined after 120s",
    "Broadcast failed: nonce too low",
    "execution reverted: ERC20: transfer amount exceeds balance",
])
def test_hashes_and_block_numbers_are_not_rate_limits(message):
    assert not is_rate_limit_error(message)


def test_accepts_exceptions():
    assert is_rate_limit_error(ConnectionError("Too Many Requests"))
    assert not is_rate_limit_error(ValueError("boom"))
