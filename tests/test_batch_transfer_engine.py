"""
Tests for the batch transfer engine: preflight, nonce handling, retries,
dry run, rate limiting and aborts.
"""

import json
from decimal import Decimal

import pytest

from evm_toolkit.batch.batch_config import BatchPolicy
from evm_toolkit.batch.batch_transfer_engine import (
    BatchExecutionAborted,
    BatchTransferEngine,
    InsufficientBalanceError,
)
from evm_toolkit.batch.recipients import Recipient, RecipientValidationError
from evm_toolkit.batch.result_reporter import ReportAssembler
from evm_toolkit.batch.transfer_executor import DRY_RUN_TX_HASH, TransferStatus
from evm_toolkit.chain.token_gateway import GatewayError

from tests.fakes import ALICE, BOB, CAROL, FakeGateway


def live_policy(**overrides):
    values = {
        "max_retries": 2,
        "retry_delay": 0,
        "max_retry_delay": 0,
        "delay_between_transfers": 0,
        "delay_between_batches": 0,
        "rate_limit_cooldown": 0,
    }
    values.update(overrides)
    return BatchPolicy(**values)


def make_engine(gateway, tmp_path, **overrides):
    return BatchTransferEngine(gateway, live_policy(**overrides), ReportAssembler(str(tmp_path)))


def recipients(*pairs):
    return [Recipient(address=address, amount=amount) for address, amount in pairs]


async def test_successful_batch(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path)

    report = await engine.execute_batch(recipients((ALICE, "1.5"), (BOB, "2")))

    assert [s[1] for s in gateway.sent] == [1_500_000, 2_000_000]
    assert [s[2] for s in gateway.sent] == [7, 8]
    assert report.summary.successful == 2
    assert report.summary.failed == 0
    assert report.summary.total_amount_sent == "3.5"
    assert report.summary.token_symbol == "USDC"
    assert all(t.confirmed for t in report.transfers)
    # 45000 gas at 30 gwei, twice
    assert report.summary.total_gas_cost == "0.0027"


async def test_failed_transfer_does_not_consume_nonce(gateway, tmp_path):
    gateway.send_failures[BOB] = GatewayError("Broadcast failed: execution reverted")
    engine = make_engine(gateway, tmp_path)

    report = await engine.execute_batch(recipients((ALICE, "1"), (BOB, "1"), (CAROL, "1")))

    assert [t.status for t in report.transfers] == [TransferStatus.SUCCESS, TransferStatus.FAILED, TransferStatus.SUCCESS]
    assert [t.nonce for t in report.transfers] == [7, 8, 8]
    assert [(s[0], s[2]) for s in gateway.sent] == [(ALICE, 7), (CAROL, 8)]

    failed = report.transfers[1]
    assert failed.attempts == 2
    assert "execution reverted" in failed.error
    assert failed.tx_hash is None


async def test_transient_failure_is_retried(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path, max_retries=3)
    calls = []
    original = gateway.send_transfer

    async def flaky_send(to, amount_units, nonce, gas_limit, gas_price):
        calls.append(nonce)
        if len(calls) == 1:
            raise GatewayError("Broadcast failed: connection reset")
        return await original(to, amount_units, nonce, gas_limit, gas_price)

    gateway.send_transfer = flaky_send

    report = await engine.execute_batch(recipients((ALICE, "1")))

    assert calls == [7, 7]
    assert report.transfers[0].is_successful
    assert report.transfers[0].attempts == 2


async def test_nonce_is_read_once_per_batch(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path, batch_size=2)

    await engine.execute_batch(recipients((ALICE, "1"), (BOB, "1"), (CAROL, "1")))

    assert gateway.nonce_lookups == 2
    assert [s[2] for s in gateway.sent] == [7, 8, 9]


async def test_gas_limit_applies_multiplier(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path, gas_multiplier=1.5)
    limits = []
    original = gateway.send_transfer

    async def capture(to, amount_units, nonce, gas_limit, gas_price):
        limits.append(gas_limit)
        return await original(to, amount_units, nonce, gas_limit, gas_price)

    gateway.send_transfer = capture
    await engine.execute_batch(recipients((ALICE, "1")))

    assert limits == [75_000]


async def test_insufficient_token_balance_sends_nothing(tmp_path):
    gateway = FakeGateway(token_balance=1_000_000)
    engine = make_engine(gateway, tmp_path)

    with pytest.raises(InsufficientBalanceError, match="Insufficient token balance") as exc_info:
        await engine.execute_batch(recipients((ALICE, "1"), (BOB, "0.5")))

    assert gateway.sent == []
    assert gateway.nonce_lookups == 0
    assert exc_info.value.balance_check.required_token_units == 1_500_000


async def test_insufficient_native_balance_sends_nothing(tmp_path):
    # Two transfers need 2 * 60000 gas * 30 gwei = 0.0036 native
    gateway = FakeGateway(native_balance=3 * 10 ** 15)
    engine = make_engine(gateway, tmp_path)

    with pytest.raises(InsufficientBalanceError, match="native balance"):
        await engine.execute_batch(recipients((ALICE, "1"), (BOB, "1")))

    assert gateway.sent == []


async def test_gas_estimate_uses_fallback_price(tmp_path):
    gateway = FakeGateway(gas_price=None)
    engine = make_engine(gateway, tmp_path)

    estimate = await engine.estimate_gas_for_batch(recipients((ALICE, "1"), (BOB, "1")), 6)

    assert estimate.gas_price == 30 * 10 ** 9
    assert estimate.gas_limit == 60_000
    assert estimate.total_gas_limit == 120_000
    assert estimate.gas_cost_native == Decimal("0.0036")


async def test_validation_happens_before_chain_access(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path)

    with pytest.raises(RecipientValidationError):
        await engine.execute_batch(recipients((ALICE, "1"), (ALICE, "2")))
    with pytest.raises(RecipientValidationError):
        await engine.execute_batch([])

    assert gateway.sent == []
    assert gateway.nonce_lookups == 0


async def test_amount_finer_than_token_decimals_is_rejected(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path)

    with pytest.raises(RecipientValidationError, match="decimal places"):
        await engine.execute_batch(recipients((ALICE, "0.0000001")))

    assert gateway.sent == []


async def test_dry_run_broadcasts_nothing(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path, dry_run=True, delay_between_transfers=3.0, delay_between_batches=15.0)

    report = await engine.execute_batch(recipients((ALICE, "1"), (BOB, "2")))

    assert gateway.sent == []
    assert [t.tx_hash for t in report.transfers] == [DRY_RUN_TX_HASH, DRY_RUN_TX_HASH]
    assert [t.nonce for t in report.transfers] == [7, 8]
    assert report.summary.successful == 2
    assert report.metadata["dry_run"] is True
    assert report.summary.processing_time_ms < 3000


async def test_rate_limited_receipt_counts_as_unconfirmed_success(gateway, tmp_path):
    gateway.receipt_failures[ALICE] = GatewayError("Receipt wait failed: 429 Too Many Requests")
    engine = make_engine(gateway, tmp_path)
    pauses = []

    async def record_sleep(seconds, reason):
        pauses.append(reason)

    engine._sleep = record_sleep

    report = await engine.execute_batch(recipients((ALICE, "1"), (BOB, "1")))

    first = report.transfers[0]
    assert first.is_successful
    assert first.confirmed is False
    assert first.block_number is None
    assert first.tx_hash is not None
    assert first.attempts == 1
    assert len(gateway.sent) == 2
    assert report.summary.unconfirmed == 1
    assert "for rate limit cooldown" in pauses


async def test_non_rate_limit_receipt_error_fails_transfer(gateway, tmp_path):
    gateway.receipt_failures[ALICE] = GatewayError("Transaction 0xabc reverted in block 10")
    engine = make_engine(gateway, tmp_path, max_retries=1)

    report = await engine.execute_batch(recipients((ALICE, "1")))

    assert report.summary.failed == 1
    assert "reverted" in report.transfers[0].error


async def test_revert_with_429_in_hash_and_block_is_a_failure(gateway, tmp_path):
    tx_hash = "0x" + "ab" * 30 + "a429"
    gateway.receipt_failures[ALICE] = GatewayError(
        f"Receipt wait failed: Transaction {tx_hash} reverted in block 54290001"
    )
    engine = make_engine(gateway, tmp_path, max_retries=1, rate_limit_cooldown=60)
    pauses = []

    async def record_sleep(seconds, reason):
        pauses.append((seconds, reason))

    engine._sleep = record_sleep

    report = await engine.execute_batch(recipients((ALICE, "1"), (BOB, "1")))

    assert report.transfers[0].status == TransferStatus.FAILED
    assert report.summary.unconfirmed == 0
    assert (60, "for rate limit cooldown") not in pauses
    assert [r["address"] for r in _failed_entries(engine, report)] == [ALICE]


def _failed_entries(engine, report):
    path = engine.reporter.save_failed_transfers(report)
    with open(path) as f:
        return json.load(f)


async def test_rate_limited_failure_triggers_cooldown(gateway, tmp_path):
    gateway.send_failures[ALICE] = GatewayError("Broadcast failed: Too Many Requests")
    engine = make_engine(gateway, tmp_path, max_retries=1, rate_limit_cooldown=60)
    pauses = []

    async def record_sleep(seconds, reason):
        pauses.append((seconds, reason))

    engine._sleep = record_sleep

    await engine.execute_batch(recipients((ALICE, "1"), (BOB, "1")))

    assert (60, "for rate limit cooldown") in pauses


async def test_nonce_failure_aborts_with_partial_outcomes(gateway, tmp_path):
    engine = make_engine(gateway, tmp_path, batch_size=1)
    original = gateway.get_transaction_count

    async def failing_after_first(block_identifier="pending"):
        if gateway.nonce_lookups >= 1:
            gateway.nonce_lookups += 1
            raise GatewayError("Nonce lookup failed: connection refused")
        return await original(block_identifier)

    gateway.get_transaction_count = failing_after_first

    with pytest.raises(BatchExecutionAborted) as exc_info:
        await engine.execute_batch(recipients((ALICE, "1"), (BOB, "1")))

    aborted = exc_info.value
    assert len(aborted.partial_outcomes) == 1
    assert aborted.partial_outcomes[0].recipient == ALICE
    assert [s[0] for s in gateway.sent] == [ALICE]

    report = engine.build_partial_report(aborted)
    assert report.metadata["aborted"] is True
    assert "connection refused" in report.metadata["aborted_reason"]
    assert report.summary.successful == 1


async def test_transient_nonce_failure_is_retried(gateway, tmp_path):
    gateway.nonce_failures.append(GatewayError("Nonce lookup failed: timeout"))
    engine = make_engine(gateway, tmp_path)

    report = await engine.execute_batch(recipients((ALICE, "1")))

    assert gateway.nonce_lookups == 2
    assert report.summary.successful == 1
