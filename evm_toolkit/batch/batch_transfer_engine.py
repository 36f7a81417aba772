"""
Batch transfer engine.

Sends one ERC-20 transfer per recipient from a single sender account. The
sender nonce is read once per batch and advanced in-process, only after a
successful transfer, so transfers are strictly sequential.
"""

import asyncio
import time
from dataclasses import replace
from typing import List, Optional, Sequence

from loguru import logger
from web3 import Web3

from evm_toolkit.batch.batch_config import BatchPolicy
from evm_toolkit.batch.recipients import Recipient, RecipientValidationError, validate_recipients
from evm_toolkit.batch.result_reporter import BatchReport, ReportAssembler
from evm_toolkit.batch.transfer_executor import TransferExecutor, TransferOutcome, TransferStatus
from evm_toolkit.chain.models import BalanceCheck, GasEstimate
from evm_toolkit.chain.token_gateway import ERC20Gateway
from evm_toolkit.chain.units import format_amount, format_native, to_smallest_unit
from evm_toolkit.config import FALLBACK_GAS_PRICE_GWEI
from evm_toolkit.utils.rate_limit_utils import is_rate_limit_error
from evm_toolkit.utils.retry import RetryExecutor, RetryExhausted, RetryPolicy


class InsufficientBalanceError(Exception):
    """Raised by the preflight when the sender cannot fund the batch."""

    def __init__(self, message: str, balance_check: BalanceCheck):
        self.balance_check = balance_check
        super().__init__(message)


class BatchExecutionAborted(Exception):
    """Raised when the run stops outside the per-transfer retry scope."""

    def __init__(self, partial_outcomes: List[TransferOutcome], cause: BaseException):
        self.partial_outcomes = partial_outcomes
        self.cause = cause
        super().__init__(f"Batch execution aborted after {len(partial_outcomes)} transfers: {cause}")


def chunk(items: Sequence[Recipient], size: int) -> List[List[Recipient]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BatchTransferEngine:
    """Orchestrates validation, preflight, execution and reporting of a batch."""

    def __init__(
        self,
        gateway: ERC20Gateway,
        policy: Optional[BatchPolicy] = None,
        reporter: Optional[ReportAssembler] = None,
        executor: Optional[TransferExecutor] = None
    ):
        self.gateway = gateway
        self.policy = policy or BatchPolicy()
        self.reporter = reporter or ReportAssembler()
        self.executor = executor or TransferExecutor(gateway, self.policy)

        self._transfer_retry = RetryExecutor(self.policy.transfer_retry_policy())
        self._token_info = None
        self._nonce_retry = RetryExecutor(RetryPolicy(
            max_attempts=self.policy.max_retries,
            base_delay=self.policy.retry_delay,
            max_delay=max(self.policy.retry_delay, self.policy.max_retry_delay)
        ))

    def validate(self, recipients: Sequence[Recipient]) -> List[Recipient]:
        if not recipients:
            raise RecipientValidationError("Recipient list is empty")
        return validate_recipients(recipients)

    async def estimate_gas_for_batch(self, recipients: Sequence[Recipient], decimals: int) -> GasEstimate:
        """Single-transfer estimate for the first recipient, scaled to the whole batch."""
        sample = recipients[0]
        estimated = await self.gateway.estimate_transfer_gas(sample.address, to_smallest_unit(sample.amount, decimals))

        fee_data = await self.gateway.get_fee_data()
        gas_price = fee_data.gas_price or Web3.to_wei(FALLBACK_GAS_PRICE_GWEI, "gwei")

        return GasEstimate(
            gas_limit=int(estimated * self.policy.gas_multiplier),
            gas_price=gas_price,
            transfer_count=len(recipients)
        )

    async def check_balances(self, recipients: Sequence[Recipient]) -> BalanceCheck:
        """
        Verify the sender holds enough token and native currency for the batch.

        Raises:
            RecipientValidationError: If an amount has more decimals than the token
            InsufficientBalanceError: If either balance is too low
        """
        token = await self.gateway.get_token_info()

        try:
            required = sum(to_smallest_unit(r.amount, token.decimals) for r in recipients)
        except ValueError as e:
            raise RecipientValidationError(str(e)) from e

        native_balance, token_balance = await asyncio.gather(
            self.gateway.get_native_balance(),
            self.gateway.get_token_balance()
        )
        gas_estimate = await self.estimate_gas_for_batch(recipients, token.decimals)

        check = BalanceCheck(
            native_balance_wei=native_balance,
            token_balance_units=token_balance,
            required_token_units=required,
            estimated_gas_cost_wei=gas_estimate.gas_cost_wei,
            token_decimals=token.decimals
        )

        if not check.sufficient_token:
            raise InsufficientBalanceError(
                f"Insufficient token balance. Required: {format_amount(check.required_token_amount)} {token.symbol}, "
                f"Available: {format_amount(check.token_balance)}",
                check
            )

        if not check.sufficient_native:
            raise InsufficientBalanceError(
                f"Insufficient native balance for gas. Required: {format_native(check.estimated_gas_cost_wei)}, "
                f"Available: {format_native(check.native_balance_wei)}",
                check
            )

        logger.info(
            f"Balance check passed: {format_amount(check.token_balance)} {token.symbol} available, "
            f"estimated gas cost {format_native(check.estimated_gas_cost_wei)}"
        )
        return check

    async def _execute_with_retry(self, recipient: Recipient, nonce: int) -> TransferOutcome:
        attempts = 0

        async def attempt():
            nonlocal attempts
            attempts += 1
            return await self.executor.execute_transfer(recipient, nonce)

        try:
            outcome = await self._transfer_retry.execute_with_retry(attempt, f"transfer to {recipient.address}")
            return replace(outcome, attempts=attempts)

        except RetryExhausted as e:
            return TransferOutcome(
                recipient=recipient.address,
                amount=recipient.amount,
                status=TransferStatus.FAILED,
                error=str(e.original_error),
                attempts=e.attempt,
                nonce=nonce
            )

    def _hit_rate_limit(self, outcome: TransferOutcome) -> bool:
        if outcome.is_successful:
            return not outcome.confirmed and not self.policy.dry_run
        return is_rate_limit_error(outcome.error or "")

    async def _sleep(self, seconds: float, reason: str) -> None:
        if self.policy.dry_run or seconds <= 0:
            return
        logger.debug(f"Waiting {seconds:.1f}s {reason}")
        await asyncio.sleep(seconds)

    async def execute_transfers(self, recipients: Sequence[Recipient]) -> List[TransferOutcome]:
        """
        Execute every transfer, batch by batch.

        A failed transfer is recorded and the run continues. Anything that
        stops the run itself raises BatchExecutionAborted with the outcomes
        recorded so far.
        """
        outcomes: List[TransferOutcome] = []
        batches = chunk(recipients, self.policy.batch_size)
        total = len(recipients)

        if self.policy.dry_run:
            logger.info("DRY RUN MODE - no transactions will be broadcast")

        try:
            for batch_index, batch in enumerate(batches):
                logger.info(f"Processing batch {batch_index + 1}/{len(batches)} ({len(batch)} transfers)")

                nonce = await self._nonce_retry.execute_with_retry(
                    lambda: self.gateway.get_transaction_count("pending"),
                    "nonce lookup"
                )
                logger.info(f"Starting nonce: {nonce}")

                for i, recipient in enumerate(batch):
                    position = len(outcomes) + 1
                    logger.info(f"{position}/{total} Transferring {recipient.amount} to {recipient.address} (nonce: {nonce})")

                    outcome = await self._execute_with_retry(recipient, nonce)
                    outcomes.append(outcome)

                    if outcome.is_successful:
                        logger.info(f"Transfer {position}/{total} succeeded: {outcome.tx_hash}")
                        nonce += 1
                    else:
                        logger.error(f"Transfer {position}/{total} failed after {outcome.attempts} attempts: {outcome.error}")

                    if self._hit_rate_limit(outcome):
                        logger.warning(f"Rate limit detected, cooling down for {self.policy.rate_limit_cooldown:.0f}s")
                        await self._sleep(self.policy.rate_limit_cooldown, "for rate limit cooldown")

                    if i < len(batch) - 1:
                        await self._sleep(self.policy.delay_between_transfers, "between transfers")

                if batch_index < len(batches) - 1:
                    await self._sleep(self.policy.delay_between_batches, "before next batch")

        except Exception as e:
            logger.error(f"Batch execution aborted after {len(outcomes)}/{total} transfers: {e}")
            raise BatchExecutionAborted(list(outcomes), e) from e

        return outcomes

    async def execute_batch(self, recipients: Sequence[Recipient]) -> BatchReport:
        """
        Validate, preflight, execute and report a batch run.

        Raises:
            RecipientValidationError: Before any chain interaction
            InsufficientBalanceError: Before any transfer
            BatchExecutionAborted: With partial outcomes, if the run stopped
        """
        start_time = time.time()

        validated = self.validate(recipients)
        token = self._token_info = await self.gateway.get_token_info()
        total_amount = sum((r.amount_decimal for r in validated))

        logger.info(
            f"Starting batch transfer of {len(validated)} recipients, "
            f"token {token.symbol} ({token.name}), total {format_amount(total_amount)} {token.symbol}"
        )

        await self.check_balances(validated)
        outcomes = await self.execute_transfers(validated)

        report = self.reporter.build_report(
            outcomes,
            token_address=self.gateway.token_address,
            sender_address=self.gateway.sender_address,
            token_info=token,
            dry_run=self.policy.dry_run,
            network=self.policy.network,
            start_time=start_time
        )

        logger.info(f"Batch complete: {report.summary.successful} succeeded, {report.summary.failed} failed")
        return report

    def build_partial_report(self, aborted: BatchExecutionAborted, start_time: Optional[float] = None) -> BatchReport:
        """Report for a run that stopped early."""
        return self.reporter.build_report(
            aborted.partial_outcomes,
            token_address=self.gateway.token_address,
            sender_address=self.gateway.sender_address,
            token_info=self._token_info,
            dry_run=self.policy.dry_run,
            network=self.policy.network,
            start_time=start_time,
            aborted_reason=str(aborted.cause)
        )
