"""
Single-transfer execution for the batch sender.
Estimates gas, prices, signs, broadcasts and confirms one ERC-20 transfer.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from loguru import logger
from web3 import Web3

from evm_toolkit.batch.batch_config import BatchPolicy
from evm_toolkit.batch.recipients import Recipient
from evm_toolkit.chain.token_gateway import ERC20Gateway
from evm_toolkit.chain.units import format_amount, from_smallest_unit, to_smallest_unit
from evm_toolkit.config import FALLBACK_GAS_PRICE_GWEI
from evm_toolkit.utils.rate_limit_utils import is_rate_limit_error

DRY_RUN_TX_HASH = "0x" + "0" * 64


class TransferStatus(Enum):
    """Terminal state of one transfer."""
    SUCCESS = "success"
    FAILED = "failed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class TransferOutcome:
    """Recorded result of one recipient's transfer."""
    recipient: str
    amount: str
    status: TransferStatus
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    gas_cost: Optional[Decimal] = None  # native currency units
    error: Optional[str] = None
    attempts: int = 1
    timestamp: str = field(default_factory=_now_iso)
    nonce: Optional[int] = None
    confirmed: bool = False

    @property
    def is_successful(self) -> bool:
        return self.status == TransferStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["gas_cost"] = format_amount(self.gas_cost) if self.gas_cost is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferOutcome":
        values = dict(data)
        values["status"] = TransferStatus(values["status"])
        if values.get("gas_cost") is not None:
            values["gas_cost"] = Decimal(str(values["gas_cost"]))
        return cls(**values)


class TransferExecutor:
    """Executes one ERC-20 transfer with an explicit nonce."""

    def __init__(self, gateway: ERC20Gateway, policy: BatchPolicy):
        self.gateway = gateway
        self.policy = policy

    async def _resolve_gas_price(self) -> int:
        fee_data = await self.gateway.get_fee_data()
        if fee_data.gas_price:
            return fee_data.gas_price

        logger.warning(f"Provider returned no gas price, using fallback of {FALLBACK_GAS_PRICE_GWEI} gwei")
        return Web3.to_wei(FALLBACK_GAS_PRICE_GWEI, "gwei")

    async def execute_transfer(self, recipient: Recipient, nonce: int) -> TransferOutcome:
        """
        Send one transfer and wait for it to be mined.

        In dry-run mode everything up to signing is exercised and a synthetic
        success with a placeholder hash is returned.

        Args:
            recipient: Validated recipient
            nonce: Nonce to sign the transaction with

        Returns:
            A successful TransferOutcome

        Raises:
            Exception: Any estimation, broadcast or confirmation failure
        """
        token = await self.gateway.get_token_info()
        amount_units = to_smallest_unit(recipient.amount, token.decimals)

        estimated_gas = await self.gateway.estimate_transfer_gas(recipient.address, amount_units)
        gas_limit = int(estimated_gas * self.policy.gas_multiplier)
        gas_price = await self._resolve_gas_price()

        if self.policy.dry_run:
            return TransferOutcome(
                recipient=recipient.address,
                amount=recipient.amount,
                status=TransferStatus.SUCCESS,
                tx_hash=DRY_RUN_TX_HASH,
                gas_used=gas_limit,
                gas_cost=from_smallest_unit(gas_limit * gas_price, 18),
                nonce=nonce
            )

        tx_hash = await self.gateway.send_transfer(recipient.address, amount_units, nonce, gas_limit, gas_price)

        try:
            receipt = await self.gateway.wait_for_receipt(tx_hash, self.policy.confirmation_timeout)
        except Exception as e:
            if not is_rate_limit_error(e):
                raise

            # The chain accepted the transaction; only the receipt poll was throttled
            logger.warning(f"Transfer {tx_hash} broadcast but receipt check was rate limited: {e}")
            return TransferOutcome(
                recipient=recipient.address,
                amount=recipient.amount,
                status=TransferStatus.SUCCESS,
                tx_hash=tx_hash,
                gas_used=gas_limit,
                gas_cost=from_smallest_unit(gas_limit * gas_price, 18),
                nonce=nonce,
                confirmed=False
            )

        effective_price = receipt.effective_gas_price or gas_price
        return TransferOutcome(
            recipient=recipient.address,
            amount=recipient.amount,
            status=TransferStatus.SUCCESS,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            gas_cost=from_smallest_unit(receipt.gas_used * effective_price, 18),
            nonce=nonce,
            confirmed=True
        )
