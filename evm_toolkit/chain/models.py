"""
Models for ERC-20 chain operations.

All on-chain quantities are integers in smallest units (wei for the native
currency, token base units for the token).
"""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from evm_toolkit.chain.units import from_smallest_unit


class TokenInfo(BaseModel):
    """ERC-20 contract metadata read from the chain."""
    address: str
    symbol: str
    name: str
    decimals: int
    total_supply: str


class FeeData(BaseModel):
    """Current fee market snapshot."""
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None


class TransferReceipt(BaseModel):
    """A mined, successful transfer."""
    tx_hash: str
    block_number: int
    gas_used: int
    effective_gas_price: Optional[int] = None


class GasEstimate(BaseModel):
    """Gas needed for a whole batch of transfers."""
    gas_limit: int           # per transfer, multiplier applied
    gas_price: int           # wei
    transfer_count: int

    @property
    def total_gas_limit(self) -> int:
        return self.gas_limit * self.transfer_count

    @property
    def gas_cost_wei(self) -> int:
        return self.total_gas_limit * self.gas_price

    @property
    def gas_cost_native(self) -> Decimal:
        return from_smallest_unit(self.gas_cost_wei, 18)


class BalanceCheck(BaseModel):
    """Result of the balance preflight."""
    native_balance_wei: int
    token_balance_units: int
    required_token_units: int
    estimated_gas_cost_wei: int
    token_decimals: int

    @property
    def sufficient_token(self) -> bool:
        return self.token_balance_units >= self.required_token_units

    @property
    def sufficient_native(self) -> bool:
        return self.native_balance_wei >= self.estimated_gas_cost_wei

    @property
    def native_balance(self) -> Decimal:
        return from_smallest_unit(self.native_balance_wei, 18)

    @property
    def token_balance(self) -> Decimal:
        return from_smallest_unit(self.token_balance_units, self.token_decimals)

    @property
    def required_token_amount(self) -> Decimal:
        return from_smallest_unit(self.required_token_units, self.token_decimals)

    @property
    def estimated_gas_cost(self) -> Decimal:
        return from_smallest_unit(self.estimated_gas_cost_wei, 18)
