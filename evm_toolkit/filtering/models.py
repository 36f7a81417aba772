"""
Models for wallet activity filtering.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from web3 import Web3

TokenStandard = Literal["ERC20", "ERC721", "ERC1155"]


class FilterCriteria(BaseModel):
    """What to fetch for a wallet and which time window to keep."""
    address: str
    start_date: datetime
    end_date: datetime
    include_internal: bool = True
    include_token_transfers: bool = True
    include_erc721: bool = False
    include_erc1155: bool = False
    incoming_only: bool = False
    outgoing_only: bool = False

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        value = value.strip()
        if not Web3.is_address(value):
            raise ValueError(f"Invalid EVM address: {value}")
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive datetimes are interpreted as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_window_and_direction(self) -> "FilterCriteria":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if self.incoming_only and self.outgoing_only:
            raise ValueError("incoming_only and outgoing_only are mutually exclusive")
        return self

    @property
    def start_timestamp(self) -> int:
        return int(self.start_date.timestamp())

    @property
    def end_timestamp(self) -> int:
        return int(self.end_date.timestamp())


class TokenMetadata(BaseModel):
    """Name, symbol and decimals of a token contract."""
    address: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[str] = None
    total_supply: Optional[str] = None


class ParsedTokenTransfer(BaseModel):
    """A token transfer of any standard in one shared shape."""
    standard: TokenStandard
    contract_address: str
    from_address: str
    to_address: str
    value: Optional[str] = None       # ERC-20 amount, ERC-1155 quantity
    token_id: Optional[str] = None    # ERC-721 / ERC-1155
    transaction_hash: str
    block_number: str
    timestamp: str
    token_metadata: Optional[TokenMetadata] = None


class TokenTotal(BaseModel):
    """Sum of ERC-20 transfer values for one contract, in smallest units."""
    value: str
    decimals: int
    symbol: str


class FilteredTransaction(BaseModel):
    """A plain transaction with the activity that happened inside it."""
    transaction: Dict[str, Any]
    internal_transactions: List[Dict[str, Any]] = Field(default_factory=list)
    token_transfers: List[ParsedTokenTransfer] = Field(default_factory=list)


class DateRange(BaseModel):
    start: str
    end: str


class FilterSummary(BaseModel):
    total_transactions: int
    total_internal_transactions: int
    total_token_transfers: int
    total_erc721_transfers: int
    total_erc1155_transfers: int
    unique_tokens: int
    token_totals: Dict[str, TokenTotal] = Field(default_factory=dict)
    date_range: DateRange
    wallet_address: str


class FilterMetadata(BaseModel):
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    api_calls: int
    processing_time_ms: int


class FilterResult(BaseModel):
    """Output of one filter run."""
    transactions: List[FilteredTransaction]
    # Transfers whose hash has no matching plain transaction of the wallet
    # (typically incoming tokens sent by a third-party transaction)
    unlinked_token_transfers: List[ParsedTokenTransfer] = Field(default_factory=list)
    summary: FilterSummary
    metadata: FilterMetadata
