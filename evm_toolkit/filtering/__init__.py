"""
Wallet activity filtering.

Fetches wallet history from an Etherscan-family explorer, filters it by time
window and direction, and normalizes token transfers of all three standards.
"""

from evm_toolkit.filtering.models import (
    FilterCriteria,
    FilterResult,
    FilteredTransaction,
    ParsedTokenTransfer,
    TokenMetadata,
)
from evm_toolkit.filtering.token_parser import TokenParser
from evm_toolkit.filtering.transaction_filter import TransactionFilterEngine
from evm_toolkit.filtering.output_manager import OutputManager, format_token_value
