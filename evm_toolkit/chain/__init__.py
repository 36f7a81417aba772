"""
EVM chain access for the batch sender.

Note: every amount crossing this package boundary in smallest units is a
plain int; human-readable amounts are Decimal.
"""

from evm_toolkit.chain.models import TokenInfo, FeeData, TransferReceipt, GasEstimate, BalanceCheck
from evm_toolkit.chain.token_gateway import ERC20Gateway, GatewayError, TransactionRevertedError
from evm_toolkit.chain.units import to_smallest_unit, from_smallest_unit, format_amount, format_native
