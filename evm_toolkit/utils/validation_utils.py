"""Validation helpers for EVM addresses and token amounts."""

from decimal import Decimal, InvalidOperation
from typing import Any, Tuple, Union

from web3 import Web3


def validate_evm_address(text: str) -> Tuple[bool, str]:
    """
    Validate an EVM address and return its checksum form.

    Mixed-case input must already carry a valid EIP-55 checksum.

    Args:
        text: The address text

    Returns:
        A tuple of (is_valid, checksum_address_or_error_message)
    """
    address = (text or "").strip()

    if not Web3.is_address(address):
        return False, f"Invalid EVM address: {address!r}"

    return True, Web3.to_checksum_address(address)


def parse_token_amount(value: Any) -> Tuple[bool, Union[Decimal, str]]:
    """
    Parse a human-readable token amount.

    Args:
        value: Amount as a string, int or Decimal (floats are converted via str)

    Returns:
        Tuple (is_valid, amount_or_error)
    """
    if isinstance(value, bool) or value is None:
        return False, f"Invalid amount: {value!r}"

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return False, f"Invalid amount: {value!r}"

    if not amount.is_finite():
        return False, f"Amount must be a finite number: {value!r}"

    if amount <= 0:
        return False, f"Amount must be positive: {value!r}"

    return True, amount
