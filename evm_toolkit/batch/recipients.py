"""
Recipient ingestion and validation for batch transfers.

Input files are JSON arrays of ``{"address": ..., "amount": ...}`` objects
(``value`` is accepted in place of ``amount``). Amounts are human-readable
token units and are kept as their exact decimal text.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List

from loguru import logger

from evm_toolkit.utils.validation_utils import parse_token_amount, validate_evm_address


class RecipientValidationError(ValueError):
    """Raised when the recipient list is malformed; nothing has been sent."""
    pass


@dataclass(frozen=True)
class Recipient:
    """One transfer target."""
    address: str
    amount: str  # decimal text in token units, e.g. "100.5"

    @property
    def amount_decimal(self) -> Decimal:
        return Decimal(self.amount)

    def to_dict(self) -> Dict[str, str]:
        return {"address": self.address, "amount": self.amount}


def normalize_recipient(raw: Dict[str, Any]) -> Recipient:
    """
    Map one raw input record onto a Recipient.

    Args:
        raw: Mapping with ``address`` and ``amount`` (or ``value``)

    Returns:
        Recipient with the amount rendered as text

    Raises:
        RecipientValidationError: If the address or amount field is missing
    """
    if not isinstance(raw, dict):
        raise RecipientValidationError(f"Recipient must be an object: {raw!r}")

    address = raw.get("address")
    if not address:
        raise RecipientValidationError(f"Recipient missing address field: {raw!r}")

    amount = raw.get("amount")
    if amount is None:
        amount = raw.get("value")
    if amount is None or isinstance(amount, bool):
        raise RecipientValidationError(f"Recipient missing amount/value field: {raw!r}")

    return Recipient(address=str(address).strip(), amount=str(amount).strip())


def validate_recipients(recipients: Iterable[Recipient]) -> List[Recipient]:
    """
    Validate recipients and normalize addresses to checksum form.

    Raises:
        RecipientValidationError: On a malformed address, a non-positive or
            non-numeric amount, or a duplicate address
    """
    validated: List[Recipient] = []
    seen = set()

    for index, recipient in enumerate(recipients):
        is_valid, address = validate_evm_address(recipient.address)
        if not is_valid:
            raise RecipientValidationError(f"Recipient {index}: {address}")

        if address in seen:
            raise RecipientValidationError(f"Recipient {index}: duplicate address {address}")
        seen.add(address)

        is_valid, amount = parse_token_amount(recipient.amount)
        if not is_valid:
            raise RecipientValidationError(f"Recipient {index} ({address}): {amount}")

        validated.append(Recipient(address=address, amount=recipient.amount))

    return validated


def parse_recipients(data: Any) -> List[Recipient]:
    """Normalize a decoded JSON document (array, or object with a ``recipients`` array)."""
    if isinstance(data, dict) and "recipients" in data:
        data = data["recipients"]

    if not isinstance(data, list):
        raise RecipientValidationError("Recipient file must contain an array of recipients")

    return [normalize_recipient(item) for item in data]


def load_recipients_from_json(filepath: str) -> List[Recipient]:
    """
    Load and validate recipients from a JSON file.

    Numbers are decoded as Decimal so that amounts keep their exact text.
    """
    path = Path(filepath)
    try:
        with open(path, "r") as f:
            data = json.load(f, parse_float=Decimal)
    except (OSError, json.JSONDecodeError) as e:
        raise RecipientValidationError(f"Failed to load recipients from {filepath}: {e}") from e

    recipients = validate_recipients(parse_recipients(data))
    logger.info(f"Loaded {len(recipients)} recipients from {filepath}")
    return recipients
