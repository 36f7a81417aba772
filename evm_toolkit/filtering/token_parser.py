"""
Token transfer normalization.

Explorer records for ERC-20, ERC-721 and ERC-1155 transfers differ in which
fields carry the amount and token id. TokenParser maps all three onto
ParsedTokenTransfer and enriches them with per-contract token metadata.
"""

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger

from evm_toolkit.api.explorer_client import ExplorerClient
from evm_toolkit.filtering.models import ParsedTokenTransfer, TokenMetadata, TokenTotal


def _inline_metadata(record: Dict[str, Any], decimals: Optional[str]) -> TokenMetadata:
    return TokenMetadata(
        address=record.get("contractAddress", ""),
        name=record.get("tokenName") or None,
        symbol=record.get("tokenSymbol") or None,
        decimals=decimals
    )


def _base_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "contract_address": record.get("contractAddress", ""),
        "from_address": record.get("from", ""),
        "to_address": record.get("to", ""),
        "transaction_hash": record.get("hash", ""),
        "block_number": str(record.get("blockNumber", "")),
        "timestamp": str(record.get("timeStamp", "")),
    }


class TokenParser:
    """Normalizes token transfers and caches token metadata per contract."""

    def __init__(self, client: ExplorerClient):
        self.client = client
        self._metadata_cache: Dict[str, Optional[TokenMetadata]] = {}

    def parse_erc20_transfers(self, records: List[Dict[str, Any]]) -> List[ParsedTokenTransfer]:
        return [
            ParsedTokenTransfer(
                standard="ERC20",
                value=str(record.get("value", "0")),
                token_metadata=_inline_metadata(record, record.get("tokenDecimal") or None),
                **_base_fields(record)
            )
            for record in records
        ]

    def parse_erc721_transfers(self, records: List[Dict[str, Any]]) -> List[ParsedTokenTransfer]:
        return [
            ParsedTokenTransfer(
                standard="ERC721",
                token_id=str(record.get("tokenID", "")),
                token_metadata=_inline_metadata(record, record.get("tokenDecimal") or "0"),
                **_base_fields(record)
            )
            for record in records
        ]

    def parse_erc1155_transfers(self, records: List[Dict[str, Any]]) -> List[ParsedTokenTransfer]:
        return [
            ParsedTokenTransfer(
                standard="ERC1155",
                token_id=str(record.get("tokenID", "")),
                value=str(record.get("tokenValue", "0")),
                token_metadata=_inline_metadata(record, "0"),
                **_base_fields(record)
            )
            for record in records
        ]

    async def get_token_metadata(self, contract_address: str) -> Optional[TokenMetadata]:
        """
        Get explorer metadata for a contract, fetching it at most once.

        Failures are logged and not cached; the contract's transfers keep
        their inline metadata.
        """
        key = contract_address.lower()
        if key in self._metadata_cache:
            return self._metadata_cache[key]

        try:
            info = await self.client.get_token_info(contract_address)
        except Exception as e:
            logger.warning(f"Failed to fetch token metadata for {contract_address}: {e}")
            return None

        metadata = None
        if info:
            metadata = TokenMetadata(
                address=info.get("contractAddress") or contract_address,
                name=info.get("tokenName") or info.get("name") or None,
                symbol=info.get("symbol") or info.get("tokenSymbol") or None,
                decimals=str(info.get("divisor") or info.get("decimals") or "") or None,
                total_supply=info.get("totalSupply") or None
            )

        self._metadata_cache[key] = metadata
        return metadata

    async def enhance_transfers_with_metadata(
        self,
        transfers: List[ParsedTokenTransfer]
    ) -> List[ParsedTokenTransfer]:
        """Attach explorer metadata, fetched once per unique contract."""
        contracts = list(dict.fromkeys(t.contract_address for t in transfers if t.contract_address))
        results = await asyncio.gather(*(self.get_token_metadata(c) for c in contracts))
        by_contract = {c.lower(): m for c, m in zip(contracts, results)}

        enhanced = []
        for transfer in transfers:
            fetched = by_contract.get(transfer.contract_address.lower())
            if fetched is None:
                enhanced.append(transfer)
                continue

            # Explorer values win; inline values fill the gaps
            inline = transfer.token_metadata.model_dump() if transfer.token_metadata else {}
            merged = {**inline, **{k: v for k, v in fetched.model_dump().items() if v is not None}}
            enhanced.append(transfer.model_copy(update={"token_metadata": TokenMetadata(**merged)}))

        return enhanced

    async def parse_all_token_transfers(
        self,
        erc20_records: List[Dict[str, Any]],
        erc721_records: List[Dict[str, Any]],
        erc1155_records: List[Dict[str, Any]],
        enhance_with_metadata: bool = True
    ) -> List[ParsedTokenTransfer]:
        transfers = (
            self.parse_erc20_transfers(erc20_records)
            + self.parse_erc721_transfers(erc721_records)
            + self.parse_erc1155_transfers(erc1155_records)
        )

        if enhance_with_metadata and transfers:
            return await self.enhance_transfers_with_metadata(transfers)
        return transfers

    @staticmethod
    def group_transfers_by_contract(
        transfers: List[ParsedTokenTransfer]
    ) -> Dict[str, List[ParsedTokenTransfer]]:
        grouped: Dict[str, List[ParsedTokenTransfer]] = {}
        for transfer in transfers:
            grouped.setdefault(transfer.contract_address, []).append(transfer)
        return grouped

    @staticmethod
    def get_unique_tokens(transfers: List[ParsedTokenTransfer]) -> List[ParsedTokenTransfer]:
        """One transfer per distinct token (contract plus token id; ERC-20 has no id)."""
        unique: Dict[str, ParsedTokenTransfer] = {}
        for transfer in transfers:
            key = f"{transfer.contract_address.lower()}-{transfer.token_id or 'ERC20'}"
            unique.setdefault(key, transfer)
        return list(unique.values())

    @staticmethod
    def calculate_total_value(transfers: List[ParsedTokenTransfer]) -> Dict[str, TokenTotal]:
        """Sum ERC-20 transfer values per contract, in smallest units."""
        totals: Dict[str, TokenTotal] = {}

        for transfer in transfers:
            if transfer.standard != "ERC20" or not transfer.value:
                continue

            metadata = transfer.token_metadata
            try:
                decimals = int(metadata.decimals) if metadata and metadata.decimals else 0
            except ValueError:
                decimals = 0
            symbol = (metadata.symbol if metadata else None) or "UNKNOWN"

            current = totals.get(transfer.contract_address)
            running = int(current.value) if current else 0
            totals[transfer.contract_address] = TokenTotal(
                value=str(running + int(transfer.value)),
                decimals=decimals,
                symbol=symbol
            )

        return totals

    def clear_cache(self) -> None:
        self._metadata_cache.clear()
