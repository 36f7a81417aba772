"""
Wallet activity filter.

Fetches the full history of a wallet from the explorer (plain, internal and
token transactions), keeps what falls inside a time window, optionally keeps
one direction only, and merges everything onto the plain transactions it
belongs to.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from loguru import logger

from evm_toolkit.api.explorer_client import ExplorerClient
from evm_toolkit.filtering.models import (
    DateRange,
    FilterCriteria,
    FilteredTransaction,
    FilterMetadata,
    FilterResult,
    FilterSummary,
    ParsedTokenTransfer,
)
from evm_toolkit.filtering.token_parser import TokenParser


def _record_timestamp(record: Dict[str, Any]) -> Optional[int]:
    try:
        return int(record.get("timeStamp"))
    except (TypeError, ValueError):
        return None


class TransactionFilterEngine:
    """Builds a FilterResult for a wallet from explorer data."""

    def __init__(self, client: ExplorerClient, token_parser: Optional[TokenParser] = None):
        self.client = client
        self.token_parser = token_parser or TokenParser(client)

    async def filter_transactions(self, criteria: FilterCriteria) -> FilterResult:
        """
        Fetch, filter and merge wallet activity.

        All enabled fetches run concurrently (the client's scheduler still
        bounds them). Any fetch that fails after retries fails the whole call.

        Args:
            criteria: Wallet, time window and inclusion flags

        Returns:
            Filtered transactions with summary and run metadata
        """
        start_time = time.time()
        address = criteria.address

        logger.info(
            f"Filtering transactions for {address} from "
            f"{criteria.start_date.isoformat()} to {criteria.end_date.isoformat()}"
        )

        (
            transactions,
            internal_transactions,
            token_transfers,
            erc721_transfers,
            erc1155_transfers,
        ) = await asyncio.gather(
            self.client.paginate(self.client.get_transactions, address),
            self._fetch_if(criteria.include_internal, self.client.get_internal_transactions, address),
            self._fetch_if(criteria.include_token_transfers, self.client.get_token_transfers, address),
            self._fetch_if(criteria.include_erc721, self.client.get_erc721_transfers, address),
            self._fetch_if(criteria.include_erc1155, self.client.get_erc1155_transfers, address),
        )

        transactions = self._apply_filters(transactions, criteria)
        internal_transactions = self._apply_filters(internal_transactions, criteria)
        token_transfers = self._apply_filters(token_transfers, criteria)
        erc721_transfers = self._apply_filters(erc721_transfers, criteria)
        erc1155_transfers = self._apply_filters(erc1155_transfers, criteria)

        logger.info(
            f"Found {len(transactions)} transactions, {len(internal_transactions)} internal transactions, "
            f"{len(token_transfers)} token transfers, {len(erc721_transfers)} ERC721 transfers, "
            f"{len(erc1155_transfers)} ERC1155 transfers"
        )

        parsed_transfers = await self.token_parser.parse_all_token_transfers(
            token_transfers,
            erc721_transfers,
            erc1155_transfers
        )

        transfers_by_hash = self._group_by_hash(parsed_transfers, "transaction_hash")
        internal_by_hash = self._group_by_hash(internal_transactions, "hash")

        results = [
            FilteredTransaction(
                transaction=tx,
                internal_transactions=internal_by_hash.get(tx.get("hash", "").lower(), []),
                token_transfers=transfers_by_hash.get(tx.get("hash", "").lower(), [])
            )
            for tx in transactions
        ]

        known_hashes = {tx.get("hash", "").lower() for tx in transactions}
        unlinked = [t for t in parsed_transfers if t.transaction_hash.lower() not in known_hashes]

        processing_time_ms = int((time.time() - start_time) * 1000)
        api_calls = self.client.get_api_call_count()

        summary = FilterSummary(
            total_transactions=len(transactions),
            total_internal_transactions=len(internal_transactions),
            total_token_transfers=len(token_transfers),
            total_erc721_transfers=len(erc721_transfers),
            total_erc1155_transfers=len(erc1155_transfers),
            unique_tokens=len(self.token_parser.get_unique_tokens(parsed_transfers)),
            token_totals=self.token_parser.calculate_total_value(parsed_transfers),
            date_range=DateRange(
                start=criteria.start_date.isoformat(),
                end=criteria.end_date.isoformat()
            ),
            wallet_address=address
        )

        logger.info(f"Filtering completed in {processing_time_ms}ms with {api_calls} API calls")

        return FilterResult(
            transactions=results,
            unlinked_token_transfers=unlinked,
            summary=summary,
            metadata=FilterMetadata(api_calls=api_calls, processing_time_ms=processing_time_ms)
        )

    async def _fetch_if(self, enabled: bool, fetch_page, address: str) -> List[Dict[str, Any]]:
        if not enabled:
            return []
        return await self.client.paginate(fetch_page, address)

    def _apply_filters(self, records: List[Dict[str, Any]], criteria: FilterCriteria) -> List[Dict[str, Any]]:
        """Keep records inside the time window, then apply the direction filter."""
        start_ts = criteria.start_timestamp
        end_ts = criteria.end_timestamp

        in_window = []
        for record in records:
            ts = _record_timestamp(record)
            if ts is not None and start_ts <= ts <= end_ts:
                in_window.append(record)

        return self.apply_direction_filter(in_window, criteria)

    @staticmethod
    def apply_direction_filter(records: List[Dict[str, Any]], criteria: FilterCriteria) -> List[Dict[str, Any]]:
        if not criteria.incoming_only and not criteria.outgoing_only:
            return records

        target = criteria.address.lower()
        field = "to" if criteria.incoming_only else "from"
        return [r for r in records if (r.get(field) or "").lower() == target]

    @staticmethod
    def _group_by_hash(items: List[Any], attribute: str) -> Dict[str, List[Any]]:
        grouped: Dict[str, List[Any]] = {}
        for item in items:
            if isinstance(item, ParsedTokenTransfer):
                key = getattr(item, attribute)
            else:
                key = item.get(attribute, "")
            grouped.setdefault(key.lower(), []).append(item)
        return grouped

    async def wait_for_completion(self) -> None:
        await self.client.wait_for_completion()

    def get_api_call_count(self) -> int:
        return self.client.get_api_call_count()

    def reset_api_call_count(self) -> None:
        self.client.reset_api_call_count()
