"""
Output writer for filter results.
Saves full results, a token/transaction summary and a per-wallet summary as JSON.
"""

import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger

from evm_toolkit.filtering.models import FilterResult

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def format_token_value(value: Union[str, int], decimals: int) -> str:
    """
    Render a smallest-unit integer as a human-readable decimal string.

    Trailing zeros of the fractional part are dropped, e.g. ("1500000", 6) -> "1.5".
    """
    raw = int(value)
    if decimals <= 0:
        return str(raw)

    sign = "-" if raw < 0 else ""
    whole, remainder = divmod(abs(raw), 10 ** decimals)
    if remainder == 0:
        return f"{sign}{whole}"

    fraction = str(remainder).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{fraction}"


class OutputManager:
    """Writes filter results to the output directory."""

    def __init__(self, output_dir: str = "output", pretty_print: bool = True):
        self.output_dir = Path(output_dir)
        self.pretty_print = pretty_print
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _write_json(self, data: Any, filename: str) -> str:
        filepath = self.output_dir / filename
        with open(filepath, "w") as f:
            json.dump(data, f, indent=2 if self.pretty_print else None, default=str)
        return str(filepath)

    def generate_filename(self, result: FilterResult) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        wallet_short = result.summary.wallet_address[:8]
        start = result.summary.date_range.start.split("T")[0]
        end = result.summary.date_range.end.split("T")[0]
        return f"evm_transactions_{wallet_short}_{start}_to_{end}_{timestamp}.json"

    def save_results(self, result: FilterResult, filename: Optional[str] = None) -> str:
        """Save the full filter result."""
        filepath = self._write_json(result.model_dump(mode="json"), filename or self.generate_filename(result))
        logger.info(f"Results saved to: {filepath}")
        return filepath

    def save_summary_report(self, result: FilterResult, filename: Optional[str] = None) -> str:
        """Save summary counts plus token and transaction breakdowns."""
        report = {
            "generated_at": result.metadata.generated_at.isoformat(),
            "processing_time_ms": result.metadata.processing_time_ms,
            "api_calls": result.metadata.api_calls,
            "summary": result.summary.model_dump(mode="json"),
            "token_summary": self._generate_token_summary(result),
            "transaction_summary": self._generate_transaction_summary(result)
        }

        filepath = self._write_json(report, filename or f"summary_{self.generate_filename(result)}")
        logger.info(f"Summary report saved to: {filepath}")
        return filepath

    def save_wallet_summary_report(self, result: FilterResult, filename: Optional[str] = None) -> str:
        """Save activity grouped by counterparty wallet."""
        report = {
            "generated_at": result.metadata.generated_at.isoformat(),
            "processing_time_ms": result.metadata.processing_time_ms,
            "api_calls": result.metadata.api_calls,
            "date_range": result.summary.date_range.model_dump(),
            "wallets": self._generate_wallet_summary(result)
        }

        filepath = self._write_json(report, filename or f"wallet_summary_{self.generate_filename(result)}")
        logger.info(f"Wallet summary report saved to: {filepath}")
        return filepath

    def _generate_wallet_summary(self, result: FilterResult) -> Dict[str, Any]:
        wallets: Dict[str, Dict[str, Any]] = {}

        def entry(address: str) -> Dict[str, Any]:
            return wallets.setdefault(address, {
                "address": address,
                "transaction_count": 0,
                "transactions": [],
                "token_transfers": {}
            })

        for item in result.transactions:
            tx = item.transaction
            for wallet in {tx.get("from"), tx.get("to")}:
                if not wallet or wallet == ZERO_ADDRESS:
                    continue
                data = entry(wallet)
                data["transaction_count"] += 1
                data["transactions"].append({
                    "hash": tx.get("hash"),
                    "block_number": tx.get("blockNumber"),
                    "timestamp": tx.get("timeStamp"),
                    "from": tx.get("from"),
                    "to": tx.get("to"),
                    "value": tx.get("value"),
                    "gas_used": tx.get("gasUsed"),
                    "is_error": tx.get("isError"),
                    "function_name": tx.get("functionName"),
                })

            for transfer in item.token_transfers:
                metadata = transfer.token_metadata
                decimals = int(metadata.decimals) if metadata and metadata.decimals and metadata.decimals.isdigit() else 18

                for wallet in {transfer.from_address, transfer.to_address}:
                    if not wallet or wallet == ZERO_ADDRESS:
                        continue
                    tokens = entry(wallet)["token_transfers"]
                    token = tokens.setdefault(transfer.contract_address, {
                        "contract_address": transfer.contract_address,
                        "token_symbol": (metadata.symbol if metadata else None) or "UNKNOWN",
                        "token_name": (metadata.name if metadata else None) or "Unknown Token",
                        "decimals": decimals,
                        "total_value": "0",
                        "formatted_value": "0",
                        "transfer_count": 0
                    })
                    token["transfer_count"] += 1
                    if transfer.value:
                        total = int(token["total_value"]) + int(transfer.value)
                        token["total_value"] = str(total)
                        token["formatted_value"] = format_token_value(total, decimals)

        summary = [
            {**data, "token_transfers": list(data["token_transfers"].values())}
            for data in wallets.values()
        ]
        summary.sort(key=lambda w: w["transaction_count"], reverse=True)

        return {"total_wallets": len(summary), "wallets": summary}

    def _generate_token_summary(self, result: FilterResult) -> Dict[str, Any]:
        token_counts: Dict[str, int] = {}
        for item in result.transactions:
            for transfer in item.token_transfers:
                token_counts[transfer.contract_address] = token_counts.get(transfer.contract_address, 0) + 1

        return {
            "unique_tokens": result.summary.unique_tokens,
            "token_counts": token_counts,
            "token_values": {
                contract: {**total.model_dump(), "formatted_value": format_token_value(total.value, total.decimals)}
                for contract, total in result.summary.token_totals.items()
            },
            "erc20_transfers": result.summary.total_token_transfers,
            "erc721_transfers": result.summary.total_erc721_transfers,
            "erc1155_transfers": result.summary.total_erc1155_transfers
        }

    def _generate_transaction_summary(self, result: FilterResult) -> Dict[str, Any]:
        txs = [item.transaction for item in result.transactions]
        gas_used = sum(int(tx.get("gasUsed") or 0) for tx in txs)
        total_value = sum(int(tx.get("value") or 0) for tx in txs)
        error_count = len([tx for tx in txs if tx.get("isError") == "1"])
        total = len(txs)

        success_rate = ((total - error_count) / total * 100) if total else 0.0

        return {
            "total_transactions": result.summary.total_transactions,
            "total_internal_transactions": result.summary.total_internal_transactions,
            "total_gas_used": str(gas_used),
            "total_value_wei": str(total_value),
            "total_value_native": str(Decimal(total_value) / Decimal(10 ** 18)),
            "error_count": error_count,
            "success_rate": f"{success_rate:.2f}%"
        }
