"""
Result reporting module for batch transfers.
Builds the run report, formats it for the console, and persists it together
with a failed-transfers file that can be fed back in as a recipient list.
"""

import json
import shlex
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from evm_toolkit.batch.transfer_executor import TransferOutcome
from evm_toolkit.chain.models import TokenInfo
from evm_toolkit.chain.units import format_amount


@dataclass
class BatchSummary:
    """Headline numbers of one run."""
    total_recipients: int
    successful: int
    failed: int
    unconfirmed: int
    total_amount_sent: str
    total_gas_cost: str
    token_contract: str
    sender_address: str
    token_symbol: Optional[str] = None
    token_decimals: Optional[int] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    processing_time_ms: int = 0


@dataclass
class BatchReport:
    """Durable record of a batch run."""
    summary: BatchSummary
    transfers: List[TransferOutcome]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> List[TransferOutcome]:
        return [t for t in self.transfers if not t.is_successful]

    @property
    def successful(self) -> List[TransferOutcome]:
        return [t for t in self.transfers if t.is_successful]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": asdict(self.summary),
            "transfers": [t.to_dict() for t in self.transfers],
            "failed": [t.to_dict() for t in self.failed],
            "metadata": self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchReport":
        if "summary" not in data or "transfers" not in data:
            raise ValueError("Invalid batch report format")

        return cls(
            summary=BatchSummary(**data["summary"]),
            transfers=[TransferOutcome.from_dict(t) for t in data["transfers"]],
            metadata=data.get("metadata", {})
        )


class ReportAssembler:
    """Generates and saves batch transfer reports."""

    def __init__(self, output_dir: str = "output"):
        """Initialize report assembler."""
        self.output_dir = Path(output_dir)

    def build_report(
        self,
        outcomes: List[TransferOutcome],
        token_address: str,
        sender_address: str,
        token_info: Optional[TokenInfo] = None,
        dry_run: bool = False,
        network: str = "polygon",
        start_time: Optional[float] = None,
        aborted_reason: Optional[str] = None
    ) -> BatchReport:
        """
        Aggregate outcomes into a BatchReport.

        Totals cover successful transfers only: amounts are exact decimal
        sums, gas cost is in native currency units.
        """
        successful = [o for o in outcomes if o.is_successful]
        failed = [o for o in outcomes if not o.is_successful]

        total_amount = sum((Decimal(o.amount) for o in successful), Decimal(0))
        total_gas_cost = sum((o.gas_cost for o in successful if o.gas_cost is not None), Decimal(0))
        gas_values = [o.gas_used for o in successful if o.gas_used is not None]
        average_gas = sum(gas_values) // len(gas_values) if gas_values else 0

        processing_time_ms = int((time.time() - start_time) * 1000) if start_time else 0

        summary = BatchSummary(
            total_recipients=len(outcomes),
            successful=len(successful),
            failed=len(failed),
            unconfirmed=len([o for o in successful if not o.confirmed]),
            total_amount_sent=format_amount(total_amount),
            total_gas_cost=format_amount(total_gas_cost),
            token_contract=token_address,
            sender_address=sender_address,
            token_symbol=token_info.symbol if token_info else None,
            token_decimals=token_info.decimals if token_info else None,
            processing_time_ms=processing_time_ms
        )

        metadata: Dict[str, Any] = {
            "network": network,
            "dry_run": dry_run,
            "average_gas_per_transfer": str(average_gas),
            "error_breakdown": self._analyze_errors(failed)
        }
        if aborted_reason:
            metadata["aborted"] = True
            metadata["aborted_reason"] = aborted_reason

        return BatchReport(summary=summary, transfers=list(outcomes), metadata=metadata)

    def _analyze_errors(self, failed: List[TransferOutcome]) -> Dict[str, int]:
        """Count failures by error text prefix."""
        error_counts: Dict[str, int] = {}
        for outcome in failed:
            key = (outcome.error or "unknown").split(":")[0].strip()[:80]
            error_counts[key] = error_counts.get(key, 0) + 1
        return error_counts

    def generate_console_report(self, report: BatchReport) -> str:
        """Generate a formatted console report."""
        summary = report.summary
        symbol = summary.token_symbol or ""

        report_lines = [
            "=" * 80,
            "BATCH TRANSFER SUMMARY",
            "=" * 80,
            f"Token Contract: {summary.token_contract}",
            f"Sender Address: {summary.sender_address}",
            f"Token Symbol: {symbol or 'N/A'}",
            f"Total Recipients: {summary.total_recipients}",
            f"Successful: {summary.successful}",
            f"Failed: {summary.failed}",
        ]

        if summary.unconfirmed:
            report_lines.append(f"Unconfirmed (broadcast, receipt not observed): {summary.unconfirmed}")

        report_lines.extend([
            f"Total Amount Sent: {summary.total_amount_sent} {symbol}".rstrip(),
            f"Total Gas Cost: {summary.total_gas_cost}",
            f"Processing Time: {summary.processing_time_ms / 1000:.2f}s",
            f"Network: {report.metadata.get('network')}",
            f"Dry Run: {'Yes' if report.metadata.get('dry_run') else 'No'}",
        ])

        if report.metadata.get("aborted"):
            report_lines.append(f"ABORTED: {report.metadata.get('aborted_reason')}")

        failed = report.failed
        if failed:
            report_lines.extend(["", "FAILED TRANSFERS:"])
            for index, outcome in enumerate(failed, 1):
                report_lines.append(f"  {index}. {outcome.recipient} - {outcome.amount} {symbol}".rstrip())
                report_lines.append(f"     Error: {outcome.error} (attempts: {outcome.attempts})")

        report_lines.append("=" * 80)
        return "\n".join(report_lines)

    def generate_detailed_log(self, report: BatchReport) -> str:
        """One block per transfer, in execution order."""
        symbol = report.summary.token_symbol or ""
        lines = ["DETAILED TRANSACTION LOG", "=" * 80]

        for index, outcome in enumerate(report.transfers, 1):
            status = "OK" if outcome.is_successful else "FAILED"
            lines.append(f"{index}. [{status}] {outcome.recipient}")
            lines.append(f"   Amount: {outcome.amount} {symbol}".rstrip())

            if outcome.is_successful:
                lines.append(f"   TX Hash: {outcome.tx_hash}")
                lines.append(f"   Block: {outcome.block_number if outcome.block_number is not None else 'unconfirmed'}")
                lines.append(f"   Gas Used: {outcome.gas_used}")
                gas_cost = format_amount(outcome.gas_cost) if outcome.gas_cost is not None else "N/A"
                lines.append(f"   Gas Cost: {gas_cost}")
            else:
                lines.append(f"   Error: {outcome.error}")

            lines.append(f"   Attempts: {outcome.attempts}")
            lines.append(f"   Time: {outcome.timestamp}")
            lines.append("")

        return "\n".join(lines)

    def compare_reports(self, before: BatchReport, after: BatchReport) -> str:
        """
        Side-by-side headline numbers of two runs, typically a run and its retry.

        Differences are exact decimal values, signed with "+" when the
        second run is higher.
        """
        metrics = [
            ("Total Recipients", before.summary.total_recipients, after.summary.total_recipients),
            ("Successful", before.summary.successful, after.summary.successful),
            ("Failed", before.summary.failed, after.summary.failed),
            ("Total Amount", before.summary.total_amount_sent, after.summary.total_amount_sent),
            ("Gas Cost", before.summary.total_gas_cost, after.summary.total_gas_cost),
        ]

        lines = ["BATCH REPORT COMPARISON", "=" * 80]
        for name, first, second in metrics:
            diff = Decimal(str(second)) - Decimal(str(first))
            diff_text = f"+{format_amount(diff)}" if diff > 0 else format_amount(diff)
            lines.append(f"{name}: {first} -> {second} ({diff_text})")
        lines.append("=" * 80)

        return "\n".join(lines)

    def _filename_suffix(self, report: BatchReport) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{report.summary.token_contract[:8]}_{timestamp}"

    def save_report(self, report: BatchReport, format: str = "json", filename: Optional[str] = None) -> str:
        """Save the full report to file."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        format = format.lower()
        filepath = self.output_dir / (filename or f"batch_transfer_report_{self._filename_suffix(report)}.{format}")

        if format == "json":
            with open(filepath, "w") as f:
                json.dump(report.to_dict(), f, indent=2, default=str)

        elif format == "yaml":
            with open(filepath, "w") as f:
                yaml.safe_dump(report.to_dict(), f, default_flow_style=False, sort_keys=False)

        else:
            raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Batch report saved: {filepath}")
        return str(filepath)

    def save_failed_transfers(self, report: BatchReport, filename: Optional[str] = None) -> Optional[str]:
        """
        Save failed transfers in recipient-list format.

        Returns:
            Path of the written file, or None when nothing failed
        """
        failed = report.failed
        if not failed:
            logger.info("No failed transfers to save")
            return None

        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / (filename or f"failed_transfers_{self._filename_suffix(report)}.json")

        recipients = [{"address": o.recipient, "amount": o.amount} for o in failed]
        with open(filepath, "w") as f:
            json.dump(recipients, f, indent=2)

        logger.info(f"Failed transfers saved for retry: {filepath}")
        return str(filepath)

    def generate_retry_script(self, report: BatchReport, failed_transfers_path: str) -> str:
        """Shell script that re-runs the failed transfers of a report."""
        count = len(report.failed)
        if not count:
            return ""

        generated = datetime.now(timezone.utc).isoformat()
        return (
            "#!/bin/bash\n"
            "# Retry script for failed transfers\n"
            f"# Generated on {generated}\n"
            "\n"
            f"echo \"Retrying {count} failed transfers...\"\n"
            "\n"
            "evm-toolkit batch-send \\\n"
            f"  --token {report.summary.token_contract} \\\n"
            f"  --recipients {shlex.quote(failed_transfers_path)}\n"
            "\n"
            "echo \"Retry completed\"\n"
        )

    def save_retry_script(self, report: BatchReport, failed_transfers_path: str) -> Optional[str]:
        """
        Write an executable retry script next to the failed-transfers file.

        Returns:
            Path of the script, or None when nothing failed
        """
        content = self.generate_retry_script(report, failed_transfers_path)
        if not content:
            return None

        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / f"retry_failed_{self._filename_suffix(report)}.sh"
        filepath.write_text(content)
        filepath.chmod(0o755)

        logger.info(f"Retry script saved: {filepath}")
        return str(filepath)

    def save_all(self, report: BatchReport, format: str = "json") -> Dict[str, Optional[str]]:
        """
        Write the report and the failed-transfers file independently.

        A failure writing one file is logged and does not prevent the other.
        When a failed-transfers file was written, a retry script pointing at
        it is written too.
        """
        paths: Dict[str, Optional[str]] = {"report": None, "failed_transfers": None, "retry_script": None}

        try:
            paths["report"] = self.save_report(report, format=format)
        except Exception as e:
            logger.error(f"Failed to save batch report: {e}")

        try:
            paths["failed_transfers"] = self.save_failed_transfers(report)
        except Exception as e:
            logger.error(f"Failed to save failed transfers: {e}")

        if paths["failed_transfers"]:
            try:
                paths["retry_script"] = self.save_retry_script(report, paths["failed_transfers"])
            except Exception as e:
                logger.error(f"Failed to save retry script: {e}")

        return paths

    def load_report(self, filepath: str) -> BatchReport:
        """Load a previously saved JSON or YAML report."""
        path = Path(filepath)
        try:
            with open(path, "r") as f:
                if path.suffix.lower() in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
            return BatchReport.from_dict(data)
        except Exception as e:
            logger.error(f"Failed to load batch report {filepath}: {e}")
            raise ValueError(f"Failed to load batch report: {e}") from e
