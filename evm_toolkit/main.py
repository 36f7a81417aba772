#!/usr/bin/env python
"""
Command line entry point.

Subcommands:
  filter      Fetch and filter a wallet's activity for a date window
  batch-send  Send an ERC-20 token to a list of recipients
"""

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import replace
from datetime import datetime, timezone

from loguru import logger

from evm_toolkit.api.explorer_client import ExplorerClient
from evm_toolkit.batch.batch_config import BatchPolicy, ConfigurationManager, ToolkitConfiguration
from evm_toolkit.batch.batch_transfer_engine import (
    BatchExecutionAborted,
    BatchTransferEngine,
    InsufficientBalanceError,
)
from evm_toolkit.batch.recipients import RecipientValidationError, load_recipients_from_json
from evm_toolkit.batch.result_reporter import ReportAssembler
from evm_toolkit.chain.token_gateway import ERC20Gateway
from evm_toolkit.config import LOG_LEVEL, OUTPUT_DIR, PRIVATE_KEY, RPC_URL
from evm_toolkit.filtering.models import FilterCriteria
from evm_toolkit.filtering.output_manager import OutputManager
from evm_toolkit.filtering.transaction_filter import TransactionFilterEngine


def setup_logging(level: str = LOG_LEVEL):
    """Configure structured logging with loguru."""
    logger.remove()
    logger.add(
        "logs/evm_toolkit_{time}.log",
        rotation="1 day",
        retention="14 days",
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}",
        serialize=True,
    )

    logger.add(
        sys.stdout,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
    )

    # web3 and urllib3 log through the standard library
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def parse_date(text: str) -> datetime:
    """Parse an ISO date or datetime; naive values are taken as UTC."""
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {text!r} (expected YYYY-MM-DD or ISO datetime)")
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def parse_end_date(text: str) -> datetime:
    """Like parse_date, but a bare YYYY-MM-DD covers the whole day."""
    value = parse_date(text)
    if "T" not in text and " " not in text.strip():
        value = value.replace(hour=23, minute=59, second=59)
    return value


def positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def create_cli_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="evm-toolkit",
        description="EVM wallet activity filter and batch ERC-20 sender",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Wallet activity for January, including NFT transfers
  evm-toolkit filter 0xabc... --start 2024-01-01 --end 2024-01-31 --erc721 --erc1155

  # Simulate a batch transfer
  evm-toolkit batch-send --token 0xdef... --recipients recipients.json --dry-run

  # Retry only the failures of a previous run
  evm-toolkit batch-send --token 0xdef... --recipients output/failed_transfers_0xdef123_20240101_120000.json

  # Compare a run with its retry
  evm-toolkit compare output/batch_transfer_report_A.json output/batch_transfer_report_B.json
        """
    )
    parser.add_argument("--config", type=str, help="Policy file (JSON or YAML) with retry/scheduler/batch sections")
    parser.add_argument("--output-dir", type=str, default=OUTPUT_DIR, help="Directory for result files")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default=LOG_LEVEL, help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    filter_parser = subparsers.add_parser("filter", help="Filter wallet activity by date window")
    filter_parser.add_argument("address", type=str, help="Wallet address")
    filter_parser.add_argument("--start", type=parse_date, required=True, help="Window start (inclusive)")
    filter_parser.add_argument("--end", type=parse_end_date, required=True, help="Window end (inclusive; a bare date covers the whole day)")
    filter_parser.add_argument("--no-internal", action="store_true", help="Skip internal transactions")
    filter_parser.add_argument("--no-tokens", action="store_true", help="Skip ERC-20 transfers")
    filter_parser.add_argument("--erc721", action="store_true", help="Include ERC-721 transfers")
    filter_parser.add_argument("--erc1155", action="store_true", help="Include ERC-1155 transfers")
    direction = filter_parser.add_mutually_exclusive_group()
    direction.add_argument("--incoming-only", action="store_true", help="Only records received by the wallet")
    direction.add_argument("--outgoing-only", action="store_true", help="Only records sent by the wallet")
    filter_parser.add_argument("--summary", action="store_true", help="Also write summary and wallet reports")

    send_parser = subparsers.add_parser("batch-send", help="Send an ERC-20 token to many recipients")
    send_parser.add_argument("--token", type=str, required=True, help="ERC-20 contract address")
    send_parser.add_argument("--recipients", type=str, required=True, help="JSON file of {address, amount} entries")
    send_parser.add_argument("--rpc-url", type=str, default=RPC_URL, help="JSON-RPC endpoint")
    send_parser.add_argument("--dry-run", action="store_true", help="Simulate without broadcasting")
    send_parser.add_argument("--report-format", choices=["json", "yaml"], default="json", help="Report output format")
    send_parser.add_argument("--batch-size", type=positive_int, help="Override transfers per batch")
    send_parser.add_argument("--max-retries", type=positive_int, help="Override attempts per transfer")
    send_parser.add_argument("--gas-multiplier", type=float, help="Override gas estimate multiplier (>= 1.0)")
    send_parser.add_argument("--detailed-log", action="store_true", help="Print every transfer after the summary")

    compare_parser = subparsers.add_parser("compare", help="Compare two saved batch reports")
    compare_parser.add_argument("before", type=str, help="First report (JSON or YAML)")
    compare_parser.add_argument("after", type=str, help="Second report, e.g. the retry run")

    return parser


async def run_filter(args, config: ToolkitConfiguration) -> int:
    criteria = FilterCriteria(
        address=args.address,
        start_date=args.start,
        end_date=args.end,
        include_internal=not args.no_internal,
        include_token_transfers=not args.no_tokens,
        include_erc721=args.erc721,
        include_erc1155=args.erc1155,
        incoming_only=args.incoming_only,
        outgoing_only=args.outgoing_only
    )

    client = ExplorerClient(retry_policy=config.retry, scheduler_policy=config.scheduler)
    try:
        engine = TransactionFilterEngine(client)
        result = await engine.filter_transactions(criteria)
    finally:
        client.destroy()

    output = OutputManager(args.output_dir)
    output.save_results(result)
    if args.summary:
        output.save_summary_report(result)
        output.save_wallet_summary_report(result)

    print(f"\nFound {result.summary.total_transactions} transactions and "
          f"{result.summary.total_token_transfers} token transfers "
          f"({result.metadata.api_calls} API calls)")
    return 0


def apply_batch_overrides(policy: BatchPolicy, args) -> BatchPolicy:
    """Command line values win over the policy file; BatchPolicy re-validates them."""
    overrides = {}
    if args.dry_run:
        overrides["dry_run"] = True
    if args.batch_size is not None:
        overrides["batch_size"] = args.batch_size
    if args.max_retries is not None:
        overrides["max_retries"] = args.max_retries
    if args.gas_multiplier is not None:
        overrides["gas_multiplier"] = args.gas_multiplier

    if overrides:
        logger.info(f"Batch policy overrides: {overrides}")
        return replace(policy, **overrides)
    return policy


async def run_batch_send(args, config: ToolkitConfiguration) -> int:
    if not PRIVATE_KEY:
        logger.error("PRIVATE_KEY is not set")
        return 1

    batch_policy = apply_batch_overrides(config.batch, args)

    recipients = load_recipients_from_json(args.recipients)

    gateway = ERC20Gateway(args.rpc_url, PRIVATE_KEY, args.token)
    reporter = ReportAssembler(args.output_dir)
    engine = BatchTransferEngine(gateway, batch_policy, reporter)

    start_time = time.time()
    try:
        report = await engine.execute_batch(recipients)
    except BatchExecutionAborted as e:
        report = engine.build_partial_report(e, start_time)
        print_batch_report(reporter, report, args.detailed_log)
        reporter.save_all(report, format=args.report_format)
        return 1

    print_batch_report(reporter, report, args.detailed_log)
    reporter.save_all(report, format=args.report_format)
    return 0 if not report.failed else 2


def print_batch_report(reporter: ReportAssembler, report, detailed: bool) -> None:
    print(reporter.generate_console_report(report))
    if detailed:
        print(reporter.generate_detailed_log(report))


def run_compare(args) -> int:
    reporter = ReportAssembler(args.output_dir)
    before = reporter.load_report(args.before)
    after = reporter.load_report(args.after)
    print(reporter.compare_reports(before, after))
    return 0


async def main():
    """Main entry point."""
    parser = create_cli_parser()
    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        config = ConfigurationManager().load_config(args.config) if args.config else ToolkitConfiguration()

        if args.command == "filter":
            return await run_filter(args, config)
        if args.command == "compare":
            return run_compare(args)
        return await run_batch_send(args, config)

    except (RecipientValidationError, InsufficientBalanceError) as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        print("\nExecution interrupted by user")
        return 1
    except Exception as e:
        logger.exception(f"Command failed: {e}")
        return 1


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
