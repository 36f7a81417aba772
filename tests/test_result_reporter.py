"""
Tests for report assembly and persistence.
"""

import json
import os
from decimal import Decimal

from evm_toolkit.batch.recipients import Recipient, load_recipients_from_json
from evm_toolkit.batch.result_reporter import ReportAssembler
from evm_toolkit.batch.transfer_executor import TransferOutcome, TransferStatus
from evm_toolkit.chain.models import TokenInfo

from tests.fakes import ALICE, BOB, CAROL, SENDER, TOKEN

TOKEN_INFO = TokenInfo(address=TOKEN, symbol="USDC", name="USD Coin", decimals=6, total_supply="0")


def outcomes():
    return [
        TransferOutcome(recipient=ALICE, amount="1.25", status=TransferStatus.SUCCESS, tx_hash="0x01",
                        block_number=10, gas_used=45_000, gas_cost=Decimal("0.00135"), nonce=1, confirmed=True),
        TransferOutcome(recipient=BOB, amount="0.000001", status=TransferStatus.FAILED,
                        error="Broadcast failed: insufficient funds for gas", attempts=3, nonce=2),
        TransferOutcome(recipient=CAROL, amount="2", status=TransferStatus.SUCCESS, tx_hash="0x02",
                        gas_used=54_000, gas_cost=Decimal("0.00162"), nonce=2, confirmed=False),
    ]


def build(tmp_path, **kwargs):
    assembler = ReportAssembler(str(tmp_path))
    return assembler, assembler.build_report(outcomes(), TOKEN, SENDER, token_info=TOKEN_INFO, **kwargs)


def test_summary_totals(tmp_path):
    _, report = build(tmp_path)
    summary = report.summary

    assert summary.total_recipients == 3
    assert summary.successful == 2
    assert summary.failed == 1
    assert summary.unconfirmed == 1
    assert summary.total_amount_sent == "3.25"
    assert summary.total_gas_cost == "0.00297"
    assert report.metadata["average_gas_per_transfer"] == "49500"
    assert report.metadata["error_breakdown"] == {"Broadcast failed": 1}


def test_failed_file_feeds_back_as_recipient_input(tmp_path):
    assembler, report = build(tmp_path)

    path = assembler.save_failed_transfers(report)

    assert path is not None
    assert "failed_transfers_" + TOKEN[:8] in path
    assert load_recipients_from_json(path) == [Recipient(address=BOB, amount="0.000001")]


def test_no_failed_file_when_everything_succeeded(tmp_path):
    assembler = ReportAssembler(str(tmp_path))
    report = assembler.build_report(outcomes()[:1], TOKEN, SENDER)

    assert assembler.save_failed_transfers(report) is None
    assert list(tmp_path.iterdir()) == []


def test_json_report_round_trip(tmp_path):
    assembler, report = build(tmp_path, dry_run=True, network="amoy")

    path = assembler.save_report(report)
    with open(path) as f:
        saved = json.load(f)

    assert saved["summary"]["successful"] == 2
    assert saved["transfers"][0]["status"] == "success"
    assert saved["transfers"][0]["gas_cost"] == "0.00135"
    assert len(saved["failed"]) == 1

    loaded = assembler.load_report(path)
    assert loaded.summary == report.summary
    assert loaded.transfers == report.transfers
    assert loaded.metadata["network"] == "amoy"


def test_yaml_report_round_trip(tmp_path):
    assembler, report = build(tmp_path)

    path = assembler.save_report(report, format="yaml")

    assert path.endswith(".yaml")
    assert assembler.load_report(path).transfers == report.transfers


def test_save_all_writes_failed_file_when_report_write_fails(tmp_path, monkeypatch):
    assembler, report = build(tmp_path)

    def broken(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(assembler, "save_report", broken)

    paths = assembler.save_all(report)

    assert paths["report"] is None
    assert paths["failed_transfers"] is not None
    assert load_recipients_from_json(paths["failed_transfers"])[0].address == BOB


def test_aborted_run_is_flagged(tmp_path):
    assembler, report = build(tmp_path, aborted_reason="Nonce lookup failed")

    console = assembler.generate_console_report(report)

    assert report.metadata["aborted"] is True
    assert "ABORTED: Nonce lookup failed" in console
    assert "FAILED TRANSFERS:" in console
    assert BOB in console


def test_detailed_log_lists_every_transfer(tmp_path):
    assembler, report = build(tmp_path)

    log = assembler.generate_detailed_log(report)

    assert "1. [OK] " + ALICE in log
    assert "TX Hash: 0x01" in log
    assert "Block: 10" in log
    assert "Gas Cost: 0.00135" in log
    assert "2. [FAILED] " + BOB in log
    assert "Error: Broadcast failed: insufficient funds for gas" in log
    assert "Attempts: 3" in log
    # CAROL was broadcast but never observed in a block
    assert "Block: unconfirmed" in log


def test_compare_reports_shows_signed_differences(tmp_path):
    assembler, first = build(tmp_path)
    retry_outcome = TransferOutcome(recipient=BOB, amount="0.000001", status=TransferStatus.SUCCESS,
                                    tx_hash="0x03", block_number=12, gas_used=45_000,
                                    gas_cost=Decimal("0.00135"), nonce=3, confirmed=True)
    second = assembler.build_report([retry_outcome], TOKEN, SENDER, token_info=TOKEN_INFO)

    comparison = assembler.compare_reports(first, second)

    assert "Total Recipients: 3 -> 1 (-2)" in comparison
    assert "Successful: 2 -> 1 (-1)" in comparison
    assert "Failed: 1 -> 0 (-1)" in comparison
    assert "Total Amount: 3.25 -> 0.000001 (-3.249999)" in comparison
    assert "Gas Cost: 0.00297 -> 0.00135 (-0.00162)" in comparison


def test_compare_reports_marks_increase_and_no_change(tmp_path):
    assembler, report = build(tmp_path)

    comparison = assembler.compare_reports(
        assembler.build_report([], TOKEN, SENDER), report
    )

    assert "Successful: 0 -> 2 (+2)" in comparison
    assert "Total Amount: 0 -> 3.25 (+3.25)" in comparison
    assert "Failed: 0 -> 1 (+1)" in comparison
    assert "Successful: 2 -> 2 (0)" in assembler.compare_reports(report, report)


def test_save_all_writes_executable_retry_script(tmp_path):
    assembler, report = build(tmp_path)

    paths = assembler.save_all(report)

    script = paths["retry_script"]
    assert script is not None
    assert os.access(script, os.X_OK)
    with open(script) as f:
        content = f.read()
    assert content.startswith("#!/bin/bash")
    assert f"--token {TOKEN}" in content
    assert f"--recipients {paths['failed_transfers']}" in content
    assert "Retrying 1 failed transfers" in content


def test_no_retry_script_without_failures(tmp_path):
    assembler = ReportAssembler(str(tmp_path))
    report = assembler.build_report(outcomes()[:1], TOKEN, SENDER)

    paths = assembler.save_all(report)

    assert paths["failed_transfers"] is None
    assert paths["retry_script"] is None
    assert assembler.generate_retry_script(report, "unused.json") == ""
