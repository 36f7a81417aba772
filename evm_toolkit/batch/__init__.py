"""
Batch ERC-20 transfers from one sender to many recipients.
"""

from evm_toolkit.batch.batch_config import BatchPolicy, ConfigurationManager, ToolkitConfiguration
from evm_toolkit.batch.recipients import (
    Recipient,
    RecipientValidationError,
    load_recipients_from_json,
    normalize_recipient,
    validate_recipients,
)
from evm_toolkit.batch.transfer_executor import DRY_RUN_TX_HASH, TransferExecutor, TransferOutcome, TransferStatus
from evm_toolkit.batch.result_reporter import BatchReport, BatchSummary, ReportAssembler
from evm_toolkit.batch.batch_transfer_engine import (
    BatchExecutionAborted,
    BatchTransferEngine,
    InsufficientBalanceError,
)
