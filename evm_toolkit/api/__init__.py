from evm_toolkit.api.explorer_client import (
    ExplorerClient,
    ExplorerClientError,
    ExplorerTimeoutError,
    ExplorerBadResponseError,
    ExplorerApiError,
)
