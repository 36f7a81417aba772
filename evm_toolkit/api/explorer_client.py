import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests
from loguru import logger

from evm_toolkit.config import EXPLORER_API_KEY, EXPLORER_BASE_URL, EXPLORER_CHAIN_ID
from evm_toolkit.utils.request_queue import RequestScheduler, SchedulerPolicy
from evm_toolkit.utils.retry import RetryExecutor, RetryPolicy

# Explorer status "0" messages that mean "no data" rather than failure
NO_DATA_MESSAGES = {
    "No transactions found",
    "No records found",
    "No token transfers found",
    "OK",
}

DEFAULT_START_BLOCK = 0
DEFAULT_END_BLOCK = 99999999
DEFAULT_PAGE_SIZE = 10000


class ExplorerClientError(Exception):
    """Base exception for explorer client errors."""
    pass


class ExplorerTimeoutError(ExplorerClientError):
    """Exception raised when an explorer request times out."""
    pass


class ExplorerBadResponseError(ExplorerClientError):
    """Exception raised when the explorer returns a non-200 status code."""
    pass


class ExplorerApiError(ExplorerClientError):
    """Exception raised when the explorer envelope reports an error."""

    def __init__(self, message: str, result: Any = None):
        self.api_message = message
        self.result = result
        super().__init__(f"API Error: {message}")


class ExplorerClient:
    """
    Client for Etherscan-family block explorer APIs.

    Every query goes through the request scheduler (rate and concurrency
    limits) and, inside its slot, through the retry executor.
    """

    def __init__(
        self,
        api_key: Optional[str] = EXPLORER_API_KEY,
        base_url: str = EXPLORER_BASE_URL,
        chain_id: int = EXPLORER_CHAIN_ID,
        timeout: int = 30,
        retry_policy: Optional[RetryPolicy] = None,
        scheduler_policy: Optional[SchedulerPolicy] = None
    ):
        """
        Initialize the explorer client.

        Args:
            api_key: Explorer API key
            base_url: Explorer API endpoint
            chain_id: Chain id sent with every query
            timeout: Request timeout in seconds
            retry_policy: Retry policy for each logical call
            scheduler_policy: Rate and concurrency limits
        """
        self.api_key = api_key
        self.base_url = base_url
        self.chain_id = chain_id
        self.timeout = timeout
        self.session = requests.Session()
        self.retry = RetryExecutor(retry_policy)
        self.scheduler = RequestScheduler(scheduler_policy)
        self._api_call_count = 0

    def _make_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make one HTTP round-trip to the explorer.

        Args:
            params: Query parameters (module, action and action arguments)

        Returns:
            The decoded JSON envelope

        Raises:
            ExplorerTimeoutError: If the request times out
            ExplorerBadResponseError: If the explorer returns a non-200 status code
            ExplorerClientError: For other transport or decoding failures
        """
        query = {**params, "chainid": self.chain_id, "apikey": self.api_key}
        action = params.get("action")
        start_time = time.time()

        try:
            logger.debug(
                f"Making explorer request: {params.get('module')}/{action}",
                extra={"action": action, "address": params.get("address"), "page": params.get("page")}
            )

            response = self.session.get(self.base_url, params=query, timeout=self.timeout)
            elapsed = time.time() - start_time
            self._api_call_count += 1

            logger.debug(
                f"Received response for {action} in {elapsed:.2f}s",
                extra={"status_code": response.status_code, "elapsed_time": elapsed, "action": action}
            )

            if response.status_code == 403:
                raise ExplorerBadResponseError("Invalid API key or rate limit exceeded")

            if response.status_code != 200:
                raise ExplorerBadResponseError(f"Explorer returned {response.status_code}: {response.text[:200]}")

            try:
                return response.json()
            except ValueError as e:
                raise ExplorerClientError(f"Failed to parse JSON response: {str(e)}") from e

        except requests.exceptions.Timeout as e:
            logger.error(
                f"Explorer request {action} timed out after {self.timeout}s",
                extra={"action": action, "timeout": self.timeout}
            )
            raise ExplorerTimeoutError(f"Request {action} timed out") from e

        except requests.exceptions.RequestException as e:
            logger.bind(action=action).error(f"Explorer request {action} failed: {str(e)}")
            raise ExplorerClientError(f"Request failed: {str(e)}") from e

    @staticmethod
    def _unwrap(envelope: Dict[str, Any]) -> Any:
        """Apply the explorer envelope rules to a decoded response."""
        if not isinstance(envelope, dict):
            raise ExplorerApiError("Malformed response envelope", envelope)

        status = str(envelope.get("status", ""))
        message = envelope.get("message", "")
        result = envelope.get("result")

        if status == "1":
            return result

        if status == "0" and (message in NO_DATA_MESSAGES or (isinstance(result, list) and not result)):
            return []

        raise ExplorerApiError(message or f"Unexpected status {status!r}", result)

    async def _fetch(self, params: Dict[str, Any], context: str) -> Any:
        async def attempt():
            envelope = await asyncio.to_thread(self._make_request, params)
            return self._unwrap(envelope)

        async def with_retry():
            return await self.retry.execute_with_retry(attempt, context)

        return await self.scheduler.enqueue(with_retry, context)

    @staticmethod
    def _account_params(
        action: str,
        address: str,
        contract_address: Optional[str],
        start_block: int,
        end_block: int,
        page: int,
        offset: int,
        sort: str
    ) -> Dict[str, Any]:
        params = {
            "module": "account",
            "action": action,
            "address": address,
            "startblock": start_block,
            "endblock": end_block,
            "page": page,
            "offset": offset,
            "sort": sort,
        }
        if contract_address:
            params["contractaddress"] = contract_address
        return params

    async def get_transactions(
        self,
        address: str,
        start_block: int = DEFAULT_START_BLOCK,
        end_block: int = DEFAULT_END_BLOCK,
        page: int = 1,
        offset: int = DEFAULT_PAGE_SIZE,
        sort: str = "desc"
    ) -> List[Dict[str, Any]]:
        """Get normal transactions for an address."""
        params = self._account_params("txlist", address, None, start_block, end_block, page, offset, sort)
        return await self._fetch(params, "get_transactions")

    async def get_internal_transactions(
        self,
        address: str,
        start_block: int = DEFAULT_START_BLOCK,
        end_block: int = DEFAULT_END_BLOCK,
        page: int = 1,
        offset: int = DEFAULT_PAGE_SIZE,
        sort: str = "desc"
    ) -> List[Dict[str, Any]]:
        """Get internal (contract-initiated) transactions for an address."""
        params = self._account_params("txlistinternal", address, None, start_block, end_block, page, offset, sort)
        return await self._fetch(params, "get_internal_transactions")

    async def get_token_transfers(
        self,
        address: str,
        contract_address: Optional[str] = None,
        start_block: int = DEFAULT_START_BLOCK,
        end_block: int = DEFAULT_END_BLOCK,
        page: int = 1,
        offset: int = DEFAULT_PAGE_SIZE,
        sort: str = "desc"
    ) -> List[Dict[str, Any]]:
        """Get ERC-20 token transfers for an address."""
        params = self._account_params("tokentx", address, contract_address, start_block, end_block, page, offset, sort)
        return await self._fetch(params, "get_token_transfers")

    async def get_erc721_transfers(
        self,
        address: str,
        contract_address: Optional[str] = None,
        start_block: int = DEFAULT_START_BLOCK,
        end_block: int = DEFAULT_END_BLOCK,
        page: int = 1,
        offset: int = DEFAULT_PAGE_SIZE,
        sort: str = "desc"
    ) -> List[Dict[str, Any]]:
        """Get ERC-721 NFT transfers for an address."""
        params = self._account_params("tokennfttx", address, contract_address, start_block, end_block, page, offset, sort)
        return await self._fetch(params, "get_erc721_transfers")

    async def get_erc1155_transfers(
        self,
        address: str,
        contract_address: Optional[str] = None,
        start_block: int = DEFAULT_START_BLOCK,
        end_block: int = DEFAULT_END_BLOCK,
        page: int = 1,
        offset: int = DEFAULT_PAGE_SIZE,
        sort: str = "desc"
    ) -> List[Dict[str, Any]]:
        """Get ERC-1155 multi-token transfers for an address."""
        params = self._account_params("token1155tx", address, contract_address, start_block, end_block, page, offset, sort)
        return await self._fetch(params, "get_erc1155_transfers")

    async def get_token_info(self, contract_address: str) -> Optional[Dict[str, Any]]:
        """
        Get token metadata for a contract.

        Returns:
            The token info record, or None when the explorer has none
        """
        params = {"module": "token", "action": "tokeninfo", "contractaddress": contract_address}
        result = await self._fetch(params, "get_token_info")

        # The explorer wraps the record in a one-element list
        if isinstance(result, list):
            return result[0] if result else None
        return result

    async def get_block_number_by_timestamp(self, timestamp: int, closest: str = "before") -> int:
        """Get the block number closest to a unix timestamp."""
        if closest not in ("before", "after"):
            raise ValueError("closest must be 'before' or 'after'")

        params = {"module": "block", "action": "getblocknobytime", "timestamp": timestamp, "closest": closest}
        result = await self._fetch(params, "get_block_number_by_timestamp")
        return int(result)

    async def paginate(
        self,
        fetch_page: Callable[..., Awaitable[List[Dict[str, Any]]]],
        address: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        **kwargs
    ) -> List[Dict[str, Any]]:
        """
        Fetch every page of a list query.

        Args:
            fetch_page: One of the list query methods of this client
            address: Wallet address
            page_size: Records per page
            **kwargs: Extra arguments passed to every page request

        Returns:
            All records, in page order
        """
        records: List[Dict[str, Any]] = []
        page = 1

        while True:
            batch = await fetch_page(address, page=page, offset=page_size, **kwargs)
            records.extend(batch)

            if len(batch) < page_size:
                break
            page += 1

        if page > 1:
            logger.debug(f"Fetched {len(records)} records over {page} pages via {fetch_page.__name__}")
        return records

    def get_api_call_count(self) -> int:
        return self._api_call_count

    def reset_api_call_count(self) -> None:
        self._api_call_count = 0

    def get_queue_status(self) -> Dict[str, Any]:
        return self.scheduler.get_status()

    async def wait_for_completion(self) -> None:
        """Wait for all queued requests to complete."""
        await self.scheduler.wait_for_completion()

    def destroy(self) -> None:
        """Stop the scheduler and close the HTTP session."""
        self.scheduler.destroy()
        self.session.close()
