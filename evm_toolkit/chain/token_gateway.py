"""
ERC-20 gateway over a JSON-RPC provider.

Wraps the handful of chain capabilities the batch sender needs: token
metadata, balances, gas and fee estimation, pending nonce, and
build/sign/broadcast/confirm of a single transfer. web3 calls are blocking,
so each one runs in a worker thread.
"""

import asyncio
from typing import Any, Callable, Optional, TypeVar

from eth_account import Account
from loguru import logger
from web3 import Web3
from web3.exceptions import TimeExhausted

from evm_toolkit.chain.models import FeeData, TokenInfo, TransferReceipt

T = TypeVar("T")

ERC20_ABI = [
    {
        "constant": False,
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}], "type": "function"},
    {"constant": True, "inputs": [], "name": "symbol", "outputs": [{"name": "", "type": "string"}], "type": "function"},
    {"constant": True, "inputs": [], "name": "name", "outputs": [{"name": "", "type": "string"}], "type": "function"},
    {"constant": True, "inputs": [], "name": "totalSupply", "outputs": [{"name": "", "type": "uint256"}], "type": "function"},
]


class GatewayError(Exception):
    """Base exception for chain gateway failures."""
    pass


class TransactionRevertedError(GatewayError):
    """Raised when a transfer was mined with a failed status."""

    def __init__(self, tx_hash: str, block_number: Optional[int] = None):
        self.tx_hash = tx_hash
        self.block_number = block_number
        super().__init__(f"Transaction {tx_hash} reverted in block {block_number}")


class ERC20Gateway:
    """Chain access for one sender account and one ERC-20 token."""

    def __init__(self, rpc_url: str, private_key: str, token_address: str, timeout: int = 30):
        """
        Initialize the gateway.

        Args:
            rpc_url: JSON-RPC endpoint
            private_key: Sender private key (hex)
            token_address: ERC-20 contract address
            timeout: HTTP timeout in seconds for RPC calls
        """
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.account = Account.from_key(private_key)
        self.token_address = Web3.to_checksum_address(token_address)
        self.contract = self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI)

        self._token_info: Optional[TokenInfo] = None
        self._chain_id: Optional[int] = None

    @property
    def sender_address(self) -> str:
        return self.account.address

    async def _call(self, description: str, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking web3 call in a thread, wrapping failures in GatewayError."""
        try:
            return await asyncio.to_thread(func, *args)
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"{description} failed: {e}") from e

    async def get_token_info(self) -> TokenInfo:
        """Read token metadata once and cache it."""
        if self._token_info is not None:
            return self._token_info

        def read():
            functions = self.contract.functions
            return TokenInfo(
                address=self.token_address,
                symbol=functions.symbol().call(),
                name=functions.name().call(),
                decimals=int(functions.decimals().call()),
                total_supply=str(functions.totalSupply().call())
            )

        self._token_info = await self._call("Reading token info", read)
        logger.debug(f"Token info: {self._token_info.symbol} ({self._token_info.decimals} decimals)")
        return self._token_info

    async def estimate_transfer_gas(self, to: str, amount_units: int) -> int:
        """Gas estimate for one transfer, before any multiplier."""
        def estimate():
            transfer = self.contract.functions.transfer(Web3.to_checksum_address(to), amount_units)
            return transfer.estimate_gas({"from": self.sender_address})

        return await self._call("Gas estimation", estimate)

    async def get_fee_data(self) -> FeeData:
        def read():
            gas_price = self.w3.eth.gas_price
            try:
                priority = self.w3.eth.max_priority_fee
            except Exception as e:
                # Legacy-only providers do not expose eth_maxPriorityFeePerGas
                logger.debug(f"max_priority_fee unavailable: {e}")
                priority = None

            base_fee = self.w3.eth.get_block("latest").get("baseFeePerGas")
            max_fee = base_fee * 2 + priority if base_fee is not None and priority is not None else None
            return FeeData(gas_price=gas_price, max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority)

        return await self._call("Fee data lookup", read)

    async def get_native_balance(self) -> int:
        return await self._call("Native balance lookup", self.w3.eth.get_balance, self.sender_address)

    async def get_token_balance(self) -> int:
        def read():
            return self.contract.functions.balanceOf(self.sender_address).call()

        return await self._call("Token balance lookup", read)

    async def get_transaction_count(self, block_identifier: str = "pending") -> int:
        """Next nonce for the sender, counting pending transactions by default."""
        return await self._call(
            "Nonce lookup",
            self.w3.eth.get_transaction_count,
            self.sender_address,
            block_identifier
        )

    async def send_transfer(
        self,
        to: str,
        amount_units: int,
        nonce: int,
        gas_limit: int,
        gas_price: int
    ) -> str:
        """
        Build, sign and broadcast one transfer with an explicit nonce.

        Returns:
            The transaction hash (0x-prefixed hex)
        """
        def send():
            if self._chain_id is None:
                self._chain_id = self.w3.eth.chain_id

            tx = self.contract.functions.transfer(Web3.to_checksum_address(to), amount_units).build_transaction({
                "from": self.sender_address,
                "nonce": nonce,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "chainId": self._chain_id,
            })
            signed = self.account.sign_transaction(tx)
            return Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))

        tx_hash = await self._call("Broadcast", send)
        logger.debug(f"Broadcast transfer to {to} with nonce {nonce}: {tx_hash}")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> TransferReceipt:
        """
        Wait for a transfer to be mined.

        Raises:
            TransactionRevertedError: If the transaction was mined but failed
            GatewayError: On timeout or provider errors
        """
        def wait():
            try:
                receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=2)
            except TimeExhausted as e:
                raise GatewayError(f"Timed out after {timeout}s waiting for receipt of {tx_hash}") from e

            if receipt["status"] != 1:
                raise TransactionRevertedError(tx_hash, receipt.get("blockNumber"))

            return TransferReceipt(
                tx_hash=tx_hash,
                block_number=receipt["blockNumber"],
                gas_used=receipt["gasUsed"],
                effective_gas_price=receipt.get("effectiveGasPrice")
            )

        return await self._call("Receipt wait", wait)
