"""
In-memory stand-ins for chain access.
"""

from evm_toolkit.chain.models import FeeData, TokenInfo, TransferReceipt

TOKEN = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
SENDER = "0x9999999999999999999999999999999999999999"
ALICE = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
BOB = "0x1111111111111111111111111111111111111111"
CAROL = "0x2222222222222222222222222222222222222222"

GWEI = 10 ** 9


class FakeGateway:
    """ERC20Gateway stand-in that records broadcasts instead of sending them."""

    def __init__(
        self,
        decimals=6,
        token_balance=10 ** 12,
        native_balance=10 ** 20,
        gas_estimate=50_000,
        gas_price=30 * GWEI,
        start_nonce=7
    ):
        self.token_address = TOKEN
        self.sender_address = SENDER
        self.info = TokenInfo(address=TOKEN, symbol="USDC", name="USD Coin", decimals=decimals, total_supply="0")
        self.token_balance = token_balance
        self.native_balance = native_balance
        self.gas_estimate = gas_estimate
        self.gas_price = gas_price
        self.nonce = start_nonce

        self.sent = []                # (to, amount_units, nonce)
        self.send_failures = {}       # address -> exception raised on every send
        self.receipt_failures = {}    # address -> exception raised on every receipt wait
        self.nonce_failures = []      # exceptions raised by successive nonce lookups
        self.nonce_lookups = 0
        self._hash_to_address = {}

    async def get_token_info(self):
        return self.info

    async def estimate_transfer_gas(self, to, amount_units):
        return self.gas_estimate

    async def get_fee_data(self):
        return FeeData(gas_price=self.gas_price)

    async def get_native_balance(self):
        return self.native_balance

    async def get_token_balance(self):
        return self.token_balance

    async def get_transaction_count(self, block_identifier="pending"):
        self.nonce_lookups += 1
        if self.nonce_failures:
            raise self.nonce_failures.pop(0)
        return self.nonce

    async def send_transfer(self, to, amount_units, nonce, gas_limit, gas_price):
        if to in self.send_failures:
            raise self.send_failures[to]

        self.sent.append((to, amount_units, nonce))
        self.nonce = max(self.nonce, nonce + 1)
        tx_hash = "0x" + f"{len(self.sent):064x}"
        self._hash_to_address[tx_hash] = to
        return tx_hash

    async def wait_for_receipt(self, tx_hash, timeout=120):
        to = self._hash_to_address[tx_hash]
        if to in self.receipt_failures:
            raise self.receipt_failures[to]
        return TransferReceipt(tx_hash=tx_hash, block_number=1000 + len(self.sent), gas_used=45_000,
                               effective_gas_price=self.gas_price)


