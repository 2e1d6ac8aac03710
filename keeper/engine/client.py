"""
Async chain client wrapping the protocol contracts and the keeper signer.
"""

from typing import Any, Dict, Optional, Tuple

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.contract.async_contract import AsyncContractFunction
from web3.exceptions import Web3Exception
from web3.types import TxReceipt

from .config_loader import KeeperConfig
from .contracts import create_contract_instance
from .decorators import retry_read
from .exceptions import FeeEstimateUnavailable, TransactionBuildError
from .logging_config import setup_logger
from .models import RedemptionHints

logger = setup_logger()

MAX_UINT256 = 2**256 - 1

# Base fee headroom used when deriving maxFeePerGas from the latest block
BASE_FEE_MULTIPLIER_PCT = 120


class ChainClient:
    """
    Thin async facade over AsyncWeb3 for everything the engine reads or sends.

    Signing uses the local private key when one is configured. Otherwise
    transactions are handed to the unlocked account behind UNLOCKED_RPC_URL.
    """

    def __init__(self, config: KeeperConfig, w3: Optional[AsyncWeb3] = None, signer_w3: Optional[AsyncWeb3] = None):
        self.config = config
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(config.RPC_URL))
        self.signer_w3 = signer_w3
        self._private_key = config.KEEPER_PRIVATE_KEY

        if self._private_key:
            self.address: Optional[str] = self.w3.eth.account.from_key(self._private_key).address
        else:
            self.address = config.KEEPER_ADDRESS
            if self.signer_w3 is None and config.UNLOCKED_RPC_URL:
                self.signer_w3 = AsyncWeb3(AsyncHTTPProvider(config.UNLOCKED_RPC_URL))

        self.price_feed = self._contract("PRICE_FEED_ADDRESS", "PRICE_FEED_ABI_PATH")
        self.sorted_troves = self._contract("SORTED_TROVES_ADDRESS", "SORTED_TROVES_ABI_PATH")
        self.trove_manager = self._contract("TROVE_MANAGER_ADDRESS", "TROVE_MANAGER_ABI_PATH")
        self.hint_helpers = self._contract("HINT_HELPERS_ADDRESS", "HINT_HELPERS_ABI_PATH")
        self.engine = self._contract("TROVE_PILOT_ENGINE_ADDRESS", "TROVE_PILOT_ENGINE_ABI_PATH")
        self.musd = self._contract("MUSD_ADDRESS", "ERC20_ABI_PATH")

    def _contract(self, address_name: str, abi_name: str):
        address = getattr(self.config, address_name)
        if not address:
            return None
        return create_contract_instance(address, getattr(self.config, abi_name), self.w3)

    @property
    def can_sign(self) -> bool:
        return bool(self._private_key) or (self.signer_w3 is not None and bool(self.address))

    # Price feed

    @retry_read(logger)
    async def latest_round_data(self) -> Tuple[int, int, int, int, int]:
        """Returns (roundId, answer, startedAt, updatedAt, answeredInRound)."""
        return tuple(await self.price_feed.functions.latestRoundData().call())

    @retry_read(logger)
    async def fetch_price(self) -> int:
        return await self.price_feed.functions.fetchPrice().call()

    # Sorted troves / trove manager

    @retry_read(logger)
    async def get_last(self) -> str:
        return await self.sorted_troves.functions.getLast().call()

    @retry_read(logger)
    async def get_prev(self, node: str) -> str:
        return await self.sorted_troves.functions.getPrev(node).call()

    @retry_read(logger)
    async def get_current_icr(self, borrower: str, price_e18: int) -> int:
        return await self.trove_manager.functions.getCurrentICR(borrower, price_e18).call()

    @retry_read(logger)
    async def find_insert_position(self, nicr: int, prev_id: str, next_id: str) -> Tuple[str, str]:
        upper, lower = await self.sorted_troves.functions.findInsertPosition(nicr, prev_id, next_id).call()
        return upper, lower

    @retry_read(logger)
    async def get_redemption_hints(self, amount: int, price_e18: int, max_iterations: int) -> RedemptionHints:
        first_hint, partial_nicr, truncated = await self.hint_helpers.functions.getRedemptionHints(
            amount, price_e18, max_iterations
        ).call()
        return RedemptionHints(first_hint=first_hint, partial_nicr=partial_nicr, truncated_amount=truncated)

    # Stable asset

    @retry_read(logger)
    async def musd_allowance(self, owner: str, spender: str) -> int:
        return await self.musd.functions.allowance(owner, spender).call()

    @retry_read(logger)
    async def musd_balance(self, account: str) -> int:
        return await self.musd.functions.balanceOf(account).call()

    # Fees and balances

    async def estimate_fees_per_gas(self) -> Tuple[int, Optional[int]]:
        """
        Dynamic fee estimate from the latest block.

        Returns:
            (max_fee_per_gas, max_priority_fee_per_gas). The priority fee is
            None when the node does not report one.

        Raises:
            FeeEstimateUnavailable: if the chain does not expose a base fee.
        """
        block = await self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            raise FeeEstimateUnavailable("latest block has no baseFeePerGas")

        priority_fee: Optional[int]
        try:
            priority_fee = await self.w3.eth.max_priority_fee
        except (Web3Exception, ValueError) as e:
            logger.debug("eth_maxPriorityFeePerGas unavailable: %s", e)
            priority_fee = None

        max_fee = base_fee * BASE_FEE_MULTIPLIER_PCT // 100 + (priority_fee or 0)
        return max_fee, priority_fee

    async def get_gas_price(self) -> int:
        return await self.w3.eth.gas_price

    @retry_read(logger)
    async def get_balance(self, account: Optional[str] = None) -> int:
        return await self.w3.eth.get_balance(account or self.address)

    # Transactions

    async def estimate_gas(self, fn: AsyncContractFunction) -> int:
        params: Dict[str, Any] = {"from": self.address} if self.address else {}
        return await fn.estimate_gas(params)

    async def send_transaction(self, fn: AsyncContractFunction, gas: int, fee_fields: Dict[str, int]) -> str:
        """
        Build, sign and broadcast a contract call.

        Args:
            fn: Bound contract function.
            gas: Gas limit.
            fee_fields: maxFeePerGas/maxPriorityFeePerGas or gasPrice.

        Returns:
            Transaction hash as a 0x-prefixed hex string.
        """
        if not self.can_sign:
            raise TransactionBuildError("No signer configured for keeper transactions")

        tx_params: Dict[str, Any] = {"from": self.address, "gas": gas, **fee_fields}

        if self._private_key:
            tx_params["nonce"] = await self.w3.eth.get_transaction_count(self.address, "pending")
            tx = await fn.build_transaction(tx_params)
            signed_tx = self.w3.eth.account.sign_transaction(tx, self._private_key)
            tx_hash = await self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        else:
            tx = await fn.build_transaction(tx_params)
            tx_hash = await self.signer_w3.eth.send_transaction(tx)

        return AsyncWeb3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        return await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.config.RECEIPT_TIMEOUT_SECONDS)


def build_client(config: KeeperConfig) -> ChainClient:
    """Create the chain client for a loaded config."""
    client = ChainClient(config)
    logger.info(
        "Chain client ready for %s (chain %s), keeper=%s, signer=%s",
        config.CHAIN_NAME, config.CHAIN_ID, client.address, "yes" if client.can_sign else "no",
    )
    return client
