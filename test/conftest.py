import logging
import time
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from keeper.engine.config_loader import KeeperConfig, load_keeper_config
from keeper.engine.logging_config import EVENT_LOGGER_NAME, setup_event_logger
from keeper.engine.models import ZERO_ADDRESS

TEST_CHAIN_ID = 31611

# Well-known development key (Hardhat/Anvil account #0), never funded on a real chain
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
KEEPER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ENGINE = "0x6666666666666666666666666666666666666666"

PRICE_E18 = 60_000 * 10**18

TEST_ENV = {
    "MEZO_RPC_URL": "http://127.0.0.1:8545",
    "KEEPER_PRIVATE_KEY": TEST_PRIVATE_KEY,
    "DRY_RUN": "false",
    "TROVE_MANAGER_ADDRESS": "0x1111111111111111111111111111111111111111",
    "SORTED_TROVES_ADDRESS": "0x2222222222222222222222222222222222222222",
    "PRICE_FEED_ADDRESS": "0x3333333333333333333333333333333333333333",
    "HINT_HELPERS_ADDRESS": "0x4444444444444444444444444444444444444444",
    "MUSD_ADDRESS": "0x5555555555555555555555555555555555555555",
    "TROVE_PILOT_ENGINE_ADDRESS": ENGINE,
    "NOTIFICATION_URL": "",
    "SAVE_STATE_PATH": "state/test",
}


def borrower(i: int) -> str:
    return "0x" + f"{i + 1:040x}"


@pytest.fixture()
def make_config(tmp_path):
    """Build a KeeperConfig from TEST_ENV plus overrides; None removes a key."""

    def _make(**overrides) -> KeeperConfig:
        env = dict(TEST_ENV, SAVE_STATE_PATH=str(tmp_path / "state"))
        for key, value in overrides.items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = str(value)
        return load_keeper_config(TEST_CHAIN_ID, env=env)

    return _make


@pytest.fixture()
def config(make_config) -> KeeperConfig:
    return make_config()


class EventLog:
    """Structured events captured from the keeper.events logger."""

    def __init__(self, caplog):
        self._caplog = caplog

    @property
    def records(self):
        return [r for r in self._caplog.records if r.name == EVENT_LOGGER_NAME]

    def names(self) -> List[str]:
        return [r.getMessage() for r in self.records]

    def find(self, name: str) -> List[Dict]:
        return [getattr(r, "fields", {}) for r in self.records if r.getMessage() == name]


@pytest.fixture()
def events(caplog):
    # Configure handlers and propagation before the capture handler is attached
    logger = setup_event_logger()
    logger.addHandler(caplog.handler)
    caplog.set_level(logging.DEBUG, logger=EVENT_LOGGER_NAME)
    yield EventLog(caplog)
    logger.removeHandler(caplog.handler)


class FakeAction:
    """Liquidation action stand-in: calls are ("liquidate", borrowers) tuples."""

    def __init__(self, succeeded: Optional[int] = None):
        self.succeeded = succeeded

    def build_call(self, job, borrowers):
        return ("liquidate", tuple(borrowers))

    def decode_succeeded(self, receipt):
        return self.succeeded


class FakeChainClient:
    """
    In-memory ChainClient.

    nodes is the sorted list in tail-first order (riskiest first); ratios maps
    node -> collateral ratio in 1e18.
    """

    def __init__(self, nodes: Optional[List[str]] = None, ratios: Optional[Dict[str, int]] = None):
        self.address = KEEPER
        self.can_sign = True

        self.nodes = list(nodes or [])
        self.ratios = dict(ratios or {})
        self.prev_overrides: Dict[str, str] = {}

        self.round_data = (1, PRICE_E18, 0, int(time.time()), 1)
        self.fetch_price_value = PRICE_E18

        self.fees = (2 * 10**9, 10**8)
        self.fee_error: Optional[Exception] = None
        self.gas_price = 10**9
        self.gas_price_error: Optional[Exception] = None

        self.gas_per_item = 100_000
        self.estimate_errors: Dict[int, Exception] = {}
        self.send_errors: List[Exception] = []
        self.receipt_error: Optional[Exception] = None
        self.receipt_status = 1
        self.gas_used = 150_000
        self.effective_gas_price = 10**9
        self.balance = 10**21

        self.hints = None
        self.insert_position = (ZERO_ADDRESS, ZERO_ADDRESS)
        self.allowance = 0
        self.musd_balances: Dict[str, int] = {}

        self.engine = MagicMock()
        self.engine.address = ENGINE
        self.musd = MagicMock()

        self.icr_reads: List[str] = []
        self.estimate_calls: List = []
        self.sent: List = []
        self.fee_reads = 0
        self.gas_price_reads = 0
        self.insert_position_calls: List = []

    async def latest_round_data(self):
        if isinstance(self.round_data, Exception):
            raise self.round_data
        return self.round_data

    async def fetch_price(self):
        if isinstance(self.fetch_price_value, Exception):
            raise self.fetch_price_value
        return self.fetch_price_value

    async def get_last(self):
        return self.nodes[0] if self.nodes else ZERO_ADDRESS

    async def get_prev(self, node):
        if node in self.prev_overrides:
            return self.prev_overrides[node]
        index = self.nodes.index(node)
        return self.nodes[index + 1] if index + 1 < len(self.nodes) else ZERO_ADDRESS

    async def get_current_icr(self, node, price_e18):
        self.icr_reads.append(node)
        return self.ratios[node]

    async def estimate_fees_per_gas(self):
        self.fee_reads += 1
        if self.fee_error is not None:
            raise self.fee_error
        return self.fees

    async def get_gas_price(self):
        self.gas_price_reads += 1
        if self.gas_price_error is not None:
            raise self.gas_price_error
        return self.gas_price

    def _count(self, call) -> int:
        if isinstance(call, tuple):
            return len(call[1])
        return 1

    async def estimate_gas(self, call):
        self.estimate_calls.append(call)
        count = self._count(call)
        if count in self.estimate_errors:
            raise self.estimate_errors[count]
        return self.gas_per_item * count

    async def send_transaction(self, call, gas, fee_fields):
        self.sent.append((call, gas, dict(fee_fields)))
        if self.send_errors:
            raise self.send_errors.pop(0)
        return "0x" + f"{len(self.sent):064x}"

    async def wait_for_receipt(self, tx_hash):
        if self.receipt_error is not None:
            raise self.receipt_error
        return {
            "status": self.receipt_status,
            "gasUsed": self.gas_used,
            "effectiveGasPrice": self.effective_gas_price,
            "blockNumber": 100,
            "logs": [],
        }

    async def get_balance(self, account=None):
        return self.balance

    async def get_redemption_hints(self, amount, price_e18, max_iterations):
        return self.hints

    async def find_insert_position(self, nicr, prev_id, next_id):
        self.insert_position_calls.append((nicr, prev_id, next_id))
        return self.insert_position

    async def musd_allowance(self, owner, spender):
        return self.allowance

    async def musd_balance(self, account):
        return self.musd_balances.get(account, 0)


@pytest.fixture()
def fake_client() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture()
def no_sleep():
    """Recording replacement for asyncio.sleep."""
    delays: List[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
