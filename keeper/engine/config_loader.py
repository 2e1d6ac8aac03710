"""
Config Loader module.

Values come from config.yaml (global defaults and per-chain settings) and are
overridden by environment variables of the same name. Every optional guard is
an explicit Optional field; 0 or blank means disabled.
"""

import os
from typing import Any, Dict, List, Mapping, Optional

import yaml
from web3 import Web3

from .exceptions import ConfigError
from .models import ZERO_ADDRESS, FeeOverrides, PriceBounds

KNOWN_MODES = ("liquidation", "redemption")

LIQUIDATION_ADDRESSES = [
    "TROVE_MANAGER_ADDRESS",
    "SORTED_TROVES_ADDRESS",
    "PRICE_FEED_ADDRESS",
    "TROVE_PILOT_ENGINE_ADDRESS",
]

REDEMPTION_ADDRESSES = [
    "SORTED_TROVES_ADDRESS",
    "PRICE_FEED_ADDRESS",
    "HINT_HELPERS_ADDRESS",
    "MUSD_ADDRESS",
    "TROVE_PILOT_ENGINE_ADDRESS",
]

MAX_GAS_BUFFER_PCT = 500

_TRUE_VALUES = ("1", "true", "yes", "on")


class KeeperConfig:
    """
    Keeper config object to access config variables
    """

    def __init__(
        self,
        chain_id: int,
        global_config: Dict[str, Any],
        chain_config: Dict[str, Any],
        env: Optional[Mapping[str, str]] = None,
    ):
        self.CHAIN_ID = chain_id
        self.CHAIN_NAME = chain_config["name"]
        self._global = global_config
        self._chain = chain_config
        self._env = os.environ if env is None else env

        self.RPC_URL = self._str(self._chain.get("RPC_NAME", "MEZO_RPC_URL")) or ""
        self.EXPLORER_URL = self._str("EXPLORER_URL") or ""

        # Signer: local private key, or an unlocked account behind UNLOCKED_RPC_URL
        self.KEEPER_PRIVATE_KEY = self._str("KEEPER_PRIVATE_KEY")
        self.UNLOCKED_RPC_URL = self._str("UNLOCKED_RPC_URL")
        self.KEEPER_ADDRESS = self._str("KEEPER_ADDRESS")

        self.NOTIFICATION_URL = self._str("NOTIFICATION_URL") or ""
        slack_ids_raw = self._str("SLACK_MENTION_IDS") or ""
        self.SLACK_MENTION_IDS = [s.strip() for s in slack_ids_raw.split(",") if s.strip()]

        modes_raw = self._str("KEEPER_MODES") or "liquidation"
        self.KEEPER_MODES: List[str] = [m.strip().lower() for m in modes_raw.split(",") if m.strip()]

        for name in set(LIQUIDATION_ADDRESSES + REDEMPTION_ADDRESSES):
            setattr(self, name, self._str(name))

        self.SAVE_STATE_PATH = f"{self._str('SAVE_STATE_PATH') or 'state'}/{self.CHAIN_NAME}_runs.jsonl"

        # Scheduling
        self.RUN_INTERVAL_SECONDS = self._int("RUN_INTERVAL_SECONDS", 60)
        self.RUN_TIMEOUT_SECONDS = self._optional_int("RUN_TIMEOUT_SECONDS")
        self.RECEIPT_TIMEOUT_SECONDS = self._int("RECEIPT_TIMEOUT_SECONDS", 180)

        # Discovery and job sizing
        self.MAX_TROVES_TO_SCAN_PER_RUN = self._int("MAX_TROVES_TO_SCAN_PER_RUN", 500)
        self.MAX_TROVES_PER_JOB = self._int("MAX_TROVES_PER_JOB", 20)
        self.EARLY_EXIT_SCAN_THRESHOLD = self._int("EARLY_EXIT_SCAN_THRESHOLD", 50)

        # Price guards
        self.MIN_BTC_PRICE = self._optional_int("MIN_BTC_PRICE")
        self.MAX_BTC_PRICE = self._optional_int("MAX_BTC_PRICE")
        self.MAX_PRICE_AGE_SECONDS = self._int("MAX_PRICE_AGE_SECONDS", 0)

        # Gas and spend guards; MAX_GAS_PER_TX is accepted as an alias
        self.MAX_GAS_PER_JOB = self._optional_int("MAX_GAS_PER_JOB")
        if self.MAX_GAS_PER_JOB is None:
            self.MAX_GAS_PER_JOB = self._optional_int("MAX_GAS_PER_TX")
        self.MAX_NATIVE_SPENT_PER_RUN = self._optional_int("MAX_NATIVE_SPENT_PER_RUN")
        self.GAS_BUFFER_PCT = self._int("GAS_BUFFER_PCT", 20)
        self.MAX_TX_RETRIES = self._int("MAX_TX_RETRIES", 2)
        self.MAX_FEE_PER_GAS = self._optional_int("MAX_FEE_PER_GAS")
        self.MAX_PRIORITY_FEE_PER_GAS = self._optional_int("MAX_PRIORITY_FEE_PER_GAS")
        self.MIN_KEEPER_BALANCE_WEI = self._optional_int("MIN_KEEPER_BALANCE_WEI")
        self.DRY_RUN = self._bool("DRY_RUN", True)

        # Redemption
        self.REDEEM_MUSD_AMOUNT = self._int("REDEEM_MUSD_AMOUNT", 0)
        self.REDEEM_MAX_CHUNK_MUSD = self._optional_int("REDEEM_MAX_CHUNK_MUSD")
        self.MAX_ITERATIONS = self._int("MAX_ITERATIONS", 50)
        self.STRICT_TRUNCATION = self._bool("STRICT_TRUNCATION", False)
        self.UPPER_SEED = self._str("UPPER_SEED")
        self.LOWER_SEED = self._str("LOWER_SEED")
        self.SEED_SCAN_WINDOW = self._int("SEED_SCAN_WINDOW", 10)
        self.AUTO_APPROVE = self._bool("AUTO_APPROVE", False)
        self.APPROVE_EXACT = self._bool("APPROVE_EXACT", True)

        self.validate()

    def __getattr__(self, name: str) -> Any:
        """Look up config values in chain-specific, then contracts, then global config."""
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._chain:
            return self._chain[name]
        if name in self._chain.get("contracts", {}):
            return self._chain["contracts"][name]
        if name in self._global:
            return self._global[name]
        raise AttributeError(f"Config has no attribute '{name}'")

    def _raw(self, name: str) -> Any:
        value = self._env.get(name)
        if value is not None and str(value).strip() != "":
            return value
        if name in self._chain:
            return self._chain[name]
        if name in self._chain.get("contracts", {}):
            return self._chain["contracts"][name]
        return self._global.get(name)

    def _str(self, name: str) -> Optional[str]:
        value = self._raw(name)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def _int(self, name: str, default: int) -> int:
        value = self._str(name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as e:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from e

    def _optional_int(self, name: str) -> Optional[int]:
        value = self._int(name, 0)
        return value if value != 0 else None

    def _bool(self, name: str, default: bool) -> bool:
        value = self._str(name)
        if value is None:
            return default
        return value.lower() in _TRUE_VALUES

    @property
    def price_bounds(self) -> PriceBounds:
        return PriceBounds(min_price_e18=self.MIN_BTC_PRICE, max_price_e18=self.MAX_BTC_PRICE)

    @property
    def fee_overrides(self) -> FeeOverrides:
        return FeeOverrides(
            max_fee_per_gas=self.MAX_FEE_PER_GAS,
            max_priority_fee_per_gas=self.MAX_PRIORITY_FEE_PER_GAS,
        )

    @property
    def has_signer(self) -> bool:
        return bool(self.KEEPER_PRIVATE_KEY) or bool(self.UNLOCKED_RPC_URL and self.KEEPER_ADDRESS)

    def required_addresses(self) -> List[str]:
        names: List[str] = []
        if "liquidation" in self.KEEPER_MODES:
            names.extend(LIQUIDATION_ADDRESSES)
        if "redemption" in self.KEEPER_MODES:
            names.extend(n for n in REDEMPTION_ADDRESSES if n not in names)
        return names

    def validate(self) -> None:
        """
        Validates the loaded values in a single pass.
        Raises ConfigError on the first problem found.
        """
        if not self.RPC_URL:
            raise ConfigError(f"Missing RPC URL for {self.CHAIN_NAME}. Env var {self._chain.get('RPC_NAME')} not set")

        unknown = [m for m in self.KEEPER_MODES if m not in KNOWN_MODES]
        if unknown or not self.KEEPER_MODES:
            raise ConfigError(f"KEEPER_MODES must be a subset of {', '.join(KNOWN_MODES)}, got {self.KEEPER_MODES}")

        for name in self.required_addresses():
            value = getattr(self, name)
            if not value or not Web3.is_address(value) or value.lower() == ZERO_ADDRESS:
                raise ConfigError(f"Invalid address for {name}")
            setattr(self, name, Web3.to_checksum_address(value))

        for name in ("UPPER_SEED", "LOWER_SEED"):
            value = getattr(self, name)
            if value is not None:
                if not Web3.is_address(value):
                    raise ConfigError(f"Invalid address for {name}")
                setattr(self, name, Web3.to_checksum_address(value))

        if self.MAX_TROVES_TO_SCAN_PER_RUN <= 0:
            raise ConfigError("MAX_TROVES_TO_SCAN_PER_RUN must be > 0")
        if self.MAX_TROVES_PER_JOB <= 0:
            raise ConfigError("MAX_TROVES_PER_JOB must be > 0")
        if self.MAX_TROVES_PER_JOB > self.MAX_TROVES_TO_SCAN_PER_RUN:
            raise ConfigError("MAX_TROVES_PER_JOB cannot exceed MAX_TROVES_TO_SCAN_PER_RUN")
        if self.EARLY_EXIT_SCAN_THRESHOLD < 0:
            raise ConfigError("EARLY_EXIT_SCAN_THRESHOLD must be >= 0")
        if self.MAX_PRICE_AGE_SECONDS < 0:
            raise ConfigError("MAX_PRICE_AGE_SECONDS must be >= 0")
        if not 0 <= self.GAS_BUFFER_PCT <= MAX_GAS_BUFFER_PCT:
            raise ConfigError(f"GAS_BUFFER_PCT must be between 0 and {MAX_GAS_BUFFER_PCT}")
        if self.MAX_TX_RETRIES < 0:
            raise ConfigError("MAX_TX_RETRIES must be >= 0")
        if self.MAX_ITERATIONS < 0:
            raise ConfigError("MAX_ITERATIONS must be >= 0")
        if self.SEED_SCAN_WINDOW < 0:
            raise ConfigError("SEED_SCAN_WINDOW must be >= 0")
        if self.REDEEM_MUSD_AMOUNT < 0:
            raise ConfigError("REDEEM_MUSD_AMOUNT must be >= 0")

        for name in (
            "MIN_BTC_PRICE",
            "MAX_BTC_PRICE",
            "MAX_GAS_PER_JOB",
            "MAX_NATIVE_SPENT_PER_RUN",
            "MAX_FEE_PER_GAS",
            "MAX_PRIORITY_FEE_PER_GAS",
            "MIN_KEEPER_BALANCE_WEI",
            "REDEEM_MAX_CHUNK_MUSD",
            "RUN_TIMEOUT_SECONDS",
        ):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigError(f"{name} must be >= 0")

        if self.MIN_BTC_PRICE is not None and self.MAX_BTC_PRICE is not None and self.MIN_BTC_PRICE > self.MAX_BTC_PRICE:
            raise ConfigError("MIN_BTC_PRICE cannot exceed MAX_BTC_PRICE")

        if self.UNLOCKED_RPC_URL and not self.KEEPER_PRIVATE_KEY:
            if not self.KEEPER_ADDRESS or not Web3.is_address(self.KEEPER_ADDRESS):
                raise ConfigError("KEEPER_ADDRESS is required when UNLOCKED_RPC_URL is set")
        if self.KEEPER_ADDRESS:
            if not Web3.is_address(self.KEEPER_ADDRESS):
                raise ConfigError("Invalid address for KEEPER_ADDRESS")
            self.KEEPER_ADDRESS = Web3.to_checksum_address(self.KEEPER_ADDRESS)

        if not self.DRY_RUN and not self.has_signer:
            raise ConfigError("KEEPER_PRIVATE_KEY (or UNLOCKED_RPC_URL + KEEPER_ADDRESS) is required when DRY_RUN is false")


def resolve_path(path: str) -> str:
    """Resolve a config path relative to the directory holding the keeper package."""
    if os.path.isabs(path):
        return path
    package_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    return os.path.join(package_root, path)


def load_keeper_config(chain_id: int, env: Optional[Mapping[str, str]] = None) -> KeeperConfig:
    current_dir = os.path.dirname(os.path.abspath(__file__))
    config_path = os.path.join(os.path.dirname(current_dir), "config.yaml")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Config file not found at {config_path}") from exc
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML file: {e}") from e

    if chain_id not in config["chains"]:
        raise ConfigError(f"No configuration found for chain ID {chain_id}")

    return KeeperConfig(
        chain_id=chain_id,
        global_config=config["global"],
        chain_config=config["chains"][chain_id],
        env=env,
    )
