"""
Data classes for structured values passed between the keeper engine stages.
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Minimum collateral ratio (110%) in 1e18 units
MCR_E18 = 1_100_000_000_000_000_000


class SkipReason(str, Enum):
    """Machine-parseable reason codes for aborted or skipped work."""

    FEE_UNAVAILABLE = "FEE_UNAVAILABLE"
    GAS_CAP = "GAS_CAP"
    SPEND_CAP = "SPEND_CAP"
    ESTIMATE_REVERT = "ESTIMATE_REVERT"
    ESTIMATE_FAILED = "ESTIMATE_FAILED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    ALLOWANCE_REQUIRED = "ALLOWANCE_REQUIRED"
    TX_FAILED = "TX_FAILED"
    TX_REVERTED = "TX_REVERTED"
    TX_UNCONFIRMED = "TX_UNCONFIRMED"
    DRY_RUN = "DRY_RUN"
    PRICE_REJECTED = "PRICE_REJECTED"


class PriceRejectReason(str, Enum):
    PRICE_READ_FAILED = "PRICE_READ_FAILED"
    PRICE_STALE = "PRICE_STALE"
    PRICE_UNVERIFIABLE_STALENESS = "PRICE_UNVERIFIABLE_STALENESS"
    NON_POSITIVE = "NON_POSITIVE"
    OUT_OF_BOUNDS_LOW = "OUT_OF_BOUNDS_LOW"
    OUT_OF_BOUNDS_HIGH = "OUT_OF_BOUNDS_HIGH"


class FeeMode(str, Enum):
    EIP1559 = "eip1559"
    LEGACY = "legacy"
    UNKNOWN = "unknown"


class FeeSource(str, Enum):
    CONFIG = "config"
    ESTIMATE = "estimate"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PriceBounds:
    """Optional sanity bounds for the price, both in 1e18 units."""

    min_price_e18: Optional[int] = None
    max_price_e18: Optional[int] = None


@dataclass(frozen=True)
class PriceSample:
    """A validated price read. Created once per run and shared by every job."""

    value_e18: int
    observed_at: Optional[int]
    source: str

    def age_seconds(self, now: Optional[float] = None) -> Optional[int]:
        if self.observed_at is None:
            return None
        now = time.time() if now is None else now
        return int(now) - self.observed_at


@dataclass(frozen=True)
class Candidate:
    """A position visited by the scanner."""

    address: str
    collateral_ratio_e18: int


@dataclass
class DiscoveryStats:
    scanned: int = 0
    liquidatable: int = 0
    below_threshold: int = 0
    early_exit: bool = False
    stop_reason: str = "exhausted"


@dataclass
class DiscoveryResult:
    """Liquidatable candidates in scan order (riskiest first) plus scan statistics."""

    liquidatable: List[Candidate]
    stats: DiscoveryStats

    @property
    def borrowers(self) -> List[str]:
        return [candidate.address for candidate in self.liquidatable]


@dataclass(frozen=True)
class Job:
    """One bounded batch of borrowers submitted as a single transaction attempt."""

    borrowers: Tuple[str, ...]
    fallback_on_fail: bool = True


@dataclass(frozen=True)
class FeePlan:
    """Resolved fee parameters for a submission."""

    mode: FeeMode
    source: FeeSource
    known: bool
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    gas_price: Optional[int] = None
    priority_source: Optional[FeeSource] = None
    priority_known: bool = False

    @property
    def price_per_gas(self) -> Optional[int]:
        """Worst-case price per gas unit used to project the cost of a submission."""
        if self.mode == FeeMode.EIP1559:
            return self.max_fee_per_gas
        if self.mode == FeeMode.LEGACY:
            return self.gas_price
        return None

    def tx_fields(self) -> Dict[str, int]:
        """Fee fields for a transaction dict. Never includes unset values."""
        fields: Dict[str, int] = {}
        if self.mode == FeeMode.EIP1559:
            if self.max_fee_per_gas is not None:
                fields["maxFeePerGas"] = self.max_fee_per_gas
            fields["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas or 0
        elif self.mode == FeeMode.LEGACY and self.gas_price is not None:
            fields["gasPrice"] = self.gas_price
        return fields

    def to_log_fields(self) -> Dict[str, Any]:
        def _str(value: Optional[int]) -> Optional[str]:
            return None if value is None else str(value)

        fields: Dict[str, Any] = {
            "mode": self.mode.value,
            "source": self.source.value,
            "known": self.known,
            "max_fee_per_gas": _str(self.max_fee_per_gas),
            "max_priority_fee_per_gas": _str(self.max_priority_fee_per_gas),
            "gas_price": _str(self.gas_price),
        }
        if self.mode == FeeMode.EIP1559:
            fields["priority_source"] = self.priority_source.value if self.priority_source else None
            fields["priority_known"] = self.priority_known
        return fields


@dataclass
class SpendTracker:
    """Native currency spent on gas during one run."""

    spent_wei: int = 0

    def add(self, amount_wei: int) -> None:
        if amount_wei < 0:
            raise ValueError("spend can only increase")
        self.spent_wei += amount_wei


@dataclass
class ExecutionResult:
    """
    Outcome of one job. processed_borrowers + leftover_borrowers always equals the
    job's borrowers, in order.
    """

    processed_borrowers: List[str]
    leftover_borrowers: List[str]
    tx_hash: Optional[str] = None
    reason: Optional[SkipReason] = None
    succeeded: Optional[int] = None
    dry_run: bool = False


@dataclass(frozen=True)
class RedemptionHints:
    first_hint: str
    partial_nicr: int
    truncated_amount: int


@dataclass
class HintBundle:
    """Everything redeemHintedTo needs besides the amount and recipient."""

    requested_amount: int
    price_e18: int
    max_iterations: int
    first_hint: str
    partial_nicr: int
    truncated_amount: int
    upper_seed: str
    lower_seed: str
    derived: bool
    scanned_tail: List[str] = field(default_factory=list)
    upper_hint: str = ZERO_ADDRESS
    lower_hint: str = ZERO_ADDRESS
    insert_hints_computed: bool = False


@dataclass
class RedeemPlan:
    ok: bool
    requested_amount: int
    truncated_amount: int
    max_iterations: int
    strict_truncation: bool
    recipient: Optional[str] = None
    effective_amount: int = 0
    max_chunk: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class RedeemResult:
    ok: bool
    reason: Optional[SkipReason] = None
    tx_hash: Optional[str] = None
    spend_wei: Optional[int] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    balances: Dict[str, int] = field(default_factory=dict)
    engine_event: Optional[Dict[str, Any]] = None


@dataclass
class RunSummary:
    """Operator-facing record of one keeper pass."""

    run_id: str
    chain_id: int
    network: str
    started_at: float
    finished_at: Optional[float] = None
    dry_run: bool = True
    price_e18: Optional[int] = None
    aborted_reason: Optional[str] = None
    discovery: Optional[DiscoveryStats] = None
    jobs_total: int = 0
    jobs_executed: int = 0
    processed: List[str] = field(default_factory=list)
    leftover: List[str] = field(default_factory=list)
    spent_wei: int = 0
    redemption: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price_e18"] = None if self.price_e18 is None else str(self.price_e18)
        data["spent_wei"] = str(self.spent_wei)
        return data


@dataclass(frozen=True)
class FeeOverrides:
    """Operator-configured fee caps. None means "not configured"."""

    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
