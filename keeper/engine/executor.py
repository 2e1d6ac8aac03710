"""
Execution engine.

Plans a contract call against the gas and spend ceilings, submits it with
bounded retries, waits for the receipt and accounts the gas actually paid.
JobExecutor applies this to liquidation jobs, shrinking a batch when it does
not fit and reporting the dropped suffix as leftover.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.types import TxReceipt

from .decorators import TRANSIENT_READ_ERRORS
from .exceptions import ExecutionError, TransactionBuildError
from .fees import resolve_client_fee_plan
from .logging_config import log_event, setup_logger
from .models import ExecutionResult, FeePlan, Job, SkipReason, SpendTracker

logger = setup_logger()

BASE_BACKOFF_SECONDS = 0.5

SUBMIT_ERRORS = (Web3Exception, ValueError, ExecutionError) + TRANSIENT_READ_ERRORS
RECEIPT_ERRORS = (TimeExhausted,) + SUBMIT_ERRORS

CallBuilder = Callable[[int], Any]


class ErrorKind(str, Enum):
    LOGIC = "logic"
    RATE_LIMIT = "rate_limit"
    NONCE = "nonce"
    UNDERPRICED = "underpriced"
    TRANSIENT = "transient"


def classify_error(err: BaseException) -> ErrorKind:
    """Map a submission or estimation error to a retry class."""
    if isinstance(err, (ContractLogicError, TransactionBuildError)):
        return ErrorKind.LOGIC

    message = str(err).lower()
    if "revert" in message:
        return ErrorKind.LOGIC
    if "rate limit" in message or "429" in message or "too many" in message:
        return ErrorKind.RATE_LIMIT
    if "nonce" in message:
        return ErrorKind.NONCE
    if "underpriced" in message or "replacement" in message:
        return ErrorKind.UNDERPRICED
    return ErrorKind.TRANSIENT


def compute_backoff_seconds(attempt: int) -> float:
    """Backoff before retry number `attempt` (1-based): 0.5s, 1s, 2s, ..."""
    return BASE_BACKOFF_SECONDS * 2 ** (attempt - 1)


def apply_gas_buffer(gas: int, buffer_pct: int) -> int:
    return gas * (100 + buffer_pct) // 100


def halve(count: int) -> int:
    return max(1, (count + 1) // 2)


def receipt_cost_wei(receipt: TxReceipt, fee_plan: FeePlan) -> int:
    """Gas actually paid for a mined transaction."""
    gas_used = receipt.get("gasUsed") or 0
    gas_price = receipt.get("effectiveGasPrice") or fee_plan.price_per_gas or 0
    return int(gas_used) * int(gas_price)


@dataclass
class GasPlan:
    """Outcome of planning: how many items fit and what they are projected to cost."""

    count: int
    gas_raw: int = 0
    gas_limit: int = 0
    projected_cost_wei: int = 0
    reason: Optional[SkipReason] = None

    @property
    def ok(self) -> bool:
        return self.reason is None


@dataclass
class SubmitOutcome:
    plan: GasPlan
    fee_plan: FeePlan
    reason: Optional[SkipReason] = None
    tx_hash: Optional[str] = None
    receipt: Optional[TxReceipt] = None
    spend_wei: int = 0
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class BaseExecutor:
    """
    Shared planning and submission logic.

    Subclasses decide what call to build; this class owns the ceilings, the
    retry policy and spend accounting.
    """

    component = "executor"

    def __init__(self, client, config, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.client = client
        self.config = config
        self._sleep = sleep

    async def resolve_fees(self) -> FeePlan:
        return await resolve_client_fee_plan(self.client, self.config.fee_overrides)

    def _event(self, event: str, level: int = logging.INFO, **fields: Any) -> None:
        log_event(event, level=level, component=self.component, **fields)

    async def _plan(
        self,
        build_call: CallBuilder,
        count: int,
        fee_plan: FeePlan,
        spend: SpendTracker,
        context: Dict[str, Any],
        shrink_on_cap: bool = True,
        shrink_on_revert: bool = False,
    ) -> GasPlan:
        """
        Estimate gas for the first `count` items, halving while the call does
        not fit, then check the spend ceiling and the signer balance.
        """
        spend_cap = self.config.MAX_NATIVE_SPENT_PER_RUN
        gas_cap = self.config.MAX_GAS_PER_JOB

        if spend_cap is not None and not fee_plan.known:
            self._event("job_skip", logging.WARNING, reason=SkipReason.FEE_UNAVAILABLE.value, fee=fee_plan.to_log_fields(), **context)
            return GasPlan(count=count, reason=SkipReason.FEE_UNAVAILABLE)

        while True:
            try:
                gas_raw = await self.client.estimate_gas(build_call(count))
            except SUBMIT_ERRORS as e:
                if classify_error(e) != ErrorKind.LOGIC:
                    self._event(
                        "job_plan_error",
                        logging.ERROR,
                        reason=SkipReason.ESTIMATE_FAILED.value,
                        working_count=count,
                        message=str(e),
                        **context,
                    )
                    return GasPlan(count=count, reason=SkipReason.ESTIMATE_FAILED)

                if shrink_on_revert and count > 1:
                    before, count = count, halve(count)
                    self._event(
                        "job_shrink",
                        before_count=before,
                        after_count=count,
                        reason=SkipReason.ESTIMATE_REVERT.value,
                        message=str(e),
                        **context,
                    )
                    continue

                self._event(
                    "job_skip",
                    logging.WARNING,
                    reason=SkipReason.ESTIMATE_REVERT.value,
                    working_count=count,
                    message=str(e),
                    **context,
                )
                return GasPlan(count=count, reason=SkipReason.ESTIMATE_REVERT)

            gas_limit = apply_gas_buffer(gas_raw, self.config.GAS_BUFFER_PCT)
            if gas_cap is None or gas_limit <= gas_cap:
                break

            if shrink_on_cap and count > 1:
                before, count = count, halve(count)
                self._event(
                    "job_shrink",
                    before_count=before,
                    after_count=count,
                    reason=SkipReason.GAS_CAP.value,
                    gas_buffered=str(gas_limit),
                    max_gas_per_job=str(gas_cap),
                    **context,
                )
                continue

            self._event(
                "job_skip",
                logging.WARNING,
                reason=SkipReason.GAS_CAP.value,
                gas_buffered=str(gas_limit),
                max_gas_per_job=str(gas_cap),
                **context,
            )
            return GasPlan(count=count, gas_raw=gas_raw, gas_limit=gas_limit, reason=SkipReason.GAS_CAP)

        price_per_gas = fee_plan.price_per_gas
        projected_cost = gas_limit * price_per_gas if price_per_gas is not None else 0

        if spend_cap is not None and spend.spent_wei + projected_cost > spend_cap:
            self._event(
                "job_skip",
                logging.WARNING,
                reason=SkipReason.SPEND_CAP.value,
                projected_spend=str(spend.spent_wei + projected_cost),
                cap=str(spend_cap),
                fee=fee_plan.to_log_fields(),
                **context,
            )
            return GasPlan(count=count, gas_raw=gas_raw, gas_limit=gas_limit, projected_cost_wei=projected_cost, reason=SkipReason.SPEND_CAP)

        if self.client.address:
            required = max(projected_cost, self.config.MIN_KEEPER_BALANCE_WEI or 0)
            if required > 0:
                try:
                    balance = await self.client.get_balance(self.client.address)
                except SUBMIT_ERRORS as e:
                    self._event("job_plan_error", logging.ERROR, reason=SkipReason.ESTIMATE_FAILED.value, message=str(e), **context)
                    return GasPlan(count=count, reason=SkipReason.ESTIMATE_FAILED)
                if balance < required:
                    self._event(
                        "job_skip",
                        logging.WARNING,
                        reason=SkipReason.INSUFFICIENT_BALANCE.value,
                        balance=str(balance),
                        required=str(required),
                        **context,
                    )
                    return GasPlan(
                        count=count,
                        gas_raw=gas_raw,
                        gas_limit=gas_limit,
                        projected_cost_wei=projected_cost,
                        reason=SkipReason.INSUFFICIENT_BALANCE,
                    )

        self._event(
            "job_plan",
            working_count=count,
            gas_estimate_raw=str(gas_raw),
            gas_buffered=str(gas_limit),
            estimated_cost=str(projected_cost),
            max_gas_per_job=None if gas_cap is None else str(gas_cap),
            max_native_spent_per_run=None if spend_cap is None else str(spend_cap),
            fee=fee_plan.to_log_fields(),
            **context,
        )
        return GasPlan(count=count, gas_raw=gas_raw, gas_limit=gas_limit, projected_cost_wei=projected_cost)

    async def _submit(
        self,
        build_call: CallBuilder,
        plan: GasPlan,
        fee_plan: FeePlan,
        spend: SpendTracker,
        context: Dict[str, Any],
        shrink_on_cap: bool = True,
        shrink_on_revert: bool = False,
    ) -> SubmitOutcome:
        """
        Send the planned call, retrying non-logic failures with backoff.

        Only the first retry refreshes the fee plan and re-plans gas; later
        retries reuse that plan.
        """
        attempt = 0
        while True:
            try:
                tx_hash = await self.client.send_transaction(build_call(plan.count), plan.gas_limit, fee_plan.tx_fields())
            except SUBMIT_ERRORS as e:
                kind = classify_error(e)
                self._event("tx_error", logging.WARNING, attempt=attempt, kind=kind.value, message=str(e), **context)

                if kind == ErrorKind.LOGIC or attempt >= self.config.MAX_TX_RETRIES:
                    logger.error("Submission failed after %s attempt(s): %s", attempt + 1, e)
                    return SubmitOutcome(
                        plan=plan,
                        fee_plan=fee_plan,
                        reason=SkipReason.TX_FAILED,
                        error_kind=kind,
                        message=str(e),
                    )

                attempt += 1
                backoff = compute_backoff_seconds(attempt)
                self._event(
                    "retry_scheduled",
                    attempt=attempt,
                    kind=kind.value,
                    backoff_seconds=backoff,
                    replan=attempt == 1,
                    **context,
                )
                await self._sleep(backoff)

                if attempt == 1:
                    fee_plan = await self.resolve_fees()
                    plan = await self._plan(
                        build_call,
                        plan.count,
                        fee_plan,
                        spend,
                        context,
                        shrink_on_cap=shrink_on_cap,
                        shrink_on_revert=shrink_on_revert,
                    )
                    if not plan.ok:
                        return SubmitOutcome(plan=plan, fee_plan=fee_plan, reason=plan.reason, error_kind=kind, message=str(e))
                continue

            self._event(
                "tx_sent",
                tx_hash=tx_hash,
                working_count=plan.count,
                gas_limit=str(plan.gas_limit),
                attempt=attempt,
                fee=fee_plan.to_log_fields(),
                **context,
            )

            try:
                receipt = await self.client.wait_for_receipt(tx_hash)
            except RECEIPT_ERRORS as e:
                # The transaction may still be mined; charge its projected cost
                spend_wei = plan.projected_cost_wei
                spend.add(spend_wei)
                self._event(
                    "tx_unconfirmed",
                    logging.ERROR,
                    tx_hash=tx_hash,
                    projected_cost=str(spend_wei),
                    spent_total=str(spend.spent_wei),
                    message=str(e),
                    **context,
                )
                return SubmitOutcome(
                    plan=plan,
                    fee_plan=fee_plan,
                    reason=SkipReason.TX_UNCONFIRMED,
                    tx_hash=tx_hash,
                    spend_wei=spend_wei,
                    message=str(e),
                )

            spend_wei = receipt_cost_wei(receipt, fee_plan)
            spend.add(spend_wei)

            if receipt.get("status") != 1:
                self._event(
                    "tx_reverted",
                    logging.ERROR,
                    tx_hash=tx_hash,
                    gas_used=str(receipt.get("gasUsed")),
                    actual_cost=str(spend_wei),
                    **context,
                )
                return SubmitOutcome(
                    plan=plan,
                    fee_plan=fee_plan,
                    reason=SkipReason.TX_REVERTED,
                    tx_hash=tx_hash,
                    receipt=receipt,
                    spend_wei=spend_wei,
                )

            self._event(
                "tx_confirmed",
                tx_hash=tx_hash,
                status=receipt.get("status"),
                block_number=receipt.get("blockNumber"),
                gas_used=str(receipt.get("gasUsed")),
                effective_gas_price=str(receipt.get("effectiveGasPrice")),
                projected_cost=str(plan.projected_cost_wei),
                actual_cost=str(spend_wei),
                spent_total=str(spend.spent_wei),
                **context,
            )
            return SubmitOutcome(plan=plan, fee_plan=fee_plan, tx_hash=tx_hash, receipt=receipt, spend_wei=spend_wei)


class JobExecutor(BaseExecutor):
    """
    Executes liquidation jobs one at a time.

    Args:
        client: ChainClient.
        action: Builds the liquidation call and decodes its receipt.
        config: KeeperConfig.
        sleep: Awaitable used for retry backoff.
    """

    component = "executor"

    def __init__(self, client, action, config, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        super().__init__(client, config, sleep=sleep)
        self.action = action

    async def execute_job(self, job: Job, spend: SpendTracker) -> ExecutionResult:
        borrowers = list(job.borrowers)
        context = {"borrowers_total": len(borrowers), "fallback": job.fallback_on_fail}

        def build_call(count: int) -> Any:
            return self.action.build_call(job, borrowers[:count])

        fee_plan = await self.resolve_fees()
        plan = await self._plan(build_call, len(borrowers), fee_plan, spend, context, shrink_on_revert=job.fallback_on_fail)
        if not plan.ok:
            return ExecutionResult(processed_borrowers=[], leftover_borrowers=borrowers, reason=plan.reason)

        if self.config.DRY_RUN:
            self._event(
                "job_dry_run",
                working_count=plan.count,
                gas_limit=str(plan.gas_limit),
                estimated_cost=str(plan.projected_cost_wei),
                borrowers=borrowers[: plan.count],
                **context,
            )
            return ExecutionResult(
                processed_borrowers=borrowers[: plan.count],
                leftover_borrowers=borrowers[plan.count :],
                dry_run=True,
            )

        logger.info("Submitting liquidation: count=%s fallback=%s", plan.count, job.fallback_on_fail)
        outcome = await self._submit(build_call, plan, fee_plan, spend, context, shrink_on_revert=job.fallback_on_fail)
        if outcome.reason is not None:
            return ExecutionResult(
                processed_borrowers=[],
                leftover_borrowers=borrowers,
                tx_hash=outcome.tx_hash,
                reason=outcome.reason,
            )

        count = outcome.plan.count
        succeeded = self.action.decode_succeeded(outcome.receipt)
        if succeeded is not None:
            self._event("job_result", tx_hash=outcome.tx_hash, attempted=count, succeeded=succeeded, **context)

        return ExecutionResult(
            processed_borrowers=borrowers[:count],
            leftover_borrowers=borrowers[count:],
            tx_hash=outcome.tx_hash,
            succeeded=succeeded,
        )
