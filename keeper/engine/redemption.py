"""
Redemption executor.

Runs one hinted redemption through the wrapper: allowance check and optional
approval, balance snapshots, gas and spend planning shared with the
liquidation executor, retries, and decoding of the wrapper's
RedemptionExecuted event.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from web3.logs import DISCARD

from .client import MAX_UINT256
from .exceptions import TransactionBuildError
from .executor import BaseExecutor
from .logging_config import setup_logger
from .models import HintBundle, RedeemPlan, RedeemResult, SkipReason, SpendTracker

logger = setup_logger()

ENGINE_EVENT_FIELDS = ("jobId", "musdRequested", "musdRedeemed", "musdRefunded", "collateralOut", "maxIter")


class RedemptionExecutor(BaseExecutor):
    component = "redemption"

    async def _balances(self, account: str) -> Tuple[int, int]:
        return await self.client.musd_balance(account), await self.client.get_balance(account)

    async def _approve(self, amount: int, spend: SpendTracker, context: Dict[str, Any]) -> Optional[RedeemResult]:
        """Approve the wrapper to pull `amount`. Returns a failed result, or None on success."""
        spender = self.client.engine.address

        def build_call(_count: int) -> Any:
            return self.client.musd.functions.approve(spender, amount)

        approve_context = dict(context, action="approve")
        fee_plan = await self.resolve_fees()
        gas_plan = await self._plan(build_call, 1, fee_plan, spend, approve_context, shrink_on_cap=False)
        if not gas_plan.ok:
            return RedeemResult(ok=False, reason=gas_plan.reason, message="approve_not_planned")

        self._event("approve_sent", amount=str(amount), spender=spender, gas=str(gas_plan.gas_limit), **context)
        outcome = await self._submit(build_call, gas_plan, fee_plan, spend, approve_context, shrink_on_cap=False)
        if outcome.reason is not None:
            return RedeemResult(
                ok=False,
                reason=SkipReason.TX_FAILED,
                tx_hash=outcome.tx_hash,
                spend_wei=outcome.spend_wei,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                message=f"approve_failed:{outcome.reason.value}",
            )

        self._event(
            "approve_confirmed",
            tx_hash=outcome.tx_hash,
            gas_used=str(outcome.receipt.get("gasUsed")),
            effective_gas_price=str(outcome.receipt.get("effectiveGasPrice")),
            **context,
        )
        return None

    def decode_engine_event(self, receipt) -> Optional[Dict[str, str]]:
        """Best-effort decode of RedemptionExecuted from the wrapper's own logs."""
        engine_address = self.client.engine.address.lower()
        events = self.client.engine.events.RedemptionExecuted().process_receipt(receipt, errors=DISCARD)
        for event in events:
            if str(event["address"]).lower() != engine_address:
                continue
            args = event["args"]
            return {name: str(args[name]) for name in ENGINE_EVENT_FIELDS if name in args}
        return None

    async def redeem(self, plan: RedeemPlan, hints: HintBundle, spend: SpendTracker) -> RedeemResult:
        """
        Execute a redemption plan.

        Args:
            plan: Accepted RedeemPlan from build_redeem_plan.
            hints: HintBundle computed for the same price sample.
            spend: Run-wide spend tracker shared with the liquidation pass.

        Returns:
            RedeemResult. ok is True only for a mined, successful redemption.
        """
        if not plan.ok:
            return RedeemResult(ok=False, reason=SkipReason.TX_FAILED, message=f"plan_not_ok:{plan.reason}")

        caller = self.client.address
        recipient = plan.recipient
        amount = plan.effective_amount
        context = {"caller": caller, "recipient": recipient}

        if self.config.DRY_RUN:
            self._event(
                "job_skip",
                reason=SkipReason.DRY_RUN.value,
                requested_amount=str(plan.requested_amount),
                truncated_amount=str(plan.truncated_amount),
                effective_amount=str(amount),
                **context,
            )
            return RedeemResult(ok=False, reason=SkipReason.DRY_RUN)

        if not self.client.can_sign or not caller:
            raise TransactionBuildError("Redemption requires a configured signer")

        spender = self.client.engine.address
        allowance = await self.client.musd_allowance(caller, spender)
        if allowance < amount:
            self._event(
                "approve_needed",
                spender=spender,
                allowance=str(allowance),
                required=str(amount),
                auto_approve=self.config.AUTO_APPROVE,
                approve_exact=self.config.APPROVE_EXACT,
                **context,
            )
            if not self.config.AUTO_APPROVE:
                return RedeemResult(ok=False, reason=SkipReason.ALLOWANCE_REQUIRED)

            approve_amount = amount if self.config.APPROVE_EXACT else MAX_UINT256
            failed = await self._approve(approve_amount, spend, context)
            if failed is not None:
                return failed

        same_account = recipient.lower() == caller.lower()
        caller_before = await self._balances(caller)
        recipient_before = caller_before if same_account else await self._balances(recipient)

        def build_call(_count: int) -> Any:
            return self.client.engine.functions.redeemHintedTo(
                amount,
                recipient,
                hints.first_hint,
                hints.upper_hint,
                hints.lower_hint,
                hints.partial_nicr,
                plan.max_iterations,
            )

        fee_plan = await self.resolve_fees()
        gas_plan = await self._plan(build_call, 1, fee_plan, spend, context, shrink_on_cap=False)
        if not gas_plan.ok:
            return RedeemResult(ok=False, reason=gas_plan.reason)

        outcome = await self._submit(build_call, gas_plan, fee_plan, spend, context, shrink_on_cap=False)
        if outcome.reason is not None:
            message = outcome.message
            if outcome.reason == SkipReason.TX_REVERTED:
                message = "receipt_status_failed"
            return RedeemResult(
                ok=False,
                reason=SkipReason.TX_FAILED if outcome.reason == SkipReason.TX_REVERTED else outcome.reason,
                tx_hash=outcome.tx_hash,
                spend_wei=outcome.spend_wei,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                message=message,
            )

        caller_after = await self._balances(caller)
        recipient_after = caller_after if same_account else await self._balances(recipient)

        balances = {
            "caller_musd_delta": caller_after[0] - caller_before[0],
            "caller_native_delta": caller_after[1] - caller_before[1],
            "recipient_musd_delta": recipient_after[0] - recipient_before[0],
            "recipient_native_delta": recipient_after[1] - recipient_before[1],
        }
        engine_event = self.decode_engine_event(outcome.receipt)

        self._event(
            "redeem_result",
            level=logging.INFO,
            tx_hash=outcome.tx_hash,
            requested_amount=str(plan.requested_amount),
            truncated_amount=str(plan.truncated_amount),
            effective_amount=str(amount),
            balances={key: str(value) for key, value in balances.items()},
            engine_event=engine_event,
            **context,
        )
        return RedeemResult(
            ok=True,
            tx_hash=outcome.tx_hash,
            spend_wei=outcome.spend_wei,
            balances=balances,
            engine_event=engine_event,
        )
