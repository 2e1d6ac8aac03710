"""
Redemption strategy: decides whether and how much to redeem.
"""

from typing import Optional

from .models import ZERO_ADDRESS, RedeemPlan

INVALID_RECIPIENT = "INVALID_RECIPIENT"
NOOP_AMOUNT = "NOOP_AMOUNT"
TRUNCATED_TO_ZERO = "TRUNCATED_TO_ZERO"
STRICT_TRUNCATION_MISMATCH = "STRICT_TRUNCATION_MISMATCH"


def build_redeem_plan(
    requested_amount: int,
    truncated_amount: int,
    max_iterations: int,
    strict_truncation: bool,
    recipient: Optional[str],
    max_chunk: Optional[int] = None,
) -> RedeemPlan:
    """
    Turn the requested amount and the protocol's truncated amount into a plan.

    The effective amount is the truncated amount, capped at max_chunk when set.
    With strict_truncation any truncation rejects the plan.
    """
    plan = RedeemPlan(
        ok=False,
        requested_amount=requested_amount,
        truncated_amount=truncated_amount,
        max_iterations=max_iterations,
        strict_truncation=strict_truncation,
        recipient=recipient,
        max_chunk=max_chunk,
    )

    if not recipient or recipient.lower() == ZERO_ADDRESS:
        plan.reason = INVALID_RECIPIENT
        return plan
    if requested_amount == 0:
        plan.reason = NOOP_AMOUNT
        return plan
    if truncated_amount == 0:
        plan.reason = TRUNCATED_TO_ZERO
        return plan
    if strict_truncation and truncated_amount != requested_amount:
        plan.reason = STRICT_TRUNCATION_MISMATCH
        return plan

    effective = truncated_amount
    if max_chunk and effective > max_chunk:
        effective = max_chunk

    plan.ok = True
    plan.effective_amount = effective
    return plan
