"""
Run loop: one keeper pass.

price -> scan -> jobs -> execute each job, requeuing leftovers at most once per
distinct leftover set, then the optional redemption pass on the same price.
"""

import logging
import time
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Set, Tuple

from .client import build_client
from .discovery import find_liquidatable
from .executor import JobExecutor
from .hinting import compute_hint_bundle
from .jobs import build_jobs
from .liquidation import LiquidationAction
from .logging_config import clear_log_context, log_event, set_log_context, setup_logger
from .models import Job, RunSummary, SkipReason, SpendTracker
from .notifications import (
    post_job_failed_notification,
    post_liquidation_result_notification,
    post_redemption_result_notification,
    post_run_aborted_notification,
)
from .price import read_price
from .redemption import RedemptionExecutor
from .state import save_run_summary
from .strategy import build_redeem_plan

logger = setup_logger()

FAILED_SUBMISSION_REASONS = (SkipReason.TX_FAILED, SkipReason.TX_REVERTED, SkipReason.TX_UNCONFIRMED)


def _deadline_passed(deadline: Optional[float], clock: Callable[[], float]) -> bool:
    return deadline is not None and clock() >= deadline


async def run_liquidation_pass(
    client,
    config,
    price_e18: int,
    spend: SpendTracker,
    summary: RunSummary,
    executor: Optional[JobExecutor] = None,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> RunSummary:
    """
    Discover liquidatable positions and execute them job by job.

    Requeue rules after each job:
    - something processed, suffix left: the suffix goes to the front right away.
    - nothing processed: the leftover set goes to the back once; a set seen a
      second time is dropped.
    - transaction sent but unconfirmed: the set is dropped for this run.

    The deadline is only checked between jobs; a submitted transaction is
    always followed to its receipt.
    """
    discovery = await find_liquidatable(
        client,
        price_e18=price_e18,
        max_to_scan=config.MAX_TROVES_TO_SCAN_PER_RUN,
        early_exit_threshold=config.EARLY_EXIT_SCAN_THRESHOLD,
    )
    summary.discovery = discovery.stats
    if not discovery.liquidatable:
        return summary

    jobs = build_jobs(discovery.borrowers, config.MAX_TROVES_PER_JOB)
    summary.jobs_total = len(jobs)
    executor = executor or JobExecutor(client, LiquidationAction(client), config)

    queue: Deque[Job] = deque(jobs)
    skipped: Set[Tuple[str, ...]] = set()

    while queue:
        if _deadline_passed(deadline, clock):
            remaining = [borrower for job in queue for borrower in job.borrowers]
            log_event("run_timeout", level=logging.WARNING, component="run_loop", jobs_remaining=len(queue), borrowers_remaining=len(remaining))
            summary.leftover.extend(remaining)
            break

        job = queue.popleft()
        result = await executor.execute_job(job, spend)
        summary.jobs_executed += 1
        summary.processed.extend(result.processed_borrowers)

        if result.reason in FAILED_SUBMISSION_REASONS:
            post_job_failed_notification(job.borrowers, result, config)
        elif result.tx_hash and result.processed_borrowers:
            post_liquidation_result_notification(result, spend.spent_wei, config)

        if not result.leftover_borrowers:
            continue

        leftover = tuple(result.leftover_borrowers)
        if result.processed_borrowers:
            queue.appendleft(Job(borrowers=leftover, fallback_on_fail=job.fallback_on_fail))
            log_event("requeue", component="run_loop", kind="shrink_suffix", count=len(leftover), position="front")
        elif result.reason == SkipReason.TX_UNCONFIRMED:
            # A pending transaction may still land; never send a second one this run
            log_event(
                "requeue_suppressed",
                level=logging.WARNING,
                component="run_loop",
                count=len(leftover),
                reason=result.reason.value,
                tx_hash=result.tx_hash,
            )
            summary.leftover.extend(leftover)
        elif leftover in skipped:
            log_event(
                "requeue_suppressed",
                component="run_loop",
                count=len(leftover),
                reason=result.reason.value if result.reason else None,
            )
            summary.leftover.extend(leftover)
        else:
            skipped.add(leftover)
            queue.append(Job(borrowers=leftover, fallback_on_fail=job.fallback_on_fail))
            log_event(
                "requeue",
                component="run_loop",
                kind="unprocessed",
                count=len(leftover),
                position="back",
                reason=result.reason.value if result.reason else None,
            )

    return summary


async def run_redemption_pass(client, config, price_e18: int, spend: SpendTracker) -> Optional[Dict[str, Any]]:
    """Compute hints, plan and execute one redemption. Returns a summary dict or None when disabled."""
    if config.REDEEM_MUSD_AMOUNT <= 0:
        logger.info("Redemption pass skipped: REDEEM_MUSD_AMOUNT is 0")
        return None

    log_event("redeem_price", component="price", price=str(price_e18))

    hints = await compute_hint_bundle(
        client,
        requested_amount=config.REDEEM_MUSD_AMOUNT,
        price_e18=price_e18,
        max_iterations=config.MAX_ITERATIONS,
        seed_scan_window=config.SEED_SCAN_WINDOW,
        upper_seed=config.UPPER_SEED,
        lower_seed=config.LOWER_SEED,
    )
    log_event(
        "redeem_hints",
        component="hinting",
        requested_amount=str(hints.requested_amount),
        truncated_amount=str(hints.truncated_amount),
        first_hint=hints.first_hint,
        partial_nicr=str(hints.partial_nicr),
        max_iterations=hints.max_iterations,
    )
    log_event(
        "redeem_seeds",
        component="hinting",
        derived=hints.derived,
        upper_seed=hints.upper_seed,
        lower_seed=hints.lower_seed,
        scanned_tail=hints.scanned_tail,
        upper_hint=hints.upper_hint,
        lower_hint=hints.lower_hint,
        insert_hints_computed=hints.insert_hints_computed,
    )

    plan = build_redeem_plan(
        requested_amount=config.REDEEM_MUSD_AMOUNT,
        truncated_amount=hints.truncated_amount,
        max_iterations=config.MAX_ITERATIONS,
        strict_truncation=config.STRICT_TRUNCATION,
        recipient=client.address,
        max_chunk=config.REDEEM_MAX_CHUNK_MUSD,
    )
    if not plan.ok:
        log_event(
            "job_skip",
            component="strategy",
            reason=plan.reason,
            requested_amount=str(plan.requested_amount),
            truncated_amount=str(plan.truncated_amount),
            strict_truncation=plan.strict_truncation,
            max_chunk=None if plan.max_chunk is None else str(plan.max_chunk),
        )
        return {"ok": False, "reason": plan.reason}

    log_event(
        "redeem_plan",
        component="strategy",
        recipient=plan.recipient,
        requested_amount=str(plan.requested_amount),
        truncated_amount=str(plan.truncated_amount),
        effective_amount=str(plan.effective_amount),
        max_iterations=plan.max_iterations,
        strict_truncation=plan.strict_truncation,
        max_chunk=None if plan.max_chunk is None else str(plan.max_chunk),
    )

    result = await RedemptionExecutor(client, config).redeem(plan, hints, spend)
    if result.ok:
        post_redemption_result_notification(result, plan.effective_amount, config)

    return {
        "ok": result.ok,
        "reason": result.reason.value if result.reason else None,
        "tx_hash": result.tx_hash,
        "effective_amount": str(plan.effective_amount),
        "message": result.message,
    }


async def run_once(
    config,
    client=None,
    clock: Callable[[], float] = time.monotonic,
    save_state: bool = True,
) -> RunSummary:
    """
    Execute one complete keeper pass for a chain.

    Args:
        config: KeeperConfig.
        client: Optional ChainClient; built from config when omitted.
        clock: Monotonic clock used for the run deadline.
        save_state: Append the RunSummary to SAVE_STATE_PATH.

    Returns:
        RunSummary of the pass. aborted_reason is set when the price was rejected.
    """
    client = client or build_client(config)
    run_id = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    set_log_context(run_id=run_id, keeper=client.address, network=config.CHAIN_NAME)

    summary = RunSummary(
        run_id=run_id,
        chain_id=config.CHAIN_ID,
        network=config.CHAIN_NAME,
        started_at=time.time(),
        dry_run=config.DRY_RUN,
    )
    spend = SpendTracker()
    deadline = clock() + config.RUN_TIMEOUT_SECONDS if config.RUN_TIMEOUT_SECONDS else None

    try:
        log_event("run_start", component="run_loop", dry_run=config.DRY_RUN, modes=config.KEEPER_MODES)

        price = await read_price(client, config.price_bounds, config.MAX_PRICE_AGE_SECONDS)
        if price is None:
            summary.aborted_reason = SkipReason.PRICE_REJECTED.value
            logger.warning("Price sanity/staleness failed; skipping run")
            post_run_aborted_notification(summary.aborted_reason, config)
            return summary

        summary.price_e18 = price.value_e18

        if "liquidation" in config.KEEPER_MODES:
            await run_liquidation_pass(client, config, price.value_e18, spend, summary, deadline=deadline, clock=clock)

        if "redemption" in config.KEEPER_MODES:
            if _deadline_passed(deadline, clock):
                log_event("run_timeout", level=logging.WARNING, component="run_loop", skipped="redemption")
            else:
                summary.redemption = await run_redemption_pass(client, config, price.value_e18, spend)

        return summary
    finally:
        summary.spent_wei = spend.spent_wei
        summary.finished_at = time.time()
        log_event("run_summary", component="run_loop", **summary.to_dict())
        if save_state:
            save_run_summary(config.SAVE_STATE_PATH, summary)
        clear_log_context()
