"""
Position scanner.

Walks the sorted troves list from its tail (lowest collateral ratio) toward the
head and collects the contiguous run of positions below a threshold.
"""

import logging
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable

from .logging_config import log_event, setup_logger
from .models import MCR_E18, ZERO_ADDRESS, Candidate, DiscoveryResult, DiscoveryStats

logger = setup_logger()


async def walk_from_tail(start: str, prev: Callable[[str], Awaitable[str]], max_steps: int) -> AsyncIterator[str]:
    """
    Yield list nodes from start toward the head.

    Stops at the zero address, after max_steps nodes, or when a node comes back
    a second time (a list mutated underneath the walk can loop).

    Args:
        start: First node, normally getLast().
        prev: Coroutine returning the predecessor of a node.
        max_steps: Hard cap on yielded nodes.
    """
    seen = set()
    current = start
    steps = 0

    while steps < max_steps and current and current.lower() != ZERO_ADDRESS:
        key = current.lower()
        if key in seen:
            log_event("discovery_cycle_detected", level=logging.WARNING, component="discovery", node=current, steps=steps)
            return
        seen.add(key)

        yield current
        steps += 1

        if steps < max_steps:
            current = await prev(current)


async def scan_positions_below(
    client,
    price_e18: int,
    threshold_e18: int,
    max_to_scan: int,
    early_exit_threshold: int = 0,
    stop_at_boundary: bool = True,
) -> DiscoveryResult:
    """
    Scan from the tail and keep every position whose ratio is below threshold_e18.

    Args:
        client: ChainClient exposing get_last, get_prev and get_current_icr.
        price_e18: Price used for every ratio computation in this scan.
        threshold_e18: Ratio boundary in 1e18 units.
        max_to_scan: Maximum number of positions visited.
        early_exit_threshold: Stop after this many visits with nothing found; 0 disables.
        stop_at_boundary: Stop at the first position at or above the threshold
            once at least one below-threshold position was found.

    Returns:
        DiscoveryResult in scan order, riskiest first.
    """
    stats = DiscoveryStats()
    below = []

    if max_to_scan <= 0:
        return DiscoveryResult(liquidatable=below, stats=stats)

    start = await client.get_last()

    async with aclosing(walk_from_tail(start, client.get_prev, max_to_scan)) as nodes:
        async for node in nodes:
            ratio = await client.get_current_icr(node, price_e18)
            stats.scanned += 1

            if ratio < threshold_e18:
                below.append(Candidate(address=node, collateral_ratio_e18=ratio))
            elif stop_at_boundary and below:
                stats.stop_reason = "boundary"
                log_event(
                    "discovery_stop_after_safe",
                    component="discovery",
                    current=node,
                    collateral_ratio=str(ratio),
                    scanned=stats.scanned,
                )
                break

            if early_exit_threshold > 0 and not below and stats.scanned >= early_exit_threshold:
                stats.early_exit = True
                stats.stop_reason = "early_exit"
                log_event(
                    "discovery_early_exit",
                    component="discovery",
                    scanned=stats.scanned,
                    threshold=early_exit_threshold,
                    max_scan=max_to_scan,
                )
                break
        else:
            if stats.scanned >= max_to_scan:
                stats.stop_reason = "max_scan"

    stats.below_threshold = len(below)
    return DiscoveryResult(liquidatable=below, stats=stats)


async def find_liquidatable(
    client,
    price_e18: int,
    max_to_scan: int,
    early_exit_threshold: int,
) -> DiscoveryResult:
    """Positions below the 110% minimum collateral ratio, riskiest first."""
    result = await scan_positions_below(
        client,
        price_e18=price_e18,
        threshold_e18=MCR_E18,
        max_to_scan=max_to_scan,
        early_exit_threshold=early_exit_threshold,
        stop_at_boundary=True,
    )
    result.stats.liquidatable = len(result.liquidatable)

    log_event(
        "discovery_summary",
        component="discovery",
        scanned=result.stats.scanned,
        liquidatable=result.stats.liquidatable,
        early_exit=result.stats.early_exit,
        stop_reason=result.stats.stop_reason,
        max_scan=max_to_scan,
    )
    logger.info("Discovery scanned %s positions, %s liquidatable", result.stats.scanned, result.stats.liquidatable)
    return result
