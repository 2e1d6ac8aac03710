"""
Redemption hint computation.
"""

import logging
from contextlib import aclosing
from typing import List, Optional, Tuple

from web3.exceptions import Web3Exception

from .decorators import TRANSIENT_READ_ERRORS
from .discovery import walk_from_tail
from .logging_config import log_event, setup_logger
from .models import ZERO_ADDRESS, HintBundle

logger = setup_logger()

READ_ERRORS = (Web3Exception, ValueError) + TRANSIENT_READ_ERRORS


async def derive_seeds_from_tail(client, scan_window: int) -> Tuple[str, str, List[str]]:
    """
    Use the first two tail entries as insert-position seeds.

    A failed read stops the scan; whatever was read so far is used and missing
    seeds fall back to the zero address.

    Returns:
        (upper_seed, lower_seed, scanned_tail)
    """
    scanned: List[str] = []
    if scan_window <= 0:
        return ZERO_ADDRESS, ZERO_ADDRESS, scanned

    try:
        start = await client.get_last()
        async with aclosing(walk_from_tail(start, client.get_prev, scan_window)) as nodes:
            async for node in nodes:
                scanned.append(node)
    except READ_ERRORS as e:
        log_event(
            "redeem_seeds_tail_scan_failed",
            level=logging.WARNING,
            exc_info=e,
            component="hinting",
            scanned=len(scanned),
        )

    upper_seed = scanned[0] if len(scanned) > 0 else ZERO_ADDRESS
    lower_seed = scanned[1] if len(scanned) > 1 else ZERO_ADDRESS
    return upper_seed, lower_seed, scanned


async def compute_hint_bundle(
    client,
    requested_amount: int,
    price_e18: int,
    max_iterations: int,
    seed_scan_window: int,
    upper_seed: Optional[str] = None,
    lower_seed: Optional[str] = None,
) -> HintBundle:
    """
    Gather every hint redeemHintedTo needs.

    Args:
        client: ChainClient exposing get_redemption_hints, find_insert_position,
            get_last and get_prev.
        requested_amount: Stable asset amount to redeem.
        price_e18: Price sample shared with the rest of the run.
        max_iterations: Cap on troves the protocol walks while redeeming.
        seed_scan_window: Tail entries to read when seeds are derived.
        upper_seed: Optional configured seed; used only together with lower_seed.
        lower_seed: Optional configured seed.

    Returns:
        HintBundle. Insert hints stay at the zero address when the partial
        NICR is zero, since no trove gets reinserted in that case.
    """
    hints = await client.get_redemption_hints(requested_amount, price_e18, max_iterations)

    if upper_seed and lower_seed:
        derived = False
        scanned: List[str] = []
    else:
        derived = True
        upper_seed, lower_seed, scanned = await derive_seeds_from_tail(client, seed_scan_window)

    bundle = HintBundle(
        requested_amount=requested_amount,
        price_e18=price_e18,
        max_iterations=max_iterations,
        first_hint=hints.first_hint,
        partial_nicr=hints.partial_nicr,
        truncated_amount=hints.truncated_amount,
        upper_seed=upper_seed,
        lower_seed=lower_seed,
        derived=derived,
        scanned_tail=scanned,
    )

    if hints.partial_nicr != 0:
        bundle.upper_hint, bundle.lower_hint = await client.find_insert_position(hints.partial_nicr, upper_seed, lower_seed)
        bundle.insert_hints_computed = True

    return bundle
