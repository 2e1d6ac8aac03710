"""
Price reader.

Reads the collateral price once per run and refuses to hand out a value it
cannot vouch for: a failed read, a stale or undated sample while staleness is
enforced, a non-positive answer, or a value outside the configured bounds all
produce None.
"""

import logging
import time
from typing import Optional

from web3.exceptions import Web3Exception

from .decorators import TRANSIENT_READ_ERRORS
from .logging_config import log_event, setup_logger
from .models import PriceBounds, PriceRejectReason, PriceSample

logger = setup_logger()

# Read failures surfaced by the client once its own retries are exhausted
READ_ERRORS = (Web3Exception, ValueError) + TRANSIENT_READ_ERRORS


def _reject(reason: PriceRejectReason, event: str, **fields) -> None:
    log_event(event, level=logging.WARNING, component="price", reason=reason.value, **fields)
    return None


async def read_price(
    client,
    bounds: PriceBounds,
    max_age_seconds: int,
    now: Optional[float] = None,
) -> Optional[PriceSample]:
    """
    Read and validate the current price.

    Args:
        client: ChainClient (or compatible) exposing latest_round_data and fetch_price.
        bounds: Optional min/max sanity bounds in 1e18 units.
        max_age_seconds: Maximum sample age; 0 disables staleness enforcement.
        now: Unix time to measure age against. Defaults to time.time().

    Returns:
        A PriceSample, or None if the price must not be used this run.
    """
    enforce_staleness = max_age_seconds > 0
    value: Optional[int] = None
    observed_at: Optional[int] = None
    source = "latestRoundData"

    try:
        _, answer, _, updated_at, _ = await client.latest_round_data()
        value = int(answer)
        observed_at = int(updated_at) if updated_at else None
    except READ_ERRORS as e:
        if enforce_staleness:
            logger.warning("latestRoundData unavailable with staleness enforced: %s", e)
            return _reject(PriceRejectReason.PRICE_READ_FAILED, "price_read_failed", message=str(e))

        logger.warning("latestRoundData unavailable; falling back to fetchPrice: %s", e)
        source = "fetchPrice"
        try:
            value = int(await client.fetch_price())
        except READ_ERRORS as fetch_error:
            logger.error("Failed to fetch price: %s", fetch_error)
            return _reject(PriceRejectReason.PRICE_READ_FAILED, "price_read_failed", message=str(fetch_error))

    if enforce_staleness:
        if observed_at is None:
            return _reject(
                PriceRejectReason.PRICE_UNVERIFIABLE_STALENESS,
                "price_unverifiable_staleness",
                max_age_seconds=max_age_seconds,
            )
        age = int(time.time() if now is None else now) - observed_at
        if age > max_age_seconds:
            return _reject(
                PriceRejectReason.PRICE_STALE,
                "price_stale",
                age_seconds=age,
                max_age_seconds=max_age_seconds,
            )

    if value <= 0:
        return _reject(PriceRejectReason.NON_POSITIVE, "price_non_positive", price=str(value))

    if bounds.min_price_e18 is not None and value < bounds.min_price_e18:
        return _reject(
            PriceRejectReason.OUT_OF_BOUNDS_LOW,
            "price_out_of_bounds",
            price=str(value),
            min_price=str(bounds.min_price_e18),
        )
    if bounds.max_price_e18 is not None and value > bounds.max_price_e18:
        return _reject(
            PriceRejectReason.OUT_OF_BOUNDS_HIGH,
            "price_out_of_bounds",
            price=str(value),
            max_price=str(bounds.max_price_e18),
        )

    sample = PriceSample(value_e18=value, observed_at=observed_at, source=source)
    log_event(
        "price_ok",
        component="price",
        price=str(value),
        source=source,
        age_seconds=sample.age_seconds(now),
    )
    return sample
