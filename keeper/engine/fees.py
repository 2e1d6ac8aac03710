"""
Fee resolver.

Precedence: operator override, dynamic EIP-1559 estimate, legacy gas price,
unknown. Estimators are only awaited when every earlier source came up empty.
"""

from typing import Awaitable, Callable, Optional, Tuple

from web3.exceptions import Web3Exception

from .decorators import TRANSIENT_READ_ERRORS
from .exceptions import FeeEstimateUnavailable
from .logging_config import setup_logger
from .models import FeeMode, FeeOverrides, FeePlan, FeeSource

logger = setup_logger()

NetworkEstimator = Callable[[], Awaitable[Tuple[Optional[int], Optional[int]]]]
LegacyEstimator = Callable[[], Awaitable[Optional[int]]]

ESTIMATE_ERRORS = (FeeEstimateUnavailable, Web3Exception, ValueError) + TRANSIENT_READ_ERRORS


async def _try_network(network_estimate: NetworkEstimator) -> Tuple[Optional[int], Optional[int]]:
    try:
        return await network_estimate()
    except ESTIMATE_ERRORS as e:
        logger.debug("Dynamic fee estimate unavailable: %s", e)
        return None, None


async def resolve_fee_plan(
    overrides: FeeOverrides,
    network_estimate: NetworkEstimator,
    legacy_estimate: LegacyEstimator,
) -> FeePlan:
    """
    Resolve the fee plan for the next submission.

    Args:
        overrides: Operator-configured caps.
        network_estimate: Returns (max_fee_per_gas, max_priority_fee_per_gas).
        legacy_estimate: Returns a single gas price.

    Returns:
        FeePlan; known is False only when every source failed.
    """
    if overrides.max_fee_per_gas is not None:
        if overrides.max_priority_fee_per_gas is not None:
            return FeePlan(
                mode=FeeMode.EIP1559,
                source=FeeSource.CONFIG,
                known=True,
                max_fee_per_gas=overrides.max_fee_per_gas,
                max_priority_fee_per_gas=overrides.max_priority_fee_per_gas,
                priority_source=FeeSource.CONFIG,
                priority_known=True,
            )

        _, priority = await _try_network(network_estimate)
        if priority is not None:
            # A tip above the configured max fee would be rejected by the node
            priority = min(priority, overrides.max_fee_per_gas)
        return FeePlan(
            mode=FeeMode.EIP1559,
            source=FeeSource.CONFIG,
            known=True,
            max_fee_per_gas=overrides.max_fee_per_gas,
            max_priority_fee_per_gas=priority if priority is not None else 0,
            priority_source=FeeSource.ESTIMATE if priority is not None else FeeSource.UNKNOWN,
            priority_known=priority is not None,
        )

    max_fee, priority = await _try_network(network_estimate)
    if max_fee is not None:
        return FeePlan(
            mode=FeeMode.EIP1559,
            source=FeeSource.ESTIMATE,
            known=True,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority if priority is not None else 0,
            priority_source=FeeSource.ESTIMATE if priority is not None else FeeSource.UNKNOWN,
            priority_known=priority is not None,
        )

    try:
        gas_price = await legacy_estimate()
    except ESTIMATE_ERRORS as e:
        logger.warning("Legacy gas price unavailable: %s", e)
        gas_price = None

    if gas_price is not None:
        return FeePlan(mode=FeeMode.LEGACY, source=FeeSource.ESTIMATE, known=True, gas_price=gas_price)

    return FeePlan(mode=FeeMode.UNKNOWN, source=FeeSource.UNKNOWN, known=False)


async def resolve_client_fee_plan(client, overrides: FeeOverrides) -> FeePlan:
    """Resolve a fee plan from a ChainClient's estimators."""
    return await resolve_fee_plan(overrides, client.estimate_fees_per_gas, client.get_gas_price)
