"""
Liquidation call selection and receipt decoding.
"""

from typing import Optional, Sequence

from web3.logs import DISCARD

from .logging_config import setup_logger
from .models import ZERO_ADDRESS, Job

logger = setup_logger()


class LiquidationAction:
    """
    Chooses the on-chain entry point for a liquidation job.

    - one borrower: TrovePilotEngine.liquidateSingle
    - fallback jobs: TrovePilotEngine.liquidateBatch (per-position fallback inside the wrapper)
    - all-or-nothing jobs: TroveManager.batchLiquidateTroves
    """

    def __init__(self, client):
        self.client = client

    @property
    def recipient(self) -> str:
        return self.client.address or ZERO_ADDRESS

    def build_call(self, job: Job, borrowers: Sequence[str]):
        if len(borrowers) == 1:
            return self.client.engine.functions.liquidateSingle(borrowers[0], self.recipient)
        if job.fallback_on_fail:
            return self.client.engine.functions.liquidateBatch(list(borrowers), self.recipient)
        return self.client.trove_manager.functions.batchLiquidateTroves(list(borrowers))

    def decode_succeeded(self, receipt) -> Optional[int]:
        """
        Number of positions the wrapper reports as liquidated, or None when the
        receipt carries no LiquidationExecuted event (direct trove manager calls).
        """
        if receipt is None:
            return None
        events = self.client.engine.events.LiquidationExecuted().process_receipt(receipt, errors=DISCARD)
        if not events:
            return None
        return int(events[-1]["args"]["succeeded"])
