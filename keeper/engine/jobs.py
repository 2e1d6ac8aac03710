"""
Job builder: splits the discovery result into bounded liquidation jobs.
"""

from typing import List, Sequence

from .models import Job


def build_jobs(liquidatable: Sequence[str], max_per_job: int, enable_fallback: bool = True) -> List[Job]:
    """
    Partition borrowers into contiguous jobs of at most max_per_job.

    The concatenation of the returned jobs equals liquidatable, in order.

    Args:
        liquidatable: Borrower addresses in scan order.
        max_per_job: Maximum borrowers per job, must be positive.
        enable_fallback: Tag every job for per-position fallback on-chain.

    Raises:
        ValueError: if max_per_job is not positive.
    """
    if max_per_job <= 0:
        raise ValueError("max_per_job must be > 0")

    return [
        Job(borrowers=tuple(liquidatable[i : i + max_per_job]), fallback_on_fail=enable_fallback)
        for i in range(0, len(liquidatable), max_per_job)
    ]
