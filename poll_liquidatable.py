"""
Read-only helper: list the lowest-ratio positions below a threshold.

Usage:
    python poll_liquidatable.py --chain-id 31611 --threshold-pct 150 --top 20
    python poll_liquidatable.py --watch --interval 15
"""

import argparse
import asyncio
import os
import sys
import time
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from keeper.engine.client import build_client
from keeper.engine.config_loader import load_keeper_config
from keeper.engine.discovery import scan_positions_below
from keeper.engine.exceptions import ConfigError
from keeper.engine.logging_config import setup_logger
from keeper.engine.models import MCR_E18
from keeper.engine.price import read_price

logger = setup_logger()


def pct_to_e18(pct: str) -> int:
    return int(Decimal(pct) * 10**16)


async def poll(config, threshold_e18: int, max_to_scan: int, top: int, stop_at_boundary: bool) -> int:
    client = build_client(config)
    price = await read_price(client, config.price_bounds, config.MAX_PRICE_AGE_SECONDS)
    if price is None:
        logger.error("Price rejected; nothing scanned")
        return 0

    result = await scan_positions_below(
        client,
        price_e18=price.value_e18,
        threshold_e18=threshold_e18,
        max_to_scan=max_to_scan,
        stop_at_boundary=stop_at_boundary,
    )

    print(f"price={price.value_e18} threshold={threshold_e18} scanned={result.stats.scanned} below={len(result.liquidatable)}")
    for i, candidate in enumerate(result.liquidatable[:top], start=1):
        ratio_pct = Decimal(candidate.collateral_ratio_e18) / Decimal(10**16)
        flag = " LIQUIDATABLE" if candidate.collateral_ratio_e18 < MCR_E18 else ""
        print(f"{i}. {candidate.address} ratio={ratio_pct:.2f}%{flag}")
    return len(result.liquidatable)


def main() -> int:
    parser = argparse.ArgumentParser(description="List positions below a collateral ratio threshold")
    parser.add_argument("--chain-id", type=int, default=int(os.environ.get("KEEPER_CHAIN_ID", "31612")))
    parser.add_argument("--threshold-pct", type=str, help="Threshold as a percentage, defaults to 110")
    parser.add_argument("--max-to-scan", type=int, default=200)
    parser.add_argument("--top", type=int, default=20)
    parser.add_argument("--no-stop-at-boundary", action="store_true", help="Keep scanning past the first position above the threshold")
    parser.add_argument("--watch", action="store_true", help="Poll until interrupted")
    parser.add_argument("--interval", type=int, default=15, help="Seconds between polls with --watch")
    args = parser.parse_args()

    env = dict(os.environ, DRY_RUN="true")
    try:
        config = load_keeper_config(args.chain_id, env=env)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    threshold_e18 = pct_to_e18(args.threshold_pct) if args.threshold_pct else MCR_E18

    while True:
        asyncio.run(poll(config, threshold_e18, args.max_to_scan, args.top, not args.no_stop_at_boundary))
        if not args.watch:
            return 0
        time.sleep(args.interval)


if __name__ == "__main__":
    sys.exit(main())
