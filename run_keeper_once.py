"""
Run a single keeper pass (price, discovery, liquidation jobs, optional redemption).

Usage:
    python run_keeper_once.py --chain-id 31611 --dry-run
"""

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from keeper.engine.config_loader import load_keeper_config
from keeper.engine.exceptions import ConfigError
from keeper.engine.logging_config import setup_logger
from keeper.engine.run_loop import run_once

logger = setup_logger()


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one keeper pass")
    parser.add_argument("--chain-id", type=int, default=int(os.environ.get("KEEPER_CHAIN_ID", "31612")), help="Chain ID from config.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Plan and estimate but never submit")
    parser.add_argument("--max-to-scan", type=int, help="Override MAX_TROVES_TO_SCAN_PER_RUN")
    parser.add_argument("--no-save", action="store_true", help="Do not append the run summary to SAVE_STATE_PATH")
    args = parser.parse_args()

    env = dict(os.environ)
    if args.dry_run:
        env["DRY_RUN"] = "true"
    if args.max_to_scan is not None:
        env["MAX_TROVES_TO_SCAN_PER_RUN"] = str(args.max_to_scan)

    try:
        config = load_keeper_config(args.chain_id, env=env)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    summary = asyncio.run(run_once(config, save_state=not args.no_save))
    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.aborted_reason is None else 2


if __name__ == "__main__":
    sys.exit(main())
