import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List

from .config_loader import KeeperConfig, load_keeper_config
from .logging_config import setup_logger
from .models import RunSummary
from .notifications import post_error_notification
from .run_loop import run_once

logger = setup_logger()


class KeeperManager:
    """Manages periodic keeper runs for multiple chains"""

    def __init__(self, chain_ids: List[int]):
        self.chain_ids = chain_ids

        self.configs: Dict[int, KeeperConfig] = {}
        self.last_runs: Dict[int, RunSummary] = {}
        self._stop_event = threading.Event()

        self._initialize_chains()

    def _initialize_chains(self):
        """Load and validate the config of every chain before anything runs"""
        logger.info("Initializing chains: %s", self.chain_ids)
        for chain_id in self.chain_ids:
            config = load_keeper_config(chain_id)
            self.configs[chain_id] = config
            logger.info(
                "Chain %s (%s): modes=%s dry_run=%s interval=%ss",
                chain_id, config.CHAIN_NAME, config.KEEPER_MODES, config.DRY_RUN, config.RUN_INTERVAL_SECONDS,
            )

    def start(self):
        """Start the periodic run loop of every chain"""
        with ThreadPoolExecutor(max_workers=max(1, len(self.chain_ids))) as executor:
            futures = [executor.submit(self._run_chain, chain_id) for chain_id in self.chain_ids]

            # Wait for all to complete (they shouldn't unless stopped or on error)
            for future in futures:
                try:
                    future.result()
                except Exception as e:
                    logger.error("Chain instance failed: %s", e, exc_info=True)

    def run_chain_once(self, chain_id: int) -> RunSummary:
        """Run a single keeper pass for one chain"""
        config = self.configs[chain_id]
        summary = asyncio.run(run_once(config))
        self.last_runs[chain_id] = summary
        return summary

    def _run_chain(self, chain_id: int):
        """Run a single chain's keeper every RUN_INTERVAL_SECONDS until stopped"""
        config = self.configs[chain_id]
        while not self._stop_event.is_set():
            try:
                summary = self.run_chain_once(chain_id)
                logger.info(
                    "Run %s on %s finished: processed=%s leftover=%s spent=%s aborted=%s",
                    summary.run_id, config.CHAIN_NAME, len(summary.processed), len(summary.leftover),
                    summary.spent_wei, summary.aborted_reason,
                )
            except Exception as e:
                logger.error("Keeper run failed on %s: %s", config.CHAIN_NAME, e, exc_info=True)
                post_error_notification(f"Keeper run failed: {e}", config)

            self._stop_event.wait(config.RUN_INTERVAL_SECONDS)

    def stop(self):
        """Stop all chain instances"""
        self._stop_event.set()
