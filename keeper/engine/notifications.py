"""
Slack notification functions for the keeper.

Every post_* function is a no-op returning False when NOTIFICATION_URL is not
configured.
"""

import time
from typing import Optional, Sequence

from apprise import Apprise
from web3 import Web3

from .config_loader import KeeperConfig
from .logging_config import setup_logger
from .models import ExecutionResult, RedeemResult

logger = setup_logger()


def setup_apprise_notification_object(config: KeeperConfig) -> Apprise:
    """Set up the Apprise notification engine."""
    apprise = Apprise()
    apprise.add(config.NOTIFICATION_URL)
    return apprise


def _slack_mentions(config: KeeperConfig) -> str:
    """Build Slack mention string from config."""
    mention_ids = getattr(config, "SLACK_MENTION_IDS", [])
    return " ".join(f"<@{uid}>" for uid in mention_ids)


def _tx_link(tx_hash: Optional[str], config: KeeperConfig) -> str:
    if not tx_hash:
        return "n/a"
    if config.EXPLORER_URL:
        return f"<{config.EXPLORER_URL}/tx/{tx_hash}|{tx_hash}>"
    return f"`{tx_hash}`"


def _footer(config: KeeperConfig) -> str:
    return f"Time: {time.strftime('%Y-%m-%d %H:%M:%S')}\nNetwork: `{config.CHAIN_NAME}` {_slack_mentions(config)}"


def _send(message: str, title: str, config: Optional[KeeperConfig]) -> bool:
    if config is None or not config.NOTIFICATION_URL:
        return False

    apprise = setup_apprise_notification_object(config)
    sent = apprise.notify(body=message, title=title)
    if not sent:
        logger.warning("Notification '%s' could not be delivered", title)
    return bool(sent)


def _format_borrowers(borrowers: Sequence[str], limit: int = 10) -> str:
    lines = [f"• `{borrower}`" for borrower in borrowers[:limit]]
    if len(borrowers) > limit:
        lines.append(f"• ... and {len(borrowers) - limit} more")
    return "\n".join(lines)


def post_run_aborted_notification(reason: str, config: KeeperConfig) -> bool:
    """Post a notification about a run that stopped before scanning."""
    message = (
        ":warning: *Keeper Run Aborted* :warning:\n\n"
        f"*Reason*: `{reason}`\n"
        f"{_footer(config)}\n\n"
    )
    logger.info("Run aborted notification:\n%s", message)
    return _send(message, "Keeper Run Aborted", config)


def post_job_failed_notification(borrowers: Sequence[str], result: ExecutionResult, config: KeeperConfig) -> bool:
    """Post a notification about a liquidation job that was submitted but did not land."""
    message = (
        ":rotating_light: *Liquidation Job Failed* :rotating_light:\n\n"
        f"*Reason*: `{result.reason.value if result.reason else 'unknown'}`\n"
        f"*Transaction*: {_tx_link(result.tx_hash, config)}\n"
        f"*Borrowers* ({len(borrowers)}):\n{_format_borrowers(borrowers)}\n"
        f"{_footer(config)}\n\n"
    )
    logger.info("Job failed notification:\n%s", message)
    return _send(message, "Liquidation Job Failed", config)


def post_liquidation_result_notification(result: ExecutionResult, spent_wei: int, config: KeeperConfig) -> bool:
    """Post a notification about a confirmed liquidation transaction."""
    succeeded = "unknown" if result.succeeded is None else str(result.succeeded)
    message = (
        ":moneybag: *Liquidation Completed* :moneybag:\n\n"
        f"*Attempted*: `{len(result.processed_borrowers)}`\n"
        f"*Succeeded*: `{succeeded}`\n"
        f"*Transaction*: {_tx_link(result.tx_hash, config)}\n"
        f"*Gas spent this run*: `{Web3.from_wei(spent_wei, 'ether')}`\n"
        f"*Borrowers*:\n{_format_borrowers(result.processed_borrowers)}\n"
        f"{_footer(config)}\n\n"
    )
    logger.info("Liquidation result notification:\n%s", message)
    return _send(message, "Liquidation Completed", config)


def post_redemption_result_notification(result: RedeemResult, effective_amount: int, config: KeeperConfig) -> bool:
    """Post a notification about a confirmed redemption."""
    collateral_delta = result.balances.get("recipient_native_delta", 0)
    message = (
        ":moneybag: *Redemption Completed* :moneybag:\n\n"
        f"*Amount redeemed*: `{Web3.from_wei(effective_amount, 'ether')}`\n"
        f"*Collateral received*: `{Web3.from_wei(max(collateral_delta, 0), 'ether')}`\n"
        f"*Transaction*: {_tx_link(result.tx_hash, config)}\n"
        f"{_footer(config)}\n\n"
    )
    logger.info("Redemption result notification:\n%s", message)
    return _send(message, "Redemption Completed", config)


def post_error_notification(message: str, config: KeeperConfig = None) -> bool:
    """Post an error notification to Slack."""
    error_message = f":rotating_light: *Error Notification* :rotating_light:\n\n{message}\n\n"
    error_message += f"Time: {time.strftime('%Y-%m-%d %H:%M:%S')}\n"
    if config:
        error_message += f"Network: `{config.CHAIN_NAME}` {_slack_mentions(config)}"

    logger.info("Error notification:\n%s", error_message)
    return _send(error_message, "Error Notification", config)
