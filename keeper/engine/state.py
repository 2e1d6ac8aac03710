"""
Append-only run snapshots for operators. Never read back for engine decisions.
"""

import json
import os
from typing import Any, Dict, Optional

from .logging_config import setup_logger
from .models import RunSummary

logger = setup_logger()

STATE_VERSION = 1


def save_run_summary(save_path: str, summary: RunSummary) -> None:
    """Append one RunSummary as a JSON line. Failures are logged, not raised."""
    record = {"version": STATE_VERSION, **summary.to_dict()}
    try:
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(save_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
        logger.info("Run %s saved to %s", summary.run_id, save_path)
    except OSError as ex:
        logger.error("Failed to save run summary: %s", ex, exc_info=True)


def load_last_run(save_path: str) -> Optional[Dict[str, Any]]:
    """Return the most recent snapshot, or None when there is none."""
    if not os.path.exists(save_path):
        return None

    last_line = None
    try:
        with open(save_path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    last_line = line
    except OSError as ex:
        logger.error("Failed to read run snapshots: %s", ex)
        return None

    if last_line is None:
        return None

    try:
        record = json.loads(last_line)
    except json.JSONDecodeError as ex:
        logger.error("Corrupt run snapshot in %s: %s", save_path, ex)
        return None

    if record.get("version") != STATE_VERSION:
        logger.warning("Run snapshot version mismatch (got %s, expected %s)", record.get("version"), STATE_VERSION)
    return record
